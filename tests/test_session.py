from __future__ import annotations

import asyncio

import httpx
import pytest

from conftest import FakeClock, RecordingExecutor

from setu.intent.knowledge_base import KnowledgeBaseResolver, default_knowledge_base
from setu.intent.quick_match import QuickMatchResolver
from setu.intent.tables import default_phrase_table
from setu.llm.providers.gemini import GeminiProvider
from setu.llm.router import RemoteFallback, RemoteRouter
from setu.llm.types import ChatMessage, ChatProvider, ChatResponse
from setu.orchestrator.events import ActionKind, ConversationState, Utterance
from setu.orchestrator.pipeline import SpeechPipeline
from setu.orchestrator.policies import PipelinePolicies
from setu.orchestrator.state_machine import VoiceSession
from setu.transcription.base import TranscriptSourceError
from setu.transcription.queue_source import QueueTranscriptSource

SUNNY = '{"language": "en", "intent": "inform", "action_key": null, "reply": "It is sunny today."}'


class ScriptedProvider(ChatProvider):
    def __init__(self, replies: list[object], gate: asyncio.Event | None = None) -> None:
        self.name = "scripted"
        self.calls: list[str] = []
        self._replies = list(replies)
        self._gate = gate

    async def chat(
        self,
        prompt: str,
        system: str,
        history: list[ChatMessage] | None = None,
        json_mode: bool = True,
    ) -> ChatResponse:
        self.calls.append(prompt)
        if self._gate is not None:
            await self._gate.wait()
        reply = self._replies.pop(0)
        if isinstance(reply, Exception):
            raise reply
        return ChatResponse(text=str(reply))


def _session(
    clock: FakeClock,
    provider: ChatProvider | None = None,
    idle_finalize_ms: int = 1500,
) -> tuple[VoiceSession, RecordingExecutor]:
    pipeline = SpeechPipeline(QuickMatchResolver(default_phrase_table()), PipelinePolicies(), clock=clock)
    remote = RemoteFallback(RemoteRouter(providers={"scripted": provider})) if provider else None
    executor = RecordingExecutor()
    session = VoiceSession(
        "test-session",
        pipeline,
        KnowledgeBaseResolver(default_knowledge_base()),
        executor,
        remote=remote,
        language="en",
        idle_finalize_ms=idle_finalize_ms,
    )
    return session, executor


@pytest.mark.anyio("asyncio")
async def test_begin_greets_and_waits_for_path(clock: FakeClock) -> None:
    session, _ = _session(clock)
    greeting = session.begin()
    assert greeting.startswith("Hello! Do you have an Aadhaar card")
    assert session.state is ConversationState.WAIT_PATH


@pytest.mark.anyio("asyncio")
async def test_yes_while_choosing_path_means_citizen(clock: FakeClock) -> None:
    session, executor = _session(clock)
    session.begin()
    result = await session.handle_transcript("yes", "en")
    assert result.action is ActionKind.NAVIGATE_CITIZEN_LOGIN
    assert result.response_text.startswith("Great!")
    assert session.state is ConversationState.CITIZEN_AUTH
    assert executor.actions == [result]


@pytest.mark.anyio("asyncio")
async def test_go_back_restores_previous_state(clock: FakeClock) -> None:
    session, _ = _session(clock)
    session.begin()
    await session.handle_transcript("no", "en")
    assert session.state is ConversationState.GUEST_HOME
    await session.handle_transcript("bijli", "en")
    assert session.state is ConversationState.BILL_PAGE
    await session.handle_transcript("back", "en")
    assert session.state is ConversationState.GUEST_HOME


@pytest.mark.anyio("asyncio")
async def test_incomplete_utterance_reports_listening(clock: FakeClock) -> None:
    session, executor = _session(clock)
    result = await session.handle_transcript("consumer number kahan", "en")
    assert result.layer == "QUEUE"
    assert executor.partials == ["consumer number kahan"]
    assert executor.actions == []


@pytest.mark.anyio("asyncio")
async def test_knowledge_base_answers_before_remote(clock: FakeClock) -> None:
    provider = ScriptedProvider([SUNNY])
    session, executor = _session(clock, provider)
    await session.handle_transcript("consumer number kahan", "en")
    result = await session.flush()
    assert result.action is ActionKind.INFORM
    assert result.layer == "KB"
    assert provider.calls == []
    assert executor.actions == [result]


@pytest.mark.anyio("asyncio")
async def test_remote_answers_when_local_layers_miss(clock: FakeClock) -> None:
    provider = ScriptedProvider([SUNNY])
    session, executor = _session(clock, provider)
    session.begin()
    await session.handle_transcript("no", "en")
    await session.handle_transcript("aaj mausam kaisa", "en")
    result = await session.flush()
    assert provider.calls == ["aaj mausam kaisa"]
    assert result.layer == "REMOTE"
    assert result.action is ActionKind.INFORM
    assert result.response_text == "It is sunny today."
    assert executor.actions[-1] is result


@pytest.mark.anyio("asyncio")
async def test_remote_failure_degrades_to_not_understood(clock: FakeClock) -> None:
    provider = ScriptedProvider([httpx.ConnectError("connection refused")])
    session, executor = _session(clock, provider)
    await session.handle_transcript("aaj mausam kaisa", "en")
    result = await session.flush()
    assert result.action is ActionKind.UNKNOWN
    assert result.layer == "KB"
    assert result.response_text.startswith("Sorry, I didn't understand")
    assert len(provider.calls) == 1


@pytest.mark.anyio("asyncio")
async def test_without_remote_unmatched_utterance_is_not_understood(clock: FakeClock) -> None:
    session, executor = _session(clock)
    await session.handle_transcript("aaj mausam kaisa", "en")
    result = await session.flush()
    assert result.action is ActionKind.UNKNOWN
    assert executor.actions == [result]


@pytest.mark.anyio("asyncio")
async def test_stale_remote_answer_is_discarded(clock: FakeClock) -> None:
    gate = asyncio.Event()
    provider = ScriptedProvider([SUNNY], gate=gate)
    session, executor = _session(clock, provider)
    await session.handle_transcript("aaj mausam kaisa", "en")
    pending = asyncio.create_task(session.flush())
    while not provider.calls:
        await asyncio.sleep(0)
    session.start_listening()
    gate.set()
    assert await pending is None
    assert executor.actions == []


@pytest.mark.anyio("asyncio")
async def test_login_only_feature_redirects_until_authenticated(clock: FakeClock) -> None:
    session, _ = _session(clock)
    redirected = await session.handle_transcript("naam badalna", "en")
    assert redirected.action is ActionKind.NAVIGATE_CITIZEN_LOGIN
    assert redirected.params == {"feature": "naam_change", "requires_auth": True}
    assert redirected.response_text.startswith("This service needs an Aadhaar login")

    await session.set_state(ConversationState.CITIZEN_DASH)
    assert session.authenticated
    clock.advance(1000)
    allowed = await session.handle_transcript("naam badalna", "en")
    assert allowed.action is ActionKind.NAVIGATE_NAAM_CHANGE


@pytest.mark.anyio("asyncio")
async def test_change_language_switches_session_language(clock: FakeClock) -> None:
    session, _ = _session(clock)
    result = await session.handle_transcript("hindi", "en")
    assert result.action is ActionKind.CHANGE_LANGUAGE
    assert session.language == "hi"


@pytest.mark.anyio("asyncio")
async def test_script_detection_without_language_hint(clock: FakeClock) -> None:
    session, _ = _session(clock)
    result = await session.handle_transcript("बिजली बिल", None)
    assert result.action is ActionKind.NAVIGATE_BILL_ELECTRICITY
    assert result.language == "hi"


@pytest.mark.anyio("asyncio")
async def test_stop_voice_cancels_pending_work(clock: FakeClock) -> None:
    session, _ = _session(clock)
    token = session.request_token
    result = await session.handle_transcript("stop", "en")
    assert result.action is ActionKind.STOP_VOICE
    assert result.response_text.startswith("Okay, stopping.")
    assert session.request_token == token + 1


@pytest.mark.anyio("asyncio")
async def test_start_listening_resets_pipeline(clock: FakeClock) -> None:
    session, _ = _session(clock)
    await session.handle_transcript("consumer number", "en")
    assert session.pipeline.sentence_queue.buffer == "consumer number"
    session.start_listening()
    assert session.pipeline.sentence_queue.buffer == ""
    second = await session.handle_transcript("consumer number", "en")
    assert second.skipped is False


@pytest.mark.anyio("asyncio")
async def test_sessions_do_not_share_pipeline_state(clock: FakeClock) -> None:
    first, _ = _session(clock)
    second, _ = _session(clock)
    await first.handle_transcript("consumer number", "en")
    assert second.pipeline.sentence_queue.buffer == ""


@pytest.mark.anyio("asyncio")
async def test_run_flushes_after_idle_timeout(clock: FakeClock) -> None:
    session, executor = _session(clock, idle_finalize_ms=50)
    source = QueueTranscriptSource()
    await source.publish(Utterance(text="kuch to bolo", language="en", timestamp=0.0))
    runner = asyncio.create_task(session.run(source))
    for _ in range(200):
        if executor.actions:
            break
        await asyncio.sleep(0.01)
    await source.close()
    await asyncio.wait_for(runner, timeout=1.0)
    assert executor.partials == ["kuch bolo"]
    assert executor.actions[0].action is ActionKind.UNKNOWN
    assert executor.actions[0].text == "kuch bolo"


@pytest.mark.anyio("asyncio")
async def test_run_reports_recognition_errors(clock: FakeClock) -> None:
    session, executor = _session(clock)
    source = QueueTranscriptSource()
    await source.fail(TranscriptSourceError("microphone blocked"))
    await source.close()
    await asyncio.wait_for(session.run(source), timeout=1.0)
    assert executor.errors == [
        ("recognition_unavailable", "Voice recognition is not available on this kiosk. Please use the touch screen.")
    ]
    assert executor.actions == []


@pytest.mark.anyio("asyncio")
async def test_non_json_remote_body_degrades_to_not_understood(clock: FakeClock) -> None:
    client = httpx.AsyncClient(
        base_url="https://gemini.test/v1beta",
        transport=httpx.MockTransport(lambda request: httpx.Response(200, text="<html>captive portal</html>")),
    )
    session, executor = _session(clock, GeminiProvider(["key"], client=client))
    await session.handle_transcript("aaj mausam kaisa", "en")
    result = await session.flush()
    await client.aclose()
    assert result.action is ActionKind.UNKNOWN
    assert result.layer == "KB"
    assert executor.actions == [result]


@pytest.mark.anyio("asyncio")
async def test_flush_answers_in_the_language_fragments_arrived_in(clock: FakeClock) -> None:
    session, _ = _session(clock)
    await session.handle_transcript("aaj mausam kaisa", "hi")
    result = await session.flush()
    assert session.language == "en"
    assert result.language == "hi"
    assert result.response_text.startswith("माफ कीजिए")


@pytest.mark.anyio("asyncio")
async def test_authenticated_login_only_feature_speaks_guidance(clock: FakeClock) -> None:
    session, _ = _session(clock)
    await session.set_state(ConversationState.CITIZEN_DASH)
    result = await session.handle_transcript("naam badalna", "en")
    assert result.action is ActionKind.NAVIGATE_NAAM_CHANGE
    assert result.response_text.startswith("The name change form is open")
