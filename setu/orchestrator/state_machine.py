from __future__ import annotations

import asyncio
from typing import Protocol

from setu.intent.knowledge_base import KnowledgeBaseResolver
from setu.lang.script_detect import detect_lang_from_text
from setu.llm.router import RemoteFallback, RemoteFallbackError
from setu.orchestrator.events import ActionKind, ConversationState, ResolutionResult
from setu.orchestrator.pipeline import SpeechPipeline
from setu.telemetry.logging import bind_session, get_logger
from setu.telemetry.tracing import get_tracer
from setu.transcription.base import TranscriptSource, TranscriptSourceError


class ActionExecutor(Protocol):
    async def execute(self, result: ResolutionResult) -> None: ...

    async def listening(self, partial_text: str) -> None: ...

    async def report_error(self, code: str, message: str) -> None: ...


TRANSITIONS: dict[ActionKind, ConversationState] = {
    ActionKind.NAVIGATE_BILL_ELECTRICITY: ConversationState.BILL_PAGE,
    ActionKind.NAVIGATE_BILL_WATER: ConversationState.BILL_PAGE,
    ActionKind.NAVIGATE_BILL_GAS: ConversationState.BILL_PAGE,
    ActionKind.NAVIGATE_PROPERTY_TAX: ConversationState.BILL_PAGE,
    ActionKind.PAY_UPI: ConversationState.BILL_PAYMENT,
    ActionKind.PAY_CARD: ConversationState.BILL_PAYMENT,
    ActionKind.PAY_CASH: ConversationState.BILL_PAYMENT,
    ActionKind.NAVIGATE_COMPLAINT: ConversationState.COMPLAINT,
    ActionKind.SELECT_COMPLAINT_CATEGORY: ConversationState.COMPLAINT_DETAILS,
    ActionKind.NAVIGATE_CITIZEN_LOGIN: ConversationState.CITIZEN_AUTH,
    ActionKind.NAVIGATE_GUEST_HOME: ConversationState.GUEST_HOME,
}


class VoiceSession:
    """One kiosk conversation: its own pipeline, dialogue state and remote history.

    Transcripts are handled one at a time under ``_turn_lock``. Pressing the microphone
    again (:meth:`start_listening`) bumps ``request_token``; a remote answer that comes
    back under an older token is dropped instead of being executed.
    """

    def __init__(
        self,
        session_id: str,
        pipeline: SpeechPipeline,
        kb: KnowledgeBaseResolver,
        executor: ActionExecutor,
        remote: RemoteFallback | None = None,
        language: str = "hi",
        supported_languages: tuple[str, ...] = ("en", "hi", "pa"),
        idle_finalize_ms: int = 1500,
    ) -> None:
        self.session_id = session_id
        self._pipeline = pipeline
        self._kb = kb
        self._executor = executor
        self._remote = remote
        self._supported = supported_languages
        self._language = language if language in supported_languages else supported_languages[0]
        self._idle_finalize_s = idle_finalize_ms / 1000.0
        self._state = ConversationState.INITIAL
        self._previous_states: list[ConversationState] = []
        self._authenticated = False
        self._request_token = 0
        self._turn_lock = asyncio.Lock()
        self._closed = False
        self._logger = get_logger(__name__).bind(session_id=session_id)
        self._tracer = get_tracer(__name__)

    @property
    def state(self) -> ConversationState:
        return self._state

    @property
    def language(self) -> str:
        return self._language

    @property
    def request_token(self) -> int:
        return self._request_token

    @property
    def authenticated(self) -> bool:
        return self._authenticated

    @property
    def pipeline(self) -> SpeechPipeline:
        return self._pipeline

    def begin(self) -> str:
        """Open the conversation: greet and wait for the citizen/guest answer."""
        greeting = self._kb.knowledge_base.response("initial_greeting", self._language)
        self._move_to(ConversationState.WAIT_PATH)
        self._logger.info("session.begin", language=self._language)
        return greeting

    def start_listening(self) -> int:
        self._pipeline.reset()
        self._request_token += 1
        self._logger.debug("session.listen", token=self._request_token)
        return self._request_token

    async def set_state(self, state: ConversationState) -> None:
        """Record a state change reported by the kiosk UI (login finished, page closed)."""
        if state is ConversationState.CITIZEN_DASH:
            self._authenticated = True
        self._move_to(state)

    async def handle_transcript(self, text: object, language: str | None = None) -> ResolutionResult | None:
        bind_session(self.session_id)
        async with self._turn_lock:
            lang = self._resolve_language(language, text)
            with self._tracer.start_as_current_span("session.transcript") as span:
                span.set_attribute("session.state", self._state.value)
                result = self._pipeline.process(text, lang)
                if result is None or result.skipped:
                    return result
                span.set_attribute("resolution.layer", result.layer)

            if result.layer == "QUICK":
                result = self._contextualize(result)
                await self._dispatch(result)
                return result
            if not result.is_complete:
                await self._executor.listening(result.text)
                return result
            return await self._resolve_complete(result.text, result.language)

    async def flush(self) -> ResolutionResult | None:
        """Finalize a trailing utterance once the recogniser has gone quiet."""
        async with self._turn_lock:
            lang = self._pipeline.buffer_language or self._language
            result = self._pipeline.finalize(lang)
            if result is None:
                return None
            if result.layer == "QUICK":
                result = self._contextualize(result)
                await self._dispatch(result)
                return result
            return await self._resolve_complete(result.text, lang)

    async def run(self, source: TranscriptSource) -> None:
        bind_session(self.session_id)
        while not self._closed:
            timeout = self._idle_finalize_s if self._pipeline.sentence_queue else None
            try:
                utterance = await asyncio.wait_for(source.receive(), timeout=timeout)
            except asyncio.TimeoutError:
                self._logger.debug("session.idle_finalize")
                await self.flush()
                continue
            except TranscriptSourceError as exc:
                self._logger.warning("session.source.error", code=exc.code, error=str(exc))
                message = self._kb.knowledge_base.response(exc.code, self._language) or str(exc)
                await self._executor.report_error(exc.code, message)
                continue
            if utterance is None:
                break
            await self.handle_transcript(utterance.text, utterance.language)
        self._logger.info("session.run.finished")

    async def close(self) -> None:
        self._closed = True
        self._request_token += 1
        self._pipeline.reset()
        if self._remote is not None:
            self._remote.clear()
        self._logger.info("session.closed")

    async def _resolve_complete(self, text: str, lang: str) -> ResolutionResult | None:
        result = self._kb.resolve(text, lang, self._state, authenticated=self._authenticated)
        if result is not None:
            self._logger.info("session.kb.hit", action=result.action.value, text=text)
            await self._dispatch(result)
            return result

        token = self._request_token
        result = await self._ask_remote(text, lang)
        if token != self._request_token:
            self._logger.info("session.remote.stale_discarded", token=token, current=self._request_token)
            return None
        await self._dispatch(result)
        return result

    async def _ask_remote(self, text: str, lang: str) -> ResolutionResult:
        if self._remote is None:
            return self._kb.not_understood(text, lang)
        try:
            answer = await self._remote.answer(text, lang, self._state)
        except RemoteFallbackError as exc:
            self._logger.warning("session.remote.failed", error=str(exc))
            return self._kb.not_understood(text, lang)
        language = answer.language if answer.language in self._supported else lang
        return ResolutionResult(
            action=answer.action,
            response_text=answer.answer_text,
            layer="REMOTE",
            params=dict(answer.params),
            text=text,
            is_complete=True,
            language=language,
        )

    def _contextualize(self, result: ResolutionResult) -> ResolutionResult:
        kb = self._kb.knowledge_base
        lang = result.language
        if result.params.get("requires_auth") and not self._authenticated:
            feature = result.action.value.removeprefix("navigate_")
            result.params = {"feature": feature, "requires_auth": True}
            result.action = ActionKind.NAVIGATE_CITIZEN_LOGIN
            result.response_text = kb.response("requires_login", lang)
        elif result.params.get("requires_auth") and not result.response_text:
            result.response_text = kb.guidance(result.action, lang) or ""
        elif self._state.choosing_path and result.action is ActionKind.CONFIRM_YES:
            result.action = ActionKind.NAVIGATE_CITIZEN_LOGIN
            result.response_text = kb.response("citizen_chosen", lang)
        elif self._state.choosing_path and result.action is ActionKind.CONFIRM_NO:
            result.action = ActionKind.NAVIGATE_GUEST_HOME
            result.response_text = kb.response("guest_chosen", lang)
        elif result.action is ActionKind.STOP_VOICE:
            result.response_text = kb.response("stopping", lang) or result.response_text
        return result

    async def _dispatch(self, result: ResolutionResult) -> None:
        action = result.action
        if action is ActionKind.CHANGE_LANGUAGE:
            language = str(result.params.get("language", ""))
            if language in self._supported:
                self._language = language
        elif action is ActionKind.GO_BACK:
            if self._previous_states:
                self._state = self._previous_states.pop()
        elif action is ActionKind.GO_HOME:
            self._move_to(ConversationState.CITIZEN_DASH if self._authenticated else ConversationState.GUEST_HOME)
        elif action is ActionKind.STOP_VOICE:
            self.start_listening()
        elif action in TRANSITIONS:
            self._move_to(TRANSITIONS[action])

        if action is ActionKind.UNKNOWN and not result.response_text:
            result.response_text = self._kb.knowledge_base.response("please_repeat", result.language)
        self._logger.info(
            "session.action",
            action=action.value,
            layer=result.layer,
            state=self._state.value,
        )
        await self._executor.execute(result)

    def _move_to(self, state: ConversationState) -> None:
        if state is self._state:
            return
        self._previous_states.append(self._state)
        self._logger.debug("state.transition", previous=self._state.value, state=state.value)
        self._state = state

    def _resolve_language(self, hint: str | None, text: object) -> str:
        if hint:
            hint = hint.lower().split("-")[0]
            if hint in self._supported:
                return hint
        detected = detect_lang_from_text(text if isinstance(text, str) else None, default=self._language)
        return detected if detected in self._supported else self._language


__all__ = ["ActionExecutor", "TRANSITIONS", "VoiceSession"]
