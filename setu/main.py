from __future__ import annotations

import asyncio
from typing import Any
from uuid import uuid4

from fastapi import FastAPI, HTTPException
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel

from setu.config import AppSettings, load_settings
from setu.intent.knowledge_base import KnowledgeBase, KnowledgeBaseResolver, load_knowledge_base
from setu.intent.quick_match import QuickMatchResolver
from setu.intent.tables import PhraseTable, load_phrase_table
from setu.lang.normalizer import FillerFilter, load_filler_filter
from setu.llm.providers.gemini import GeminiProvider
from setu.llm.providers.ollama import OllamaProvider
from setu.llm.router import RemoteFallback, RemoteRouter
from setu.llm.types import ChatProvider
from setu.orchestrator.clock import CLOCK, Clock
from setu.orchestrator.events import ConversationState
from setu.orchestrator.pipeline import SpeechPipeline
from setu.orchestrator.policies import PipelinePolicies, RemotePolicies
from setu.orchestrator.state_machine import ActionExecutor, VoiceSession
from setu.telemetry.logging import configure_logging, get_logger
from setu.telemetry.tracing import configure_tracing
from setu.ui.executor import BufferedExecutor
from setu.ui.websocket import KioskBridge

settings = load_settings()
configure_logging(settings.telemetry.log_level)
configure_tracing("setu-voice-pipeline", settings.telemetry.otlp_endpoint)
logger = get_logger(__name__)

app = FastAPI(title="Setu Voice Pipeline")


def _runtime() -> "Runtime":
    runtime = getattr(app.state, "runtime", None)
    if runtime is None:
        raise HTTPException(status_code=503, detail="runtime unavailable")
    return runtime


def _open_kiosk_session(executor: ActionExecutor, language: str | None) -> VoiceSession:
    return _runtime().create_session(executor, language)


async def _close_kiosk_session(session_id: str) -> None:
    runtime = getattr(app.state, "runtime", None)
    if runtime:
        await runtime.end_session(session_id)


kiosk_bridge = KioskBridge(_open_kiosk_session, _close_kiosk_session)

origins = {settings.ui.kiosk_ui_origin}
if "localhost" in settings.ui.kiosk_ui_origin:
    origins.add(settings.ui.kiosk_ui_origin.replace("localhost", "127.0.0.1"))
app.include_router(kiosk_bridge.router)
app.add_middleware(
    CORSMiddleware,
    allow_origins=list(origins),
    allow_methods=["*"],
    allow_headers=["*"],
    allow_credentials=True,
)


@app.on_event("startup")
async def startup_event() -> None:
    app.state.runtime = bootstrap_runtime(settings)


@app.on_event("shutdown")
async def shutdown_event() -> None:
    runtime = getattr(app.state, "runtime", None)
    if runtime:
        await runtime.shutdown()


class SessionCreateRequest(BaseModel):
    language: str | None = None


class TranscriptRequest(BaseModel):
    text: str
    language: str | None = None


class StateReportRequest(BaseModel):
    state: ConversationState


class RemoteProviderRequest(BaseModel):
    provider: str


@app.get("/health")
async def health() -> dict[str, Any]:
    runtime = getattr(app.state, "runtime", None)
    if runtime is None:
        return {"status": "starting"}
    return {
        "status": "ok",
        "sessions": runtime.session_count(),
        "phrases": len(runtime.phrase_table),
        "remote_provider": runtime.current_remote_provider(),
    }


@app.post("/sessions")
async def create_session(req: SessionCreateRequest | None = None) -> dict[str, str]:
    runtime = _runtime()
    await runtime.expire_idle_sessions()
    session = runtime.create_session(BufferedExecutor(), req.language if req else None)
    greeting = session.begin()
    return {"session_id": session.session_id, "greeting": greeting, "language": session.language}


@app.post("/sessions/{session_id}/listen")
async def start_listening(session_id: str) -> dict[str, int]:
    session = _session_or_404(session_id)
    return {"token": session.start_listening()}


@app.post("/sessions/{session_id}/transcript")
async def post_transcript(session_id: str, req: TranscriptRequest) -> dict[str, Any]:
    session = _session_or_404(session_id)
    result = await session.handle_transcript(req.text, req.language)
    return _session_reply(session_id, session, result.to_dict() if result else None)


@app.post("/sessions/{session_id}/flush")
async def flush_session(session_id: str) -> dict[str, Any]:
    session = _session_or_404(session_id)
    result = await session.flush()
    return _session_reply(session_id, session, result.to_dict() if result else None)


@app.post("/sessions/{session_id}/state")
async def report_state(session_id: str, req: StateReportRequest) -> dict[str, str]:
    session = _session_or_404(session_id)
    await session.set_state(req.state)
    return {"state": session.state.value}


@app.delete("/sessions/{session_id}")
async def delete_session(session_id: str) -> dict[str, str]:
    runtime = _runtime()
    _session_or_404(session_id)
    await runtime.end_session(session_id)
    return {"status": "closed"}


@app.get("/remote/provider")
async def get_remote_provider() -> dict[str, Any]:
    runtime = _runtime()
    return {"provider": runtime.current_remote_provider(), "available": runtime.remote_providers()}


@app.post("/remote/provider")
async def set_remote_provider(req: RemoteProviderRequest) -> dict[str, str | None]:
    runtime = _runtime()
    try:
        provider = runtime.set_remote_provider(req.provider)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc))
    return {"provider": provider}


def _session_or_404(session_id: str) -> VoiceSession:
    try:
        return _runtime().get_session(session_id)
    except KeyError:
        raise HTTPException(status_code=404, detail=f"unknown session {session_id}")


def _session_reply(session_id: str, session: VoiceSession, result: dict[str, Any] | None) -> dict[str, Any]:
    executor = _runtime().executor_for(session_id)
    events = executor.drain() if isinstance(executor, BufferedExecutor) else []
    return {"result": result, "events": events, "state": session.state.value, "language": session.language}


class Runtime:
    """Shared read-only tables plus the registry of live kiosk sessions."""

    def __init__(
        self,
        settings: AppSettings,
        phrase_table: PhraseTable,
        knowledge_base: KnowledgeBase,
        fillers: FillerFilter,
        remote_router: RemoteRouter | None = None,
        clock: Clock | None = None,
    ) -> None:
        self._settings = settings
        self.phrase_table = phrase_table
        self.knowledge_base = knowledge_base
        self._fillers = fillers
        self._remote_router = remote_router
        self._clock = clock or CLOCK
        self._languages = settings.languages
        self._pipeline_policies = PipelinePolicies.from_settings(settings.pipeline, self._languages.fallback)
        self._kb_resolver = KnowledgeBaseResolver(knowledge_base)
        self._sessions: dict[str, VoiceSession] = {}
        self._executors: dict[str, ActionExecutor] = {}
        # HTTP sessions only; WebSocket sessions end when their socket closes
        self._last_seen: dict[str, float] = {}
        self._session_idle_ms = settings.ui.session_idle_timeout_s * 1000.0
        self._logger = get_logger(__name__)

    def session_count(self) -> int:
        return len(self._sessions)

    def create_session(self, executor: ActionExecutor, language: str | None = None) -> VoiceSession:
        session_id = uuid4().hex
        quick = QuickMatchResolver(
            self.phrase_table,
            fallback_language=self._languages.fallback,
            max_prefix_tokens=self._pipeline_policies.max_prefix_tokens,
        )
        pipeline = SpeechPipeline(quick, self._pipeline_policies, self._fillers, self._clock)
        remote = RemoteFallback(self._remote_router) if self._remote_router and self._remote_router.providers else None
        language = (language or self._languages.default).lower()
        if language not in self._languages.supported:
            language = self._languages.default
        session = VoiceSession(
            session_id,
            pipeline,
            self._kb_resolver,
            executor,
            remote=remote,
            language=language,
            supported_languages=self._languages.supported,
            idle_finalize_ms=self._pipeline_policies.idle_finalize_ms,
        )
        self._sessions[session_id] = session
        self._executors[session_id] = executor
        if isinstance(executor, BufferedExecutor):
            self._last_seen[session_id] = self._clock.monotonic_ms()
        self._logger.info("runtime.session.created", session_id=session_id, language=language)
        return session

    def get_session(self, session_id: str) -> VoiceSession:
        session = self._sessions[session_id]
        if session_id in self._last_seen:
            self._last_seen[session_id] = self._clock.monotonic_ms()
        return session

    def executor_for(self, session_id: str) -> ActionExecutor | None:
        return self._executors.get(session_id)

    async def end_session(self, session_id: str) -> None:
        session = self._sessions.pop(session_id, None)
        self._executors.pop(session_id, None)
        self._last_seen.pop(session_id, None)
        if session is not None:
            await session.close()
            self._logger.info("runtime.session.ended", session_id=session_id)

    async def expire_idle_sessions(self) -> list[str]:
        """End HTTP sessions nobody has touched for longer than the idle timeout."""
        now = self._clock.monotonic_ms()
        expired = [sid for sid, seen in self._last_seen.items() if now - seen > self._session_idle_ms]
        for session_id in expired:
            self._logger.info("runtime.session.expired", session_id=session_id)
            await self.end_session(session_id)
        return expired

    def current_remote_provider(self) -> str | None:
        return self._remote_router.current_provider() if self._remote_router else None

    def remote_providers(self) -> list[str]:
        return self._remote_router.available() if self._remote_router else []

    def set_remote_provider(self, provider: str) -> str:
        if self._remote_router is None:
            raise ValueError("remote fallback disabled")
        return self._remote_router.set_default(provider)

    async def shutdown(self) -> None:
        self._logger.info("runtime.shutdown.start")
        await asyncio.gather(*(session.close() for session in self._sessions.values()), return_exceptions=True)
        self._sessions.clear()
        self._executors.clear()
        self._last_seen.clear()
        if self._remote_router is not None:
            await self._remote_router.aclose()
        self._logger.info("runtime.shutdown.complete")


def build_remote_router(settings: AppSettings) -> RemoteRouter | None:
    remote = settings.remote
    if remote.provider == "none":
        return None
    policies = RemotePolicies.from_settings(remote)
    providers: dict[str, ChatProvider] = {}
    if remote.gemini_api_keys:
        providers["gemini"] = GeminiProvider(
            remote.gemini_api_keys,
            model=remote.gemini_model,
            timeout=remote.timeout_s,
            temperature=policies.temperature,
            max_output_tokens=policies.max_output_tokens,
        )
    elif remote.provider == "gemini":
        logger.warning("remote.gemini.no_keys")
    if remote.provider == "ollama":
        providers["ollama"] = OllamaProvider(
            remote.ollama_host,
            model=remote.ollama_model,
            timeout=remote.timeout_s,
            temperature=policies.temperature,
            max_output_tokens=policies.max_output_tokens,
        )
    return RemoteRouter(providers=providers, default=remote.provider, policies=policies)


def bootstrap_runtime(settings: AppSettings, remote_router: RemoteRouter | None = None) -> Runtime:
    resources = settings.resources
    fallback = settings.languages.fallback
    phrase_table = load_phrase_table(resources.phrase_table_path)
    knowledge_base = load_knowledge_base(resources.knowledge_base_path, fallback)
    fillers = load_filler_filter(resources.fillers_path)
    router = remote_router if remote_router is not None else build_remote_router(settings)
    runtime = Runtime(settings, phrase_table, knowledge_base, fillers, router)
    logger.info(
        "runtime.started",
        phrases=len(phrase_table),
        remote_provider=runtime.current_remote_provider(),
    )
    return runtime
