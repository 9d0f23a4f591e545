from __future__ import annotations

import asyncio
import json
import time
from collections.abc import Awaitable, Callable
from typing import Any

from fastapi import APIRouter, WebSocket, WebSocketDisconnect

from setu.orchestrator.events import ConversationState, ResolutionResult, Utterance
from setu.orchestrator.state_machine import ActionExecutor, VoiceSession
from setu.telemetry.logging import get_logger
from setu.transcription.base import TranscriptSourceError
from setu.transcription.queue_source import QueueTranscriptSource

SessionFactory = Callable[[ActionExecutor, str | None], VoiceSession]
SessionCloser = Callable[[str], Awaitable[None]]


class KioskConnection(QueueTranscriptSource):
    """One browser kiosk: transcript source and action executor for its session."""

    def __init__(self, websocket: WebSocket) -> None:
        super().__init__()
        self._websocket = websocket
        self._send_lock = asyncio.Lock()

    async def send(self, kind: str, payload: dict[str, Any]) -> None:
        async with self._send_lock:
            await self._websocket.send_json({"type": kind, "payload": payload})

    async def execute(self, result: ResolutionResult) -> None:
        await self.send("action", result.to_dict())

    async def listening(self, partial_text: str) -> None:
        await self.send("listening", {"text": partial_text})

    async def report_error(self, code: str, message: str) -> None:
        await self.send("error", {"code": code, "message": message})


class KioskBridge:
    def __init__(self, session_factory: SessionFactory, session_closer: SessionCloser) -> None:
        self._session_factory = session_factory
        self._session_closer = session_closer
        self._connections: set[KioskConnection] = set()
        self._router = APIRouter()
        self._router.add_api_websocket_route("/ws/kiosk", self._websocket_handler)
        self._lock = asyncio.Lock()
        self._logger = get_logger(__name__)

    @property
    def router(self) -> APIRouter:
        return self._router

    @property
    def connection_count(self) -> int:
        return len(self._connections)

    async def _websocket_handler(self, websocket: WebSocket) -> None:
        await websocket.accept()
        connection = KioskConnection(websocket)
        session = self._session_factory(connection, websocket.query_params.get("language"))
        async with self._lock:
            self._connections.add(connection)
        self._logger.info("ui.client.connected", session_id=session.session_id, count=len(self._connections))

        await connection.send(
            "greeting",
            {"session_id": session.session_id, "text": session.begin(), "language": session.language},
        )
        runner = asyncio.create_task(session.run(connection))
        try:
            while True:
                raw = await websocket.receive_text()
                try:
                    message = json.loads(raw)
                except json.JSONDecodeError:
                    await connection.report_error("bad_frame", "frames must be JSON")
                    continue
                await self._handle_message(session, connection, message)
        except WebSocketDisconnect:
            self._logger.info("ui.client.disconnected", session_id=session.session_id)
        finally:
            await connection.close()
            (outcome,) = await asyncio.gather(runner, return_exceptions=True)
            if isinstance(outcome, Exception):
                self._logger.warning("ui.session.run_failed", session_id=session.session_id, error=str(outcome))
            async with self._lock:
                self._connections.discard(connection)
            await self._session_closer(session.session_id)

    async def _handle_message(self, session: VoiceSession, connection: KioskConnection, message: Any) -> None:
        if not isinstance(message, dict):
            await connection.report_error("bad_frame", "expected a JSON object")
            return
        kind = message.get("type")
        if kind == "transcript":
            await connection.publish(
                Utterance(
                    text=str(message.get("text") or ""),
                    language=str(message.get("language") or session.language),
                    timestamp=time.time(),
                )
            )
        elif kind == "listen":
            token = session.start_listening()
            await connection.send("listening", {"text": "", "token": token})
        elif kind == "error":
            await connection.fail(
                TranscriptSourceError(
                    str(message.get("message") or "speech recognition unavailable"),
                    code=str(message.get("code") or "recognition_unavailable"),
                )
            )
        elif kind == "state":
            try:
                state = ConversationState(str(message.get("state")))
            except ValueError:
                await connection.report_error("bad_state", f"unknown state {message.get('state')!r}")
                return
            await session.set_state(state)
        else:
            self._logger.debug("ui.frame.ignored", kind=kind)
            await connection.report_error("bad_frame", f"unknown frame type {kind!r}")


__all__ = ["KioskBridge", "KioskConnection"]
