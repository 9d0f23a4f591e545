from __future__ import annotations

from typing import Any

from setu.orchestrator.events import ResolutionResult
from setu.telemetry.logging import get_logger


class BufferedExecutor:
    """Action executor for HTTP sessions: records what the kiosk should do next.

    The caller drains the buffer after each request and ships the events back to the
    screen in the response body.
    """

    def __init__(self) -> None:
        self._events: list[dict[str, Any]] = []
        self._logger = get_logger(__name__)

    async def execute(self, result: ResolutionResult) -> None:
        self._events.append({"type": "action", "payload": result.to_dict()})

    async def listening(self, partial_text: str) -> None:
        self._events.append({"type": "listening", "payload": {"text": partial_text}})

    async def report_error(self, code: str, message: str) -> None:
        self._logger.info("executor.error", code=code)
        self._events.append({"type": "error", "payload": {"code": code, "message": message}})

    def drain(self) -> list[dict[str, Any]]:
        events, self._events = self._events, []
        return events


__all__ = ["BufferedExecutor"]
