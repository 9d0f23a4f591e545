from __future__ import annotations

import asyncio

from setu.orchestrator.events import Utterance
from setu.telemetry.logging import get_logger
from setu.transcription.base import TranscriptSource, TranscriptSourceError

_CLOSED = object()


class QueueTranscriptSource(TranscriptSource):
    """In-process transcript source backed by an :class:`asyncio.Queue`.

    Items are delivered strictly in arrival order, one at a time. A failure published with
    :meth:`fail` is raised from :meth:`receive` at its place in the queue.
    """

    def __init__(self, maxsize: int = 0) -> None:
        self._queue: asyncio.Queue[object] = asyncio.Queue(maxsize=maxsize)
        self._closed = False
        self._logger = get_logger(__name__)

    @property
    def closed(self) -> bool:
        return self._closed

    def pending(self) -> int:
        return self._queue.qsize()

    async def publish(self, utterance: Utterance) -> None:
        if self._closed:
            self._logger.debug("transcript_source.publish_after_close", text=utterance.text)
            return
        await self._queue.put(utterance)

    async def fail(self, error: TranscriptSourceError) -> None:
        if self._closed:
            return
        await self._queue.put(error)

    async def receive(self) -> Utterance | None:
        if self._closed and self._queue.empty():
            return None
        item = await self._queue.get()
        if item is _CLOSED:
            return None
        if isinstance(item, TranscriptSourceError):
            raise item
        return item  # type: ignore[return-value]

    async def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        await self._queue.put(_CLOSED)
