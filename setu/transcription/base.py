from __future__ import annotations

from abc import ABC, abstractmethod

from setu.orchestrator.events import Utterance


class TranscriptSourceError(RuntimeError):
    """The recogniser cannot deliver transcripts (missing capability, denied microphone)."""

    def __init__(self, message: str, code: str = "recognition_unavailable") -> None:
        super().__init__(message)
        self.code = code


class TranscriptSource(ABC):
    @abstractmethod
    async def publish(self, utterance: Utterance) -> None:
        """Hand a recognised transcript to the pipeline."""

    @abstractmethod
    async def fail(self, error: TranscriptSourceError) -> None:
        """Surface a recogniser failure to the consumer."""

    @abstractmethod
    async def receive(self) -> Utterance | None:
        """Wait for the next transcript; ``None`` once the source is closed."""

    @abstractmethod
    async def close(self) -> None:
        """Cleanup resources."""
