from __future__ import annotations

from dataclasses import dataclass

from setu.orchestrator.clock import CLOCK, Clock


@dataclass(slots=True)
class DebouncerState:
    last_input: str = ""
    last_processed_ms: float | None = None


class TranscriptDebouncer:
    """Drops a transcript identical to the previous one when it arrives within the window.

    Recognisers tend to re-emit the same final transcript in quick succession; without this
    gate one utterance would dispatch its action twice.
    """

    def __init__(self, window_ms: int = 300, clock: Clock | None = None) -> None:
        self.window_ms = window_ms
        self._clock = clock or CLOCK
        self._state = DebouncerState()

    @property
    def state(self) -> DebouncerState:
        return self._state

    def should_process(self, text: str) -> bool:
        now = self._clock.monotonic_ms()
        last = self._state.last_processed_ms
        elapsed = None if last is None else now - last
        if text != self._state.last_input or elapsed is None or elapsed > self.window_ms:
            self._state.last_input = text
            self._state.last_processed_ms = now
            return True
        return False

    def reset(self) -> None:
        self._state = DebouncerState()


__all__ = ["DebouncerState", "TranscriptDebouncer"]
