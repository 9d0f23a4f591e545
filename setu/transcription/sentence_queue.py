from __future__ import annotations

from dataclasses import dataclass, field

from setu.orchestrator.clock import CLOCK, Clock

# Full stop (danda, double danda), question and exclamation marks.
SENTENCE_TERMINATORS = frozenset("।॥?!")


@dataclass(slots=True)
class AggregatorState:
    fragments: list[str] = field(default_factory=list)
    last_fragment_ms: float | None = None


class SentenceQueue:
    """Reassembles partial transcripts into complete utterances.

    A pause longer than ``pause_threshold_ms`` finalizes the buffer collected *before*
    the pause; the fragment that arrived after it starts the next buffer. A fragment
    ending in a sentence terminator finalizes the buffer including itself.
    """

    def __init__(self, pause_threshold_ms: int = 1500, clock: Clock | None = None) -> None:
        self.pause_threshold_ms = pause_threshold_ms
        self._clock = clock or CLOCK
        self._state = AggregatorState()

    @property
    def state(self) -> AggregatorState:
        return self._state

    @property
    def buffer(self) -> str:
        return " ".join(self._state.fragments)

    @property
    def fragment_count(self) -> int:
        return len(self._state.fragments)

    def __bool__(self) -> bool:
        return bool(self._state.fragments)

    def add_fragment(self, text: str) -> str | None:
        now = self._clock.monotonic_ms()
        state = self._state

        if state.fragments and state.last_fragment_ms is not None:
            if now - state.last_fragment_ms > self.pause_threshold_ms:
                completed = self.buffer
                state.fragments = [text]
                state.last_fragment_ms = now
                return completed

        state.fragments.append(text)
        state.last_fragment_ms = now

        if text and text[-1] in SENTENCE_TERMINATORS:
            return self.finalize()
        return None

    def finalize(self) -> str | None:
        if not self._state.fragments:
            return None
        completed = self.buffer
        self.reset()
        return completed

    def reset(self) -> None:
        self._state = AggregatorState()


__all__ = ["AggregatorState", "SENTENCE_TERMINATORS", "SentenceQueue"]
