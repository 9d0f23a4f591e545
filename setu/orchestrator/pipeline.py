from __future__ import annotations

from setu.intent.quick_match import QuickMatchResolver
from setu.lang.normalizer import FillerFilter, default_filler_filter, normalize, strip_fillers
from setu.orchestrator.clock import CLOCK, Clock
from setu.orchestrator.events import ResolutionResult
from setu.orchestrator.policies import PipelinePolicies
from setu.telemetry.logging import get_logger
from setu.transcription.debounce import TranscriptDebouncer
from setu.transcription.sentence_queue import SentenceQueue


class SpeechPipeline:
    """Per-session sequencing of normalizer, debouncer, quick match and sentence queue.

    Synchronous and not reentrant: one instance belongs to one session and the caller
    serializes calls. Knowledge-base and remote resolution happen in the caller, only
    for results where :attr:`ResolutionResult.needs_resolution` is true.
    """

    def __init__(
        self,
        quick_match: QuickMatchResolver,
        policies: PipelinePolicies | None = None,
        fillers: FillerFilter | None = None,
        clock: Clock | None = None,
    ) -> None:
        self._policies = policies or PipelinePolicies()
        self._clock = clock or CLOCK
        self._quick = quick_match
        self._fillers = fillers
        self._debouncer = TranscriptDebouncer(self._policies.debounce_ms, self._clock)
        self._queue = SentenceQueue(self._policies.pause_threshold_ms, self._clock)
        self._buffer_language: str | None = None
        self._logger = get_logger(__name__)

    @property
    def debouncer(self) -> TranscriptDebouncer:
        return self._debouncer

    @property
    def sentence_queue(self) -> SentenceQueue:
        return self._queue

    @property
    def buffer_language(self) -> str | None:
        """Language hint of the fragments currently buffered, ``None`` when empty."""
        return self._buffer_language if self._queue else None

    def clean(self, raw: object, lang: str | None = None) -> str:
        cleaned = normalize(raw)
        if cleaned and self._policies.strip_fillers:
            stripped = strip_fillers(cleaned, lang, self._fillers)
            if stripped != cleaned:
                filters = self._fillers or default_filler_filter()
                self._logger.debug("pipeline.fillers.stripped", removed=filters.removed(cleaned, lang), text=stripped)
            cleaned = stripped
        return cleaned

    def process(self, raw: object, lang: str) -> ResolutionResult | None:
        cleaned = self.clean(raw, lang)
        if not cleaned:
            return None

        if not self._debouncer.should_process(cleaned):
            self._logger.debug("pipeline.debounced", text=cleaned)
            return ResolutionResult.skip()

        quick = self._quick.resolve(cleaned, lang)
        if quick is not None:
            self._queue.reset()
            self._logger.info("pipeline.quick.hit", action=quick.action.value, text=cleaned, stage="direct")
            return quick

        previous_language = self.buffer_language
        completed = self._queue.add_fragment(cleaned)
        self._buffer_language = lang if self._queue else None
        if completed is not None:
            # a pause emits the older buffer; the new fragment now starts its own
            completed_language = (previous_language or lang) if self._queue else lang
            quick = self._quick.resolve(completed, completed_language)
            if quick is not None:
                self._queue.reset()
                self._logger.info("pipeline.quick.hit", action=quick.action.value, text=completed, stage="utterance")
                return quick
            self._logger.info("pipeline.utterance.complete", text=completed)
            return ResolutionResult.queued(completed, is_complete=True, language=completed_language)

        if self._queue.fragment_count > 1:
            buffered = self._queue.buffer
            quick = self._quick.resolve(buffered, lang)
            if quick is not None:
                self._queue.reset()
                self._logger.info("pipeline.quick.hit", action=quick.action.value, text=buffered, stage="buffer")
                return quick

        return ResolutionResult.queued(cleaned, is_complete=False, language=lang)

    def finalize(self, lang: str | None = None) -> ResolutionResult | None:
        """Flush the sentence queue after the recogniser went quiet.

        Without *lang* the utterance keeps the language of the fragments it was built from.
        """
        lang = lang or self.buffer_language or self._policies.fallback_language
        completed = self._queue.finalize()
        if completed is None:
            return None
        quick = self._quick.resolve(completed, lang)
        if quick is not None:
            return quick
        self._logger.info("pipeline.utterance.flushed", text=completed)
        return ResolutionResult.queued(completed, is_complete=True, language=lang)

    def reset(self) -> None:
        self._debouncer.reset()
        self._queue.reset()


__all__ = ["SpeechPipeline"]
