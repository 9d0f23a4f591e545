from __future__ import annotations

from setu.intent.tables import LookupEntry, PhraseTable
from setu.lang.normalizer import tokens
from setu.orchestrator.events import ResolutionResult
from setu.telemetry.logging import get_logger


class QuickMatchResolver:
    """Constant-table command lookup.

    Two passes over the phrase table: a prefix pass over the first ``max_prefix_tokens``
    words (longest window first), then a contiguous-token substring pass over every key,
    longest key first. The first hit wins. No I/O, safe to call on every fragment.
    """

    def __init__(self, table: PhraseTable, fallback_language: str = "en", max_prefix_tokens: int = 3) -> None:
        self._table = table
        self._fallback_language = fallback_language
        self._max_prefix_tokens = max_prefix_tokens
        self._logger = get_logger(__name__)

    @property
    def table(self) -> PhraseTable:
        return self._table

    def resolve(self, cleaned: str, lang: str) -> ResolutionResult | None:
        words = tokens(cleaned)
        if not words:
            return None

        entry = self._prefix_match(words)
        strategy = "prefix"
        if entry is None:
            entry = self._substring_match(words)
            strategy = "substring"
        if entry is None:
            return None

        self._logger.debug(
            "quick_match.hit",
            phrase=entry.phrase,
            action=entry.action.value,
            strategy=strategy,
        )
        return ResolutionResult(
            action=entry.action,
            response_text=entry.response_for(lang, self._fallback_language),
            layer="QUICK",
            immediate=True,
            params=dict(entry.params),
            text=cleaned,
            is_complete=True,
            language=lang,
        )

    def _prefix_match(self, words: list[str]) -> LookupEntry | None:
        for length in range(min(self._max_prefix_tokens, len(words)), 0, -1):
            entry = self._table.get(" ".join(words[:length]))
            if entry is not None:
                return entry
        return None

    def _substring_match(self, words: list[str]) -> LookupEntry | None:
        for entry in self._table.longest_first():
            phrase_words = entry.phrase.split()
            width = len(phrase_words)
            if width > len(words):
                continue
            for start in range(len(words) - width + 1):
                if words[start : start + width] == phrase_words:
                    return entry
        return None


__all__ = ["QuickMatchResolver"]
