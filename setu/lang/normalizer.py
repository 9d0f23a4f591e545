"""Lexical cleanup of raw speech-recognition transcripts.

Two independent stages:

* :func:`normalize` case-folds, trims edge punctuation and collapses adjacent duplicate
  words ("gas gas" -> "gas"), the usual artefact of a recogniser re-emitting a word.
* :func:`strip_fillers` drops pronouns, generic verbs and politeness words that carry no
  intent. Short words that do carry meaning (the possessive "ka" in "bijli ka bill") live
  in an explicit keep-list so that the exclusion stays auditable.
"""

from __future__ import annotations

import functools
from collections.abc import Mapping
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import regex as re
import yaml

from setu.config import data_dir

# Sentence/clause markers trimmed from both ends. The danda (।) is kept so the
# sentence queue can still see it as a terminator.
EDGE_MARKERS = "?!.,:;'\""
_EDGE_RE = re.compile(r"^[\s" + re.escape(EDGE_MARKERS) + r"]+|[\s" + re.escape(EDGE_MARKERS) + r"]+$")
_WS_RE = re.compile(r"\s+")

# Filler words applied regardless of the session language.
COMMON_KEY = "common"


def normalize(raw: Any) -> str:
    if not raw or not isinstance(raw, str):
        return ""

    cleaned = _EDGE_RE.sub("", raw.casefold().strip())
    if not cleaned:
        return ""

    deduped: list[str] = []
    for word in _WS_RE.split(cleaned):
        if not word:
            continue
        if deduped and deduped[-1] == word:
            continue
        deduped.append(word)
    return " ".join(deduped)


@dataclass(frozen=True)
class FillerFilter:
    by_language: Mapping[str, frozenset[str]]
    keep: frozenset[str] = field(default_factory=frozenset)

    @classmethod
    def from_mapping(cls, raw: Mapping[str, Any]) -> "FillerFilter":
        fillers = raw.get("fillers")
        if not isinstance(fillers, Mapping):
            raise ValueError("fillers.yml must define a 'fillers' mapping of language -> words")
        by_language = {
            str(lang).lower(): frozenset(str(word).casefold() for word in (words or []))
            for lang, words in fillers.items()
        }
        keep = frozenset(str(word).casefold() for word in (raw.get("keep") or []))
        return cls(by_language=by_language, keep=keep)

    def words_for(self, lang: str | None) -> frozenset[str]:
        common = self.by_language.get(COMMON_KEY, frozenset())
        if lang and lang in self.by_language:
            return common | self.by_language[lang]
        return frozenset().union(common, *self.by_language.values())

    def strip(self, text: str, lang: str | None = None) -> str:
        if not text:
            return ""
        fillers = self.words_for(lang)
        kept = [word for word in text.split() if word in self.keep or word not in fillers]
        return " ".join(kept)

    def removed(self, text: str, lang: str | None = None) -> list[str]:
        """Words :meth:`strip` would drop; logged by the pipeline at debug level."""
        fillers = self.words_for(lang)
        return [word for word in text.split() if word in fillers and word not in self.keep]


def load_filler_filter(path: Path) -> FillerFilter:
    if not path.exists():
        raise FileNotFoundError(path)
    raw = yaml.safe_load(path.read_text(encoding="utf-8"))
    if not isinstance(raw, dict):
        raise ValueError(f"{path.name} must define a mapping")
    return FillerFilter.from_mapping(raw)


@functools.lru_cache(maxsize=1)
def default_filler_filter() -> FillerFilter:
    return load_filler_filter(data_dir() / "fillers.yml")


def strip_fillers(text: str, lang: str | None = None, filters: FillerFilter | None = None) -> str:
    if not text or not isinstance(text, str):
        return ""
    return (filters or default_filler_filter()).strip(text, lang)


def tokens(text: str) -> list[str]:
    return [word for word in _WS_RE.split(text.strip()) if word] if text else []


__all__ = [
    "EDGE_MARKERS",
    "FillerFilter",
    "default_filler_filter",
    "load_filler_filter",
    "normalize",
    "strip_fillers",
    "tokens",
]
