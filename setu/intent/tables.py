from __future__ import annotations

import functools
from collections.abc import Iterator, Mapping
from dataclasses import dataclass, field
from pathlib import Path
from types import MappingProxyType
from typing import Any

import yaml

from setu.config import data_dir
from setu.lang.normalizer import normalize
from setu.orchestrator.events import ActionKind


class TableError(ValueError):
    """Raised when a phrase or keyword table cannot be loaded."""


@dataclass(frozen=True, slots=True)
class LookupEntry:
    phrase: str
    action: ActionKind
    responses: Mapping[str, str] = field(default_factory=dict)
    params: Mapping[str, Any] = field(default_factory=dict)

    @property
    def token_count(self) -> int:
        return len(self.phrase.split())

    def response_for(self, lang: str, fallback: str = "en") -> str:
        return self.responses.get(lang) or self.responses.get(fallback) or ""


class PhraseTable:
    """Read-only mapping of normalized phrase -> :class:`LookupEntry`.

    Insertion order is preserved and doubles as the tie-break between phrases with the
    same token count.
    """

    def __init__(self, entries: list[LookupEntry]) -> None:
        by_phrase: dict[str, LookupEntry] = {}
        for entry in entries:
            if entry.phrase in by_phrase:
                raise TableError(f"Duplicate phrase '{entry.phrase}' in phrase table")
            by_phrase[entry.phrase] = entry
        self._entries = MappingProxyType(by_phrase)
        # Stable sort: registration order survives within equal token counts.
        self._longest_first = tuple(sorted(by_phrase.values(), key=lambda item: item.token_count, reverse=True))

    def get(self, phrase: str) -> LookupEntry | None:
        return self._entries.get(phrase)

    def longest_first(self) -> tuple[LookupEntry, ...]:
        return self._longest_first

    def __contains__(self, phrase: object) -> bool:
        return phrase in self._entries

    def __iter__(self) -> Iterator[LookupEntry]:
        return iter(self._entries.values())

    def __len__(self) -> int:
        return len(self._entries)

    @classmethod
    def from_mapping(cls, raw: Mapping[str, Any]) -> "PhraseTable":
        groups = raw.get("entries")
        if not isinstance(groups, list):
            raise TableError("phrase table must define an 'entries' list")

        entries: list[LookupEntry] = []
        for index, group in enumerate(groups):
            if not isinstance(group, Mapping):
                raise TableError(f"entry #{index} must be a mapping")
            try:
                action = ActionKind.parse(str(group.get("action", "")))
            except ValueError as exc:
                raise TableError(f"entry #{index}: {exc}") from None
            responses = {str(lang): str(text) for lang, text in (group.get("responses") or {}).items()}
            params = dict(group.get("params") or {})
            phrases = group.get("phrases") or []
            if not phrases:
                raise TableError(f"entry #{index} ({action.value}) lists no phrases")
            for phrase in phrases:
                key = normalize(str(phrase))
                if not key:
                    raise TableError(f"entry #{index} ({action.value}) has an empty phrase")
                entries.append(
                    LookupEntry(
                        phrase=key,
                        action=action,
                        responses=MappingProxyType(responses),
                        params=MappingProxyType(params),
                    )
                )
        return cls(entries)


def read_yaml(path: Path) -> dict[str, Any]:
    if not path.exists():
        raise FileNotFoundError(path)
    try:
        raw = yaml.safe_load(path.read_text(encoding="utf-8"))
    except yaml.YAMLError as exc:
        raise TableError(f"{path.name} is not valid YAML: {exc}") from exc
    if not isinstance(raw, dict):
        raise TableError(f"{path.name} must define a mapping")
    return raw


def load_phrase_table(path: Path) -> PhraseTable:
    return PhraseTable.from_mapping(read_yaml(path))


@functools.lru_cache(maxsize=1)
def default_phrase_table() -> PhraseTable:
    return load_phrase_table(data_dir() / "phrases.yml")


__all__ = [
    "LookupEntry",
    "PhraseTable",
    "TableError",
    "default_phrase_table",
    "load_phrase_table",
    "read_yaml",
]
