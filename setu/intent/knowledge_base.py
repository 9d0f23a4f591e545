"""Keyword-driven knowledge base and the classifiers built on it.

Every rule here follows the same shape: an ordered list of keyword sets, scanned in
declared order, where the first set with any keyword occurring as a substring of the
lowercased utterance wins. :class:`KnowledgeBaseResolver` composes those rules for a
given :class:`~setu.orchestrator.events.ConversationState`.
"""

from __future__ import annotations

import functools
from collections.abc import Mapping
from dataclasses import dataclass
from pathlib import Path
from types import MappingProxyType
from typing import Any

from setu.config import data_dir
from setu.intent.tables import TableError, read_yaml
from setu.orchestrator.events import ActionKind, ConversationState, ResolutionResult
from setu.telemetry.logging import get_logger

REQUIRED_CLASSIFIERS = ("path", "bill_type", "complaint", "complaint_category", "payment_method", "yes_no")
REQUIRED_RESPONSES = ("not_understood", "requires_login")

BILL_ACTIONS = {
    "electricity": ActionKind.NAVIGATE_BILL_ELECTRICITY,
    "water": ActionKind.NAVIGATE_BILL_WATER,
    "gas": ActionKind.NAVIGATE_BILL_GAS,
}
PAYMENT_ACTIONS = {
    "upi": ActionKind.PAY_UPI,
    "card": ActionKind.PAY_CARD,
    "cash": ActionKind.PAY_CASH,
}
CONFIRM_ACTIONS = {"yes": ActionKind.CONFIRM_YES, "no": ActionKind.CONFIRM_NO}


def _keywords(raw: Any, where: str) -> tuple[str, ...]:
    if not isinstance(raw, list):
        raise TableError(f"{where} must be a list of keywords")
    return tuple(str(word).casefold() for word in raw if str(word).strip())


def _texts(raw: Any, where: str) -> Mapping[str, str]:
    if not isinstance(raw, Mapping):
        raise TableError(f"{where} must map language -> text")
    return MappingProxyType({str(lang): str(text) for lang, text in raw.items()})


def _pick(texts: Mapping[str, str] | None, lang: str, fallback: str) -> str | None:
    if not texts:
        return None
    return texts.get(lang) or texts.get(fallback)


@dataclass(frozen=True, slots=True)
class KnowledgeEntry:
    keywords: tuple[str, ...]
    answers: Mapping[str, str]
    states: frozenset[ConversationState] | None = None

    def applies_to(self, state: ConversationState) -> bool:
        return self.states is None or state in self.states

    def matches(self, lowered: str) -> bool:
        return any(keyword in lowered for keyword in self.keywords)


@dataclass(frozen=True, slots=True)
class KeywordClassifier:
    name: str
    labels: tuple[tuple[str, tuple[str, ...]], ...]

    def classify(self, text: str) -> str | None:
        if not text:
            return None
        lowered = text.casefold()
        for label, keywords in self.labels:
            if any(keyword in lowered for keyword in keywords):
                return label
        return None

    @classmethod
    def from_mapping(cls, name: str, raw: Any) -> "KeywordClassifier":
        if not isinstance(raw, Mapping):
            raise TableError(f"classifier '{name}' must map label -> keywords")
        labels = tuple((str(label), _keywords(words, f"classifier '{name}.{label}'")) for label, words in raw.items())
        return cls(name=name, labels=labels)


class KnowledgeBase:
    def __init__(
        self,
        entries: list[KnowledgeEntry],
        classifiers: dict[str, KeywordClassifier],
        auth_required: KeywordClassifier,
        responses: dict[str, Mapping[str, str]],
        guidance: dict[ActionKind, Mapping[str, str]],
        fallback_language: str = "en",
    ) -> None:
        self._entries = tuple(entries)
        self._classifiers = MappingProxyType(dict(classifiers))
        self._auth_required = auth_required
        self._responses = MappingProxyType(dict(responses))
        self._guidance = MappingProxyType(dict(guidance))
        self._fallback_language = fallback_language

    @property
    def fallback_language(self) -> str:
        return self._fallback_language

    def lookup(self, text: str, lang: str, state: ConversationState) -> str | None:
        """Return the first informational answer whose keywords occur in *text*."""
        if not text:
            return None
        lowered = text.casefold()
        for entry in self._entries:
            if entry.applies_to(state) and entry.matches(lowered):
                return _pick(entry.answers, lang, self._fallback_language)
        return None

    def classifier(self, name: str) -> KeywordClassifier:
        try:
            return self._classifiers[name]
        except KeyError:
            raise TableError(f"Unknown classifier '{name}'") from None

    def classify(self, name: str, text: str) -> str | None:
        return self.classifier(name).classify(text)

    def requires_login(self, text: str) -> str | None:
        """Name of the login-only feature mentioned in *text*, if any."""
        return self._auth_required.classify(text)

    def response(self, key: str, lang: str) -> str:
        return _pick(self._responses.get(key), lang, self._fallback_language) or ""

    def guidance(self, action: ActionKind, lang: str) -> str | None:
        return _pick(self._guidance.get(action), lang, self._fallback_language)

    @classmethod
    def from_mapping(cls, raw: Mapping[str, Any], fallback_language: str = "en") -> "KnowledgeBase":
        entries: list[KnowledgeEntry] = []
        for index, item in enumerate(raw.get("common_qa") or []):
            if not isinstance(item, Mapping):
                raise TableError(f"common_qa #{index} must be a mapping")
            states = None
            if item.get("states"):
                try:
                    states = frozenset(ConversationState(str(value)) for value in item["states"])
                except ValueError as exc:
                    raise TableError(f"common_qa #{index}: {exc}") from None
            entries.append(
                KnowledgeEntry(
                    keywords=_keywords(item.get("keywords"), f"common_qa #{index}.keywords"),
                    answers=_texts(item.get("answers"), f"common_qa #{index}.answers"),
                    states=states,
                )
            )

        raw_classifiers = raw.get("classifiers") or {}
        classifiers = {
            str(name): KeywordClassifier.from_mapping(str(name), labels) for name, labels in raw_classifiers.items()
        }
        missing = [name for name in REQUIRED_CLASSIFIERS if name not in classifiers]
        if missing:
            raise TableError(f"knowledge base is missing classifiers: {', '.join(missing)}")

        auth_required = KeywordClassifier.from_mapping("auth_required", raw.get("auth_required") or {})
        for feature, _ in auth_required.labels:
            try:
                ActionKind.parse(f"navigate_{feature}")
            except ValueError as exc:
                raise TableError(f"auth_required: {exc}") from None

        responses = {str(key): _texts(value, f"responses.{key}") for key, value in (raw.get("responses") or {}).items()}
        missing = [key for key in REQUIRED_RESPONSES if key not in responses]
        if missing:
            raise TableError(f"knowledge base is missing responses: {', '.join(missing)}")

        guidance: dict[ActionKind, Mapping[str, str]] = {}
        for key, value in (raw.get("guidance") or {}).items():
            try:
                guidance[ActionKind.parse(str(key))] = _texts(value, f"guidance.{key}")
            except ValueError as exc:
                raise TableError(f"guidance: {exc}") from None

        return cls(entries, classifiers, auth_required, responses, guidance, fallback_language)


def load_knowledge_base(path: Path, fallback_language: str = "en") -> KnowledgeBase:
    return KnowledgeBase.from_mapping(read_yaml(path), fallback_language)


@functools.lru_cache(maxsize=1)
def default_knowledge_base() -> KnowledgeBase:
    return load_knowledge_base(data_dir() / "knowledge_base.yml")


class KnowledgeBaseResolver:
    """Turns a complete utterance into a KB-layer :class:`ResolutionResult`.

    Rules run in this order and the first hit wins:

    1. login-only features (redirect to citizen login unless already authenticated)
    2. informational answers
    3. citizen/guest path, while the kiosk is asking for it
    4. complaint category, inside the complaint flow
    5. payment method, inside the bill flow
    6. yes/no, on confirmation screens
    7. bill type
    8. complaint intent
    """

    def __init__(self, kb: KnowledgeBase) -> None:
        self._kb = kb
        self._logger = get_logger(__name__)

    @property
    def knowledge_base(self) -> KnowledgeBase:
        return self._kb

    def resolve(
        self,
        text: str,
        lang: str,
        state: ConversationState,
        authenticated: bool = False,
    ) -> ResolutionResult | None:
        if not text:
            return None
        kb = self._kb

        feature = kb.requires_login(text)
        if feature is not None:
            if authenticated:
                action = ActionKind.parse(f"navigate_{feature}")
                return self._result(text, lang, action, kb.guidance(action, lang) or "", {"feature": feature})
            self._logger.info("kb.requires_login", feature=feature, state=state.value)
            return self._result(
                text,
                lang,
                ActionKind.NAVIGATE_CITIZEN_LOGIN,
                kb.response("requires_login", lang),
                {"feature": feature, "requires_auth": True},
            )

        answer = kb.lookup(text, lang, state)
        if answer is not None:
            return self._result(text, lang, ActionKind.INFORM, answer)

        if state.choosing_path:
            path = kb.classify("path", text)
            if path == "citizen":
                return self._result(text, lang, ActionKind.NAVIGATE_CITIZEN_LOGIN, kb.response("citizen_chosen", lang))
            if path == "guest":
                return self._result(text, lang, ActionKind.NAVIGATE_GUEST_HOME, kb.response("guest_chosen", lang))

        if state.in_complaint_flow:
            category = kb.classify("complaint_category", text)
            if category is not None:
                return self._result(
                    text,
                    lang,
                    ActionKind.SELECT_COMPLAINT_CATEGORY,
                    kb.response("category_selected", lang),
                    {"category": category},
                )

        if state.in_bill_flow:
            method = kb.classify("payment_method", text)
            if method in PAYMENT_ACTIONS:
                return self._result(
                    text,
                    lang,
                    PAYMENT_ACTIONS[method],
                    kb.response("payment_selected", lang),
                    {"method": method},
                )

        if state in (ConversationState.BILL_PAYMENT, ConversationState.COMPLAINT_DETAILS):
            answer_label = kb.classify("yes_no", text)
            if answer_label in CONFIRM_ACTIONS:
                return self._result(text, lang, CONFIRM_ACTIONS[answer_label], "")

        bill = kb.classify("bill_type", text)
        if bill in BILL_ACTIONS:
            action = BILL_ACTIONS[bill]
            return self._result(text, lang, action, kb.guidance(action, lang) or "", {"bill_type": bill})

        if kb.classify("complaint", text) is not None:
            action = ActionKind.NAVIGATE_COMPLAINT
            return self._result(text, lang, action, kb.guidance(action, lang) or "")

        return None

    def not_understood(self, text: str, lang: str) -> ResolutionResult:
        return self._result(text, lang, ActionKind.UNKNOWN, self._kb.response("not_understood", lang))

    @staticmethod
    def _result(
        text: str,
        lang: str,
        action: ActionKind,
        response_text: str,
        params: dict[str, Any] | None = None,
    ) -> ResolutionResult:
        return ResolutionResult(
            action=action,
            response_text=response_text,
            layer="KB",
            params=params or {},
            text=text,
            is_complete=True,
            language=lang,
        )


__all__ = [
    "KeywordClassifier",
    "KnowledgeBase",
    "KnowledgeBaseResolver",
    "KnowledgeEntry",
    "default_knowledge_base",
    "load_knowledge_base",
]
