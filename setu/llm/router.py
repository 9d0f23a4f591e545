from __future__ import annotations

import json
from collections import deque
from dataclasses import dataclass
from typing import Any

import httpx
import regex as re

from setu.llm.types import ChatMessage, ChatProvider, RemoteAnswer
from setu.orchestrator.events import ActionKind, ConversationState
from setu.orchestrator.policies import RemotePolicies
from setu.persona import build_system_prompt
from setu.telemetry.logging import get_logger
from setu.telemetry.tracing import get_tracer

_FENCE_RE = re.compile(r"```(?:json)?\s*|```")

NAVIGATE_TARGETS = {
    "electricity": ActionKind.NAVIGATE_BILL_ELECTRICITY,
    "water": ActionKind.NAVIGATE_BILL_WATER,
    "gas": ActionKind.NAVIGATE_BILL_GAS,
    "complaint": ActionKind.NAVIGATE_COMPLAINT,
    "property_tax": ActionKind.NAVIGATE_PROPERTY_TAX,
}
SCREEN_TARGETS = {
    "quick_pay": ActionKind.NAVIGATE_GUEST_HOME,
    "citizen_login": ActionKind.NAVIGATE_CITIZEN_LOGIN,
}
INTENT_ACTIONS = {
    "go_back": ActionKind.GO_BACK,
    "go_home": ActionKind.GO_HOME,
    "greet": ActionKind.ACKNOWLEDGE_GREETING,
}


class RemoteFallbackError(RuntimeError):
    """The remote conversational service could not produce an answer."""


def parse_remote_reply(text: str, default_language: str) -> dict[str, Any]:
    """Decode the model's JSON reply, tolerating code fences and plain prose."""
    cleaned = _FENCE_RE.sub("", text or "").strip()
    try:
        parsed = json.loads(cleaned)
    except json.JSONDecodeError:
        parsed = None
    if not isinstance(parsed, dict):
        return {"language": default_language, "intent": "inform", "action_key": None, "reply": cleaned}
    return parsed


def map_intent(intent: str | None, action_key: str | None) -> ActionKind:
    intent = str(intent or "").strip().lower()
    key = str(action_key or "").strip().lower()
    if intent == "navigate" and key in NAVIGATE_TARGETS:
        return NAVIGATE_TARGETS[key]
    if intent == "set_screen" and key in SCREEN_TARGETS:
        return SCREEN_TARGETS[key]
    return INTENT_ACTIONS.get(intent, ActionKind.INFORM)


@dataclass
class RemoteRouter:
    """Shared provider registry and daily call budget for every session."""

    providers: dict[str, ChatProvider]
    default: str | None = None
    policies: RemotePolicies | None = None

    def __post_init__(self) -> None:
        self._logger = get_logger(__name__)
        self._policies = self.policies or RemotePolicies()
        if self.default is not None and self.default not in self.providers:
            self._logger.warning("remote.router.default_unavailable", provider=self.default)
            self.default = None
        if self.default is None and self.providers:
            self.default = next(iter(self.providers))

    @property
    def remote_policies(self) -> RemotePolicies:
        return self._policies

    def current_provider(self) -> str | None:
        return self.default

    def available(self) -> list[str]:
        return list(self.providers)

    def set_default(self, provider: str) -> str:
        provider = provider.lower()
        if provider not in self.providers:
            raise ValueError(f"Provider '{provider}' not configured")
        self.default = provider
        self._logger.info("remote.router.default_changed", provider=provider)
        return provider

    def select(self) -> ChatProvider | None:
        if self.default is None:
            return None
        if self._policies.budget.exceeded():
            self._logger.warning("remote.router.budget_exceeded", calls=self._policies.budget.calls_today)
            return None
        if self._policies.budget.near_cap():
            self._logger.info("remote.router.budget_near_cap", calls=self._policies.budget.calls_today)
        return self.providers[self.default]

    def register_call(self, provider_name: str) -> None:
        self._policies.budget.register()
        self._logger.debug("remote.router.call_registered", provider=provider_name)

    async def aclose(self) -> None:
        for provider in self.providers.values():
            await provider.aclose()


class RemoteFallback:
    """Per-session access to the remote service, with bounded conversation history."""

    def __init__(self, router: RemoteRouter) -> None:
        self._router = router
        self._policies = router.remote_policies
        self._history: deque[ChatMessage] = deque(maxlen=self._policies.history_turns * 2)
        self._logger = get_logger(__name__)
        self._tracer = get_tracer(__name__)

    @property
    def history(self) -> list[ChatMessage]:
        return list(self._history)

    def clear(self) -> None:
        self._history.clear()

    async def answer(self, utterance: str, language: str, state: ConversationState) -> RemoteAnswer:
        provider = self._router.select()
        if provider is None:
            raise RemoteFallbackError("no remote provider available")

        recent = list(self._history)[-self._policies.prompt_history_messages :]
        system = build_system_prompt(language, state)
        with self._tracer.start_as_current_span("remote.answer") as span:
            span.set_attribute("remote.provider", provider.name)
            span.set_attribute("remote.language", language)
            try:
                response = await provider.chat(utterance, system=system, history=recent, json_mode=True)
            except httpx.HTTPError as exc:
                self._logger.warning("remote.call.failed", provider=provider.name, error=str(exc))
                raise RemoteFallbackError(f"{provider.name} request failed: {exc}") from exc
            except (ValueError, KeyError, TypeError, AttributeError) as exc:
                # 200 with a body that is not the provider's JSON shape (proxy pages, schema drift)
                self._logger.warning("remote.call.malformed", provider=provider.name, error=str(exc))
                raise RemoteFallbackError(f"{provider.name} returned a malformed response: {exc}") from exc
            finally:
                self._router.register_call(provider.name)

        parsed = parse_remote_reply(str(response.text or ""), language)
        reply = str(parsed.get("reply") or "").strip()
        if not reply:
            raise RemoteFallbackError(f"{provider.name} returned an empty reply")

        answer_language = str(parsed.get("language") or language)
        intent = parsed.get("intent")
        action_key = parsed.get("action_key")
        self._history.append(ChatMessage(role="user", content=utterance))
        self._history.append(ChatMessage(role="assistant", content=reply))
        action = map_intent(intent, action_key)
        self._logger.info(
            "remote.call.answered",
            provider=provider.name,
            intent=intent,
            action=action.value,
        )
        return RemoteAnswer(
            answer_text=reply,
            action=action,
            language=answer_language,
            intent=str(intent) if intent is not None else None,
            action_key=str(action_key) if action_key is not None else None,
        )


__all__ = [
    "RemoteFallback",
    "RemoteFallbackError",
    "RemoteRouter",
    "map_intent",
    "parse_remote_reply",
]
