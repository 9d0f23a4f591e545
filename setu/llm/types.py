from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Literal

from setu.orchestrator.events import ActionKind


@dataclass(slots=True)
class ChatMessage:
    role: Literal["user", "assistant"]
    content: str


@dataclass(slots=True)
class ChatResponse:
    text: str
    raw: dict[str, Any] = field(default_factory=dict)


@dataclass(slots=True)
class RemoteAnswer:
    answer_text: str
    action: ActionKind = ActionKind.INFORM
    language: str = "en"
    intent: str | None = None
    action_key: str | None = None
    params: dict[str, Any] = field(default_factory=dict)


class ChatProvider:
    name: str

    async def chat(
        self,
        prompt: str,
        system: str,
        history: list[ChatMessage] | None = None,
        json_mode: bool = True,
    ) -> ChatResponse:
        raise NotImplementedError

    async def aclose(self) -> None:
        return None
