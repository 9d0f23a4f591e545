from __future__ import annotations

import httpx

from setu.llm.types import ChatMessage, ChatProvider, ChatResponse
from setu.telemetry.logging import get_logger


class OllamaProvider(ChatProvider):
    def __init__(
        self,
        host: str,
        model: str = "llama3.2",
        timeout: float = 8.0,
        temperature: float = 0.4,
        max_output_tokens: int = 200,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self._host = host.rstrip("/")
        self._model = model
        self._temperature = temperature
        self._max_output_tokens = max_output_tokens
        self._client = client or httpx.AsyncClient(base_url=self._host, timeout=timeout)
        self._logger = get_logger(__name__)
        self.name = "ollama"

    async def chat(
        self,
        prompt: str,
        system: str,
        history: list[ChatMessage] | None = None,
        json_mode: bool = True,
    ) -> ChatResponse:
        messages = [{"role": "system", "content": system}]
        messages.extend({"role": message.role, "content": message.content} for message in history or [])
        messages.append({"role": "user", "content": prompt})
        payload: dict[str, object] = {
            "model": self._model,
            "messages": messages,
            "stream": False,
            "options": {"temperature": self._temperature, "num_predict": self._max_output_tokens},
        }
        if json_mode:
            payload["format"] = "json"
        self._logger.info("ollama.chat", model=self._model, messages=len(messages))
        resp = await self._client.post("/api/chat", json=payload)
        resp.raise_for_status()
        data = resp.json()
        return ChatResponse(text=(data.get("message") or {}).get("content", ""), raw=data)

    async def aclose(self) -> None:
        await self._client.aclose()
