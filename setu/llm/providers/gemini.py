from __future__ import annotations

import itertools
from collections.abc import Sequence

import httpx

from setu.llm.types import ChatMessage, ChatProvider, ChatResponse
from setu.telemetry.logging import get_logger


class GeminiProvider(ChatProvider):
    """Gemini ``generateContent`` client rotating through a pool of API keys."""

    def __init__(
        self,
        api_keys: Sequence[str],
        model: str = "gemini-2.5-flash",
        timeout: float = 8.0,
        temperature: float = 0.4,
        max_output_tokens: int = 200,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        keys = [key for key in api_keys if key]
        if not keys:
            raise ValueError("Gemini provider needs at least one API key")
        self._client = client or httpx.AsyncClient(
            base_url="https://generativelanguage.googleapis.com/v1beta",
            timeout=timeout,
        )
        self._keys = itertools.cycle(keys)
        self._key_count = len(keys)
        self._model = model
        self._temperature = temperature
        self._max_output_tokens = max_output_tokens
        self._logger = get_logger(__name__)
        self.name = "gemini"

    @property
    def key_count(self) -> int:
        return self._key_count

    async def chat(
        self,
        prompt: str,
        system: str,
        history: list[ChatMessage] | None = None,
        json_mode: bool = True,
    ) -> ChatResponse:
        system_text = system
        if history:
            transcript = "\n".join(f"{message.role}: {message.content}" for message in history)
            system_text = f"{system}\n\nRecent conversation:\n{transcript}"

        generation_config: dict[str, object] = {
            "temperature": self._temperature,
            "maxOutputTokens": self._max_output_tokens,
        }
        if json_mode:
            generation_config["responseMimeType"] = "application/json"
        payload = {
            "contents": [
                {
                    "role": "user",
                    "parts": [
                        {"text": system_text},
                        {"text": f'User says: "{prompt}"\n\nRespond with JSON only.'},
                    ],
                }
            ],
            "generationConfig": generation_config,
        }
        resp = await self._client.post(
            f"/models/{self._model}:generateContent",
            params={"key": next(self._keys)},
            json=payload,
        )
        resp.raise_for_status()
        data = resp.json()
        text = ""
        if "candidates" in data and data["candidates"]:
            parts = data["candidates"][0].get("content", {}).get("parts") or [{}]
            text = parts[0].get("text", "")
        self._logger.debug("gemini.chat", model=self._model, chars=len(text))
        return ChatResponse(text=text, raw=data)

    async def aclose(self) -> None:
        await self._client.aclose()
