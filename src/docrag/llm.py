"""Language model clients.

Uses httpx for async HTTP against an OpenAI-compatible chat completions API.
"""

from __future__ import annotations

import logging
from typing import Protocol, runtime_checkable

import httpx

from docrag.errors import GenerationError

LOGGER = logging.getLogger(__name__)

DEFAULT_CHAT_MODEL = "gpt-4o-mini"
DEFAULT_BASE_URL = "https://api.openai.com/v1"


@runtime_checkable
class LanguageModel(Protocol):
    async def generate(self, prompt: str) -> str:
        ...


class OpenAIChatModel:
    """Single-turn chat completion client.

    The HTTP client is owned by the caller and must carry the API base URL.
    """

    def __init__(
        self,
        client: httpx.AsyncClient,
        *,
        api_key: str,
        model: str = DEFAULT_CHAT_MODEL,
        temperature: float = 0.0,
        max_tokens: int | None = None,
    ) -> None:
        if not api_key:
            raise GenerationError("An OpenAI API key is required for chat completions")
        self._client = client
        self._api_key = api_key
        self.model = model
        self.temperature = temperature
        self.max_tokens = max_tokens

    async def generate(self, prompt: str) -> str:
        headers = {"Authorization": f"Bearer {self._api_key}"}
        body = {
            "model": self.model,
            "temperature": self.temperature,
            "messages": [{"role": "user", "content": prompt}],
        }
        if self.max_tokens is not None:
            body["max_tokens"] = self.max_tokens

        try:
            resp = await self._client.post("/chat/completions", headers=headers, json=body)
            resp.raise_for_status()
            data = resp.json()
        except httpx.HTTPStatusError as exc:
            raise GenerationError(
                f"Chat completion failed with status {exc.response.status_code}"
            ) from exc
        except (httpx.HTTPError, ValueError) as exc:
            raise GenerationError(f"Chat completion failed: {exc}") from exc

        try:
            content = data["choices"][0]["message"]["content"]
        except (KeyError, IndexError, TypeError) as exc:
            raise GenerationError("Malformed chat completion response") from exc
        LOGGER.debug("Chat completion usage: %s", data.get("usage"))
        return content or ""
