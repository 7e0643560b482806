"""Chat-completion client shared by the classifier and the reply generator."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Protocol

from guestpilot.core.config import OpenAISettings

logger = logging.getLogger(__name__)


class ChatClient(Protocol):
    async def complete(
        self,
        *,
        model: str,
        system: str,
        user: str | None = None,
        temperature: float,
        max_tokens: int,
    ) -> str: ...


@dataclass(slots=True)
class ChatCompletionClient:
    """Lazy ``AsyncOpenAI`` wrapper returning the first choice's text."""

    settings: OpenAISettings
    _client: Any | None = None

    async def complete(
        self,
        *,
        model: str,
        system: str,
        user: str | None = None,
        temperature: float,
        max_tokens: int,
    ) -> str:
        messages = [{"role": "system", "content": system}]
        if user:
            messages.append({"role": "user", "content": user})
        client = self._load_client()
        response = await client.chat.completions.create(
            model=model,
            messages=messages,
            temperature=temperature,
            max_tokens=max_tokens,
        )
        if not response.choices:
            return ""
        return (response.choices[0].message.content or "").strip()

    def _load_client(self) -> Any:
        if not self.settings.api_key:
            raise RuntimeError("openai api_key must be provided for chat completions")
        if self._client is None:
            from openai import AsyncOpenAI

            self._client = AsyncOpenAI(
                api_key=self.settings.api_key,
                timeout=self.settings.timeout_seconds,
            )
        return self._client


def build_chat_client(settings: OpenAISettings) -> ChatCompletionClient | None:
    if not settings.enabled:
        logger.info("openai api key missing; using deterministic classifier and templates")
        return None
    return ChatCompletionClient(settings)
