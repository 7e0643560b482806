"""Embedding service backed by the OpenAI embeddings API."""

from __future__ import annotations

import logging
from collections.abc import Sequence
from dataclasses import dataclass
from typing import Any, Protocol

from guestpilot.core.config import OpenAISettings
from guestpilot.core.domain import EMBEDDING_DIMENSIONS

logger = logging.getLogger(__name__)


class Embedder(Protocol):
    """Anything able to embed text batches under a named model."""

    @property
    def model(self) -> str: ...

    async def embed_async(self, texts: Sequence[str]) -> list[list[float]]: ...


@dataclass(slots=True, frozen=True)
class EmbeddingSettings:
    """Runtime settings for embedding generation."""

    openai_api_key: str | None = None
    openai_model: str = "text-embedding-3-small"
    dimensions: int = EMBEDDING_DIMENSIONS
    timeout_seconds: float = 30.0


class EmbeddingService:
    """Async wrapper around ``AsyncOpenAI().embeddings``."""

    def __init__(self, settings: EmbeddingSettings) -> None:
        self._settings = settings
        self._client: Any | None = None

    @property
    def settings(self) -> EmbeddingSettings:
        return self._settings

    @property
    def model(self) -> str:
        return self._settings.openai_model

    async def embed_async(self, texts: Sequence[str]) -> list[list[float]]:
        """Generate one embedding per input text."""

        if not texts:
            return []

        client = self._load_client()
        response = await client.embeddings.create(
            input=list(texts),
            model=self._settings.openai_model,
            dimensions=self._settings.dimensions,
        )
        vectors = [list(map(float, item.embedding)) for item in response.data]
        if len(vectors) != len(texts):
            raise RuntimeError(
                f"embedding count mismatch: expected {len(texts)}, got {len(vectors)}"
            )
        return vectors

    def _load_client(self) -> Any:
        if not self._settings.openai_api_key:
            raise RuntimeError("openai_api_key must be provided for OpenAI embeddings")

        if self._client is None:
            from openai import AsyncOpenAI

            logger.info("initialising openai embeddings client", extra={"model": self.model})
            self._client = AsyncOpenAI(
                api_key=self._settings.openai_api_key,
                timeout=self._settings.timeout_seconds,
            )
        return self._client


def build_embedder(settings: OpenAISettings) -> EmbeddingService | None:
    """Embedding service for the configured model; ``None`` selects keyword search."""

    if not settings.enabled:
        return None
    return EmbeddingService(
        EmbeddingSettings(
            openai_api_key=settings.api_key,
            openai_model=settings.embedding_model,
            timeout_seconds=settings.timeout_seconds,
        )
    )
