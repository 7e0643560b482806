"""Per-user progress state for knowledge-base sync runs."""

from __future__ import annotations

import json
import logging
import time
from dataclasses import asdict, dataclass
from typing import Any, Protocol

from redis.asyncio import Redis

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class SyncProgress:
    progress: int = 0
    current: int = 0
    total: int = 0
    documents_created: int = 0
    message: str | None = None
    completed: bool = False
    partial: bool = False

    @classmethod
    def snapshot(
        cls,
        current: int,
        total: int,
        documents_created: int,
        message: str | None = None,
        *,
        completed: bool = False,
        partial: bool = False,
    ) -> SyncProgress:
        percent = round(current / total * 100) if total > 0 else 0
        return cls(
            progress=percent,
            current=current,
            total=total,
            documents_created=documents_created,
            message=message,
            completed=completed,
            partial=partial,
        )

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, payload: dict[str, Any]) -> SyncProgress:
        fields = set(cls.__dataclass_fields__)
        return cls(**{key: value for key, value in payload.items() if key in fields})


class SyncProgressStore(Protocol):
    async def save(self, user_id: str, progress: SyncProgress) -> None: ...

    async def get(self, user_id: str) -> SyncProgress | None: ...

    async def delete(self, user_id: str) -> None: ...


class RedisSyncProgressStore:
    """Progress as JSON under a per-user key that expires after ``ttl_seconds``."""

    def __init__(
        self,
        *,
        redis: Redis,
        key_template: str = "guestpilot:sync-progress:{user}",
        ttl_seconds: int = 3600,
    ) -> None:
        self._redis = redis
        self._key_template = key_template
        self._ttl_seconds = ttl_seconds

    def _key(self, user_id: str) -> str:
        return self._key_template.format(user=user_id)

    async def save(self, user_id: str, progress: SyncProgress) -> None:
        await self._redis.set(
            self._key(user_id), json.dumps(progress.to_dict()), ex=self._ttl_seconds
        )

    async def get(self, user_id: str) -> SyncProgress | None:
        raw = await self._redis.get(self._key(user_id))
        if raw is None:
            return None
        try:
            return SyncProgress.from_dict(json.loads(raw))
        except (TypeError, ValueError):
            logger.warning("discarding unreadable sync progress", extra={"user_id": user_id})
            return None

    async def delete(self, user_id: str) -> None:
        await self._redis.delete(self._key(user_id))


class InMemorySyncProgressStore:
    """Single-process store with the same expiry semantics."""

    def __init__(self, *, ttl_seconds: int = 3600) -> None:
        self._ttl_seconds = ttl_seconds
        self._entries: dict[str, tuple[float, SyncProgress]] = {}

    async def save(self, user_id: str, progress: SyncProgress) -> None:
        self._entries[user_id] = (time.monotonic() + self._ttl_seconds, progress)

    async def get(self, user_id: str) -> SyncProgress | None:
        entry = self._entries.get(user_id)
        if entry is None:
            return None
        expires_at, progress = entry
        if expires_at <= time.monotonic():
            del self._entries[user_id]
            return None
        return progress

    async def delete(self, user_id: str) -> None:
        self._entries.pop(user_id, None)
