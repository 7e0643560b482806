from __future__ import annotations

import json

import pytest

from guestpilot.knowledge_sync.progress import (
    InMemorySyncProgressStore,
    RedisSyncProgressStore,
    SyncProgress,
)

pytestmark = pytest.mark.unit


def test_snapshot_computes_rounded_percentage() -> None:
    snapshot = SyncProgress.snapshot(1, 3, 4, "Fetching conversations: 1/3")

    assert snapshot.progress == 33
    assert snapshot.to_dict() == {
        "progress": 33,
        "current": 1,
        "total": 3,
        "documents_created": 4,
        "message": "Fetching conversations: 1/3",
        "completed": False,
        "partial": False,
    }


def test_snapshot_with_nothing_to_do_is_zero_percent() -> None:
    assert SyncProgress.snapshot(0, 0, 0).progress == 0


def test_from_dict_ignores_unknown_keys() -> None:
    restored = SyncProgress.from_dict({"progress": 50, "current": 1, "total": 2, "extra": True})

    assert restored == SyncProgress(progress=50, current=1, total=2)


@pytest.mark.asyncio
async def test_in_memory_store_returns_saved_progress() -> None:
    store = InMemorySyncProgressStore(ttl_seconds=60)

    await store.save("user-1", SyncProgress(progress=10))

    assert (await store.get("user-1")).progress == 10


@pytest.mark.asyncio
async def test_in_memory_store_expires_entries() -> None:
    store = InMemorySyncProgressStore(ttl_seconds=0)

    await store.save("user-1", SyncProgress(progress=10))

    assert await store.get("user-1") is None


@pytest.mark.asyncio
async def test_in_memory_store_delete() -> None:
    store = InMemorySyncProgressStore()
    await store.save("user-1", SyncProgress())

    await store.delete("user-1")
    await store.delete("missing")

    assert await store.get("user-1") is None


class FakeRedis:
    def __init__(self) -> None:
        self.values: dict[str, str] = {}
        self.expiry: dict[str, int] = {}

    async def set(self, key: str, value: str, ex: int | None = None) -> None:
        self.values[key] = value
        self.expiry[key] = ex

    async def get(self, key: str) -> str | None:
        return self.values.get(key)

    async def delete(self, key: str) -> None:
        self.values.pop(key, None)


@pytest.mark.asyncio
async def test_redis_store_writes_json_with_ttl() -> None:
    redis = FakeRedis()
    store = RedisSyncProgressStore(redis=redis, key_template="sync:{user}", ttl_seconds=120)

    await store.save("user-1", SyncProgress.snapshot(2, 4, 1, completed=False))

    assert redis.expiry["sync:user-1"] == 120
    assert json.loads(redis.values["sync:user-1"])["progress"] == 50
    assert (await store.get("user-1")).current == 2


@pytest.mark.asyncio
async def test_redis_store_discards_unreadable_values() -> None:
    redis = FakeRedis()
    redis.values["sync:user-1"] = "not json"
    store = RedisSyncProgressStore(redis=redis, key_template="sync:{user}")

    assert await store.get("user-1") is None
