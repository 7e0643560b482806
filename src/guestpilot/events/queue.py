"""Async helpers for publishing platform events to the arq worker."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Mapping
from typing import Any, Protocol

from arq import create_pool
from arq.connections import ArqRedis, RedisSettings

from guestpilot.core.config import EventQueueSettings

logger = logging.getLogger(__name__)

PROCESS_EVENT_JOB = "process_platform_event"


class EventPublisher(Protocol):
    async def enqueue(self, tenant_id: str, payload: Mapping[str, Any]) -> str | None: ...


def build_redis_settings(settings: EventQueueSettings) -> RedisSettings:
    return RedisSettings(
        host=settings.redis_host,
        port=settings.redis_port,
        database=settings.redis_db,
        password=settings.redis_password,
    )


class EventQueuePublisher:
    """Publish webhook payloads as ``process_platform_event`` jobs."""

    def __init__(self, settings: EventQueueSettings) -> None:
        self._settings = settings
        self._redis_settings = build_redis_settings(settings)
        self._pool: ArqRedis | None = None
        self._lock = asyncio.Lock()

    async def enqueue(self, tenant_id: str, payload: Mapping[str, Any]) -> str | None:
        """Schedule processing of ``payload`` for ``tenant_id``; returns the job id."""

        pool = await self._ensure_pool()
        job = await pool.enqueue_job(
            PROCESS_EVENT_JOB,
            tenant_id,
            dict(payload),
            _queue_name=self._settings.queue_name,
        )
        if job is None:
            return None
        logger.debug(
            "platform event enqueued",
            extra={"tenant_id": tenant_id, "job_id": job.job_id},
        )
        return job.job_id

    async def close(self) -> None:
        """Close the underlying Redis pool."""

        async with self._lock:
            if self._pool is not None:
                await self._pool.close()
                self._pool = None

    async def _ensure_pool(self) -> ArqRedis:
        if self._pool is not None:
            return self._pool

        async with self._lock:
            if self._pool is None:
                logger.info("connecting to event queue")
                self._pool = await create_pool(
                    self._redis_settings, default_queue_name=self._settings.queue_name
                )
        return self._pool
