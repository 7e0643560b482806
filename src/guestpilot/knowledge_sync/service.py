"""Mine historical Hostaway conversations into knowledge-base documents."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import TypeVar

from guestpilot.core.config import KnowledgeSyncSettings
from guestpilot.core.db.models import Tenant
from guestpilot.core.errors import CoreError, IntegrationError, RateLimitError, ValidationError
from guestpilot.core.metrics import KNOWLEDGE_DOCUMENTS_SYNCED
from guestpilot.integrations.hostaway import PlatformClient
from guestpilot.rag.knowledge import KnowledgeStore
from guestpilot.utils.retry import exponential_backoff

from .extraction import (
    MIN_DOCUMENT_LENGTH,
    ThreadMessage,
    extract_qa_pairs,
    sort_chronologically,
    usable_messages,
)
from .progress import SyncProgress, SyncProgressStore

logger = logging.getLogger(__name__)

T = TypeVar("T")
Sleeper = Callable[[float], Awaitable[None]]


@dataclass(slots=True, frozen=True)
class SyncResult:
    success: bool
    documents_created: int
    message: str
    partial: bool = False


@dataclass(slots=True)
class _Thread:
    conversation_id: str
    messages: list[ThreadMessage]


@dataclass(slots=True)
class _Run:
    tenant: Tenant
    user_id: str
    total: int = 0
    documents_created: int = 0
    partial: bool = False
    threads: dict[str, list[_Thread]] = field(default_factory=dict)


class KnowledgeSyncService:
    """Batch job turning guest/host exchanges into Q&A documents.

    Progress is published to ``progress`` keyed by the triggering user. Rate
    limits are retried with exponential backoff a bounded number of times; when
    the budget runs out the run continues with what it has and reports itself
    as partial.
    """

    def __init__(
        self,
        platform: PlatformClient,
        knowledge: KnowledgeStore,
        progress: SyncProgressStore,
        settings: KnowledgeSyncSettings,
        *,
        sleep: Sleeper = asyncio.sleep,
    ) -> None:
        self._platform = platform
        self._knowledge = knowledge
        self._progress = progress
        self._settings = settings
        self._sleep = sleep

    async def run(self, tenant: Tenant, user_id: str, limit: int | None = None) -> SyncResult:
        if not tenant.encrypted_hostaway_access_token:
            raise ValidationError("Hostaway integration is not configured")

        await self._progress.save(user_id, SyncProgress())
        run = _Run(tenant=tenant, user_id=user_id)
        try:
            reservation_ids = await self._collect_reservation_ids(run)
            if limit is not None and limit > 0:
                reservation_ids = reservation_ids[:limit]
            run.total = len(reservation_ids)
            await self._report(
                run, 0, f"Starting sync of {run.total} reservations..."
            )
            await self._fetch_threads(run, reservation_ids)
            await self._create_documents(run)
        except Exception as exc:
            await self._progress.delete(user_id)
            logger.exception(
                "knowledge sync failed", extra={"tenant_id": str(tenant.id), "user_id": user_id}
            )
            if isinstance(exc, CoreError):
                raise
            raise IntegrationError(f"Failed to sync conversations: {exc}") from exc

        verb = "Partially synced" if run.partial else "Successfully synced"
        message = f"{verb} {run.documents_created} conversations to knowledge base"
        await self._progress.save(
            user_id,
            SyncProgress.snapshot(
                run.total,
                run.total,
                run.documents_created,
                message,
                completed=True,
                partial=run.partial,
            ),
        )
        logger.info(
            "knowledge sync finished",
            extra={
                "tenant_id": str(tenant.id),
                "reservations": run.total,
                "documents_created": run.documents_created,
                "partial": run.partial,
            },
        )
        return SyncResult(
            success=True,
            documents_created=run.documents_created,
            message=message,
            partial=run.partial,
        )

    async def _collect_reservation_ids(self, run: _Run) -> list[str]:
        page_size = self._settings.page_size
        reservation_ids: dict[str, None] = {}
        offset = 0
        pages = 0
        conversations_seen = 0
        while pages < self._settings.max_pages:
            if pages:
                await self._sleep(self._settings.page_delay_seconds)
            page = await self._rate_limited(
                run,
                lambda: self._platform.list_conversations(
                    run.tenant, limit=page_size, offset=offset, include_resources=1
                ),
                f"conversation page at offset {offset}",
            )
            if not page:
                break
            pages += 1
            conversations_seen += len(page)
            for conversation in page:
                if conversation.reservation_id:
                    reservation_ids.setdefault(conversation.reservation_id, None)
            if len(page) < page_size:
                break
            offset += page_size
        else:
            logger.info(
                "conversation page safety cap reached",
                extra={"pages": pages, "conversations": conversations_seen},
            )

        logger.info(
            "conversation pages fetched",
            extra={
                "pages": pages,
                "conversations": conversations_seen,
                "reservations": len(reservation_ids),
            },
        )
        return list(reservation_ids)

    async def _fetch_threads(self, run: _Run, reservation_ids: list[str]) -> None:
        interval = self._settings.progress_interval
        for index, reservation_id in enumerate(reservation_ids, start=1):
            if index % interval == 0 or index == run.total:
                await self._report(
                    run, index, f"Fetching conversations: {index}/{run.total}"
                )
            if index % self._settings.batch_size == 0:
                await self._sleep(self._settings.batch_delay_seconds)

            try:
                conversations = await self._rate_limited(
                    run,
                    lambda: self._platform.list_conversations(
                        run.tenant,
                        reservation_id=reservation_id,
                        limit=self._settings.page_size,
                        include_resources=1,
                    ),
                    f"conversations for reservation {reservation_id}",
                )
            except Exception as exc:
                logger.warning(
                    "failed to fetch reservation conversations",
                    extra={"reservation_id": reservation_id, "error": str(exc)},
                )
                continue

            threads: list[_Thread] = []
            for conversation in conversations or []:
                try:
                    messages = await self._rate_limited(
                        run,
                        lambda: self._platform.get_conversation_messages(
                            run.tenant, conversation.id, include_scheduled=True
                        ),
                        f"messages for conversation {conversation.id}",
                    )
                except Exception as exc:
                    logger.warning(
                        "failed to fetch conversation messages",
                        extra={"conversation_id": conversation.id, "error": str(exc)},
                    )
                    continue
                kept = usable_messages(messages or [], conversation.id)
                if kept:
                    threads.append(_Thread(conversation.id, kept))
            if threads:
                run.threads[reservation_id] = threads

    async def _create_documents(self, run: _Run) -> None:
        interval = self._settings.progress_interval
        processed = 0
        for reservation_id, threads in run.threads.items():
            processed += 1
            if processed % interval == 0 or processed == len(run.threads):
                await self._report(
                    run,
                    processed,
                    f"Processing reservations: {processed}/{run.total} "
                    f"({run.documents_created} documents created)",
                )

            merged = sort_chronologically(
                [message for thread in threads for message in thread.messages]
            )
            pairs = extract_qa_pairs(merged)
            if not pairs:
                continue

            primary = threads[0].conversation_id
            for pair in pairs:
                content = pair.render()
                if len(content.strip()) < MIN_DOCUMENT_LENGTH:
                    continue
                try:
                    await self._knowledge.create_document_from_conversation(
                        run.tenant.id,
                        content,
                        primary,
                        reservation_id,
                        metadata={
                            "hostawayConversationId": primary,
                            "reservationId": reservation_id,
                            "questionIndex": pair.index,
                            "totalPairs": len(pairs),
                            "conversationCount": len(threads),
                            "syncedAt": datetime.now(tz=UTC).isoformat(),
                        },
                    )
                except Exception:
                    logger.exception(
                        "failed to create q&a document",
                        extra={"reservation_id": reservation_id, "question_index": pair.index},
                    )
                    continue
                run.documents_created += 1
                KNOWLEDGE_DOCUMENTS_SYNCED.inc()
                if run.documents_created % interval == 0:
                    await self._report(
                        run,
                        processed,
                        f"Created {run.documents_created} documents from "
                        f"{processed}/{run.total} reservations",
                    )

    async def _rate_limited(
        self, run: _Run, call: Callable[[], Awaitable[T]], what: str
    ) -> T | None:
        """Await ``call``; returns None once the rate-limit retry budget is spent."""

        attempts = self._settings.max_rate_limit_retries
        for attempt in range(1, attempts + 1):
            try:
                return await call()
            except RateLimitError:
                if attempt >= attempts:
                    break
                delay = exponential_backoff(
                    attempt, base=self._settings.rate_limit_base_delay_seconds
                )
                logger.warning(
                    "rate limited during knowledge sync; backing off",
                    extra={"target": what, "attempt": attempt, "delay_seconds": round(delay, 2)},
                )
                await self._sleep(delay)
        logger.warning(
            "rate limit retries exhausted; continuing with partial data",
            extra={"target": what, "attempts": attempts},
        )
        run.partial = True
        return None

    async def _report(self, run: _Run, current: int, message: str) -> None:
        await self._progress.save(
            run.user_id,
            SyncProgress.snapshot(
                current, run.total, run.documents_created, message, partial=run.partial
            ),
        )
