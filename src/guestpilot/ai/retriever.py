"""Gather reservation, listing and knowledge-base context for a reply."""

from __future__ import annotations

import logging
import re
from collections.abc import Sequence
from dataclasses import dataclass, field

from guestpilot.core.db.models import Tenant
from guestpilot.core.domain import Intent
from guestpilot.integrations.hostaway import PlatformClient
from guestpilot.integrations.normalize import Listing, Reservation
from guestpilot.rag.knowledge import KnowledgeSearch, KnowledgeSearchResult

logger = logging.getLogger(__name__)

KNOWLEDGE_INTENTS = frozenset(
    {
        Intent.GENERAL_INFO,
        Intent.SUPPORT_REQUEST,
        Intent.CHECK_IN_INFO,
        Intent.CHECK_OUT_INFO,
        Intent.UNKNOWN,
    }
)
KNOWLEDGE_RESULT_LIMIT = 5
MAX_TOPIC_KEYWORDS = 7

DOMAIN_VOCABULARY = (
    "checkout",
    "check-in",
    "checkin",
    "late checkout",
    "early checkout",
    "arrival",
    "departure",
    "parking",
    "wifi",
    "wifi password",
    "internet",
    "key",
    "keybox",
    "door code",
    "access code",
    "cancel",
    "cancellation",
    "cancelled",
    "payment",
    "pay",
    "paid",
    "refund",
    "bed",
    "beds",
    "room",
    "rooms",
    "breakfast",
    "amenities",
    "emergency",
    "urgent",
)
STOP_WORDS = frozenset(
    {
        "this",
        "that",
        "there",
        "could",
        "would",
        "should",
        "good",
        "morning",
        "evening",
        "hello",
        "hi",
        "thanks",
        "thank",
    }
)
_TOKEN_SPLIT = re.compile(r"[^a-z0-9]+")


@dataclass(slots=True)
class RetrievedContext:
    reservation: Reservation | None = None
    listing: Listing | None = None
    knowledge_entries: list[KnowledgeSearchResult] = field(default_factory=list)


def extract_topic_keywords(message: str) -> list[str]:
    """Domain phrases found in the message first, then other content words."""

    lowered = message.lower()
    found: list[str] = []
    for phrase in DOMAIN_VOCABULARY:
        if phrase in lowered and phrase not in found:
            found.append(phrase)

    others = [
        token
        for token in _TOKEN_SPLIT.split(lowered)
        if len(token) > 3 and token not in STOP_WORDS and token not in found
    ]
    return (found + others)[:MAX_TOPIC_KEYWORDS]


class ContextRetriever:
    def __init__(self, platform: PlatformClient, knowledge: KnowledgeSearch) -> None:
        self._platform = platform
        self._knowledge = knowledge

    async def retrieve(
        self,
        intent: Intent,
        tenant: Tenant,
        *,
        reservation_id: str | None = None,
        message: str | None = None,
        topic_keywords: Sequence[str] | None = None,
    ) -> RetrievedContext:
        context = RetrievedContext()

        if reservation_id:
            context.reservation = await self.fetch_reservation(tenant, reservation_id)
        if context.reservation is not None and context.reservation.listing_id:
            context.listing = await self._fetch_listing(tenant, context.reservation.listing_id)

        if intent in KNOWLEDGE_INTENTS:
            terms = (
                list(topic_keywords)
                if topic_keywords is not None
                else extract_topic_keywords(message or "")
            )
            context.knowledge_entries = await self._query_knowledge(tenant, terms)
        return context

    async def fetch_reservation(self, tenant: Tenant, reservation_id: str) -> Reservation | None:
        try:
            return await self._platform.get_reservation(tenant, reservation_id)
        except Exception as exc:
            logger.warning(
                "failed to fetch reservation for context",
                extra={
                    "tenant_id": str(tenant.id),
                    "reservation_id": reservation_id,
                    "error": str(exc),
                },
            )
            return None

    async def _fetch_listing(self, tenant: Tenant, listing_id: str) -> Listing | None:
        try:
            return await self._platform.get_listing(tenant, listing_id)
        except Exception as exc:
            logger.warning(
                "failed to fetch listing for context",
                extra={"tenant_id": str(tenant.id), "listing_id": listing_id, "error": str(exc)},
            )
            return None

    async def _query_knowledge(
        self, tenant: Tenant, keywords: Sequence[str]
    ) -> list[KnowledgeSearchResult]:
        query = " ".join(keywords)
        try:
            results = await self._knowledge.search(tenant.id, query, KNOWLEDGE_RESULT_LIMIT)
        except Exception:
            logger.exception(
                "knowledge base query failed", extra={"tenant_id": str(tenant.id)}
            )
            return []
        logger.debug(
            "knowledge base query completed",
            extra={"tenant_id": str(tenant.id), "query": query, "results": len(results)},
        )
        return results
