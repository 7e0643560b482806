"""Dependency wiring for the GuestPilot FastAPI application."""

from __future__ import annotations

import logging
from collections.abc import Iterator
from functools import lru_cache
from typing import Annotated
from uuid import UUID

from fastapi import Depends
from redis.asyncio import Redis
from sqlalchemy.engine import Engine
from sqlmodel import Session

from guestpilot.conversations.store import ConversationStore
from guestpilot.core.config import AppSettings
from guestpilot.core.db.models import Tenant
from guestpilot.core.db.session import create_engine_from_settings, init_db
from guestpilot.core.errors import NotFoundError
from guestpilot.core.security import CredentialCipher, load_cipher
from guestpilot.events.queue import EventPublisher, EventQueuePublisher
from guestpilot.integrations.hostaway import HostawayClient, PlatformClient
from guestpilot.knowledge_sync.progress import RedisSyncProgressStore, SyncProgressStore
from guestpilot.knowledge_sync.service import KnowledgeSyncService
from guestpilot.rag.embeddings import EmbeddingService, build_embedder
from guestpilot.rag.knowledge import KnowledgeStore
from guestpilot.webhooks.service import WebhookService

logger = logging.getLogger(__name__)


@lru_cache
def get_settings() -> AppSettings:
    """Return cached ``AppSettings`` instance."""

    return AppSettings.load()


@lru_cache
def get_engine() -> Engine:
    """Create (or reuse) the SQLModel engine."""

    settings = get_settings()
    engine = create_engine_from_settings(settings)
    init_db(engine)
    return engine


def get_session() -> Iterator[Session]:
    """Provide a SQLModel session per-request."""

    engine = get_engine()
    with Session(engine) as session:
        try:
            yield session
            session.commit()
        except Exception:
            session.rollback()
            raise


@lru_cache
def get_cipher() -> CredentialCipher | None:
    cipher = load_cipher(get_settings().security.encryption_key)
    if cipher is None:
        logger.warning("encryption key missing; tenant credentials cannot be decrypted")
    return cipher


@lru_cache
def get_platform_client() -> PlatformClient:
    """Hostaway client for webhook recovery; waits out one rate limit."""

    settings = get_settings()
    return HostawayClient(settings.hostaway, get_cipher())


@lru_cache
def get_sync_platform_client() -> PlatformClient:
    """Hostaway client for batch sync; rate limits surface to the sync job."""

    settings = get_settings()
    return HostawayClient(settings.hostaway, get_cipher(), rate_limit_retries=0)


@lru_cache
def get_event_publisher() -> EventPublisher:
    """Return a lazily-connected event queue publisher."""

    return EventQueuePublisher(get_settings().event_queue)


@lru_cache
def get_embedding_service() -> EmbeddingService | None:
    embedder = build_embedder(get_settings().openai)
    if embedder is None:
        logger.info("skipping embedding service initialisation; openai api key missing")
    return embedder


@lru_cache
def get_redis_client() -> Redis:
    return Redis.from_url(get_settings().redis.url, decode_responses=True)


@lru_cache
def get_progress_store() -> SyncProgressStore:
    settings = get_settings().knowledge_sync
    return RedisSyncProgressStore(
        redis=get_redis_client(),
        key_template=settings.progress_key_template,
        ttl_seconds=settings.progress_ttl_seconds,
    )


SessionDep = Annotated[Session, Depends(get_session)]
SettingsDep = Annotated[AppSettings, Depends(get_settings)]
EmbeddingDep = Annotated[EmbeddingService | None, Depends(get_embedding_service)]
ProgressStoreDep = Annotated[SyncProgressStore, Depends(get_progress_store)]


def get_conversation_store(session: SessionDep) -> ConversationStore:
    return ConversationStore(session)


def get_webhook_service(
    conversations: Annotated[ConversationStore, Depends(get_conversation_store)],
    publisher: Annotated[EventPublisher, Depends(get_event_publisher)],
    platform: Annotated[PlatformClient, Depends(get_platform_client)],
) -> WebhookService:
    return WebhookService(conversations, publisher, platform)


def get_knowledge_store(session: SessionDep, embedder: EmbeddingDep) -> KnowledgeStore:
    return KnowledgeStore(session, embedder)


KnowledgeStoreDep = Annotated[KnowledgeStore, Depends(get_knowledge_store)]


def get_tenant(tenant_id: UUID, session: SessionDep) -> Tenant:
    """Resolve the ``tenant_id`` path parameter."""

    tenant = session.get(Tenant, tenant_id)
    if tenant is None:
        raise NotFoundError("Tenant not found", details={"tenant_id": str(tenant_id)})
    return tenant


def get_sync_service(
    knowledge: KnowledgeStoreDep,
    progress: ProgressStoreDep,
    platform: Annotated[PlatformClient, Depends(get_sync_platform_client)],
    settings: SettingsDep,
) -> KnowledgeSyncService:
    return KnowledgeSyncService(platform, knowledge, progress, settings.knowledge_sync)


TenantDep = Annotated[Tenant, Depends(get_tenant)]
WebhookServiceDep = Annotated[WebhookService, Depends(get_webhook_service)]
SyncServiceDep = Annotated[KnowledgeSyncService, Depends(get_sync_service)]
