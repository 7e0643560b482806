"""ARQ worker that runs queued platform events through the AI pipeline."""

from __future__ import annotations

import logging
from functools import partial
from typing import Any
from uuid import UUID

from arq.connections import RedisSettings
from prometheus_client import start_http_server

from guestpilot.ai.engine import build_conversation_engine
from guestpilot.ai.llm import build_chat_client
from guestpilot.conversations.store import ConversationStore
from guestpilot.core.config import AppSettings, EventQueueSettings
from guestpilot.core.db.models import Tenant
from guestpilot.core.db.session import session_scope
from guestpilot.core.logging import configure_logging
from guestpilot.core.security import load_cipher
from guestpilot.core.telemetry import init_tracing
from guestpilot.integrations.hostaway import HostawayClient
from guestpilot.integrations.messaging import TwilioMessagingGateway
from guestpilot.rag.embeddings import build_embedder

from .processor import EventProcessor
from .queue import build_redis_settings

logger = logging.getLogger(__name__)

_METRICS_STARTED = False


async def startup(ctx: dict[str, Any]) -> None:
    """Initialise long-lived clients shared by every job."""

    settings = AppSettings.load()
    ctx["settings"] = settings

    configure_logging(settings.log_level)
    init_tracing("guestpilot_worker", settings.telemetry)
    _ensure_metrics_exporter(settings)

    cipher = load_cipher(settings.security.encryption_key)
    ctx["platform"] = HostawayClient(settings.hostaway, cipher)
    ctx["messaging"] = TwilioMessagingGateway(settings.twilio, cipher)
    ctx["chat"] = build_chat_client(settings.openai)
    ctx["embedder"] = build_embedder(settings.openai)
    ctx["session_factory"] = partial(session_scope, settings)


async def shutdown(ctx: dict[str, Any]) -> None:
    """Clean up allocated resources."""

    for key in ("platform", "messaging"):
        client = ctx.get(key)
        if client is not None:
            await client.close()


async def process_platform_event(
    ctx: dict[str, Any], tenant_id: str, payload: dict[str, Any]
) -> dict[str, str]:
    """Process one webhook payload for ``tenant_id``."""

    settings: AppSettings = ctx["settings"]
    with ctx["session_factory"]() as session:
        tenant = session.get(Tenant, UUID(tenant_id))
        if tenant is None:
            logger.warning("event for unknown tenant dropped", extra={"tenant_id": tenant_id})
            return {"status": "skipped"}

        conversations = ConversationStore(session)
        engine = build_conversation_engine(
            conversations,
            settings,
            platform=ctx["platform"],
            messaging=ctx["messaging"],
            chat=ctx.get("chat"),
            embedder=ctx.get("embedder"),
        )
        processor = EventProcessor(
            platform=ctx["platform"],
            messaging=ctx["messaging"],
            conversations=conversations,
            engine=engine,
        )
        handled = await processor.handle_event(tenant, payload)
    return {"status": "processed" if handled else "failed"}


def _ensure_metrics_exporter(settings: AppSettings) -> None:
    global _METRICS_STARTED
    if _METRICS_STARTED or settings.telemetry.metrics_port is None:
        return

    start_http_server(settings.telemetry.metrics_port, addr=settings.telemetry.metrics_host)
    logger.info(
        "prometheus exporter running",
        extra={
            "host": settings.telemetry.metrics_host,
            "port": settings.telemetry.metrics_port,
        },
    )
    _METRICS_STARTED = True


_QUEUE_SETTINGS = EventQueueSettings()


class WorkerSettings:
    """ARQ worker configuration."""

    functions = [process_platform_event]
    on_startup = startup
    on_shutdown = shutdown
    redis_settings: RedisSettings = build_redis_settings(_QUEUE_SETTINGS)
    queue_name = _QUEUE_SETTINGS.queue_name
    max_tries = _QUEUE_SETTINGS.max_tries
    job_timeout = _QUEUE_SETTINGS.job_timeout_seconds
