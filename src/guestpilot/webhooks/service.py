"""Hostaway webhook ingestion: tenant resolution, message logging, queueing."""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import Any
from uuid import UUID

from sqlalchemy.exc import SQLAlchemyError
from sqlmodel import select

from guestpilot.conversations.bookings import BookingRecorder
from guestpilot.conversations.store import (
    MESSAGE_ID_PATHS,
    MESSAGE_TIMESTAMP_PATHS,
    ConversationStore,
    guest_message_identity,
)
from guestpilot.core.db.models import Tenant
from guestpilot.core.errors import (
    BookingNotFoundError,
    UnidentifiedClientError,
    UnknownTenantError,
)
from guestpilot.core.logging import get_logger
from guestpilot.core.metrics import WEBHOOK_EVENTS
from guestpilot.core.payload import read_mapping, read_string
from guestpilot.events.queue import EventPublisher
from guestpilot.integrations.hostaway import PlatformClient

logger = get_logger(__name__)

CLIENT_ID_PATHS = (
    "accountId",
    "account_id",
    "clientId",
    "client_id",
    "hostawayAccountId",
    "data.accountId",
    "data.account_id",
)
MESSAGE_BODY_PATHS = ("body", "message_text", "content")
MESSAGE_EVENT = "message.received"
MESSAGE_OBJECT = "conversationMessage"


@dataclass(slots=True)
class WebhookOutcome:
    event: str
    tenant_id: UUID
    guest_message_log_id: UUID | None = None
    job_id: str | None = None


class WebhookService:
    """Accept one webhook delivery.

    Message events are written to the conversation log before being queued so
    the log reflects the delivery even when the worker is behind. Redelivered
    webhooks collapse onto the same log entry through its idempotency key.
    """

    def __init__(
        self,
        conversations: ConversationStore,
        publisher: EventPublisher,
        platform: PlatformClient,
    ) -> None:
        self._conversations = conversations
        self._publisher = publisher
        self._platform = platform

    async def handle(self, payload: Mapping[str, Any]) -> WebhookOutcome:
        event = read_string(payload, ("event",)) or "unknown"
        identifier = read_string(payload, CLIENT_ID_PATHS)
        logger.info(
            "webhook.received", webhook_event=event, client=identifier, payload=dict(payload)
        )

        if not identifier:
            logger.warning(
                "webhook.rejected", webhook_event=event, reason="missing client identifier"
            )
            raise UnidentifiedClientError()
        tenant = self.resolve_tenant(identifier)
        if tenant is None:
            logger.warning(
                "webhook.rejected", webhook_event=event, client=identifier, reason="unknown"
            )
            raise UnknownTenantError(identifier)

        WEBHOOK_EVENTS.labels(event).inc()
        outcome = WebhookOutcome(event=event, tenant_id=tenant.id)
        data = read_mapping(payload, "data")

        if event == MESSAGE_EVENT or read_string(payload, ("object",)) == MESSAGE_OBJECT:
            reservation_id = read_string(data, ("reservationId", "reservation_id"))
            if not reservation_id:
                logger.info("webhook.message_without_reservation", tenant_id=str(tenant.id))
                return outcome
            message = {"event": MESSAGE_EVENT, **data}
            if not read_string(message, MESSAGE_ID_PATHS) and not read_string(
                message, MESSAGE_TIMESTAMP_PATHS
            ):
                message["receivedAt"] = datetime.now(tz=UTC).isoformat()
            outcome.guest_message_log_id = await self._record_message(
                tenant, event, reservation_id, message
            )
            outcome.job_id = await self._publisher.enqueue(str(tenant.id), message)
        elif event.startswith("reservation."):
            outcome.job_id = await self._publisher.enqueue(
                str(tenant.id), {"event": event, **data}
            )
        else:
            outcome.job_id = await self._publisher.enqueue(str(tenant.id), dict(payload))
        return outcome

    def resolve_tenant(self, identifier: str) -> Tenant | None:
        session = self._conversations.session
        tenant = session.exec(
            select(Tenant).where(Tenant.hostaway_account_id == identifier)
        ).first()
        if tenant is None:
            tenant = session.exec(
                select(Tenant).where(Tenant.hostaway_client_id == identifier)
            ).first()
        return tenant

    async def _record_message(
        self,
        tenant: Tenant,
        event: str,
        reservation_id: str,
        message: Mapping[str, Any],
    ) -> UUID | None:
        conversation_id = read_string(message, ("conversationId", "conversation_id"))
        body = read_string(message, MESSAGE_BODY_PATHS) or ""
        metadata = {
            "source": "hostaway.webhook",
            "event": event,
            "reservationId": reservation_id,
            "hostawayConversationId": conversation_id,
            **guest_message_identity(message, body),
        }

        try:
            return self._write(tenant, reservation_id, conversation_id, body, metadata)
        except BookingNotFoundError:
            logger.info(
                "webhook.booking_missing",
                tenant_id=str(tenant.id),
                reservation_id=reservation_id,
            )
        except Exception as exc:
            self._reset_session(exc)
            logger.error(
                "webhook.log_failed",
                tenant_id=str(tenant.id),
                reservation_id=reservation_id,
                error=str(exc),
            )
            return None

        try:
            reservation = await self._platform.get_reservation(tenant, reservation_id)
            BookingRecorder(self._conversations).record(
                tenant, reservation, hostaway_conversation_id=conversation_id
            )
            log_id = self._write(tenant, reservation_id, conversation_id, body, metadata)
        except Exception as exc:
            self._reset_session(exc)
            logger.error(
                "webhook.recovery_failed",
                tenant_id=str(tenant.id),
                reservation_id=reservation_id,
                error=str(exc),
            )
            return None
        logger.info(
            "webhook.booking_recovered",
            tenant_id=str(tenant.id),
            reservation_id=reservation_id,
        )
        return log_id

    def _write(
        self,
        tenant: Tenant,
        reservation_id: str,
        conversation_id: str | None,
        body: str,
        metadata: Mapping[str, Any],
    ) -> UUID:
        conversation = self._conversations.upsert_by_reservation_external_id(
            tenant.id, reservation_id, hostaway_conversation_id=conversation_id
        )
        return self._conversations.log_guest_message(conversation, body, metadata)

    def _reset_session(self, exc: Exception) -> None:
        if isinstance(exc, SQLAlchemyError):
            self._conversations.session.rollback()
