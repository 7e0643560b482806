"""Dispatch queued platform events to the conversation pipeline."""

from __future__ import annotations

import logging
from collections.abc import Mapping
from typing import Any
from uuid import UUID

from guestpilot.ai.engine import AIReply, ConversationEngine
from guestpilot.conversations.bookings import BookingRecorder, RecordedReservation
from guestpilot.conversations.store import ConversationStore, guest_message_identity
from guestpilot.core.db.models import Conversation, Tenant
from guestpilot.core.domain import ConversationStatus, GuestContext, MessageStatus
from guestpilot.core.payload import read_mapping, read_string
from guestpilot.integrations.hostaway import PlatformClient
from guestpilot.integrations.messaging import MessagingGateway
from guestpilot.integrations.normalize import Reservation, to_reservation

logger = logging.getLogger(__name__)

MESSAGE_EVENTS = frozenset({"message.received", "message_received", "guestmessage"})
RESERVATION_EVENTS = frozenset(
    {
        "reservation.created",
        "reservation_created",
        "reservationcreate",
        "reservation.updated",
        "reservation_updated",
    }
)
HISTORY_CONVERSATION_LIMIT = 100
PAUSED_DELIVERY_ERROR = "Conversation paused by human agent"


class EventProcessor:
    """Handle one platform event for one tenant.

    Instances are bound to a single database session and are created per job.
    """

    def __init__(
        self,
        *,
        platform: PlatformClient,
        messaging: MessagingGateway,
        conversations: ConversationStore,
        engine: ConversationEngine,
    ) -> None:
        self._platform = platform
        self._messaging = messaging
        self._conversations = conversations
        self._recorder = BookingRecorder(conversations)
        self._engine = engine

    async def handle_event(self, tenant: Tenant, payload: Mapping[str, Any]) -> bool:
        """Process ``payload``; returns False when handling failed (already logged)."""

        event = (read_string(payload, ("event",)) or "").lower()
        try:
            if event in MESSAGE_EVENTS:
                await self.handle_incoming_message(tenant, payload)
            elif event in RESERVATION_EVENTS:
                self.record_reservation(tenant, payload)
            else:
                logger.debug(
                    "unhandled platform event",
                    extra={"tenant_id": str(tenant.id), "event": event or "unknown"},
                )
        except Exception:
            logger.exception(
                "failed to process platform event",
                extra={"tenant_id": str(tenant.id), "event": event},
            )
            return False
        return True

    def record_reservation(
        self, tenant: Tenant, payload: Mapping[str, Any]
    ) -> RecordedReservation | None:
        raw = read_mapping(payload, "reservation") or dict(payload)
        reservation = to_reservation(raw)
        if reservation is None:
            logger.warning(
                "reservation event without reservation id",
                extra={"tenant_id": str(tenant.id)},
            )
            return None
        recorded = self._recorder.record(
            tenant,
            reservation,
            hostaway_conversation_id=read_string(raw, ("conversationId", "conversation_id")),
        )
        logger.info(
            "reservation recorded",
            extra={
                "tenant_id": str(tenant.id),
                "reservation_id": reservation.id,
                "booking_id": str(recorded.booking.id),
            },
        )
        return recorded

    async def handle_incoming_message(
        self, tenant: Tenant, payload: Mapping[str, Any]
    ) -> AIReply | None:
        message = read_mapping(payload, "message") or dict(payload)
        body = read_string(message, ("body", "message_text", "content"))
        if not body:
            logger.warning(
                "message event without body", extra={"tenant_id": str(tenant.id)}
            )
            return None

        reservation_id = (
            read_string(payload, ("reservationId", "reservation_id"))
            or read_string(message, ("reservationId", "reservation_id"))
            or read_string(payload, ("reservation.id", "thread.reservationId"))
        )
        if not reservation_id:
            logger.warning(
                "skipping ai reply; message event has no reservation id",
                extra={"tenant_id": str(tenant.id)},
            )
            return None

        reservation = await self._platform.get_reservation(tenant, reservation_id)
        hostaway_conversation_id = read_string(
            payload, ("conversationId", "conversation_id")
        ) or read_string(message, ("conversationId", "conversation_id"))
        recorded = self._recorder.record(
            tenant, reservation, hostaway_conversation_id=hostaway_conversation_id
        )
        conversation = recorded.conversation
        if conversation is None:
            return None
        hostaway_conversation_id = (
            conversation.hostaway_conversation_id or hostaway_conversation_id
        )

        guest_log_id = self._conversations.log_guest_message(
            conversation,
            body,
            {
                "source": "hostaway.event",
                "tenantId": str(tenant.id),
                "reservationId": reservation_id,
                "hostawayConversationId": hostaway_conversation_id,
                **guest_message_identity(message, body),
            },
        )
        answered = self._conversations.find_ai_reply(conversation.id, guest_log_id)
        if answered is not None and answered.status == MessageStatus.SENT.value:
            logger.info(
                "guest message already answered; skipping",
                extra={"conversation_id": str(conversation.id), "log_id": str(answered.id)},
            )
            return None

        await self._import_history(tenant, conversation, reservation_id, guest_log_id)

        guest = self._guest_context(payload, reservation, guest_log_id)
        reply = await self._engine.process_message(tenant, conversation, guest, body)
        if reply is None:
            return None

        if conversation.status == ConversationStatus.PAUSED_BY_HUMAN.value:
            logger.info(
                "conversation paused during processing; reply not delivered",
                extra={"conversation_id": str(conversation.id)},
            )
            self._conversations.mark_message_failed(reply.log_id, PAUSED_DELIVERY_ERROR)
            return reply

        await self._deliver(tenant, conversation, guest, reply, reservation_id)
        return reply

    async def _deliver(
        self,
        tenant: Tenant,
        conversation: Conversation,
        guest: GuestContext,
        reply: AIReply,
        reservation_id: str,
    ) -> None:
        hostaway_conversation_id = conversation.hostaway_conversation_id
        metadata: dict[str, Any] = {
            "deliveryChannel": "twilio" if guest.phone else "hostaway",
            "reservationId": reservation_id,
            "hostawayConversationId": hostaway_conversation_id,
        }
        try:
            if guest.phone:
                result = await self._messaging.send_whatsapp(tenant, guest.phone, reply.message)
                if result.failed:
                    self._conversations.mark_message_failed(
                        reply.log_id, result.error or "WhatsApp delivery failed"
                    )
                    return
                metadata["deliveryStatus"] = result.status.value
                metadata["twilioSid"] = result.sid
            elif hostaway_conversation_id:
                await self._platform.send_conversation_message(
                    tenant, hostaway_conversation_id, reply.message
                )
            else:
                await self._platform.send_message_to_guest(tenant, reservation_id, reply.message)
        except Exception as exc:
            self._conversations.mark_message_failed(reply.log_id, exc)
            raise
        self._conversations.mark_message_sent(reply.log_id, reply.message, metadata)
        logger.info(
            "ai reply delivered",
            extra={
                "tenant_id": str(tenant.id),
                "conversation_id": str(conversation.id),
                "channel": metadata["deliveryChannel"],
            },
        )

    async def _import_history(
        self,
        tenant: Tenant,
        conversation: Conversation,
        reservation_id: str,
        guest_log_id: UUID,
    ) -> None:
        try:
            threads = await self._platform.list_conversations(
                tenant,
                reservation_id=reservation_id,
                limit=HISTORY_CONVERSATION_LIMIT,
            )
            imported = 0
            for thread in threads:
                messages = await self._platform.get_conversation_messages(
                    tenant, thread.id, include_scheduled=True
                )
                imported += self._conversations.import_platform_history(
                    conversation,
                    messages,
                    hostaway_conversation_id=thread.id,
                    exclude_log_id=guest_log_id,
                )
        except Exception as exc:
            logger.warning(
                "conversation history import failed",
                extra={"reservation_id": reservation_id, "error": str(exc)},
            )
            return
        if imported:
            logger.debug(
                "conversation history imported",
                extra={"conversation_id": str(conversation.id), "imported": imported},
            )

    @staticmethod
    def _guest_context(
        payload: Mapping[str, Any], reservation: Reservation, guest_log_id: Any
    ) -> GuestContext:
        return GuestContext(
            id=read_string(payload, ("guestId", "guest_id", "guest.id"))
            or reservation.lookup("guestId", "guest_id", "guest.id")
            or reservation.id,
            name=read_string(payload, ("guestName", "guest_name", "guest.name"))
            or reservation.guest_name,
            phone=read_string(
                payload, ("guestPhone", "guest_phone", "guest.phone", "guest.contact.phone")
            )
            or reservation.guest_phone,
            reservation_id=reservation.id,
            raw_payload=dict(payload),
            guest_message_log_id=guest_log_id,
        )
