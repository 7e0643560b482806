"""Human hand-off: staff alerts, on-call voice calls and conversation pausing."""

from __future__ import annotations

import logging

from guestpilot.conversations.store import ConversationStore
from guestpilot.core.config import EscalationSettings
from guestpilot.core.db.models import Tenant
from guestpilot.core.domain import ConversationStatus, GuestContext, Intent
from guestpilot.core.metrics import ESCALATIONS
from guestpilot.core.payload import read_string
from guestpilot.integrations.messaging import MessagingGateway

logger = logging.getLogger(__name__)

GUEST_RESERVATION_PATHS = (
    "reservationId",
    "reservation_id",
    "reservation.id",
    "thread.reservationId",
)


def resolve_reservation_id(guest: GuestContext) -> str | None:
    return guest.reservation_id or read_string(guest.raw_payload, GUEST_RESERVATION_PATHS)


class EscalationController:
    """Notify humans and stop automation for the affected conversation.

    Neither entry point raises: every failure is logged and swallowed so the
    guest still receives the holding reply.
    """

    def __init__(
        self,
        messaging: MessagingGateway,
        conversations: ConversationStore,
        settings: EscalationSettings,
    ) -> None:
        self._messaging = messaging
        self._conversations = conversations
        self._settings = settings

    async def trigger_emergency_call(
        self, tenant: Tenant, guest: GuestContext, message: str
    ) -> None:
        ESCALATIONS.labels("emergency").inc()
        number = tenant.twilio_on_call_number or self._settings.on_call_number
        if not number:
            logger.warning(
                "no on-call number configured; emergency call skipped",
                extra={"tenant_id": str(tenant.id)},
            )
        else:
            voice_message = (
                f"Emergency reported by guest {guest.name or 'guest'} for tenant "
                f"{tenant.name}. Message: {message}"
            )
            try:
                await self._messaging.send_voice(tenant, number, voice_message)
            except Exception:
                logger.exception(
                    "failed to place emergency call", extra={"tenant_id": str(tenant.id)}
                )
        self._pause(tenant, guest)

    async def notify_low_confidence(
        self,
        tenant: Tenant,
        guest: GuestContext,
        message: str,
        intent: Intent,
    ) -> None:
        ESCALATIONS.labels("low_confidence").inc()
        number = tenant.twilio_staff_whatsapp_number or self._settings.staff_whatsapp_number
        if not number:
            logger.warning(
                "no staff whatsapp number configured; low-confidence alert skipped",
                extra={"tenant_id": str(tenant.id)},
            )
        else:
            body = (
                f"Low-confidence AI response alert for tenant {tenant.name}.\n"
                f"Intent: {intent.value}\n"
                f"Guest: {guest.name or 'Unknown'} ({guest.phone or 'no phone'})\n"
                f"Message: {message}"
            )
            try:
                await self._messaging.send_whatsapp(tenant, number, body)
            except Exception:
                logger.exception(
                    "failed to send low-confidence alert", extra={"tenant_id": str(tenant.id)}
                )
        self._pause(tenant, guest)

    def _pause(self, tenant: Tenant, guest: GuestContext) -> None:
        reservation_id = resolve_reservation_id(guest)
        if not reservation_id:
            logger.info(
                "escalation without reservation; conversation not paused",
                extra={"tenant_id": str(tenant.id), "guest_id": guest.id},
            )
            return
        try:
            self._conversations.set_status_by_reservation(
                tenant.id, reservation_id, ConversationStatus.PAUSED_BY_HUMAN
            )
        except Exception:
            logger.exception(
                "failed to pause conversation after escalation",
                extra={"tenant_id": str(tenant.id), "reservation_id": reservation_id},
            )
