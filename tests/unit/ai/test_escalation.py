from __future__ import annotations

import pytest

from guestpilot.ai.escalation import EscalationController, resolve_reservation_id
from guestpilot.conversations.bookings import BookingRecorder
from guestpilot.conversations.store import ConversationStore
from guestpilot.core.config import EscalationSettings
from guestpilot.core.domain import ConversationStatus, GuestContext, Intent
from guestpilot.integrations.normalize import Reservation

pytestmark = pytest.mark.unit


class ExplodingMessaging:
    async def send_whatsapp(self, tenant, to, body):  # noqa: ANN001, ANN201
        raise RuntimeError("twilio down")

    async def send_voice(self, tenant, to, message):  # noqa: ANN001, ANN201
        raise RuntimeError("twilio down")


def _setup(session, tenant, messaging, **settings):  # noqa: ANN001, ANN003, ANN202
    store = ConversationStore(session)
    conversation = BookingRecorder(store).record(tenant, Reservation(id="r-1")).conversation
    controller = EscalationController(messaging, store, EscalationSettings(**settings))
    guest = GuestContext(id="g-1", name="Ana", phone="+34600", reservation_id="r-1")
    return controller, conversation, guest


def test_resolve_reservation_id_reads_raw_payload() -> None:
    guest = GuestContext(id="g", raw_payload={"thread": {"reservationId": 77}})

    assert resolve_reservation_id(guest) == "77"


@pytest.mark.asyncio
async def test_emergency_calls_on_call_and_pauses(session, tenant, messaging) -> None:  # noqa: ANN001
    tenant.twilio_on_call_number = "+15550100"
    controller, conversation, guest = _setup(session, tenant, messaging)

    await controller.trigger_emergency_call(tenant, guest, "Smoke in the kitchen")

    assert messaging.voice[0][0] == "+15550100"
    assert "Smoke in the kitchen" in messaging.voice[0][1]
    assert conversation.status == ConversationStatus.PAUSED_BY_HUMAN.value


@pytest.mark.asyncio
async def test_low_confidence_alerts_staff_from_settings(session, tenant, messaging) -> None:  # noqa: ANN001
    controller, conversation, guest = _setup(
        session, tenant, messaging, staff_whatsapp_number="+15550200"
    )

    await controller.notify_low_confidence(tenant, guest, "Is the moon visible?", Intent.UNKNOWN)

    to, body = messaging.whatsapp[0]
    assert to == "+15550200"
    assert "Intent: unknown" in body
    assert "Ana (+34600)" in body
    assert conversation.status == ConversationStatus.PAUSED_BY_HUMAN.value


@pytest.mark.asyncio
async def test_pauses_without_configured_numbers(session, tenant, messaging) -> None:  # noqa: ANN001
    controller, conversation, guest = _setup(session, tenant, messaging)

    await controller.notify_low_confidence(tenant, guest, "??", Intent.UNKNOWN)

    assert messaging.whatsapp == []
    assert conversation.status == ConversationStatus.PAUSED_BY_HUMAN.value


@pytest.mark.asyncio
async def test_delivery_errors_are_swallowed(session, tenant) -> None:  # noqa: ANN001
    controller, conversation, guest = _setup(
        session, tenant, ExplodingMessaging(), on_call_number="+15550100"
    )

    await controller.trigger_emergency_call(tenant, guest, "Flood!")

    assert conversation.status == ConversationStatus.PAUSED_BY_HUMAN.value
