from __future__ import annotations

import pytest
from sqlmodel import select

from guestpilot.ai.engine import ConversationEngine
from guestpilot.ai.escalation import EscalationController
from guestpilot.ai.generator import TemplateResponseGenerator
from guestpilot.ai.retriever import ContextRetriever
from guestpilot.conversations.store import ConversationStore
from guestpilot.core.config import EscalationSettings
from guestpilot.core.db.models import Booking, ConversationLog
from guestpilot.core.domain import ConversationStatus, Intent, MessageStatus, SenderType
from guestpilot.events.processor import PAUSED_DELIVERY_ERROR, EventProcessor
from guestpilot.integrations.normalize import PlatformConversation, PlatformMessage
from guestpilot.rag.knowledge import KnowledgeStore

pytestmark = pytest.mark.unit


@pytest.fixture
def build_processor(session, platform, stub_classifier):  # noqa: ANN001, ANN201
    def build(messaging, intent: Intent = Intent.CHECK_IN_INFO, confidence: float = 0.9):  # noqa: ANN001, ANN202
        store = ConversationStore(session)
        settings = EscalationSettings(confidence_threshold=0.45)
        engine = ConversationEngine(
            classifier=stub_classifier(intent, confidence),
            retriever=ContextRetriever(platform, KnowledgeStore(session).search_strategy),
            generator=TemplateResponseGenerator(),
            escalation=EscalationController(messaging, store, settings),
            conversations=store,
            settings=settings,
        )
        return EventProcessor(
            platform=platform, messaging=messaging, conversations=store, engine=engine
        )

    return build


def _ai_logs(session) -> list[ConversationLog]:  # noqa: ANN001
    return session.exec(
        select(ConversationLog).where(ConversationLog.sender_type == SenderType.AI.value)
    ).all()


@pytest.mark.asyncio
async def test_message_delivered_over_whatsapp_when_phone_known(
    session, tenant, platform, messaging, build_processor  # noqa: ANN001
) -> None:
    platform.add_reservation("r-1", guestName="Ana", guestPhone="+34600", doorCode="4821")
    processor = build_processor(messaging)

    handled = await processor.handle_event(
        tenant,
        {"event": "message.received", "reservationId": "r-1", "id": "m-1", "body": "Door code?"},
    )

    assert handled
    assert messaging.whatsapp[0][0] == "+34600"
    [reply] = _ai_logs(session)
    assert reply.status == MessageStatus.SENT.value
    assert reply.metadata_json["deliveryChannel"] == "twilio"
    assert reply.metadata_json["twilioSid"] == "SM1"


@pytest.mark.asyncio
async def test_message_delivered_through_hostaway_without_phone(
    session, tenant, platform, messaging, build_processor  # noqa: ANN001
) -> None:
    platform.add_reservation("r-1", guestName="Ana")
    processor = build_processor(messaging)

    await processor.handle_event(
        tenant,
        {
            "event": "message.received",
            "reservationId": "r-1",
            "conversationId": "c-1",
            "id": "m-1",
            "body": "When can we check in?",
        },
    )

    assert platform.sent[0][:2] == ("conversation", "c-1")
    [reply] = _ai_logs(session)
    assert reply.metadata_json["deliveryChannel"] == "hostaway"
    assert reply.metadata_json["hostawayConversationId"] == "c-1"


@pytest.mark.asyncio
async def test_reservation_message_used_without_conversation_id(
    tenant, platform, messaging, build_processor  # noqa: ANN001
) -> None:
    platform.add_reservation("r-1")
    processor = build_processor(messaging)

    await processor.handle_incoming_message(
        tenant, {"message": {"reservationId": "r-1", "body": "Check-in time?", "id": "m-2"}}
    )

    assert platform.sent[0][:2] == ("reservation", "r-1")


@pytest.mark.asyncio
async def test_failed_whatsapp_delivery_marks_reply_failed(
    session, tenant, platform, build_processor, messaging  # noqa: ANN001
) -> None:
    messaging.fail = True
    platform.add_reservation("r-1", guestPhone="+34600")
    processor = build_processor(messaging)

    await processor.handle_incoming_message(
        tenant, {"reservationId": "r-1", "id": "m-1", "body": "Door code?"}
    )

    [reply] = _ai_logs(session)
    assert reply.status == MessageStatus.FAILED.value
    assert reply.error_message == "rejected"


@pytest.mark.asyncio
async def test_escalated_reply_is_not_delivered(
    session, tenant, platform, messaging, build_processor  # noqa: ANN001
) -> None:
    platform.add_reservation("r-1", guestPhone="+34600")
    processor = build_processor(messaging, Intent.UNKNOWN, 0.1)

    reply = await processor.handle_incoming_message(
        tenant, {"reservationId": "r-1", "id": "m-1", "body": "Can I bring a llama?"}
    )

    assert reply is not None
    assert messaging.whatsapp == []
    [log] = _ai_logs(session)
    assert log.status == MessageStatus.FAILED.value
    assert log.error_message == PAUSED_DELIVERY_ERROR


@pytest.mark.asyncio
async def test_redelivered_event_does_not_duplicate_reply(
    session, tenant, platform, messaging, build_processor  # noqa: ANN001
) -> None:
    platform.add_reservation("r-1")
    processor = build_processor(messaging)
    payload = {"event": "message.received", "reservationId": "r-1", "id": "m-1", "body": "Check-in?"}

    await processor.handle_event(tenant, payload)
    await processor.handle_event(tenant, payload)

    assert len(_ai_logs(session)) == 1
    assert len(platform.sent) == 1
    guest_logs = session.exec(
        select(ConversationLog).where(ConversationLog.sender_type == SenderType.GUEST.value)
    ).all()
    assert len(guest_logs) == 1


@pytest.mark.asyncio
async def test_history_is_imported_before_reply(
    session, tenant, platform, messaging, build_processor  # noqa: ANN001
) -> None:
    platform.add_reservation("r-1")
    platform.conversations.append(PlatformConversation(id="c-1", reservation_id="r-1"))
    platform.messages["c-1"] = [
        PlatformMessage(id="h-1", body="Is parking included?", is_incoming=True, date="2024-05-01T10:00:00Z"),
        PlatformMessage(id="h-2", body="Yes, one spot.", is_incoming=False, date="2024-05-01T10:05:00Z"),
    ]
    processor = build_processor(messaging)

    await processor.handle_incoming_message(
        tenant, {"reservationId": "r-1", "id": "m-9", "body": "Check-in time?"}
    )

    imported = session.exec(
        select(ConversationLog).where(ConversationLog.sender_type == SenderType.HUMAN.value)
    ).all()
    assert [entry.body for entry in imported] == ["Yes, one spot."]


@pytest.mark.asyncio
async def test_reservation_events_record_bookings(
    session, tenant, messaging, build_processor  # noqa: ANN001
) -> None:
    processor = build_processor(messaging)

    assert await processor.handle_event(
        tenant,
        {"event": "reservation.created", "reservation": {"id": 501, "guestName": "Ana"}},
    )
    booking = session.exec(select(Booking)).one()
    assert booking.external_id == "501"
    assert booking.guest_name == "Ana"


@pytest.mark.asyncio
async def test_cancellation_update_cancels_pending_replies(
    session, tenant, messaging, build_processor  # noqa: ANN001
) -> None:
    processor = build_processor(messaging)
    recorded = processor.record_reservation(tenant, {"id": "r-5"})
    store = ConversationStore(session)
    pending = store.create_pending_ai_reply(recorded.conversation, "See you!", {})

    await processor.handle_event(
        tenant, {"event": "reservation.updated", "id": "r-5", "status": "cancelled"}
    )

    assert session.get(ConversationLog, pending).status == MessageStatus.FAILED.value


@pytest.mark.asyncio
async def test_failures_are_reported_not_raised(tenant, messaging, build_processor) -> None:  # noqa: ANN001
    processor = build_processor(messaging)

    handled = await processor.handle_event(
        tenant, {"event": "message.received", "reservationId": "missing", "body": "hello there"}
    )

    assert handled is False


@pytest.mark.asyncio
async def test_unknown_events_are_ignored(tenant, messaging, build_processor) -> None:  # noqa: ANN001
    assert await build_processor(messaging).handle_event(tenant, {"event": "listing.updated"})


@pytest.mark.asyncio
async def test_conversation_status_after_escalation(
    session, tenant, platform, messaging, build_processor  # noqa: ANN001
) -> None:
    platform.add_reservation("r-1")
    processor = build_processor(messaging, Intent.EMERGENCY, 0.99)

    await processor.handle_incoming_message(
        tenant, {"reservationId": "r-1", "id": "m-1", "body": "Fire in the flat!"}
    )

    conversation = ConversationStore(session).upsert_by_reservation_external_id(tenant.id, "r-1")
    assert conversation.status == ConversationStatus.PAUSED_BY_HUMAN.value
