from __future__ import annotations

import pytest
from sqlmodel import select

from guestpilot.ai.engine import (
    LOW_CONFIDENCE_REPLY,
    ConversationEngine,
    build_conversation_engine,
    message_keywords,
    render_history,
)
from guestpilot.ai.escalation import EscalationController
from guestpilot.ai.generator import TemplateResponseGenerator
from guestpilot.ai.retriever import ContextRetriever
from guestpilot.conversations.bookings import BookingRecorder
from guestpilot.conversations.store import ConversationStore
from guestpilot.core.config import AppSettings, EscalationSettings
from guestpilot.core.db.models import ConversationLog
from guestpilot.core.domain import (
    ConversationStatus,
    GuestContext,
    HistoryMessage,
    Intent,
    MessageStatus,
    SenderType,
)
from guestpilot.integrations.normalize import Reservation

pytestmark = pytest.mark.unit


class SpyRetriever(ContextRetriever):
    def __init__(self, platform) -> None:  # noqa: ANN001
        super().__init__(platform, _NoKnowledge())
        self.calls: list[dict] = []

    async def retrieve(self, intent, tenant, **kwargs):  # noqa: ANN001, ANN003, ANN201
        self.calls.append({"intent": intent, **kwargs})
        return await super().retrieve(intent, tenant, **kwargs)


class _NoKnowledge:
    async def search(self, tenant_id, query, limit=5):  # noqa: ANN001, ANN201
        return []


@pytest.fixture
def pipeline(session, tenant, platform, messaging, stub_classifier):  # noqa: ANN001, ANN201
    def build(intent: Intent, confidence: float):  # noqa: ANN202
        store = ConversationStore(session)
        platform.add_reservation("r-1", guestName="Ana", doorCode="4821")
        conversation = BookingRecorder(store).record(
            tenant, Reservation(id="r-1", guest_name="Ana")
        ).conversation
        guest_log = store.log_guest_message(conversation, "message", {"messageId": "m-1"})
        settings = EscalationSettings(confidence_threshold=0.45)
        retriever = SpyRetriever(platform)
        classifier = stub_classifier(intent, confidence)
        engine = ConversationEngine(
            classifier=classifier,
            retriever=retriever,
            generator=TemplateResponseGenerator(),
            escalation=EscalationController(messaging, store, settings),
            conversations=store,
            settings=settings,
        )
        guest = GuestContext(
            id="g-1", name="Ana", reservation_id="r-1", guest_message_log_id=guest_log
        )
        return engine, conversation, guest, retriever, classifier

    return build


def test_message_keywords_keeps_long_tokens() -> None:
    assert message_keywords("Is the pool heated at night? Also parking, towels, sauna") == [
        "pool",
        "heated",
        "night",
        "also",
        "parking",
    ]


def test_render_history_keeps_latest_entries() -> None:
    history = [
        HistoryMessage(SenderType.GUEST, f"m{index}", f"t{index}") for index in range(4)
    ]

    rendered = render_history(history, 2)

    assert rendered == "\n\nRecent conversation history:\nGuest (t2): m2\nGuest (t3): m3"
    assert render_history([], 2) == ""


@pytest.mark.asyncio
async def test_confident_reply_is_persisted_pending(session, tenant, pipeline) -> None:  # noqa: ANN001
    engine, conversation, guest, retriever, _ = pipeline(Intent.CHECK_IN_INFO, 0.9)

    reply = await engine.process_message(tenant, conversation, guest, "What is the door code?")

    assert reply is not None
    assert "4821" in reply.message
    entry = session.get(ConversationLog, reply.log_id)
    assert entry.status == MessageStatus.PENDING.value
    assert entry.metadata_json["intent"] == "check_in_info"
    assert entry.metadata_json["reservationId"] == "r-1"
    assert entry.metadata_json["guestMessageLogId"] == str(guest.guest_message_log_id)
    assert retriever.calls[0]["topic_keywords"] == ["what", "door", "code"]


@pytest.mark.asyncio
async def test_emergency_never_retrieves_context(session, tenant, pipeline, messaging) -> None:  # noqa: ANN001
    tenant.twilio_on_call_number = "+15550100"
    engine, conversation, guest, retriever, _ = pipeline(Intent.EMERGENCY, 0.95)

    reply = await engine.process_message(tenant, conversation, guest, "There is a fire!")

    assert retriever.calls == []
    assert messaging.voice
    assert "emergency response team" in reply.message
    assert conversation.status == ConversationStatus.PAUSED_BY_HUMAN.value


@pytest.mark.asyncio
async def test_low_confidence_pauses_and_sends_holding_reply(tenant, pipeline) -> None:  # noqa: ANN001
    engine, conversation, guest, retriever, _ = pipeline(Intent.GENERAL_INFO, 0.2)

    reply = await engine.process_message(tenant, conversation, guest, "Hmm?")

    assert reply.message == LOW_CONFIDENCE_REPLY
    assert retriever.calls == []
    assert conversation.status == ConversationStatus.PAUSED_BY_HUMAN.value


@pytest.mark.asyncio
async def test_paused_conversation_gets_no_reply(session, tenant, pipeline) -> None:  # noqa: ANN001
    engine, conversation, guest, _, classifier = pipeline(Intent.GENERAL_INFO, 0.9)
    conversation.status = ConversationStatus.PAUSED_BY_HUMAN.value

    assert await engine.process_message(tenant, conversation, guest, "Hello?") is None
    assert classifier.calls == []
    replies = session.exec(
        select(ConversationLog).where(ConversationLog.sender_type == SenderType.AI.value)
    ).all()
    assert replies == []


@pytest.mark.asyncio
async def test_history_is_added_to_classifier_input(session, tenant, pipeline) -> None:  # noqa: ANN001
    engine, conversation, guest, _, classifier = pipeline(Intent.GENERAL_INFO, 0.9)
    ConversationStore(session).log_guest_message(
        conversation, "Is there parking?", {"messageId": "m-0"}
    )

    await engine.process_message(tenant, conversation, guest, "yes please")

    sent = classifier.calls[0]
    assert sent.startswith("yes please\n\nRecent conversation history:\n")
    assert "Is there parking?" in sent
    assert sent.count("Guest (") == 1


@pytest.mark.asyncio
async def test_build_conversation_engine_without_openai(session, tenant, platform, messaging) -> None:  # noqa: ANN001
    store = ConversationStore(session)
    conversation = BookingRecorder(store).record(tenant, Reservation(id="r-2")).conversation
    engine = build_conversation_engine(
        store, AppSettings.load(openai={"api_key": None}), platform=platform, messaging=messaging
    )

    reply = await engine.process_message(
        tenant, conversation, GuestContext(id="g", reservation_id="r-2"), "late checkout please"
    )

    assert reply is not None
    assert reply.classification.intent is Intent.CHECK_OUT_INFO
    assert "Checkout is by 11:00 AM" in reply.message
