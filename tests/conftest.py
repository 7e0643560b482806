from __future__ import annotations

from collections.abc import Iterator, Mapping, Sequence
from typing import Any

import pytest
from sqlalchemy.pool import StaticPool
from sqlmodel import Session, SQLModel, create_engine

from guestpilot.core.db import models
from guestpilot.core.domain import Intent, IntentClassification
from guestpilot.core.errors import HostawayError
from guestpilot.integrations.messaging import DeliveryResult, DeliveryStatus
from guestpilot.integrations.normalize import (
    Listing,
    PlatformConversation,
    PlatformMessage,
    Reservation,
)


@pytest.fixture
def session() -> Iterator[Session]:
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    SQLModel.metadata.create_all(engine)
    with Session(engine) as session:
        yield session


@pytest.fixture
def tenant(session: Session) -> models.Tenant:
    tenant = models.Tenant(
        name="Seaside Stays",
        hostaway_account_id="acct-1",
        hostaway_client_id="client-1",
        encrypted_hostaway_access_token="sealed-token",
    )
    session.add(tenant)
    session.commit()
    return tenant


class StubPlatform:
    """In-memory stand-in for the Hostaway client."""

    def __init__(self) -> None:
        self.reservations: dict[str, Reservation] = {}
        self.listings: dict[str, Listing] = {}
        self.conversations: list[PlatformConversation] = []
        self.messages: dict[str, list[PlatformMessage]] = {}
        self.sent: list[tuple[str, str, str]] = []
        self.reservation_calls: list[str] = []

    def add_reservation(self, reservation_id: str, **raw: Any) -> Reservation:
        reservation = Reservation(
            id=reservation_id,
            listing_id=raw.get("listingId"),
            guest_name=raw.get("guestName"),
            guest_phone=raw.get("guestPhone"),
            status=raw.get("status"),
            raw={"id": reservation_id, **raw},
        )
        self.reservations[reservation_id] = reservation
        return reservation

    async def get_reservation(self, tenant, reservation_id: str) -> Reservation:  # noqa: ANN001
        self.reservation_calls.append(reservation_id)
        if reservation_id not in self.reservations:
            raise HostawayError("not found", upstream_status=404)
        return self.reservations[reservation_id]

    async def get_listing(self, tenant, listing_id: str) -> Listing | None:  # noqa: ANN001
        return self.listings.get(listing_id)

    async def list_conversations(
        self,
        tenant,  # noqa: ANN001
        *,
        limit: int | None = None,
        offset: int | None = None,
        reservation_id: str | None = None,
        include_resources: int = 1,
    ) -> list[PlatformConversation]:
        items = [
            conversation
            for conversation in self.conversations
            if reservation_id is None or conversation.reservation_id == reservation_id
        ]
        start = offset or 0
        end = start + limit if limit is not None else None
        return items[start:end]

    async def get_reservation_conversations(
        self, tenant, reservation_id: str  # noqa: ANN001
    ) -> list[PlatformConversation]:
        return await self.list_conversations(tenant, reservation_id=reservation_id)

    async def get_conversation_messages(
        self, tenant, conversation_id: str, *, include_scheduled: bool = True  # noqa: ANN001
    ) -> list[PlatformMessage]:
        return list(self.messages.get(conversation_id, []))

    async def send_conversation_message(
        self, tenant, conversation_id: str, body: str  # noqa: ANN001
    ) -> dict[str, Any]:
        self.sent.append(("conversation", conversation_id, body))
        return {"status": "success"}

    async def send_message_to_guest(
        self, tenant, reservation_id: str, message: str  # noqa: ANN001
    ) -> dict[str, Any]:
        self.sent.append(("reservation", reservation_id, message))
        return {"status": "success"}

    async def close(self) -> None:
        return None


class StubMessaging:
    def __init__(self, *, fail: bool = False) -> None:
        self.fail = fail
        self.whatsapp: list[tuple[str, str]] = []
        self.voice: list[tuple[str, str]] = []

    async def send_whatsapp(self, tenant, to: str, body: str) -> DeliveryResult:  # noqa: ANN001
        self.whatsapp.append((to, body))
        if self.fail:
            return DeliveryResult(
                status=DeliveryStatus.FAILED, channel="whatsapp", to=to, error="rejected"
            )
        return DeliveryResult(status=DeliveryStatus.SENT, channel="whatsapp", to=to, sid="SM1")

    async def send_sms(self, tenant, to: str, body: str) -> DeliveryResult:  # noqa: ANN001
        return DeliveryResult(status=DeliveryStatus.SENT, channel="sms", to=to)

    async def send_voice(self, tenant, to: str, message: str) -> DeliveryResult:  # noqa: ANN001
        self.voice.append((to, message))
        return DeliveryResult(status=DeliveryStatus.SENT, channel="voice", to=to, sid="CA1")


class StubPublisher:
    def __init__(self) -> None:
        self.jobs: list[tuple[str, dict[str, Any]]] = []

    async def enqueue(self, tenant_id: str, payload: Mapping[str, Any]) -> str | None:
        self.jobs.append((tenant_id, dict(payload)))
        return f"job-{len(self.jobs)}"


class StubClassifier:
    def __init__(self, intent: Intent, confidence: float) -> None:
        self.verdict = IntentClassification(intent, confidence, "stub")
        self.calls: list[str] = []

    async def classify(self, message: str) -> IntentClassification:
        self.calls.append(message)
        return self.verdict


class StubChat:
    def __init__(self, reply: str = "", *, error: Exception | None = None) -> None:
        self.reply = reply
        self.error = error
        self.calls: list[dict[str, Any]] = []

    async def complete(self, **kwargs: Any) -> str:
        self.calls.append(kwargs)
        if self.error is not None:
            raise self.error
        return self.reply


class StubEmbedder:
    """Bag-of-vocabulary vectors so related texts score higher."""

    VOCABULARY = ("checkout", "wifi", "parking", "pool", "pets", "breakfast")

    def __init__(self, *, fail: bool = False) -> None:
        self.fail = fail

    @property
    def model(self) -> str:
        return "stub-embedding"

    async def embed_async(self, texts: Sequence[str]) -> list[list[float]]:
        if self.fail:
            raise RuntimeError("embedding backend unavailable")
        return [
            [float(text.lower().count(word)) for word in self.VOCABULARY] for text in texts
        ]


@pytest.fixture
def platform() -> StubPlatform:
    return StubPlatform()


@pytest.fixture
def messaging() -> StubMessaging:
    return StubMessaging()


@pytest.fixture
def publisher() -> StubPublisher:
    return StubPublisher()


@pytest.fixture
def stub_classifier():
    return StubClassifier


@pytest.fixture
def stub_chat():
    return StubChat


@pytest.fixture
def stub_embedder():
    return StubEmbedder
