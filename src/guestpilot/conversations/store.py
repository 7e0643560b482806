"""Persistence of conversations and their message logs."""

from __future__ import annotations

import logging
from collections.abc import Iterable, Mapping
from datetime import UTC, datetime
from typing import Any
from uuid import UUID

from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlmodel import Session, select

from guestpilot.core.db.models import Booking, Conversation, ConversationLog
from guestpilot.core.domain import (
    ConversationStatus,
    HistoryMessage,
    MessageDirection,
    MessageStatus,
    SenderType,
)
from guestpilot.core.errors import BookingNotFoundError, NotFoundError
from guestpilot.core.payload import read_string
from guestpilot.integrations.normalize import PlatformMessage, parse_timestamp

logger = logging.getLogger(__name__)

_OPEN_STATUSES = (MessageStatus.PENDING.value, MessageStatus.PROCESSING.value)
MESSAGE_ID_PATHS = ("id", "messageId", "message_id")
MESSAGE_TIMESTAMP_PATHS = ("createdAt", "created_at", "timestamp", "receivedAt")


def _utcnow() -> datetime:
    return datetime.now(tz=UTC)


def guest_message_key(metadata: Mapping[str, Any]) -> str | None:
    """Return the idempotency key for an inbound guest message."""

    message_id = metadata.get("hostawayMessageId") or metadata.get("messageId")
    if message_id:
        return f"msg:{message_id}"
    message_hash = metadata.get("messageHash")
    if message_hash:
        return f"hash:{message_hash}"
    return None


def message_hash(body: str, timestamp: str) -> str:
    """Fallback fingerprint for deliveries that carry no message id."""

    return f"{body[:100]}_{timestamp}"[:100]


def guest_message_identity(message: Mapping[str, Any], body: str) -> dict[str, str]:
    """Identity metadata for an inbound message: its platform id, else a hash."""

    message_id = read_string(message, MESSAGE_ID_PATHS)
    if message_id:
        return {"hostawayMessageId": message_id, "messageId": message_id}
    timestamp = read_string(message, MESSAGE_TIMESTAMP_PATHS) or _utcnow().isoformat()
    return {"messageHash": message_hash(body, timestamp), "messageTimestamp": timestamp}


def _is_same_message(entry: ConversationLog, message: PlatformMessage) -> bool:
    if not message.is_incoming or message.body.strip() != entry.body.strip():
        return False
    metadata = entry.metadata_json or {}
    if metadata.get("messageHash") == message_hash(message.body, message.date or ""):
        return True
    recorded = parse_timestamp(metadata.get("messageTimestamp"))
    return recorded is not None and recorded == message.sent_at


class ConversationStore:
    """Conversation and message-log operations bound to a SQLModel session."""

    def __init__(self, session: Session) -> None:
        self._session = session

    @property
    def session(self) -> Session:
        return self._session

    def find_booking(self, tenant_id: UUID, reservation_id: str) -> Booking | None:
        statement = select(Booking).where(
            Booking.tenant_id == tenant_id, Booking.external_id == reservation_id
        )
        return self._session.exec(statement).first()

    def get_conversation(self, tenant_id: UUID, conversation_id: UUID) -> Conversation:
        conversation = self._session.get(Conversation, conversation_id)
        if conversation is None or conversation.tenant_id != tenant_id:
            raise NotFoundError(
                "Conversation not found", details={"conversation_id": str(conversation_id)}
            )
        return conversation

    def get_or_create_conversation(
        self,
        tenant_id: UUID,
        booking_id: UUID,
        *,
        hostaway_conversation_id: str | None = None,
    ) -> Conversation:
        """Return the booking's conversation, creating it on first use."""

        conversation = self._conversation_for_booking(tenant_id, booking_id)
        if conversation is None:
            conversation = Conversation(
                tenant_id=tenant_id,
                booking_id=booking_id,
                hostaway_conversation_id=hostaway_conversation_id,
            )
            try:
                with self._session.begin_nested():
                    self._session.add(conversation)
            except IntegrityError:
                conversation = self._conversation_for_booking(tenant_id, booking_id)
                if conversation is None:
                    raise
        if hostaway_conversation_id and (
            conversation.hostaway_conversation_id != hostaway_conversation_id
        ):
            conversation.hostaway_conversation_id = hostaway_conversation_id
            conversation.updated_at = _utcnow()
            self._session.add(conversation)
        self._session.flush()
        return conversation

    def upsert_by_reservation_external_id(
        self,
        tenant_id: UUID,
        reservation_id: str,
        *,
        hostaway_conversation_id: str | None = None,
    ) -> Conversation:
        """Resolve the conversation for an external reservation.

        Raises ``BookingNotFoundError`` when no booking mirrors the reservation.
        """

        booking = self.find_booking(tenant_id, reservation_id)
        if booking is None:
            raise BookingNotFoundError(reservation_id)
        return self.get_or_create_conversation(
            tenant_id, booking.id, hostaway_conversation_id=hostaway_conversation_id
        )

    def set_status(
        self, tenant_id: UUID, conversation_id: UUID, status: ConversationStatus
    ) -> None:
        conversation = self.get_conversation(tenant_id, conversation_id)
        conversation.status = status.value
        conversation.updated_at = _utcnow()
        self._session.add(conversation)
        self._session.flush()

    def set_status_by_reservation(
        self, tenant_id: UUID, reservation_id: str, status: ConversationStatus
    ) -> bool:
        """Update the conversation status; returns False when the booking is unknown."""

        booking = self.find_booking(tenant_id, reservation_id)
        if booking is None:
            logger.warning(
                "unable to update conversation status; booking not found",
                extra={"tenant_id": str(tenant_id), "reservation_id": reservation_id},
            )
            return False
        conversation = self.get_or_create_conversation(tenant_id, booking.id)
        if conversation.status != status.value:
            conversation.status = status.value
            conversation.updated_at = _utcnow()
            self._session.add(conversation)
            self._session.flush()
        return True

    def log_guest_message(
        self,
        conversation: Conversation,
        body: str,
        metadata: Mapping[str, Any] | None = None,
    ) -> UUID:
        """Record an inbound guest message, returning the existing id on replays."""

        metadata = dict(metadata or {})
        now = _utcnow()
        return self._insert_once(
            ConversationLog(
                tenant_id=conversation.tenant_id,
                conversation_id=conversation.id,
                sender_type=SenderType.GUEST.value,
                direction=MessageDirection.GUEST.value,
                body=body,
                status=MessageStatus.SENT.value,
                idempotency_key=guest_message_key(metadata),
                actual_sent_at=now,
                metadata_json=metadata,
            )
        )

    def create_pending_ai_reply(
        self,
        conversation: Conversation,
        body: str,
        metadata: Mapping[str, Any] | None = None,
    ) -> UUID:
        """Persist an AI reply awaiting delivery; one reply per guest message."""

        metadata = dict(metadata or {})
        guest_log_id = metadata.get("guestMessageLogId")
        return self._insert_once(
            ConversationLog(
                tenant_id=conversation.tenant_id,
                conversation_id=conversation.id,
                sender_type=SenderType.AI.value,
                direction=MessageDirection.AI.value,
                body=body,
                status=MessageStatus.PENDING.value,
                idempotency_key=f"reply:{guest_log_id}" if guest_log_id else None,
                scheduled_send_at=_utcnow(),
                metadata_json=metadata,
            )
        )

    def find_ai_reply(self, conversation_id: UUID, guest_log_id: UUID) -> ConversationLog | None:
        """Return the reply already created for a guest message, if any."""

        return self._find_by_key(conversation_id, f"reply:{guest_log_id}")

    def mark_message_sent(
        self,
        log_id: UUID,
        body: str | None = None,
        metadata: Mapping[str, Any] | None = None,
    ) -> None:
        entry = self._require_log(log_id)
        if body is not None:
            entry.body = body
        entry.status = MessageStatus.SENT.value
        entry.actual_sent_at = _utcnow()
        entry.error_message = None
        entry.metadata_json = {**(entry.metadata_json or {}), **dict(metadata or {})}
        entry.updated_at = _utcnow()
        self._session.add(entry)
        self._session.flush()

    def mark_message_failed(self, log_id: UUID, error: BaseException | str) -> None:
        entry = self._require_log(log_id)
        entry.status = MessageStatus.FAILED.value
        entry.error_message = str(error)
        entry.updated_at = _utcnow()
        self._session.add(entry)
        self._session.flush()

    def cancel_pending_messages(
        self,
        tenant_id: UUID,
        conversation_id: UUID,
        reason: str = "Cancelled by human operator",
    ) -> int:
        statement = select(ConversationLog).where(
            ConversationLog.tenant_id == tenant_id,
            ConversationLog.conversation_id == conversation_id,
            ConversationLog.status.in_(_OPEN_STATUSES),  # type: ignore[union-attr]
        )
        entries = list(self._session.exec(statement))
        for entry in entries:
            entry.status = MessageStatus.FAILED.value
            entry.error_message = reason
            entry.updated_at = _utcnow()
            self._session.add(entry)
        self._session.flush()
        return len(entries)

    def get_conversation_history_for_ai(
        self,
        conversation_id: UUID,
        limit: int = 10,
        *,
        exclude_log_id: UUID | None = None,
    ) -> list[HistoryMessage]:
        """Return the most recent delivered messages, oldest first.

        Lookup failures degrade to an empty history.
        """

        statement = (
            select(ConversationLog)
            .where(
                ConversationLog.conversation_id == conversation_id,
                ConversationLog.status == MessageStatus.SENT.value,
            )
            .order_by(ConversationLog.created_at.desc())  # type: ignore[union-attr]
            .limit(limit + (1 if exclude_log_id else 0))
        )
        try:
            entries = list(self._session.exec(statement))
        except SQLAlchemyError:
            logger.warning(
                "failed to load conversation history for ai context",
                exc_info=True,
                extra={"conversation_id": str(conversation_id)},
            )
            return []

        history = [
            HistoryMessage(
                sender_type=SenderType(entry.sender_type),
                body=entry.body,
                timestamp=(entry.actual_sent_at or entry.created_at).isoformat(),
            )
            for entry in entries
            if entry.id != exclude_log_id
        ][:limit]
        history.reverse()
        return history

    def import_platform_history(
        self,
        conversation: Conversation,
        messages: Iterable[PlatformMessage],
        *,
        hostaway_conversation_id: str | None = None,
        exclude_log_id: UUID | None = None,
    ) -> int:
        """Copy platform messages into the log; already-known ids are skipped.

        ``exclude_log_id`` names the guest message being processed. A platform
        copy of it (same body and timestamp) is skipped even when that entry
        was logged under a hash key rather than the platform id.
        """

        current = self._session.get(ConversationLog, exclude_log_id) if exclude_log_id else None
        imported = 0
        for message in messages:
            if not message.id or not message.body.strip():
                continue
            if current is not None and _is_same_message(current, message):
                continue
            sent_at = message.sent_at or _utcnow()
            incoming = message.is_incoming
            entry = ConversationLog(
                tenant_id=conversation.tenant_id,
                conversation_id=conversation.id,
                sender_type=(SenderType.GUEST if incoming else SenderType.HUMAN).value,
                direction=(MessageDirection.GUEST if incoming else MessageDirection.STAFF).value,
                body=message.body,
                status=MessageStatus.SENT.value,
                idempotency_key=f"msg:{message.id}",
                actual_sent_at=sent_at,
                created_at=sent_at,
                metadata_json={
                    "source": "hostaway.history",
                    "hostawayMessageId": message.id,
                    "hostawayConversationId": hostaway_conversation_id,
                    "syncedFromHistory": True,
                },
            )
            if self._find_by_key(conversation.id, entry.idempotency_key) is not None:
                continue
            self._insert_once(entry)
            imported += 1
        return imported

    def _conversation_for_booking(
        self, tenant_id: UUID, booking_id: UUID
    ) -> Conversation | None:
        statement = select(Conversation).where(
            Conversation.tenant_id == tenant_id, Conversation.booking_id == booking_id
        )
        return self._session.exec(statement).first()

    def _find_by_key(self, conversation_id: UUID, key: str | None) -> ConversationLog | None:
        if not key:
            return None
        statement = select(ConversationLog).where(
            ConversationLog.conversation_id == conversation_id,
            ConversationLog.idempotency_key == key,
        )
        return self._session.exec(statement).first()

    def _insert_once(self, entry: ConversationLog) -> UUID:
        existing = self._find_by_key(entry.conversation_id, entry.idempotency_key)
        if existing is not None:
            logger.debug(
                "skipping duplicate conversation log",
                extra={"conversation_id": str(entry.conversation_id), "key": entry.idempotency_key},
            )
            return existing.id
        try:
            with self._session.begin_nested():
                self._session.add(entry)
        except IntegrityError:
            existing = self._find_by_key(entry.conversation_id, entry.idempotency_key)
            if existing is None:
                raise
            return existing.id
        return entry.id

    def _require_log(self, log_id: UUID) -> ConversationLog:
        entry = self._session.get(ConversationLog, log_id)
        if entry is None:
            raise NotFoundError("Conversation log not found", details={"log_id": str(log_id)})
        return entry
