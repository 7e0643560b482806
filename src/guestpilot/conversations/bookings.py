"""Mirror platform reservations into local bookings."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import UTC, datetime

from sqlalchemy.exc import IntegrityError

from guestpilot.core.db.models import Booking, Conversation, Tenant
from guestpilot.integrations.normalize import Reservation

from .store import ConversationStore

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class RecordedReservation:
    booking: Booking
    conversation: Conversation | None
    cancelled_messages: int = 0


class BookingRecorder:
    """Upsert bookings for reservations and keep their conversation in place."""

    def __init__(self, store: ConversationStore) -> None:
        self._store = store

    def record(
        self,
        tenant: Tenant,
        reservation: Reservation,
        *,
        hostaway_conversation_id: str | None = None,
    ) -> RecordedReservation:
        booking = self._upsert_booking(tenant, reservation)
        conversation = self._store.get_or_create_conversation(
            tenant.id, booking.id, hostaway_conversation_id=hostaway_conversation_id
        )
        if reservation.is_cancelled:
            cancelled = self._store.cancel_pending_messages(
                tenant.id, conversation.id, reason="Reservation cancelled"
            )
            logger.info(
                "reservation cancelled; pending messages cancelled",
                extra={
                    "tenant_id": str(tenant.id),
                    "reservation_id": reservation.id,
                    "cancelled": cancelled,
                },
            )
            return RecordedReservation(booking, conversation, cancelled)
        return RecordedReservation(booking, conversation)

    def _upsert_booking(self, tenant: Tenant, reservation: Reservation) -> Booking:
        session = self._store.session
        booking = self._store.find_booking(tenant.id, reservation.id)
        if booking is None:
            booking = Booking(tenant_id=tenant.id, external_id=reservation.id)
            try:
                with session.begin_nested():
                    session.add(booking)
            except IntegrityError:
                booking = self._store.find_booking(tenant.id, reservation.id)
                if booking is None:
                    raise

        booking.listing_external_id = reservation.listing_id or booking.listing_external_id
        booking.guest_name = reservation.guest_name or booking.guest_name
        booking.guest_phone = reservation.guest_phone or booking.guest_phone
        booking.status = reservation.status or booking.status
        booking.check_in_at = reservation.arrival or booking.check_in_at
        booking.check_out_at = reservation.departure or booking.check_out_at
        booking.metadata_json = dict(reservation.raw)
        booking.updated_at = datetime.now(tz=UTC)
        session.add(booking)
        session.flush()
        return booking
