"""Typed views over raw Hostaway JSON.

Raw platform payloads are converted once, at the integration boundary, into
the dataclasses below. The original mapping is kept in ``raw`` because prompts
and bookkeeping metadata embed it verbatim.
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any

from guestpilot.core.payload import read_string, resolve_path

RESERVATION_ID_PATHS = ("reservationId", "reservation_id", "reservation.id")
CONVERSATION_ID_PATHS = ("id", "conversationId", "conversation_id")
LISTING_ID_PATHS = ("listingId", "listing_id", "listingMapId", "propertyId", "property_id")
_LIST_KEYS = ("result", "results", "items", "data", "conversations")


def parse_timestamp(value: str | None) -> datetime | None:
    """Parse ISO-ish platform timestamps; naive values are treated as UTC."""

    if not value:
        return None
    try:
        parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=UTC)
    return parsed


@dataclass(slots=True, frozen=True)
class Reservation:
    id: str
    listing_id: str | None = None
    guest_name: str | None = None
    guest_phone: str | None = None
    status: str | None = None
    arrival: datetime | None = None
    departure: datetime | None = None
    raw: Mapping[str, Any] = field(default_factory=dict)

    @property
    def is_cancelled(self) -> bool:
        return (self.status or "").lower() in {"cancelled", "canceled"}

    def lookup(self, *paths: str) -> str | None:
        return read_string(self.raw, paths)


@dataclass(slots=True, frozen=True)
class Listing:
    id: str
    name: str | None = None
    raw: Mapping[str, Any] = field(default_factory=dict)

    def lookup(self, *paths: str) -> str | None:
        return read_string(self.raw, paths)


@dataclass(slots=True, frozen=True)
class PlatformConversation:
    id: str
    reservation_id: str | None = None
    raw: Mapping[str, Any] = field(default_factory=dict)


@dataclass(slots=True, frozen=True)
class PlatformMessage:
    id: str | None
    body: str
    is_incoming: bool
    date: str | None = None
    raw: Mapping[str, Any] = field(default_factory=dict)

    @property
    def sent_at(self) -> datetime | None:
        return parse_timestamp(self.date)


def reservation_guest_name(raw: Mapping[str, Any]) -> str | None:
    explicit = read_string(raw, ("guestName", "guest_name", "guest.name"))
    if explicit:
        return explicit
    first = read_string(
        raw, ("guestFirstName", "guest.firstName", "guest_first_name", "guest.first_name")
    )
    last = read_string(
        raw, ("guestLastName", "guest.lastName", "guest_last_name", "guest.last_name")
    )
    combined = " ".join(part for part in (first, last) if part)
    return combined or None


def reservation_guest_phone(raw: Mapping[str, Any]) -> str | None:
    return read_string(
        raw,
        (
            "guestPhone",
            "guest_phone",
            "phone",
            "guest.phone",
            "guest.contact.phone",
            "guest.phone_number",
        ),
    )


def to_reservation(raw: Mapping[str, Any], *, fallback_id: str | None = None) -> Reservation | None:
    """Build a ``Reservation``; returns None when no identifier is available."""

    reservation_id = read_string(raw, ("id", *RESERVATION_ID_PATHS)) or fallback_id
    if not reservation_id:
        return None
    return Reservation(
        id=reservation_id,
        listing_id=read_string(raw, LISTING_ID_PATHS),
        guest_name=reservation_guest_name(raw),
        guest_phone=reservation_guest_phone(raw),
        status=read_string(raw, ("status",)),
        arrival=parse_timestamp(
            read_string(raw, ("arrivalDate", "arrival_date", "checkIn", "check_in"))
        ),
        departure=parse_timestamp(
            read_string(raw, ("departureDate", "departure_date", "checkOut", "check_out"))
        ),
        raw=dict(raw),
    )


def to_listing(raw: Mapping[str, Any], *, fallback_id: str | None = None) -> Listing | None:
    listing_id = read_string(raw, ("id", "listingId", "listing_id")) or fallback_id
    if not listing_id:
        return None
    return Listing(
        id=listing_id,
        name=read_string(raw, ("internalListingName", "name")),
        raw=dict(raw),
    )


def to_conversation(raw: Mapping[str, Any]) -> PlatformConversation | None:
    conversation_id = read_string(raw, CONVERSATION_ID_PATHS)
    if not conversation_id:
        return None
    return PlatformConversation(
        id=conversation_id,
        reservation_id=read_string(raw, RESERVATION_ID_PATHS),
        raw=dict(raw),
    )


def to_message(raw: Mapping[str, Any]) -> PlatformMessage:
    body = read_string(raw, ("body", "message", "content", "text")) or ""
    incoming = resolve_path(raw, "isIncoming")
    if incoming is None:
        incoming = resolve_path(raw, "is_incoming")
    return PlatformMessage(
        id=read_string(raw, ("id", "messageId", "message_id")),
        body=body,
        is_incoming=bool(incoming),
        date=read_string(
            raw,
            (
                "date",
                "sentToChannelDate",
                "sentToChannelAttemptDate",
                "insertedOn",
                "updatedOn",
            ),
        ),
        raw=dict(raw),
    )


def unwrap_result(payload: Any) -> Any:
    """Return ``payload["result"]`` when present, else the payload itself."""

    if isinstance(payload, Mapping) and "result" in payload:
        return payload["result"]
    return payload


def normalize_list(payload: Any) -> list[dict[str, Any]]:
    """Flatten list envelopes (``result``, ``results``, ``items`` ...) into records."""

    records: list[dict[str, Any]] = []
    seen: set[int] = set()

    def visit(value: Any) -> None:
        if id(value) in seen:
            return
        seen.add(id(value))
        if isinstance(value, list):
            records.extend(dict(item) for item in value if isinstance(item, Mapping))
            return
        if isinstance(value, Mapping):
            for key in _LIST_KEYS:
                if key in value:
                    visit(value[key])

    visit(payload)
    return records
