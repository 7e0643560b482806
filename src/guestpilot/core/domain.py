"""Domain data structures shared across services."""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from enum import Enum
from typing import Any
from uuid import UUID

# Width of stored chunk embeddings (text-embedding-3-small).
EMBEDDING_DIMENSIONS = 1536


class Intent(str, Enum):
    """Closed set of guest intents understood by the pipeline."""

    EMERGENCY = "emergency"
    CHECK_IN_INFO = "check_in_info"
    CHECK_OUT_INFO = "check_out_info"
    GENERAL_INFO = "general_info"
    SUPPORT_REQUEST = "support_request"
    UNKNOWN = "unknown"

    @classmethod
    def parse(cls, value: Any) -> Intent:
        """Map arbitrary model output onto the closed set."""

        if isinstance(value, cls):
            return value
        if isinstance(value, str):
            try:
                return cls(value.strip().lower())
            except ValueError:
                return cls.UNKNOWN
        return cls.UNKNOWN


class ConversationStatus(str, Enum):
    """Whether the AI may answer in a conversation."""

    AUTOMATED = "automated"
    PAUSED_BY_HUMAN = "paused_by_human"


class SenderType(str, Enum):
    GUEST = "guest"
    AI = "ai"
    HUMAN = "human"
    SYSTEM = "system"


class MessageDirection(str, Enum):
    GUEST = "guest"
    AI = "ai"
    STAFF = "staff"


class MessageStatus(str, Enum):
    """Delivery lifecycle of a conversation log entry."""

    PENDING = "pending"
    PROCESSING = "processing"
    SENT = "sent"
    FAILED = "failed"


@dataclass(slots=True, frozen=True)
class IntentClassification:
    """Classifier verdict attached to AI reply metadata."""

    intent: Intent
    confidence: float
    reason: str | None = None


@dataclass(slots=True)
class GuestContext:
    """Ephemeral view of the guest behind an inbound message."""

    id: str
    name: str | None = None
    phone: str | None = None
    reservation_id: str | None = None
    raw_payload: Mapping[str, Any] = field(default_factory=dict)
    guest_message_log_id: UUID | None = None


@dataclass(slots=True, frozen=True)
class HistoryMessage:
    """A prior conversation entry rendered into prompts."""

    sender_type: SenderType
    body: str
    timestamp: str

    def render(self) -> str:
        speaker = "Guest" if self.sender_type is SenderType.GUEST else "Host"
        return f"{speaker} ({self.timestamp}): {self.body}"
