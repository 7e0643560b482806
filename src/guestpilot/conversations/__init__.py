"""Conversation, message-log and booking persistence."""

from .bookings import BookingRecorder
from .store import ConversationStore, guest_message_identity, guest_message_key, message_hash

__all__ = [
    "BookingRecorder",
    "ConversationStore",
    "guest_message_identity",
    "guest_message_key",
    "message_hash",
]
