"""Knowledge-base sync job: conversation history to Q&A documents."""

from .extraction import QAPair, ThreadMessage, extract_qa_pairs
from .progress import (
    InMemorySyncProgressStore,
    RedisSyncProgressStore,
    SyncProgress,
    SyncProgressStore,
)
from .service import KnowledgeSyncService, SyncResult

__all__ = [
    "InMemorySyncProgressStore",
    "KnowledgeSyncService",
    "QAPair",
    "RedisSyncProgressStore",
    "SyncProgress",
    "SyncProgressStore",
    "SyncResult",
    "ThreadMessage",
    "extract_qa_pairs",
]
