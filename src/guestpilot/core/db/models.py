"""SQLModel declarative models for core entities."""

from datetime import UTC, datetime
from typing import Any
from uuid import UUID, uuid4

from pgvector.sqlalchemy import Vector
from sqlalchemy import (
    JSON,
    Column,
    DateTime,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
    func,
)
from sqlmodel import Field, SQLModel

from guestpilot.core.domain import (
    EMBEDDING_DIMENSIONS,
    ConversationStatus,
    MessageDirection,
    MessageStatus,
    SenderType,
)


def _utcnow() -> datetime:
    return datetime.now(tz=UTC)


def created_at_field() -> Any:
    return Field(
        default_factory=_utcnow,
        sa_column=Column(
            DateTime(timezone=True),
            nullable=False,
            server_default=func.now(),
        ),
    )


def updated_at_field() -> Any:
    return Field(
        default_factory=_utcnow,
        sa_column=Column(
            DateTime(timezone=True),
            nullable=False,
            server_default=func.now(),
            onupdate=func.now(),
        ),
    )


def optional_timestamp_field() -> Any:
    return Field(
        default=None,
        sa_column=Column(DateTime(timezone=True), nullable=True),
    )


class UUIDPrimaryKey(SQLModel, table=False):
    """Mixin providing a UUID primary key."""

    id: UUID = Field(default_factory=uuid4, primary_key=True, nullable=False)


class Tenant(UUIDPrimaryKey, table=True):
    """A host business connected to Hostaway. Read-only to the pipeline."""

    __tablename__ = "tenants"

    created_at: datetime = created_at_field()
    updated_at: datetime = updated_at_field()

    name: str = Field(sa_column=Column(String(length=200), nullable=False))
    hostaway_account_id: str | None = Field(
        default=None,
        sa_column=Column(String(length=120), nullable=True, unique=True, index=True),
    )
    hostaway_client_id: str | None = Field(
        default=None,
        sa_column=Column(String(length=120), nullable=True, index=True),
    )
    encrypted_hostaway_access_token: str | None = Field(
        default=None, sa_column=Column(Text, nullable=True)
    )
    twilio_account_sid: str | None = Field(
        default=None, sa_column=Column(String(length=64), nullable=True)
    )
    encrypted_twilio_auth_token: str | None = Field(
        default=None, sa_column=Column(Text, nullable=True)
    )
    twilio_whatsapp_from: str | None = Field(
        default=None, sa_column=Column(String(length=32), nullable=True)
    )
    twilio_voice_from: str | None = Field(
        default=None, sa_column=Column(String(length=32), nullable=True)
    )
    twilio_messaging_service_sid: str | None = Field(
        default=None, sa_column=Column(String(length=64), nullable=True)
    )
    twilio_staff_whatsapp_number: str | None = Field(
        default=None, sa_column=Column(String(length=32), nullable=True)
    )
    twilio_on_call_number: str | None = Field(
        default=None, sa_column=Column(String(length=32), nullable=True)
    )
    automation_timezone: str = Field(
        default="UTC",
        sa_column=Column(String(length=64), nullable=False, default="UTC"),
    )
    is_subscribed: bool = Field(default=True, nullable=False)
    metadata_json: dict[str, Any] | None = Field(
        default=None,
        sa_column=Column("metadata", JSON, nullable=True),
    )


class Booking(UUIDPrimaryKey, table=True):
    """Local mirror of a Hostaway reservation."""

    __tablename__ = "bookings"
    __table_args__ = (
        UniqueConstraint("tenant_id", "external_id", name="uq_booking_tenant_external"),
    )

    created_at: datetime = created_at_field()
    updated_at: datetime = updated_at_field()

    tenant_id: UUID = Field(foreign_key="tenants.id", nullable=False, index=True)
    external_id: str = Field(sa_column=Column(String(length=120), nullable=False))
    listing_external_id: str | None = Field(
        default=None, sa_column=Column(String(length=120), nullable=True)
    )
    guest_name: str | None = Field(
        default=None, sa_column=Column(String(length=200), nullable=True)
    )
    guest_phone: str | None = Field(
        default=None, sa_column=Column(String(length=40), nullable=True)
    )
    status: str | None = Field(
        default=None, sa_column=Column(String(length=40), nullable=True)
    )
    check_in_at: datetime | None = optional_timestamp_field()
    check_out_at: datetime | None = optional_timestamp_field()
    metadata_json: dict[str, Any] | None = Field(
        default=None,
        sa_column=Column("metadata", JSON, nullable=True),
    )


class Conversation(UUIDPrimaryKey, table=True):
    """One conversation thread per booking."""

    __tablename__ = "conversations"
    __table_args__ = (
        UniqueConstraint("tenant_id", "booking_id", name="uq_conversation_tenant_booking"),
    )

    created_at: datetime = created_at_field()
    updated_at: datetime = updated_at_field()

    tenant_id: UUID = Field(foreign_key="tenants.id", nullable=False, index=True)
    booking_id: UUID = Field(foreign_key="bookings.id", nullable=False, index=True)
    hostaway_conversation_id: str | None = Field(
        default=None, sa_column=Column(String(length=120), nullable=True)
    )
    status: str = Field(
        default=ConversationStatus.AUTOMATED.value,
        sa_column=Column(
            String(length=32),
            nullable=False,
            default=ConversationStatus.AUTOMATED.value,
        ),
    )


class ConversationLog(UUIDPrimaryKey, table=True):
    """Individual guest, AI and staff messages within a conversation."""

    __tablename__ = "conversation_logs"
    __table_args__ = (
        UniqueConstraint(
            "conversation_id",
            "idempotency_key",
            name="uq_conversation_log_idempotency",
        ),
    )

    created_at: datetime = created_at_field()
    updated_at: datetime = updated_at_field()

    tenant_id: UUID = Field(foreign_key="tenants.id", nullable=False, index=True)
    conversation_id: UUID = Field(
        foreign_key="conversations.id", nullable=False, index=True
    )
    sender_type: str = Field(
        default=SenderType.GUEST.value,
        sa_column=Column(String(length=16), nullable=False),
    )
    direction: str = Field(
        default=MessageDirection.GUEST.value,
        sa_column=Column(String(length=16), nullable=False),
    )
    body: str = Field(sa_column=Column(Text, nullable=False))
    status: str = Field(
        default=MessageStatus.PENDING.value,
        sa_column=Column(String(length=16), nullable=False),
    )
    idempotency_key: str | None = Field(
        default=None, sa_column=Column(String(length=160), nullable=True)
    )
    scheduled_send_at: datetime | None = optional_timestamp_field()
    actual_sent_at: datetime | None = optional_timestamp_field()
    error_message: str | None = Field(default=None, sa_column=Column(Text, nullable=True))
    metadata_json: dict[str, Any] | None = Field(
        default=None,
        sa_column=Column("metadata", JSON, nullable=True),
    )


class KnowledgeDocument(UUIDPrimaryKey, table=True):
    """Tenant-scoped knowledge base document."""

    __tablename__ = "knowledge_documents"

    created_at: datetime = created_at_field()
    updated_at: datetime = updated_at_field()

    tenant_id: UUID = Field(foreign_key="tenants.id", nullable=False, index=True)
    title: str | None = Field(default=None, sa_column=Column(String(length=300), nullable=True))
    content: str = Field(sa_column=Column(Text, nullable=False))
    metadata_json: dict[str, Any] | None = Field(
        default=None,
        sa_column=Column("metadata", JSON, nullable=True),
    )


class KnowledgeChunk(UUIDPrimaryKey, table=True):
    """Embedded slice of a knowledge document."""

    __tablename__ = "knowledge_chunks"
    __table_args__ = (
        UniqueConstraint("document_id", "chunk_index", name="uq_knowledge_chunk_position"),
        Index(
            "ix_knowledge_chunks_embedding_hnsw",
            "embedding",
            postgresql_using="hnsw",
            postgresql_ops={"embedding": "vector_cosine_ops"},
        ).ddl_if(dialect="postgresql"),
    )

    created_at: datetime = created_at_field()

    tenant_id: UUID = Field(foreign_key="tenants.id", nullable=False, index=True)
    document_id: UUID = Field(
        foreign_key="knowledge_documents.id", nullable=False, index=True
    )
    chunk_index: int = Field(sa_column=Column(Integer, nullable=False))
    content: str = Field(sa_column=Column(Text, nullable=False))
    # pgvector on Postgres; JSON arrays elsewhere (SQLite dev and tests).
    embedding: list[float] | None = Field(
        default=None,
        sa_column=Column(
            Vector(EMBEDDING_DIMENSIONS).with_variant(JSON(), "sqlite"), nullable=True
        ),
    )
    embedding_model: str | None = Field(
        default=None, sa_column=Column(String(length=120), nullable=True, index=True)
    )


__all__ = [
    "Booking",
    "Conversation",
    "ConversationLog",
    "KnowledgeChunk",
    "KnowledgeDocument",
    "Tenant",
]
