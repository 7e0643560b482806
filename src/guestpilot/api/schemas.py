"""Request and response models for the HTTP API."""

from __future__ import annotations

from datetime import datetime
from typing import Any
from uuid import UUID

from pydantic import BaseModel, Field

from guestpilot.core.db.models import KnowledgeDocument
from guestpilot.knowledge_sync.progress import SyncProgress
from guestpilot.knowledge_sync.service import SyncResult


class WebhookAck(BaseModel):
    received: bool = True


class KnowledgeDocumentResponse(BaseModel):
    id: UUID
    title: str | None
    content: str
    metadata: dict[str, Any] = Field(default_factory=dict)
    created_at: datetime
    updated_at: datetime

    @classmethod
    def from_model(cls, document: KnowledgeDocument) -> KnowledgeDocumentResponse:
        return cls(
            id=document.id,
            title=document.title,
            content=document.content,
            metadata=dict(document.metadata_json or {}),
            created_at=document.created_at,
            updated_at=document.updated_at,
        )


class DeleteResponse(BaseModel):
    success: bool = True
    deleted_count: int | None = None


class SyncRequest(BaseModel):
    limit: int | None = Field(default=None, ge=1)


class SyncResponse(BaseModel):
    success: bool
    documents_created: int
    message: str
    partial: bool = False

    @classmethod
    def from_result(cls, result: SyncResult) -> SyncResponse:
        return cls(
            success=result.success,
            documents_created=result.documents_created,
            message=result.message,
            partial=result.partial,
        )


class SyncProgressResponse(BaseModel):
    progress: int
    current: int
    total: int
    documents_created: int
    message: str | None = None
    completed: bool = False
    partial: bool = False

    @classmethod
    def from_progress(cls, progress: SyncProgress) -> SyncProgressResponse:
        return cls(**progress.to_dict())
