"""Tenant knowledge-base management and history sync endpoints."""

from __future__ import annotations

from typing import Annotated
from uuid import UUID

from fastapi import APIRouter, File, Form, Header, UploadFile, status

from guestpilot.core.errors import ValidationError
from guestpilot.core.http import ResponseEnvelope

from .. import schemas
from ..dependencies import KnowledgeStoreDep, ProgressStoreDep, SyncServiceDep, TenantDep

router = APIRouter(prefix="/v1/tenants", tags=["knowledge"])

UserIdHeader = Annotated[str, Header(alias="X-User-Id", min_length=1)]


@router.get(
    "/{tenant_id}/knowledge/documents",
    response_model=ResponseEnvelope[list[schemas.KnowledgeDocumentResponse]],
)
def list_documents(
    tenant: TenantDep, knowledge: KnowledgeStoreDep
) -> ResponseEnvelope[list[schemas.KnowledgeDocumentResponse]]:
    documents = knowledge.list_documents(tenant.id)
    return ResponseEnvelope(
        data=[schemas.KnowledgeDocumentResponse.from_model(doc) for doc in documents]
    )


@router.post(
    "/{tenant_id}/knowledge/documents",
    response_model=ResponseEnvelope[schemas.KnowledgeDocumentResponse],
    status_code=status.HTTP_201_CREATED,
)
async def upload_document(
    tenant: TenantDep,
    knowledge: KnowledgeStoreDep,
    file: Annotated[UploadFile, File(...)],
    title: Annotated[str | None, Form()] = None,
) -> ResponseEnvelope[schemas.KnowledgeDocumentResponse]:
    """Store an uploaded plain-text document in the tenant's knowledge base."""

    filename = file.filename or "upload.txt"
    content_type = file.content_type or ""
    if "text" not in content_type and not filename.endswith(".txt"):
        raise ValidationError("Only text files (.txt) are supported")

    data = await file.read()
    content = data.decode("utf-8", errors="ignore")
    if not content.strip():
        raise ValidationError("File content is empty")

    document = await knowledge.create_document(
        tenant.id,
        content,
        title=title or filename,
        metadata={"fileName": filename, "fileSize": len(data), "mimeType": content_type},
    )
    return ResponseEnvelope(data=schemas.KnowledgeDocumentResponse.from_model(document))


@router.delete(
    "/{tenant_id}/knowledge/documents/{document_id}",
    response_model=schemas.DeleteResponse,
)
def delete_document(
    tenant: TenantDep, document_id: UUID, knowledge: KnowledgeStoreDep
) -> schemas.DeleteResponse:
    knowledge.delete_document(tenant.id, document_id)
    return schemas.DeleteResponse()


@router.delete(
    "/{tenant_id}/knowledge/documents",
    response_model=schemas.DeleteResponse,
)
def delete_all_documents(
    tenant: TenantDep, knowledge: KnowledgeStoreDep
) -> schemas.DeleteResponse:
    deleted = knowledge.delete_all_documents(tenant.id)
    return schemas.DeleteResponse(deleted_count=deleted)


@router.post(
    "/{tenant_id}/knowledge/sync",
    response_model=ResponseEnvelope[schemas.SyncResponse],
)
async def sync_conversations(
    tenant: TenantDep,
    user_id: UserIdHeader,
    service: SyncServiceDep,
    request: schemas.SyncRequest | None = None,
) -> ResponseEnvelope[schemas.SyncResponse]:
    """Mine the tenant's Hostaway conversation history into Q&A documents."""

    result = await service.run(tenant, user_id, limit=request.limit if request else None)
    return ResponseEnvelope(data=schemas.SyncResponse.from_result(result))


@router.get(
    "/{tenant_id}/knowledge/sync/progress",
    response_model=ResponseEnvelope[schemas.SyncProgressResponse | None],
)
async def sync_progress(
    tenant: TenantDep, user_id: UserIdHeader, progress: ProgressStoreDep
) -> ResponseEnvelope[schemas.SyncProgressResponse | None]:
    state = await progress.get(user_id)
    return ResponseEnvelope(
        data=schemas.SyncProgressResponse.from_progress(state) if state else None
    )
