"""Tenant-scoped knowledge base with vector and keyword search."""

from __future__ import annotations

import logging
import math
from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field
from typing import Any, Protocol
from uuid import UUID

from sqlalchemy import Select, delete, func, or_
from sqlmodel import Session, select

from guestpilot.core.db.models import KnowledgeChunk, KnowledgeDocument
from guestpilot.core.errors import NotFoundError

from .chunking import ChunkingConfig, chunk_text
from .embeddings import Embedder

logger = logging.getLogger(__name__)

KEYWORD_MATCH_SIMILARITY = 0.7
RECENT_DOCUMENT_SIMILARITY = 0.5
_MAX_KEYWORD_TOKENS = 5
CANDIDATE_CHUNKS_PER_RESULT = 4


@dataclass(slots=True, frozen=True)
class KnowledgeSearchResult:
    document_id: UUID
    title: str | None
    content: str
    similarity: float
    metadata: Mapping[str, Any] = field(default_factory=dict)


class KnowledgeSearch(Protocol):
    """Similarity search strategy over a tenant's documents."""

    async def search(
        self, tenant_id: UUID, query: str, limit: int = 5
    ) -> list[KnowledgeSearchResult]: ...


def _cosine_similarity(a: Sequence[float], b: Sequence[float]) -> float:
    if len(a) != len(b):
        return 0.0
    dot = sum(x * y for x, y in zip(a, b, strict=True))
    norm_a = math.sqrt(sum(x * x for x in a))
    norm_b = math.sqrt(sum(y * y for y in b))
    if norm_a == 0 or norm_b == 0:
        return 0.0
    return dot / (norm_a * norm_b)


def _escape_like(token: str) -> str:
    return token.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")


def _result(document: KnowledgeDocument, similarity: float) -> KnowledgeSearchResult:
    return KnowledgeSearchResult(
        document_id=document.id,
        title=document.title,
        content=document.content,
        similarity=similarity,
        metadata=dict(document.metadata_json or {}),
    )


class KeywordKnowledgeSearch:
    """Case-insensitive substring matching on document content."""

    def __init__(self, session: Session) -> None:
        self._session = session

    async def search(
        self, tenant_id: UUID, query: str, limit: int = 5
    ) -> list[KnowledgeSearchResult]:
        tokens = [token for token in query.split() if len(token) > 3][:_MAX_KEYWORD_TOKENS]
        statement = select(KnowledgeDocument).where(KnowledgeDocument.tenant_id == tenant_id)

        if not tokens:
            statement = statement.order_by(
                KnowledgeDocument.updated_at.desc()  # type: ignore[union-attr]
            ).limit(limit)
            return [
                _result(document, RECENT_DOCUMENT_SIMILARITY)
                for document in self._session.exec(statement)
            ]

        clauses = [
            KnowledgeDocument.content.ilike(f"%{_escape_like(token)}%", escape="\\")  # type: ignore[union-attr]
            for token in tokens
        ]
        statement = (
            statement.where(or_(*clauses))
            .order_by(KnowledgeDocument.updated_at.desc())  # type: ignore[union-attr]
            .limit(limit)
        )
        return [
            _result(document, KEYWORD_MATCH_SIMILARITY)
            for document in self._session.exec(statement)
        ]


def nearest_documents_statement(
    tenant_id: UUID, model: str, query_vector: Sequence[float], limit: int
) -> Select:
    """pgvector query: documents ordered by their closest chunk's cosine distance.

    The nearest chunks are taken first through the HNSW index, then collapsed
    to one row per document.
    """

    distance = KnowledgeChunk.embedding.cosine_distance(list(query_vector))  # type: ignore[union-attr]
    nearest = (
        select(KnowledgeChunk.document_id, distance.label("distance"))
        .where(
            KnowledgeChunk.tenant_id == tenant_id,
            KnowledgeChunk.embedding_model == model,
            KnowledgeChunk.embedding.is_not(None),  # type: ignore[union-attr]
        )
        .order_by(distance)
        .limit(limit * CANDIDATE_CHUNKS_PER_RESULT)
        .subquery()
    )
    best = func.min(nearest.c.distance).label("distance")
    return (
        select(KnowledgeDocument, best)
        .join(nearest, nearest.c.document_id == KnowledgeDocument.id)
        .where(KnowledgeDocument.tenant_id == tenant_id)
        .group_by(KnowledgeDocument.id)
        .order_by(best)
        .limit(limit)
    )


class VectorKnowledgeSearch:
    """Cosine similarity over per-chunk embeddings, best chunk wins per document.

    Postgres ranks inside the database with pgvector; other backends compare
    in process. Only chunks embedded with the active model are compared.
    Embedding failures, or a tenant without comparable chunks, fall back to
    ``fallback``.
    """

    def __init__(
        self,
        session: Session,
        embedder: Embedder,
        fallback: KnowledgeSearch,
    ) -> None:
        self._session = session
        self._embedder = embedder
        self._fallback = fallback

    async def search(
        self, tenant_id: UUID, query: str, limit: int = 5
    ) -> list[KnowledgeSearchResult]:
        try:
            vectors = await self._embedder.embed_async([query])
            results = self._rank(tenant_id, vectors[0], limit)
        except Exception:
            logger.warning(
                "vector search failed; falling back to keyword search",
                exc_info=True,
                extra={"tenant_id": str(tenant_id)},
            )
            return await self._fallback.search(tenant_id, query, limit)

        if not results:
            return await self._fallback.search(tenant_id, query, limit)
        return results

    def _rank(
        self, tenant_id: UUID, query_vector: Sequence[float], limit: int
    ) -> list[KnowledgeSearchResult]:
        if self._session.get_bind().dialect.name == "postgresql":
            statement = nearest_documents_statement(
                tenant_id, self._embedder.model, query_vector, limit
            )
            return [
                _result(document, 1.0 - float(distance))
                for document, distance in self._session.exec(statement)
            ]
        return self._rank_in_process(tenant_id, query_vector, limit)

    def _rank_in_process(
        self, tenant_id: UUID, query_vector: Sequence[float], limit: int
    ) -> list[KnowledgeSearchResult]:
        statement = select(KnowledgeChunk).where(
            KnowledgeChunk.tenant_id == tenant_id,
            KnowledgeChunk.embedding_model == self._embedder.model,
        )
        best: dict[UUID, float] = {}
        for chunk in self._session.exec(statement):
            if not chunk.embedding:
                continue
            score = _cosine_similarity(query_vector, chunk.embedding)
            if score > best.get(chunk.document_id, -math.inf):
                best[chunk.document_id] = score

        if not best:
            return []

        ranked = sorted(best.items(), key=lambda item: item[1], reverse=True)[:limit]
        documents = {
            document.id: document
            for document in self._session.exec(
                select(KnowledgeDocument).where(
                    KnowledgeDocument.tenant_id == tenant_id,
                    KnowledgeDocument.id.in_([doc_id for doc_id, _ in ranked]),  # type: ignore[union-attr]
                )
            )
        }
        return [
            _result(documents[doc_id], score)
            for doc_id, score in ranked
            if doc_id in documents
        ]


class KnowledgeStore:
    """Create, list, delete and search a tenant's knowledge documents."""

    def __init__(
        self,
        session: Session,
        embedder: Embedder | None = None,
        *,
        chunking: ChunkingConfig | None = None,
    ) -> None:
        self._session = session
        self._embedder = embedder
        self._chunking = chunking or ChunkingConfig()
        keyword = KeywordKnowledgeSearch(session)
        self._search: KnowledgeSearch = (
            VectorKnowledgeSearch(session, embedder, keyword) if embedder else keyword
        )

    @property
    def search_strategy(self) -> KnowledgeSearch:
        return self._search

    async def create_document(
        self,
        tenant_id: UUID,
        content: str,
        title: str | None = None,
        metadata: Mapping[str, Any] | None = None,
    ) -> KnowledgeDocument:
        chunks = chunk_text(content.strip(), self._chunking)
        embeddings = await self._embed_chunks(tenant_id, chunks)
        model = self._embedder.model if embeddings is not None else None

        document_metadata: dict[str, Any] = {
            **dict(metadata or {}),
            "chunkCount": len(chunks),
            "source": (metadata or {}).get("source", "manual_upload"),
            "embeddingModel": model,
        }
        document = KnowledgeDocument(
            tenant_id=tenant_id,
            title=title,
            content=content,
            metadata_json=document_metadata,
        )
        self._session.add(document)
        self._session.flush()

        for index, chunk in enumerate(chunks):
            self._session.add(
                KnowledgeChunk(
                    tenant_id=tenant_id,
                    document_id=document.id,
                    chunk_index=index,
                    content=chunk,
                    embedding=embeddings[index] if embeddings is not None else None,
                    embedding_model=model,
                )
            )
        self._session.flush()
        logger.info(
            "knowledge document created",
            extra={
                "tenant_id": str(tenant_id),
                "document_id": str(document.id),
                "chunks": len(chunks),
                "embedded": embeddings is not None,
            },
        )
        return document

    async def create_document_from_conversation(
        self,
        tenant_id: UUID,
        content: str,
        conversation_id: str,
        reservation_id: str,
        metadata: Mapping[str, Any] | None = None,
    ) -> KnowledgeDocument:
        return await self.create_document(
            tenant_id,
            content,
            title=f"Conversation {conversation_id} - Reservation {reservation_id}",
            metadata={
                **dict(metadata or {}),
                "source": "hostaway_conversation",
                "conversationId": conversation_id,
                "reservationId": reservation_id,
            },
        )

    def list_documents(self, tenant_id: UUID) -> list[KnowledgeDocument]:
        statement = (
            select(KnowledgeDocument)
            .where(KnowledgeDocument.tenant_id == tenant_id)
            .order_by(KnowledgeDocument.created_at.desc())  # type: ignore[union-attr]
        )
        return list(self._session.exec(statement))

    def delete_document(self, tenant_id: UUID, document_id: UUID) -> None:
        document = self._session.get(KnowledgeDocument, document_id)
        if document is None or document.tenant_id != tenant_id:
            raise NotFoundError(
                "Knowledge document not found", details={"document_id": str(document_id)}
            )
        self._session.execute(
            delete(KnowledgeChunk).where(KnowledgeChunk.document_id == document_id)
        )
        self._session.delete(document)
        self._session.flush()

    def delete_all_documents(self, tenant_id: UUID) -> int:
        self._session.execute(delete(KnowledgeChunk).where(KnowledgeChunk.tenant_id == tenant_id))
        result = self._session.execute(
            delete(KnowledgeDocument).where(KnowledgeDocument.tenant_id == tenant_id)
        )
        self._session.flush()
        return int(result.rowcount or 0)

    async def search(
        self, tenant_id: UUID, query: str, limit: int = 5
    ) -> list[KnowledgeSearchResult]:
        return await self._search.search(tenant_id, query, limit)

    async def _embed_chunks(
        self, tenant_id: UUID, chunks: list[str]
    ) -> list[list[float]] | None:
        if self._embedder is None or not chunks:
            return None
        try:
            return await self._embedder.embed_async(chunks)
        except Exception:
            logger.warning(
                "embedding generation failed; storing chunks for keyword search only",
                exc_info=True,
                extra={"tenant_id": str(tenant_id), "chunks": len(chunks)},
            )
            return None
