"""
RAG Repository

Data access layer for documents and chunks.
Provides atomic persistence of a document with its chunks and the two
query shapes the retrieval strategies need: a ranked pgvector lookup and
a plain candidate load for in-process scoring.
"""

from __future__ import annotations

import logging
from collections.abc import Sequence

from sqlalchemy import Float, select, text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import defer

from roomrag.core.database import SCAN_SETTINGS
from roomrag.core.exceptions import StoreUnavailable
from roomrag.models.orm import ChunkRecord, DocumentRecord

logger = logging.getLogger(__name__)


class RAGRepository:
    """
    Repository for document and chunk persistence with vector search.

    All methods expect an externally managed ``AsyncSession``.

    Key guarantees:
        - ``save_document_with_chunks``: atomic: either the document
          AND all chunks are persisted, or nothing is.
        - ``nearest_chunks`` / ``candidate_chunks``: scoped to the given
          rooms, ties broken by chunk id (insertion order).
    """

    # ------------------------------------------------------------------
    # Write operations
    # ------------------------------------------------------------------

    async def save_document_with_chunks(
        self,
        session: AsyncSession,
        *,
        document: DocumentRecord,
        chunks: list[ChunkRecord],
    ) -> DocumentRecord:
        """
        Persist a document and its chunks in one transaction.

        Raises:
            StoreUnavailable: On any database error; the transaction is
                rolled back first so no document exists without its chunks.
        """
        try:
            document.chunks = chunks
            session.add(document)
            await session.flush()
            await session.commit()
        except SQLAlchemyError as e:
            await session.rollback()
            logger.error(
                "Rolled back document insert (%d chunks): %s",
                len(chunks),
                type(e).__name__,
            )
            raise StoreUnavailable("Document insert failed", {"chunks": len(chunks)}) from e

        logger.info(
            "Saved document %d (room=%s) with %d chunks",
            document.id,
            document.room_slug,
            len(chunks),
        )
        return document

    # ------------------------------------------------------------------
    # Read operations
    # ------------------------------------------------------------------

    async def get_document_by_id(
        self,
        session: AsyncSession,
        document_id: int,
    ) -> DocumentRecord | None:
        """Look up a document by its id."""
        stmt = select(DocumentRecord).where(DocumentRecord.id == document_id)
        result = await session.execute(stmt)
        return result.scalars().first()

    async def get_chunks_by_document(
        self,
        session: AsyncSession,
        document_id: int,
    ) -> Sequence[ChunkRecord]:
        """Get all chunks for a document, ordered by index."""
        stmt = (
            select(ChunkRecord)
            .where(ChunkRecord.document_id == document_id)
            .order_by(ChunkRecord.chunk_index)
        )
        result = await session.execute(stmt)
        return result.scalars().all()

    async def nearest_chunks(
        self,
        session: AsyncSession,
        query_embedding: Sequence[float],
        rooms: Sequence[str],
        limit: int,
        index_kind: str | None = None,
    ) -> list[tuple[ChunkRecord, float]]:
        """
        Ranked cosine-distance lookup via pgvector's ``<=>`` operator.

        PostgreSQL only. Uses the ANN index on ``chunks.embedding`` when
        one exists; ``index_kind`` selects the scan settings applied to
        the current transaction first. Similarity is ``1 - distance``.

        Returns:
            (ChunkRecord, similarity) tuples, most similar first.
        """
        distance = (
            ChunkRecord.embedding.op("<=>", return_type=Float)(list(query_embedding))
        ).label("distance")
        for statement in SCAN_SETTINGS.get(index_kind or "", ()):
            await session.execute(text(statement))

        stmt = (
            select(ChunkRecord, distance)
            .options(defer(ChunkRecord.embedding))
            .where(ChunkRecord.room_slug.in_(list(rooms)))
            .order_by(distance, ChunkRecord.id)
            .limit(limit)
        )
        result = await session.execute(stmt)
        return [(row[0], 1.0 - float(row[1])) for row in result.all()]

    async def candidate_chunks(
        self,
        session: AsyncSession,
        rooms: Sequence[str],
        limit: int | None = None,
    ) -> Sequence[ChunkRecord]:
        """
        Load chunks (with embeddings) for in-process scoring.

        Args:
            rooms: Room slugs to include.
            limit: If set, only the ``limit`` most recently inserted
                candidates are loaded.

        Returns:
            Chunks in insertion order (ascending id).
        """
        stmt = select(ChunkRecord).where(ChunkRecord.room_slug.in_(list(rooms)))
        if limit is not None:
            stmt = stmt.order_by(ChunkRecord.id.desc()).limit(limit)
            result = await session.execute(stmt)
            return sorted(result.scalars().all(), key=lambda c: c.id)

        result = await session.execute(stmt.order_by(ChunkRecord.id))
        return result.scalars().all()
