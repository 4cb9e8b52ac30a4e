"""
Vector Store

Persists chunk embeddings and answers nearest-neighbour queries through
one of two interchangeable strategies:

    IndexedSearch     single ranked SQL query on pgvector's ``<=>``
                      operator, accelerated by an ivfflat/hnsw index.
    LinearScanSearch  loads the candidate chunks and ranks them in-process
                      with numpy cosine similarity.

Both rank by descending cosine similarity and break exact ties by chunk
id (earlier insert first). Over an ivfflat index every list is probed, so
the two return the same ordering for the same corpus; an hnsw index is
approximate and is only used when forced. The strategy is picked once at
startup by ``select_strategy``.
"""

from __future__ import annotations

import logging
from collections.abc import Sequence
from typing import Protocol

import numpy as np
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession

from roomrag.core.database import EXACT_INDEX_KINDS, detect_vector_index
from roomrag.core.exceptions import InvalidInput, StoreUnavailable
from roomrag.models.orm import ChunkRecord, DocumentRecord
from roomrag.models.schemas import ScoredChunk
from roomrag.repositories.rag import RAGRepository

logger = logging.getLogger(__name__)


def cosine_similarities(query: Sequence[float], matrix: np.ndarray) -> np.ndarray:
    """
    Cosine similarity of ``query`` against every row of ``matrix``.

    Zero-norm rows (or a zero-norm query) score 0.0.
    """
    q = np.asarray(query, dtype=np.float64)
    m = np.asarray(matrix, dtype=np.float64)
    if m.size == 0:
        return np.zeros(0, dtype=np.float64)

    denom = np.linalg.norm(m, axis=1) * np.linalg.norm(q)
    dots = m @ q
    with np.errstate(divide="ignore", invalid="ignore"):
        sims = np.where(denom > 0, dots / denom, 0.0)
    return sims


def _to_scored(chunk: ChunkRecord, score: float) -> ScoredChunk:
    return ScoredChunk(
        chunk_id=chunk.id,
        document_id=chunk.document_id,
        chunk_index=chunk.chunk_index,
        content=chunk.content,
        room_slug=chunk.room_slug,
        score=round(float(score), 6),
    )


class SearchStrategy(Protocol):
    """Ranked nearest-neighbour lookup restricted to a set of rooms."""

    name: str

    async def search(
        self,
        session: AsyncSession,
        query_embedding: Sequence[float],
        rooms: Sequence[str],
        k: int,
    ) -> list[ScoredChunk]: ...


class IndexedSearch:
    """
    pgvector-backed strategy: one ``ORDER BY embedding <=> :q, id`` query.

    Args:
        index_kind: Access method of the index on ``chunks.embedding``
            (``ivfflat`` or ``hnsw``). ivfflat is scanned exhaustively and
            ranks exactly like LinearScanSearch; hnsw is approximate.
    """

    name = "indexed"

    def __init__(
        self,
        repository: RAGRepository | None = None,
        index_kind: str = "ivfflat",
    ) -> None:
        self._repository = repository or RAGRepository()
        self.index_kind = index_kind

    async def search(
        self,
        session: AsyncSession,
        query_embedding: Sequence[float],
        rooms: Sequence[str],
        k: int,
    ) -> list[ScoredChunk]:
        hits = await self._repository.nearest_chunks(
            session, query_embedding, rooms, k, index_kind=self.index_kind
        )
        return [_to_scored(chunk, score) for chunk, score in hits]


class LinearScanSearch:
    """
    Brute-force strategy: score every candidate in-process.

    Args:
        scan_limit: If set, only the most recently inserted ``scan_limit``
            candidates are scored (bounded latency, reduced recall on
            large corpora). None scans exhaustively.
    """

    name = "linear"

    def __init__(
        self,
        repository: RAGRepository | None = None,
        scan_limit: int | None = None,
    ) -> None:
        self._repository = repository or RAGRepository()
        self._scan_limit = scan_limit

    async def search(
        self,
        session: AsyncSession,
        query_embedding: Sequence[float],
        rooms: Sequence[str],
        k: int,
    ) -> list[ScoredChunk]:
        candidates = await self._repository.candidate_chunks(
            session, rooms, limit=self._scan_limit
        )
        if not candidates:
            return []

        matrix = np.vstack([np.asarray(c.embedding, dtype=np.float64) for c in candidates])
        sims = cosine_similarities(query_embedding, matrix)

        # Candidates arrive in id order; a stable sort on -similarity keeps
        # earlier inserts first among exact ties.
        order = np.argsort(-sims, kind="stable")[:k]
        return [_to_scored(candidates[i], sims[i]) for i in order]


async def select_strategy(
    engine: AsyncEngine,
    mode: str = "auto",
    *,
    scan_limit: int | None = None,
) -> SearchStrategy:
    """
    Pick the retrieval strategy once, from backing-store capability.

    ``auto`` chooses IndexedSearch only on PostgreSQL with an index whose
    scan ranks exactly like the linear scan (ivfflat); an hnsw index is
    used only when ``indexed`` is forced. ``linear`` forces the scan.
    """
    if mode == "linear":
        strategy: SearchStrategy = LinearScanSearch(scan_limit=scan_limit)
    elif mode == "indexed":
        strategy = IndexedSearch(index_kind=await detect_vector_index(engine) or "ivfflat")
    else:
        index_kind = await detect_vector_index(engine)
        if index_kind in EXACT_INDEX_KINDS:
            strategy = IndexedSearch(index_kind=index_kind)
        else:
            if index_kind is not None:
                logger.warning(
                    "%s index is approximate; using linear scan "
                    "(RETRIEVAL_STRATEGY=indexed uses it anyway)",
                    index_kind,
                )
            strategy = LinearScanSearch(scan_limit=scan_limit)

    logger.info("Retrieval strategy: %s", strategy.name)
    return strategy


class VectorStore:
    """
    Chunk persistence plus strategy-backed similarity search.

    Usage::

        store = VectorStore(LinearScanSearch())
        doc = await store.upsert_chunks(session, document, chunks, vectors)
        hits = await store.search(session, query_vec, ("pink-beard", "global"), 6)
    """

    def __init__(
        self,
        strategy: SearchStrategy,
        repository: RAGRepository | None = None,
    ) -> None:
        self._strategy = strategy
        self._repository = repository or RAGRepository()

    @property
    def strategy(self) -> SearchStrategy:
        return self._strategy

    async def upsert_chunks(
        self,
        session: AsyncSession,
        document: DocumentRecord,
        chunks: Sequence[str],
        embeddings: Sequence[Sequence[float]],
    ) -> DocumentRecord:
        """
        Persist ``document`` with one chunk row per (text, embedding) pair.

        Chunks inherit the document's room. All-or-nothing.

        Raises:
            InvalidInput: If chunk and embedding counts differ.
            StoreUnavailable: If the write fails (rolled back).
        """
        if len(chunks) != len(embeddings):
            raise InvalidInput(
                "Chunk and embedding counts differ",
                details={"chunks": len(chunks), "embeddings": len(embeddings)},
            )

        records = [
            ChunkRecord(
                chunk_index=i,
                content=content,
                embedding=list(vector),
                room_slug=document.room_slug,
            )
            for i, (content, vector) in enumerate(zip(chunks, embeddings, strict=True))
        ]
        return await self._repository.save_document_with_chunks(
            session,
            document=document,
            chunks=records,
        )

    async def search(
        self,
        session: AsyncSession,
        query_embedding: Sequence[float],
        rooms: Sequence[str],
        k: int,
    ) -> list[ScoredChunk]:
        """
        Ranked search within ``rooms``.

        Raises:
            StoreUnavailable: If the backing store fails.
        """
        try:
            return await self._strategy.search(session, query_embedding, rooms, k)
        except (SQLAlchemyError, OSError) as e:
            logger.error("Similarity search failed (%s): %s", self._strategy.name, type(e).__name__)
            raise StoreUnavailable("Similarity search failed") from e
