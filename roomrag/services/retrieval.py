"""
Retriever

Room-scoped top-K retrieval over the vector store. A query for room R
searches R plus ``global``; a query for ``global`` searches only
``global``.
"""

from __future__ import annotations

import logging
from collections.abc import Sequence

from sqlalchemy.ext.asyncio import AsyncSession

from roomrag.core.exceptions import InvalidInput
from roomrag.models.orm import GLOBAL_ROOM
from roomrag.models.schemas import ScoredChunk
from roomrag.services.vector_store import VectorStore

logger = logging.getLogger(__name__)

DEFAULT_TOP_K: int = 6


def room_scopes(room: str) -> tuple[str, ...]:
    """Room slugs a query for ``room`` may draw from."""
    if room == GLOBAL_ROOM:
        return (GLOBAL_ROOM,)
    return (room, GLOBAL_ROOM)


class Retriever:
    """Top-K chunk retrieval merging room-specific and global content."""

    def __init__(self, store: VectorStore, default_k: int = DEFAULT_TOP_K) -> None:
        self._store = store
        self._default_k = default_k

    async def top_k_scored(
        self,
        session: AsyncSession,
        query_embedding: Sequence[float],
        room: str,
        k: int | None = None,
    ) -> list[ScoredChunk]:
        """
        Most similar chunks for ``room`` with their scores.

        Args:
            room: Normalized room slug.
            k: Result count; defaults to the configured top-K.

        Raises:
            InvalidInput: If k <= 0.
        """
        k = self._default_k if k is None else k
        if k <= 0:
            raise InvalidInput(f"k must be positive, got {k}", field="k")

        hits = await self._store.search(session, query_embedding, room_scopes(room), k)
        logger.info(
            "Retrieved %d chunks for room=%s (k=%d, strategy=%s)",
            len(hits),
            room,
            k,
            self._store.strategy.name,
        )
        return hits

    async def top_k(
        self,
        session: AsyncSession,
        query_embedding: Sequence[float],
        room: str,
        k: int | None = None,
    ) -> list[str]:
        """Chunk contents only, most similar first."""
        hits = await self.top_k_scored(session, query_embedding, room, k)
        return [hit.content for hit in hits]
