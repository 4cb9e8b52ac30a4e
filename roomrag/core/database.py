"""
RoomRAG Database Layer

Async SQLAlchemy 2.0 setup plus schema bootstrap and vector-index
capability detection.

Design:
    - build_engine / build_session_factory: explicit construction, the
      app owns the resulting objects (``app.state``), nothing global.
    - ensure_schema: idempotent; safe to run on every boot.
    - check_embedding_dimension: the configured dimension must match the
      ``vector(N)`` column the ORM was built with.
    - detect_vector_index: tells the retrieval layer whether an ANN index
      over ``chunks.embedding`` exists.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Final

from sqlalchemy import text
from sqlalchemy.engine import make_url
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.pool import StaticPool

from roomrag.models.base import Base
from roomrag.models.orm import ChunkRecord

logger = logging.getLogger(__name__)

# pgvector cannot index the ``vector`` type above 2000 dimensions
PGVECTOR_INDEX_MAX_DIMENSION: Final[int] = 2000

IVFFLAT_LISTS: Final[int] = 100
HNSW_EF_SEARCH: Final[int] = 1000

_INDEX_DDL: Final[dict[str, str]] = {
    "ivfflat": (
        "CREATE INDEX IF NOT EXISTS ix_chunks_embedding_ivfflat "
        f"ON chunks USING ivfflat (embedding vector_cosine_ops) WITH (lists = {IVFFLAT_LISTS})"
    ),
    "hnsw": (
        "CREATE INDEX IF NOT EXISTS ix_chunks_embedding_hnsw "
        "ON chunks USING hnsw (embedding vector_cosine_ops) "
        "WITH (m = 16, ef_construction = 64)"
    ),
}

# Applied per query transaction. Probing every ivfflat list makes the index
# scan exhaustive, so its ranking equals the linear scan whatever the
# centroid quality (the index may be built on an empty table at first boot).
# hnsw stays approximate; iterative scan only keeps room-filtered queries
# from coming back short.
SCAN_SETTINGS: Final[dict[str, tuple[str, ...]]] = {
    "ivfflat": (f"SET LOCAL ivfflat.probes = {IVFFLAT_LISTS}",),
    "hnsw": (
        f"SET LOCAL hnsw.ef_search = {HNSW_EF_SEARCH}",
        "SET LOCAL hnsw.iterative_scan = strict_order",
    ),
}

# Index kinds whose scan returns exactly the linear-scan ranking
EXACT_INDEX_KINDS: Final[frozenset[str]] = frozenset({"ivfflat"})


def build_engine(url: str, pool_size: int = 5) -> AsyncEngine:
    """
    Create the async engine for ``url``.

    SQLite in-memory databases get a StaticPool so every session sees
    the same connection (and therefore the same tables).
    """
    parsed = make_url(url)
    if parsed.get_backend_name() == "sqlite":
        engine = create_async_engine(
            url,
            echo=False,
            connect_args={"check_same_thread": False},
            poolclass=StaticPool,
        )
    else:
        engine = create_async_engine(url, echo=False, pool_size=pool_size)
    logger.info(
        "Database engine created: %s@%s",
        parsed.get_backend_name(),
        parsed.host or parsed.database,
    )
    return engine


def build_session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    """Session factory; expire_on_commit=False avoids implicit I/O after commit."""
    return async_sessionmaker(engine, expire_on_commit=False)


def check_embedding_dimension(dimension: int) -> None:
    """
    Fail fast when ``dimension`` disagrees with the embedding column.

    The column width is fixed when the ORM is imported (from the
    process settings); a different dimension passed in later would
    write or query vectors of the wrong length.

    Raises:
        RuntimeError: On mismatch.
    """
    column_dimension = ChunkRecord.__table__.c.embedding.type.dimension
    if dimension != column_dimension:
        raise RuntimeError(
            f"Embedding dimension {dimension} does not match the chunks.embedding "
            f"column ({column_dimension}); set EMBEDDING_DIMENSION before start-up"
        )


async def ensure_schema(
    engine: AsyncEngine,
    *,
    dimension: int,
    index_kind: str = "ivfflat",
) -> None:
    """
    Create the extension, tables and ANN index if they are missing.

    The ANN index is skipped (with a warning) when the embedding
    dimension is above what pgvector can index; retrieval then falls
    back to the linear scan.
    """
    check_embedding_dimension(dimension)
    async with engine.begin() as conn:
        is_postgres = conn.dialect.name == "postgresql"
        if is_postgres:
            await conn.execute(text("CREATE EXTENSION IF NOT EXISTS vector"))

        await conn.run_sync(Base.metadata.create_all)

        if not is_postgres or index_kind == "none":
            return
        if dimension > PGVECTOR_INDEX_MAX_DIMENSION:
            logger.warning(
                "Skipping %s index: dimension %d exceeds pgvector limit (%d)",
                index_kind,
                dimension,
                PGVECTOR_INDEX_MAX_DIMENSION,
            )
            return
        await conn.execute(text(_INDEX_DDL[index_kind]))
        logger.info("Vector index ready (%s, dim=%d)", index_kind, dimension)


async def detect_vector_index(engine: AsyncEngine) -> str | None:
    """
    Access method (``ivfflat`` or ``hnsw``) of the cosine ANN index on
    ``chunks.embedding``, or None.

    ivfflat wins when both exist. Always None for non-PostgreSQL backends.
    """
    if engine.dialect.name != "postgresql":
        return None

    stmt = text(
        "SELECT indexname, indexdef FROM pg_indexes "
        "WHERE tablename = 'chunks' AND indexdef ILIKE '%vector_cosine_ops%' "
        "ORDER BY indexname"
    )
    async with engine.connect() as conn:
        result = await conn.execute(stmt)
        rows = result.all()

    definitions = " ".join(indexdef.lower() for _, indexdef in rows)
    for kind in ("ivfflat", "hnsw"):
        if f"using {kind}" in definitions:
            logger.info("Vector index detected: %s", kind)
            return kind
    return None


async def wait_for_db(engine: AsyncEngine, retries: int = 10, delay: float = 1.0) -> bool:
    """
    Wait for the database to accept connections.

    Useful in containerized environments where the database may start
    after the application.

    Returns:
        True once ``SELECT 1`` succeeds, False if all retries are exhausted.
    """
    for attempt in range(1, retries + 1):
        try:
            async with engine.connect() as conn:
                await conn.execute(text("SELECT 1"))
            logger.info("Database connection established")
            return True
        except (OSError, SQLAlchemyError) as e:
            logger.warning("Waiting for database (%d/%d)... %s", attempt, retries, type(e).__name__)
            await asyncio.sleep(delay)
    return False
