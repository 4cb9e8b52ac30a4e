"""Models package: SQLAlchemy ORM and Pydantic schemas for RoomRAG."""

from roomrag.models.base import Base, EmbeddingVector
from roomrag.models.orm import (
    EMBEDDING_DIMENSION,
    GLOBAL_ROOM,
    ChatTurnRecord,
    ChunkRecord,
    DocumentRecord,
)
from roomrag.models.schemas import HistoryTurn, ScoredChunk, normalize_room

__all__ = [
    # SQLAlchemy ORM (persistence layer)
    "Base",
    "ChatTurnRecord",
    "ChunkRecord",
    "DocumentRecord",
    "EMBEDDING_DIMENSION",
    "EmbeddingVector",
    "GLOBAL_ROOM",
    # Pydantic schemas (service layer)
    "HistoryTurn",
    "ScoredChunk",
    "normalize_room",
]
