"""
RoomRAG Database Models

SQLAlchemy 2.0 ORM models for the document, chunk and conversation
storage layer.

Tables:
    documents: Ingested source texts, scoped by room.
    chunks: Overlapping document windows with embeddings.
    chat_turns: Per-session conversation history.

Integer primary keys are assigned in insertion order; retrieval uses
``chunks.id`` as its tie-break and history uses ``chat_turns.id`` as
its ordering key.
"""

from __future__ import annotations

from datetime import UTC, datetime
from typing import Any

from sqlalchemy import DateTime, ForeignKey, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from roomrag.core.config import get_settings
from roomrag.models.base import Base, EmbeddingVector

EMBEDDING_DIMENSION: int = get_settings().EMBEDDING_DIMENSION

GLOBAL_ROOM: str = "global"


def _utcnow() -> datetime:
    return datetime.now(UTC)


class DocumentRecord(Base):
    """
    Persistent storage for ingested documents.

    A document is immutable once chunked; re-ingesting the same text
    creates a new record.

    Attributes:
        id: Integer primary key.
        source: Free-form source label ("faq", "manual", ...).
        url: Optional origin URL.
        title: Optional display title.
        text: Full ingested text.
        room_slug: Room scope tag.
        updated_at: Ingestion timestamp.
        chunks: Related ChunkRecord instances (cascade delete).
    """

    __tablename__ = "documents"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    source: Mapped[str] = mapped_column(String(200), nullable=False)
    url: Mapped[str | None] = mapped_column(Text, nullable=True)
    title: Mapped[str | None] = mapped_column(String(500), nullable=True)
    text: Mapped[str] = mapped_column(Text, nullable=False)
    room_slug: Mapped[str] = mapped_column(
        String(100),
        nullable=False,
        default=GLOBAL_ROOM,
        index=True,
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=_utcnow,
    )

    # Relationship: cascade ensures chunks are deleted with the document
    chunks: Mapped[list[ChunkRecord]] = relationship(
        back_populates="document",
        cascade="all, delete-orphan",
        order_by="ChunkRecord.chunk_index",
    )

    def __repr__(self) -> str:
        return f"<DocumentRecord(id={self.id}, source='{self.source}', room='{self.room_slug}')>"


class ChunkRecord(Base):
    """
    Persistent storage for document chunks with vector embeddings.

    Attributes:
        id: Integer primary key (insertion order).
        document_id: Foreign key to parent document (CASCADE delete).
        chunk_index: Zero-based position within the parent document.
        content: Chunk text.
        embedding: EMBEDDING_DIMENSION-long vector.
        room_slug: Room scope tag, copied from the document.
    """

    __tablename__ = "chunks"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    document_id: Mapped[int] = mapped_column(
        Integer,
        ForeignKey("documents.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    chunk_index: Mapped[int] = mapped_column(Integer, nullable=False)
    content: Mapped[str] = mapped_column(Text, nullable=False)
    embedding: Mapped[Any] = mapped_column(
        EmbeddingVector(EMBEDDING_DIMENSION),
        nullable=False,
    )
    room_slug: Mapped[str] = mapped_column(
        String(100),
        nullable=False,
        default=GLOBAL_ROOM,
        index=True,
    )

    document: Mapped[DocumentRecord] = relationship(back_populates="chunks")

    def __repr__(self) -> str:
        return (
            f"<ChunkRecord(id={self.id}, doc={self.document_id}, "
            f"idx={self.chunk_index}, room='{self.room_slug}')>"
        )


class ChatTurnRecord(Base):
    """
    One message in a session's conversation history.

    Attributes:
        id: Integer primary key, the chronological ordering key.
        session_id: Caller-supplied session identifier.
        role: "user" or "assistant".
        content: Message text.
        room_slug: Room the turn was exchanged in.
        created_at: Insertion timestamp.
    """

    __tablename__ = "chat_turns"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    session_id: Mapped[str] = mapped_column(String(200), nullable=False, index=True)
    role: Mapped[str] = mapped_column(String(20), nullable=False)
    content: Mapped[str] = mapped_column(Text, nullable=False)
    room_slug: Mapped[str] = mapped_column(
        String(100),
        nullable=False,
        default=GLOBAL_ROOM,
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=_utcnow,
    )

    def __repr__(self) -> str:
        return f"<ChatTurnRecord(id={self.id}, session='{self.session_id}', role='{self.role}')>"
