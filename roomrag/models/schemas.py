"""
RoomRAG Domain Schemas

Pydantic models for the data flowing between the retrieval,
conversation and generation services, plus room slug normalization.
"""

from __future__ import annotations

import re
from typing import Literal

from pydantic import BaseModel, Field

from roomrag.core.exceptions import InvalidInput
from roomrag.models.orm import GLOBAL_ROOM

_ROOM_SLUG_RE = re.compile(r"^[a-z0-9][a-z0-9_-]*$")

Role = Literal["user", "assistant"]


def normalize_room(room: str | None) -> str:
    """
    Resolve a caller-supplied room into its canonical slug.

    Blank or missing rooms resolve to ``global``; slugs are
    case-insensitive and stored lower-cased.

    Raises:
        InvalidInput: If the slug contains anything but letters, digits,
            ``-`` or ``_``.
    """
    slug = (room or "").strip().lower()
    if not slug:
        return GLOBAL_ROOM
    if len(slug) > 100 or not _ROOM_SLUG_RE.match(slug):
        raise InvalidInput(f"Invalid room slug: {room!r}", field="room")
    return slug


class ScoredChunk(BaseModel):
    """A retrieved chunk with its cosine similarity to the query."""

    chunk_id: int = Field(description="Chunk primary key (insertion order)")
    document_id: int = Field(description="Parent document identifier")
    chunk_index: int = Field(ge=0, description="Position within source document")
    content: str = Field(description="Chunk text content")
    room_slug: str = Field(description="Room scope tag")
    score: float = Field(description="Cosine similarity (higher = more relevant)")


class HistoryTurn(BaseModel):
    """One conversation turn as presented to the generation step."""

    role: Role
    content: str

    def as_message(self) -> dict[str, str]:
        """Chat-completions message dict."""
        return {"role": self.role, "content": self.content}
