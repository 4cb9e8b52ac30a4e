"""
API Schemas

Pydantic models for the ingest and chat request/response cycle.
"""

from __future__ import annotations

from pydantic import BaseModel, Field


class IngestRequest(BaseModel):
    """Request body for document ingestion."""

    source: str = Field(default="manual", description="Where the text came from")
    url: str | None = Field(default=None, description="Optional source URL")
    title: str | None = Field(default=None, description="Optional document title")
    text: str = Field(..., description="Raw document text (at least 20 characters)")
    room_slug: str = Field(default="global", description="Room the document belongs to")


class IngestResponse(BaseModel):
    """Response for a successful ingestion."""

    document_id: int = Field(description="Identifier of the stored document")
    chunks: int = Field(description="Number of chunks stored")
    room_slug: str = Field(description="Normalized room slug")


class ChatRequest(BaseModel):
    """Request body for a streamed chat turn."""

    message: str = Field(..., description="The user's message")
    session_id: str = Field(default="anonymous", description="Conversation identifier")
    room: str = Field(default="global", description="Room scope for retrieval and prompt")
