"""
RAG Pipeline Tests

End-to-end ingestion and streamed chat through RAGPipeline over an
in-memory SQLite database, with the keyword embedder and scripted
generation backend from conftest.

No external services required: runs entirely offline.
"""

from __future__ import annotations

from unittest.mock import AsyncMock

import pytest
from sqlalchemy import func, select
from sqlalchemy.exc import OperationalError
from sqlalchemy.ext.asyncio import AsyncSession

from roomrag.core.exceptions import (
    EmbeddingUnavailable,
    GenerationUnavailable,
    InvalidInput,
)
from roomrag.models.orm import ChatTurnRecord, ChunkRecord, DocumentRecord
from roomrag.repositories.rag import RAGRepository
from roomrag.services.conversation import ConversationStore
from roomrag.services.rag_pipeline import RAGPipeline

PINK_BEARD_FAQ = (
    "The parrot on the mast knows where the captain hid the chest. "
    "Ask the parrot twice before trying the brass lock. " * 4
)
TOWER_FAQ = "The tower radio needs three switches flipped in order before takeoff. " * 3
BOOKING_FAQ = "Booking is online only; booking changes need 24 hours notice."

# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


async def _collect(pipeline: RAGPipeline, message: str, **kwargs) -> str:
    return "".join([f async for f in pipeline.stream_chat(message, **kwargs)])


async def _turns(session: AsyncSession, session_id: str) -> list[tuple[str, str]]:
    history = await ConversationStore().recent_history(session, session_id, 50)
    return [(t.role, t.content) for t in history]


async def _count(session: AsyncSession, model) -> int:
    return await session.scalar(select(func.count()).select_from(model))


# ---------------------------------------------------------------------------
# Ingestion
# ---------------------------------------------------------------------------


class TestIngest:
    """Tests for chunk → embed → store."""

    @pytest.mark.asyncio
    async def test_stores_document_and_chunks(
        self, pipeline: RAGPipeline, session: AsyncSession
    ) -> None:
        result = await pipeline.ingest(
            text=PINK_BEARD_FAQ, title="Pink Beard FAQ", source="faq", room="Pink-Beard"
        )

        assert result.room_slug == "pink-beard"
        assert result.chunks_count > 1
        chunks = await RAGRepository().get_chunks_by_document(session, result.document_id)
        assert [c.chunk_index for c in chunks] == list(range(result.chunks_count))
        assert {c.room_slug for c in chunks} == {"pink-beard"}
        document = await RAGRepository().get_document_by_id(session, result.document_id)
        assert document is not None
        assert document.title == "Pink Beard FAQ"

    @pytest.mark.asyncio
    async def test_embeds_all_chunks_in_one_batch(
        self, pipeline: RAGPipeline, embedder
    ) -> None:
        result = await pipeline.ingest(text=PINK_BEARD_FAQ)

        assert len(embedder.calls) == 1
        assert len(embedder.calls[0]) == result.chunks_count

    @pytest.mark.asyncio
    async def test_default_room_is_global(self, pipeline: RAGPipeline) -> None:
        result = await pipeline.ingest(text=BOOKING_FAQ, room="")

        assert result.room_slug == "global"

    @pytest.mark.asyncio
    @pytest.mark.parametrize("text", ["too short", "   padded short    "])
    async def test_short_text_rejected(
        self, pipeline: RAGPipeline, embedder, session: AsyncSession, text: str
    ) -> None:
        with pytest.raises(InvalidInput):
            await pipeline.ingest(text=text)

        assert embedder.calls == []
        assert await _count(session, DocumentRecord) == 0

    @pytest.mark.asyncio
    async def test_invalid_room_rejected(self, pipeline: RAGPipeline) -> None:
        with pytest.raises(InvalidInput):
            await pipeline.ingest(text=BOOKING_FAQ, room="pink beard!")

    @pytest.mark.asyncio
    async def test_embedding_failure_stores_nothing(
        self, pipeline: RAGPipeline, embedder, session: AsyncSession
    ) -> None:
        embedder.embed = AsyncMock(side_effect=EmbeddingUnavailable("down"))

        with pytest.raises(EmbeddingUnavailable):
            await pipeline.ingest(text=PINK_BEARD_FAQ)

        assert await _count(session, DocumentRecord) == 0
        assert await _count(session, ChunkRecord) == 0


# ---------------------------------------------------------------------------
# Chat
# ---------------------------------------------------------------------------


class TestChat:
    """Tests for retrieve → prompt → stream → persist."""

    @pytest.mark.asyncio
    async def test_streams_backend_fragments(self, pipeline: RAGPipeline) -> None:
        fragments = [f async for f in pipeline.stream_chat("hello there", session_id="s1")]

        assert fragments == ["Ahoy", ", ", "matey!"]

    @pytest.mark.asyncio
    async def test_prompt_uses_room_and_global_context(
        self, pipeline: RAGPipeline, backend
    ) -> None:
        await pipeline.ingest(text=PINK_BEARD_FAQ, room="pink-beard")
        await pipeline.ingest(text=TOWER_FAQ, room="tower-control")
        await pipeline.ingest(text=BOOKING_FAQ, room="global")

        await _collect(pipeline, "Booking tips? Booking help from the parrot?", room="pink-beard")

        system = backend.calls[0][0]
        assert system["role"] == "system"
        assert "Room: Pink Beard" in system["content"]
        assert "parrot on the mast" in system["content"]
        assert "Booking is online only" in system["content"]
        assert "tower radio" not in system["content"]

    @pytest.mark.asyncio
    async def test_turns_persisted_after_stream(
        self, pipeline: RAGPipeline, session: AsyncSession
    ) -> None:
        reply = await _collect(pipeline, "Where do I start?", session_id="s1", room="pink-beard")

        assert reply == "Ahoy, matey!"
        assert await _turns(session, "s1") == [
            ("user", "Where do I start?"),
            ("assistant", "Ahoy, matey!"),
        ]
        turn_rooms = (await session.scalars(select(ChatTurnRecord.room_slug))).all()
        assert set(turn_rooms) == {"pink-beard"}

    @pytest.mark.asyncio
    async def test_history_sent_once_in_order(self, pipeline: RAGPipeline, backend) -> None:
        await _collect(pipeline, "U1", session_id="s1")
        backend.fragments = ["A2"]

        await _collect(pipeline, "U2", session_id="s1")

        messages = backend.calls[1]
        assert [(m["role"], m["content"]) for m in messages[1:]] == [
            ("user", "U1"),
            ("assistant", "Ahoy, matey!"),
            ("user", "U2"),
        ]

    @pytest.mark.asyncio
    async def test_blank_session_id_is_anonymous(
        self, pipeline: RAGPipeline, session: AsyncSession
    ) -> None:
        await _collect(pipeline, "hi", session_id="  ")

        assert await _turns(session, "anonymous") == [("user", "hi"), ("assistant", "Ahoy, matey!")]

    @pytest.mark.asyncio
    @pytest.mark.parametrize("message", ["", "   "])
    async def test_empty_message_rejected(
        self, pipeline: RAGPipeline, backend, message: str
    ) -> None:
        with pytest.raises(InvalidInput):
            await _collect(pipeline, message)

        assert backend.calls == []

    @pytest.mark.asyncio
    async def test_failure_before_first_fragment_persists_nothing(
        self, pipeline: RAGPipeline, backend, session: AsyncSession
    ) -> None:
        backend.fail_at = 0

        with pytest.raises(GenerationUnavailable):
            await _collect(pipeline, "hello", session_id="s1")

        assert await _count(session, ChatTurnRecord) == 0

    @pytest.mark.asyncio
    async def test_mid_stream_failure_keeps_partial_reply(
        self, pipeline: RAGPipeline, backend, session: AsyncSession
    ) -> None:
        backend.fail_at = 2

        reply = await _collect(pipeline, "hello", session_id="s1")

        assert reply == "Ahoy, "
        assert await _turns(session, "s1") == [("user", "hello"), ("assistant", "Ahoy, ")]

    @pytest.mark.asyncio
    async def test_empty_reply_records_user_turn_only(
        self, pipeline: RAGPipeline, backend, session: AsyncSession
    ) -> None:
        backend.fragments = []

        reply = await _collect(pipeline, "hello", session_id="s1")

        assert reply == ""
        assert await _turns(session, "s1") == [("user", "hello")]

    @pytest.mark.asyncio
    async def test_consumer_stops_early(
        self, pipeline: RAGPipeline, session: AsyncSession
    ) -> None:
        """A disconnecting client still leaves the partial exchange on record."""
        stream = pipeline.stream_chat("hello", session_id="s1")
        first = await anext(stream)
        await stream.aclose()

        assert first == "Ahoy"
        assert await _turns(session, "s1") == [("user", "hello"), ("assistant", "Ahoy")]

    @pytest.mark.asyncio
    async def test_retrieval_strategy_name(self, pipeline: RAGPipeline) -> None:
        assert pipeline.retrieval_strategy == "linear"

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "error",
        [OSError("connection reset by peer"), OperationalError("INSERT", {}, Exception("gone"))],
    )
    async def test_store_failure_after_stream_does_not_raise(
        self,
        pipeline: RAGPipeline,
        monkeypatch: pytest.MonkeyPatch,
        error: Exception,
    ) -> None:
        record_exchange = AsyncMock(side_effect=error)
        monkeypatch.setattr(pipeline._conversations, "record_exchange", record_exchange)

        reply = await _collect(pipeline, "hello", session_id="s1")

        assert reply == "Ahoy, matey!"
        record_exchange.assert_awaited_once()
