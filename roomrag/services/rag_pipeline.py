"""
RAG Pipeline Orchestrator

Coordinates the two workflows of the backend:

**Ingestion** (``ingest``):
    raw text → TextChunker → Embedder → VectorStore (atomic)

**Chat** (``stream_chat``):
    message → Embedder → Retriever → PromptAssembler
    (+ ConversationStore history) → StreamingCompletionGateway →
    caller (incremental) and ConversationStore (after the stream ends)

This is the single entry point for the API layer.
"""

from __future__ import annotations

import logging
from collections.abc import AsyncIterator
from typing import NamedTuple

import anyio
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker

from roomrag.core.config import Settings
from roomrag.core.exceptions import InvalidInput, StoreUnavailable
from roomrag.models.orm import DocumentRecord
from roomrag.models.schemas import normalize_room
from roomrag.services.chunking import TextChunker
from roomrag.services.conversation import ConversationStore
from roomrag.services.embeddings import Embedder, build_embedder, embed_query
from roomrag.services.llm import (
    GenerationBackend,
    StreamingCompletionGateway,
    build_generation_backend,
)
from roomrag.services.prompts import PromptAssembler, load_prompt_catalog
from roomrag.services.retrieval import Retriever
from roomrag.services.vector_store import VectorStore, select_strategy

logger = logging.getLogger(__name__)

MIN_INGEST_CHARS: int = 20
DEFAULT_SESSION_ID: str = "anonymous"


class IngestResult(NamedTuple):
    """Return value of a successful ingestion."""

    document_id: int
    chunks_count: int
    room_slug: str


class RAGPipeline:
    """
    Orchestrates ingestion and streaming chat.

    Each call opens its own database session(s) from the factory; the
    assistant turn is written with a fresh session after streaming ends.

    Usage::

        pipeline = await build_pipeline(settings, engine)
        result = await pipeline.ingest(text=faq, room="pink-beard")
        async for fragment in pipeline.stream_chat("hint?", room="pink-beard"):
            ...
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        *,
        chunker: TextChunker,
        embedder: Embedder,
        store: VectorStore,
        retriever: Retriever,
        conversations: ConversationStore,
        prompts: PromptAssembler,
        gateway: StreamingCompletionGateway,
        history_limit: int = 10,
    ) -> None:
        self._session_factory = session_factory
        self._chunker = chunker
        self._embedder = embedder
        self._store = store
        self._retriever = retriever
        self._conversations = conversations
        self._prompts = prompts
        self._gateway = gateway
        self._history_limit = history_limit

    @property
    def retrieval_strategy(self) -> str:
        """Name of the search strategy chosen at startup."""
        return self._store.strategy.name

    # ------------------------------------------------------------------
    # Ingestion
    # ------------------------------------------------------------------

    async def ingest(
        self,
        *,
        text: str,
        source: str = "manual",
        url: str | None = None,
        title: str | None = None,
        room: str | None = None,
    ) -> IngestResult:
        """
        Chunk, embed and persist one document.

        Embedding happens before any write, so an embedding failure
        leaves the store untouched; the write itself is all-or-nothing.

        Raises:
            InvalidInput: Text shorter than 20 characters or bad room.
            EmbeddingUnavailable: Embedding capability failed.
            StoreUnavailable: Write failed and was rolled back.
        """
        room_slug = normalize_room(room)
        if text is None or len(text.strip()) < MIN_INGEST_CHARS:
            raise InvalidInput("text too short", field="text")

        chunks = self._chunker.split(text)
        embeddings = await self._embedder.embed(chunks)

        document = DocumentRecord(
            source=source or "manual",
            url=url,
            title=title,
            text=text,
            room_slug=room_slug,
        )
        async with self._session_factory() as session:
            await self._store.upsert_chunks(session, document, chunks, embeddings)

        logger.info(
            "Ingested document %d ('%s', room=%s): %d chunks",
            document.id,
            title or source,
            room_slug,
            len(chunks),
        )
        return IngestResult(
            document_id=document.id,
            chunks_count=len(chunks),
            room_slug=room_slug,
        )

    # ------------------------------------------------------------------
    # Chat
    # ------------------------------------------------------------------

    async def stream_chat(
        self,
        message: str,
        *,
        session_id: str = DEFAULT_SESSION_ID,
        room: str | None = None,
    ) -> AsyncIterator[str]:
        """
        Answer ``message`` as a stream of text fragments.

        History is read before this turn is recorded, so the model sees
        prior turns plus the current message exactly once. Both turns are
        persisted together once the stream ends; if generation fails
        before the first fragment nothing is persisted and the error
        propagates.

        Raises:
            InvalidInput: Empty message or bad room.
            EmbeddingUnavailable / GenerationUnavailable / StoreUnavailable:
                Before the first fragment only.
        """
        room_slug = normalize_room(room)
        message = (message or "").strip()
        if not message:
            raise InvalidInput("Missing message", field="message")
        session_id = (session_id or "").strip() or DEFAULT_SESSION_ID

        async with self._session_factory() as session:
            history = await self._conversations.recent_history(
                session, session_id, self._history_limit
            )
            query_embedding = await embed_query(self._embedder, message)
            context = await self._retriever.top_k(session, query_embedding, room_slug)

        system_message = self._prompts.build(room_slug, context)
        stream = self._gateway.complete(system_message, history, message)

        completed = False
        try:
            async for fragment in stream:
                yield fragment
            completed = True
        finally:
            await stream.aclose()
            if completed or stream.started:
                await self._persist_exchange(session_id, room_slug, message, stream.text)

    async def _persist_exchange(
        self,
        session_id: str,
        room: str,
        message: str,
        reply: str,
    ) -> None:
        """
        Record the user turn and whatever reply text was produced.

        Shielded from cancellation so a client disconnect mid-stream
        still records the partial reply. The response has already been
        sent, so a store failure here can only be logged.
        """
        with anyio.CancelScope(shield=True):
            try:
                async with self._session_factory() as session:
                    if reply:
                        await self._conversations.record_exchange(
                            session, session_id, message, reply, room
                        )
                    else:
                        await self._conversations.append(session, session_id, "user", message, room)
            except (StoreUnavailable, SQLAlchemyError, OSError):
                logger.exception("Could not persist exchange for session %s", session_id)


async def build_pipeline(
    settings: Settings,
    engine: AsyncEngine,
    session_factory: async_sessionmaker[AsyncSession],
    *,
    embedder: Embedder | None = None,
    generation_backend: GenerationBackend | None = None,
) -> RAGPipeline:
    """
    Wire a RAGPipeline from settings.

    The retrieval strategy is chosen here, once, from the backing
    store's capabilities. ``embedder`` and ``generation_backend``
    override the configured backends.
    """
    strategy = await select_strategy(
        engine,
        settings.RETRIEVAL_STRATEGY,
        scan_limit=settings.LINEAR_SCAN_LIMIT,
    )
    store = VectorStore(strategy)
    return RAGPipeline(
        session_factory,
        chunker=TextChunker(settings.CHUNK_MAX_CHARS, settings.CHUNK_OVERLAP),
        embedder=embedder or build_embedder(settings),
        store=store,
        retriever=Retriever(store, default_k=settings.RETRIEVAL_TOP_K),
        conversations=ConversationStore(),
        prompts=PromptAssembler(load_prompt_catalog(settings.ROOM_PROMPTS_PATH)),
        gateway=StreamingCompletionGateway(
            generation_backend or build_generation_backend(settings)
        ),
        history_limit=settings.HISTORY_LIMIT,
    )
