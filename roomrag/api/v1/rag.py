"""
RAG API Router

HTTP endpoints for room-scoped retrieval-augmented chat.

Endpoints:
    POST /ingest: Chunk, embed and store a document for a room.
    POST /chat: Stream an answer grounded in the room's documents.
"""

from __future__ import annotations

import logging
from collections.abc import AsyncIterator

import anyio
from fastapi import APIRouter, Depends, Request
from fastapi.responses import StreamingResponse

from roomrag.api.deps import (
    get_hint_limiter,
    get_pipeline,
    require_chat_access,
    require_ingest_access,
)
from roomrag.core.exceptions import RateLimited
from roomrag.schemas.api import ChatRequest, IngestRequest, IngestResponse
from roomrag.services.rag_pipeline import DEFAULT_SESSION_ID, RAGPipeline
from roomrag.services.rate_limit import HintRateLimiter, is_hint_request

logger = logging.getLogger(__name__)

router = APIRouter()

STREAM_MEDIA_TYPE = "text/plain; charset=utf-8"


async def _relay(first: str, fragments: AsyncIterator[str]) -> AsyncIterator[str]:
    """
    Yield the already-primed first fragment, then the rest.

    Closing the pipeline stream is shielded so a client disconnect still
    lets it record the exchange.
    """
    try:
        if first:
            yield first
        async for fragment in fragments:
            yield fragment
    finally:
        with anyio.CancelScope(shield=True):
            await fragments.aclose()  # type: ignore[attr-defined]


@router.post(
    "/ingest",
    response_model=IngestResponse,
    summary="Ingest a document into a room",
    dependencies=[Depends(require_ingest_access)],
)
async def ingest(
    request: IngestRequest,
    pipeline: RAGPipeline = Depends(get_pipeline),
) -> IngestResponse:
    """
    Split the text into overlapping chunks, embed them and store the
    document with its chunks in one transaction.
    """
    result = await pipeline.ingest(
        text=request.text,
        source=request.source,
        url=request.url,
        title=request.title,
        room=request.room_slug,
    )
    return IngestResponse(
        document_id=result.document_id,
        chunks=result.chunks_count,
        room_slug=result.room_slug,
    )


@router.post(
    "/chat",
    summary="Stream a room-scoped answer",
    response_class=StreamingResponse,
    dependencies=[Depends(require_chat_access)],
)
async def chat(
    request: ChatRequest,
    http_request: Request,
    pipeline: RAGPipeline = Depends(get_pipeline),
    limiter: HintRateLimiter = Depends(get_hint_limiter),
) -> StreamingResponse:
    """
    Answer with a ``text/plain`` stream.

    The first fragment is pulled before the response starts, so input,
    retrieval and early generation failures still map to a proper status
    code. Past that point a failure can only end the body early.

    A hint only uses up the session's cooldown once it is served: the
    slot is released again if the request fails before streaming.
    """
    session_id = request.session_id.strip() or DEFAULT_SESSION_ID
    hint_key = None
    if is_hint_request(request.message):
        hint_key = _hint_key(session_id, http_request)
        if not limiter.try_acquire(hint_key):
            raise RateLimited(
                "Hint cooldown active",
                {"session_id": session_id, "retry_after": limiter.cooldown_seconds},
            )

    logger.info("Chat request: session=%s room=%s", session_id, request.room)
    fragments = pipeline.stream_chat(request.message, session_id=session_id, room=request.room)
    try:
        first = await anext(fragments)
    except StopAsyncIteration:
        first = ""
    except Exception:
        if hint_key is not None:
            limiter.release(hint_key)
        raise

    return StreamingResponse(_relay(first, fragments), media_type=STREAM_MEDIA_TYPE)


def _hint_key(session_id: str, http_request: Request) -> str:
    """Cooldown key; callers without a session id are told apart by address."""
    if session_id != DEFAULT_SESSION_ID:
        return session_id
    host = http_request.client.host if http_request.client else "unknown"
    return f"{DEFAULT_SESSION_ID}@{host}"
