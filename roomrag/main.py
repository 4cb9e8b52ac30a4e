"""
RoomRAG: Application Entry Point

FastAPI application for room-scoped retrieval-augmented chat.

Start locally:
    uvicorn roomrag.main:app --host 0.0.0.0 --port 8000 --reload
"""

from __future__ import annotations

import logging
import math
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import PlainTextResponse

from roomrag.api.v1.rag import router as rag_router
from roomrag.core.config import Settings, get_settings
from roomrag.core.database import (
    build_engine,
    build_session_factory,
    check_embedding_dimension,
    ensure_schema,
    wait_for_db,
)
from roomrag.core.exceptions import RateLimited, RoomRAGError
from roomrag.core.logging import setup_logging
from roomrag.core.security import AccessPolicy
from roomrag.services.embeddings import Embedder
from roomrag.services.llm import GenerationBackend
from roomrag.services.rag_pipeline import RAGPipeline, build_pipeline
from roomrag.services.rate_limit import HintRateLimiter

logger = logging.getLogger(__name__)


def create_app(
    settings: Settings | None = None,
    *,
    pipeline: RAGPipeline | None = None,
    embedder: Embedder | None = None,
    generation_backend: GenerationBackend | None = None,
) -> FastAPI:
    """
    Build the FastAPI application.

    Args:
        settings: Defaults to the process-wide settings.
        pipeline: Pre-built pipeline; when given, the lifespan does not
            touch the database.
        embedder / generation_backend: Overrides for the configured
            backends when the lifespan builds the pipeline.
    """
    settings = settings or get_settings()
    setup_logging(settings.LOG_LEVEL)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """
        Startup:
            1. Check the embedding dimension against the ORM column.
            2. Wait for the database, then ensure schema and vector index.
            3. Pick the retrieval strategy and wire the pipeline.

        Shutdown:
            1. Dispose the database engine.
        """
        logger.info("Starting %s (%s)...", settings.PROJECT_NAME, settings.ENVIRONMENT)
        if app.state.pipeline is not None:
            yield
            return

        check_embedding_dimension(settings.EMBEDDING_DIMENSION)
        engine = build_engine(settings.SQLALCHEMY_DATABASE_URL, settings.DB_POOL_SIZE)
        try:
            if not await wait_for_db(engine):
                logger.critical("Could not connect to the database. Shutting down.")
                raise RuntimeError("Database connection failed")
            if settings.AUTO_CREATE_SCHEMA:
                await ensure_schema(
                    engine,
                    dimension=settings.EMBEDDING_DIMENSION,
                    index_kind=settings.VECTOR_INDEX,
                )
            app.state.pipeline = await build_pipeline(
                settings,
                engine,
                build_session_factory(engine),
                embedder=embedder,
                generation_backend=generation_backend,
            )
            yield
        finally:
            await engine.dispose()
            logger.info("%s shutdown complete", settings.PROJECT_NAME)

    app = FastAPI(
        title=settings.PROJECT_NAME,
        description="Room-scoped document ingestion and streamed retrieval-augmented chat.",
        version="0.1.0",
        lifespan=lifespan,
    )
    app.state.settings = settings
    app.state.pipeline = pipeline
    app.state.access_policy = AccessPolicy.from_settings(settings)
    app.state.hint_limiter = HintRateLimiter(settings.HINT_COOLDOWN_SECONDS)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.allowed_origins,
        allow_methods=["GET", "POST", "OPTIONS"],
        allow_headers=["Content-Type", "Authorization"],
        max_age=86400,
    )

    @app.exception_handler(RoomRAGError)
    async def handle_roomrag_error(request: Request, exc: RoomRAGError) -> PlainTextResponse:
        level = logging.WARNING if exc.status_code < 500 else logging.ERROR
        logger.log(level, "%s %s -> %d: %s", request.method, request.url.path, exc.status_code, exc)
        headers = None
        if isinstance(exc, RateLimited):
            retry_after = exc.details.get("retry_after")
            if retry_after:
                headers = {"Retry-After": str(math.ceil(retry_after))}
        return PlainTextResponse(exc.public_message, status_code=exc.status_code, headers=headers)

    @app.exception_handler(Exception)
    async def handle_unexpected(request: Request, exc: Exception) -> PlainTextResponse:
        logger.error(
            "Unhandled error on %s %s", request.method, request.url.path, exc_info=exc
        )
        return PlainTextResponse("Server error", status_code=500)

    app.include_router(rag_router, prefix="/api/v1", tags=["RAG"])

    @app.get("/health")
    @app.get("/healthz")
    async def health_check() -> dict[str, str]:
        """Health check for load balancers and orchestrators."""
        current = app.state.pipeline
        return {
            "status": "ok",
            "service": "roomrag",
            "environment": settings.ENVIRONMENT,
            "retrieval": current.retrieval_strategy if current is not None else "starting",
        }

    return app


app = create_app()
