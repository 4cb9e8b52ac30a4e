"""
Embedding Service

Converts text into fixed-length float vectors.

Backends:
    - OpenAIEmbedder: remote ``embeddings.create`` via the async OpenAI
      SDK, all inputs batched into one call (default).
    - LocalEmbedder: sentence-transformers model loaded lazily, with
      inference offloaded to a thread so the event loop stays free.

Every failure of the underlying capability surfaces as
``EmbeddingUnavailable``; nothing is retried here.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Sequence
from typing import Any, Protocol

from openai import AsyncOpenAI, OpenAIError

from roomrag.core.config import Settings
from roomrag.core.exceptions import EmbeddingUnavailable

logger = logging.getLogger(__name__)


class Embedder(Protocol):
    """Anything that turns a batch of texts into one vector per text."""

    async def embed(self, texts: Sequence[str]) -> list[list[float]]: ...


def _check_count(texts: Sequence[str], vectors: Sequence[Any]) -> None:
    if len(vectors) != len(texts):
        raise EmbeddingUnavailable(
            "Embedding count mismatch",
            {"expected": len(texts), "received": len(vectors)},
        )


async def embed_query(embedder: Embedder, text: str) -> list[float]:
    """Single-text convenience wrapper around ``embedder.embed``."""
    vectors = await embedder.embed([text])
    return vectors[0]


class OpenAIEmbedder:
    """
    Async embedding client backed by the OpenAI embeddings endpoint.

    Usage::

        embedder = OpenAIEmbedder(AsyncOpenAI(), model="text-embedding-3-large")
        vectors = await embedder.embed(["hello", "world"])
        assert len(vectors) == 2
    """

    def __init__(
        self,
        client: AsyncOpenAI,
        model: str = "text-embedding-3-large",
        dimensions: int | None = None,
    ) -> None:
        self._client = client
        self._model = model
        # Only the text-embedding-3 family accepts a ``dimensions`` argument
        self._dimensions = dimensions if model.startswith("text-embedding-3") else None

    async def embed(self, texts: Sequence[str]) -> list[list[float]]:
        """
        Embed a batch of texts in one API call.

        Returns:
            One vector per input text, same order.

        Raises:
            EmbeddingUnavailable: On API failure or malformed response.
        """
        if not texts:
            return []

        kwargs: dict[str, Any] = {
            "model": self._model,
            "input": [t.replace("\n", " ") for t in texts],
        }
        if self._dimensions is not None:
            kwargs["dimensions"] = self._dimensions

        try:
            response = await self._client.embeddings.create(**kwargs)
        except OpenAIError as e:
            logger.error("Embedding request failed (%s): %s", type(e).__name__, e)
            raise EmbeddingUnavailable(f"Embedding request failed: {type(e).__name__}") from e

        data = sorted(response.data, key=lambda item: item.index)
        _check_count(texts, data)
        logger.debug("Embedded %d texts (model=%s)", len(texts), self._model)
        return [list(item.embedding) for item in data]


class LocalEmbedder:
    """
    Embedding backend running a local sentence-transformers model.

    The model is loaded on first use; the import is deferred so that
    ``sentence_transformers`` is only required when this backend is
    selected.
    """

    def __init__(self, model_name: str = "all-MiniLM-L6-v2") -> None:
        self._model_name = model_name
        self._model: Any = None

    def _get_model(self) -> Any:
        if self._model is None:
            from sentence_transformers import SentenceTransformer

            logger.info("Loading embedding model: %s ...", self._model_name)
            self._model = SentenceTransformer(self._model_name)
            logger.info("Model loaded")
        return self._model

    def _encode_sync(self, texts: list[str]) -> list[list[float]]:
        """CPU-bound; always call via ``asyncio.to_thread``."""
        embeddings = self._get_model().encode(texts, normalize_embeddings=True)
        result: list[list[float]] = embeddings.tolist()
        return result

    async def embed(self, texts: Sequence[str]) -> list[list[float]]:
        if not texts:
            return []
        try:
            vectors = await asyncio.to_thread(self._encode_sync, list(texts))
        except Exception as e:
            logger.exception("Local embedding failed")
            raise EmbeddingUnavailable(f"Local embedding failed: {type(e).__name__}") from e
        _check_count(texts, vectors)
        return vectors


def build_embedder(settings: Settings) -> Embedder:
    """Instantiate the embedding backend selected by EMBEDDING_BACKEND."""
    if settings.EMBEDDING_BACKEND == "local":
        return LocalEmbedder(settings.EMBEDDING_MODEL)
    return OpenAIEmbedder(
        AsyncOpenAI(api_key=settings.OPENAI_API_KEY),
        model=settings.EMBEDDING_MODEL,
        dimensions=settings.EMBEDDING_DIMENSION,
    )
