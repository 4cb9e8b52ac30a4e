"""
Pytest Configuration and Fixtures

Shared fixtures for the offline test suite: an in-memory SQLite
database (aiosqlite) and deterministic stand-ins for the embedding and
generation backends. No external services, network or API keys needed.
"""

import os

# ---------------------------------------------------------------------------
# Test environment defaults: MUST be before any roomrag imports.
#
# ``roomrag.main`` builds its module-level app at import time, and the ORM
# reads EMBEDDING_DIMENSION from settings; setdefault keeps any value the
# developer exported explicitly.
# ---------------------------------------------------------------------------
_test_env = {
    "DATABASE_URL": "sqlite+aiosqlite:///:memory:",
    "OPENAI_API_KEY": "mock",
    "EMBEDDING_DIMENSION": "4",
    "LOG_LEVEL": "WARNING",
}
for _key, _value in _test_env.items():
    os.environ.setdefault(_key, _value)

# ---------------------------------------------------------------------------
# Imports (safe now that env vars are set)
# ---------------------------------------------------------------------------
from collections.abc import AsyncIterator, Sequence  # noqa: E402

import pytest  # noqa: E402
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker  # noqa: E402

from roomrag.core.config import Settings  # noqa: E402
from roomrag.core.database import build_engine, build_session_factory, ensure_schema  # noqa: E402
from roomrag.core.exceptions import GenerationUnavailable  # noqa: E402
from roomrag.services.chunking import TextChunker  # noqa: E402
from roomrag.services.conversation import ConversationStore  # noqa: E402
from roomrag.services.llm import StreamingCompletionGateway  # noqa: E402
from roomrag.services.prompts import PromptAssembler, load_prompt_catalog  # noqa: E402
from roomrag.services.rag_pipeline import RAGPipeline  # noqa: E402
from roomrag.services.retrieval import Retriever  # noqa: E402
from roomrag.services.vector_store import LinearScanSearch, VectorStore  # noqa: E402

SQLITE_URL = "sqlite+aiosqlite:///:memory:"
KEYWORDS = ("parrot", "tower", "booking", "hint")


# ---------------------------------------------------------------------------
# Backend doubles
# ---------------------------------------------------------------------------


class KeywordEmbedder:
    """
    Deterministic embedder: one dimension per keyword, valued by count.

    Texts sharing a keyword are similar; texts sharing none score 0.
    """

    def __init__(self) -> None:
        self.calls: list[list[str]] = []

    async def embed(self, texts: Sequence[str]) -> list[list[float]]:
        self.calls.append(list(texts))
        return [[float(t.lower().count(k)) for k in KEYWORDS] for t in texts]


class ScriptedBackend:
    """
    Generation backend that replays fixed fragments.

    Args:
        fragments: Text pieces to yield, in order.
        fail_at: Raise GenerationUnavailable instead of yielding the
            fragment at this position (``len(fragments)`` fails after all).
    """

    def __init__(
        self,
        fragments: Sequence[str] = ("Ahoy", ", ", "matey!"),
        fail_at: int | None = None,
    ) -> None:
        self.fragments = list(fragments)
        self.fail_at = fail_at
        self.calls: list[list[dict[str, str]]] = []

    async def stream(self, messages: list[dict[str, str]]) -> AsyncIterator[str]:
        self.calls.append(messages)
        for i, fragment in enumerate(self.fragments):
            if i == self.fail_at:
                raise GenerationUnavailable("scripted failure")
            yield fragment
        if self.fail_at is not None and self.fail_at >= len(self.fragments):
            raise GenerationUnavailable("scripted failure")


# ---------------------------------------------------------------------------
# Database
# ---------------------------------------------------------------------------


@pytest.fixture
async def engine() -> AsyncIterator[AsyncEngine]:
    """Fresh in-memory database with the full schema."""
    engine = build_engine(SQLITE_URL)
    await ensure_schema(engine, dimension=len(KEYWORDS))
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return build_session_factory(engine)


@pytest.fixture
async def session(
    session_factory: async_sessionmaker[AsyncSession],
) -> AsyncIterator[AsyncSession]:
    async with session_factory() as session:
        yield session


# ---------------------------------------------------------------------------
# Services
# ---------------------------------------------------------------------------


@pytest.fixture
def embedder() -> KeywordEmbedder:
    return KeywordEmbedder()


@pytest.fixture
def backend() -> ScriptedBackend:
    return ScriptedBackend()


@pytest.fixture
def store() -> VectorStore:
    return VectorStore(LinearScanSearch())


@pytest.fixture
def pipeline(
    session_factory: async_sessionmaker[AsyncSession],
    embedder: KeywordEmbedder,
    backend: ScriptedBackend,
    store: VectorStore,
) -> RAGPipeline:
    """Pipeline over SQLite with small chunks and the scripted backends."""
    return RAGPipeline(
        session_factory,
        chunker=TextChunker(max_chars=200, overlap=20),
        embedder=embedder,
        store=store,
        retriever=Retriever(store, default_k=3),
        conversations=ConversationStore(),
        prompts=PromptAssembler(load_prompt_catalog()),
        gateway=StreamingCompletionGateway(backend),
        history_limit=10,
    )


@pytest.fixture
def settings() -> Settings:
    """Settings for app-level tests; nothing read from .env."""
    return Settings(
        _env_file=None,
        DATABASE_URL=SQLITE_URL,
        ALLOWED_ORIGINS="https://exithis.com, https://www.exithis.com",
        REFERER_REGEX=r"^https://(www\.)?exithis\.com/",
        INGEST_TOKEN="seed-token",
        HINT_COOLDOWN_SECONDS=20.0,
        EMBEDDING_DIMENSION=len(KEYWORDS),
        RETRIEVAL_STRATEGY="auto",
        LOG_LEVEL="WARNING",
    )
