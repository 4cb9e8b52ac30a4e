"""
Application Configuration

Centralized settings management using Pydantic BaseSettings.
All values are loaded from environment variables or .env file.
"""

from __future__ import annotations

from functools import lru_cache
from pathlib import Path
from typing import Literal

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """
    Application settings with environment variable binding.

    Database:
        Either DATABASE_URL (``postgres://`` URLs are accepted and
        rewritten for asyncpg) or the POSTGRES_* family.

    Optional env vars:
        LOG_LEVEL (INFO), EMBEDDING_BACKEND (openai), GENERATION_BACKEND
        (openai), RETRIEVAL_STRATEGY (auto), ALLOWED_ORIGINS (""),
        REFERER_REGEX (unset), INGEST_TOKEN (unset)
    """

    PROJECT_NAME: str = "RoomRAG"
    ENVIRONMENT: str = "local"

    # Database
    DATABASE_URL: str | None = None
    POSTGRES_USER: str | None = None
    POSTGRES_PASSWORD: str | None = None
    POSTGRES_HOST: str = "localhost"
    POSTGRES_PORT: int = 5432
    POSTGRES_DB: str | None = None
    DB_POOL_SIZE: int = 5
    AUTO_CREATE_SCHEMA: bool = True

    # Embeddings
    OPENAI_API_KEY: str | None = None
    EMBEDDING_BACKEND: Literal["openai", "local"] = "openai"
    EMBEDDING_MODEL: str = "text-embedding-3-large"
    EMBEDDING_DIMENSION: int = 3072

    # Generation
    GENERATION_BACKEND: Literal["openai", "ollama"] = "openai"
    CHAT_MODEL: str = "gpt-4o-mini"
    CHAT_TEMPERATURE: float = 0.3
    OLLAMA_BASE_URL: str = "http://host.docker.internal:11434"
    OLLAMA_MODEL: str = "mistral"
    OLLAMA_TIMEOUT: float = 30.0

    # Chunking & retrieval
    CHUNK_MAX_CHARS: int = 1200
    CHUNK_OVERLAP: int = 150
    RETRIEVAL_TOP_K: int = 6
    HISTORY_LIMIT: int = 10
    RETRIEVAL_STRATEGY: Literal["auto", "indexed", "linear"] = "auto"
    VECTOR_INDEX: Literal["ivfflat", "hnsw", "none"] = "ivfflat"
    LINEAR_SCAN_LIMIT: int | None = None

    # Access gate
    ALLOWED_ORIGINS: str = ""
    REFERER_REGEX: str | None = None
    INGEST_TOKEN: str | None = None
    HINT_COOLDOWN_SECONDS: float = 20.0

    # Room prompt catalog (JSON); bundled catalog when unset
    ROOM_PROMPTS_PATH: Path | None = None

    # Logging
    LOG_LEVEL: str = "INFO"

    model_config = SettingsConfigDict(
        env_file=".env",
        env_ignore_empty=True,
        extra="ignore",  # Silently ignore unknown env vars
    )

    @property
    def SQLALCHEMY_DATABASE_URL(self) -> str:
        """Async connection string, asyncpg driver for PostgreSQL."""
        if self.DATABASE_URL:
            url = self.DATABASE_URL
            for prefix in ("postgres://", "postgresql://"):
                if url.startswith(prefix):
                    return "postgresql+asyncpg://" + url[len(prefix) :]
            return url
        if not (self.POSTGRES_USER and self.POSTGRES_DB):
            raise ValueError(
                "Database not configured: set DATABASE_URL or "
                "POSTGRES_USER/POSTGRES_PASSWORD/POSTGRES_DB"
            )
        return (
            f"postgresql+asyncpg://{self.POSTGRES_USER}:{self.POSTGRES_PASSWORD}"
            f"@{self.POSTGRES_HOST}:{self.POSTGRES_PORT}/{self.POSTGRES_DB}"
        )

    @property
    def allowed_origins(self) -> list[str]:
        """ALLOWED_ORIGINS split on commas, blanks dropped."""
        return [o.strip() for o in self.ALLOWED_ORIGINS.split(",") if o.strip()]


@lru_cache
def get_settings() -> Settings:
    """Load settings once per process."""
    return Settings()
