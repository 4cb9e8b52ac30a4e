"""
Exception hierarchy for the RoomRAG backend.

Components raise these; the exception handlers registered in
``roomrag.main`` are the only place they become HTTP responses.
``public_message`` is what the client sees, ``str(exc)`` is what the
logs see.
"""

from __future__ import annotations

from typing import Any


class RoomRAGError(Exception):
    """Base exception for all RoomRAG errors."""

    status_code: int = 500
    public_message: str = "Server error"

    def __init__(
        self,
        message: str,
        details: dict[str, Any] | None = None,
        *,
        status_code: int | None = None,
    ) -> None:
        self.message = message
        self.details = details or {}
        if status_code is not None:
            self.status_code = status_code
        super().__init__(message)

    def __str__(self) -> str:
        if self.details:
            return f"{self.message} | Details: {self.details}"
        return self.message


class InvalidInput(RoomRAGError):
    """Raised when a request field is missing or malformed."""

    status_code = 400

    def __init__(
        self,
        message: str,
        field: str | None = None,
        details: dict[str, Any] | None = None,
    ) -> None:
        details = details or {}
        if field:
            details["field"] = field
        super().__init__(message, details)

    @property
    def public_message(self) -> str:  # type: ignore[override]
        # Validation messages never carry internals; show them as-is.
        return self.message


class Unauthorized(RoomRAGError):
    """Raised when a request fails the access gate."""

    status_code = 403

    @property
    def public_message(self) -> str:  # type: ignore[override]
        return "Unauthorized" if self.status_code == 401 else "Forbidden"


class RateLimited(RoomRAGError):
    """Raised when a throttled request arrives inside its cooldown window."""

    status_code = 429
    public_message = "Easy there! Give it a few seconds before asking for another hint."


class EmbeddingUnavailable(RoomRAGError):
    """Raised when the embedding capability fails or returns malformed output."""

    status_code = 503
    public_message = "Service temporarily unavailable"


class GenerationUnavailable(RoomRAGError):
    """Raised when the generation capability fails before producing output."""

    status_code = 503
    public_message = "Service temporarily unavailable"


class StoreUnavailable(RoomRAGError):
    """Raised when the backing store fails; partial writes are rolled back first."""

    status_code = 503
    public_message = "Service temporarily unavailable"
