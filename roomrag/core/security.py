"""
Access Gate

Decides whether a chat or ingest call may proceed, from the request's
Origin, Referer and Authorization headers:

    chat: Origin on the allow-list OR Referer matches REFERER_REGEX.
    ingest: the same, OR ``Authorization: Bearer <INGEST_TOKEN>``.
"""

from __future__ import annotations

import re
import secrets
from dataclasses import dataclass, field

from roomrag.core.config import Settings


@dataclass(frozen=True)
class AccessPolicy:
    """Immutable allow-list / referer / bearer configuration."""

    allowed_origins: frozenset[str] = field(default_factory=frozenset)
    referer_pattern: re.Pattern[str] | None = None
    ingest_token: str | None = None

    @classmethod
    def from_settings(cls, settings: Settings) -> AccessPolicy:
        pattern = (
            re.compile(settings.REFERER_REGEX, re.IGNORECASE)
            if settings.REFERER_REGEX
            else None
        )
        return cls(
            allowed_origins=frozenset(settings.allowed_origins),
            referer_pattern=pattern,
            ingest_token=settings.INGEST_TOKEN or None,
        )

    def allows_page(self, origin: str | None, referer: str | None) -> bool:
        """Origin allow-listed, or referer matching the configured pattern."""
        if origin and origin in self.allowed_origins:
            return True
        if referer and self.referer_pattern is not None:
            return self.referer_pattern.search(referer) is not None
        return False

    def allows_bearer(self, authorization: str | None) -> bool:
        """Constant-time check of ``Bearer <token>``; False when no token is configured."""
        if not self.ingest_token or not authorization:
            return False
        scheme, _, credential = authorization.partition(" ")
        if scheme.lower() != "bearer" or not credential:
            return False
        return secrets.compare_digest(credential.strip().encode(), self.ingest_token.encode())
