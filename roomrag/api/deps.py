"""
FastAPI dependencies.

The application owns its collaborators on ``app.state``; these pull
them out per request and run the access gate before any endpoint work.
"""

from __future__ import annotations

from fastapi import Header, Request

from roomrag.core.exceptions import Unauthorized
from roomrag.core.security import AccessPolicy
from roomrag.services.rag_pipeline import RAGPipeline
from roomrag.services.rate_limit import HintRateLimiter


def get_pipeline(request: Request) -> RAGPipeline:
    """FastAPI dependency: returns the application's RAGPipeline."""
    return request.app.state.pipeline


def get_access_policy(request: Request) -> AccessPolicy:
    return request.app.state.access_policy


def get_hint_limiter(request: Request) -> HintRateLimiter:
    return request.app.state.hint_limiter


def require_chat_access(
    request: Request,
    origin: str | None = Header(default=None),
    referer: str | None = Header(default=None),
) -> None:
    """Chat is open to allow-listed pages only; anything else is 403."""
    if not get_access_policy(request).allows_page(origin, referer):
        raise Unauthorized("Chat request from unrecognized page", {"origin": origin})


def require_ingest_access(
    request: Request,
    origin: str | None = Header(default=None),
    referer: str | None = Header(default=None),
    authorization: str | None = Header(default=None),
) -> None:
    """Ingest accepts allow-listed pages or the ingest bearer token; anything else is 401."""
    policy = get_access_policy(request)
    if policy.allows_page(origin, referer) or policy.allows_bearer(authorization):
        return
    raise Unauthorized("Ingest request without valid credentials", status_code=401)
