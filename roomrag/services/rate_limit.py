"""
Hint Rate Limiter

Best-effort per-session cooldown for hint requests. One instance is
owned by the application (``app.state.hint_limiter``) and shared by all
requests of the process.
"""

from __future__ import annotations

import re
import threading
import time

_HINT_RE = re.compile(r"\bhints?\b", re.IGNORECASE)


def is_hint_request(message: str) -> bool:
    """True if the message asks for a hint."""
    return bool(_HINT_RE.search(message))


class HintRateLimiter:
    """
    Last-timestamp-per-key cooldown table.

    ``try_acquire`` is a check-and-set under a lock, so concurrent
    callers for the same key cannot both pass inside one window.
    A cooldown of 0 (or less) disables throttling.
    """

    def __init__(self, cooldown_seconds: float, max_keys: int = 10_000) -> None:
        self._cooldown = cooldown_seconds
        self._max_keys = max_keys
        self._last_seen: dict[str, float] = {}
        self._lock = threading.Lock()

    @property
    def cooldown_seconds(self) -> float:
        return self._cooldown

    def try_acquire(self, key: str, now: float | None = None) -> bool:
        """Record a request for ``key``; False if it falls inside the cooldown."""
        if self._cooldown <= 0:
            return True
        now = time.monotonic() if now is None else now

        with self._lock:
            last = self._last_seen.get(key)
            if last is not None and now - last < self._cooldown:
                return False
            if len(self._last_seen) >= self._max_keys:
                self._prune(now)
            self._last_seen[key] = now
            return True

    def release(self, key: str) -> None:
        """Give back a slot taken by ``try_acquire`` for a request that was not served."""
        with self._lock:
            self._last_seen.pop(key, None)

    def _prune(self, now: float) -> None:
        expired = [k for k, ts in self._last_seen.items() if now - ts >= self._cooldown]
        for k in expired:
            del self._last_seen[k]
