"""
Chunking Service

Splits ingested text into overlapping fixed-size character windows
suitable for embedding and vector retrieval.

Window rule:
    - each window holds at most ``max_chars`` characters;
    - the next window starts ``overlap_chars`` before the previous end,
      but always at least one character after the previous start, so
      the loop terminates even when overlap >= max_chars;
    - splitting stops once a window reaches the end of the text.

Defaults (1200 / 150) keep chunks well inside the embedding model's
context window.
"""

from __future__ import annotations

import logging

from roomrag.core.exceptions import InvalidInput

logger = logging.getLogger(__name__)

DEFAULT_MAX_CHARS: int = 1200
DEFAULT_OVERLAP: int = 150


def chunk_spans(text: str, max_chars: int, overlap_chars: int) -> list[tuple[int, int]]:
    """
    Compute the raw ``(start, end)`` character spans of every window.

    Spans are untrimmed and may include whitespace-only windows;
    ``chunk_text`` does the trimming and filtering.

    Raises:
        InvalidInput: If text is empty, max_chars <= 0 or overlap_chars < 0.
    """
    if not text:
        raise InvalidInput("text must not be empty", field="text")
    if max_chars <= 0:
        raise InvalidInput(f"max_chars must be positive, got {max_chars}", field="max_chars")
    if overlap_chars < 0:
        raise InvalidInput(
            f"overlap_chars must not be negative, got {overlap_chars}",
            field="overlap_chars",
        )

    spans: list[tuple[int, int]] = []
    start = 0
    length = len(text)
    while start < length:
        end = min(length, start + max_chars)
        spans.append((start, end))
        if end == length:
            break
        start = max(end - overlap_chars, start + 1)
    return spans


def chunk_text(
    text: str,
    max_chars: int = DEFAULT_MAX_CHARS,
    overlap_chars: int = DEFAULT_OVERLAP,
) -> list[str]:
    """
    Split ``text`` into overlapping, trimmed, non-empty chunks.

    Pure and deterministic.

    Raises:
        InvalidInput: See ``chunk_spans``.
    """
    windows = (text[start:end].strip() for start, end in chunk_spans(text, max_chars, overlap_chars))
    return [w for w in windows if w]


class TextChunker:
    """
    Deployment-configured wrapper around ``chunk_text``.

    Usage::

        chunker = TextChunker(max_chars=200, overlap=50)
        parts = chunker.split(raw_text)
    """

    def __init__(
        self,
        max_chars: int = DEFAULT_MAX_CHARS,
        overlap: int = DEFAULT_OVERLAP,
    ) -> None:
        if max_chars <= 0:
            raise ValueError(f"max_chars must be positive, got {max_chars}")
        if overlap < 0:
            raise ValueError(f"overlap must not be negative, got {overlap}")
        if overlap >= max_chars:
            logger.warning(
                "Chunk overlap (%d) >= max_chars (%d): windows advance one character at a time",
                overlap,
                max_chars,
            )
        self._max_chars = max_chars
        self._overlap = overlap

    @property
    def max_chars(self) -> int:
        """Maximum characters per chunk."""
        return self._max_chars

    @property
    def overlap(self) -> int:
        """Characters shared between consecutive chunks."""
        return self._overlap

    def split(self, text: str) -> list[str]:
        """Split text into chunks using the configured window."""
        chunks = chunk_text(text, self._max_chars, self._overlap)
        logger.info(
            "Split %d chars into %d chunks (size=%d, overlap=%d)",
            len(text),
            len(chunks),
            self._max_chars,
            self._overlap,
        )
        return chunks
