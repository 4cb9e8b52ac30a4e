"""
Prompt Assembler

Builds the system message for one chat turn from the room prompt
catalog and the retrieved context.

Layout (blank line between sections)::

    <room instructions>
    <shared guardrails>
    Room: <title>
    <context directive>
    Context:
    • <chunk 1>
    • <chunk 2>

The catalog is configuration data (JSON), validated on load.
"""

from __future__ import annotations

import json
import logging
from collections.abc import Sequence
from pathlib import Path

from pydantic import BaseModel, Field, field_validator

from roomrag.models.orm import GLOBAL_ROOM

logger = logging.getLogger(__name__)

DEFAULT_CATALOG_PATH: Path = Path(__file__).resolve().parent.parent / "prompts" / "rooms.json"


class PromptCatalog(BaseModel):
    """Room instructions plus the texts shared by every room."""

    brand_title: str = Field(default="Assistant", description="Title shown for the global room")
    guardrails: str = Field(default="", description="Rules appended to every room")
    context_directive: str = Field(
        default=(
            "Prefer the provided context over anything you remember when they conflict. "
            "If the needed info isn't in context, say so."
        ),
        description="Instruction on how to weigh retrieved context",
    )
    rooms: dict[str, str] = Field(description="Room slug -> instruction text")

    @field_validator("rooms")
    @classmethod
    def _require_global(cls, rooms: dict[str, str]) -> dict[str, str]:
        normalized = {slug.strip().lower(): text for slug, text in rooms.items()}
        if GLOBAL_ROOM not in normalized:
            raise ValueError("prompt catalog must define a 'global' room")
        return normalized


def load_prompt_catalog(path: Path | None = None) -> PromptCatalog:
    """
    Load and validate a prompt catalog.

    Args:
        path: JSON file; the bundled catalog when None.

    Raises:
        FileNotFoundError: If the file does not exist.
        pydantic.ValidationError: If the content is malformed.
    """
    path = path or DEFAULT_CATALOG_PATH
    catalog = PromptCatalog.model_validate(json.loads(path.read_text(encoding="utf-8")))
    logger.info("Loaded prompt catalog %s (%d rooms)", path.name, len(catalog.rooms))
    return catalog


def room_title(room: str, brand_title: str) -> str:
    """``pink-beard`` -> ``Pink Beard``; the global room shows the brand."""
    if room == GLOBAL_ROOM:
        return brand_title
    return " ".join(part.capitalize() for part in room.split("-") if part)


class PromptAssembler:
    """Deterministic system-prompt builder over a PromptCatalog."""

    def __init__(self, catalog: PromptCatalog) -> None:
        self._catalog = catalog

    def instructions_for(self, room: str) -> str:
        """Room instructions, falling back to the global set."""
        text = self._catalog.rooms.get(room)
        if text is None or not text.strip():
            text = self._catalog.rooms[GLOBAL_ROOM]
        return text.strip()

    def build(self, room: str, context_lines: Sequence[str]) -> str:
        """
        Assemble the system message for ``room``.

        Never fails on an empty context; the ``Context:`` block is then
        simply empty.
        """
        context = "\n".join(f"• {line}" for line in context_lines)
        sections = [
            self.instructions_for(room),
            self._catalog.guardrails.strip(),
            f"Room: {room_title(room, self._catalog.brand_title)}",
            self._catalog.context_directive.strip(),
            f"Context:\n{context}",
        ]
        return "\n\n".join(s for s in sections if s).strip()
