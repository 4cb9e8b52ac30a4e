"""
Conversation Repository

Data access layer for per-session chat turns. Writes are added to the
session without committing; the caller owns the transaction.
"""

from __future__ import annotations

from collections.abc import Sequence

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from roomrag.models.orm import GLOBAL_ROOM, ChatTurnRecord


class ConversationRepository:
    """Chat turn persistence, scoped by session id."""

    def add_turn(
        self,
        session: AsyncSession,
        *,
        session_id: str,
        role: str,
        content: str,
        room_slug: str = GLOBAL_ROOM,
    ) -> ChatTurnRecord:
        """Stage a new turn in the current transaction."""
        turn = ChatTurnRecord(
            session_id=session_id,
            role=role,
            content=content,
            room_slug=room_slug,
        )
        session.add(turn)
        return turn

    async def latest_turns(
        self,
        session: AsyncSession,
        session_id: str,
        limit: int,
    ) -> Sequence[ChatTurnRecord]:
        """The ``limit`` most recent turns of a session, newest first."""
        stmt = (
            select(ChatTurnRecord)
            .where(ChatTurnRecord.session_id == session_id)
            .order_by(ChatTurnRecord.id.desc())
            .limit(limit)
        )
        result = await session.execute(stmt)
        return result.scalars().all()
