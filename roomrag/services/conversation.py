"""
Conversation Store

Durable per-session turn history. Every public write is one committed
transaction; reads return turns oldest-first.
"""

from __future__ import annotations

import logging

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from roomrag.core.exceptions import InvalidInput, StoreUnavailable
from roomrag.models.orm import GLOBAL_ROOM
from roomrag.models.schemas import HistoryTurn
from roomrag.repositories.conversation import ConversationRepository

logger = logging.getLogger(__name__)

VALID_ROLES: frozenset[str] = frozenset({"user", "assistant"})


class ConversationStore:
    """
    Session-scoped chat history.

    Usage::

        store = ConversationStore()
        await store.append(session, "abc", "user", "hi")
        turns = await store.recent_history(session, "abc", 10)
    """

    def __init__(self, repository: ConversationRepository | None = None) -> None:
        self._repository = repository or ConversationRepository()

    async def append(
        self,
        session: AsyncSession,
        session_id: str,
        role: str,
        content: str,
        room: str = GLOBAL_ROOM,
    ) -> None:
        """
        Persist a single turn.

        Raises:
            InvalidInput: If role is not "user" or "assistant".
            StoreUnavailable: If the write fails (rolled back).
        """
        if role not in VALID_ROLES:
            raise InvalidInput(f"Unknown role: {role!r}", field="role")

        self._repository.add_turn(
            session, session_id=session_id, role=role, content=content, room_slug=room
        )
        await self._commit(session, session_id)

    async def record_exchange(
        self,
        session: AsyncSession,
        session_id: str,
        user_message: str,
        assistant_message: str,
        room: str = GLOBAL_ROOM,
    ) -> None:
        """
        Persist a user turn and its assistant reply in one transaction.

        The user turn is staged first so it receives the lower id.
        """
        self._repository.add_turn(
            session, session_id=session_id, role="user", content=user_message, room_slug=room
        )
        # Flush between the two so the ids follow the causal order.
        try:
            await session.flush()
        except SQLAlchemyError as e:
            await session.rollback()
            raise StoreUnavailable("Conversation write failed", {"session_id": session_id}) from e

        self._repository.add_turn(
            session,
            session_id=session_id,
            role="assistant",
            content=assistant_message,
            room_slug=room,
        )
        await self._commit(session, session_id)

    async def recent_history(
        self,
        session: AsyncSession,
        session_id: str,
        limit: int,
    ) -> list[HistoryTurn]:
        """
        The last ``limit`` turns of a session in chronological order.

        Unknown sessions (and limit <= 0) yield an empty list.
        """
        if limit <= 0:
            return []
        try:
            turns = await self._repository.latest_turns(session, session_id, limit)
        except (SQLAlchemyError, OSError) as e:
            raise StoreUnavailable("History lookup failed", {"session_id": session_id}) from e

        # Fetched newest-first; present oldest-first.
        return [HistoryTurn(role=t.role, content=t.content) for t in reversed(turns)]

    async def _commit(self, session: AsyncSession, session_id: str) -> None:
        try:
            await session.commit()
        except SQLAlchemyError as e:
            await session.rollback()
            logger.error("Conversation write failed for session %s: %s", session_id, type(e).__name__)
            raise StoreUnavailable("Conversation write failed", {"session_id": session_id}) from e
