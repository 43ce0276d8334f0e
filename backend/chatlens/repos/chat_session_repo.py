from __future__ import annotations

from collections.abc import Sequence
from typing import Any, Optional

from sqlalchemy import delete, func, or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from chatlens.analysis.types import TimeRange
from chatlens.db.models import ChatSession, Message, MessageContext


class ChatSessionRepo:
    """Repository for the persisted session index."""

    def __init__(self, db: AsyncSession) -> None:
        self._db = db

    async def clear(self, collection_id: str) -> None:
        """Delete every session and message link of a collection."""

        session_ids = select(ChatSession.id).where(ChatSession.collection_id == collection_id)
        await self._db.execute(
            delete(MessageContext).where(MessageContext.session_id.in_(session_ids))
        )
        await self._db.execute(delete(ChatSession).where(ChatSession.collection_id == collection_id))
        await self._db.flush()

    async def insert_session(
        self,
        collection_id: str,
        start_ts: int,
        end_ts: int,
        message_ids: Sequence[int],
    ) -> ChatSession:
        """Insert one session and link its messages."""

        session = ChatSession(
            collection_id=collection_id,
            start_ts=start_ts,
            end_ts=end_ts,
            message_count=len(message_ids),
            summary=None,
        )
        self._db.add(session)
        await self._db.flush()
        self._db.add_all(
            MessageContext(message_id=message_id, session_id=session.id)
            for message_id in message_ids
        )
        await self._db.flush()
        return session

    async def count(self, collection_id: str) -> int:
        result = await self._db.execute(
            select(func.count(ChatSession.id)).where(ChatSession.collection_id == collection_id)
        )
        return int(result.scalar_one() or 0)

    async def list_sessions(self, collection_id: str) -> list[tuple[ChatSession, Optional[int]]]:
        """Sessions ordered by start time, each with its first message id."""

        first_message = (
            select(func.min(MessageContext.message_id))
            .where(MessageContext.session_id == ChatSession.id)
            .scalar_subquery()
        )
        result = await self._db.execute(
            select(ChatSession, first_message.label("first_message_id"))
            .where(ChatSession.collection_id == collection_id)
            .order_by(ChatSession.start_ts.asc(), ChatSession.id.asc())
        )
        return [(row[0], row[1]) for row in result.all()]

    async def get_session(self, collection_id: str, session_id: int) -> Optional[ChatSession]:
        result = await self._db.execute(
            select(ChatSession).where(
                ChatSession.id == session_id, ChatSession.collection_id == collection_id
            )
        )
        return result.scalar_one_or_none()

    async def list_by_ids(self, collection_id: str, session_ids: Sequence[int]) -> list[ChatSession]:
        """Requested sessions of a collection ordered by start time."""

        if not session_ids:
            return []
        result = await self._db.execute(
            select(ChatSession)
            .where(ChatSession.collection_id == collection_id, ChatSession.id.in_(list(session_ids)))
            .order_by(ChatSession.start_ts.asc(), ChatSession.id.asc())
        )
        return list(result.scalars())

    async def update_summary(
        self, collection_id: str, session_id: int, summary: Optional[str]
    ) -> Optional[ChatSession]:
        session = await self.get_session(collection_id, session_id)
        if not session:
            return None
        session.summary = summary
        await self._db.flush()
        return session

    async def search(
        self,
        collection_id: str,
        keywords: Sequence[str],
        time_range: Optional[TimeRange],
        limit: int,
    ) -> list[ChatSession]:
        """Sessions inside the time range containing any keyword, newest first."""

        stmt = select(ChatSession).where(ChatSession.collection_id == collection_id)
        if time_range is not None:
            if time_range.start_ts is not None:
                stmt = stmt.where(ChatSession.start_ts >= time_range.start_ts)
            if time_range.end_ts is not None:
                stmt = stmt.where(ChatSession.end_ts <= time_range.end_ts)
        if keywords:
            conditions: list[Any] = [Message.content.ilike(f"%{kw}%") for kw in keywords]
            matching = (
                select(MessageContext.session_id)
                .join(Message, Message.id == MessageContext.message_id)
                .where(or_(*conditions))
                .distinct()
            )
            stmt = stmt.where(ChatSession.id.in_(matching))
        result = await self._db.execute(
            stmt.order_by(ChatSession.start_ts.desc(), ChatSession.id.desc()).limit(limit)
        )
        return list(result.scalars())
