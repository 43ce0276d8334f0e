from __future__ import annotations

from collections.abc import AsyncIterator, Iterable
from dataclasses import dataclass
from typing import Any, Optional

from sqlalchemy import Select, and_, func, select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import aliased

from chatlens.analysis.types import MessageRecord, TimeRange
from chatlens.db.models import TEXT_MESSAGE_TYPE, Member, Message, MessageContext

STREAM_BATCH_SIZE = 2000


@dataclass(frozen=True)
class FullMessageRow:
    """Full-fidelity message with sender display data and reply resolution."""

    id: int
    ts: int
    sender_id: int
    sender_name: str
    sender_platform_id: str
    sender_aliases_json: str
    content: Optional[str]
    msg_type: int
    reply_to_message_id: Optional[str]
    reply_to_content: Optional[str]
    reply_to_sender_name: Optional[str]


def _apply_time_range(stmt: Select, time_range: Optional[TimeRange]) -> Select:
    if time_range is None:
        return stmt
    if time_range.start_ts is not None:
        stmt = stmt.where(Message.ts >= time_range.start_ts)
    if time_range.end_ts is not None:
        stmt = stmt.where(Message.ts <= time_range.end_ts)
    return stmt


def _full_columns() -> list[Any]:
    reply = aliased(Message)
    reply_sender = aliased(Member)
    same_reply = and_(
        reply.collection_id == Message.collection_id,
        reply.platform_message_id == Message.reply_to_message_id,
    )
    reply_content = select(reply.content).where(same_reply).limit(1).scalar_subquery()
    reply_sender_name = (
        select(reply_sender.display_name)
        .join(reply, reply.sender_id == reply_sender.id)
        .where(same_reply)
        .limit(1)
        .scalar_subquery()
    )
    return [
        Message.id,
        Message.ts,
        Message.sender_id,
        Member.display_name.label("sender_name"),
        Member.platform_id.label("sender_platform_id"),
        Member.aliases_json.label("sender_aliases_json"),
        Message.content,
        Message.msg_type,
        Message.reply_to_message_id,
        reply_content.label("reply_to_content"),
        reply_sender_name.label("reply_to_sender_name"),
    ]


def _to_full_row(row: Any) -> FullMessageRow:
    return FullMessageRow(
        id=row.id,
        ts=row.ts,
        sender_id=row.sender_id,
        sender_name=row.sender_name,
        sender_platform_id=row.sender_platform_id,
        sender_aliases_json=row.sender_aliases_json,
        content=row.content,
        msg_type=row.msg_type,
        reply_to_message_id=row.reply_to_message_id,
        reply_to_content=row.reply_to_content,
        reply_to_sender_name=row.reply_to_sender_name,
    )


class MessageRepo:
    """Read paths over the message log, plus bulk ingestion."""

    def __init__(self, db: AsyncSession) -> None:
        self._db = db

    async def add_messages(self, collection_id: str, rows: Iterable[dict[str, Any]]) -> int:
        """Insert normalized message dicts; ``ts`` must already be epoch seconds."""

        inserted = 0
        for row in rows:
            self._db.add(
                Message(
                    collection_id=collection_id,
                    sender_id=row["sender_id"],
                    ts=row["ts"],
                    msg_type=row.get("msg_type", TEXT_MESSAGE_TYPE),
                    content=row.get("content"),
                    platform_message_id=row.get("platform_message_id"),
                    reply_to_message_id=row.get("reply_to_message_id"),
                )
            )
            inserted += 1
        await self._db.flush()
        return inserted

    async def count_messages(
        self, collection_id: str, time_range: Optional[TimeRange] = None
    ) -> int:
        """Count messages in scope."""

        stmt = select(func.count(Message.id)).where(Message.collection_id == collection_id)
        result = await self._db.execute(_apply_time_range(stmt, time_range))
        return int(result.scalar_one() or 0)

    async def list_ordered_ids(self, collection_id: str) -> list[tuple[int, int]]:
        """All ``(id, ts)`` pairs of a collection ordered by ``(ts, id)``."""

        result = await self._db.execute(
            select(Message.id, Message.ts)
            .where(Message.collection_id == collection_id)
            .order_by(Message.ts.asc(), Message.id.asc())
        )
        return [(message_id, ts) for message_id, ts in result.all()]

    async def list_message_records(
        self,
        collection_id: str,
        time_range: Optional[TimeRange] = None,
        *,
        text_only: bool = False,
    ) -> list[MessageRecord]:
        """Lightweight records from non-system senders, ordered by ``(ts, id)``."""

        stmt = (
            select(Message.id, Message.sender_id, Message.ts, Message.content)
            .join(Member, Member.id == Message.sender_id)
            .where(Message.collection_id == collection_id, Member.is_system.is_(False))
            .order_by(Message.ts.asc(), Message.id.asc())
        )
        if text_only:
            stmt = stmt.where(Message.msg_type == TEXT_MESSAGE_TYPE, Message.content.is_not(None))
        result = await self._db.execute(_apply_time_range(stmt, time_range))
        return [
            MessageRecord(id=row.id, sender_id=row.sender_id, ts=row.ts, content=row.content)
            for row in result.all()
        ]

    async def stream_lightweight(
        self, collection_id: str, time_range: Optional[TimeRange] = None
    ) -> AsyncIterator[MessageRecord]:
        """Stream ``(id, ts, sender_id, content)`` projections in stream order."""

        stmt = (
            select(Message.id, Message.ts, Message.sender_id, Message.content)
            .where(Message.collection_id == collection_id)
            .order_by(Message.ts.asc(), Message.id.asc())
            .execution_options(yield_per=STREAM_BATCH_SIZE)
        )
        result = await self._db.stream(_apply_time_range(stmt, time_range))
        async for row in result:
            yield MessageRecord(id=row.id, sender_id=row.sender_id, ts=row.ts, content=row.content)

    async def fetch_range(
        self,
        collection_id: str,
        time_range: Optional[TimeRange],
        offset: int,
        limit: int,
    ) -> list[FullMessageRow]:
        """Full messages at stream positions ``[offset, offset + limit)`` of the scope."""

        stmt = (
            select(*_full_columns())
            .join(Member, Member.id == Message.sender_id)
            .where(Message.collection_id == collection_id)
        )
        stmt = (
            _apply_time_range(stmt, time_range)
            .order_by(Message.ts.asc(), Message.id.asc())
            .limit(limit)
            .offset(offset)
        )
        result = await self._db.execute(stmt)
        return [_to_full_row(row) for row in result.all()]

    async def list_session_messages(
        self, session_id: int, limit: Optional[int] = None
    ) -> list[FullMessageRow]:
        """Full messages linked to a chat session in time order."""

        stmt = (
            select(*_full_columns())
            .join(MessageContext, MessageContext.message_id == Message.id)
            .join(Member, Member.id == Message.sender_id)
            .where(MessageContext.session_id == session_id)
            .order_by(Message.ts.asc(), Message.id.asc())
        )
        if limit is not None:
            stmt = stmt.limit(limit)
        result = await self._db.execute(stmt)
        return [_to_full_row(row) for row in result.all()]
