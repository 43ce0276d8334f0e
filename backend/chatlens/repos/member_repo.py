from __future__ import annotations

import json
from typing import Optional

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from chatlens.analysis.types import MemberRecord, TimeRange
from chatlens.db.models import Member, MemberNameHistory, Message


def parse_aliases(raw: Optional[str]) -> list[str]:
    """Decode the stored alias JSON, tolerating malformed values."""

    if not raw:
        return []
    try:
        parsed = json.loads(raw)
    except (TypeError, ValueError):
        return []
    if not isinstance(parsed, list):
        return []
    return [str(item).strip() for item in parsed if str(item).strip()]


class MemberRepo:
    """Repository for members and their name history."""

    def __init__(self, db: AsyncSession) -> None:
        self._db = db

    async def add_member(
        self,
        *,
        collection_id: str,
        platform_id: str,
        display_name: str,
        account_name: Optional[str] = None,
        aliases: Optional[list[str]] = None,
        is_system: bool = False,
    ) -> Member:
        """Insert a member row."""

        member = Member(
            collection_id=collection_id,
            platform_id=platform_id,
            display_name=display_name,
            account_name=account_name,
            aliases_json=json.dumps(aliases or [], ensure_ascii=False),
            is_system=is_system,
        )
        self._db.add(member)
        await self._db.flush()
        return member

    async def add_name_history(self, member_id: int, names: list[str]) -> None:
        """Record historical nicknames for a member."""

        for name in names:
            if name and name.strip():
                self._db.add(MemberNameHistory(member_id=member_id, name=name.strip()))
        await self._db.flush()

    async def list_members(
        self, collection_id: str, include_system: bool = False
    ) -> list[Member]:
        """List members of a collection ordered by id."""

        stmt = select(Member).where(Member.collection_id == collection_id)
        if not include_system:
            stmt = stmt.where(Member.is_system.is_(False))
        result = await self._db.execute(stmt.order_by(Member.id.asc()))
        return list(result.scalars())

    async def history_names(self, collection_id: str) -> dict[int, list[str]]:
        """Map member id to its historical names."""

        result = await self._db.execute(
            select(MemberNameHistory.member_id, MemberNameHistory.name)
            .join(Member, Member.id == MemberNameHistory.member_id)
            .where(Member.collection_id == collection_id)
            .order_by(MemberNameHistory.id.asc())
        )
        names: dict[int, list[str]] = {}
        for member_id, name in result.all():
            names.setdefault(member_id, []).append(name)
        return names

    async def count_messages_by_sender(
        self, collection_id: str, time_range: Optional[TimeRange] = None
    ) -> dict[int, int]:
        """Message count per sender within an optional time range."""

        stmt = (
            select(Message.sender_id, func.count(Message.id))
            .where(Message.collection_id == collection_id)
            .group_by(Message.sender_id)
        )
        if time_range is not None:
            if time_range.start_ts is not None:
                stmt = stmt.where(Message.ts >= time_range.start_ts)
            if time_range.end_ts is not None:
                stmt = stmt.where(Message.ts <= time_range.end_ts)
        result = await self._db.execute(stmt)
        return {sender_id: count for sender_id, count in result.all()}

    async def list_member_records(
        self, collection_id: str, time_range: Optional[TimeRange] = None
    ) -> list[MemberRecord]:
        """Non-system members with alias history and in-range message counts."""

        members = await self.list_members(collection_id)
        history = await self.history_names(collection_id)
        counts = await self.count_messages_by_sender(collection_id, time_range)
        return [
            MemberRecord(
                id=member.id,
                name=member.display_name,
                platform_id=member.platform_id,
                history_names=tuple(history.get(member.id, [])),
                aliases=tuple(parse_aliases(member.aliases_json)),
                message_count=counts.get(member.id, 0),
            )
            for member in members
        ]
