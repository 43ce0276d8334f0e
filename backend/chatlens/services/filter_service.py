"""Filtered conversation views built around matching messages.

Phase one streams a lightweight projection of the scope and records the
stream positions of hits. Phase two expands hits into merged context ranges
and loads full rows only for the ranges on the requested page.
"""

from __future__ import annotations

import logging
from collections.abc import Sequence
from dataclasses import dataclass, field
from typing import Optional

from fastapi import Request
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from chatlens.analysis.context_ranges import (
    HitRange,
    MessagePredicate,
    build_ranges,
    paginate,
)
from chatlens.analysis.types import MemberId, TimeRange, round_to
from chatlens.core.config import Settings
from chatlens.core.security import sanitize_keywords
from chatlens.db.models import ChatSession
from chatlens.repos.chat_session_repo import ChatSessionRepo
from chatlens.repos.member_repo import parse_aliases
from chatlens.repos.message_repo import FullMessageRow, MessageRepo
from chatlens.services.task_manager import CancelToken

logger = logging.getLogger(__name__)

MAX_KEYWORDS = 20
MAX_KEYWORD_LEN = 100
SCAN_CANCEL_CHECK_EVERY = 5000


@dataclass(frozen=True)
class FilterMessage:
    id: int
    sender_name: str
    sender_platform_id: str
    sender_aliases: list[str]
    content: str
    timestamp: int
    type: int
    reply_to_message_id: Optional[str]
    reply_to_content: Optional[str]
    reply_to_sender_name: Optional[str]
    is_hit: bool


@dataclass
class ContextBlock:
    start_ts: int
    end_ts: int
    messages: list[FilterMessage] = field(default_factory=list)
    hit_count: int = 0


@dataclass(frozen=True)
class FilterStats:
    total_messages: int = 0
    hit_messages: int = 0
    total_chars: int = 0
    estimated: bool = False


@dataclass(frozen=True)
class Pagination:
    page: int
    page_size: int
    total_blocks: int = 0
    total_hits: int = 0
    has_more: bool = False


@dataclass
class FilterResult:
    blocks: list[ContextBlock]
    stats: FilterStats
    pagination: Pagination


@dataclass(frozen=True)
class HitScan:
    hit_indexes: list[int]
    total_messages: int


def to_filter_message(row: FullMessageRow, is_hit: bool) -> FilterMessage:
    return FilterMessage(
        id=row.id,
        sender_name=row.sender_name,
        sender_platform_id=row.sender_platform_id,
        sender_aliases=parse_aliases(row.sender_aliases_json),
        content=row.content or "",
        timestamp=row.ts,
        type=row.msg_type,
        reply_to_message_id=row.reply_to_message_id,
        reply_to_content=row.reply_to_content,
        reply_to_sender_name=row.reply_to_sender_name,
        is_hit=is_hit,
    )


async def scan_hits(
    db: AsyncSession,
    collection_id: str,
    time_range: Optional[TimeRange],
    predicate: MessagePredicate,
    cancel_token: Optional[CancelToken] = None,
) -> HitScan:
    """Stream the scope once and record the stream index of every matching message."""

    hit_indexes: list[int] = []
    index = 0
    async for record in MessageRepo(db).stream_lightweight(collection_id, time_range):
        if predicate.matches(record.sender_id, record.content):
            hit_indexes.append(index)
        index += 1
        if cancel_token is not None and index % SCAN_CANCEL_CHECK_EVERY == 0:
            cancel_token.raise_if_cancelled()
    return HitScan(hit_indexes=hit_indexes, total_messages=index)


async def load_range_block(
    db: AsyncSession,
    collection_id: str,
    time_range: Optional[TimeRange],
    hit_range: HitRange,
) -> Optional[ContextBlock]:
    """Fetch the full rows of one merged range and flag its hits."""

    rows = await MessageRepo(db).fetch_range(
        collection_id, time_range, hit_range.start, hit_range.size
    )
    if not rows:
        return None
    hits = {index - hit_range.start for index in hit_range.hit_indexes}
    messages = [to_filter_message(row, offset in hits) for offset, row in enumerate(rows)]
    return ContextBlock(
        start_ts=messages[0].timestamp,
        end_ts=messages[-1].timestamp,
        messages=messages,
        hit_count=len(hit_range.hit_indexes),
    )


async def load_session_block(db: AsyncSession, session: ChatSession) -> ContextBlock:
    rows = await MessageRepo(db).list_session_messages(session.id)
    return ContextBlock(
        start_ts=session.start_ts,
        end_ts=session.end_ts,
        messages=[to_filter_message(row, False) for row in rows],
        hit_count=0,
    )


def page_stats(
    blocks: Sequence[ContextBlock], page: int, page_size: int, total_blocks: int, total_hits: int
) -> FilterStats:
    """Exact totals when everything fits on page one, an extrapolation otherwise.

    Pages after the first report zero totals; the client keeps the page-one
    figures.
    """

    if page != 1 or not blocks:
        return FilterStats(hit_messages=total_hits)
    messages = sum(len(block.messages) for block in blocks)
    chars = sum(len(message.content) for block in blocks for message in block.messages)
    if total_blocks <= page_size:
        return FilterStats(total_messages=messages, hit_messages=total_hits, total_chars=chars)
    return FilterStats(
        total_messages=int(round_to(messages / len(blocks) * total_blocks, 0)),
        hit_messages=total_hits,
        total_chars=int(round_to(chars / len(blocks) * total_blocks, 0)),
        estimated=True,
    )


class FilterService:
    """Keyword, sender and session filtered views over a collection."""

    def __init__(self, sessionmaker: async_sessionmaker[AsyncSession], settings: Settings) -> None:
        self._sessionmaker = sessionmaker
        self._settings = settings

    async def filter_with_context(
        self,
        collection_id: str,
        keywords: Optional[Sequence[str]] = None,
        time_range: Optional[TimeRange] = None,
        sender_ids: Optional[Sequence[MemberId]] = None,
        context_size: Optional[int] = None,
        page: int = 1,
        page_size: Optional[int] = None,
    ) -> FilterResult:
        context_size = self._settings.filter_context_size if context_size is None else context_size
        page_size = page_size or self._settings.filter_page_size
        page = max(page, 1)
        predicate = MessagePredicate.build(
            sanitize_keywords(list(keywords or []), MAX_KEYWORDS, MAX_KEYWORD_LEN), sender_ids
        )

        async with self._sessionmaker() as db:
            async with db.begin():
                scan = await scan_hits(db, collection_id, time_range, predicate)
                if not scan.hit_indexes:
                    return FilterResult(
                        blocks=[], stats=FilterStats(), pagination=Pagination(page, page_size)
                    )

                ranges = build_ranges(scan.hit_indexes, scan.total_messages, context_size)
                total_blocks = len(ranges)
                total_hits = len(scan.hit_indexes)
                page_ranges, has_more = paginate(ranges, page, page_size)

                blocks: list[ContextBlock] = []
                for hit_range in page_ranges:
                    block = await load_range_block(db, collection_id, time_range, hit_range)
                    if block is not None:
                        blocks.append(block)

        logger.debug(
            "Filter %s: %s hits in %s messages -> %s blocks (page %s)",
            collection_id,
            total_hits,
            scan.total_messages,
            total_blocks,
            page,
        )
        return FilterResult(
            blocks=blocks,
            stats=page_stats(blocks, page, page_size, total_blocks, total_hits),
            pagination=Pagination(
                page=page,
                page_size=page_size,
                total_blocks=total_blocks,
                total_hits=total_hits,
                has_more=has_more,
            ),
        )

    async def get_sessions_context(
        self,
        collection_id: str,
        session_ids: Sequence[int],
        page: int = 1,
        page_size: Optional[int] = None,
    ) -> FilterResult:
        """One block per requested session, ordered by start time."""

        page_size = page_size or self._settings.filter_page_size
        page = max(page, 1)
        async with self._sessionmaker() as db:
            async with db.begin():
                sessions = await ChatSessionRepo(db).list_by_ids(collection_id, session_ids)
                page_sessions, has_more = paginate(sessions, page, page_size)
                blocks = [await load_session_block(db, session) for session in page_sessions]

        return FilterResult(
            blocks=blocks,
            stats=page_stats(blocks, page, page_size, len(sessions), 0),
            pagination=Pagination(
                page=page,
                page_size=page_size,
                total_blocks=len(sessions),
                total_hits=0,
                has_more=has_more,
            ),
        )


def get_filter_service(request: Request) -> FilterService:
    """Dependency to access the filter service."""

    return request.app.state.filter_service
