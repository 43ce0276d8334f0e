from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from typing import Optional, Sequence

from fastapi import Request
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from chatlens.analysis.segmentation import segment_messages
from chatlens.analysis.types import TimeRange
from chatlens.core.config import Settings
from chatlens.core.security import sanitize_keywords
from chatlens.db.models import ChatCollection
from chatlens.repos.chat_session_repo import ChatSessionRepo
from chatlens.repos.collection_repo import CollectionRepo
from chatlens.repos.message_repo import FullMessageRow, MessageRepo
from chatlens.services.task_manager import CancelToken, TaskSupersededError

logger = logging.getLogger(__name__)

SessionProgress = Callable[[int, int], Awaitable[None]]

MAX_SUMMARY_LEN = 20000


@dataclass
class SessionIndexError(RuntimeError):
    """Domain error for session index operations."""

    code: str
    message: str


@dataclass(frozen=True)
class SessionView:
    id: int
    start_ts: int
    end_ts: int
    message_count: int
    first_message_id: Optional[int]
    summary: Optional[str]


@dataclass(frozen=True)
class SessionStats:
    session_count: int
    has_index: bool
    gap_threshold: int


@dataclass(frozen=True)
class SessionMessage:
    id: int
    sender_name: str
    content: Optional[str]
    timestamp: int


@dataclass
class SessionSearchItem:
    id: int
    start_ts: int
    end_ts: int
    message_count: int
    is_complete: bool
    preview_messages: list[SessionMessage] = field(default_factory=list)


@dataclass
class SessionMessages:
    session_id: int
    start_ts: int
    end_ts: int
    message_count: int
    returned_count: int
    participants: list[str] = field(default_factory=list)
    messages: list[SessionMessage] = field(default_factory=list)


def _to_session_message(row: FullMessageRow) -> SessionMessage:
    return SessionMessage(
        id=row.id, sender_name=row.sender_name, content=row.content, timestamp=row.ts
    )


class SessionIndexService:
    """Build and query the persisted gap-based session index."""

    def __init__(self, sessionmaker: async_sessionmaker[AsyncSession], settings: Settings) -> None:
        self._sessionmaker = sessionmaker
        self._settings = settings

    def resolve_gap_threshold(
        self, explicit: Optional[int], collection: Optional[ChatCollection]
    ) -> int:
        """Explicit argument, then collection override, then the configured default."""

        if explicit is not None:
            return explicit
        if collection is not None and collection.session_gap_threshold is not None:
            return collection.session_gap_threshold
        return self._settings.session_gap_threshold_sec

    async def generate_sessions(
        self,
        collection_id: str,
        gap_threshold: Optional[int] = None,
        on_progress: Optional[SessionProgress] = None,
        cancel_token: Optional[CancelToken] = None,
    ) -> int:
        """Rebuild the session index of a collection atomically.

        The previous index is deleted and the new partition inserted in one
        transaction; any failure rolls back to the previous index.
        """

        if gap_threshold is not None and gap_threshold < 0:
            raise SessionIndexError("INVALID_GAP_THRESHOLD", "Gap threshold must be >= 0")

        every = max(self._settings.session_progress_every, 1)
        async with self._sessionmaker() as db:
            try:
                async with db.begin():
                    collection = await CollectionRepo(db).get_collection(collection_id)
                    if not collection:
                        raise SessionIndexError("COLLECTION_NOT_FOUND", "Collection not found")
                    gap = self.resolve_gap_threshold(gap_threshold, collection)
                    rows = await MessageRepo(db).list_ordered_ids(collection_id)
                    sessions = segment_messages(rows, gap)
                    total = len(sessions)

                    session_repo = ChatSessionRepo(db)
                    await session_repo.clear(collection_id)
                    for index, item in enumerate(sessions, start=1):
                        if cancel_token is not None:
                            cancel_token.raise_if_cancelled()
                        await session_repo.insert_session(
                            collection_id, item.start_ts, item.end_ts, item.message_ids
                        )
                        if on_progress is not None and index % every == 0 and index < total:
                            await on_progress(index, total)
                    if cancel_token is not None:
                        cancel_token.raise_if_cancelled()
            except TaskSupersededError as exc:
                raise SessionIndexError(exc.code, exc.message) from exc
            except SQLAlchemyError as exc:
                logger.exception("Session index write failed for collection %s", collection_id)
                raise SessionIndexError("INDEX_WRITE_FAILED", str(exc)) from exc

        if on_progress is not None:
            await on_progress(total, total)
        logger.info(
            "Generated %s sessions for collection %s (gap=%ss, messages=%s)",
            total,
            collection_id,
            gap,
            len(rows),
        )
        return total

    async def clear_sessions(self, collection_id: str) -> None:
        async with self._sessionmaker() as db:
            async with db.begin():
                await ChatSessionRepo(db).clear(collection_id)

    async def get_sessions(self, collection_id: str) -> list[SessionView]:
        """All sessions ordered by start time."""

        async with self._sessionmaker() as db:
            rows = await ChatSessionRepo(db).list_sessions(collection_id)
        return [
            SessionView(
                id=session.id,
                start_ts=session.start_ts,
                end_ts=session.end_ts,
                message_count=session.message_count,
                first_message_id=first_message_id,
                summary=session.summary,
            )
            for session, first_message_id in rows
        ]

    async def has_session_index(self, collection_id: str) -> bool:
        async with self._sessionmaker() as db:
            return await ChatSessionRepo(db).count(collection_id) > 0

    async def get_session_stats(self, collection_id: str) -> SessionStats:
        async with self._sessionmaker() as db:
            collection = await CollectionRepo(db).get_collection(collection_id)
            count = await ChatSessionRepo(db).count(collection_id)
        return SessionStats(
            session_count=count,
            has_index=count > 0,
            gap_threshold=self.resolve_gap_threshold(None, collection),
        )

    async def update_gap_threshold(self, collection_id: str, gap_threshold: Optional[int]) -> int:
        """Store a per-collection override (None resets to default); returns the effective gap."""

        if gap_threshold is not None and gap_threshold < 0:
            raise SessionIndexError("INVALID_GAP_THRESHOLD", "Gap threshold must be >= 0")
        async with self._sessionmaker() as db:
            async with db.begin():
                collection = await CollectionRepo(db).update_gap_threshold(
                    collection_id, gap_threshold
                )
                if not collection:
                    raise SessionIndexError("COLLECTION_NOT_FOUND", "Collection not found")
                return self.resolve_gap_threshold(None, collection)

    async def save_summary(self, collection_id: str, session_id: int, summary: Optional[str]) -> None:
        text = (summary or "").strip()[:MAX_SUMMARY_LEN] or None
        async with self._sessionmaker() as db:
            async with db.begin():
                session = await ChatSessionRepo(db).update_summary(collection_id, session_id, text)
                if not session:
                    raise SessionIndexError("SESSION_NOT_FOUND", "Session not found")

    async def get_summary(self, collection_id: str, session_id: int) -> Optional[str]:
        async with self._sessionmaker() as db:
            session = await ChatSessionRepo(db).get_session(collection_id, session_id)
        if not session:
            raise SessionIndexError("SESSION_NOT_FOUND", "Session not found")
        return session.summary

    async def search_sessions(
        self,
        collection_id: str,
        keywords: Optional[Sequence[str]] = None,
        time_range: Optional[TimeRange] = None,
        limit: int = 20,
        preview_count: int = 5,
    ) -> list[SessionSearchItem]:
        """Sessions containing any keyword, newest first, with a short preview."""

        cleaned = sanitize_keywords(list(keywords or []), max_items=20, max_length=100)
        async with self._sessionmaker() as db:
            session_repo = ChatSessionRepo(db)
            message_repo = MessageRepo(db)
            sessions = await session_repo.search(collection_id, cleaned, time_range, limit)
            results: list[SessionSearchItem] = []
            for session in sessions:
                preview = await message_repo.list_session_messages(session.id, preview_count)
                results.append(
                    SessionSearchItem(
                        id=session.id,
                        start_ts=session.start_ts,
                        end_ts=session.end_ts,
                        message_count=session.message_count,
                        is_complete=session.message_count <= preview_count,
                        preview_messages=[_to_session_message(row) for row in preview],
                    )
                )
        return results

    async def get_session_messages(
        self, collection_id: str, session_id: int, limit: int = 500
    ) -> SessionMessages:
        """Messages of one session plus its participant names."""

        async with self._sessionmaker() as db:
            session = await ChatSessionRepo(db).get_session(collection_id, session_id)
            if not session:
                raise SessionIndexError("SESSION_NOT_FOUND", "Session not found")
            rows = await MessageRepo(db).list_session_messages(session_id, limit)

        participants: list[str] = []
        for row in rows:
            if row.sender_name not in participants:
                participants.append(row.sender_name)
        return SessionMessages(
            session_id=session.id,
            start_ts=session.start_ts,
            end_ts=session.end_ts,
            message_count=session.message_count,
            returned_count=len(rows),
            participants=participants,
            messages=[_to_session_message(row) for row in rows],
        )


def get_session_index_service(request: Request) -> SessionIndexService:
    """Dependency to access the session index service."""

    return request.app.state.session_index_service
