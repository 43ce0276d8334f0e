from __future__ import annotations

import logging
import os
import re
from collections.abc import Awaitable, Callable, Sequence
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Any, Optional, TextIO

from fastapi import Request
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from chatlens.analysis.context_ranges import MessagePredicate, build_ranges
from chatlens.analysis.types import MemberId, TimeRange
from chatlens.core.config import Settings
from chatlens.core.security import sanitize_keywords
from chatlens.repos.chat_session_repo import ChatSessionRepo
from chatlens.repos.collection_repo import CollectionRepo
from chatlens.services.filter_service import (
    MAX_KEYWORD_LEN,
    MAX_KEYWORDS,
    ContextBlock,
    load_range_block,
    load_session_block,
    scan_hits,
)
from chatlens.services.task_manager import CancelToken, TaskSupersededError
from chatlens.utils.time_utils import format_ts, utc_now

logger = logging.getLogger(__name__)

ExportProgress = Callable[[dict[str, Any]], Awaitable[None]]

STAGE_PREPARING = "preparing"
STAGE_EXPORTING = "exporting"
STAGE_DONE = "done"
STAGE_ERROR = "error"

_UNSAFE_FILENAME = re.compile(r"[^\w\-]+", re.UNICODE)


@dataclass
class ExportError(RuntimeError):
    """Domain error for file exports."""

    code: str
    message: str


@dataclass(frozen=True)
class ExportParams:
    keywords: Sequence[str] = ()
    time_range: Optional[TimeRange] = None
    sender_ids: Sequence[MemberId] = ()
    context_size: Optional[int] = None
    session_ids: Optional[Sequence[int]] = None

    @property
    def session_mode(self) -> bool:
        return self.session_ids is not None


@dataclass
class ExportResult:
    file_path: str
    total_blocks: int = 0
    total_hits: int = 0
    total_messages: int = 0
    total_chars: int = 0
    warnings: list[str] = field(default_factory=list)


def export_file_name(collection_name: str, stamp: str) -> str:
    safe = _UNSAFE_FILENAME.sub("_", collection_name).strip("_") or "collection"
    return f"{safe}_filtered_{stamp}.md"


def _progress(stage: str, current: int, total: int, percentage: float, message: str) -> dict:
    return {
        "stage": stage,
        "current_block": current,
        "total_blocks": total,
        "percentage": round(percentage, 1),
        "message": message,
    }


class ExportService:
    """Write filtered conversation blocks to a Markdown file."""

    def __init__(self, sessionmaker: async_sessionmaker[AsyncSession], settings: Settings) -> None:
        self._sessionmaker = sessionmaker
        self._settings = settings

    async def export(
        self,
        collection_id: str,
        params: ExportParams,
        on_progress: Optional[ExportProgress] = None,
        cancel_token: Optional[CancelToken] = None,
    ) -> ExportResult:
        """Export every matching block (or every selected session) to a new file.

        The document is written to a ``.part`` file that is renamed only after
        the last block; every other exit, cancellation included, removes the
        partial file.
        """

        async def emit(payload: dict) -> None:
            if on_progress is not None:
                await on_progress(payload)

        if params.context_size is None:
            params = replace(params, context_size=self._settings.filter_context_size)
        export_dir = Path(self._settings.export_dir)
        part_path: Optional[Path] = None
        completed = False
        try:
            async with self._sessionmaker() as db:
                async with db.begin():
                    collection = await CollectionRepo(db).get_collection(collection_id)
                    if not collection:
                        raise ExportError("COLLECTION_NOT_FOUND", "Collection not found")

                    await emit(_progress(STAGE_PREPARING, 0, 0, 0, "Scanning messages"))
                    export_dir.mkdir(parents=True, exist_ok=True)
                    now = utc_now()
                    final_path = export_dir / export_file_name(
                        collection.name, now.strftime("%Y%m%d_%H%M%S_%f")
                    )
                    part_path = final_path.with_name(final_path.name + ".part")

                    with part_path.open("w", encoding="utf-8") as handle:
                        self._write_header(handle, collection.name, now.isoformat(), params)
                        if params.session_mode:
                            result = await self._export_sessions(
                                db, collection_id, params, handle, emit, cancel_token
                            )
                        else:
                            result = await self._export_hits(
                                db, collection_id, params, handle, emit, cancel_token
                            )
            os.replace(part_path, final_path)
            completed = True
        except TaskSupersededError:
            raise
        except ExportError as exc:
            await emit(_progress(STAGE_ERROR, 0, 0, 0, exc.message))
            raise
        except Exception as exc:
            logger.exception("Export failed for collection %s", collection_id)
            await emit(_progress(STAGE_ERROR, 0, 0, 0, f"Export failed: {exc}"))
            raise ExportError("EXPORT_WRITE_FAILED", str(exc)) from exc
        finally:
            if not completed:
                self._remove_partial(part_path)

        result.file_path = str(final_path)
        await emit(
            _progress(
                STAGE_DONE,
                result.total_blocks,
                result.total_blocks,
                100,
                f"Exported {result.total_blocks} blocks",
            )
        )
        logger.info(
            "Exported %s blocks (%s messages) for collection %s to %s",
            result.total_blocks,
            result.total_messages,
            collection_id,
            final_path,
        )
        return result

    @staticmethod
    def _remove_partial(part_path: Optional[Path]) -> None:
        if part_path is not None and part_path.exists():
            part_path.unlink()

    @staticmethod
    def _write_header(handle: TextIO, name: str, exported_at: str, params: ExportParams) -> None:
        handle.write(f"# {name} - filtered chat export\n\n")
        handle.write(f"> Exported at: {exported_at}\n\n")
        handle.write("## Filter\n\n")
        if params.session_mode:
            handle.write("- Mode: sessions\n")
            handle.write(f"- Selected sessions: {len(params.session_ids or [])}\n")
        else:
            if params.keywords:
                handle.write(f"- Keywords: {', '.join(params.keywords)}\n")
            time_range = params.time_range
            if time_range is not None and not time_range.is_open:
                start = format_ts(time_range.start_ts) if time_range.start_ts is not None else "*"
                end = format_ts(time_range.end_ts) if time_range.end_ts is not None else "*"
                handle.write(f"- Time range: {start} ~ {end}\n")
            if params.sender_ids:
                handle.write(f"- Senders: {', '.join(str(item) for item in params.sender_ids)}\n")
            handle.write(f"- Context: ±{params.context_size} messages\n")
        handle.write("\n")

    @staticmethod
    def _write_block(handle: TextIO, index: int, block: ContextBlock) -> None:
        handle.write(
            f"### Block {index} ({format_ts(block.start_ts)} ~ {format_ts(block.end_ts)})\n\n"
        )
        for message in block.messages:
            mark = " ⭐" if message.is_hit else ""
            content = message.content or "[non-text message]"
            handle.write(
                f"{format_ts(message.timestamp, '%H:%M:%S')} {message.sender_name}{mark}: {content}\n"
            )
        handle.write("\n")

    async def _export_hits(
        self,
        db: AsyncSession,
        collection_id: str,
        params: ExportParams,
        handle: TextIO,
        emit: ExportProgress,
        cancel_token: Optional[CancelToken],
    ) -> ExportResult:
        keywords = sanitize_keywords(list(params.keywords), MAX_KEYWORDS, MAX_KEYWORD_LEN)
        predicate = MessagePredicate.build(keywords, params.sender_ids)
        scan = await scan_hits(db, collection_id, params.time_range, predicate, cancel_token)
        result = ExportResult(file_path="", total_hits=len(scan.hit_indexes))

        if not scan.hit_indexes:
            handle.write("## Statistics\n\n- No matching messages\n")
            return result

        ranges = build_ranges(scan.hit_indexes, scan.total_messages, params.context_size or 0)
        total = len(ranges)
        await emit(
            _progress(
                STAGE_PREPARING, 0, total, 0, f"Found {result.total_hits} matching messages"
            )
        )
        handle.write("## Statistics\n\n")
        handle.write(f"- Blocks: {total}\n")
        handle.write(f"- Hit messages: {result.total_hits}\n\n")
        handle.write("## Conversation\n\n")

        for index, hit_range in enumerate(ranges, start=1):
            if cancel_token is not None:
                cancel_token.raise_if_cancelled()
            block = await load_range_block(db, collection_id, params.time_range, hit_range)
            if block is None:
                continue
            self._write_block(handle, index, block)
            result.total_blocks += 1
            result.total_messages += len(block.messages)
            result.total_chars += sum(len(message.content) for message in block.messages)
            await emit(
                _progress(
                    STAGE_EXPORTING,
                    index,
                    total,
                    index / total * 99,
                    f"Exporting block {index}/{total}",
                )
            )
        return result

    async def _export_sessions(
        self,
        db: AsyncSession,
        collection_id: str,
        params: ExportParams,
        handle: TextIO,
        emit: ExportProgress,
        cancel_token: Optional[CancelToken],
    ) -> ExportResult:
        result = ExportResult(file_path="")
        if not params.session_ids:
            handle.write("## Statistics\n\n- No sessions selected\n")
            return result

        sessions = await ChatSessionRepo(db).list_by_ids(collection_id, params.session_ids)
        total = len(sessions)
        missing = len(set(params.session_ids)) - total
        if missing > 0:
            result.warnings.append(f"{missing} selected sessions were not found")
        await emit(_progress(STAGE_PREPARING, 0, total, 0, f"Preparing {total} sessions"))
        handle.write("## Statistics\n\n")
        handle.write(f"- Blocks: {total}\n\n")
        handle.write("## Conversation\n\n")

        for index, session in enumerate(sessions, start=1):
            if cancel_token is not None:
                cancel_token.raise_if_cancelled()
            block = await load_session_block(db, session)
            self._write_block(handle, index, block)
            result.total_blocks += 1
            result.total_messages += len(block.messages)
            result.total_chars += sum(len(message.content) for message in block.messages)
            await emit(
                _progress(
                    STAGE_EXPORTING,
                    index,
                    total,
                    index / total * 99,
                    f"Exporting session {index}/{total}",
                )
            )
        return result


def get_export_service(request: Request) -> ExportService:
    """Dependency to access the export service."""

    return request.app.state.export_service
