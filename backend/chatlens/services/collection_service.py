from __future__ import annotations

import logging
import uuid
from collections.abc import Sequence
from dataclasses import dataclass
from typing import Any, Optional

from fastapi import Request
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from chatlens.core.security import sanitize_text
from chatlens.db.models import ChatCollection, Member
from chatlens.repos.collection_repo import CollectionRepo
from chatlens.repos.member_repo import MemberRepo
from chatlens.repos.message_repo import MessageRepo
from chatlens.utils.time_utils import to_epoch_seconds

logger = logging.getLogger(__name__)

MAX_NAME_LEN = 200


@dataclass
class CollectionError(RuntimeError):
    """Domain error for collection import and lookup."""

    code: str
    message: str


@dataclass(frozen=True)
class ImportResult:
    collection: ChatCollection
    member_count: int
    message_count: int


class CollectionService:
    """Import already-normalized chat logs and read collection metadata."""

    def __init__(self, sessionmaker: async_sessionmaker[AsyncSession]) -> None:
        self._sessionmaker = sessionmaker

    async def import_collection(
        self,
        name: str,
        platform: Optional[str],
        members: Sequence[Any],
        messages: Sequence[Any],
    ) -> ImportResult:
        """Persist a collection with its members and messages in one transaction.

        Members and messages are pydantic payloads (or any object with the same
        attributes); messages reference senders by ``sender_platform_id``.
        """

        clean_name = sanitize_text(name or "", MAX_NAME_LEN)
        if not clean_name:
            raise CollectionError("INVALID_COLLECTION", "Collection name is required")

        collection_id = uuid.uuid4().hex
        async with self._sessionmaker() as db:
            async with db.begin():
                collection = await CollectionRepo(db).create_collection(
                    collection_id, clean_name, platform
                )
                member_repo = MemberRepo(db)
                by_platform_id: dict[str, Member] = {}
                for item in members:
                    platform_id = str(item.platform_id).strip()
                    if not platform_id:
                        raise CollectionError("INVALID_MEMBER", "Member platform_id is required")
                    if platform_id in by_platform_id:
                        raise CollectionError(
                            "DUPLICATE_MEMBER", f"Duplicate member platform_id {platform_id}"
                        )
                    member = await member_repo.add_member(
                        collection_id=collection_id,
                        platform_id=platform_id,
                        display_name=(item.display_name or item.account_name or platform_id),
                        account_name=item.account_name,
                        aliases=list(item.aliases or []),
                        is_system=bool(item.is_system),
                    )
                    if item.history_names:
                        await member_repo.add_name_history(member.id, list(item.history_names))
                    by_platform_id[platform_id] = member

                rows: list[dict[str, Any]] = []
                for item in messages:
                    sender = by_platform_id.get(str(item.sender_platform_id))
                    if sender is None:
                        raise CollectionError(
                            "UNKNOWN_SENDER",
                            f"Message sender {item.sender_platform_id} is not a member",
                        )
                    rows.append(
                        {
                            "sender_id": sender.id,
                            "ts": to_epoch_seconds(item.ts),
                            "msg_type": item.msg_type,
                            "content": item.content,
                            "platform_message_id": item.platform_message_id,
                            "reply_to_message_id": item.reply_to_message_id,
                        }
                    )
                inserted = await MessageRepo(db).add_messages(collection_id, rows)

        logger.info(
            "Imported collection %s (%s): %s members, %s messages",
            collection_id,
            clean_name,
            len(by_platform_id),
            inserted,
        )
        return ImportResult(
            collection=collection, member_count=len(by_platform_id), message_count=inserted
        )

    async def get_collection(self, collection_id: str) -> ChatCollection:
        async with self._sessionmaker() as db:
            collection = await CollectionRepo(db).get_collection(collection_id)
        if not collection:
            raise CollectionError("COLLECTION_NOT_FOUND", "Collection not found")
        return collection

    async def list_collections(self, limit: int = 50) -> list[ChatCollection]:
        async with self._sessionmaker() as db:
            return await CollectionRepo(db).list_collections(limit)

    async def list_members(self, collection_id: str) -> list[tuple[Member, list[str], int]]:
        """Members with their name history and message count."""

        async with self._sessionmaker() as db:
            if not await CollectionRepo(db).get_collection(collection_id):
                raise CollectionError("COLLECTION_NOT_FOUND", "Collection not found")
            member_repo = MemberRepo(db)
            members = await member_repo.list_members(collection_id, include_system=True)
            history = await member_repo.history_names(collection_id)
            counts = await member_repo.count_messages_by_sender(collection_id)
        return [
            (member, history.get(member.id, []), counts.get(member.id, 0)) for member in members
        ]


def get_collection_service(request: Request) -> CollectionService:
    """Dependency to access the collection service."""

    return request.app.state.collection_service
