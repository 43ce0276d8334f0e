from __future__ import annotations

from typing import Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from chatlens.db.models import ChatCollection
from chatlens.utils.time_utils import utc_now


class CollectionRepo:
    """Repository for imported chat collections."""

    def __init__(self, db: AsyncSession) -> None:
        self._db = db

    async def create_collection(
        self, collection_id: str, name: str, platform: Optional[str]
    ) -> ChatCollection:
        """Persist a new collection and return it."""

        collection = ChatCollection(
            id=collection_id,
            name=name,
            platform=platform,
            session_gap_threshold=None,
            created_at=utc_now(),
        )
        self._db.add(collection)
        await self._db.flush()
        return collection

    async def get_collection(self, collection_id: str) -> Optional[ChatCollection]:
        """Fetch a collection by ID."""

        result = await self._db.execute(
            select(ChatCollection).where(ChatCollection.id == collection_id)
        )
        return result.scalar_one_or_none()

    async def update_gap_threshold(
        self, collection_id: str, gap_threshold: Optional[int]
    ) -> Optional[ChatCollection]:
        """Set or clear (None) the per-collection session gap override."""

        collection = await self.get_collection(collection_id)
        if not collection:
            return None
        collection.session_gap_threshold = gap_threshold
        await self._db.flush()
        return collection

    async def list_collections(self, limit: int = 50) -> list[ChatCollection]:
        """List collections, newest first."""

        result = await self._db.execute(
            select(ChatCollection).order_by(ChatCollection.created_at.desc()).limit(limit)
        )
        return list(result.scalars().all())
