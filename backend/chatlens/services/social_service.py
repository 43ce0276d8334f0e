from __future__ import annotations

import logging
from collections.abc import Mapping
from typing import Any, Optional

from fastapi import Request
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from chatlens.analysis.mentions import (
    AliasIndex,
    MentionAnalysis,
    MentionGraph,
    analyze_mentions,
    build_mention_graph,
    build_mention_matrix,
)
from chatlens.analysis.relationship import (
    RelationshipGraph,
    build_relationship_graph,
    normalize_options,
    score_pairs,
)
from chatlens.analysis.types import MemberId, TimeRange
from chatlens.core.config import Settings
from chatlens.repos.member_repo import MemberRepo
from chatlens.repos.message_repo import MessageRepo

logger = logging.getLogger(__name__)


class SocialService:
    """Mention analysis and the unified relationship graph.

    Each call reads members and messages inside one database session so the
    computation sees a consistent snapshot. Unknown collections yield empty
    results rather than errors.
    """

    def __init__(self, sessionmaker: async_sessionmaker[AsyncSession], settings: Settings) -> None:
        self._sessionmaker = sessionmaker
        self._settings = settings

    async def mention_analysis(
        self, collection_id: str, time_range: Optional[TimeRange] = None
    ) -> MentionAnalysis:
        async with self._sessionmaker() as db:
            members = await MemberRepo(db).list_member_records(collection_id, time_range)
            messages = await MessageRepo(db).list_message_records(
                collection_id, time_range, text_only=True
            )
        matrix = build_mention_matrix(messages, AliasIndex.build(members))
        analysis = analyze_mentions(matrix, members)
        logger.debug(
            "Mention analysis for %s: %s mentions over %s messages",
            collection_id,
            analysis.total_mentions,
            len(messages),
        )
        return analysis

    async def mention_graph(
        self, collection_id: str, time_range: Optional[TimeRange] = None
    ) -> MentionGraph:
        async with self._sessionmaker() as db:
            members = await MemberRepo(db).list_member_records(collection_id, time_range)
            messages = await MessageRepo(db).list_message_records(
                collection_id, time_range, text_only=True
            )
        matrix = build_mention_matrix(messages, AliasIndex.build(members))
        return build_mention_graph(matrix, members)

    async def relationship_graph(
        self,
        collection_id: str,
        time_range: Optional[TimeRange] = None,
        raw_options: Optional[Mapping[str, Any]] = None,
        focus_member_id: Optional[MemberId] = None,
    ) -> RelationshipGraph:
        """Combine mention and temporal-adjacency signals into a truncated graph."""

        defaults = normalize_options(self._settings.relationship_defaults())
        options = normalize_options(raw_options, defaults)

        async with self._sessionmaker() as db:
            async with db.begin():
                members = await MemberRepo(db).list_member_records(collection_id, time_range)
                message_repo = MessageRepo(db)
                messages = await message_repo.list_message_records(collection_id, time_range)
                text_messages = await message_repo.list_message_records(
                    collection_id, time_range, text_only=True
                )

        matrix = build_mention_matrix(text_messages, AliasIndex.build(members))
        scored = score_pairs(messages, matrix, options)
        graph = build_relationship_graph(scored.pairs, members, options, focus_member_id)
        logger.info(
            "Relationship graph for %s: %s/%s edges kept, %s nodes (mode=%s)",
            collection_id,
            graph.stats.kept_edges,
            graph.stats.raw_edge_count,
            len(graph.nodes),
            options.mode,
        )
        return graph


def get_social_service(request: Request) -> SocialService:
    """Dependency to access the social analysis service."""

    return request.app.state.social_service
