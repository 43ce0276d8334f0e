from __future__ import annotations

from typing import Any, Optional

from fastapi import APIRouter, Depends, Query

from chatlens.analysis.types import TimeRange
from chatlens.schemas.social import MentionAnalysisOut, MentionGraphOut, RelationshipGraphOut
from chatlens.services.social_service import SocialService, get_social_service

router = APIRouter(prefix="/api/collections/{collection_id}/social", tags=["social"])


def time_range_query(
    start_ts: Optional[int] = Query(default=None, ge=0),
    end_ts: Optional[int] = Query(default=None, ge=0),
) -> Optional[TimeRange]:
    """Optional inclusive time range shared by the social endpoints."""

    if start_ts is None and end_ts is None:
        return None
    return TimeRange(start_ts=start_ts, end_ts=end_ts)


@router.get("/mentions", response_model=MentionAnalysisOut)
async def mention_analysis(
    collection_id: str,
    time_range: Optional[TimeRange] = Depends(time_range_query),
    service: SocialService = Depends(get_social_service),
) -> MentionAnalysisOut:
    """Rank mentioners and detect one-way and two-way mention relationships."""

    analysis = await service.mention_analysis(collection_id, time_range)
    return MentionAnalysisOut.model_validate(analysis)


@router.get("/mention-graph", response_model=MentionGraphOut)
async def mention_graph(
    collection_id: str,
    time_range: Optional[TimeRange] = Depends(time_range_query),
    service: SocialService = Depends(get_social_service),
) -> MentionGraphOut:
    graph = await service.mention_graph(collection_id, time_range)
    return MentionGraphOut.model_validate(graph)


@router.get("/relationship-graph", response_model=RelationshipGraphOut)
async def relationship_graph(
    collection_id: str,
    time_range: Optional[TimeRange] = Depends(time_range_query),
    member_id: Optional[int] = Query(default=None),
    mention_weight: Optional[float] = Query(default=None),
    temporal_weight: Optional[float] = Query(default=None),
    reciprocity_weight: Optional[float] = Query(default=None),
    window_seconds: Optional[float] = Query(default=None),
    decay_seconds: Optional[float] = Query(default=None),
    look_ahead: Optional[int] = Query(default=None),
    mode: Optional[str] = Query(default=None),
    min_score: Optional[float] = Query(default=None),
    min_temporal_turns: Optional[int] = Query(default=None),
    top_edges: Optional[int] = Query(default=None),
    service: SocialService = Depends(get_social_service),
) -> RelationshipGraphOut:
    """Unified relationship graph; malformed options fall back to defaults."""

    raw_options: dict[str, Any] = {
        "mention_weight": mention_weight,
        "temporal_weight": temporal_weight,
        "reciprocity_weight": reciprocity_weight,
        "window_seconds": window_seconds,
        "decay_seconds": decay_seconds,
        "look_ahead": look_ahead,
        "mode": mode,
        "min_score": min_score,
        "min_temporal_turns": min_temporal_turns,
        "top_edges": top_edges,
    }
    graph = await service.relationship_graph(
        collection_id, time_range, raw_options, focus_member_id=member_id
    )
    return RelationshipGraphOut.model_validate(graph)
