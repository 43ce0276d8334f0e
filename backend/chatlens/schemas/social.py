from __future__ import annotations

from typing import List, Optional, Union

from chatlens.schemas.common import APIModel

MemberIdOut = Union[int, str]


class RankedMemberOut(APIModel):
    member_id: MemberIdOut
    platform_id: str
    name: str
    count: int
    percentage: float


class OneWayRelationOut(APIModel):
    from_member_id: MemberIdOut
    from_name: str
    to_member_id: MemberIdOut
    to_name: str
    from_to_count: int
    to_from_count: int
    ratio: float


class TwoWayRelationOut(APIModel):
    member1_id: MemberIdOut
    member1_name: str
    member2_id: MemberIdOut
    member2_name: str
    member1_to_2: int
    member2_to_1: int
    total: int
    balance: float


class MentionLinkOut(APIModel):
    from_member_id: MemberIdOut
    from_name: str
    to_member_id: MemberIdOut
    to_name: str
    count: int


class MemberMentionDetailOut(APIModel):
    member_id: MemberIdOut
    name: str
    top_mentioned: List[MentionLinkOut]
    top_mentioners: List[MentionLinkOut]


class MentionAnalysisOut(APIModel):
    top_mentioners: List[RankedMemberOut]
    top_mentioned: List[RankedMemberOut]
    one_way: List[OneWayRelationOut]
    two_way: List[TwoWayRelationOut]
    total_mentions: int
    member_details: List[MemberMentionDetailOut]


class MentionGraphNodeOut(APIModel):
    id: MemberIdOut
    name: str
    value: int


class MentionGraphLinkOut(APIModel):
    source: str
    target: str
    value: int


class MentionGraphOut(APIModel):
    nodes: List[MentionGraphNodeOut]
    links: List[MentionGraphLinkOut]
    max_link_value: int


class RelationshipNodeOut(APIModel):
    id: MemberIdOut
    name: str
    message_count: int
    degree: int
    total_closeness: float
    mention_total: int
    community: int
    community_size: int


class RelationshipEdgeOut(APIModel):
    source_id: MemberIdOut
    target_id: MemberIdOut
    source: str
    target: str
    value: float
    mention_count: int
    mention_ab: int
    mention_ba: int
    temporal_turns: int
    temporal_score: float
    temporal_hybrid: float
    reciprocity: float
    avg_delta_sec: Optional[float] = None


class CommunityOut(APIModel):
    id: int
    name: str
    size: int


class GraphStatsOut(APIModel):
    total_members: int
    involved_members: int
    raw_edge_count: int
    kept_edges: int
    max_mention_count: int
    max_temporal_score: float


class RelationshipOptionsOut(APIModel):
    mention_weight: float
    temporal_weight: float
    reciprocity_weight: float
    window_seconds: float
    decay_seconds: float
    look_ahead: int
    mode: str
    min_score: float
    min_temporal_turns: int
    top_edges: int


class RelationshipGraphOut(APIModel):
    nodes: List[RelationshipNodeOut]
    edges: List[RelationshipEdgeOut]
    max_edge_value: float
    communities: List[CommunityOut]
    stats: GraphStatsOut
    options: RelationshipOptionsOut
