"""Unified member relationship graph.

closeness = mention_weight * mention_norm
          + temporal_weight * temporal_norm
          + reciprocity_weight * reciprocity_norm

Each signal is divided by its maximum across all pairs; weights are
renormalized to sum to 1 before use.
"""

from __future__ import annotations

import math
from collections.abc import Iterable, Mapping, Sequence
from dataclasses import asdict, dataclass, field, fields, replace
from typing import Any, Dict, List, Optional

from chatlens.analysis.communities import Community, label_propagation
from chatlens.analysis.mentions import MentionMatrix
from chatlens.analysis.temporal import TemporalResult, score_temporal
from chatlens.analysis.types import (
    MemberId,
    MemberRecord,
    MessageRecord,
    PairStat,
    PairTable,
    round_to,
)

MODE_LOOKAHEAD = "lookahead"
MODE_WINDOW = "window"
FALLBACK_WEIGHTS = (0.6, 0.4, 0.0)


@dataclass(frozen=True)
class RelationshipOptions:
    mention_weight: float = 0.6
    temporal_weight: float = 0.4
    reciprocity_weight: float = 0.0
    window_seconds: float = 300.0
    decay_seconds: float = 120.0
    look_ahead: int = 3
    mode: str = MODE_LOOKAHEAD
    min_score: float = 0.12
    min_temporal_turns: int = 2
    top_edges: int = 120

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


def _finite(value: Any) -> Optional[float]:
    if value is None or isinstance(value, bool):
        return None
    try:
        number = float(value)
    except (TypeError, ValueError):
        return None
    return number if math.isfinite(number) else None


def normalize_options(
    raw: Optional[Mapping[str, Any]] = None,
    defaults: Optional[RelationshipOptions] = None,
) -> RelationshipOptions:
    """Merge raw options over defaults, correcting anything malformed."""

    base = defaults or RelationshipOptions()
    raw = {key: value for key, value in (raw or {}).items() if value is not None}
    known = {item.name for item in fields(RelationshipOptions)}
    raw = {key: value for key, value in raw.items() if key in known}

    def pick(name: str, valid) -> float:
        candidate = _finite(raw.get(name))
        if candidate is not None and valid(candidate):
            return candidate
        return getattr(base, name)

    mention = pick("mention_weight", lambda v: v >= 0)
    temporal = pick("temporal_weight", lambda v: v >= 0)
    reciprocity = pick("reciprocity_weight", lambda v: v >= 0)
    total = mention + temporal + reciprocity
    if total > 0:
        mention, temporal, reciprocity = mention / total, temporal / total, reciprocity / total
    else:
        mention, temporal, reciprocity = FALLBACK_WEIGHTS

    mode = str(raw.get("mode", base.mode)).strip().lower()
    if mode not in (MODE_LOOKAHEAD, MODE_WINDOW):
        mode = base.mode

    return replace(
        base,
        mention_weight=mention,
        temporal_weight=temporal,
        reciprocity_weight=reciprocity,
        window_seconds=pick("window_seconds", lambda v: v > 0),
        decay_seconds=pick("decay_seconds", lambda v: v > 0),
        look_ahead=int(pick("look_ahead", lambda v: v >= 1)),
        mode=mode,
        min_score=pick("min_score", lambda v: v >= 0),
        min_temporal_turns=int(pick("min_temporal_turns", lambda v: v >= 0)),
        top_edges=int(pick("top_edges", lambda v: v >= 1)),
    )


def score_pairs(
    messages: Sequence[MessageRecord],
    mentions: Optional[MentionMatrix],
    options: RelationshipOptions,
) -> TemporalResult:
    """Seed a pair table with mention counts and accumulate temporal scores onto it."""

    pairs = PairTable()
    if mentions is not None:
        for (source, target), count in mentions.counts.items():
            pairs.get_or_create(source, target).add_mention(source, target, count)
    return score_temporal(
        messages,
        look_ahead=options.look_ahead,
        window_seconds=options.window_seconds if options.mode == MODE_WINDOW else None,
        decay_seconds=options.decay_seconds,
        pairs=pairs,
    )


@dataclass(frozen=True)
class RelationshipEdge:
    source_id: MemberId
    target_id: MemberId
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
    avg_delta_sec: Optional[float]


@dataclass
class RelationshipNode:
    id: MemberId
    name: str
    message_count: int
    degree: int = 0
    total_closeness: float = 0.0
    mention_total: int = 0
    community: int = 0
    community_size: int = 1


@dataclass
class GraphStats:
    total_members: int = 0
    involved_members: int = 0
    raw_edge_count: int = 0
    kept_edges: int = 0
    max_mention_count: int = 0
    max_temporal_score: float = 0.0


@dataclass
class RelationshipGraph:
    nodes: List[RelationshipNode] = field(default_factory=list)
    edges: List[RelationshipEdge] = field(default_factory=list)
    max_edge_value: float = 0.0
    communities: List[Community] = field(default_factory=list)
    stats: GraphStats = field(default_factory=GraphStats)
    options: RelationshipOptions = field(default_factory=RelationshipOptions)


@dataclass
class _Candidate:
    pair: PairStat
    closeness: float


def _temporal_signal(pair: PairStat, mode: str) -> float:
    return pair.hybrid_score if mode == MODE_LOOKAHEAD else pair.temporal_score


def unique_display_names(members: Iterable[MemberRecord]) -> Dict[MemberId, str]:
    """Disambiguate duplicate names with the last four characters of the platform id."""

    members = list(members)
    counts: Dict[str, int] = {}
    for member in members:
        counts[member.name] = counts.get(member.name, 0) + 1
    names: Dict[MemberId, str] = {}
    for member in members:
        if counts[member.name] > 1:
            suffix = (member.platform_id or str(member.id))[-4:]
            names[member.id] = f"{member.name}#{suffix}"
        else:
            names[member.id] = member.name
    return names


def build_relationship_graph(
    pairs: PairTable,
    members: Sequence[MemberRecord],
    options: RelationshipOptions,
    focus_member_id: Optional[MemberId] = None,
) -> RelationshipGraph:
    """Score every pair, keep the strongest edges and derive nodes from them."""

    by_id = {member.id: member for member in members}
    graph = RelationshipGraph(options=options)
    graph.stats.total_members = len(members)

    all_pairs = [pair for pair in pairs if pair.member_a in by_id and pair.member_b in by_id]
    max_mention = max((pair.mention_total for pair in all_pairs), default=0)
    max_temporal = max((_temporal_signal(pair, options.mode) for pair in all_pairs), default=0.0)
    max_reciprocity = max((pair.reciprocity for pair in all_pairs), default=0.0)
    graph.stats.max_mention_count = max_mention
    graph.stats.max_temporal_score = round_to(
        max((pair.temporal_score for pair in all_pairs), default=0.0), 4
    )

    candidates: List[_Candidate] = []
    for pair in all_pairs:
        mention_norm = pair.mention_total / max_mention if max_mention > 0 else 0.0
        temporal_norm = (
            _temporal_signal(pair, options.mode) / max_temporal if max_temporal > 0 else 0.0
        )
        reciprocity_norm = pair.reciprocity / max_reciprocity if max_reciprocity > 0 else 0.0
        closeness = (
            options.mention_weight * mention_norm
            + options.temporal_weight * temporal_norm
            + options.reciprocity_weight * reciprocity_norm
        )
        has_signal = pair.mention_total > 0 or pair.temporal_turns >= options.min_temporal_turns
        if not has_signal or closeness < options.min_score:
            continue
        candidates.append(_Candidate(pair=pair, closeness=closeness))

    candidates.sort(
        key=lambda item: (item.closeness, item.pair.mention_total, item.pair.temporal_score),
        reverse=True,
    )
    if focus_member_id is not None:
        candidates = [
            item
            for item in candidates
            if focus_member_id in (item.pair.member_a, item.pair.member_b)
        ]
    graph.stats.raw_edge_count = len(candidates)
    kept = candidates[: options.top_edges]
    graph.stats.kept_edges = len(kept)
    if not kept:
        return graph

    involved_ids: List[MemberId] = []
    for item in kept:
        for member_id in (item.pair.member_a, item.pair.member_b):
            if member_id not in involved_ids:
                involved_ids.append(member_id)
    display = unique_display_names(by_id[member_id] for member_id in involved_ids)

    nodes = {
        member_id: RelationshipNode(
            id=member_id,
            name=display[member_id],
            message_count=by_id[member_id].message_count,
        )
        for member_id in involved_ids
    }
    for item in kept:
        pair = item.pair
        for member_id in (pair.member_a, pair.member_b):
            node = nodes[member_id]
            node.degree += 1
            node.total_closeness += item.closeness
            node.mention_total += pair.mention_total
        graph.edges.append(
            RelationshipEdge(
                source_id=pair.member_a,
                target_id=pair.member_b,
                source=display[pair.member_a],
                target=display[pair.member_b],
                value=round_to(item.closeness, 4),
                mention_count=pair.mention_total,
                mention_ab=pair.mention_ab,
                mention_ba=pair.mention_ba,
                temporal_turns=pair.temporal_turns,
                temporal_score=round_to(pair.temporal_score, 4),
                temporal_hybrid=round_to(pair.hybrid_score, 4),
                reciprocity=round_to(pair.reciprocity, 4),
                avg_delta_sec=(
                    round_to(pair.avg_delta_sec, 2) if pair.avg_delta_sec is not None else None
                ),
            )
        )
    graph.max_edge_value = round_to(max(item.closeness for item in kept), 4)

    assignment, communities = label_propagation(
        involved_ids,
        ((item.pair.member_a, item.pair.member_b, item.closeness) for item in kept),
    )
    sizes = {community.id: community.size for community in communities}
    for member_id, node in nodes.items():
        node.total_closeness = round_to(node.total_closeness, 4)
        node.community = assignment.get(member_id, 0)
        node.community_size = sizes.get(node.community, 1)

    graph.nodes = sorted(
        nodes.values(),
        key=lambda node: (node.total_closeness, node.message_count),
        reverse=True,
    )
    graph.communities = communities
    graph.stats.involved_members = len(graph.nodes)
    return graph
