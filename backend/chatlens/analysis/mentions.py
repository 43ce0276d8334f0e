"""@mention extraction and interaction scoring."""

from __future__ import annotations

import re
from collections import Counter
from collections.abc import Iterable, Sequence
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Tuple

from chatlens.analysis.types import MemberId, MemberRecord, MessageRecord, pair_key, round_to

MENTION_PATTERN = re.compile(r"@([^\s@]+)")
TRAILING_PUNCTUATION = re.compile(r"[),.:;!?，。！？、）】》」]+$")

ONE_WAY_MIN_TOTAL = 3
ONE_WAY_MIN_RATIO = 0.8
TWO_WAY_MIN_TOTAL = 5
TWO_WAY_MIN_BALANCE = 0.3
MEMBER_DETAIL_LIMIT = 5

DirectedKey = Tuple[MemberId, MemberId]


def _normalize_name(name: str) -> str:
    return name.strip().casefold()


def clean_mention_token(token: str) -> str:
    """Strip trailing punctuation glued to a mention token."""

    return TRAILING_PUNCTUATION.sub("", token.strip())


def extract_mentions(content: Optional[str]) -> List[str]:
    """Return raw tokens following each ``@`` in message order."""

    if not content or "@" not in content:
        return []
    return MENTION_PATTERN.findall(content)


class AliasIndex:
    """Resolve mention text to member ids.

    Current display names win over history names and aliases. A current name
    shared by several members is ambiguous and never resolves.
    """

    def __init__(self, mapping: Dict[str, MemberId]) -> None:
        self._mapping = mapping

    @classmethod
    def build(cls, members: Iterable[MemberRecord]) -> "AliasIndex":
        members = list(members)
        current: Dict[str, set] = {}
        for member in members:
            key = _normalize_name(member.name)
            if key:
                current.setdefault(key, set()).add(member.id)

        mapping: Dict[str, MemberId] = {}
        ambiguous: set[str] = set()
        for key, owners in current.items():
            if len(owners) == 1:
                mapping[key] = next(iter(owners))
            else:
                ambiguous.add(key)

        fallback: Dict[str, set] = {}
        for member in members:
            for name in (*member.history_names, *member.aliases):
                key = _normalize_name(name)
                if not key or key in mapping or key in ambiguous:
                    continue
                fallback.setdefault(key, set()).add(member.id)
        for key, owners in fallback.items():
            if len(owners) == 1:
                mapping[key] = next(iter(owners))
        return cls(mapping)

    def resolve(self, token: str) -> Optional[MemberId]:
        member_id = self._mapping.get(_normalize_name(token))
        if member_id is not None:
            return member_id
        cleaned = clean_mention_token(token)
        if cleaned and cleaned != token:
            return self._mapping.get(_normalize_name(cleaned))
        return None

    def __len__(self) -> int:
        return len(self._mapping)


@dataclass
class MentionMatrix:
    """Directed mention counts in a flat ``(from, to) -> count`` table."""

    counts: Dict[DirectedKey, int] = field(default_factory=dict)

    def add(self, source: MemberId, target: MemberId, count: int = 1) -> None:
        key = (source, target)
        self.counts[key] = self.counts.get(key, 0) + count

    def get(self, source: MemberId, target: MemberId) -> int:
        return self.counts.get((source, target), 0)

    @property
    def total(self) -> int:
        return sum(self.counts.values())

    def mention_count(self, a: MemberId, b: MemberId) -> int:
        """Undirected count: a->b plus b->a."""

        return self.get(a, b) + self.get(b, a)

    def outgoing_totals(self) -> Counter:
        totals: Counter = Counter()
        for (source, _), count in self.counts.items():
            totals[source] += count
        return totals

    def incoming_totals(self) -> Counter:
        totals: Counter = Counter()
        for (_, target), count in self.counts.items():
            totals[target] += count
        return totals

    def unordered_pairs(self) -> List[Tuple[MemberId, MemberId]]:
        """Every mentioned pair exactly once, in canonical order."""

        seen: Dict[Tuple[MemberId, MemberId], None] = {}
        for source, target in self.counts:
            seen.setdefault(pair_key(source, target), None)
        return list(seen)

    def involved_members(self) -> set:
        involved: set = set()
        for source, target in self.counts:
            involved.add(source)
            involved.add(target)
        return involved


def build_mention_matrix(
    messages: Iterable[MessageRecord], alias_index: AliasIndex
) -> MentionMatrix:
    """Count resolved mentions per message, once per target, never self."""

    matrix = MentionMatrix()
    for message in messages:
        seen_in_message: set = set()
        for token in extract_mentions(message.content):
            target = alias_index.resolve(token)
            if target is None or target == message.sender_id or target in seen_in_message:
                continue
            seen_in_message.add(target)
            matrix.add(message.sender_id, target)
    return matrix


@dataclass(frozen=True)
class RankedMember:
    member_id: MemberId
    platform_id: str
    name: str
    count: int
    percentage: float


@dataclass(frozen=True)
class OneWayRelation:
    from_member_id: MemberId
    from_name: str
    to_member_id: MemberId
    to_name: str
    from_to_count: int
    to_from_count: int
    ratio: float


@dataclass(frozen=True)
class TwoWayRelation:
    member1_id: MemberId
    member1_name: str
    member2_id: MemberId
    member2_name: str
    member1_to_2: int
    member2_to_1: int
    total: int
    balance: float


@dataclass(frozen=True)
class MentionLink:
    from_member_id: MemberId
    from_name: str
    to_member_id: MemberId
    to_name: str
    count: int


@dataclass(frozen=True)
class MemberMentionDetail:
    member_id: MemberId
    name: str
    top_mentioned: List[MentionLink]
    top_mentioners: List[MentionLink]


@dataclass
class MentionAnalysis:
    top_mentioners: List[RankedMember] = field(default_factory=list)
    top_mentioned: List[RankedMember] = field(default_factory=list)
    one_way: List[OneWayRelation] = field(default_factory=list)
    two_way: List[TwoWayRelation] = field(default_factory=list)
    total_mentions: int = 0
    member_details: List[MemberMentionDetail] = field(default_factory=list)


def classify_one_way(a2b: int, b2a: int) -> Optional[Tuple[bool, float]]:
    """Return ``(a_is_source, ratio)`` when the pair is one-sided, else None."""

    total = a2b + b2a
    if total < ONE_WAY_MIN_TOTAL:
        return None
    heavier = max(a2b, b2a)
    ratio = heavier / total
    if ratio < ONE_WAY_MIN_RATIO:
        return None
    return a2b >= b2a, ratio


def classify_two_way(a2b: int, b2a: int) -> Optional[float]:
    """Return the balance ratio when the pair mentions each other evenly enough."""

    total = a2b + b2a
    if total < TWO_WAY_MIN_TOTAL or a2b == 0 or b2a == 0:
        return None
    balance = min(a2b, b2a) / max(a2b, b2a)
    if balance < TWO_WAY_MIN_BALANCE:
        return None
    return balance


def _ranked(
    totals: Counter, members: Dict[MemberId, MemberRecord], total_mentions: int
) -> List[RankedMember]:
    ranked = [
        RankedMember(
            member_id=member_id,
            platform_id=members[member_id].platform_id,
            name=members[member_id].name,
            count=count,
            percentage=round_to(count / total_mentions * 100, 2),
        )
        for member_id, count in totals.items()
        if member_id in members
    ]
    ranked.sort(key=lambda item: item.count, reverse=True)
    return ranked


def analyze_mentions(
    matrix: MentionMatrix, members: Sequence[MemberRecord]
) -> MentionAnalysis:
    """Rank mentioners, detect one-way and mutual pairs, and build per-member details."""

    total_mentions = matrix.total
    if total_mentions == 0:
        return MentionAnalysis()

    by_id = {member.id: member for member in members}
    analysis = MentionAnalysis(total_mentions=total_mentions)
    analysis.top_mentioners = _ranked(matrix.outgoing_totals(), by_id, total_mentions)
    analysis.top_mentioned = _ranked(matrix.incoming_totals(), by_id, total_mentions)

    for a, b in matrix.unordered_pairs():
        if a not in by_id or b not in by_id:
            continue
        a2b = matrix.get(a, b)
        b2a = matrix.get(b, a)

        one_way = classify_one_way(a2b, b2a)
        if one_way is not None:
            a_is_source, ratio = one_way
            source, target = (a, b) if a_is_source else (b, a)
            analysis.one_way.append(
                OneWayRelation(
                    from_member_id=source,
                    from_name=by_id[source].name,
                    to_member_id=target,
                    to_name=by_id[target].name,
                    from_to_count=matrix.get(source, target),
                    to_from_count=matrix.get(target, source),
                    ratio=round_to(ratio, 2),
                )
            )

        balance = classify_two_way(a2b, b2a)
        if balance is not None:
            analysis.two_way.append(
                TwoWayRelation(
                    member1_id=a,
                    member1_name=by_id[a].name,
                    member2_id=b,
                    member2_name=by_id[b].name,
                    member1_to_2=a2b,
                    member2_to_1=b2a,
                    total=a2b + b2a,
                    balance=round_to(balance, 2),
                )
            )

    analysis.one_way.sort(key=lambda item: item.from_to_count, reverse=True)
    analysis.two_way.sort(key=lambda item: item.total, reverse=True)
    analysis.member_details = _member_details(matrix, members, by_id)
    return analysis


def _member_details(
    matrix: MentionMatrix,
    members: Sequence[MemberRecord],
    by_id: Dict[MemberId, MemberRecord],
) -> List[MemberMentionDetail]:
    outgoing: Dict[MemberId, List[MentionLink]] = {}
    incoming: Dict[MemberId, List[MentionLink]] = {}
    for (source, target), count in matrix.counts.items():
        if source not in by_id or target not in by_id:
            continue
        link = MentionLink(
            from_member_id=source,
            from_name=by_id[source].name,
            to_member_id=target,
            to_name=by_id[target].name,
            count=count,
        )
        outgoing.setdefault(source, []).append(link)
        incoming.setdefault(target, []).append(link)

    details: List[MemberMentionDetail] = []
    for member in members:
        sent = sorted(outgoing.get(member.id, []), key=lambda link: link.count, reverse=True)
        received = sorted(incoming.get(member.id, []), key=lambda link: link.count, reverse=True)
        if not sent and not received:
            continue
        details.append(
            MemberMentionDetail(
                member_id=member.id,
                name=member.name,
                top_mentioned=sent[:MEMBER_DETAIL_LIMIT],
                top_mentioners=received[:MEMBER_DETAIL_LIMIT],
            )
        )
    return details


@dataclass(frozen=True)
class MentionGraphNode:
    id: MemberId
    name: str
    value: int


@dataclass(frozen=True)
class MentionGraphLink:
    source: str
    target: str
    value: int


@dataclass
class MentionGraph:
    nodes: List[MentionGraphNode] = field(default_factory=list)
    links: List[MentionGraphLink] = field(default_factory=list)
    max_link_value: int = 0


def build_mention_graph(
    matrix: MentionMatrix, members: Sequence[MemberRecord]
) -> MentionGraph:
    """Directed mention graph; only members involved in some mention become nodes."""

    by_id = {member.id: member for member in members}
    involved = matrix.involved_members()
    graph = MentionGraph()
    for member in members:
        if member.id in involved:
            graph.nodes.append(
                MentionGraphNode(id=member.id, name=member.name, value=member.message_count)
            )
    for (source, target), count in matrix.counts.items():
        if source not in by_id or target not in by_id:
            continue
        graph.links.append(
            MentionGraphLink(source=by_id[source].name, target=by_id[target].name, value=count)
        )
        graph.max_link_value = max(graph.max_link_value, count)
    return graph
