from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict, Iterator, Optional, Tuple, Union

MemberId = Union[int, str]
PairKey = Tuple[MemberId, MemberId]


def pair_key(a: MemberId, b: MemberId) -> PairKey:
    """Canonical (smaller, larger) key for an unordered member pair."""

    return (a, b) if a < b else (b, a)


def round_to(value: float, digits: int = 4) -> float:
    """Round half away from zero, matching how scores are reported."""

    factor = 10**digits
    scaled = value * factor
    if scaled >= 0:
        return int(scaled + 0.5) / factor
    return -int(-scaled + 0.5) / factor


@dataclass(frozen=True)
class MessageRecord:
    """Lightweight message projection used by the scorers."""

    id: int
    sender_id: MemberId
    ts: float
    content: Optional[str] = None


@dataclass(frozen=True)
class MemberRecord:
    """Member identity plus every name an @mention may use for it."""

    id: MemberId
    name: str
    platform_id: str = ""
    history_names: Tuple[str, ...] = ()
    aliases: Tuple[str, ...] = ()
    message_count: int = 0
    is_bot: bool = False

    @property
    def alias_names(self) -> frozenset[str]:
        return frozenset((self.name, *self.history_names, *self.aliases))


@dataclass
class PairStat:
    """Per-pair accumulator for one scoring pass. Never persisted."""

    member_a: MemberId
    member_b: MemberId
    mention_ab: int = 0
    mention_ba: int = 0
    temporal_turns: int = 0
    temporal_score: float = 0.0
    temporal_delta_sum: float = 0.0
    expected_score: float = 0.0
    normalized_score: float = 0.0
    hybrid_score: float = 0.0

    @property
    def mention_total(self) -> int:
        return self.mention_ab + self.mention_ba

    @property
    def reciprocity(self) -> float:
        if self.mention_total == 0:
            return 0.0
        return min(self.mention_ab, self.mention_ba) / max(self.mention_ab, self.mention_ba)

    @property
    def avg_delta_sec(self) -> Optional[float]:
        if self.temporal_turns == 0:
            return None
        return self.temporal_delta_sum / self.temporal_turns

    def add_mention(self, source: MemberId, target: MemberId, count: int = 1) -> None:
        if (source, target) == (self.member_a, self.member_b):
            self.mention_ab += count
        else:
            self.mention_ba += count


@dataclass
class PairTable:
    """Flat pair-stat table keyed by the canonical pair tuple."""

    _pairs: Dict[PairKey, PairStat] = field(default_factory=dict)

    def get_or_create(self, a: MemberId, b: MemberId) -> PairStat:
        key = pair_key(a, b)
        pair = self._pairs.get(key)
        if pair is None:
            pair = PairStat(member_a=key[0], member_b=key[1])
            self._pairs[key] = pair
        return pair

    def get(self, a: MemberId, b: MemberId) -> Optional[PairStat]:
        return self._pairs.get(pair_key(a, b))

    def __iter__(self) -> Iterator[PairStat]:
        return iter(self._pairs.values())

    def __len__(self) -> int:
        return len(self._pairs)


@dataclass(frozen=True)
class TimeRange:
    """Inclusive epoch-second bounds; either side may be open."""

    start_ts: Optional[int] = None
    end_ts: Optional[int] = None

    @property
    def is_open(self) -> bool:
        return self.start_ts is None and self.end_ts is None

    def contains(self, ts: float) -> bool:
        if self.start_ts is not None and ts < self.start_ts:
            return False
        if self.end_ts is not None and ts > self.end_ts:
            return False
        return True
