"""Temporal-adjacency co-occurrence scoring.

Two speakers are temporally adjacent when one talks shortly after the other.
Each (anchor, partner) occurrence contributes ``exp(-delta / decay)``, scaled by
the partner's position among the anchor's next distinct speakers in lookahead
mode. Raw scores are then compared with an independence baseline so that the
most talkative members do not dominate purely through volume.
"""

from __future__ import annotations

import math
from collections import Counter
from collections.abc import Sequence
from dataclasses import dataclass, field
from typing import Optional

from chatlens.analysis.types import MemberId, MessageRecord, PairTable, round_to

DEFAULT_LOOK_AHEAD = 3
DEFAULT_DECAY_SECONDS = 120.0
POSITION_STEP = 0.2
BASELINE_FACTOR = 0.8


def decay_weight(delta_seconds: float, decay_seconds: float = DEFAULT_DECAY_SECONDS) -> float:
    """Exponential time decay: 1 at zero delay, approaching 0 as delay grows."""

    return math.exp(-max(delta_seconds, 0.0) / decay_seconds)


def position_weight(k: int) -> float:
    """Weight of the k-th distinct partner (1-indexed): 1.0, 0.8, 0.6, ..."""

    return 1.0 - (k - 1) * POSITION_STEP


def expected_pair_score(
    count_a: int, count_b: int, total_messages: int, look_ahead: int = DEFAULT_LOOK_AHEAD
) -> float:
    """Heuristic chance co-occurrence of two speakers given their activity."""

    if total_messages <= 0:
        return 0.0
    return (count_a * count_b / total_messages) * (look_ahead * BASELINE_FACTOR)


@dataclass
class TemporalResult:
    pairs: PairTable = field(default_factory=PairTable)
    message_counts: Counter = field(default_factory=Counter)
    total_messages: int = 0
    max_raw_score: float = 0.0
    max_normalized_score: float = 0.0


def score_temporal(
    messages: Sequence[MessageRecord],
    *,
    look_ahead: int = DEFAULT_LOOK_AHEAD,
    window_seconds: Optional[float] = None,
    decay_seconds: float = DEFAULT_DECAY_SECONDS,
    pairs: Optional[PairTable] = None,
) -> TemporalResult:
    """Accumulate temporal scores for every speaker pair.

    ``messages`` must be ordered by ``(ts, id)``. With ``window_seconds`` unset
    the forward scan collects up to ``look_ahead`` distinct partners; with it
    set the scan is bounded by elapsed time instead and no position weight is
    applied. ``pairs`` may carry mention counts already; temporal fields are
    accumulated onto it.
    """

    if decay_seconds <= 0:
        raise ValueError("decay_seconds must be > 0")
    if look_ahead < 1:
        raise ValueError("look_ahead must be >= 1")

    result = TemporalResult(pairs=pairs if pairs is not None else PairTable())
    result.total_messages = len(messages)
    for message in messages:
        result.message_counts[message.sender_id] += 1

    if window_seconds is None:
        _scan_lookahead(messages, result.pairs, look_ahead, decay_seconds)
    else:
        _scan_window(messages, result.pairs, window_seconds, decay_seconds)

    _apply_hybrid(result, look_ahead)
    return result


def _scan_lookahead(
    messages: Sequence[MessageRecord],
    pairs: PairTable,
    look_ahead: int,
    decay_seconds: float,
) -> None:
    count = len(messages)
    for i in range(count - 1):
        anchor = messages[i]
        seen: set[MemberId] = set()
        for j in range(i + 1, count):
            candidate = messages[j]
            if candidate.sender_id == anchor.sender_id or candidate.sender_id in seen:
                continue
            seen.add(candidate.sender_id)
            delta = candidate.ts - anchor.ts
            weight = decay_weight(delta, decay_seconds) * position_weight(len(seen))
            pair = pairs.get_or_create(anchor.sender_id, candidate.sender_id)
            pair.temporal_turns += 1
            pair.temporal_score += weight
            pair.temporal_delta_sum += delta
            if len(seen) >= look_ahead:
                break


def _scan_window(
    messages: Sequence[MessageRecord],
    pairs: PairTable,
    window_seconds: float,
    decay_seconds: float,
) -> None:
    count = len(messages)
    for i in range(count - 1):
        anchor = messages[i]
        seen: set[MemberId] = set()
        for j in range(i + 1, count):
            candidate = messages[j]
            delta = candidate.ts - anchor.ts
            if delta <= 0:
                continue
            if delta > window_seconds:
                break
            if candidate.sender_id == anchor.sender_id or candidate.sender_id in seen:
                continue
            seen.add(candidate.sender_id)
            pair = pairs.get_or_create(anchor.sender_id, candidate.sender_id)
            pair.temporal_turns += 1
            pair.temporal_score += decay_weight(delta, decay_seconds)
            pair.temporal_delta_sum += delta


def _apply_hybrid(result: TemporalResult, look_ahead: int) -> None:
    scored = [pair for pair in result.pairs if pair.temporal_turns > 0]
    for pair in scored:
        pair.expected_score = expected_pair_score(
            result.message_counts[pair.member_a],
            result.message_counts[pair.member_b],
            result.total_messages,
            look_ahead,
        )
        pair.normalized_score = (
            pair.temporal_score / pair.expected_score if pair.expected_score > 0 else 0.0
        )

    result.max_raw_score = max((pair.temporal_score for pair in scored), default=0.0)
    result.max_normalized_score = max((pair.normalized_score for pair in scored), default=0.0)

    for pair in scored:
        raw_part = pair.temporal_score / result.max_raw_score if result.max_raw_score > 0 else 0.0
        norm_part = (
            pair.normalized_score / result.max_normalized_score
            if result.max_normalized_score > 0
            else 0.0
        )
        pair.hybrid_score = round_to(0.5 * raw_part + 0.5 * norm_part, 4)
