"""Gap-based session segmentation.

A session is a maximal run of consecutive messages in which no gap between
neighbours exceeds the threshold. Input rows must already be ordered by
``(ts, id)``; the function does not sort so it can consume a streamed cursor.
"""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass, field
from typing import List, Tuple

DEFAULT_GAP_THRESHOLD_SEC = 1800


@dataclass
class SegmentedSession:
    """One run of messages, before it is persisted."""

    start_ts: int
    end_ts: int
    message_ids: List[int] = field(default_factory=list)

    @property
    def message_count(self) -> int:
        return len(self.message_ids)


def segment_messages(
    rows: Iterable[Tuple[int, int]],
    gap_threshold: int = DEFAULT_GAP_THRESHOLD_SEC,
) -> List[SegmentedSession]:
    """Partition ``(message_id, ts)`` rows into sessions."""

    if gap_threshold < 0:
        raise ValueError("gap_threshold must be >= 0")

    sessions: List[SegmentedSession] = []
    current: SegmentedSession | None = None
    for message_id, ts in rows:
        if current is None or ts - current.end_ts > gap_threshold:
            current = SegmentedSession(start_ts=ts, end_ts=ts)
            sessions.append(current)
        current.end_ts = ts
        current.message_ids.append(message_id)
    return sessions
