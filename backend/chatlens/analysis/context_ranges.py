"""Hit detection and context-range merging for filtered message views.

Indices are positions in the time-ordered message stream of one query scope,
not message ids, so a range maps directly onto a ``LIMIT/OFFSET`` read.
"""

from __future__ import annotations

from collections.abc import Iterable, Sequence
from dataclasses import dataclass, field
from typing import List, Optional, Tuple, TypeVar

from chatlens.analysis.types import MemberId

T = TypeVar("T")


@dataclass
class HitRange:
    """Inclusive stream-index range with the hit indices it covers."""

    start: int
    end: int
    hit_indexes: List[int] = field(default_factory=list)

    @property
    def size(self) -> int:
        return self.end - self.start + 1


@dataclass(frozen=True)
class MessagePredicate:
    """Keyword (OR, case-insensitive substring) and sender allow-list match."""

    keywords: Tuple[str, ...] = ()
    sender_ids: frozenset = frozenset()

    @classmethod
    def build(
        cls,
        keywords: Optional[Iterable[str]] = None,
        sender_ids: Optional[Iterable[MemberId]] = None,
    ) -> "MessagePredicate":
        lowered = tuple(kw.lower() for kw in (keywords or ()) if kw)
        return cls(keywords=lowered, sender_ids=frozenset(sender_ids or ()))

    def matches(self, sender_id: MemberId, content: Optional[str]) -> bool:
        if self.keywords:
            text = (content or "").lower()
            if not any(keyword in text for keyword in self.keywords):
                return False
        if self.sender_ids and sender_id not in self.sender_ids:
            return False
        return True


def build_ranges(hit_indexes: Iterable[int], total: int, context_size: int) -> List[HitRange]:
    """Expand each hit to ``[i - context, i + context]`` clipped to the stream, then merge."""

    if total <= 0:
        return []
    context_size = max(context_size, 0)
    ranges = [
        HitRange(
            start=max(0, index - context_size),
            end=min(total - 1, index + context_size),
            hit_indexes=[index],
        )
        for index in hit_indexes
        if 0 <= index < total
    ]
    return merge_ranges(ranges)


def merge_ranges(ranges: Iterable[HitRange]) -> List[HitRange]:
    """Coalesce overlapping or adjacent ranges; merging merged output is a no-op."""

    ordered = sorted(ranges, key=lambda item: (item.start, item.end))
    merged: List[HitRange] = []
    for item in ordered:
        if merged and item.start <= merged[-1].end + 1:
            last = merged[-1]
            last.end = max(last.end, item.end)
            last.hit_indexes.extend(item.hit_indexes)
            continue
        merged.append(HitRange(start=item.start, end=item.end, hit_indexes=list(item.hit_indexes)))
    for item in merged:
        item.hit_indexes = sorted(set(item.hit_indexes))
    return merged


def paginate(items: Sequence[T], page: int, page_size: int) -> Tuple[List[T], bool]:
    """Return the 1-based page slice and whether more pages follow."""

    page = max(page, 1)
    page_size = max(page_size, 1)
    start = (page - 1) * page_size
    end = min(start + page_size, len(items))
    if start >= len(items):
        return [], False
    return list(items[start:end]), end < len(items)
