from __future__ import annotations

from typing import List, Optional

from pydantic import Field

from chatlens.schemas.common import APIModel


class FilterRequest(APIModel):
    """Keyword / sender / time filter with context expansion."""

    keywords: List[str] = Field(default_factory=list)
    start_ts: Optional[int] = Field(default=None, ge=0)
    end_ts: Optional[int] = Field(default=None, ge=0)
    sender_ids: List[int] = Field(default_factory=list)
    context_size: Optional[int] = Field(default=None, ge=0, le=1000)
    page: int = Field(default=1, ge=1)
    page_size: Optional[int] = Field(default=None, ge=1, le=500)


class SessionsFilterRequest(APIModel):
    session_ids: List[int] = Field(default_factory=list)
    page: int = Field(default=1, ge=1)
    page_size: Optional[int] = Field(default=None, ge=1, le=500)


class FilterMessageOut(APIModel):
    id: int
    sender_name: str
    sender_platform_id: str
    sender_aliases: List[str]
    content: str
    timestamp: int
    type: int
    reply_to_message_id: Optional[str] = None
    reply_to_content: Optional[str] = None
    reply_to_sender_name: Optional[str] = None
    is_hit: bool


class ContextBlockOut(APIModel):
    start_ts: int
    end_ts: int
    messages: List[FilterMessageOut]
    hit_count: int


class FilterStatsOut(APIModel):
    total_messages: int
    hit_messages: int
    total_chars: int
    estimated: bool


class PaginationOut(APIModel):
    page: int
    page_size: int
    total_blocks: int
    total_hits: int
    has_more: bool


class FilterResultOut(APIModel):
    blocks: List[ContextBlockOut]
    stats: FilterStatsOut
    pagination: PaginationOut


class ExportRequest(APIModel):
    """Filter export; ``session_ids`` switches to session mode when present."""

    keywords: List[str] = Field(default_factory=list)
    start_ts: Optional[int] = Field(default=None, ge=0)
    end_ts: Optional[int] = Field(default=None, ge=0)
    sender_ids: List[int] = Field(default_factory=list)
    context_size: Optional[int] = Field(default=None, ge=0, le=1000)
    session_ids: Optional[List[int]] = Field(default=None)


