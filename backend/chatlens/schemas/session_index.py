from __future__ import annotations

from typing import List, Optional

from pydantic import Field

from chatlens.schemas.common import APIModel


class GenerateSessionsRequest(APIModel):
    """Optional explicit gap for one regeneration."""

    gap_threshold: Optional[int] = Field(default=None, ge=0, le=31_536_000)


class GenerateSessionsResponse(APIModel):
    session_count: int


class TaskSubmittedResponse(APIModel):
    kind: str
    generation: int


class ChatSessionOut(APIModel):
    id: int
    start_ts: int
    end_ts: int
    message_count: int
    first_message_id: Optional[int] = None
    summary: Optional[str] = None


class SessionStatsOut(APIModel):
    session_count: int
    has_index: bool
    gap_threshold: int


class GapThresholdUpdate(APIModel):
    """Null resets the collection to the configured default."""

    gap_threshold: Optional[int] = Field(default=None, ge=0, le=31_536_000)


class GapThresholdResponse(APIModel):
    gap_threshold: int


class SummaryPayload(APIModel):
    summary: Optional[str] = Field(default=None)


class SessionMessageOut(APIModel):
    id: int
    sender_name: str
    content: Optional[str] = None
    timestamp: int


class SessionSearchItemOut(APIModel):
    id: int
    start_ts: int
    end_ts: int
    message_count: int
    is_complete: bool
    preview_messages: List[SessionMessageOut]


class SessionMessagesOut(APIModel):
    session_id: int
    start_ts: int
    end_ts: int
    message_count: int
    returned_count: int
    participants: List[str]
    messages: List[SessionMessageOut]
