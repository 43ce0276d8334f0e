from __future__ import annotations

from datetime import datetime
from typing import List, Optional

from pydantic import Field

from chatlens.schemas.common import APIModel


class MemberIn(APIModel):
    """Normalized member of an imported chat."""

    platform_id: str = Field(min_length=1, max_length=200)
    display_name: Optional[str] = Field(default=None, max_length=200)
    account_name: Optional[str] = Field(default=None, max_length=200)
    aliases: List[str] = Field(default_factory=list)
    history_names: List[str] = Field(default_factory=list)
    is_system: bool = False


class MessageIn(APIModel):
    """Normalized message; ``ts`` may be epoch seconds or milliseconds."""

    sender_platform_id: str = Field(min_length=1, max_length=200)
    ts: int = Field(ge=0)
    msg_type: int = Field(default=0, ge=0)
    content: Optional[str] = Field(default=None)
    platform_message_id: Optional[str] = Field(default=None, max_length=200)
    reply_to_message_id: Optional[str] = Field(default=None, max_length=200)


class CollectionImportRequest(APIModel):
    """Payload for importing an already-normalized chat log."""

    name: str = Field(min_length=1, max_length=200)
    platform: Optional[str] = Field(default=None, max_length=50)
    members: List[MemberIn] = Field(default_factory=list)
    messages: List[MessageIn] = Field(default_factory=list)


class CollectionOut(APIModel):
    id: str
    name: str
    platform: Optional[str] = None
    session_gap_threshold: Optional[int] = None
    created_at: datetime


class CollectionImportResponse(APIModel):
    collection: CollectionOut
    member_count: int
    message_count: int


class MemberOut(APIModel):
    id: int
    platform_id: str
    display_name: str
    account_name: Optional[str] = None
    aliases: List[str] = Field(default_factory=list)
    history_names: List[str] = Field(default_factory=list)
    is_system: bool
    message_count: int = 0
