from __future__ import annotations

from datetime import datetime
from typing import Optional

from sqlalchemy import (
    Boolean,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
)
from sqlalchemy.orm import Mapped, mapped_column

from chatlens.db.base import Base
from chatlens.utils.time_utils import utc_now

TEXT_MESSAGE_TYPE = 0


class ChatCollection(Base):
    """One imported conversation; every analytics query is scoped to a collection."""

    __tablename__ = "chat_collections"

    id: Mapped[str] = mapped_column(String, primary_key=True)
    name: Mapped[str] = mapped_column(String, nullable=False)
    platform: Mapped[Optional[str]] = mapped_column(String, nullable=True)
    session_gap_threshold: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utc_now)


class Member(Base):
    """A chat participant. Ids are stable; names and aliases may change over time."""

    __tablename__ = "members"
    __table_args__ = (Index("ix_member_collection_platform", "collection_id", "platform_id"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    collection_id: Mapped[str] = mapped_column(
        String, ForeignKey("chat_collections.id"), nullable=False
    )
    platform_id: Mapped[str] = mapped_column(String, nullable=False)
    display_name: Mapped[str] = mapped_column(String, nullable=False)
    account_name: Mapped[Optional[str]] = mapped_column(String, nullable=True)
    aliases_json: Mapped[str] = mapped_column(Text, nullable=False, default="[]")
    is_system: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)


class MemberNameHistory(Base):
    """Historical nickname of a member, used to resolve older @mentions."""

    __tablename__ = "member_name_history"
    __table_args__ = (Index("ix_member_name_history_member", "member_id"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    member_id: Mapped[int] = mapped_column(Integer, ForeignKey("members.id"), nullable=False)
    name: Mapped[str] = mapped_column(String, nullable=False)


class Message(Base):
    """Immutable chat message. Ordering key is (ts, id)."""

    __tablename__ = "messages"
    __table_args__ = (
        Index("ix_message_collection_ts", "collection_id", "ts", "id"),
        Index("ix_message_sender", "sender_id"),
        Index("ix_message_platform_id", "collection_id", "platform_message_id"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    collection_id: Mapped[str] = mapped_column(
        String, ForeignKey("chat_collections.id"), nullable=False
    )
    sender_id: Mapped[int] = mapped_column(Integer, ForeignKey("members.id"), nullable=False)
    ts: Mapped[int] = mapped_column(Integer, nullable=False)
    msg_type: Mapped[int] = mapped_column(Integer, nullable=False, default=TEXT_MESSAGE_TYPE)
    content: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    platform_message_id: Mapped[Optional[str]] = mapped_column(String, nullable=True)
    reply_to_message_id: Mapped[Optional[str]] = mapped_column(String, nullable=True)


class ChatSession(Base):
    """Gap-based conversational session produced by the segmenter."""

    __tablename__ = "chat_sessions"
    __table_args__ = (Index("ix_chat_session_collection_start", "collection_id", "start_ts"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    collection_id: Mapped[str] = mapped_column(
        String, ForeignKey("chat_collections.id"), nullable=False
    )
    start_ts: Mapped[int] = mapped_column(Integer, nullable=False)
    end_ts: Mapped[int] = mapped_column(Integer, nullable=False)
    message_count: Mapped[int] = mapped_column(Integer, nullable=False)
    summary: Mapped[Optional[str]] = mapped_column(Text, nullable=True)


class MessageContext(Base):
    """Link from a message to the session that contains it."""

    __tablename__ = "message_context"
    __table_args__ = (Index("ix_message_context_session", "session_id", "message_id"),)

    message_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("messages.id"), primary_key=True
    )
    session_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("chat_sessions.id"), nullable=False
    )
