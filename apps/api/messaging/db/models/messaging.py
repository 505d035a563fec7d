"""Messaging thread ORM models."""

from __future__ import annotations

from typing import TYPE_CHECKING

import uuid
from datetime import datetime

from sqlalchemy import (
    BigInteger,
    Boolean,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
    Uuid,
    text,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from messaging.db.base import Base
from messaging.db.enums import (
    DEFAULT_MESSAGE_TYPE,
    DEFAULT_PARTICIPANT_ROLE,
    DEFAULT_THREAD_STATE,
    ChannelType,
    MessageType,
    ParticipantRole,
    ThreadState,
)
from messaging.db.models._common import enum_type, utcnow
from messaging.db.types import JSONType

if TYPE_CHECKING:
    from messaging.db.models import SupportCase, User


class MessageThread(Base):
    """
    A conversation between platform participants.

    Invariants:
    - last_message_at never moves backwards
    - state=locked forbids new messages
    - never hard-deleted (its messages may be purged by retention)
    """

    __tablename__ = "message_threads"
    __table_args__ = (
        Index("idx_message_threads_last_message", "last_message_at"),
        Index("idx_message_threads_retention", "retention_checked_at", "updated_at"),
        Index("idx_message_threads_channel_state", "channel_type", "state"),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    subject: Mapped[str | None] = mapped_column(String(255), nullable=True)
    channel_type: Mapped[ChannelType] = mapped_column(
        enum_type(ChannelType, name="message_channel_type"), nullable=False
    )
    state: Mapped[ThreadState] = mapped_column(
        enum_type(ThreadState, name="message_thread_state"),
        default=DEFAULT_THREAD_STATE,
        nullable=False,
    )
    created_by: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("users.id", ondelete="RESTRICT"), nullable=False
    )
    meta: Mapped[dict] = mapped_column("metadata", JSONType, default=dict, nullable=False)
    last_message_at: Mapped[datetime | None] = mapped_column(nullable=True)
    last_message_preview: Mapped[str | None] = mapped_column(String(500), nullable=True)
    retention_policy: Mapped[str] = mapped_column(String(64), nullable=False)
    retention_days: Mapped[int] = mapped_column(Integer, nullable=False)
    retention_checked_at: Mapped[datetime | None] = mapped_column(nullable=True)
    created_at: Mapped[datetime] = mapped_column(default=utcnow, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(default=utcnow, onupdate=utcnow, nullable=False)

    participants: Mapped[list["MessageParticipant"]] = relationship(
        back_populates="thread", order_by="MessageParticipant.created_at"
    )
    support_case: Mapped["SupportCase | None"] = relationship(back_populates="thread", uselist=False)
    thread_labels: Mapped[list["MessageThreadLabel"]] = relationship(back_populates="thread")


class MessageParticipant(Base):
    """Membership of a user in a thread; the authorization gate for thread access."""

    __tablename__ = "message_participants"
    __table_args__ = (
        UniqueConstraint("thread_id", "user_id", name="uq_message_participant_thread_user"),
        Index("idx_message_participants_user", "user_id"),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    thread_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("message_threads.id", ondelete="CASCADE"), nullable=False
    )
    user_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("users.id", ondelete="CASCADE"), nullable=False
    )
    role: Mapped[ParticipantRole] = mapped_column(
        enum_type(ParticipantRole, name="message_participant_role"),
        default=DEFAULT_PARTICIPANT_ROLE,
        nullable=False,
    )
    last_read_at: Mapped[datetime | None] = mapped_column(nullable=True)
    muted_until: Mapped[datetime | None] = mapped_column(nullable=True)
    notifications_enabled: Mapped[bool] = mapped_column(
        Boolean, default=True, server_default=text("TRUE"), nullable=False
    )
    created_at: Mapped[datetime] = mapped_column(default=utcnow, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(default=utcnow, onupdate=utcnow, nullable=False)

    thread: Mapped["MessageThread"] = relationship(back_populates="participants")
    user: Mapped["User"] = relationship()


class Message(Base):
    """A message in a thread. sender_id is null for system messages."""

    __tablename__ = "messages"
    __table_args__ = (
        Index("idx_messages_thread_created", "thread_id", "created_at"),
        Index("idx_messages_created", "created_at"),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    thread_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("message_threads.id", ondelete="CASCADE"), nullable=False
    )
    sender_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid, ForeignKey("users.id", ondelete="SET NULL"), nullable=True
    )
    message_type: Mapped[MessageType] = mapped_column(
        enum_type(MessageType, name="message_type"),
        default=DEFAULT_MESSAGE_TYPE,
        nullable=False,
    )
    body: Mapped[str | None] = mapped_column(Text, nullable=True)
    meta: Mapped[dict] = mapped_column("metadata", JSONType, default=dict, nullable=False)
    is_edited: Mapped[bool] = mapped_column(
        Boolean, default=False, server_default=text("FALSE"), nullable=False
    )
    delivered_at: Mapped[datetime | None] = mapped_column(nullable=True)
    read_at: Mapped[datetime | None] = mapped_column(nullable=True)
    deleted_at: Mapped[datetime | None] = mapped_column(nullable=True)
    created_at: Mapped[datetime] = mapped_column(default=utcnow, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(default=utcnow, onupdate=utcnow, nullable=False)

    attachments: Mapped[list["MessageAttachment"]] = relationship(
        back_populates="message", order_by="MessageAttachment.position"
    )


class MessageAttachment(Base):
    """File reference created atomically with its message."""

    __tablename__ = "message_attachments"
    __table_args__ = (Index("idx_message_attachments_message", "message_id"),)

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    message_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("messages.id", ondelete="CASCADE"), nullable=False
    )
    position: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    file_name: Mapped[str] = mapped_column(String(255), nullable=False)
    mime_type: Mapped[str] = mapped_column(String(150), nullable=False)
    file_size: Mapped[int] = mapped_column(BigInteger, default=0, nullable=False)
    storage_key: Mapped[str] = mapped_column(String(512), nullable=False)
    checksum: Mapped[str | None] = mapped_column(String(128), nullable=True)
    created_at: Mapped[datetime] = mapped_column(default=utcnow, nullable=False)

    message: Mapped["Message"] = relationship(back_populates="attachments")


class MessageReadReceipt(Base):
    """Per-user acknowledgement of a message."""

    __tablename__ = "message_read_receipts"
    __table_args__ = (
        UniqueConstraint("message_id", "user_id", name="uq_message_read_receipt"),
        Index("idx_message_read_receipts_user", "user_id"),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    message_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("messages.id", ondelete="CASCADE"), nullable=False
    )
    user_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("users.id", ondelete="CASCADE"), nullable=False
    )
    read_at: Mapped[datetime] = mapped_column(default=utcnow, nullable=False)


class MessageLabel(Base):
    """Named label participants can attach to threads."""

    __tablename__ = "message_labels"
    __table_args__ = (UniqueConstraint("slug", name="uq_message_labels_slug"),)

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    name: Mapped[str] = mapped_column(String(80), nullable=False)
    slug: Mapped[str] = mapped_column(String(96), nullable=False)
    color: Mapped[str | None] = mapped_column(String(16), nullable=True)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_by: Mapped[uuid.UUID | None] = mapped_column(
        Uuid, ForeignKey("users.id", ondelete="SET NULL"), nullable=True
    )
    created_at: Mapped[datetime] = mapped_column(default=utcnow, nullable=False)


class MessageThreadLabel(Base):
    __tablename__ = "message_thread_labels"
    __table_args__ = (
        UniqueConstraint("thread_id", "label_id", name="uq_message_thread_label"),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    thread_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("message_threads.id", ondelete="CASCADE"), nullable=False
    )
    label_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("message_labels.id", ondelete="CASCADE"), nullable=False
    )
    applied_by: Mapped[uuid.UUID | None] = mapped_column(
        Uuid, ForeignKey("users.id", ondelete="SET NULL"), nullable=True
    )
    created_at: Mapped[datetime] = mapped_column(default=utcnow, nullable=False)

    thread: Mapped["MessageThread"] = relationship(back_populates="thread_labels")
    label: Mapped["MessageLabel"] = relationship()
