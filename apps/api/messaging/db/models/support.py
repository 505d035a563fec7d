"""Support case ORM model."""

from __future__ import annotations

from typing import TYPE_CHECKING

import uuid
from datetime import datetime

from sqlalchemy import ForeignKey, Index, String, Text, UniqueConstraint, Uuid
from sqlalchemy.orm import Mapped, mapped_column, relationship

from messaging.db.base import Base
from messaging.db.enums import (
    DEFAULT_SUPPORT_PRIORITY,
    DEFAULT_SUPPORT_STATUS,
    SupportCasePriority,
    SupportCaseStatus,
)
from messaging.db.models._common import enum_type, utcnow
from messaging.db.types import JSONType

if TYPE_CHECKING:
    from messaging.db.models import MessageThread


class SupportCase(Base):
    """
    Tracked support case escalated from a thread (one per thread).

    Re-escalation resets the existing row instead of creating a new one.
    """

    __tablename__ = "support_cases"
    __table_args__ = (
        UniqueConstraint("thread_id", name="uq_support_cases_thread"),
        Index("idx_support_cases_status_priority", "status", "priority"),
        Index("idx_support_cases_assigned_to", "assigned_to"),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    thread_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("message_threads.id", ondelete="CASCADE"), nullable=False
    )
    status: Mapped[SupportCaseStatus] = mapped_column(
        enum_type(SupportCaseStatus, name="support_case_status"),
        default=DEFAULT_SUPPORT_STATUS,
        nullable=False,
    )
    priority: Mapped[SupportCasePriority] = mapped_column(
        enum_type(SupportCasePriority, name="support_case_priority"),
        default=DEFAULT_SUPPORT_PRIORITY,
        nullable=False,
    )
    reason: Mapped[str] = mapped_column(Text, nullable=False)

    escalated_by: Mapped[uuid.UUID | None] = mapped_column(
        Uuid, ForeignKey("users.id", ondelete="SET NULL"), nullable=True
    )
    escalated_at: Mapped[datetime] = mapped_column(default=utcnow, nullable=False)

    assigned_to: Mapped[uuid.UUID | None] = mapped_column(
        Uuid, ForeignKey("users.id", ondelete="SET NULL"), nullable=True
    )
    assigned_by: Mapped[uuid.UUID | None] = mapped_column(
        Uuid, ForeignKey("users.id", ondelete="SET NULL"), nullable=True
    )
    assigned_at: Mapped[datetime | None] = mapped_column(nullable=True)
    first_response_at: Mapped[datetime | None] = mapped_column(nullable=True)

    resolved_at: Mapped[datetime | None] = mapped_column(nullable=True)
    resolved_by: Mapped[uuid.UUID | None] = mapped_column(
        Uuid, ForeignKey("users.id", ondelete="SET NULL"), nullable=True
    )
    resolution_summary: Mapped[str | None] = mapped_column(String(2000), nullable=True)

    meta: Mapped[dict] = mapped_column("metadata", JSONType, default=dict, nullable=False)
    created_at: Mapped[datetime] = mapped_column(default=utcnow, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(default=utcnow, onupdate=utcnow, nullable=False)

    thread: Mapped["MessageThread"] = relationship(back_populates="support_case")
