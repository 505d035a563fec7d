"""Retention audit ledger."""

from __future__ import annotations

import uuid
from datetime import datetime

from sqlalchemy import Boolean, ForeignKey, Index, Integer, String, Uuid, text
from sqlalchemy.orm import Mapped, mapped_column

from messaging.db.base import Base
from messaging.db.models._common import utcnow


class MessageRetentionAudit(Base):
    """
    Immutable record of one purge cycle's effect on one thread.

    Lifecycle (the only two-stage retention in the system):
    - written by the retention worker
    - archived (archived_at set) once retained_until has passed
    - deleted after the archive grace period
    Only archived_at is ever updated.
    """

    __tablename__ = "message_retention_audits"
    __table_args__ = (
        Index("idx_retention_audits_run", "run_id"),
        Index("idx_retention_audits_thread_created", "thread_id", "created_at"),
        Index("idx_retention_audits_retained_until", "retained_until"),
        Index("idx_retention_audits_archived", "archived_at"),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    run_id: Mapped[str] = mapped_column(String(64), nullable=False)
    # No FK: the ledger must outlive anything that happens to the thread row.
    thread_id: Mapped[uuid.UUID] = mapped_column(Uuid, nullable=False)
    retention_policy: Mapped[str] = mapped_column(String(64), nullable=False)
    retention_days: Mapped[int] = mapped_column(Integer, nullable=False)
    deleted_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    participant_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    cutoff_at: Mapped[datetime] = mapped_column(nullable=False)
    is_override: Mapped[bool] = mapped_column(
        Boolean, default=False, server_default=text("FALSE"), nullable=False
    )
    retained_until: Mapped[datetime] = mapped_column(nullable=False)
    archived_at: Mapped[datetime | None] = mapped_column(nullable=True)
    created_at: Mapped[datetime] = mapped_column(default=utcnow, nullable=False)
