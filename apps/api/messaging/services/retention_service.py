"""Message retention purge and the retention audit ledger.

Each cycle walks up to ``max_threads`` threads, least recently checked
first (then oldest-updated), and hard-deletes messages strictly older than
``now - retention_days`` in batches.
Every batch is its own transaction holding the thread row lock. A thread that
fails is rolled back and recorded in the run details; batches it already
committed are still audited and announced, and the cycle continues.
"""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any
from uuid import UUID

from sqlalchemy import delete, func, select, update
from sqlalchemy.orm import Session

from messaging.core.events import MessagesPurged, RetentionAuditRecorded
from messaging.core.structured_logging import build_log_context
from messaging.db.models import (
    Message,
    MessageAttachment,
    MessageParticipant,
    MessageReadReceipt,
    MessageRetentionAudit,
    MessageThread,
)
from messaging.db.models._common import utcnow
from messaging.services.fanout import MessagingHub
from messaging.services.retention_policy import is_override
from messaging.services.views import build_preview, serialize_retention_audit

logger = logging.getLogger(__name__)


@dataclass
class PurgeRunResult:
    run_id: str
    total_deleted: int = 0
    threads_processed: int = 0
    details: list[dict[str, Any]] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "run_id": self.run_id,
            "total_deleted": self.total_deleted,
            "threads_processed": self.threads_processed,
            "details": self.details,
        }


@dataclass
class _ThreadPurge:
    thread_id: UUID
    cutoff: datetime | None = None
    deleted_ids: list[UUID] = field(default_factory=list)
    audit: MessageRetentionAudit | None = None
    participant_ids: list[UUID] = field(default_factory=list)


def new_run_id() -> str:
    return f"retention-{uuid.uuid4().hex[:12]}"


def _recompute_thread_summary(db: Session, thread: MessageThread) -> None:
    """Preview follows the newest remaining message; last_message_at never moves back."""
    newest = db.execute(
        select(Message)
        .where(Message.thread_id == thread.id, Message.deleted_at.is_(None))
        .order_by(Message.created_at.desc(), Message.id.desc())
        .limit(1)
    ).scalar_one_or_none()
    if newest is None:
        thread.last_message_preview = None
        return
    thread.last_message_preview = build_preview(newest.body, newest.attachments)
    if thread.last_message_at is None or newest.created_at > thread.last_message_at:
        thread.last_message_at = newest.created_at


def _delete_batch(db: Session, thread: MessageThread, cutoff: datetime, batch_size: int) -> list[UUID]:
    message_ids = list(
        db.execute(
            select(Message.id)
            .where(Message.thread_id == thread.id, Message.created_at < cutoff)
            .order_by(Message.created_at.asc(), Message.id.asc())
            .limit(batch_size)
        )
        .scalars()
        .all()
    )
    if not message_ids:
        return []
    db.execute(
        delete(MessageAttachment)
        .where(MessageAttachment.message_id.in_(message_ids))
        .execution_options(synchronize_session=False)
    )
    db.execute(
        delete(MessageReadReceipt)
        .where(MessageReadReceipt.message_id.in_(message_ids))
        .execution_options(synchronize_session=False)
    )
    db.execute(
        delete(Message)
        .where(Message.id.in_(message_ids))
        .execution_options(synchronize_session=False)
    )
    _recompute_thread_summary(db, thread)
    return message_ids


def _purge_thread(db: Session, outcome: _ThreadPurge, *, now: datetime, batch_size: int) -> bool:
    """Delete expired messages batch by batch. Returns False when the thread is gone.

    Committed batch ids land in ``outcome.deleted_ids`` before the next batch
    starts, so a later failure still knows what was removed.
    """
    while True:
        thread = db.execute(
            select(MessageThread).where(MessageThread.id == outcome.thread_id).with_for_update()
        ).scalar_one_or_none()
        if thread is None:
            db.rollback()
            return False
        if outcome.cutoff is None:
            outcome.cutoff = now - timedelta(days=thread.retention_days)

        batch = _delete_batch(db, thread, outcome.cutoff, batch_size)
        db.commit()
        db.expire_all()
        outcome.deleted_ids.extend(batch)
        if len(batch) < batch_size:
            return True


def _finish_thread(
    db: Session,
    outcome: _ThreadPurge,
    *,
    run_id: str,
    now: datetime,
    audit_ttl_days: int,
    audit_overrides: bool = True,
) -> None:
    """Write the audit row for this visit and mark the thread as checked."""
    thread = db.get(MessageThread, outcome.thread_id)
    if thread is None:
        return
    cutoff = outcome.cutoff or now - timedelta(days=thread.retention_days)
    override = is_override(thread.channel_type, thread.retention_policy, thread.retention_days)
    if outcome.deleted_ids or (override and audit_overrides):
        outcome.participant_ids = list(
            db.execute(
                select(MessageParticipant.user_id).where(MessageParticipant.thread_id == outcome.thread_id)
            )
            .scalars()
            .all()
        )
        outcome.audit = MessageRetentionAudit(
            run_id=run_id,
            thread_id=outcome.thread_id,
            retention_policy=thread.retention_policy,
            retention_days=thread.retention_days,
            deleted_count=len(outcome.deleted_ids),
            participant_count=len(outcome.participant_ids),
            cutoff_at=cutoff,
            is_override=override,
            retained_until=now + timedelta(days=audit_ttl_days),
            created_at=now,
        )
        db.add(outcome.audit)
    # Checked threads go to the back of the queue; updated_at is left alone.
    db.execute(
        update(MessageThread)
        .where(MessageThread.id == outcome.thread_id)
        .values(retention_checked_at=now, updated_at=MessageThread.updated_at)
        .execution_options(synchronize_session=False)
    )
    db.commit()


def _emit_purge_events(hub: MessagingHub, run_id: str, outcome: _ThreadPurge) -> None:
    if outcome.deleted_ids:
        hub.invalidate(thread_ids=[outcome.thread_id], user_ids=outcome.participant_ids)
        hub.events.publish(
            MessagesPurged(
                thread_id=outcome.thread_id,
                deleted_ids=list(outcome.deleted_ids),
                cutoff=outcome.cutoff,
            )
        )
    if outcome.audit is not None:
        audit = outcome.audit
        hub.events.publish(
            RetentionAuditRecorded(
                run_id=run_id,
                audit_id=audit.id,
                thread_id=audit.thread_id,
                deleted_count=audit.deleted_count,
                participant_count=audit.participant_count,
                retention_policy=audit.retention_policy,
                retention_days=audit.retention_days,
                is_override=audit.is_override,
                cutoff=audit.cutoff_at,
            )
        )


def _recover_failed_thread(
    db: Session,
    outcome: _ThreadPurge,
    *,
    run_id: str,
    now: datetime,
    audit_ttl_days: int,
    context: dict[str, Any],
) -> None:
    """Audit whatever was already committed before the failure."""
    try:
        _finish_thread(
            db,
            outcome,
            run_id=run_id,
            now=now,
            audit_ttl_days=audit_ttl_days,
            audit_overrides=False,
        )
    except Exception:
        db.rollback()
        outcome.audit = None
        logger.exception("Retention audit for a failed thread could not be written", extra=context)


def purge_expired_messages(
    db: Session,
    hub: MessagingHub,
    *,
    batch_size: int | None = None,
    max_threads: int | None = None,
    run_id: str | None = None,
    now: datetime | None = None,
) -> PurgeRunResult:
    """Run one retention cycle. Never raises for a single thread's failure."""
    batch_size = batch_size or hub.settings.RETENTION_BATCH_SIZE
    max_threads = max_threads or hub.settings.RETENTION_MAX_THREADS
    audit_ttl_days = hub.settings.RETENTION_AUDIT_TTL_DAYS
    run_id = run_id or new_run_id()
    now = now or utcnow()
    result = PurgeRunResult(run_id=run_id)

    # Never-checked threads first, then the longest since their last check.
    thread_ids = list(
        db.execute(
            select(MessageThread.id)
            .where(MessageThread.retention_days > 0)
            .order_by(
                MessageThread.retention_checked_at.asc().nulls_first(),
                MessageThread.updated_at.asc(),
                MessageThread.id.asc(),
            )
            .limit(max_threads)
        )
        .scalars()
        .all()
    )
    db.rollback()

    for thread_id in thread_ids:
        context = build_log_context(thread_id=thread_id, run_id=run_id, operation="retention_purge")
        outcome = _ThreadPurge(thread_id=thread_id)
        try:
            if not _purge_thread(db, outcome, now=now, batch_size=batch_size):
                continue
            _finish_thread(db, outcome, run_id=run_id, now=now, audit_ttl_days=audit_ttl_days)
        except Exception as exc:
            db.rollback()
            logger.exception("Retention purge failed for thread", extra=context)
            outcome.audit = None
            _recover_failed_thread(
                db, outcome, run_id=run_id, now=now, audit_ttl_days=audit_ttl_days, context=context
            )
            result.total_deleted += len(outcome.deleted_ids)
            result.details.append(
                {
                    "thread_id": str(thread_id),
                    "ok": False,
                    "error": str(exc),
                    "deleted": len(outcome.deleted_ids),
                    "audit_id": str(outcome.audit.id) if outcome.audit else None,
                }
            )
        else:
            result.threads_processed += 1
            result.total_deleted += len(outcome.deleted_ids)
            result.details.append(
                {
                    "thread_id": str(thread_id),
                    "ok": True,
                    "deleted": len(outcome.deleted_ids),
                    "cutoff": outcome.cutoff.isoformat(),
                    "audit_id": str(outcome.audit.id) if outcome.audit else None,
                }
            )

        try:
            _emit_purge_events(hub, run_id, outcome)
        except Exception:
            logger.warning("Post-purge fan-out failed", extra=context, exc_info=True)

    logger.info(
        "Retention run %s deleted %s messages across %s threads",
        run_id,
        result.total_deleted,
        result.threads_processed,
        extra=build_log_context(run_id=run_id, operation="retention_purge"),
    )
    return result


# =============================================================================
# Audit housekeeping
# =============================================================================


def archive_expired_audits(db: Session, now: datetime | None = None) -> int:
    """Stamp archived_at on audits whose retained_until has passed."""
    now = now or utcnow()
    result = db.execute(
        update(MessageRetentionAudit)
        .where(
            MessageRetentionAudit.archived_at.is_(None),
            MessageRetentionAudit.retained_until <= now,
        )
        .values(archived_at=now)
        .execution_options(synchronize_session=False)
    )
    db.commit()
    return result.rowcount or 0


def purge_archived_audits(db: Session, now: datetime | None = None, grace_days: int = 30) -> int:
    """Hard-delete audits archived more than ``grace_days`` ago."""
    now = now or utcnow()
    cutoff = now - timedelta(days=grace_days)
    result = db.execute(
        delete(MessageRetentionAudit)
        .where(
            MessageRetentionAudit.archived_at.is_not(None),
            MessageRetentionAudit.archived_at < cutoff,
        )
        .execution_options(synchronize_session=False)
    )
    db.commit()
    return result.rowcount or 0


def list_retention_audits(
    db: Session,
    *,
    thread_id: UUID | None = None,
    run_id: str | None = None,
    include_archived: bool = False,
    limit: int = 100,
) -> list[dict[str, Any]]:
    stmt = select(MessageRetentionAudit)
    if thread_id is not None:
        stmt = stmt.where(MessageRetentionAudit.thread_id == thread_id)
    if run_id is not None:
        stmt = stmt.where(MessageRetentionAudit.run_id == run_id)
    if not include_archived:
        stmt = stmt.where(MessageRetentionAudit.archived_at.is_(None))
    stmt = stmt.order_by(MessageRetentionAudit.created_at.desc()).limit(limit)
    return [
        serialize_retention_audit(audit).model_dump(mode="json")
        for audit in db.execute(stmt).scalars().all()
    ]


def count_audits(db: Session) -> dict[str, int]:
    total = db.execute(select(func.count(MessageRetentionAudit.id))).scalar_one()
    archived = db.execute(
        select(func.count(MessageRetentionAudit.id)).where(MessageRetentionAudit.archived_at.is_not(None))
    ).scalar_one()
    return {"total": total, "archived": archived, "active": total - archived}
