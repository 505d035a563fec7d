"""Thread access guard.

Participant membership is the only per-thread access control. Mutations call
``ensure_participant`` with ``for_update=True`` inside their transaction so a
concurrent removal cannot race an in-flight write.
"""

from __future__ import annotations

from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import Session

from messaging.core.errors import AuthorizationError, NotFoundError
from messaging.db.models import MessageParticipant, MessageThread, User


def get_thread(db: Session, thread_id: UUID, *, for_update: bool = False) -> MessageThread:
    """Load a thread or raise NotFoundError. ``for_update`` takes the row lock."""
    stmt = select(MessageThread).where(MessageThread.id == thread_id)
    if for_update:
        stmt = stmt.with_for_update()
    thread = db.execute(stmt).scalar_one_or_none()
    if thread is None:
        raise NotFoundError("Thread not found", details={"thread_id": str(thread_id)})
    return thread


def ensure_participant(
    db: Session,
    thread_id: UUID,
    user_id: UUID,
    *,
    for_update: bool = False,
) -> MessageParticipant:
    stmt = select(MessageParticipant).where(
        MessageParticipant.thread_id == thread_id,
        MessageParticipant.user_id == user_id,
    )
    if for_update:
        stmt = stmt.with_for_update()
    participant = db.execute(stmt).scalar_one_or_none()
    if participant is None:
        raise AuthorizationError(
            "User is not a participant of this thread",
            details={"thread_id": str(thread_id), "user_id": str(user_id)},
        )
    return participant


def find_participant(db: Session, thread_id: UUID, user_id: UUID) -> MessageParticipant | None:
    return db.execute(
        select(MessageParticipant).where(
            MessageParticipant.thread_id == thread_id,
            MessageParticipant.user_id == user_id,
        )
    ).scalar_one_or_none()


def ensure_participant_or_support_agent(
    db: Session,
    thread_id: UUID,
    user_id: UUID,
    *,
    for_update: bool = False,
) -> MessageParticipant | None:
    """Participants pass; non-participants pass only when they are active support agents."""
    stmt = select(MessageParticipant).where(
        MessageParticipant.thread_id == thread_id,
        MessageParticipant.user_id == user_id,
    )
    if for_update:
        stmt = stmt.with_for_update()
    participant = db.execute(stmt).scalar_one_or_none()
    if participant is not None:
        return participant
    user = db.get(User, user_id)
    if user is not None and user.is_active and user.is_support_agent:
        return None
    raise AuthorizationError(
        "User is not a participant of this thread",
        details={"thread_id": str(thread_id), "user_id": str(user_id)},
    )


def get_active_user(db: Session, user_id: UUID) -> User:
    user = db.get(User, user_id)
    if user is None or not user.is_active:
        raise NotFoundError("User not found", details={"user_id": str(user_id)})
    return user


def participant_user_ids(db: Session, thread_id: UUID) -> list[UUID]:
    return list(
        db.execute(
            select(MessageParticipant.user_id)
            .where(MessageParticipant.thread_id == thread_id)
            .order_by(MessageParticipant.created_at)
        )
        .scalars()
        .all()
    )
