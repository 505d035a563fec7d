"""Thread lifecycle and inbox read side."""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Any
from uuid import UUID

from pydantic import ValidationError as PydanticValidationError
from sqlalchemy import func, or_, select
from sqlalchemy.orm import Session

from messaging.core.cache import build_cache_key
from messaging.core.errors import AuthorizationError, NotFoundError, ValidationError
from messaging.db.enums import ChannelType, ParticipantRole, ThreadState
from messaging.db.models import (
    Message,
    MessageLabel,
    MessageParticipant,
    MessageReadReceipt,
    MessageThread,
    MessageThreadLabel,
    SupportCase,
    User,
)
from messaging.db.models._common import utcnow
from messaging.schemas.messaging import (
    MessageListResponse,
    ThreadListResponse,
    ThreadMetadata,
)
from messaging.services import access_service
from messaging.services.fanout import (
    MessagingHub,
    fan_out_thread_changed,
    inbox_namespace,
    thread_namespace,
)
from messaging.services.retention_policy import resolve_retention
from messaging.services.transaction import write_transaction
from messaging.services.views import (
    serialize_message,
    serialize_participant,
    serialize_thread_detail,
    serialize_thread_summary,
)
from messaging.utils.pagination import get_pagination, page_count, paginate_select

logger = logging.getLogger(__name__)

DETAIL_MESSAGE_LIMIT = 20


def parse_channel_type(value: str | ChannelType) -> ChannelType:
    try:
        return ChannelType(value)
    except ValueError:
        raise ValidationError(
            f"Unsupported channel type: {value}",
            details={"channel_type": str(value), "allowed": [c.value for c in ChannelType]},
        )


def parse_thread_state(value: str | ThreadState) -> ThreadState:
    try:
        return ThreadState(value)
    except ValueError:
        raise ValidationError(
            f"Unsupported thread state: {value}",
            details={"state": str(value), "allowed": [s.value for s in ThreadState]},
        )


def _require_users(db: Session, user_ids: list[UUID]) -> None:
    if not user_ids:
        return
    found = set(
        db.execute(select(User.id).where(User.id.in_(user_ids), User.is_active.is_(True))).scalars().all()
    )
    missing = [str(user_id) for user_id in user_ids if user_id not in found]
    if missing:
        raise NotFoundError("User not found", details={"user_ids": missing})


def unread_count(db: Session, thread_id: UUID, participant: MessageParticipant) -> int:
    """Messages from anyone else newer than the participant's last read mark."""
    stmt = select(func.count(Message.id)).where(
        Message.thread_id == thread_id,
        Message.deleted_at.is_(None),
        or_(Message.sender_id.is_(None), Message.sender_id != participant.user_id),
    )
    if participant.last_read_at is not None:
        stmt = stmt.where(Message.created_at > participant.last_read_at)
    return db.execute(stmt).scalar_one()


# =============================================================================
# Thread lifecycle
# =============================================================================


def create_thread(
    db: Session,
    hub: MessagingHub,
    creator_id: UUID,
    *,
    channel_type: str | ChannelType,
    participant_ids: list[UUID] | None = None,
    subject: str | None = None,
    metadata: dict | None = None,
    retention_days: int | None = None,
) -> MessageThread:
    """
    Create a thread with the creator as owner.

    Retention comes from the channel default; an explicit ``retention_days``
    is clamped into bounds and makes the thread an override.
    """
    channel = parse_channel_type(channel_type)
    others: list[UUID] = []
    for user_id in participant_ids or []:
        if user_id != creator_id and user_id not in others:
            others.append(user_id)
    if channel == ChannelType.DIRECT and not others:
        raise ValidationError("Direct threads need at least one other participant")
    try:
        thread_metadata = ThreadMetadata.model_validate(metadata or {})
    except PydanticValidationError as exc:
        raise ValidationError("Invalid thread metadata", details={"errors": exc.errors()})
    retention = resolve_retention(channel, retention_days)

    with write_transaction(db, "create_thread", user_id=creator_id):
        _require_users(db, [creator_id, *others])
        now = utcnow()
        thread = MessageThread(
            subject=subject.strip() if subject and subject.strip() else None,
            channel_type=channel,
            state=ThreadState.ACTIVE,
            created_by=creator_id,
            meta=thread_metadata.to_storage(),
            retention_policy=retention.policy,
            retention_days=retention.days,
            created_at=now,
            updated_at=now,
        )
        db.add(thread)
        db.flush()
        db.add(MessageParticipant(thread_id=thread.id, user_id=creator_id, role=ParticipantRole.OWNER))
        for user_id in others:
            db.add(MessageParticipant(thread_id=thread.id, user_id=user_id, role=ParticipantRole.PARTICIPANT))
        db.flush()

    hub.run_after_commit("thread_created", fan_out_thread_changed, hub, thread.id, [creator_id, *others])
    return thread


def add_participant(
    db: Session,
    hub: MessagingHub,
    thread_id: UUID,
    actor_id: UUID,
    user_id: UUID,
    *,
    role: str | ParticipantRole = ParticipantRole.PARTICIPANT,
) -> MessageParticipant:
    """Add a user to a thread. Re-adding an existing participant is a no-op."""
    try:
        role = ParticipantRole(role)
    except ValueError:
        raise ValidationError(f"Unsupported participant role: {role}")

    with write_transaction(db, "add_participant", thread_id=thread_id, user_id=actor_id):
        access_service.get_thread(db, thread_id, for_update=True)
        access_service.ensure_participant(db, thread_id, actor_id, for_update=True)
        access_service.get_active_user(db, user_id)
        participant = access_service.find_participant(db, thread_id, user_id)
        if participant is None:
            participant = MessageParticipant(thread_id=thread_id, user_id=user_id, role=role)
            db.add(participant)
            db.flush()
        participant_ids = access_service.participant_user_ids(db, thread_id)

    hub.run_after_commit("participant_added", fan_out_thread_changed, hub, thread_id, participant_ids)
    return participant


def remove_participant(
    db: Session,
    hub: MessagingHub,
    thread_id: UUID,
    actor_id: UUID,
    user_id: UUID,
) -> None:
    """Owners may remove anyone; everyone else may only leave."""
    with write_transaction(db, "remove_participant", thread_id=thread_id, user_id=actor_id):
        access_service.get_thread(db, thread_id, for_update=True)
        actor = access_service.ensure_participant(db, thread_id, actor_id, for_update=True)
        if actor_id != user_id and actor.role != ParticipantRole.OWNER:
            raise AuthorizationError("Only thread owners can remove other participants")
        if actor_id == user_id:
            target = actor
        else:
            target = db.execute(
                select(MessageParticipant)
                .where(MessageParticipant.thread_id == thread_id, MessageParticipant.user_id == user_id)
                .with_for_update()
            ).scalar_one_or_none()
            if target is None:
                raise NotFoundError("Participant not found", details={"user_id": str(user_id)})
        affected = access_service.participant_user_ids(db, thread_id)
        db.delete(target)
        db.flush()

    hub.run_after_commit("participant_removed", fan_out_thread_changed, hub, thread_id, affected)


def update_thread_state(
    db: Session,
    hub: MessagingHub,
    thread_id: UUID,
    actor_id: UUID,
    state: str | ThreadState,
) -> MessageThread:
    new_state = parse_thread_state(state)
    with write_transaction(db, "update_thread_state", thread_id=thread_id, user_id=actor_id):
        thread = access_service.get_thread(db, thread_id, for_update=True)
        access_service.ensure_participant(db, thread_id, actor_id, for_update=True)
        if thread.state != new_state:
            thread.state = new_state
            thread.updated_at = utcnow()
        participant_ids = access_service.participant_user_ids(db, thread_id)

    logger.info("Thread %s state set to %s", thread_id, new_state.value)
    hub.run_after_commit("thread_state_changed", fan_out_thread_changed, hub, thread_id, participant_ids)
    return thread


def mute_thread(
    db: Session,
    hub: MessagingHub,
    thread_id: UUID,
    user_id: UUID,
    *,
    until: datetime | None,
) -> dict[str, Any]:
    """Mute notifications until ``until``; ``None`` unmutes."""
    with write_transaction(db, "mute_thread", thread_id=thread_id, user_id=user_id):
        participant = access_service.ensure_participant(db, thread_id, user_id, for_update=True)
        participant.muted_until = until
        participant.updated_at = utcnow()
        db.flush()
        view = serialize_participant(participant).model_dump(mode="json")

    hub.run_after_commit("thread_muted", fan_out_thread_changed, hub, thread_id, [user_id])
    return view


def mark_thread_read(db: Session, hub: MessagingHub, thread_id: UUID, user_id: UUID) -> dict[str, Any]:
    """Acknowledge everything currently in the thread for ``user_id``."""
    with write_transaction(db, "mark_thread_read", thread_id=thread_id, user_id=user_id):
        participant = access_service.ensure_participant(db, thread_id, user_id, for_update=True)
        now = utcnow()

        stmt = select(Message).where(
            Message.thread_id == thread_id,
            Message.deleted_at.is_(None),
            or_(Message.sender_id.is_(None), Message.sender_id != user_id),
            Message.created_at <= now,
        )
        # Anything at or before the read mark already counts as read.
        if participant.last_read_at is not None:
            stmt = stmt.where(Message.created_at > participant.last_read_at)
        unread = db.execute(stmt).scalars().all()
        already_receipted: set[UUID] = set()
        if unread:
            already_receipted = set(
                db.execute(
                    select(MessageReadReceipt.message_id).where(
                        MessageReadReceipt.user_id == user_id,
                        MessageReadReceipt.message_id.in_([m.id for m in unread]),
                    )
                )
                .scalars()
                .all()
            )

        receipts = 0
        for message in unread:
            if message.id not in already_receipted:
                db.add(MessageReadReceipt(message_id=message.id, user_id=user_id, read_at=now))
                receipts += 1
            if message.read_at is None:
                message.read_at = now

        participant.last_read_at = now
        participant.updated_at = now
        db.flush()

    hub.run_after_commit("thread_read", fan_out_thread_changed, hub, thread_id, [user_id])
    return {"thread_id": str(thread_id), "read_at": now.isoformat(), "receipts_created": receipts}


# =============================================================================
# Read side
# =============================================================================


def _thread_labels(db: Session, thread_id: UUID) -> list[MessageLabel]:
    return list(
        db.execute(
            select(MessageLabel)
            .join(MessageThreadLabel, MessageThreadLabel.label_id == MessageLabel.id)
            .where(MessageThreadLabel.thread_id == thread_id)
            .order_by(MessageLabel.name)
        )
        .scalars()
        .all()
    )


def get_thread(
    db: Session,
    hub: MessagingHub,
    thread_id: UUID,
    viewer_id: UUID,
    *,
    message_limit: int = DETAIL_MESSAGE_LIMIT,
) -> dict[str, Any]:
    """Thread detail for one viewer, cached under the thread namespace."""
    access_service.get_thread(db, thread_id)
    access_service.ensure_participant(db, thread_id, viewer_id)

    def produce() -> dict[str, Any]:
        thread = access_service.get_thread(db, thread_id)
        viewer = access_service.ensure_participant(db, thread_id, viewer_id)
        participants = list(
            db.execute(
                select(MessageParticipant)
                .where(MessageParticipant.thread_id == thread_id)
                .order_by(MessageParticipant.created_at)
            )
            .scalars()
            .all()
        )
        latest = list(
            db.execute(
                select(Message)
                .where(Message.thread_id == thread_id, Message.deleted_at.is_(None))
                .order_by(Message.created_at.desc(), Message.id.desc())
                .limit(message_limit)
            )
            .scalars()
            .all()
        )
        latest.reverse()
        support_case = db.execute(
            select(SupportCase).where(SupportCase.thread_id == thread_id)
        ).scalar_one_or_none()
        detail = serialize_thread_detail(
            thread,
            participants=participants,
            labels=_thread_labels(db, thread_id),
            support_case=support_case,
            messages=latest,
            unread_count=unread_count(db, thread_id, viewer),
        )
        return detail.model_dump(mode="json")

    key = build_cache_key(
        thread_namespace(thread_id),
        {"view": "detail", "viewer": str(viewer_id), "limit": message_limit},
    )
    return hub.cache.remember(key, hub.settings.CACHE_THREAD_TTL_SECONDS, produce)


def list_messages(
    db: Session,
    hub: MessagingHub,
    thread_id: UUID,
    viewer_id: UUID,
    *,
    page: int | None = None,
    per_page: int | None = None,
) -> dict[str, Any]:
    """Messages in creation order, soft-deleted ones excluded."""
    pagination = get_pagination(page, per_page)
    access_service.get_thread(db, thread_id)
    access_service.ensure_participant(db, thread_id, viewer_id)

    def produce() -> dict[str, Any]:
        stmt = (
            select(Message)
            .where(Message.thread_id == thread_id, Message.deleted_at.is_(None))
            .order_by(Message.created_at.asc(), Message.id.asc())
        )
        items, total = paginate_select(db, stmt, pagination)
        return MessageListResponse(
            items=[serialize_message(m) for m in items],
            total=total,
            page=pagination.page,
            per_page=pagination.per_page,
            pages=page_count(total, pagination.per_page),
        ).model_dump(mode="json")

    key = build_cache_key(thread_namespace(thread_id), {"view": "messages", **pagination.as_dict()})
    return hub.cache.remember(key, hub.settings.CACHE_THREAD_TTL_SECONDS, produce)


def list_threads(
    db: Session,
    hub: MessagingHub,
    user_id: UUID,
    *,
    state: str | ThreadState | None = None,
    channel_type: str | ChannelType | None = None,
    page: int | None = None,
    per_page: int | None = None,
) -> dict[str, Any]:
    """The user's inbox, most recent activity first, cached per user."""
    pagination = get_pagination(page, per_page)
    state_filter = parse_thread_state(state) if state is not None else None
    channel_filter = parse_channel_type(channel_type) if channel_type is not None else None

    def produce() -> dict[str, Any]:
        stmt = (
            select(MessageThread)
            .join(MessageParticipant, MessageParticipant.thread_id == MessageThread.id)
            .where(MessageParticipant.user_id == user_id)
        )
        if state_filter is not None:
            stmt = stmt.where(MessageThread.state == state_filter)
        if channel_filter is not None:
            stmt = stmt.where(MessageThread.channel_type == channel_filter)
        stmt = stmt.order_by(
            MessageThread.last_message_at.desc().nulls_last(),
            MessageThread.created_at.desc(),
        )
        threads, total = paginate_select(db, stmt, pagination)

        items = []
        for thread in threads:
            participant = access_service.find_participant(db, thread.id, user_id)
            count = unread_count(db, thread.id, participant) if participant else 0
            items.append(serialize_thread_summary(thread, unread_count=count))
        return ThreadListResponse(
            items=items,
            total=total,
            page=pagination.page,
            per_page=pagination.per_page,
            pages=page_count(total, pagination.per_page),
        ).model_dump(mode="json")

    key = build_cache_key(
        inbox_namespace(user_id),
        {
            "view": "threads",
            "state": state_filter.value if state_filter else None,
            "channel_type": channel_filter.value if channel_filter else None,
            **pagination.as_dict(),
        },
    )
    return hub.cache.remember(key, hub.settings.CACHE_INBOX_TTL_SECONDS, produce)
