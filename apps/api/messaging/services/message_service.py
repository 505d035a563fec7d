"""Message append pipeline.

append_message is the only way user messages enter a thread:

1. lock the thread row; reject missing or locked threads
2. lock the sender's participant row
3. validate type, body, metadata, attachments
4. insert the message and its attachments, advance the thread summary
5. commit, then hand fan-out to the background dispatcher

Anything raised before commit rolls the whole write back.
"""

from __future__ import annotations

import logging
from uuid import UUID

from pydantic import ValidationError as PydanticValidationError
from sqlalchemy import select
from sqlalchemy.orm import Session

from messaging.core.errors import AuthorizationError, NotFoundError, ValidationError
from messaging.db.enums import MessageType, ThreadState
from messaging.db.models import Message, MessageAttachment, MessageThread
from messaging.db.models._common import utcnow
from messaging.schemas.messaging import AttachmentInput, MessageCreate, MessageMetadata
from messaging.services import access_service
from messaging.services.fanout import (
    AppendArtifacts,
    MessagingHub,
    fan_out_message_appended,
    fan_out_thread_changed,
)
from messaging.services.transaction import write_transaction
from messaging.services.views import build_preview, message_payload

logger = logging.getLogger(__name__)

MAX_ATTACHMENTS = 5
DEFAULT_ATTACHMENT_MIME_TYPE = "application/octet-stream"


# =============================================================================
# Validation
# =============================================================================


def parse_message_type(value: str | MessageType) -> MessageType:
    try:
        return MessageType(value)
    except ValueError:
        raise ValidationError(
            f"Unsupported message type: {value}",
            details={"message_type": str(value), "allowed": [t.value for t in MessageType]},
        )


def normalize_body(message_type: MessageType, body: str | None) -> str | None:
    """Text bodies are trimmed and never null; empty text is allowed."""
    if message_type == MessageType.TEXT:
        return (body or "").strip()
    if body is None:
        return None
    return body.strip()


def parse_message_metadata(metadata: dict | None) -> MessageMetadata:
    try:
        return MessageMetadata.model_validate(metadata or {})
    except PydanticValidationError as exc:
        raise ValidationError("Invalid message metadata", details={"errors": exc.errors()})


def validate_attachments(attachments: list[AttachmentInput | dict] | None) -> list[AttachmentInput]:
    attachments = attachments or []
    if len(attachments) > MAX_ATTACHMENTS:
        raise ValidationError(
            f"A message may carry at most {MAX_ATTACHMENTS} attachments",
            details={"count": len(attachments)},
        )
    validated: list[AttachmentInput] = []
    for index, raw in enumerate(attachments):
        try:
            item = raw if isinstance(raw, AttachmentInput) else AttachmentInput.model_validate(raw)
        except PydanticValidationError:
            raise ValidationError(f"Attachment {index} is malformed", details={"index": index})
        if not (item.file_name or "").strip() or not (item.storage_key or "").strip():
            raise ValidationError(
                f"Attachment {index} requires file_name and storage_key",
                details={"index": index},
            )
        validated.append(item)
    return validated


def should_schedule_auto_reply(message_type: MessageType, body: str | None, metadata: MessageMetadata) -> bool:
    """Only non-empty text that is not itself an auto-reply triggers a reply."""
    return message_type == MessageType.TEXT and bool(body) and not metadata.auto_reply


def _coerce_payload(payload: MessageCreate | dict) -> MessageCreate:
    if isinstance(payload, MessageCreate):
        return payload
    try:
        return MessageCreate.model_validate(payload)
    except PydanticValidationError as exc:
        raise ValidationError("Invalid message payload", details={"errors": exc.errors()})


# =============================================================================
# Writes
# =============================================================================


def _advance_thread_summary(thread: MessageThread, message: Message, attachments: list[MessageAttachment]) -> None:
    """Move last_message_at forward (never backwards) together with the preview."""
    if thread.last_message_at is not None and message.created_at < thread.last_message_at:
        return
    thread.last_message_at = message.created_at
    thread.last_message_preview = build_preview(message.body, attachments)


def _insert_message(
    db: Session,
    thread: MessageThread,
    *,
    sender_id: UUID | None,
    message_type: MessageType,
    body: str | None,
    metadata: dict,
    attachments: list[AttachmentInput] = (),
) -> Message:
    now = utcnow()
    message = Message(
        thread_id=thread.id,
        sender_id=sender_id,
        message_type=message_type,
        body=body,
        meta=metadata,
        delivered_at=now,
        created_at=now,
        updated_at=now,
    )
    db.add(message)
    db.flush()

    rows: list[MessageAttachment] = []
    for position, item in enumerate(attachments):
        row = MessageAttachment(
            message_id=message.id,
            position=position,
            file_name=item.file_name.strip(),
            storage_key=item.storage_key.strip(),
            mime_type=item.mime_type or DEFAULT_ATTACHMENT_MIME_TYPE,
            file_size=item.file_size or 0,
            checksum=item.checksum,
            created_at=now,
        )
        db.add(row)
        rows.append(row)
    db.flush()

    _advance_thread_summary(thread, message, rows)
    thread.updated_at = now
    return message


def append_message(
    db: Session,
    hub: MessagingHub,
    thread_id: UUID,
    sender_id: UUID,
    payload: MessageCreate | dict,
) -> Message:
    """Append a participant message and schedule post-commit fan-out."""
    payload = _coerce_payload(payload)

    with write_transaction(db, "append_message", thread_id=thread_id, user_id=sender_id):
        thread = access_service.get_thread(db, thread_id, for_update=True)
        if thread.state == ThreadState.LOCKED:
            raise AuthorizationError("Thread is locked", details={"thread_id": str(thread_id)})
        sender = access_service.ensure_participant(db, thread_id, sender_id, for_update=True)

        message_type = parse_message_type(payload.message_type)
        body = normalize_body(message_type, payload.body)
        metadata = parse_message_metadata(payload.metadata)
        attachments = validate_attachments(payload.attachments)

        message = _insert_message(
            db,
            thread,
            sender_id=sender_id,
            message_type=message_type,
            body=body,
            metadata=metadata.to_storage(),
            attachments=attachments,
        )
        # Own messages are read by definition.
        sender.last_read_at = message.created_at

        artifacts = AppendArtifacts(
            thread_id=thread.id,
            message_id=message.id,
            sender_id=sender_id,
            participant_ids=access_service.participant_user_ids(db, thread.id),
            message=message_payload(message),
            schedule_auto_reply=should_schedule_auto_reply(message_type, body, metadata),
        )

    hub.run_after_commit("message_appended", fan_out_message_appended, hub, artifacts)
    return message


def append_system_message(
    db: Session,
    thread: MessageThread,
    body: str,
    *,
    metadata: dict | None = None,
) -> Message:
    """
    Write a system message inside the caller's transaction.

    No participant check and no commit: the caller holds the thread lock and
    owns the transaction.
    """
    return _insert_message(
        db,
        thread,
        sender_id=None,
        message_type=MessageType.SYSTEM,
        body=body,
        metadata=parse_message_metadata(metadata).to_storage(),
    )


def _get_message(db: Session, message_id: UUID) -> Message:
    message = db.execute(select(Message).where(Message.id == message_id)).scalar_one_or_none()
    if message is None or message.deleted_at is not None:
        raise NotFoundError("Message not found", details={"message_id": str(message_id)})
    return message


def _refresh_preview(db: Session, thread: MessageThread) -> None:
    newest = db.execute(
        select(Message)
        .where(Message.thread_id == thread.id, Message.deleted_at.is_(None))
        .order_by(Message.created_at.desc(), Message.id.desc())
        .limit(1)
    ).scalar_one_or_none()
    thread.last_message_preview = build_preview(newest.body, newest.attachments) if newest else None


def edit_message(db: Session, hub: MessagingHub, message_id: UUID, editor_id: UUID, body: str) -> Message:
    """Replace the body of a text message. Only the sender may edit."""
    message = _get_message(db, message_id)
    thread_id = message.thread_id

    with write_transaction(db, "edit_message", thread_id=thread_id, message_id=message_id, user_id=editor_id):
        thread = access_service.get_thread(db, thread_id, for_update=True)
        if thread.state == ThreadState.LOCKED:
            raise AuthorizationError("Thread is locked", details={"thread_id": str(thread_id)})
        access_service.ensure_participant(db, thread_id, editor_id, for_update=True)
        message = _get_message(db, message_id)
        if message.sender_id != editor_id:
            raise AuthorizationError("Only the sender may edit a message")
        if message.message_type != MessageType.TEXT:
            raise ValidationError("Only text messages can be edited")

        message.body = normalize_body(MessageType.TEXT, body)
        message.is_edited = True
        message.updated_at = utcnow()
        db.flush()
        _refresh_preview(db, thread)
        participant_ids = access_service.participant_user_ids(db, thread_id)

    hub.run_after_commit("message_edited", fan_out_thread_changed, hub, thread_id, participant_ids)
    return message


def delete_message(db: Session, hub: MessagingHub, message_id: UUID, actor_id: UUID) -> Message:
    """Soft-delete a message. The row stays until retention purges it."""
    message = _get_message(db, message_id)
    thread_id = message.thread_id

    with write_transaction(db, "delete_message", thread_id=thread_id, message_id=message_id, user_id=actor_id):
        thread = access_service.get_thread(db, thread_id, for_update=True)
        access_service.ensure_participant(db, thread_id, actor_id, for_update=True)
        message = _get_message(db, message_id)
        if message.sender_id != actor_id:
            raise AuthorizationError("Only the sender may delete a message")

        now = utcnow()
        message.deleted_at = now
        message.updated_at = now
        db.flush()
        _refresh_preview(db, thread)
        participant_ids = access_service.participant_user_ids(db, thread_id)

    hub.run_after_commit("message_deleted", fan_out_thread_changed, hub, thread_id, participant_ids)
    return message
