"""View mapping from ORM rows to read models.

Every function here is total: it accepts a loaded row and returns a schema
instance (or a JSON-ready dict) without touching the database beyond
relationships already attached to the row.
"""

from __future__ import annotations

from typing import Any

from messaging.db.models import (
    Message,
    MessageAttachment,
    MessageLabel,
    MessageParticipant,
    MessageRetentionAudit,
    MessageThread,
    SupportCase,
)
from messaging.schemas.messaging import (
    AttachmentRead,
    LabelRead,
    MessageRead,
    ParticipantRead,
    ThreadDetail,
    ThreadSummary,
    sanitize_metadata,
)
from messaging.schemas.support import RetentionAuditRead, SupportCaseRead

PREVIEW_LENGTH = 280


def _enum_value(value) -> str:
    return getattr(value, "value", value)


def build_preview(body: str | None, attachments: list[MessageAttachment] | None = None) -> str | None:
    """Thread preview text: first 280 characters of the body, else an attachment marker."""
    if body:
        return body[:PREVIEW_LENGTH]
    if attachments:
        return f"[attachment] {attachments[0].file_name}"[:PREVIEW_LENGTH]
    return None


def serialize_attachment(attachment: MessageAttachment) -> AttachmentRead:
    return AttachmentRead(
        id=attachment.id,
        file_name=attachment.file_name,
        mime_type=attachment.mime_type,
        file_size=attachment.file_size,
        storage_key=attachment.storage_key,
        checksum=attachment.checksum,
        created_at=attachment.created_at,
    )


def serialize_message(message: Message) -> MessageRead:
    # Soft-deleted messages keep their row but never expose content.
    deleted = message.deleted_at is not None
    return MessageRead(
        id=message.id,
        thread_id=message.thread_id,
        sender_id=message.sender_id,
        message_type=_enum_value(message.message_type),
        body=None if deleted else message.body,
        metadata={} if deleted else sanitize_metadata(message.meta),
        is_edited=message.is_edited,
        delivered_at=message.delivered_at,
        read_at=message.read_at,
        deleted_at=message.deleted_at,
        created_at=message.created_at,
        updated_at=message.updated_at,
        attachments=[] if deleted else [serialize_attachment(a) for a in message.attachments],
    )


def message_payload(message: Message) -> dict[str, Any]:
    return serialize_message(message).model_dump(mode="json")


def serialize_participant(participant: MessageParticipant) -> ParticipantRead:
    return ParticipantRead(
        user_id=participant.user_id,
        role=_enum_value(participant.role),
        last_read_at=participant.last_read_at,
        muted_until=participant.muted_until,
        notifications_enabled=participant.notifications_enabled,
        joined_at=participant.created_at,
    )


def serialize_label(label: MessageLabel) -> LabelRead:
    return LabelRead(
        id=label.id,
        name=label.name,
        slug=label.slug,
        color=label.color,
        description=label.description,
    )


def serialize_support_case(case: SupportCase) -> SupportCaseRead:
    return SupportCaseRead(
        id=case.id,
        thread_id=case.thread_id,
        status=_enum_value(case.status),
        priority=_enum_value(case.priority),
        reason=case.reason,
        escalated_by=case.escalated_by,
        escalated_at=case.escalated_at,
        assigned_to=case.assigned_to,
        assigned_by=case.assigned_by,
        assigned_at=case.assigned_at,
        first_response_at=case.first_response_at,
        resolved_at=case.resolved_at,
        resolved_by=case.resolved_by,
        resolution_summary=case.resolution_summary,
        metadata=sanitize_metadata(case.meta),
        created_at=case.created_at,
        updated_at=case.updated_at,
    )


def _summary_fields(thread: MessageThread, unread_count: int) -> dict[str, Any]:
    return {
        "id": thread.id,
        "subject": thread.subject,
        "channel_type": _enum_value(thread.channel_type),
        "state": _enum_value(thread.state),
        "created_by": thread.created_by,
        "last_message_at": thread.last_message_at,
        "last_message_preview": thread.last_message_preview,
        "retention_policy": thread.retention_policy,
        "retention_days": thread.retention_days,
        "metadata": sanitize_metadata(thread.meta),
        "unread_count": unread_count,
        "is_unread": unread_count > 0,
        "created_at": thread.created_at,
        "updated_at": thread.updated_at,
    }


def serialize_thread_summary(thread: MessageThread, *, unread_count: int = 0) -> ThreadSummary:
    return ThreadSummary(**_summary_fields(thread, unread_count))


def serialize_thread_detail(
    thread: MessageThread,
    *,
    participants: list[MessageParticipant],
    labels: list[MessageLabel],
    support_case: SupportCase | None,
    messages: list[Message],
    unread_count: int = 0,
) -> ThreadDetail:
    return ThreadDetail(
        **_summary_fields(thread, unread_count),
        participants=[serialize_participant(p) for p in participants],
        labels=[serialize_label(label) for label in labels],
        support_case=(
            serialize_support_case(support_case).model_dump(mode="json") if support_case else None
        ),
        messages=[serialize_message(m) for m in messages],
    )


def serialize_retention_audit(audit: MessageRetentionAudit) -> RetentionAuditRead:
    return RetentionAuditRead.model_validate(audit)
