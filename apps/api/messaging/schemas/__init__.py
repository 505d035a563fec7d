"""Pydantic schemas for engine inputs and read models."""

from messaging.schemas.messaging import (
    AttachmentInput,
    AttachmentRead,
    LabelCreate,
    LabelRead,
    MessageCreate,
    MessageListResponse,
    MessageMetadata,
    MessageRead,
    ParticipantRead,
    SupportCaseMetadata,
    ThreadCreate,
    ThreadDetail,
    ThreadListResponse,
    ThreadMetadata,
    ThreadSummary,
)
from messaging.schemas.support import RetentionAuditRead, SupportCaseRead, SupportOverview

__all__ = [
    "AttachmentInput",
    "AttachmentRead",
    "LabelCreate",
    "LabelRead",
    "MessageCreate",
    "MessageListResponse",
    "MessageMetadata",
    "MessageRead",
    "ParticipantRead",
    "RetentionAuditRead",
    "SupportCaseMetadata",
    "SupportCaseRead",
    "SupportOverview",
    "ThreadCreate",
    "ThreadDetail",
    "ThreadListResponse",
    "ThreadMetadata",
    "ThreadSummary",
]
