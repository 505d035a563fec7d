"""Pydantic schemas for threads, messages, participants, and labels."""

from __future__ import annotations

from datetime import datetime
from typing import Any
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field


# =============================================================================
# Metadata
# =============================================================================

# Keys stripped from metadata before it leaves the engine.
DENIED_METADATA_KEYS = frozenset(
    {
        "_internal",
        "_debug",
        "internal",
        "internalNotes",
        "internal_notes",
        "private",
        "privateNotes",
        "private_notes",
        "moderation",
        "moderationFlags",
    }
)


class _MetadataBase(BaseModel):
    """Known optional fields; unknown keys pass through untouched."""

    model_config = ConfigDict(extra="allow", populate_by_name=True)

    def to_storage(self) -> dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


class ThreadMetadata(_MetadataBase):
    project_id: UUID | None = Field(default=None, alias="projectId")
    contract_id: UUID | None = Field(default=None, alias="contractId")
    workspace_id: UUID | None = Field(default=None, alias="workspaceId")
    topic: str | None = None


class MessageMetadata(_MetadataBase):
    auto_reply: bool | None = Field(default=None, alias="autoReply")
    client_message_id: str | None = Field(default=None, alias="clientMessageId")
    reply_to_id: UUID | None = Field(default=None, alias="replyToId")
    event_name: str | None = Field(default=None, alias="eventName")


class SupportCaseMetadata(_MetadataBase):
    source: str | None = None
    last_transition: str | None = Field(default=None, alias="lastTransition")


def sanitize_metadata(metadata: dict | None) -> dict[str, Any]:
    if not isinstance(metadata, dict):
        return {}
    return {key: value for key, value in metadata.items() if key not in DENIED_METADATA_KEYS}


# =============================================================================
# Inputs
# =============================================================================


class AttachmentInput(BaseModel):
    """Attachment reference supplied with a message. Required keys are checked by the pipeline."""

    file_name: str | None = None
    storage_key: str | None = None
    mime_type: str | None = None
    file_size: int | None = Field(default=None, ge=0)
    checksum: str | None = None


class MessageCreate(BaseModel):
    message_type: str = "text"
    body: str | None = None
    attachments: list[AttachmentInput] = Field(default_factory=list)
    metadata: dict[str, Any] = Field(default_factory=dict)


class ThreadCreate(BaseModel):
    subject: str | None = Field(default=None, max_length=255)
    channel_type: str
    participant_ids: list[UUID] = Field(default_factory=list)
    metadata: dict[str, Any] = Field(default_factory=dict)
    retention_days: int | None = None


class LabelCreate(BaseModel):
    name: str = Field(min_length=1, max_length=80)
    color: str | None = Field(default=None, max_length=16)
    description: str | None = None


# =============================================================================
# Views
# =============================================================================


class AttachmentRead(BaseModel):
    id: UUID
    file_name: str
    mime_type: str
    file_size: int
    storage_key: str
    checksum: str | None = None
    created_at: datetime


class MessageRead(BaseModel):
    id: UUID
    thread_id: UUID
    sender_id: UUID | None = None
    message_type: str
    body: str | None = None
    metadata: dict[str, Any] = Field(default_factory=dict)
    is_edited: bool = False
    delivered_at: datetime | None = None
    read_at: datetime | None = None
    deleted_at: datetime | None = None
    created_at: datetime
    updated_at: datetime
    attachments: list[AttachmentRead] = Field(default_factory=list)


class ParticipantRead(BaseModel):
    user_id: UUID
    role: str
    last_read_at: datetime | None = None
    muted_until: datetime | None = None
    notifications_enabled: bool = True
    joined_at: datetime


class LabelRead(BaseModel):
    id: UUID
    name: str
    slug: str
    color: str | None = None
    description: str | None = None


class ThreadSummary(BaseModel):
    """Inbox row for a thread."""

    id: UUID
    subject: str | None = None
    channel_type: str
    state: str
    created_by: UUID
    last_message_at: datetime | None = None
    last_message_preview: str | None = None
    retention_policy: str
    retention_days: int
    metadata: dict[str, Any] = Field(default_factory=dict)
    unread_count: int = 0
    is_unread: bool = False
    created_at: datetime
    updated_at: datetime


class ThreadDetail(ThreadSummary):
    participants: list[ParticipantRead] = Field(default_factory=list)
    labels: list[LabelRead] = Field(default_factory=list)
    support_case: dict[str, Any] | None = None
    messages: list[MessageRead] = Field(default_factory=list)


class MessageListResponse(BaseModel):
    items: list[MessageRead]
    total: int
    page: int
    per_page: int
    pages: int


class ThreadListResponse(BaseModel):
    items: list[ThreadSummary]
    total: int
    page: int
    per_page: int
    pages: int
