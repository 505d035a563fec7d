"""Schemas for support cases and retention audits."""

from datetime import datetime
from typing import Any
from uuid import UUID

from pydantic import BaseModel, Field


class SupportCaseRead(BaseModel):
    id: UUID
    thread_id: UUID
    status: str
    priority: str
    reason: str
    escalated_by: UUID | None = None
    escalated_at: datetime
    assigned_to: UUID | None = None
    assigned_by: UUID | None = None
    assigned_at: datetime | None = None
    first_response_at: datetime | None = None
    resolved_at: datetime | None = None
    resolved_by: UUID | None = None
    resolution_summary: str | None = None
    metadata: dict[str, Any] = Field(default_factory=dict)
    created_at: datetime
    updated_at: datetime


class SupportOverview(BaseModel):
    total: int
    open: int
    unassigned: int
    by_status: dict[str, int]
    by_priority: dict[str, int]
    generated_at: datetime


class RetentionAuditRead(BaseModel):
    id: UUID
    run_id: str
    thread_id: UUID
    retention_policy: str
    retention_days: int
    deleted_count: int
    participant_count: int
    cutoff_at: datetime
    is_override: bool
    retained_until: datetime
    archived_at: datetime | None = None
    created_at: datetime

    model_config = {"from_attributes": True}
