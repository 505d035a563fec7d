"""SQLAlchemy ORM models for the messaging engine."""

from messaging.db.models.messaging import (
    Message,
    MessageAttachment,
    MessageLabel,
    MessageParticipant,
    MessageReadReceipt,
    MessageThread,
    MessageThreadLabel,
)
from messaging.db.models.retention import MessageRetentionAudit
from messaging.db.models.support import SupportCase
from messaging.db.models.users import User

__all__ = [
    "Message",
    "MessageAttachment",
    "MessageLabel",
    "MessageParticipant",
    "MessageReadReceipt",
    "MessageRetentionAudit",
    "MessageThread",
    "MessageThreadLabel",
    "SupportCase",
    "User",
]
