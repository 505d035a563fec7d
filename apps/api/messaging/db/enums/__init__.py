"""Enum definitions for application constants."""

from messaging.db.enums.defaults import (
    DEFAULT_MESSAGE_TYPE,
    DEFAULT_PARTICIPANT_ROLE,
    DEFAULT_SUPPORT_PRIORITY,
    DEFAULT_SUPPORT_STATUS,
    DEFAULT_THREAD_STATE,
)
from messaging.db.enums.messaging import ChannelType, MessageType, ParticipantRole, ThreadState
from messaging.db.enums.support import (
    TERMINAL_SUPPORT_STATUSES,
    SupportCasePriority,
    SupportCaseStatus,
)

__all__ = [
    "ChannelType",
    "DEFAULT_MESSAGE_TYPE",
    "DEFAULT_PARTICIPANT_ROLE",
    "DEFAULT_SUPPORT_PRIORITY",
    "DEFAULT_SUPPORT_STATUS",
    "DEFAULT_THREAD_STATE",
    "MessageType",
    "ParticipantRole",
    "SupportCasePriority",
    "SupportCaseStatus",
    "TERMINAL_SUPPORT_STATUSES",
    "ThreadState",
]
