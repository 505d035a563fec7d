"""Support case enums."""

from enum import Enum


class SupportCaseStatus(str, Enum):
    """Support case lifecycle status.

    RESOLVED and CLOSED are terminal until a WAITING_ON_CUSTOMER update or a
    re-escalation reopens the case.
    """

    TRIAGE = "triage"
    IN_PROGRESS = "in_progress"
    WAITING_ON_CUSTOMER = "waiting_on_customer"
    RESOLVED = "resolved"
    CLOSED = "closed"


class SupportCasePriority(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    URGENT = "urgent"


TERMINAL_SUPPORT_STATUSES = frozenset({SupportCaseStatus.RESOLVED, SupportCaseStatus.CLOSED})
