"""Centralized defaults for enums."""

from messaging.db.enums.messaging import MessageType, ParticipantRole, ThreadState
from messaging.db.enums.support import SupportCasePriority, SupportCaseStatus


DEFAULT_THREAD_STATE: ThreadState = ThreadState.ACTIVE
DEFAULT_MESSAGE_TYPE: MessageType = MessageType.TEXT
DEFAULT_PARTICIPANT_ROLE: ParticipantRole = ParticipantRole.PARTICIPANT
DEFAULT_SUPPORT_STATUS: SupportCaseStatus = SupportCaseStatus.TRIAGE
DEFAULT_SUPPORT_PRIORITY: SupportCasePriority = SupportCasePriority.MEDIUM
