"""Messaging thread enums."""

from enum import Enum


class ChannelType(str, Enum):
    """Conversation channel a thread belongs to."""

    DIRECT = "direct"
    GROUP = "group"
    SUPPORT = "support"
    PROJECT = "project"
    CONTRACT = "contract"


class ThreadState(str, Enum):
    """Thread lifecycle state. LOCKED forbids new messages."""

    ACTIVE = "active"
    ARCHIVED = "archived"
    LOCKED = "locked"


class MessageType(str, Enum):
    TEXT = "text"
    FILE = "file"
    SYSTEM = "system"
    EVENT = "event"


class ParticipantRole(str, Enum):
    OWNER = "owner"
    PARTICIPANT = "participant"
    SUPPORT = "support"
    SYSTEM = "system"
