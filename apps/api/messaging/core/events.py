"""In-process domain event bus.

A pure notification channel: no persistence, no delivery guarantee. Consumers
(realtime transport, analytics rollups) subscribe independently and must
tolerate events missed across restarts.
"""

from __future__ import annotations

import json
import logging
import threading
from dataclasses import asdict, dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Callable, ClassVar
from uuid import UUID

logger = logging.getLogger(__name__)


class EventType(str, Enum):
    """Domain event kinds emitted by the messaging engine."""

    MESSAGE_APPENDED = "message_appended"
    MESSAGES_PURGED = "messages_purged"
    RETENTION_AUDIT_RECORDED = "retention_audit_recorded"


@dataclass(frozen=True)
class DomainEvent:
    event_type: ClassVar[EventType]

    def to_dict(self) -> dict[str, Any]:
        return {"type": self.event_type.value, "data": _jsonable(asdict(self))}


@dataclass(frozen=True)
class MessageAppended(DomainEvent):
    event_type: ClassVar[EventType] = EventType.MESSAGE_APPENDED

    thread_id: UUID
    message: dict[str, Any]


@dataclass(frozen=True)
class MessagesPurged(DomainEvent):
    event_type: ClassVar[EventType] = EventType.MESSAGES_PURGED

    thread_id: UUID
    deleted_ids: list[UUID]
    cutoff: datetime


@dataclass(frozen=True)
class RetentionAuditRecorded(DomainEvent):
    event_type: ClassVar[EventType] = EventType.RETENTION_AUDIT_RECORDED

    run_id: str
    audit_id: UUID
    thread_id: UUID
    deleted_count: int
    participant_count: int
    retention_policy: str
    retention_days: int
    is_override: bool
    cutoff: datetime


def _jsonable(value: Any) -> Any:
    if isinstance(value, dict):
        return {key: _jsonable(item) for key, item in value.items()}
    if isinstance(value, (list, tuple)):
        return [_jsonable(item) for item in value]
    if isinstance(value, UUID):
        return str(value)
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, Enum):
        return value.value
    return value


EventHandler = Callable[[DomainEvent], None]


@dataclass
class EventBus:
    """Process-local publish/subscribe point. Handler errors never reach publishers."""

    _handlers: dict[EventType, list[EventHandler]] = field(default_factory=dict)
    _lock: threading.Lock = field(default_factory=threading.Lock)

    def subscribe(self, event_type: EventType, handler: EventHandler) -> None:
        with self._lock:
            self._handlers.setdefault(event_type, []).append(handler)

    def subscribe_all(self, handler: EventHandler) -> None:
        for event_type in EventType:
            self.subscribe(event_type, handler)

    def unsubscribe(self, event_type: EventType, handler: EventHandler) -> None:
        with self._lock:
            handlers = self._handlers.get(event_type, [])
            if handler in handlers:
                handlers.remove(handler)

    def publish(self, event: DomainEvent) -> int:
        """Deliver to current subscribers. Returns how many handlers succeeded."""
        with self._lock:
            handlers = list(self._handlers.get(event.event_type, []))

        delivered = 0
        for handler in handlers:
            try:
                handler(event)
                delivered += 1
            except Exception:
                logger.exception(
                    "Event handler %r failed for %s",
                    handler,
                    event.event_type.value,
                )
        return delivered


class RedisEventForwarder:
    """Republishes domain events on a Redis channel for out-of-process realtime consumers."""

    def __init__(self, client, channel: str):
        self._client = client
        self._channel = channel

    def __call__(self, event: DomainEvent) -> None:
        if self._client is None:
            return
        try:
            self._client.publish(self._channel, json.dumps(event.to_dict()))
        except Exception:
            logger.warning("Failed to forward %s to Redis", event.event_type.value, exc_info=True)
