"""Notification facade for the messaging engine.

Delivery is owned by an external notification service. The engine only builds
requests and hands them to a ``NotificationQueue`` after commit.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Iterable, Protocol
from uuid import UUID

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class NotificationRequest:
    user_id: UUID
    category: str
    priority: str
    type: str
    title: str
    body: str | None = None
    payload: dict[str, Any] = field(default_factory=dict)
    bypass_quiet_hours: bool = False


class NotificationQueue(Protocol):
    def queue_notification(self, request: NotificationRequest, *, bypass_quiet_hours: bool = False) -> None: ...


class LoggingNotificationQueue:
    """Default queue: logs what would be delivered."""

    def queue_notification(self, request: NotificationRequest, *, bypass_quiet_hours: bool = False) -> None:
        logger.info(
            "[DRY RUN] Would notify user=%s type=%s priority=%s bypass_quiet_hours=%s",
            request.user_id,
            request.type,
            request.priority,
            bypass_quiet_hours,
        )


def dispatch_notifications(queue: NotificationQueue, requests: Iterable[NotificationRequest]) -> int:
    """Queue each request; failures are logged per recipient. Returns the number queued."""
    queued = 0
    for request in requests:
        try:
            queue.queue_notification(request, bypass_quiet_hours=request.bypass_quiet_hours)
            queued += 1
        except Exception:
            logger.warning(
                "Failed to queue %s notification for user=%s",
                request.type,
                request.user_id,
                exc_info=True,
            )
    return queued
