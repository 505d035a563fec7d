"""Post-commit fan-out: cache invalidation, domain events, notifications, auto-replies.

Nothing here runs inside a caller's transaction and nothing here raises to a
caller. Work is handed to the hub's BackgroundDispatcher; each step catches
and logs its own failure so one broken consumer cannot starve the others.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Callable, Iterable
from uuid import UUID

from sqlalchemy.orm import Session

from messaging.core.background import BackgroundDispatcher
from messaging.core.cache import AppCache
from messaging.core.config import Settings
from messaging.core.events import EventBus, MessageAppended
from messaging.core.structured_logging import build_log_context
from messaging.services.notification_facade import (
    NotificationQueue,
    NotificationRequest,
    dispatch_notifications,
)

if TYPE_CHECKING:
    from messaging.services.auto_reply import AutoReplyDispatcher

logger = logging.getLogger(__name__)

THREAD_NAMESPACE = "messaging:thread"
INBOX_NAMESPACE = "messaging:inbox"
OVERVIEW_NAMESPACE = "messaging:overview"


def thread_namespace(thread_id: UUID) -> str:
    return f"{THREAD_NAMESPACE}:{thread_id}"


def inbox_namespace(user_id: UUID) -> str:
    return f"{INBOX_NAMESPACE}:{user_id}"


@dataclass
class MessagingHub:
    """Collaborators shared by every service call. Built by ``messaging.runtime``."""

    session_factory: Callable[[], Session]
    cache: AppCache
    events: EventBus
    notifications: NotificationQueue
    background: BackgroundDispatcher
    settings: Settings
    auto_replies: "AutoReplyDispatcher | None" = None

    def invalidate(
        self,
        *,
        thread_ids: Iterable[UUID] = (),
        user_ids: Iterable[UUID] = (),
        overview: bool = False,
    ) -> int:
        removed = 0
        for thread_id in thread_ids:
            removed += self.cache.flush_by_prefix(f"{thread_namespace(thread_id)}:")
        for user_id in user_ids:
            removed += self.cache.flush_by_prefix(f"{inbox_namespace(user_id)}:")
        if overview:
            removed += self.cache.flush_by_prefix(f"{OVERVIEW_NAMESPACE}:")
        return removed

    def run_after_commit(self, label: str, fn: Callable[..., Any], *args: Any, **kwargs: Any) -> None:
        """Schedule post-commit work without blocking the caller."""
        try:
            self.background.submit(label, fn, *args, **kwargs)
        except Exception:
            logger.warning("Failed to schedule post-commit work %s", label, exc_info=True)


@dataclass(frozen=True)
class AppendArtifacts:
    """Everything fan-out needs, captured before the session is released."""

    thread_id: UUID
    message_id: UUID
    sender_id: UUID | None
    participant_ids: list[UUID]
    message: dict[str, Any]
    schedule_auto_reply: bool = False


@dataclass(frozen=True)
class TransitionArtifacts:
    thread_id: UUID
    case_id: UUID
    participant_ids: list[UUID]
    system_message: dict[str, Any] | None
    notifications: list[NotificationRequest] = field(default_factory=list)


def fan_out_message_appended(hub: MessagingHub, artifacts: AppendArtifacts) -> None:
    context = build_log_context(
        thread_id=artifacts.thread_id,
        message_id=artifacts.message_id,
        operation="message_appended",
    )
    try:
        hub.invalidate(thread_ids=[artifacts.thread_id], user_ids=artifacts.participant_ids)
    except Exception:
        logger.warning("Cache invalidation failed after append", extra=context, exc_info=True)

    try:
        hub.events.publish(MessageAppended(thread_id=artifacts.thread_id, message=artifacts.message))
    except Exception:
        logger.warning("Event emission failed after append", extra=context, exc_info=True)

    if artifacts.schedule_auto_reply and hub.auto_replies is not None:
        try:
            hub.auto_replies.enqueue_auto_replies(
                hub,
                thread_id=artifacts.thread_id,
                message_id=artifacts.message_id,
                sender_id=artifacts.sender_id,
            )
        except Exception:
            logger.warning("Auto-reply scheduling failed", extra=context, exc_info=True)


def fan_out_support_transition(hub: MessagingHub, artifacts: TransitionArtifacts) -> None:
    context = build_log_context(
        thread_id=artifacts.thread_id,
        case_id=artifacts.case_id,
        operation="support_transition",
    )
    try:
        hub.invalidate(
            thread_ids=[artifacts.thread_id],
            user_ids=artifacts.participant_ids,
            overview=True,
        )
    except Exception:
        logger.warning("Cache invalidation failed after support transition", extra=context, exc_info=True)

    if artifacts.system_message is not None:
        try:
            hub.events.publish(
                MessageAppended(thread_id=artifacts.thread_id, message=artifacts.system_message)
            )
        except Exception:
            logger.warning("Event emission failed after support transition", extra=context, exc_info=True)

    if artifacts.notifications:
        dispatch_notifications(hub.notifications, artifacts.notifications)


def fan_out_thread_changed(
    hub: MessagingHub,
    thread_id: UUID,
    user_ids: Iterable[UUID],
    *,
    overview: bool = False,
) -> None:
    try:
        hub.invalidate(thread_ids=[thread_id], user_ids=list(user_ids), overview=overview)
    except Exception:
        logger.warning(
            "Cache invalidation failed",
            extra=build_log_context(thread_id=thread_id, operation="thread_changed"),
            exc_info=True,
        )
