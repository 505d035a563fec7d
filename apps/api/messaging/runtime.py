"""Process composition: builds the MessagingHub and the retention scheduler."""

from __future__ import annotations

import logging
from typing import Callable

from sqlalchemy.orm import Session

from messaging.core.background import BackgroundDispatcher
from messaging.core.cache import AppCache, build_app_cache
from messaging.core.config import Settings
from messaging.core.config import settings as default_settings
from messaging.core.events import EventBus, RedisEventForwarder
from messaging.core.redis_client import get_redis_client
from messaging.services.auto_reply import AutoReplyDispatcher, Responder
from messaging.services.fanout import MessagingHub
from messaging.services.notification_facade import LoggingNotificationQueue, NotificationQueue
from messaging.services.retention_scheduler import RetentionScheduler

logger = logging.getLogger(__name__)


def build_runtime(
    *,
    settings: Settings | None = None,
    session_factory: Callable[[], Session] | None = None,
    cache: AppCache | None = None,
    events: EventBus | None = None,
    notifications: NotificationQueue | None = None,
    responder: Responder | None = None,
    forward_events_to_redis: bool = True,
) -> MessagingHub:
    """Wire the engine's collaborators. Anything not passed in gets its production default."""
    settings = settings or default_settings
    if session_factory is None:
        from messaging.db.session import SessionLocal

        session_factory = SessionLocal

    events = events or EventBus()
    if forward_events_to_redis:
        client = get_redis_client()
        if client is not None:
            events.subscribe_all(RedisEventForwarder(client, settings.EVENT_REDIS_CHANNEL))
            logger.info("Forwarding domain events to Redis channel %s", settings.EVENT_REDIS_CHANNEL)

    return MessagingHub(
        session_factory=session_factory,
        cache=cache or build_app_cache(),
        events=events,
        notifications=notifications or LoggingNotificationQueue(),
        background=BackgroundDispatcher(
            max_workers=settings.FANOUT_MAX_WORKERS,
            max_pending=settings.FANOUT_MAX_PENDING,
        ),
        settings=settings,
        auto_replies=AutoReplyDispatcher(responder, max_tracked=settings.AUTO_REPLY_MAX_TRACKED),
    )


def build_retention_scheduler(hub: MessagingHub) -> RetentionScheduler:
    return RetentionScheduler(hub)


def shutdown_runtime(hub: MessagingHub, *, wait_for_pending: bool = True) -> None:
    hub.background.shutdown(wait_for_pending=wait_for_pending)
