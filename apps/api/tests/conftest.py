"""
Test configuration and fixtures.

Provides:
- A file-backed SQLite database per test (schema created from the models)
- A MessagingHub wired with in-memory cache, recording notification queue,
  and a real BackgroundDispatcher (drain it with ``hub.background.wait_idle()``)
- Factories for users and threads
"""
import os
import uuid
from typing import Generator

# Settings are read at import time; point them somewhere harmless first.
os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ["REDIS_URL"] = "memory://"

import pytest
from sqlalchemy.orm import Session, sessionmaker

from messaging.core.cache import AppCache, MemoryCacheBackend
from messaging.core.config import Settings
from messaging.core.events import EventBus
from messaging.db.base import Base
from messaging.db.enums import ChannelType
from messaging.db.models import User
from messaging.db.session import build_engine
from messaging.runtime import build_runtime, shutdown_runtime
from messaging.services import thread_service

SUPPORT_ROSTER_ID = uuid.UUID("00000000-0000-4000-8000-00000000beef")


class RecordingNotificationQueue:
    def __init__(self):
        self.sent = []

    def queue_notification(self, request, *, bypass_quiet_hours=False):
        self.sent.append((request, bypass_quiet_hours))

    def for_type(self, notification_type: str):
        return [(request, bypass) for request, bypass in self.sent if request.type == notification_type]


# =============================================================================
# Database Fixtures
# =============================================================================

@pytest.fixture(scope="function")
def engine(tmp_path):
    engine = build_engine(f"sqlite:///{tmp_path / 'messaging.db'}")
    Base.metadata.create_all(bind=engine)
    yield engine
    engine.dispose()


@pytest.fixture(scope="function")
def session_factory(engine):
    return sessionmaker(autocommit=False, autoflush=False, bind=engine)


@pytest.fixture(scope="function")
def db(session_factory) -> Generator[Session, None, None]:
    session = session_factory()
    yield session
    session.close()


# =============================================================================
# Runtime Fixtures
# =============================================================================

@pytest.fixture(scope="function")
def test_settings() -> Settings:
    return Settings(
        DATABASE_URL="sqlite://",
        SUPPORT_NOTIFICATION_USER_IDS=str(SUPPORT_ROSTER_ID),
        FANOUT_MAX_WORKERS=2,
        RETENTION_BATCH_SIZE=2,
        RETENTION_MAX_THREADS=50,
        RETENTION_AUDIT_TTL_DAYS=365,
        RETENTION_AUDIT_GRACE_DAYS=30,
    )


@pytest.fixture(scope="function")
def notifications() -> RecordingNotificationQueue:
    return RecordingNotificationQueue()


@pytest.fixture(scope="function")
def recorded_events():
    bus = EventBus()
    events = []
    bus.subscribe_all(events.append)
    return bus, events


@pytest.fixture(scope="function")
def hub(session_factory, test_settings, notifications, recorded_events):
    bus, _ = recorded_events
    hub = build_runtime(
        settings=test_settings,
        session_factory=session_factory,
        cache=AppCache(MemoryCacheBackend()),
        events=bus,
        notifications=notifications,
        forward_events_to_redis=False,
    )
    yield hub
    shutdown_runtime(hub)


@pytest.fixture(scope="function")
def events(recorded_events):
    return recorded_events[1]


# =============================================================================
# Factories
# =============================================================================

@pytest.fixture(scope="function")
def make_user(db: Session):
    def _make(display_name: str = "Test User", *, support_agent: bool = False, active: bool = True) -> User:
        user = User(
            id=uuid.uuid4(),
            email=f"user-{uuid.uuid4().hex[:8]}@test.com",
            display_name=display_name,
            is_support_agent=support_agent,
            is_active=active,
        )
        db.add(user)
        db.commit()
        return user

    return _make


@pytest.fixture(scope="function")
def alice(make_user) -> User:
    return make_user("Alice")


@pytest.fixture(scope="function")
def bob(make_user) -> User:
    return make_user("Bob")


@pytest.fixture(scope="function")
def make_thread(db: Session, hub):
    def _make(creator: User, *others: User, channel_type=ChannelType.DIRECT, **kwargs):
        thread = thread_service.create_thread(
            db,
            hub,
            creator.id,
            channel_type=channel_type,
            participant_ids=[user.id for user in others],
            **kwargs,
        )
        hub.background.wait_idle()
        return thread

    return _make


@pytest.fixture(scope="function")
def direct_thread(make_thread, alice, bob):
    return make_thread(alice, bob, subject="Project kickoff")
