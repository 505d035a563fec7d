"""Tests for the domain event bus."""

import json
import uuid
from datetime import datetime, timezone

from messaging.core.events import (
    EventBus,
    EventType,
    MessageAppended,
    MessagesPurged,
    RedisEventForwarder,
)


class FakePublisher:
    def __init__(self, fail: bool = False):
        self.published = []
        self.fail = fail

    def publish(self, channel, payload):
        if self.fail:
            raise ConnectionError("redis down")
        self.published.append((channel, payload))


def test_publish_reaches_subscribers_of_that_type_only():
    bus = EventBus()
    appended, purged = [], []
    bus.subscribe(EventType.MESSAGE_APPENDED, appended.append)
    bus.subscribe(EventType.MESSAGES_PURGED, purged.append)

    event = MessageAppended(thread_id=uuid.uuid4(), message={"body": "hi"})
    assert bus.publish(event) == 1
    assert appended == [event]
    assert purged == []


def test_failing_handler_does_not_reach_publisher():
    bus = EventBus()
    received = []

    def broken(event):
        raise RuntimeError("consumer bug")

    bus.subscribe(EventType.MESSAGE_APPENDED, broken)
    bus.subscribe(EventType.MESSAGE_APPENDED, received.append)

    delivered = bus.publish(MessageAppended(thread_id=uuid.uuid4(), message={}))
    assert delivered == 1
    assert len(received) == 1


def test_unsubscribe_stops_delivery():
    bus = EventBus()
    received = []
    bus.subscribe(EventType.MESSAGE_APPENDED, received.append)
    bus.unsubscribe(EventType.MESSAGE_APPENDED, received.append)

    assert bus.publish(MessageAppended(thread_id=uuid.uuid4(), message={})) == 0
    assert received == []


def test_to_dict_is_json_ready():
    thread_id = uuid.uuid4()
    deleted = [uuid.uuid4(), uuid.uuid4()]
    cutoff = datetime(2026, 1, 1, tzinfo=timezone.utc)
    payload = MessagesPurged(thread_id=thread_id, deleted_ids=deleted, cutoff=cutoff).to_dict()

    assert payload["type"] == "messages_purged"
    assert payload["data"]["thread_id"] == str(thread_id)
    assert payload["data"]["deleted_ids"] == [str(d) for d in deleted]
    assert payload["data"]["cutoff"] == cutoff.isoformat()
    json.dumps(payload)


def test_redis_forwarder_publishes_json():
    client = FakePublisher()
    bus = EventBus()
    bus.subscribe_all(RedisEventForwarder(client, "messaging:events"))

    thread_id = uuid.uuid4()
    bus.publish(MessageAppended(thread_id=thread_id, message={"body": "hello"}))

    channel, payload = client.published[0]
    assert channel == "messaging:events"
    assert json.loads(payload)["data"]["thread_id"] == str(thread_id)


def test_redis_forwarder_swallows_failures():
    forwarder = RedisEventForwarder(FakePublisher(fail=True), "messaging:events")
    forwarder(MessageAppended(thread_id=uuid.uuid4(), message={}))
