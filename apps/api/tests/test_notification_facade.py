"""Tests for the notification facade."""

import uuid

from messaging.services.notification_facade import (
    LoggingNotificationQueue,
    NotificationRequest,
    dispatch_notifications,
)


class FlakyQueue:
    def __init__(self, failing_user):
        self.failing_user = failing_user
        self.delivered = []

    def queue_notification(self, request, *, bypass_quiet_hours=False):
        if request.user_id == self.failing_user:
            raise ConnectionError("queue unavailable")
        self.delivered.append((request.user_id, bypass_quiet_hours))


def _request(user_id, *, bypass=False):
    return NotificationRequest(
        user_id=user_id,
        category="support",
        priority="urgent" if bypass else "medium",
        type="support_case_escalated",
        title="Conversation escalated to support",
        bypass_quiet_hours=bypass,
    )


def test_one_failing_recipient_does_not_block_others():
    good, bad = uuid.uuid4(), uuid.uuid4()
    queue = FlakyQueue(failing_user=bad)

    queued = dispatch_notifications(queue, [_request(bad), _request(good, bypass=True)])

    assert queued == 1
    assert queue.delivered == [(good, True)]


def test_logging_queue_accepts_requests(caplog):
    caplog.set_level("INFO")
    assert dispatch_notifications(LoggingNotificationQueue(), [_request(uuid.uuid4())]) == 1
    assert "[DRY RUN]" in caplog.text
