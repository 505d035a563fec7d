"""Tests for structured logging helpers."""

import uuid

from messaging.core.structured_logging import build_log_context


def test_build_log_context_includes_only_provided_fields():
    thread_id = uuid.uuid4()
    context = build_log_context(
        thread_id=thread_id,
        user_id="user-1",
        run_id="retention-abc",
        operation="append_message",
    )

    assert context == {
        "thread_id": str(thread_id),
        "user_id": "user-1",
        "run_id": "retention-abc",
        "operation": "append_message",
    }


def test_build_log_context_ignores_empty_fields():
    context = build_log_context(
        user_id="",
        case_id=None,
        message_id="msg-1",
    )

    assert context == {"message_id": "msg-1"}
