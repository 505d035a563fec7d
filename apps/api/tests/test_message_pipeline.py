"""Tests for the message append pipeline."""

import uuid
from datetime import timedelta

import pytest
from sqlalchemy import func, select
from sqlalchemy.exc import OperationalError

from messaging.core.cache import MISSING, build_cache_key
from messaging.core.errors import ApplicationError, AuthorizationError, NotFoundError, ValidationError
from messaging.core.events import EventType
from messaging.db.enums import MessageType, ThreadState
from messaging.db.models import Message, MessageAttachment, MessageParticipant, MessageThread
from messaging.services import message_service, thread_service
from messaging.services.fanout import thread_namespace
from messaging.services.message_service import (
    DEFAULT_ATTACHMENT_MIME_TYPE,
    append_message,
    delete_message,
    edit_message,
)
from messaging.utils.pagination import get_pagination


def _message_count(db, thread_id) -> int:
    return db.execute(select(func.count(Message.id)).where(Message.thread_id == thread_id)).scalar_one()


def _attachment(name="report.pdf", key="uploads/report.pdf", **extra):
    return {"file_name": name, "storage_key": key, **extra}


def test_append_persists_message_and_advances_summary(db, hub, direct_thread, alice):
    message = append_message(db, hub, direct_thread.id, alice.id, {"body": "  Hello Bob  "})

    assert message.body == "Hello Bob"
    assert message.message_type == MessageType.TEXT
    assert message.delivered_at is not None

    thread = db.get(MessageThread, direct_thread.id)
    assert thread.last_message_at == message.created_at
    assert thread.last_message_preview == "Hello Bob"

    sender = db.execute(
        select(MessageParticipant).where(
            MessageParticipant.thread_id == direct_thread.id,
            MessageParticipant.user_id == alice.id,
        )
    ).scalar_one()
    assert sender.last_read_at == message.created_at


def test_preview_is_truncated(db, hub, direct_thread, alice):
    append_message(db, hub, direct_thread.id, alice.id, {"body": "x" * 400})
    thread = db.get(MessageThread, direct_thread.id)
    assert len(thread.last_message_preview) == 280


def test_locked_thread_rejects_append_without_writing(db, hub, direct_thread, alice):
    thread_service.update_thread_state(db, hub, direct_thread.id, alice.id, ThreadState.LOCKED)

    with pytest.raises(AuthorizationError):
        append_message(db, hub, direct_thread.id, alice.id, {"body": "anyone there?"})

    assert _message_count(db, direct_thread.id) == 0


def test_unknown_thread_is_not_found(db, hub, alice):
    with pytest.raises(NotFoundError):
        append_message(db, hub, uuid.uuid4(), alice.id, {"body": "hi"})


def test_non_participant_cannot_append(db, hub, direct_thread, make_user):
    outsider = make_user("Mallory")
    with pytest.raises(AuthorizationError):
        append_message(db, hub, direct_thread.id, outsider.id, {"body": "let me in"})
    assert _message_count(db, direct_thread.id) == 0


def test_unknown_message_type_is_rejected(db, hub, direct_thread, alice):
    with pytest.raises(ValidationError) as exc_info:
        append_message(db, hub, direct_thread.id, alice.id, {"message_type": "video", "body": "x"})
    assert exc_info.value.details["message_type"] == "video"
    assert _message_count(db, direct_thread.id) == 0


def test_too_many_attachments_are_rejected(db, hub, direct_thread, alice):
    attachments = [_attachment(name=f"f{i}.txt", key=f"k{i}") for i in range(6)]
    with pytest.raises(ValidationError):
        append_message(
            db,
            hub,
            direct_thread.id,
            alice.id,
            {"message_type": "file", "attachments": attachments},
        )
    assert _message_count(db, direct_thread.id) == 0


def test_attachment_without_storage_key_reports_index(db, hub, direct_thread, alice):
    attachments = [_attachment(), {"file_name": "second.png"}]
    with pytest.raises(ValidationError) as exc_info:
        append_message(
            db,
            hub,
            direct_thread.id,
            alice.id,
            {"message_type": "file", "attachments": attachments},
        )
    assert exc_info.value.details == {"index": 1}
    assert db.execute(select(func.count(MessageAttachment.id))).scalar_one() == 0


def test_attachment_defaults_and_ordering(db, hub, direct_thread, alice):
    message = append_message(
        db,
        hub,
        direct_thread.id,
        alice.id,
        {
            "message_type": "file",
            "attachments": [
                _attachment(name="a.bin", key="k/a"),
                _attachment(name="b.png", key="k/b", mime_type="image/png", file_size=42),
            ],
        },
    )

    attachments = message.attachments
    assert [a.file_name for a in attachments] == ["a.bin", "b.png"]
    assert attachments[0].mime_type == DEFAULT_ATTACHMENT_MIME_TYPE
    assert attachments[0].file_size == 0
    assert attachments[1].file_size == 42

    thread = db.get(MessageThread, direct_thread.id)
    assert thread.last_message_preview == "[attachment] a.bin"


def test_empty_text_is_stored_without_auto_reply(db, hub, direct_thread, alice):
    calls = []
    hub.auto_replies.responder = lambda context: calls.append(context) or []

    message = append_message(db, hub, direct_thread.id, alice.id, {"body": "   "})
    hub.background.wait_idle()

    assert message.body == ""
    assert calls == []


def test_last_message_at_never_moves_backwards(db, hub, direct_thread, alice):
    future = message_service.utcnow() + timedelta(days=1)
    thread = db.get(MessageThread, direct_thread.id)
    thread.last_message_at = future
    thread.last_message_preview = "from the future"
    db.commit()

    append_message(db, hub, direct_thread.id, alice.id, {"body": "late arrival"})

    db.expire_all()
    thread = db.get(MessageThread, direct_thread.id)
    assert thread.last_message_at == future
    assert thread.last_message_preview == "from the future"


def test_append_publishes_event_after_commit(db, hub, events, direct_thread, alice):
    message = append_message(
        db,
        hub,
        direct_thread.id,
        alice.id,
        {"body": "hi", "metadata": {"clientMessageId": "c-1"}},
    )
    hub.background.wait_idle()

    appended = [e for e in events if e.event_type == EventType.MESSAGE_APPENDED]
    assert len(appended) == 1
    assert appended[0].thread_id == direct_thread.id
    assert appended[0].message["id"] == str(message.id)
    assert appended[0].message["metadata"]["clientMessageId"] == "c-1"


def test_append_invalidates_thread_and_inbox_caches(db, hub, direct_thread, alice, bob):
    thread_service.get_thread(db, hub, direct_thread.id, bob.id)
    before = thread_service.list_threads(db, hub, bob.id)
    assert before["items"][0]["unread_count"] == 0

    append_message(db, hub, direct_thread.id, alice.id, {"body": "ping"})
    hub.background.wait_idle()

    detail = thread_service.get_thread(db, hub, direct_thread.id, bob.id)
    assert [m["body"] for m in detail["messages"]] == ["ping"]
    after = thread_service.list_threads(db, hub, bob.id)
    assert after["items"][0]["unread_count"] == 1


def test_denied_metadata_keys_are_not_exposed(db, hub, direct_thread, alice, bob):
    append_message(
        db,
        hub,
        direct_thread.id,
        alice.id,
        {"body": "hi", "metadata": {"internalNotes": "secret", "topic": "ok"}},
    )
    page = thread_service.list_messages(db, hub, direct_thread.id, bob.id)
    metadata = page["items"][0]["metadata"]
    assert "internalNotes" not in metadata
    assert metadata["topic"] == "ok"


def test_database_failure_rolls_back_and_wraps(db, hub, direct_thread, alice, monkeypatch):
    def broken(db, thread_id):
        raise OperationalError("SELECT 1", {}, Exception("connection reset"))

    monkeypatch.setattr(message_service.access_service, "participant_user_ids", broken)

    with pytest.raises(ApplicationError) as exc_info:
        append_message(db, hub, direct_thread.id, alice.id, {"body": "lost"})

    assert isinstance(exc_info.value.cause, OperationalError)
    assert _message_count(db, direct_thread.id) == 0
    thread = db.get(MessageThread, direct_thread.id)
    assert thread.last_message_at is None


def test_edit_message_marks_edited_and_refreshes_preview(db, hub, direct_thread, alice):
    message = append_message(db, hub, direct_thread.id, alice.id, {"body": "draft"})
    edited = edit_message(db, hub, message.id, alice.id, "final")

    assert edited.body == "final"
    assert edited.is_edited is True
    assert db.get(MessageThread, direct_thread.id).last_message_preview == "final"


def test_only_sender_may_edit(db, hub, direct_thread, alice, bob):
    message = append_message(db, hub, direct_thread.id, alice.id, {"body": "mine"})
    with pytest.raises(AuthorizationError):
        edit_message(db, hub, message.id, bob.id, "yours now")


def test_delete_message_hides_content(db, hub, direct_thread, alice, bob):
    first = append_message(db, hub, direct_thread.id, alice.id, {"body": "keep"})
    second = append_message(db, hub, direct_thread.id, alice.id, {"body": "oops"})

    delete_message(db, hub, second.id, alice.id)
    hub.background.wait_idle()

    thread = db.get(MessageThread, direct_thread.id)
    assert thread.last_message_preview == "keep"
    page = thread_service.list_messages(db, hub, direct_thread.id, bob.id)
    assert [item["id"] for item in page["items"]] == [str(first.id)]

    with pytest.raises(NotFoundError):
        delete_message(db, hub, second.id, alice.id)


def test_cache_entries_expire_only_for_touched_thread(db, hub, make_thread, alice, bob, make_user):
    carol = make_user("Carol")
    first = make_thread(alice, bob)
    second = make_thread(alice, carol)
    thread_service.list_messages(db, hub, first.id, alice.id)
    thread_service.list_messages(db, hub, second.id, alice.id)

    append_message(db, hub, first.id, alice.id, {"body": "only first"})
    hub.background.wait_idle()

    params = {"view": "messages", **get_pagination(None, None).as_dict()}
    assert hub.cache.get(build_cache_key(thread_namespace(first.id), params)) is MISSING
    assert hub.cache.get(build_cache_key(thread_namespace(second.id), params)) is not MISSING
