"""Tests for thread lifecycle, inbox reads, read state, and labels."""

import uuid
from datetime import datetime, timedelta

import pytest
from sqlalchemy import delete, select

from messaging.core.errors import AuthorizationError, NotFoundError, ValidationError
from messaging.db.enums import ChannelType, ParticipantRole, ThreadState
from messaging.db.models import MessageReadReceipt
from messaging.db.models._common import utcnow
from messaging.services import label_service, thread_service
from messaging.services.message_service import append_message


# =============================================================================
# Creation
# =============================================================================


def test_create_direct_thread(db, hub, alice, bob):
    thread = thread_service.create_thread(
        db,
        hub,
        alice.id,
        channel_type="direct",
        participant_ids=[bob.id, alice.id, bob.id],
        subject="  Kickoff  ",
        metadata={"topic": "kickoff", "source": "web"},
    )

    assert thread.subject == "Kickoff"
    assert thread.state == ThreadState.ACTIVE
    assert thread.retention_policy == "standard"
    assert thread.retention_days == 730
    assert thread.meta == {"topic": "kickoff", "source": "web"}

    roles = {p.user_id: p.role for p in thread.participants}
    assert roles == {alice.id: ParticipantRole.OWNER, bob.id: ParticipantRole.PARTICIPANT}


def test_direct_thread_needs_another_participant(db, hub, alice):
    with pytest.raises(ValidationError):
        thread_service.create_thread(db, hub, alice.id, channel_type="direct", participant_ids=[alice.id])


def test_malformed_thread_metadata_is_rejected(db, hub, alice, bob):
    with pytest.raises(ValidationError):
        thread_service.create_thread(
            db,
            hub,
            alice.id,
            channel_type="direct",
            participant_ids=[bob.id],
            metadata={"projectId": "not-a-uuid"},
        )


def test_unknown_channel_is_rejected(db, hub, alice, bob):
    with pytest.raises(ValidationError):
        thread_service.create_thread(db, hub, alice.id, channel_type="email", participant_ids=[bob.id])


def test_inactive_participant_is_not_found(db, hub, alice, make_user):
    ghost = make_user("Ghost", active=False)
    with pytest.raises(NotFoundError) as exc_info:
        thread_service.create_thread(db, hub, alice.id, channel_type="direct", participant_ids=[ghost.id])
    assert exc_info.value.details["user_ids"] == [str(ghost.id)]


@pytest.mark.parametrize("requested, expected", [(5, 30), (90, 90), (99999, 3650)])
def test_explicit_retention_is_clamped(db, hub, alice, requested, expected):
    thread = thread_service.create_thread(
        db, hub, alice.id, channel_type=ChannelType.PROJECT, retention_days=requested
    )
    assert thread.retention_days == expected
    assert thread.retention_policy == "project_record"


# =============================================================================
# Read state
# =============================================================================


def test_unread_round_trip(db, hub, direct_thread, alice, bob):
    append_message(db, hub, direct_thread.id, alice.id, {"body": "one"})
    append_message(db, hub, direct_thread.id, alice.id, {"body": "two"})
    hub.background.wait_idle()

    inbox = thread_service.list_threads(db, hub, bob.id)
    assert inbox["items"][0]["unread_count"] == 2
    assert inbox["items"][0]["is_unread"] is True

    sender_inbox = thread_service.list_threads(db, hub, alice.id)
    assert sender_inbox["items"][0]["unread_count"] == 0

    result = thread_service.mark_thread_read(db, hub, direct_thread.id, bob.id)
    hub.background.wait_idle()
    assert result["receipts_created"] == 2

    inbox = thread_service.list_threads(db, hub, bob.id)
    assert inbox["items"][0]["unread_count"] == 0
    assert inbox["items"][0]["is_unread"] is False

    again = thread_service.mark_thread_read(db, hub, direct_thread.id, bob.id)
    assert again["receipts_created"] == 0

    append_message(db, hub, direct_thread.id, alice.id, {"body": "three"})
    hub.background.wait_idle()
    detail = thread_service.get_thread(db, hub, direct_thread.id, bob.id)
    assert detail["unread_count"] == 1


def test_mark_read_requires_participation(db, hub, direct_thread, make_user):
    with pytest.raises(AuthorizationError):
        thread_service.mark_thread_read(db, hub, direct_thread.id, make_user("Mallory").id)


def test_mark_read_only_receipts_messages_after_the_read_mark(db, hub, direct_thread, alice, bob):
    append_message(db, hub, direct_thread.id, alice.id, {"body": "one"})
    append_message(db, hub, direct_thread.id, alice.id, {"body": "two"})
    thread_service.mark_thread_read(db, hub, direct_thread.id, bob.id)

    db.execute(delete(MessageReadReceipt).where(MessageReadReceipt.user_id == bob.id))
    db.commit()

    latest = append_message(db, hub, direct_thread.id, alice.id, {"body": "three"})
    result = thread_service.mark_thread_read(db, hub, direct_thread.id, bob.id)
    hub.background.wait_idle()

    assert result["receipts_created"] == 1
    receipted = db.execute(
        select(MessageReadReceipt.message_id).where(MessageReadReceipt.user_id == bob.id)
    ).scalars().all()
    assert receipted == [latest.id]


# =============================================================================
# Inbox and detail
# =============================================================================


def test_inbox_orders_by_latest_activity(db, hub, make_thread, alice, bob, make_user):
    carol = make_user("Carol")
    quiet = make_thread(alice, carol, subject="quiet")
    older = make_thread(alice, bob, subject="older")
    newer = make_thread(alice, bob, channel_type=ChannelType.GROUP, subject="newer")

    append_message(db, hub, older.id, bob.id, {"body": "first"})
    append_message(db, hub, newer.id, bob.id, {"body": "second"})
    hub.background.wait_idle()

    inbox = thread_service.list_threads(db, hub, alice.id)
    assert [item["subject"] for item in inbox["items"]] == ["newer", "older", "quiet"]
    assert inbox["total"] == 3
    assert inbox["pages"] == 1

    groups = thread_service.list_threads(db, hub, alice.id, channel_type="group")
    assert [item["id"] for item in groups["items"]] == [str(newer.id)]

    bob_inbox = thread_service.list_threads(db, hub, bob.id)
    assert str(quiet.id) not in {item["id"] for item in bob_inbox["items"]}


def test_inbox_pagination(db, hub, make_thread, alice, bob):
    for i in range(3):
        make_thread(alice, bob, subject=f"t{i}")

    page = thread_service.list_threads(db, hub, alice.id, page=2, per_page=2)
    assert page["total"] == 3
    assert page["pages"] == 2
    assert len(page["items"]) == 1

    with pytest.raises(ValidationError):
        thread_service.list_threads(db, hub, alice.id, per_page=101)


def test_thread_detail_contents(db, hub, direct_thread, alice, bob):
    for i in range(3):
        append_message(db, hub, direct_thread.id, alice.id, {"body": f"m{i}"})

    detail = thread_service.get_thread(db, hub, direct_thread.id, bob.id, message_limit=2)

    assert detail["subject"] == "Project kickoff"
    assert [m["body"] for m in detail["messages"]] == ["m1", "m2"]
    assert {p["user_id"] for p in detail["participants"]} == {str(alice.id), str(bob.id)}
    assert detail["support_case"] is None
    assert detail["labels"] == []


def test_detail_is_only_for_participants(db, hub, direct_thread, alice, make_user):
    thread_service.get_thread(db, hub, direct_thread.id, alice.id)
    with pytest.raises(AuthorizationError):
        thread_service.get_thread(db, hub, direct_thread.id, make_user("Mallory").id)

    with pytest.raises(NotFoundError):
        thread_service.get_thread(db, hub, uuid.uuid4(), alice.id)


def test_list_messages_is_chronological(db, hub, direct_thread, alice, bob):
    for i in range(3):
        append_message(db, hub, direct_thread.id, (alice.id, bob.id)[i % 2], {"body": f"m{i}"})

    page = thread_service.list_messages(db, hub, direct_thread.id, alice.id, per_page=2)
    assert [m["body"] for m in page["items"]] == ["m0", "m1"]
    assert page["pages"] == 2


# =============================================================================
# Participants and state
# =============================================================================


def test_add_participant_is_idempotent(db, hub, direct_thread, alice, make_user):
    carol = make_user("Carol")
    first = thread_service.add_participant(db, hub, direct_thread.id, alice.id, carol.id)
    second = thread_service.add_participant(db, hub, direct_thread.id, alice.id, carol.id, role="support")

    assert first.id == second.id
    assert second.role == ParticipantRole.PARTICIPANT


def test_owner_removes_but_others_only_leave(db, hub, direct_thread, alice, bob, make_user):
    carol = make_user("Carol")
    thread_service.add_participant(db, hub, direct_thread.id, alice.id, carol.id)

    with pytest.raises(AuthorizationError):
        thread_service.remove_participant(db, hub, direct_thread.id, bob.id, carol.id)

    thread_service.remove_participant(db, hub, direct_thread.id, alice.id, carol.id)
    thread_service.remove_participant(db, hub, direct_thread.id, bob.id, bob.id)

    with pytest.raises(AuthorizationError):
        append_message(db, hub, direct_thread.id, bob.id, {"body": "still here?"})

    with pytest.raises(NotFoundError):
        thread_service.remove_participant(db, hub, direct_thread.id, alice.id, carol.id)


def test_thread_state_changes(db, hub, direct_thread, alice, bob):
    thread_service.update_thread_state(db, hub, direct_thread.id, alice.id, "archived")
    archived = thread_service.list_threads(db, hub, bob.id, state="archived")
    assert [item["id"] for item in archived["items"]] == [str(direct_thread.id)]

    with pytest.raises(ValidationError):
        thread_service.update_thread_state(db, hub, direct_thread.id, alice.id, "deleted")


def test_mute_and_unmute(db, hub, direct_thread, bob):
    until = utcnow() + timedelta(hours=8)
    view = thread_service.mute_thread(db, hub, direct_thread.id, bob.id, until=until)
    assert datetime.fromisoformat(view["muted_until"].replace("Z", "+00:00")) == until

    view = thread_service.mute_thread(db, hub, direct_thread.id, bob.id, until=None)
    assert view["muted_until"] is None


# =============================================================================
# Labels
# =============================================================================


def test_generate_slug():
    assert label_service.generate_slug("  Billing & Payments ") == "billing-payments"
    assert label_service.generate_slug("needs_follow up") == "needs-follow-up"


def test_label_lifecycle(db, hub, direct_thread, alice, bob):
    billing = label_service.create_label(db, alice.id, "Billing", color="#ff0000")
    urgent = label_service.create_label(db, alice.id, "Urgent")

    with pytest.raises(ValidationError):
        label_service.create_label(db, bob.id, "billing")

    applied = label_service.set_thread_labels(db, hub, direct_thread.id, alice.id, [urgent.id, billing.id])
    assert [label["name"] for label in applied] == ["Billing", "Urgent"]

    applied = label_service.set_thread_labels(db, hub, direct_thread.id, bob.id, [urgent.id])
    hub.background.wait_idle()
    assert [label["slug"] for label in applied] == ["urgent"]
    detail = thread_service.get_thread(db, hub, direct_thread.id, alice.id)
    assert [label["name"] for label in detail["labels"]] == ["Urgent"]

    label_service.delete_label(db, hub, urgent.id)
    hub.background.wait_idle()
    detail = thread_service.get_thread(db, hub, direct_thread.id, alice.id)
    assert detail["labels"] == []
    assert [label["name"] for label in label_service.list_labels(db)] == ["Billing"]


def test_unknown_labels_are_reported(db, hub, direct_thread, alice):
    missing = uuid.uuid4()
    with pytest.raises(NotFoundError) as exc_info:
        label_service.set_thread_labels(db, hub, direct_thread.id, alice.id, [missing])
    assert exc_info.value.details["label_ids"] == [str(missing)]

    with pytest.raises(NotFoundError):
        label_service.delete_label(db, hub, missing)
