"""Thread labels."""

from __future__ import annotations

import re
from typing import Any
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import Session

from messaging.core.errors import NotFoundError, ValidationError
from messaging.db.models import MessageLabel, MessageThreadLabel
from messaging.services import access_service
from messaging.services.fanout import MessagingHub, fan_out_thread_changed
from messaging.services.transaction import write_transaction
from messaging.services.views import serialize_label


def generate_slug(name: str) -> str:
    slug = name.lower().strip()
    slug = re.sub(r"[^a-z0-9\s_-]", "", slug)
    slug = re.sub(r"[\s_]+", "-", slug)
    slug = re.sub(r"-+", "-", slug).strip("-")
    return slug[:96]


def list_labels(db: Session) -> list[dict[str, Any]]:
    labels = db.execute(select(MessageLabel).order_by(MessageLabel.name)).scalars().all()
    return [serialize_label(label).model_dump(mode="json") for label in labels]


def create_label(
    db: Session,
    actor_id: UUID,
    name: str,
    *,
    color: str | None = None,
    description: str | None = None,
) -> MessageLabel:
    name = (name or "").strip()
    if not name:
        raise ValidationError("Label name is required")
    slug = generate_slug(name)
    if not slug:
        raise ValidationError("Label name must contain letters or digits", details={"name": name})

    with write_transaction(db, "create_label", user_id=actor_id):
        existing = db.execute(select(MessageLabel).where(MessageLabel.slug == slug)).scalar_one_or_none()
        if existing is not None:
            raise ValidationError(f"Label '{name}' already exists", details={"slug": slug})
        label = MessageLabel(
            name=name[:80],
            slug=slug,
            color=color,
            description=description.strip() if description else None,
            created_by=actor_id,
        )
        db.add(label)
        db.flush()
    return label


def delete_label(db: Session, hub: MessagingHub, label_id: UUID) -> None:
    with write_transaction(db, "delete_label"):
        label = db.get(MessageLabel, label_id)
        if label is None:
            raise NotFoundError("Label not found", details={"label_id": str(label_id)})
        links = db.execute(
            select(MessageThreadLabel).where(MessageThreadLabel.label_id == label_id)
        ).scalars().all()
        affected = {link.thread_id: access_service.participant_user_ids(db, link.thread_id) for link in links}
        for link in links:
            db.delete(link)
        db.delete(label)
        db.flush()

    for thread_id, participant_ids in affected.items():
        hub.run_after_commit("label_deleted", fan_out_thread_changed, hub, thread_id, participant_ids)


def set_thread_labels(
    db: Session,
    hub: MessagingHub,
    thread_id: UUID,
    actor_id: UUID,
    label_ids: list[UUID],
) -> list[dict[str, Any]]:
    """Replace the thread's label set. Unknown label ids raise NotFoundError."""
    wanted: list[UUID] = []
    for label_id in label_ids or []:
        if label_id not in wanted:
            wanted.append(label_id)

    with write_transaction(db, "set_thread_labels", thread_id=thread_id, user_id=actor_id):
        access_service.get_thread(db, thread_id, for_update=True)
        access_service.ensure_participant(db, thread_id, actor_id, for_update=True)

        labels = []
        if wanted:
            labels = list(
                db.execute(select(MessageLabel).where(MessageLabel.id.in_(wanted))).scalars().all()
            )
        found = {label.id for label in labels}
        missing = [str(label_id) for label_id in wanted if label_id not in found]
        if missing:
            raise NotFoundError("Label not found", details={"label_ids": missing})

        current = {
            link.label_id: link
            for link in db.execute(
                select(MessageThreadLabel).where(MessageThreadLabel.thread_id == thread_id)
            ).scalars()
        }
        for label_id, link in current.items():
            if label_id not in found:
                db.delete(link)
        for label_id in wanted:
            if label_id not in current:
                db.add(MessageThreadLabel(thread_id=thread_id, label_id=label_id, applied_by=actor_id))
        db.flush()
        participant_ids = access_service.participant_user_ids(db, thread_id)
        result = [serialize_label(label).model_dump(mode="json") for label in sorted(labels, key=lambda label: label.name)]

    hub.run_after_commit("thread_labels_set", fan_out_thread_changed, hub, thread_id, participant_ids)
    return result
