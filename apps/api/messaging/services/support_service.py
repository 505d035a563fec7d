"""Support case state machine.

Escalate, assign, and status updates share one guarded-transition primitive:
lock the thread then the case, run the transition, append the narrative
system message, commit, and hand the artifacts to post-commit fan-out.

Statuses: triage -> in_progress -> waiting_on_customer -> resolved | closed.
waiting_on_customer is reachable from anywhere and clears resolution fields.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable
from uuid import UUID

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from messaging.core.cache import build_cache_key
from messaging.core.errors import NotFoundError, ValidationError
from messaging.core.structured_logging import build_log_context
from messaging.db.enums import (
    TERMINAL_SUPPORT_STATUSES,
    ParticipantRole,
    SupportCasePriority,
    SupportCaseStatus,
)
from messaging.db.models import MessageParticipant, MessageThread, SupportCase
from messaging.db.models._common import utcnow
from messaging.schemas.messaging import SupportCaseMetadata
from messaging.schemas.support import SupportOverview
from messaging.services import access_service
from messaging.services.fanout import (
    OVERVIEW_NAMESPACE,
    MessagingHub,
    TransitionArtifacts,
    fan_out_support_transition,
)
from messaging.services.message_service import append_system_message
from messaging.services.notification_facade import NotificationRequest
from messaging.services.transaction import write_transaction
from messaging.services.views import message_payload, serialize_support_case

logger = logging.getLogger(__name__)

NOTIFICATION_CATEGORY = "support"


def parse_priority(value: str | SupportCasePriority) -> SupportCasePriority:
    try:
        return SupportCasePriority(value)
    except ValueError:
        raise ValidationError(
            f"Unsupported support priority: {value}",
            details={"priority": str(value), "allowed": [p.value for p in SupportCasePriority]},
        )


def parse_status(value: str | SupportCaseStatus) -> SupportCaseStatus:
    try:
        return SupportCaseStatus(value)
    except ValueError:
        raise ValidationError(
            f"Unsupported support status: {value}",
            details={"status": str(value), "allowed": [s.value for s in SupportCaseStatus]},
        )


def _clear_resolution(case: SupportCase) -> None:
    case.resolved_at = None
    case.resolved_by = None
    case.resolution_summary = None


# =============================================================================
# Guarded transition
# =============================================================================


@dataclass
class TransitionStep:
    """What a transition function hands back to the primitive."""

    case: SupportCase
    narrative: str
    event: str
    notify: Callable[[SupportCase, list[UUID]], list[NotificationRequest]] | None = None
    extra_metadata: dict[str, Any] = field(default_factory=dict)


Transition = Callable[[Session, MessageThread, "SupportCase | None", datetime], TransitionStep]


def run_guarded_transition(
    db: Session,
    hub: MessagingHub,
    thread_id: UUID,
    actor_id: UUID,
    *,
    operation: str,
    transition: Transition,
) -> SupportCase:
    with write_transaction(db, operation, thread_id=thread_id, user_id=actor_id):
        # Thread first, then case: creation on first escalation is serialized
        # by the thread lock, and the system message advances the thread row.
        thread = access_service.get_thread(db, thread_id, for_update=True)
        case = db.execute(
            select(SupportCase).where(SupportCase.thread_id == thread_id).with_for_update()
        ).scalar_one_or_none()

        now = utcnow()
        step = transition(db, thread, case, now)
        case = step.case
        case.updated_at = now
        case.meta = SupportCaseMetadata.model_validate(
            {**(case.meta or {}), "lastTransition": step.event}
        ).to_storage()
        db.flush()

        system_message = append_system_message(
            db,
            thread,
            step.narrative,
            metadata={"eventName": step.event, "supportCaseId": str(case.id), **step.extra_metadata},
        )
        participant_ids = access_service.participant_user_ids(db, thread_id)
        notifications = step.notify(case, participant_ids) if step.notify else []
        artifacts = TransitionArtifacts(
            thread_id=thread_id,
            case_id=case.id,
            participant_ids=participant_ids,
            system_message=message_payload(system_message),
            notifications=notifications,
        )

    logger.info(
        "Support case %s: %s",
        artifacts.case_id,
        step.event,
        extra=build_log_context(thread_id=thread_id, case_id=artifacts.case_id, operation=operation),
    )
    hub.run_after_commit(f"support:{operation}", fan_out_support_transition, hub, artifacts)
    return case


# =============================================================================
# Transitions
# =============================================================================


def escalate_thread_to_support(
    db: Session,
    hub: MessagingHub,
    thread_id: UUID,
    actor_id: UUID,
    *,
    reason: str,
    priority: str | SupportCasePriority = SupportCasePriority.MEDIUM,
    metadata: dict | None = None,
) -> SupportCase:
    """
    Open a support case in triage, or reset the existing one.

    Re-escalation overwrites priority, reason, and escalation actor/time,
    returns the case to triage, and clears resolution fields.
    """
    reason = (reason or "").strip()
    if not reason:
        raise ValidationError("Escalation reason is required")
    level = parse_priority(priority)
    roster = hub.settings.support_notification_user_ids

    def transition(db: Session, thread: MessageThread, case: SupportCase | None, now: datetime) -> TransitionStep:
        access_service.ensure_participant(db, thread.id, actor_id, for_update=True)
        reescalated = case is not None
        if case is None:
            case = SupportCase(
                thread_id=thread.id,
                status=SupportCaseStatus.TRIAGE,
                priority=level,
                reason=reason,
                escalated_by=actor_id,
                escalated_at=now,
                meta=SupportCaseMetadata.model_validate(metadata or {}).to_storage(),
                created_at=now,
            )
            db.add(case)
        else:
            case.priority = level
            case.reason = reason
            case.escalated_by = actor_id
            case.escalated_at = now
            case.status = SupportCaseStatus.TRIAGE
            _clear_resolution(case)
            if metadata:
                case.meta = {**(case.meta or {}), **metadata}
        db.flush()

        def notify(case: SupportCase, participant_ids: list[UUID]) -> list[NotificationRequest]:
            recipients: list[UUID] = []
            for user_id in [*participant_ids, *roster]:
                if user_id != actor_id and user_id not in recipients:
                    recipients.append(user_id)
            return [
                NotificationRequest(
                    user_id=user_id,
                    category=NOTIFICATION_CATEGORY,
                    priority=level.value,
                    type="support_case_escalated",
                    title="Conversation escalated to support",
                    body=reason,
                    payload={
                        "threadId": str(case.thread_id),
                        "supportCaseId": str(case.id),
                        "priority": level.value,
                    },
                    bypass_quiet_hours=level == SupportCasePriority.URGENT,
                )
                for user_id in recipients
            ]

        verb = "re-escalated" if reescalated else "escalated"
        return TransitionStep(
            case=case,
            narrative=f"Conversation {verb} to support ({level.value} priority): {reason}",
            event="support_case_reescalated" if reescalated else "support_case_escalated",
            notify=notify,
            extra_metadata={"priority": level.value},
        )

    return run_guarded_transition(
        db, hub, thread_id, actor_id, operation="escalate_thread_to_support", transition=transition
    )


def assign_support_agent(
    db: Session,
    hub: MessagingHub,
    thread_id: UUID,
    actor_id: UUID,
    agent_id: UUID,
    *,
    notify_agent: bool = True,
) -> SupportCase:
    """Assign an agent; the first assignment stamps first_response_at and leaves triage."""

    def transition(db: Session, thread: MessageThread, case: SupportCase | None, now: datetime) -> TransitionStep:
        if case is None:
            raise NotFoundError("Support case not found", details={"thread_id": str(thread.id)})
        access_service.ensure_participant_or_support_agent(db, thread.id, actor_id, for_update=True)
        agent = access_service.get_active_user(db, agent_id)

        case.assigned_to = agent.id
        case.assigned_by = actor_id
        case.assigned_at = now
        if case.first_response_at is None:
            case.first_response_at = now
        if case.status == SupportCaseStatus.TRIAGE:
            case.status = SupportCaseStatus.IN_PROGRESS

        if access_service.find_participant(db, thread.id, agent.id) is None:
            db.add(MessageParticipant(thread_id=thread.id, user_id=agent.id, role=ParticipantRole.SUPPORT))
        db.flush()

        def notify(case: SupportCase, participant_ids: list[UUID]) -> list[NotificationRequest]:
            if not notify_agent or agent.id == actor_id:
                return []
            return [
                NotificationRequest(
                    user_id=agent.id,
                    category=NOTIFICATION_CATEGORY,
                    priority=case.priority.value,
                    type="support_case_assigned",
                    title="Support case assigned to you",
                    body=case.reason,
                    payload={"threadId": str(case.thread_id), "supportCaseId": str(case.id)},
                    bypass_quiet_hours=case.priority == SupportCasePriority.URGENT,
                )
            ]

        return TransitionStep(
            case=case,
            narrative=f"Support case assigned to {agent.display_name or agent.email}",
            event="support_case_assigned",
            notify=notify,
            extra_metadata={"assignedTo": str(agent.id)},
        )

    return run_guarded_transition(
        db, hub, thread_id, actor_id, operation="assign_support_agent", transition=transition
    )


def update_support_case_status(
    db: Session,
    hub: MessagingHub,
    thread_id: UUID,
    actor_id: UUID,
    status: str | SupportCaseStatus,
    *,
    resolution_summary: str | None = None,
) -> SupportCase:
    target = parse_status(status)

    def transition(db: Session, thread: MessageThread, case: SupportCase | None, now: datetime) -> TransitionStep:
        if case is None:
            raise NotFoundError("Support case not found", details={"thread_id": str(thread.id)})
        access_service.ensure_participant_or_support_agent(db, thread.id, actor_id, for_update=True)
        previous = case.status

        case.status = target
        if target == SupportCaseStatus.IN_PROGRESS and case.first_response_at is None:
            case.first_response_at = now
        if target in TERMINAL_SUPPORT_STATUSES:
            case.resolved_at = now
            case.resolved_by = actor_id
            if resolution_summary is not None and resolution_summary.strip():
                case.resolution_summary = resolution_summary.strip()[:2000]
        if target == SupportCaseStatus.WAITING_ON_CUSTOMER:
            _clear_resolution(case)
        db.flush()

        narrative = f"Support case status changed from {previous.value} to {target.value}"
        if target in TERMINAL_SUPPORT_STATUSES and case.resolution_summary:
            narrative = f"{narrative}: {case.resolution_summary}"

        def notify(case: SupportCase, participant_ids: list[UUID]) -> list[NotificationRequest]:
            if target not in TERMINAL_SUPPORT_STATUSES:
                return []
            return [
                NotificationRequest(
                    user_id=user_id,
                    category=NOTIFICATION_CATEGORY,
                    priority=case.priority.value,
                    type=f"support_case_{target.value}",
                    title=f"Support case {target.value}",
                    body=case.resolution_summary,
                    payload={
                        "threadId": str(case.thread_id),
                        "supportCaseId": str(case.id),
                        "status": target.value,
                    },
                )
                for user_id in participant_ids
                if user_id != actor_id
            ]

        return TransitionStep(
            case=case,
            narrative=narrative,
            event="support_case_status_changed",
            notify=notify,
            extra_metadata={"fromStatus": previous.value, "toStatus": target.value},
        )

    return run_guarded_transition(
        db, hub, thread_id, actor_id, operation="update_support_case_status", transition=transition
    )


# =============================================================================
# Read side
# =============================================================================


def get_support_case(db: Session, thread_id: UUID, viewer_id: UUID) -> dict[str, Any]:
    access_service.get_thread(db, thread_id)
    access_service.ensure_participant_or_support_agent(db, thread_id, viewer_id)
    case = db.execute(select(SupportCase).where(SupportCase.thread_id == thread_id)).scalar_one_or_none()
    if case is None:
        raise NotFoundError("Support case not found", details={"thread_id": str(thread_id)})
    return serialize_support_case(case).model_dump(mode="json")


def get_support_overview(db: Session, hub: MessagingHub) -> dict[str, Any]:
    """Case counts by status and priority, cached under the overview namespace."""

    def produce() -> dict[str, Any]:
        by_status = {status.value: 0 for status in SupportCaseStatus}
        for status, count in db.execute(
            select(SupportCase.status, func.count(SupportCase.id)).group_by(SupportCase.status)
        ):
            by_status[status.value] = count

        by_priority = {priority.value: 0 for priority in SupportCasePriority}
        for priority, count in db.execute(
            select(SupportCase.priority, func.count(SupportCase.id)).group_by(SupportCase.priority)
        ):
            by_priority[priority.value] = count

        open_statuses = [s for s in SupportCaseStatus if s not in TERMINAL_SUPPORT_STATUSES]
        unassigned = db.execute(
            select(func.count(SupportCase.id)).where(
                SupportCase.assigned_to.is_(None),
                SupportCase.status.in_(open_statuses),
            )
        ).scalar_one()

        total = sum(by_status.values())
        closed = sum(by_status[s.value] for s in TERMINAL_SUPPORT_STATUSES)
        return SupportOverview(
            total=total,
            open=total - closed,
            unassigned=unassigned,
            by_status=by_status,
            by_priority=by_priority,
            generated_at=utcnow(),
        ).model_dump(mode="json")

    key = build_cache_key(OVERVIEW_NAMESPACE, {"view": "support"})
    return hub.cache.remember(key, hub.settings.CACHE_OVERVIEW_TTL_SECONDS, produce)
