"""Auto-reply scheduling.

The reply content comes from a pluggable responder; this module only owns
the contract around it: enqueueing never blocks the caller, each message id
is handled at most once, failures are logged, and every generated reply is
marked ``autoReply`` so it cannot trigger another round.
"""

from __future__ import annotations

import logging
import threading
from collections import OrderedDict
from dataclasses import dataclass
from typing import TYPE_CHECKING, Callable, Iterable
from uuid import UUID

from sqlalchemy import select

from messaging.core.errors import MessagingError
from messaging.core.structured_logging import build_log_context
from messaging.db.enums import ChannelType
from messaging.db.models import Message, MessageThread
from messaging.services import access_service
from messaging.services.message_service import append_message

if TYPE_CHECKING:
    from messaging.services.fanout import MessagingHub

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class AutoReplyContext:
    thread_id: UUID
    message_id: UUID
    sender_id: UUID | None
    body: str
    channel_type: ChannelType
    participant_ids: list[UUID]


@dataclass(frozen=True)
class AutoReplyDraft:
    """A reply to post as ``sender_id`` (who must be a participant)."""

    sender_id: UUID
    body: str


Responder = Callable[[AutoReplyContext], Iterable[AutoReplyDraft]]


class AutoReplyDispatcher:
    def __init__(self, responder: Responder | None = None, *, max_tracked: int = 5000):
        self.responder = responder
        self._max_tracked = max_tracked
        self._seen: OrderedDict[UUID, None] = OrderedDict()
        self._lock = threading.Lock()

    def _claim(self, message_id: UUID) -> bool:
        with self._lock:
            if message_id in self._seen:
                return False
            self._seen[message_id] = None
            while len(self._seen) > self._max_tracked:
                self._seen.popitem(last=False)
            return True

    def enqueue_auto_replies(
        self,
        hub: "MessagingHub",
        *,
        thread_id: UUID,
        message_id: UUID,
        sender_id: UUID | None,
    ) -> bool:
        """Schedule reply generation. Returns False when skipped or already handled."""
        if self.responder is None:
            return False
        if not self._claim(message_id):
            logger.debug("Auto-reply already scheduled for message %s", message_id)
            return False
        future = hub.background.submit(
            "auto_reply",
            self._generate,
            hub,
            thread_id,
            message_id,
            sender_id,
        )
        return future is not None

    def _generate(self, hub: "MessagingHub", thread_id: UUID, message_id: UUID, sender_id: UUID | None) -> int:
        log_context = build_log_context(thread_id=thread_id, message_id=message_id, operation="auto_reply")
        posted = 0
        with hub.session_factory() as db:
            message = db.execute(select(Message).where(Message.id == message_id)).scalar_one_or_none()
            thread = db.get(MessageThread, thread_id)
            if message is None or thread is None or message.deleted_at is not None:
                return 0
            context = AutoReplyContext(
                thread_id=thread_id,
                message_id=message_id,
                sender_id=sender_id,
                body=message.body or "",
                channel_type=thread.channel_type,
                participant_ids=access_service.participant_user_ids(db, thread_id),
            )
            db.rollback()

            try:
                drafts = list(self.responder(context) or [])
            except Exception:
                logger.exception("Auto-reply responder failed", extra=log_context)
                return 0

            for draft in drafts:
                if not draft.body or not draft.body.strip() or draft.sender_id == sender_id:
                    continue
                try:
                    append_message(
                        db,
                        hub,
                        thread_id,
                        draft.sender_id,
                        {
                            "message_type": "text",
                            "body": draft.body,
                            "metadata": {"autoReply": True, "replyToId": str(message_id)},
                        },
                    )
                    posted += 1
                except MessagingError as exc:
                    logger.warning("Auto-reply not posted: %s", exc.message, extra=log_context)
        return posted
