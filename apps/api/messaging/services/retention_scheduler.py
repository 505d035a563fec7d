"""Recurring retention worker.

The scheduler is a constructed object owned by whoever composes the process
(see ``messaging.worker_service``). Overlap protection is the ``running``
flag: a tick that finds a previous cycle still running logs a warning and
does nothing.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
from datetime import datetime
from typing import Any, Callable

import anyio

from messaging.core.structured_logging import build_log_context
from messaging.db.models._common import utcnow
from messaging.services.fanout import MessagingHub
from messaging.services.retention_service import (
    archive_expired_audits,
    new_run_id,
    purge_archived_audits,
    purge_expired_messages,
)

logger = logging.getLogger(__name__)


class RetentionScheduler:
    def __init__(
        self,
        hub: MessagingHub,
        *,
        interval_seconds: int | None = None,
        batch_size: int | None = None,
        max_threads: int | None = None,
        audit_grace_days: int | None = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        settings = hub.settings
        self.hub = hub
        self.interval_seconds = interval_seconds or settings.RETENTION_INTERVAL_SECONDS
        self.batch_size = batch_size or settings.RETENTION_BATCH_SIZE
        self.max_threads = max_threads or settings.RETENTION_MAX_THREADS
        self.audit_grace_days = audit_grace_days or settings.RETENTION_AUDIT_GRACE_DAYS
        self._clock = clock
        self._task: asyncio.Task | None = None
        self.running = False
        self.started_at: datetime | None = None
        self.last_run: dict[str, Any] | None = None
        self.runs = 0
        self.skipped = 0

    # -------------------------------------------------------------------------
    # Lifecycle
    # -------------------------------------------------------------------------

    def start(self) -> str:
        """Begin the periodic loop on the running event loop. Idempotent."""
        if self._task is not None and not self._task.done():
            return "already_started"
        self.started_at = self._clock()
        self._task = asyncio.create_task(self._loop())
        logger.info("Retention scheduler started (interval=%ss)", self.interval_seconds)
        return "started"

    async def stop(self) -> str:
        if self._task is None or self._task.done():
            self._task = None
            return "not_running"
        self._task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await self._task
        self._task = None
        logger.info("Retention scheduler stopped")
        return "stopped"

    @property
    def is_started(self) -> bool:
        return self._task is not None and not self._task.done()

    def status(self) -> dict[str, Any]:
        return {
            "started": self.is_started,
            "running": self.running,
            "interval_seconds": self.interval_seconds,
            "started_at": self.started_at.isoformat() if self.started_at else None,
            "runs": self.runs,
            "skipped": self.skipped,
            "last_run": self.last_run,
        }

    async def _loop(self) -> None:
        while True:
            await self.tick()
            await asyncio.sleep(self.interval_seconds)

    # -------------------------------------------------------------------------
    # Cycle
    # -------------------------------------------------------------------------

    async def tick(self) -> dict[str, Any] | None:
        """Run one cycle unless the previous one is still running."""
        if self.running:
            self.skipped += 1
            logger.warning("Retention cycle still running; skipping this tick")
            return None

        self.running = True
        run_id = new_run_id()
        started = self._clock()
        summary: dict[str, Any] = {"run_id": run_id, "started_at": started.isoformat()}
        try:
            try:
                result = await anyio.to_thread.run_sync(self._run_purge, run_id, started)
                summary["purge"] = {"ok": True, **result.to_dict()}
            except Exception as exc:
                logger.exception(
                    "Retention purge cycle failed",
                    extra=build_log_context(run_id=run_id, operation="retention_purge"),
                )
                summary["purge"] = {"ok": False, "error": str(exc)}

            summary["archive"] = await self._housekeeping("archive_expired_audits", self._archive, started)
            summary["purge_archived"] = await self._housekeeping(
                "purge_archived_audits", self._purge_archived, started
            )
            summary["finished_at"] = self._clock().isoformat()
            self.runs += 1
            self.last_run = summary
            return summary
        finally:
            self.running = False

    async def _housekeeping(self, name: str, fn: Callable[[datetime], int], now: datetime) -> dict[str, Any]:
        try:
            count = await anyio.to_thread.run_sync(fn, now)
            return {"ok": True, "count": count}
        except Exception as exc:
            logger.exception("Retention housekeeping %s failed", name)
            return {"ok": False, "error": str(exc)}

    def _run_purge(self, run_id: str, now: datetime):
        with self.hub.session_factory() as db:
            return purge_expired_messages(
                db,
                self.hub,
                batch_size=self.batch_size,
                max_threads=self.max_threads,
                run_id=run_id,
                now=now,
            )

    def _archive(self, now: datetime) -> int:
        with self.hub.session_factory() as db:
            return archive_expired_audits(db, now)

    def _purge_archived(self, now: datetime) -> int:
        with self.hub.session_factory() as db:
            return purge_archived_audits(db, now, self.audit_grace_days)
