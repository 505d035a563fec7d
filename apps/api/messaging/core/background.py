"""Bounded background dispatcher for post-commit fan-out.

Contract: ``submit`` never blocks the caller and never raises because of the
submitted work. Failures are logged. When the pending bound is reached new
work is dropped with a warning.
"""

from __future__ import annotations

import logging
import threading
from concurrent.futures import Future, ThreadPoolExecutor, wait
from typing import Any, Callable

logger = logging.getLogger(__name__)


class BackgroundDispatcher:
    def __init__(self, *, max_workers: int = 4, max_pending: int = 1000, name: str = "messaging-fanout"):
        self._executor = ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix=name)
        self._max_pending = max_pending
        self._pending: set[Future] = set()
        self._lock = threading.Lock()
        self._closed = False
        self.dropped = 0
        self.failed = 0

    def submit(self, label: str, fn: Callable[..., Any], *args: Any, **kwargs: Any) -> Future | None:
        with self._lock:
            if self._closed:
                logger.warning("Background dispatcher closed; dropping %s", label)
                self.dropped += 1
                return None
            if len(self._pending) >= self._max_pending:
                logger.warning(
                    "Background queue full (%s pending); dropping %s",
                    len(self._pending),
                    label,
                )
                self.dropped += 1
                return None
            try:
                future = self._executor.submit(self._run, label, fn, args, kwargs)
            except RuntimeError:
                logger.warning("Background executor unavailable; dropping %s", label)
                self.dropped += 1
                return None
            self._pending.add(future)

        future.add_done_callback(self._discard)
        return future

    def _run(self, label: str, fn: Callable[..., Any], args: tuple, kwargs: dict) -> None:
        try:
            fn(*args, **kwargs)
        except Exception:
            with self._lock:
                self.failed += 1
            logger.exception("Background task %s failed", label)

    def _discard(self, future: Future) -> None:
        with self._lock:
            self._pending.discard(future)

    @property
    def pending(self) -> int:
        with self._lock:
            return len(self._pending)

    def wait_idle(self, timeout: float | None = 10.0) -> bool:
        """Block until submitted work (including work it submits) has finished."""
        while True:
            with self._lock:
                snapshot = set(self._pending)
            if not snapshot:
                return True
            done, not_done = wait(snapshot, timeout=timeout)
            if not_done:
                return False

    def shutdown(self, *, wait_for_pending: bool = True) -> None:
        with self._lock:
            self._closed = True
        self._executor.shutdown(wait=wait_for_pending)
