"""Read-through TTL cache used by the messaging read side.

The cache is a non-authoritative shadow of the database. Entries expire after
their TTL even when an invalidation is missed, and backend failures degrade
to cache misses instead of surfacing to callers.
"""

from __future__ import annotations

import copy
import hashlib
import json
import logging
import threading
import time
from typing import Any, Callable, Protocol

logger = logging.getLogger(__name__)

MISSING = object()


def fingerprint(params: dict[str, Any]) -> str:
    payload = json.dumps(params, sort_keys=True, default=str)
    return hashlib.sha256(payload.encode()).hexdigest()


def build_cache_key(namespace: str, params: dict[str, Any] | None = None) -> str:
    """Deterministic key: ``<namespace>:<sha256 of the params>``."""
    return f"{namespace}:{fingerprint(params or {})}"


class CacheBackend(Protocol):
    def get(self, key: str) -> Any: ...

    def set(self, key: str, value: Any, ttl_seconds: int) -> None: ...

    def delete(self, key: str) -> None: ...

    def delete_prefix(self, prefix: str) -> int: ...


class MemoryCacheBackend:
    """In-process backend for dev/tests and single-process deployments.

    Expired entries are swept on write at most once per ``sweep_interval``
    seconds, and the oldest writes are evicted beyond ``max_entries``.
    """

    def __init__(
        self,
        clock: Callable[[], float] = time.monotonic,
        *,
        max_entries: int = 10_000,
        sweep_interval: float = 60.0,
    ):
        self._entries: dict[str, tuple[float, Any]] = {}
        self._lock = threading.Lock()
        self._clock = clock
        self._max_entries = max_entries
        self._sweep_interval = sweep_interval
        self._next_sweep = clock() + sweep_interval

    def get(self, key: str) -> Any:
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return MISSING
            expires_at, value = entry
            if expires_at <= self._clock():
                del self._entries[key]
                return MISSING
            return copy.deepcopy(value)

    def set(self, key: str, value: Any, ttl_seconds: int) -> None:
        with self._lock:
            now = self._clock()
            if now >= self._next_sweep:
                self._sweep(now)
            self._entries.pop(key, None)
            self._entries[key] = (now + ttl_seconds, copy.deepcopy(value))
            while len(self._entries) > self._max_entries:
                del self._entries[next(iter(self._entries))]

    def _sweep(self, now: float) -> None:
        expired = [key for key, (expires_at, _) in self._entries.items() if expires_at <= now]
        for key in expired:
            del self._entries[key]
        self._next_sweep = now + self._sweep_interval

    def delete(self, key: str) -> None:
        with self._lock:
            self._entries.pop(key, None)

    def delete_prefix(self, prefix: str) -> int:
        with self._lock:
            doomed = [key for key in self._entries if key.startswith(prefix)]
            for key in doomed:
                del self._entries[key]
            return len(doomed)

    def __len__(self) -> int:
        return len(self._entries)


class RedisCacheBackend:
    """Redis backend. Values are stored as JSON strings."""

    SCAN_BATCH = 500

    def __init__(self, client):
        self._client = client

    def get(self, key: str) -> Any:
        raw = self._client.get(key)
        if raw is None:
            return MISSING
        return json.loads(raw)

    def set(self, key: str, value: Any, ttl_seconds: int) -> None:
        self._client.setex(key, ttl_seconds, json.dumps(value, default=str))

    def delete(self, key: str) -> None:
        self._client.delete(key)

    def delete_prefix(self, prefix: str) -> int:
        removed = 0
        batch: list[str] = []
        for key in self._client.scan_iter(match=f"{prefix}*", count=self.SCAN_BATCH):
            batch.append(key)
            if len(batch) >= self.SCAN_BATCH:
                removed += self._client.delete(*batch)
                batch = []
        if batch:
            removed += self._client.delete(*batch)
        return removed


class AppCache:
    """Cache facade: compute-and-cache on miss, delete, flush by prefix."""

    def __init__(self, backend: CacheBackend):
        self.backend = backend

    def get(self, key: str) -> Any:
        try:
            return self.backend.get(key)
        except Exception:
            logger.warning("Cache read failed for key=%s", key, exc_info=True)
            return MISSING

    def set(self, key: str, value: Any, ttl_seconds: int) -> None:
        if ttl_seconds <= 0:
            return
        try:
            self.backend.set(key, value, ttl_seconds)
        except Exception:
            logger.warning("Cache write failed for key=%s", key, exc_info=True)

    def remember(self, key: str, ttl_seconds: int, producer: Callable[[], Any]) -> Any:
        cached = self.get(key)
        if cached is not MISSING:
            return cached
        value = producer()
        self.set(key, value, ttl_seconds)
        return value

    def delete(self, key: str) -> None:
        try:
            self.backend.delete(key)
        except Exception:
            logger.warning("Cache delete failed for key=%s", key, exc_info=True)

    def flush_by_prefix(self, prefix: str) -> int:
        try:
            return self.backend.delete_prefix(prefix)
        except Exception:
            logger.warning("Cache flush failed for prefix=%s", prefix, exc_info=True)
            return 0


def build_app_cache() -> AppCache:
    """Redis-backed cache when REDIS_URL is configured, in-memory otherwise."""
    from messaging.core.redis_client import get_redis_client

    client = get_redis_client()
    if client is None:
        return AppCache(MemoryCacheBackend())
    return AppCache(RedisCacheBackend(client))
