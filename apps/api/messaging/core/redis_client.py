"""Shared Redis client for the read cache and realtime event forwarding.

``REDIS_URL`` unset or ``memory://`` disables Redis; callers fall back to
in-process implementations.
"""

from __future__ import annotations

import os
import threading

REDIS_DISABLED_URL = "memory://"
DEFAULT_REDIS_MAX_CONNECTIONS = 20
DEFAULT_REDIS_CONNECT_TIMEOUT_SECONDS = 2.0
DEFAULT_REDIS_SOCKET_TIMEOUT_SECONDS = 2.0
DEFAULT_REDIS_HEALTH_CHECK_SECONDS = 30

_client = None
_client_lock = threading.Lock()


def get_redis_url() -> str | None:
    url = os.getenv("REDIS_URL")
    if not url or url.strip().lower() == REDIS_DISABLED_URL:
        return None
    return url.strip()


def redis_max_connections() -> int:
    value = os.getenv("REDIS_MAX_CONNECTIONS", "").strip()
    if value.isdigit() and int(value) > 0:
        return int(value)
    return DEFAULT_REDIS_MAX_CONNECTIONS


def build_redis_client(url: str, *, max_connections: int):
    """Create a pooled client. Values are returned as ``str``."""
    import redis

    pool = redis.ConnectionPool.from_url(
        url,
        max_connections=max_connections,
        socket_connect_timeout=DEFAULT_REDIS_CONNECT_TIMEOUT_SECONDS,
        socket_timeout=DEFAULT_REDIS_SOCKET_TIMEOUT_SECONDS,
        health_check_interval=DEFAULT_REDIS_HEALTH_CHECK_SECONDS,
        retry_on_timeout=True,
        decode_responses=True,
    )
    return redis.Redis(connection_pool=pool)


def get_redis_client():
    """Return the process-wide pooled client, or None when Redis is disabled."""
    url = get_redis_url()
    if not url:
        return None

    global _client
    with _client_lock:
        if _client is None:
            _client = build_redis_client(url, max_connections=redis_max_connections())
        return _client


def reset_redis_client() -> None:
    """Drop the cached client (tests, or after REDIS_URL changes)."""
    global _client
    with _client_lock:
        _client = None
