"""Structured logging helpers (PII-safe)."""

import logging
from typing import Any
from uuid import UUID

LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"
LOG_DATE_FORMAT = "%Y-%m-%d %H:%M:%S"


def build_log_context(
    *,
    thread_id: UUID | str | None = None,
    user_id: UUID | str | None = None,
    message_id: UUID | str | None = None,
    case_id: UUID | str | None = None,
    run_id: str | None = None,
    operation: str | None = None,
) -> dict[str, Any]:
    """Return a PII-safe log context dict (identifiers only, never bodies)."""
    context: dict[str, Any] = {}
    if thread_id:
        context["thread_id"] = str(thread_id)
    if user_id:
        context["user_id"] = str(user_id)
    if message_id:
        context["message_id"] = str(message_id)
    if case_id:
        context["case_id"] = str(case_id)
    if run_id:
        context["run_id"] = run_id
    if operation:
        context["operation"] = operation
    return context


def configure_logging(level: int = logging.INFO) -> None:
    """Process-level logging setup for entry points (worker service, CLI)."""
    logging.basicConfig(level=level, format=LOG_FORMAT, datefmt=LOG_DATE_FORMAT)
