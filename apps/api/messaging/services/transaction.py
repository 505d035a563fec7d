"""Write-transaction boundary shared by the mutating services."""

from __future__ import annotations

import logging
from contextlib import contextmanager
from typing import Iterator

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from messaging.core.errors import ApplicationError, MessagingError
from messaging.core.structured_logging import build_log_context

logger = logging.getLogger(__name__)


@contextmanager
def write_transaction(db: Session, operation: str, **context) -> Iterator[Session]:
    """
    Commit on success, roll back on any failure.

    Domain errors propagate unchanged. Database errors are wrapped in
    ApplicationError so callers see one error kind for persistence failures.
    """
    try:
        yield db
        db.commit()
    except MessagingError:
        db.rollback()
        raise
    except SQLAlchemyError as exc:
        db.rollback()
        logger.exception(
            "%s failed at the database layer",
            operation,
            extra=build_log_context(operation=operation, **context),
        )
        raise ApplicationError(f"{operation} failed", cause=exc) from exc
    except BaseException:
        db.rollback()
        raise
