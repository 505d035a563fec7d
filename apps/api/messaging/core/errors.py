"""Messaging engine error taxonomy.

Every caller-visible failure is one of four kinds. ``status_code`` is a hint
for whatever transport maps these errors onto responses.
"""

from __future__ import annotations


class MessagingError(Exception):
    """Base exception for messaging engine errors."""

    code = "messaging_error"
    status_code = 500

    def __init__(self, message: str, *, details: dict | None = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_dict(self) -> dict:
        payload = {"code": self.code, "message": self.message}
        if self.details:
            payload["details"] = self.details
        return payload


class ValidationError(MessagingError):
    """Malformed or out-of-range input."""

    code = "validation_error"
    status_code = 422


class NotFoundError(MessagingError):
    """Thread, support case, label, or user does not exist."""

    code = "not_found"
    status_code = 404


class AuthorizationError(MessagingError):
    """Caller is not a participant, or the thread is locked."""

    code = "forbidden"
    status_code = 403


class ApplicationError(MessagingError):
    """Unexpected persistence failure. Wraps the underlying cause."""

    code = "application_error"
    status_code = 500

    def __init__(self, message: str, *, cause: BaseException | None = None, details: dict | None = None):
        super().__init__(message, details=details)
        self.cause = cause
        if cause is not None:
            self.__cause__ = cause
