"""Service-layer exception hierarchy.

Services raise these; the API layer registers one handler for
``MbeeError`` and renders ``{"error", "message", "details"}`` with the
status code carried by the exception class.

Usage:
    from mbee.core.exceptions import NotFoundError, ValidationError

    raise NotFoundError("Element not found", details={"ids": ["e1"]})
    raise ValidationError("Invalid element id", details={"id": "a:b"})
"""

from __future__ import annotations

import logging
from typing import Any


class MbeeError(Exception):
    """Base class for errors surfaced to API callers.

    Attributes:
        error: Machine-readable error kind.
        status_code: HTTP status the API layer answers with.
        log_level: Level used when the API layer logs the failure.
        message: Human-readable description.
        details: Optional structured context (offending ids, fields).
    """

    error = "internal_error"
    status_code = 500
    log_level = logging.ERROR

    def __init__(self, message: str, details: dict[str, Any] | None = None) -> None:
        self.message = message
        self.details = details
        super().__init__(message)

    def to_dict(self) -> dict[str, Any]:
        return {"error": self.error, "message": self.message, "details": self.details}


class ValidationError(MbeeError):
    """Malformed id, invalid field, unparseable option."""

    error = "validation_error"
    status_code = 400
    log_level = logging.WARNING


class AuthenticationError(MbeeError):
    """Missing, invalid or expired credentials."""

    error = "authentication_failed"
    status_code = 401
    log_level = logging.WARNING


class PermissionDeniedError(MbeeError):
    """The acting user lacks the role required by the operation.

    Also raised for writes into tag branches and archived scopes.
    """

    error = "permission_denied"
    status_code = 403
    log_level = logging.WARNING


class NotFoundError(MbeeError):
    """A specific single resource lookup missed."""

    error = "not_found"
    status_code = 404
    log_level = logging.WARNING


class ConflictError(MbeeError):
    """Duplicate id or uuid, or path id that does not match the body id."""

    error = "conflict"
    status_code = 409
    log_level = logging.WARNING


class DatabaseError(MbeeError):
    """Store-layer failure."""

    error = "database_error"
    status_code = 500
    log_level = logging.ERROR
