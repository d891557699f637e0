"""
Typed errors raised by the booking core.

Each error carries the HTTP status the API layer answers with, a stable
machine-readable ``error_code`` and a user-facing Spanish message. The API
maps them to responses without altering their meaning.
"""

from typing import Any


class BookingError(Exception):
    """Base class for all booking core errors."""

    status_code = 500
    error_code = "BOOKING_ERROR"

    def __init__(
        self,
        message: str,
        error_code: str | None = None,
        details: dict[str, Any] | None = None,
    ):
        super().__init__(message)
        self.message = message
        if error_code:
            self.error_code = error_code
        self.details = details or {}

    def to_dict(self) -> dict[str, Any]:
        return {
            "success": False,
            "error": self.message,
            "code": self.error_code,
            "details": self.details,
        }


class ValidationError(BookingError):
    """Malformed or missing input."""

    status_code = 400
    error_code = "VALIDATION_ERROR"


class InvalidRequestError(ValidationError):
    """Well-formed request that cannot be served (unknown or unoffered service, past slot)."""

    error_code = "INVALID_REQUEST"


class ConflictError(BookingError):
    """Slot no longer available or duplicate resource."""

    status_code = 409
    error_code = "CONFLICT"


class NotFoundError(BookingError):
    """Unknown appointment, staff member, service or record."""

    status_code = 404
    error_code = "NOT_FOUND"


class PermissionDeniedError(BookingError):
    """Role or ownership violation."""

    status_code = 403
    error_code = "PERMISSION_DENIED"


class InvalidTransitionError(BookingError):
    """Status change outside the appointment lifecycle graph."""

    status_code = 400
    error_code = "INVALID_TRANSITION"
