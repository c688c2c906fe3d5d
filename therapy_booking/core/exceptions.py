"""Custom application exceptions."""

from typing import Any


class AppException(Exception):
    """Base application exception."""

    def __init__(self, message: str, status_code: int = 500):
        """Initialize exception with message and status code."""
        self.message = message
        self.status_code = status_code
        super().__init__(self.message)


class NotFoundException(AppException):
    """Resource not found exception."""

    def __init__(self, message: str = "Resource not found"):
        """Initialize with 404 status code."""
        super().__init__(message, status_code=404)


class ForbiddenException(AppException):
    """Forbidden access exception."""

    def __init__(self, message: str = "Forbidden"):
        """Initialize with 403 status code."""
        super().__init__(message, status_code=403)


class BadRequestException(AppException):
    """Bad request exception."""

    def __init__(self, message: str = "Bad request"):
        """Initialize with 400 status code."""
        super().__init__(message, status_code=400)


class ConflictException(AppException):
    """Conflict exception."""

    def __init__(self, message: str = "Conflict"):
        """Initialize with 409 status code."""
        super().__init__(message, status_code=409)


class ValidationException(AppException):
    """Validation error exception."""

    def __init__(self, message: str = "Validation error"):
        """Initialize with 422 status code."""
        super().__init__(message, status_code=422)


class ServiceUnavailableException(AppException):
    """Dependency unavailable exception."""

    def __init__(self, message: str = "Service temporarily unavailable"):
        """Initialize with 503 status code."""
        super().__init__(message, status_code=503)


class BookingConflictException(ConflictException):
    """Raised inside a booking transaction when the final re-check fails.

    Carries the structured conflicts so the caller can report the same
    detail as the pre-check.
    """

    def __init__(
        self,
        conflicts: list[Any],
        message: str = "Booking conflict detected during final check",
    ):
        """Initialize with the conflicts found by the re-check."""
        self.conflicts = conflicts
        super().__init__(message)


class InvalidStatusTransitionException(ConflictException):
    """Appointment status change not allowed by the state machine."""

    def __init__(self, current: str, requested: str):
        """Initialize with the current and requested status."""
        self.current = current
        self.requested = requested
        super().__init__(f"Cannot change appointment status from '{current}' to '{requested}'")


class AvailabilityLookupError(Exception):
    """Availability could not be determined because a read failed.

    Distinct from an empty availability result.
    """
