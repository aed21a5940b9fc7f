"""
Travel Booking Backend — Custom Exception Hierarchy
=====================================================

What:  Application-specific exceptions, one per business rejection kind.
How:   Each exception carries a message and optional context dict.
       Global exception handlers (registered in main.py) catch these and
       return structured JSON error responses with correct HTTP status codes.
Who:   Raised by services, the booking record manager and security;
       caught by global handlers.

Exception Hierarchy:
    TravelBookingError (base)
    ├── ValidationError               → 400 Bad Request (field-level)
    ├── CapacityExceededError         → 400 Bad Request
    ├── BookingNotCancellableError    → 400 Bad Request
    ├── ReviewNotAllowedError         → 400 Bad Request
    ├── AuthenticationError           → 401 Unauthorized
    ├── PermissionDeniedError         → 403 Forbidden
    ├── NotFoundError                 → 404 Not Found
    │   └── DestinationNotFoundError  → 404 Not Found
    ├── DatesUnavailableError         → 409 Conflict
    ├── InvalidStateTransitionError   → 409 Conflict
    ├── ReviewAlreadyExistsError      → 409 Conflict
    ├── RateLimitExceededError        → 429 Too Many Requests
    ├── DatabaseError                 → 500 Internal Server Error
    └── StorageUnavailableError       → 503 Service Unavailable

None of the business rejections is retried. StorageUnavailableError is the
only transient kind, and only read paths retry it.
"""

from datetime import date
from typing import Any, Dict, Optional


class TravelBookingError(Exception):
    """
    Base exception for all application errors.

    Attributes:
        message:  User-facing error description (safe to return in API response)
        context:  Additional debug info (logged, returned only by some handlers)
    """

    error_code = "application_error"
    status_code = 500

    def __init__(
        self,
        message: str = "An unexpected error occurred",
        context: Optional[Dict[str, Any]] = None,
    ):
        self.message = message
        self.context = context or {}
        super().__init__(self.message)


class ValidationError(TravelBookingError):
    """
    Raised when client input fails a business validation rule.

    Example response:
        {
            "error": "validation_error",
            "message": "End date must be after start date",
            "details": {"field": "end_date"}
        }
    """

    error_code = "validation_error"
    status_code = 400

    def __init__(
        self,
        message: str = "Validation failed",
        field: Optional[str] = None,
        context: Optional[Dict[str, Any]] = None,
    ):
        ctx = context or {}
        if field:
            ctx["field"] = field
        super().__init__(message=message, context=ctx)
        self.field = field


class NotFoundError(TravelBookingError):
    """Raised when an id lookup finds nothing."""

    error_code = "not_found"
    status_code = 404

    def __init__(
        self,
        resource: str = "resource",
        resource_id: Optional[str] = None,
        context: Optional[Dict[str, Any]] = None,
    ):
        message = f"The requested {resource} was not found"
        if resource_id:
            message = f"{resource} with ID '{resource_id}' was not found"
        ctx = context or {}
        ctx["resource"] = resource
        if resource_id:
            ctx["resource_id"] = resource_id
        super().__init__(message=message, context=ctx)


class DestinationNotFoundError(NotFoundError):
    """Destination is missing or has been deactivated."""

    error_code = "destination_not_found"

    def __init__(self, destination_id: Optional[str] = None):
        super().__init__(resource="destination", resource_id=destination_id)


class DatesUnavailableError(TravelBookingError):
    """The destination already has an active booking overlapping the dates."""

    error_code = "dates_unavailable"
    status_code = 409

    def __init__(
        self,
        start_date: Optional[date] = None,
        end_date: Optional[date] = None,
        conflicts: int = 0,
    ):
        ctx: Dict[str, Any] = {"conflicting_bookings": conflicts}
        if start_date and end_date:
            ctx["start_date"] = start_date.isoformat()
            ctx["end_date"] = end_date.isoformat()
        super().__init__(
            message="Destination is not available for the selected dates",
            context=ctx,
        )


class CapacityExceededError(TravelBookingError):
    error_code = "capacity_exceeded"
    status_code = 400

    def __init__(self, guests: int, max_guests: int):
        super().__init__(
            message=f"Number of guests ({guests}) exceeds maximum capacity ({max_guests})",
            context={"guests": guests, "max_guests": max_guests},
        )
        self.guests = guests
        self.max_guests = max_guests


class InvalidStateTransitionError(TravelBookingError):
    """
    Raised when a lifecycle action is requested from the wrong status.

    Allowed transitions:
        pending   → confirmed | cancelled
        confirmed → cancelled | completed
        completed → refunded
    """

    error_code = "invalid_state_transition"
    status_code = 409

    def __init__(self, current: str, action: str, message: Optional[str] = None):
        super().__init__(
            message=message or f"Cannot {action} a booking that is {current}",
            context={"current_status": current, "action": action},
        )
        self.current = current
        self.action = action


class BookingNotCancellableError(TravelBookingError):
    error_code = "booking_not_cancellable"
    status_code = 400

    def __init__(
        self,
        message: str = "This booking cannot be cancelled",
        context: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message=message, context=context)


class ReviewNotAllowedError(TravelBookingError):
    error_code = "review_not_allowed"
    status_code = 400

    def __init__(self, status: str):
        super().__init__(
            message="You can only review completed bookings",
            context={"current_status": status},
        )


class ReviewAlreadyExistsError(TravelBookingError):
    error_code = "review_already_exists"
    status_code = 409

    def __init__(self):
        super().__init__(message="You have already reviewed this booking")


class AuthenticationError(TravelBookingError):
    """Missing, expired or malformed bearer token."""

    error_code = "authentication_failed"
    status_code = 401

    def __init__(self, message: str = "Authentication required"):
        super().__init__(message=message)


class PermissionDeniedError(TravelBookingError):
    error_code = "permission_denied"
    status_code = 403

    def __init__(self, message: str = "Access denied"):
        super().__init__(message=message)


class DatabaseError(TravelBookingError):
    """
    Raised when a database operation fails for a non-transient reason.

    The message returned to the client is always generic; the detailed
    error is logged server-side only.
    """

    error_code = "server_error"
    status_code = 500

    def __init__(
        self,
        message: str = "A database error occurred. Please try again later.",
        context: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message=message, context=context)


class StorageUnavailableError(TravelBookingError):
    """
    Raised when the database connection is lost or refused.

    Read operations (availability checks) retry this automatically;
    create/cancel/confirm never do, since a retry could double-submit.
    """

    error_code = "storage_unavailable"
    status_code = 503

    def __init__(
        self,
        message: str = "Booking storage is temporarily unavailable",
        retry_after: int = 5,
        context: Optional[Dict[str, Any]] = None,
    ):
        ctx = context or {}
        ctx["retry_after"] = retry_after
        super().__init__(message=message, context=ctx)
        self.retry_after = retry_after


class RateLimitExceededError(TravelBookingError):
    error_code = "rate_limit_exceeded"
    status_code = 429

    def __init__(
        self,
        retry_after: int = 60,
        context: Optional[Dict[str, Any]] = None,
    ):
        message = (
            f"Rate limit exceeded. Please wait {retry_after} seconds before making more requests."
        )
        ctx = context or {}
        ctx["retry_after"] = retry_after
        super().__init__(message=message, context=ctx)
        self.retry_after = retry_after
