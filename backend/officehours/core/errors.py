"""
Domain error taxonomy for the booking engine.

ValidationError: bad input, rejected synchronously and surfaced verbatim.
ConflictError: the request lost a race or hit a state the caller did not
expect (capacity race, booking already marked). Callers re-fetch and re-render
instead of treating these as failures.

Each error carries a stable `code` used by API responses and per-item bulk
results, and the HTTP status the API layer maps it to.
"""

from fastapi import Request, status
from fastapi.responses import JSONResponse

from officehours.core.logging import get_logger

logger = get_logger(__name__)


class BookingEngineError(Exception):
    code = "engine_error"
    status_code = status.HTTP_400_BAD_REQUEST

    def __init__(self, message: str = "", **context):
        super().__init__(message or self.code)
        self.message = message or self.code
        self.context = context


# Validation errors

class ValidationError(BookingEngineError):
    code = "validation_error"


class EventNotFound(ValidationError):
    code = "event_not_found"
    status_code = status.HTTP_404_NOT_FOUND


class SlotNotFound(ValidationError):
    code = "slot_not_found"
    status_code = status.HTTP_404_NOT_FOUND


class BookingNotFound(ValidationError):
    code = "booking_not_found"
    status_code = status.HTTP_404_NOT_FOUND


class SlotCancelled(ValidationError):
    code = "slot_cancelled"


class SlotInPast(ValidationError):
    code = "slot_in_past"


class DuplicateBooking(ValidationError):
    code = "duplicate_booking"


class SlotFull(ValidationError):
    code = "slot_full"


class WaitlistFull(ValidationError):
    code = "waitlist_full"


class InvalidCapacity(ValidationError):
    code = "invalid_capacity"


class CapacityBelowConfirmed(ValidationError):
    code = "capacity_below_confirmed"


class BookingAlreadyCancelled(ValidationError):
    code = "booking_already_cancelled"


class BookingCancelled(ValidationError):
    code = "booking_cancelled"


class BookingWaitlisted(ValidationError):
    code = "booking_waitlisted"


class SessionNotEnded(ValidationError):
    code = "session_not_ended"


class InvalidFeedback(ValidationError):
    code = "invalid_feedback"


# Conflict errors

class ConflictError(BookingEngineError):
    code = "conflict"
    status_code = status.HTTP_409_CONFLICT


class SlotConflict(ConflictError):
    """Lost the per-slot compare-and-set on every retry."""
    code = "slot_conflict"


class AlreadyMarked(ConflictError):
    code = "already_marked"


class FeedbackAlreadySubmitted(ConflictError):
    code = "feedback_already_submitted"


async def engine_error_handler(request: Request, exc: BookingEngineError) -> JSONResponse:
    log = logger.info if isinstance(exc, ConflictError) else logger.warning
    log(
        "request_rejected",
        code=exc.code,
        status_code=exc.status_code,
        path=request.url.path,
        **exc.context,
    )
    return JSONResponse(
        status_code=exc.status_code,
        content={"error": exc.code, "detail": exc.message},
    )


def register_exception_handlers(app) -> None:
    app.add_exception_handler(BookingEngineError, engine_error_handler)
