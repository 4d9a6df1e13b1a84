"""
Exception hierarchy for the booking engine.

Every engine operation either returns its result or raises one of these.
Each error carries the complete list of human-readable violations so the
caller sees every problem in one round trip.
"""

from typing import Iterable, List, Optional


class BookingError(Exception):
    """Base exception for all booking engine errors."""

    error_code = "BOOKING_ERROR"

    def __init__(self, violations: Iterable[str], error_code: Optional[str] = None):
        self.violations: List[str] = list(violations)
        if error_code:
            self.error_code = error_code
        self.message = "; ".join(self.violations)
        super().__init__(self.message)


class ValidationFailure(BookingError):
    """One or more business rules rejected the request."""

    error_code = "VALIDATION_FAILED"


class ConcurrencyConflict(ValidationFailure):
    """Re-validation under lock failed after the unlocked pre-check passed.

    Callers see the same violations a plain ValidationFailure would carry:
    another writer committed first.
    """

    error_code = "CONCURRENCY_CONFLICT"


class NotFound(BookingError):
    error_code = "NOT_FOUND"

    def __init__(self, model: str, identity):
        self.model = model
        self.identity = identity
        super().__init__([f"{model} not found"])


class PreconditionFailure(BookingError):
    error_code = "PRECONDITION_FAILED"


class AlreadyCancelled(PreconditionFailure):
    error_code = "ALREADY_CANCELLED"

    def __init__(self):
        super().__init__(["Reservation is already cancelled"])


class TooLateToCancel(PreconditionFailure):
    error_code = "TOO_LATE_TO_CANCEL"

    def __init__(self, cutoff_minutes: int):
        super().__init__(
            [f"Cannot cancel less than {cutoff_minutes} minutes before start time"]
        )


class AdminRequired(PreconditionFailure):
    error_code = "ADMIN_REQUIRED"

    def __init__(self, action: str = "create rooms"):
        super().__init__([f"Only administrators can {action}"])


class InputFormatError(BookingError):
    error_code = "INPUT_FORMAT_ERROR"
