"""
Typed business-rule failures for booking, credits and waitlist operations.

Every error carries an HTTP status, a stable machine-readable ``code`` and a
human message so clients can render a specific explanation. They are expected
outcomes, not crashes; only OperationFailedError signals an infrastructure
problem that needs operator attention.
"""

from typing import Optional


class StudioError(Exception):
    """Base class for expected, user-facing failures."""

    status_code = 400
    code = "error"
    default_message = "The request could not be completed"

    def __init__(self, message: Optional[str] = None, **details):
        self.message = message or self.default_message
        self.details = details
        super().__init__(self.message)

    def to_dict(self) -> dict:
        return {"error": self.code, "detail": self.message, **self.details}


class ValidationError(StudioError):
    """Malformed or out-of-range input."""

    status_code = 400
    code = "validation_error"
    default_message = "Invalid request"


class NotFoundError(StudioError):
    status_code = 404
    code = "not_found"
    default_message = "Resource not found"


class PermissionDeniedError(StudioError):
    status_code = 403
    code = "permission_denied"
    default_message = "You are not allowed to perform this action"


class AccountSuspendedError(StudioError):
    status_code = 403
    code = "account_suspended"
    default_message = "Your account is suspended"


class MedicalClearanceRequiredError(StudioError):
    status_code = 403
    code = "medical_clearance_required"
    default_message = "A medical clearance document is required to keep booking"


class InsufficientCreditsError(StudioError):
    status_code = 402
    code = "insufficient_credits"
    default_message = "No credits available for this service"


class DuplicateBookingError(StudioError):
    status_code = 409
    code = "duplicate_booking"
    default_message = "You already have an appointment at this time"


class SlotFullError(StudioError):
    status_code = 409
    code = "slot_full"
    default_message = "This time slot is fully booked"


class ServiceSlotTakenError(StudioError):
    status_code = 409
    code = "service_slot_taken"
    default_message = "This service is already booked for this time slot"


class ElasticCapReachedError(StudioError):
    status_code = 409
    code = "elastic_cap_reached"
    default_message = "Personal Training is full for this time slot"


class DuplicateWaitlistError(StudioError):
    status_code = 409
    code = "duplicate_waitlist"
    default_message = "You are already on the waitlist for this slot"


class TokenInvalidError(StudioError):
    status_code = 404
    code = "token_invalid"
    default_message = "Invalid or expired claim token"


class AlreadyBookedError(StudioError):
    status_code = 409
    code = "already_booked"
    default_message = "You already have an appointment at this time"


class SlotNoLongerAvailableError(StudioError):
    status_code = 409
    code = "slot_no_longer_available"
    default_message = "This slot is no longer available"


class CancellationWindowError(StudioError):
    status_code = 400
    code = "cancellation_window"
    default_message = "It is too late to cancel this appointment"


class CancellationQuotaExceededError(StudioError):
    status_code = 403
    code = "cancellation_quota_exceeded"
    default_message = "You have used all your cancellations for this period"


class OperationFailedError(StudioError):
    """Infrastructure failure (database unreachable, retries exhausted)."""

    status_code = 503
    code = "operation_failed"
    default_message = "The operation could not be completed, please retry"


class LedgerIntegrityError(OperationFailedError):
    """A credit lot referenced by an appointment no longer exists."""

    code = "ledger_integrity"
    default_message = "Credit ledger is inconsistent for this appointment"
