"""
shared/errors/errors.py
Business error taxonomy. Every rule violation raised by a service is a
BusinessError subclass; main.py renders them as ErrorResponse bodies.
"""

from typing import Optional


class BusinessError(Exception):
    """Base class: a stable machine-readable code plus the HTTP status to use."""

    code: str = "BUSINESS_ERROR"
    status_code: int = 400
    default_message: str = "Request violates a business rule"

    def __init__(self, message: Optional[str] = None):
        self.message = message or self.default_message
        super().__init__(self.message)

    def __repr__(self) -> str:
        return f"<{type(self).__name__} {self.code}: {self.message}>"


# ── Lookups ───────────────────────────────────────────────────

class NotFound(BusinessError):
    code = "NOT_FOUND"
    status_code = 404
    default_message = "Resource not found"


class CaseNotFound(NotFound):
    code = "CASE_NOT_FOUND"
    default_message = "Case not found"


class PractitionerNotFound(NotFound):
    code = "PRACTITIONER_NOT_FOUND"
    default_message = "Practitioner not found"


class OpinionNotFound(NotFound):
    code = "OPINION_NOT_FOUND"
    default_message = "Opinion not found"


class PayoutNotFound(NotFound):
    code = "PAYOUT_NOT_FOUND"
    default_message = "Payout not found"


class ExpertiseRequestNotFound(NotFound):
    code = "EXPERTISE_REQUEST_NOT_FOUND"
    default_message = "Expertise request not found"


# ── Case lifecycle ────────────────────────────────────────────

class NotAssigned(BusinessError):
    code = "NOT_ASSIGNED"
    status_code = 403
    default_message = "Case is not assigned to this practitioner"


class InvalidStatus(BusinessError):
    code = "INVALID_STATUS"
    status_code = 409
    default_message = "Action not allowed in the current status"


class StaleState(BusinessError):
    code = "STALE_STATE"
    status_code = 409
    default_message = "Record was modified concurrently, reload and retry"


class ReasonRequired(BusinessError):
    code = "REASON_REQUIRED"
    status_code = 422
    default_message = "A reason is required"


class NotCaseCustomer(BusinessError):
    code = "NOT_CASE_CUSTOMER"
    status_code = 403
    default_message = "Only the case's customer can do this"


# ── Opinions & ratings ────────────────────────────────────────

class OpinionExists(BusinessError):
    code = "OPINION_EXISTS"
    status_code = 409
    default_message = "An opinion has already been submitted for this case"


class AlreadyReviewed(BusinessError):
    code = "ALREADY_REVIEWED"
    status_code = 409
    default_message = "Opinion has already been reviewed"


class NotApproved(BusinessError):
    code = "NOT_APPROVED"
    status_code = 409
    default_message = "Opinion must be approved before delivery"


class InvalidRating(BusinessError):
    code = "INVALID_RATING"
    status_code = 422
    default_message = "Rating must be an integer from 1 to 5"


class AlreadyRated(BusinessError):
    code = "ALREADY_RATED"
    status_code = 409
    default_message = "This case has already been rated"


class NotDelivered(InvalidStatus):
    code = "NOT_DELIVERED"
    default_message = "Opinion has not been delivered yet"


# ── Registry ──────────────────────────────────────────────────

class RateOutOfBounds(BusinessError):
    code = "RATE_OUT_OF_BOUNDS"
    status_code = 422
    default_message = "Commission rate must be between 10 and 30"


class HasActiveCases(BusinessError):
    code = "HAS_ACTIVE_CASES"
    status_code = 409
    default_message = "Practitioner has active cases"


class PractitionerNotVerified(BusinessError):
    code = "PRACTITIONER_NOT_VERIFIED"
    status_code = 422
    default_message = "Practitioner is not verified"


class AlreadyVerified(BusinessError):
    code = "ALREADY_VERIFIED"
    status_code = 409
    default_message = "Practitioner is already verified"


# ── Payouts ───────────────────────────────────────────────────

class NoBankAccount(BusinessError):
    code = "NO_BANK_ACCOUNT"
    status_code = 422
    default_message = "Practitioner has no default bank account"


class PayoutExists(BusinessError):
    code = "PAYOUT_EXISTS"
    status_code = 409
    default_message = "A payout already exists for this case"


class CaseNotCompleted(BusinessError):
    code = "CASE_NOT_COMPLETED"
    status_code = 422
    default_message = "Case must be completed before a payout is created"


class PayoutGatewayError(BusinessError):
    """Raised when the payout gateway rejects a call or can't be reached."""
    code = "PAYOUT_GATEWAY_ERROR"
    status_code = 502
    default_message = "Payout gateway request failed"
