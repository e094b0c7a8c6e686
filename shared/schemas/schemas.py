"""
shared/schemas/schemas.py
All Pydantic v2 request/response schemas for the platform.
"""

import re
import uuid
from datetime import date, datetime
from enum import Enum
from typing import Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from shared.models.models import CasePriority, ExpertiseTag, OpinionType


# ── Base ──────────────────────────────────────────────────────

class BaseSchema(BaseModel):
    model_config = ConfigDict(from_attributes=True, use_enum_values=True)


# ── User ──────────────────────────────────────────────────────

class UserResponse(BaseSchema):
    id: uuid.UUID
    email: str
    name: str
    phone: Optional[str]
    role: str
    created_at: datetime


# ── Practitioner ──────────────────────────────────────────────

class PractitionerRegisterRequest(BaseSchema):
    bar_council_number: str = Field(..., min_length=3, max_length=50)
    state_bar_council: str = Field(..., min_length=2, max_length=100)
    admission_year: int = Field(..., ge=1950, le=2100)
    city: str = Field(..., min_length=2, max_length=100)


class PractitionerResponse(BaseSchema):
    id: uuid.UUID
    user_id: uuid.UUID
    display_name: str
    bar_council_number: str
    state_bar_council: str
    admission_year: int
    city: str
    verification_status: str
    verification_notes: Optional[str]
    verified_at: Optional[datetime]
    commission_rate: int
    tier: str
    expertise_tags: List[str]
    completed_case_count: int
    decline_count: int
    total_assignment_count: int
    rating_avg: float
    rating_count: int
    dnd_enabled: bool
    created_at: datetime


class ExpertiseUpdateRequest(BaseSchema):
    tags: List[ExpertiseTag] = Field(..., min_length=1)


class ExpertiseRequestCreate(BaseSchema):
    requested_tag: ExpertiseTag
    supporting_doc_url: Optional[str] = Field(None, max_length=500)


class ExpertiseRequestReview(BaseSchema):
    action: Literal["approve", "reject"]
    rejection_reason: Optional[str] = Field(None, max_length=500)


class ExpertiseRequestResponse(BaseSchema):
    id: uuid.UUID
    practitioner_id: uuid.UUID
    requested_tag: str
    supporting_doc_url: Optional[str]
    status: str
    reviewed_by_id: Optional[uuid.UUID]
    reviewed_at: Optional[datetime]
    rejection_reason: Optional[str]
    created_at: datetime


class CommissionRateUpdateRequest(BaseSchema):
    # Bounds are enforced by the registry so the error carries RATE_OUT_OF_BOUNDS
    commission_rate: int


class DndToggleRequest(BaseSchema):
    enabled: bool


class VerificationReviewRequest(BaseSchema):
    notes: Optional[str] = Field(None, max_length=1000)


class RejectionRequest(BaseSchema):
    reason: str = Field(..., min_length=5, max_length=500)


class SuspendRequest(BaseSchema):
    reason: str = Field(..., min_length=5, max_length=500)


# ── Bank Accounts ─────────────────────────────────────────────

IFSC_PATTERN = re.compile(r"^[A-Z]{4}0[A-Z0-9]{6}$")
ACCOUNT_NUMBER_PATTERN = re.compile(r"^[0-9]{9,18}$")


class BankAccountCreateRequest(BaseSchema):
    account_holder_name: str = Field(..., min_length=2, max_length=255)
    bank_name: str = Field(..., min_length=2, max_length=255)
    account_number: str
    ifsc: str
    upi_id: Optional[str] = Field(None, max_length=100)

    @field_validator("account_number")
    @classmethod
    def validate_account_number(cls, v: str) -> str:
        if not ACCOUNT_NUMBER_PATTERN.match(v):
            raise ValueError("Account number must be 9-18 digits")
        return v

    @field_validator("ifsc")
    @classmethod
    def validate_ifsc(cls, v: str) -> str:
        v = v.upper()
        if not IFSC_PATTERN.match(v):
            raise ValueError("Invalid IFSC code")
        return v


class BankAccountResponse(BaseSchema):
    id: uuid.UUID
    account_holder_name: str
    bank_name: str
    ifsc: str
    account_number_masked: str
    upi_id: Optional[str]
    is_default: bool
    created_at: datetime


# ── Routing ───────────────────────────────────────────────────

class SuggestedPractitionerResponse(BaseSchema):
    id: uuid.UUID
    name: str
    city: str
    rating_avg: float
    rating_count: int
    completed_case_count: int
    tier: str
    commission_rate: int
    expertise_tags: List[str]
    active_case_count: int


# ── Cases ─────────────────────────────────────────────────────

class DeclineReason(str, Enum):
    OUTSIDE_EXPERTISE = "Outside expertise"
    CONFLICT_OF_INTEREST = "Conflict of interest"
    WORKLOAD_FULL = "Workload full"
    OTHER = "Other"


class CaseCreateRequest(BaseSchema):
    practitioner_id: uuid.UUID
    required_expertise: ExpertiseTag
    fee_amount: int = Field(..., ge=0, description="Fee in paise")
    priority: CasePriority = CasePriority.NORMAL
    customer_id: Optional[uuid.UUID] = None
    service_request_id: Optional[str] = Field(None, max_length=100)
    city: Optional[str] = Field(None, max_length=100)
    issue_summary: Optional[str] = Field(None, max_length=5000)


class CaseDeclineRequest(BaseSchema):
    reason: DeclineReason
    reason_detail: Optional[str] = Field(None, max_length=1000)

    @model_validator(mode="after")
    def require_detail_for_other(self):
        if self.reason == DeclineReason.OTHER.value and not (self.reason_detail or "").strip():
            raise ValueError("reason_detail is required when reason is 'Other'")
        return self

    @property
    def full_reason(self) -> str:
        if self.reason_detail and self.reason_detail.strip():
            return f"{self.reason}: {self.reason_detail.strip()}"
        return self.reason


class CaseReassignRequest(BaseSchema):
    practitioner_id: uuid.UUID
    reason: Optional[str] = Field(None, max_length=500)


class CaseResponse(BaseSchema):
    id: uuid.UUID
    case_number: str
    service_request_id: Optional[str]
    practitioner_id: uuid.UUID
    customer_id: Optional[uuid.UUID]
    assigned_by_id: Optional[uuid.UUID]
    required_expertise: str
    city: Optional[str]
    issue_summary: Optional[str]
    priority: str
    status: str
    fee_amount: int
    commission_rate: int
    deadline_at: datetime
    assigned_at: datetime
    accepted_at: Optional[datetime]
    declined_at: Optional[datetime]
    decline_reason: Optional[str]
    completed_at: Optional[datetime]
    created_at: datetime


class FeeBreakdown(BaseSchema):
    gross_fee: int
    commission_rate: int
    commission_amount: int
    net_amount: int


class CaseDetailResponse(CaseResponse):
    fee_breakdown: FeeBreakdown
    has_opinion: bool


class DeclineResponse(BaseSchema):
    case: CaseResponse
    decline_count: int
    decline_rate: float
    flagged: bool


# ── Opinions ──────────────────────────────────────────────────

class OpinionSubmitRequest(BaseSchema):
    opinion_doc_url: str = Field(..., min_length=5, max_length=2000)
    opinion_type: OpinionType
    summary: Optional[str] = Field(None, max_length=5000)
    conditions: Optional[str] = Field(None, max_length=5000)

    @model_validator(mode="after")
    def require_conditions_for_conditional(self):
        if self.opinion_type == OpinionType.CONDITIONAL.value and not (self.conditions or "").strip():
            raise ValueError("conditions are required for a CONDITIONAL opinion")
        return self


class OpinionReviewRequest(BaseSchema):
    approved: bool
    notes: Optional[str] = Field(None, max_length=2000)


class OpinionResponse(BaseSchema):
    id: uuid.UUID
    case_id: uuid.UUID
    practitioner_id: uuid.UUID
    opinion_doc_url: str
    opinion_type: str
    summary: Optional[str]
    conditions: Optional[str]
    approval_status: str
    reviewed_at: Optional[datetime]
    review_notes: Optional[str]
    delivered_at: Optional[datetime]
    created_at: datetime


class OpinionReviewResponse(BaseSchema):
    case: CaseResponse
    opinion: Optional[OpinionResponse]


# ── Ratings ───────────────────────────────────────────────────

class RatingSubmitRequest(BaseSchema):
    # Range is enforced by the reputation engine so callers get one error shape
    rating: int
    feedback: Optional[str] = Field(None, max_length=2000)


class RatingOutcomeResponse(BaseSchema):
    rating: int
    rating_avg: float
    rating_count: int
    flagged: bool


class RatingSummaryResponse(BaseSchema):
    practitioner_id: uuid.UUID
    rating_avg: float
    rating_count: int
    distribution: Dict[int, int]


# ── Payouts ───────────────────────────────────────────────────

class PayoutResponse(BaseSchema):
    id: uuid.UUID
    case_id: uuid.UUID
    practitioner_id: uuid.UUID
    gross_fee: int
    commission_rate: int
    commission_amount: int
    net_amount: int
    status: str
    payout_mode: Optional[str]
    batch_id: Optional[str]
    external_transaction_id: Optional[str]
    failure_reason: Optional[str]
    retry_count: int
    confirmed_at: Optional[datetime]
    processed_at: Optional[datetime]
    created_at: datetime


class EarningsSummaryResponse(BaseSchema):
    completed_total: int
    pending_total: int
    in_flight_total: int
    failed_total: int
    in_progress_estimate: int
    completed_case_count: int


class NextPayoutResponse(BaseSchema):
    pending_amount: int
    next_payout_date: date


class RatingTrendPoint(BaseSchema):
    month: str
    avg_rating: float
    count: int


class PerformanceMetricsResponse(BaseSchema):
    total_cases_completed: int
    avg_case_duration_days: Optional[float]
    opinion_type_distribution: Dict[str, int]
    rating_trend: List[RatingTrendPoint]


class PayoutBatchResponse(BaseSchema):
    batch_id: Optional[str]
    payout_ids: List[uuid.UUID]
    requeued: int


class SweepResponse(BaseSchema):
    confirmed: int


# ── Notification ──────────────────────────────────────────────

class NotificationResponse(BaseSchema):
    id: uuid.UUID
    type: str
    title: str
    body: str
    is_read: bool
    read_at: Optional[datetime]
    created_at: datetime
    case_id: Optional[uuid.UUID]


# ── Operator Console ──────────────────────────────────────────

class MarketplaceDashboardResponse(BaseSchema):
    assigned: int
    in_progress: int
    awaiting_review: int
    completed_this_month: int
    pending_verifications: int
    payouts_pending: int


class LeaderboardEntry(BaseSchema):
    practitioner_id: uuid.UUID
    name: str
    city: str
    completed_case_count: int
    rating_avg: float
    tier: str


class PractitionerDetailResponse(BaseSchema):
    practitioner: PractitionerResponse
    active_case_count: int
    acceptance_rate: float
    decline_rate: float
    decline_reasons: Dict[str, int]
    rating_summary: RatingSummaryResponse


class AuditLogResponse(BaseSchema):
    id: uuid.UUID
    operator_id: uuid.UUID
    action: str
    entity_type: str
    entity_id: Optional[str]
    payload: Optional[dict]
    created_at: datetime


# ── Generic ───────────────────────────────────────────────────

class MessageResponse(BaseSchema):
    message: str
    success: bool = True


class ErrorResponse(BaseSchema):
    detail: str
    code: Optional[str] = None
