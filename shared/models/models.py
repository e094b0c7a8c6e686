"""
shared/models/models.py
All SQLAlchemy ORM models for the Legal Case Marketplace.
UUID primary keys throughout; column types stay portable across Postgres and SQLite.
"""

import uuid
from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum as PyEnum
from typing import List, Optional

from sqlalchemy import (
    JSON,
    BigInteger,
    Boolean,
    CheckConstraint,
    DateTime,
    Enum,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    SmallInteger,
    String,
    Text,
    UniqueConstraint,
    Uuid,
    func,
    text,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from config.database import Base


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


# ── Enumerations ──────────────────────────────────────────────

class UserRole(str, PyEnum):
    CUSTOMER = "CUSTOMER"
    PRACTITIONER = "PRACTITIONER"
    OPERATOR = "OPERATOR"


class VerificationStatus(str, PyEnum):
    PENDING = "PENDING"
    VERIFIED = "VERIFIED"
    REJECTED = "REJECTED"
    SUSPENDED = "SUSPENDED"


class PractitionerTier(str, PyEnum):
    PREFERRED = "PREFERRED"
    STANDARD = "STANDARD"


class ExpertiseTag(str, PyEnum):
    LDA_DISPUTES = "LDA_DISPUTES"
    TITLE_OPINIONS = "TITLE_OPINIONS"
    RERA_MATTERS = "RERA_MATTERS"
    SUCCESSION_LEGAL_HEIR = "SUCCESSION_LEGAL_HEIR"
    AGRICULTURAL_LAND_CONVERSION = "AGRICULTURAL_LAND_CONVERSION"
    ENCUMBRANCE_ISSUES = "ENCUMBRANCE_ISSUES"
    MUTATION_CHALLENGES = "MUTATION_CHALLENGES"
    PROPERTY_TAX_DISPUTES = "PROPERTY_TAX_DISPUTES"


class ExpertiseRequestStatus(str, PyEnum):
    PENDING = "PENDING"
    APPROVED = "APPROVED"
    REJECTED = "REJECTED"


class CasePriority(str, PyEnum):
    NORMAL = "NORMAL"
    URGENT = "URGENT"


class CaseStatus(str, PyEnum):
    ASSIGNED = "ASSIGNED"
    PENDING_ACCEPTANCE = "PENDING_ACCEPTANCE"
    IN_PROGRESS = "IN_PROGRESS"
    OPINION_SUBMITTED = "OPINION_SUBMITTED"
    OPINION_APPROVED = "OPINION_APPROVED"
    OPINION_DELIVERED = "OPINION_DELIVERED"
    COMPLETED = "COMPLETED"
    REASSIGNED = "REASSIGNED"


# Cases that block suspension and count towards a practitioner's workload
ACTIVE_CASE_STATUSES = (
    CaseStatus.ASSIGNED,
    CaseStatus.PENDING_ACCEPTANCE,
    CaseStatus.IN_PROGRESS,
)


class OpinionType(str, PyEnum):
    FAVORABLE = "FAVORABLE"
    ADVERSE = "ADVERSE"
    CONDITIONAL = "CONDITIONAL"


class OpinionApproval(str, PyEnum):
    PENDING_REVIEW = "PENDING_REVIEW"
    APPROVED = "APPROVED"


class PayoutStatus(str, PyEnum):
    PENDING = "PENDING"
    CONFIRMED = "CONFIRMED"
    PROCESSING = "PROCESSING"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"


class PayoutMode(str, PyEnum):
    NEFT = "NEFT"
    IMPS = "IMPS"
    RTGS = "RTGS"
    UPI = "UPI"


class NotificationType(str, PyEnum):
    CASE_ASSIGNED = "CASE_ASSIGNED"
    CASE_ACCEPTANCE_TIMEOUT = "CASE_ACCEPTANCE_TIMEOUT"
    CASE_DECLINED = "CASE_DECLINED"
    OPINION_REJECTED = "OPINION_REJECTED"
    OPINION_DELIVERED = "OPINION_DELIVERED"
    PAYOUT_SENT = "PAYOUT_SENT"
    ACCOUNT_VERIFIED = "ACCOUNT_VERIFIED"


# ── Mixins ────────────────────────────────────────────────────

class TimestampMixin:
    """Adds created_at and updated_at to any model."""
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, server_default=func.now(), nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=utcnow,
        server_default=func.now(),
        onupdate=utcnow,
        nullable=False,
    )


# ── Models ────────────────────────────────────────────────────

class User(TimestampMixin, Base):
    """Account for customers, practitioners and marketplace operators."""
    __tablename__ = "users"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    email: Mapped[str] = mapped_column(String(255), nullable=False, unique=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    phone: Mapped[Optional[str]] = mapped_column(String(20), nullable=True)
    role: Mapped[UserRole] = mapped_column(
        Enum(UserRole), nullable=False, default=UserRole.CUSTOMER
    )
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    practitioner: Mapped[Optional["Practitioner"]] = relationship(
        back_populates="user", uselist=False, foreign_keys="Practitioner.user_id"
    )
    notifications: Mapped[List["Notification"]] = relationship(back_populates="user")

    __table_args__ = (Index("ix_users_role", "role"),)

    def __repr__(self) -> str:
        return f"<User {self.email} ({self.role})>"


class Practitioner(TimestampMixin, Base):
    """
    Verified legal professional who receives routed cases.
    Counters and rating aggregates are denormalized for routing queries.
    """
    __tablename__ = "practitioners"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    user_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("users.id", ondelete="CASCADE"), unique=True, nullable=False
    )
    bar_council_number: Mapped[str] = mapped_column(String(50), nullable=False)
    state_bar_council: Mapped[str] = mapped_column(String(100), nullable=False)
    admission_year: Mapped[int] = mapped_column(Integer, nullable=False)
    city: Mapped[str] = mapped_column(String(100), nullable=False)

    # Verification
    verification_status: Mapped[VerificationStatus] = mapped_column(
        Enum(VerificationStatus), default=VerificationStatus.PENDING, nullable=False
    )
    verification_notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    verified_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    verified_by_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        Uuid, ForeignKey("users.id"), nullable=True
    )

    # Commercials
    commission_rate: Mapped[int] = mapped_column(Integer, default=20, nullable=False)
    tier: Mapped[PractitionerTier] = mapped_column(
        Enum(PractitionerTier), default=PractitionerTier.STANDARD, nullable=False
    )

    # Counters
    completed_case_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    decline_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    total_assignment_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)

    # Rating (denormalized for query performance)
    rating_avg: Mapped[Decimal] = mapped_column(Numeric(3, 2), default=Decimal("0.00"), nullable=False)
    rating_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)

    dnd_enabled: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)

    user: Mapped["User"] = relationship(
        back_populates="practitioner", foreign_keys=[user_id], lazy="joined"
    )
    expertise: Mapped[List["PractitionerExpertise"]] = relationship(
        back_populates="practitioner",
        order_by="PractitionerExpertise.position",
        cascade="all, delete-orphan",
        lazy="selectin",
    )
    bank_accounts: Mapped[List["BankAccount"]] = relationship(back_populates="practitioner")

    __table_args__ = (
        CheckConstraint(
            "commission_rate >= 10 AND commission_rate <= 30", name="ck_practitioner_commission_range"
        ),
        Index("ix_practitioners_city", "city"),
        Index("ix_practitioners_verification", "verification_status"),
    )

    @property
    def expertise_tags(self) -> list[str]:
        return [e.tag.value if isinstance(e.tag, ExpertiseTag) else e.tag for e in self.expertise]

    @property
    def display_name(self) -> str:
        return self.user.name if self.user else ""


class PractitionerExpertise(Base):
    """One row per tag; position keeps the operator-assigned order."""
    __tablename__ = "practitioner_expertise"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    practitioner_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("practitioners.id", ondelete="CASCADE"), nullable=False
    )
    tag: Mapped[ExpertiseTag] = mapped_column(Enum(ExpertiseTag), nullable=False)
    position: Mapped[int] = mapped_column(SmallInteger, default=0, nullable=False)

    practitioner: Mapped["Practitioner"] = relationship(back_populates="expertise")

    __table_args__ = (
        UniqueConstraint("practitioner_id", "tag", name="uq_practitioner_expertise_tag"),
        Index("ix_practitioner_expertise_tag", "tag"),
    )


class PractitionerExpertiseRequest(TimestampMixin, Base):
    """A practitioner asking for an extra expertise tag; an operator approves or rejects it."""
    __tablename__ = "practitioner_expertise_requests"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    practitioner_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("practitioners.id", ondelete="CASCADE"), nullable=False
    )
    requested_tag: Mapped[ExpertiseTag] = mapped_column(Enum(ExpertiseTag), nullable=False)
    supporting_doc_url: Mapped[Optional[str]] = mapped_column(String(500), nullable=True)
    status: Mapped[ExpertiseRequestStatus] = mapped_column(
        Enum(ExpertiseRequestStatus), default=ExpertiseRequestStatus.PENDING, nullable=False
    )
    reviewed_by_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        Uuid, ForeignKey("users.id"), nullable=True
    )
    reviewed_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    rejection_reason: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    __table_args__ = (
        Index("ix_expertise_requests_status_created", "status", "created_at"),
    )


class BankAccount(TimestampMixin, Base):
    """
    Payout destination. The full account number is only ever stored encrypted;
    gateway ids are cached the first time a payout is sent to the account.
    """
    __tablename__ = "bank_accounts"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    practitioner_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("practitioners.id", ondelete="CASCADE"), nullable=False
    )
    account_holder_name: Mapped[str] = mapped_column(String(255), nullable=False)
    bank_name: Mapped[str] = mapped_column(String(255), nullable=False)
    ifsc: Mapped[str] = mapped_column(String(11), nullable=False)
    account_number_masked: Mapped[str] = mapped_column(String(20), nullable=False)
    account_number_encrypted: Mapped[str] = mapped_column(Text, nullable=False)
    upi_id: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    is_default: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)

    # One gateway contact per practitioner, shared by all their accounts
    gateway_contact_id: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    gateway_fund_account_id: Mapped[Optional[str]] = mapped_column(
        String(100), unique=True, nullable=True
    )

    practitioner: Mapped["Practitioner"] = relationship(back_populates="bank_accounts")

    __table_args__ = (
        Index("ix_bank_accounts_practitioner_id", "practitioner_id"),
        Index(
            "uq_bank_accounts_one_default",
            "practitioner_id",
            unique=True,
            postgresql_where=text("is_default = true"),
            sqlite_where=text("is_default = 1"),
        ),
    )


class LegalCase(TimestampMixin, Base):
    """
    A unit of legal work routed to one practitioner.
    Status transitions: ASSIGNED → IN_PROGRESS → OPINION_SUBMITTED →
    OPINION_APPROVED → OPINION_DELIVERED → COMPLETED, with REASSIGNED on decline.
    """
    __tablename__ = "legal_cases"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    case_number: Mapped[str] = mapped_column(String(40), unique=True, nullable=False)
    service_request_id: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    practitioner_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("practitioners.id"), nullable=False
    )
    customer_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        Uuid, ForeignKey("users.id"), nullable=True
    )
    assigned_by_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        Uuid, ForeignKey("users.id"), nullable=True
    )

    required_expertise: Mapped[ExpertiseTag] = mapped_column(Enum(ExpertiseTag), nullable=False)
    city: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    issue_summary: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    priority: Mapped[CasePriority] = mapped_column(
        Enum(CasePriority), default=CasePriority.NORMAL, nullable=False
    )
    status: Mapped[CaseStatus] = mapped_column(
        Enum(CaseStatus), default=CaseStatus.ASSIGNED, nullable=False
    )

    # Pricing (paise) and commission snapshot taken at creation
    fee_amount: Mapped[int] = mapped_column(BigInteger, nullable=False)
    commission_rate: Mapped[int] = mapped_column(Integer, nullable=False)

    deadline_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    assigned_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, nullable=False)
    accepted_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    declined_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    decline_reason: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    completed_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))

    practitioner: Mapped["Practitioner"] = relationship(foreign_keys=[practitioner_id])
    opinion: Mapped[Optional["LegalOpinion"]] = relationship(back_populates="case", uselist=False)
    payout: Mapped[Optional["Payout"]] = relationship(back_populates="case", uselist=False)
    audit_logs: Mapped[List["CaseAuditLog"]] = relationship(back_populates="case")

    __table_args__ = (
        CheckConstraint("fee_amount >= 0", name="ck_case_fee_non_negative"),
        Index("ix_legal_cases_practitioner_status", "practitioner_id", "status"),
        Index("ix_legal_cases_status", "status"),
        Index("ix_legal_cases_customer_id", "customer_id"),
    )


class CaseAuditLog(Base):
    """Immutable log of all case status transitions."""
    __tablename__ = "case_audit_logs"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    case_id: Mapped[uuid.UUID] = mapped_column(Uuid, ForeignKey("legal_cases.id"), nullable=False)
    from_status: Mapped[Optional[str]] = mapped_column(String(30), nullable=True)
    to_status: Mapped[str] = mapped_column(String(30), nullable=False)
    changed_by_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        Uuid, ForeignKey("users.id"), nullable=True
    )
    reason: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    audit_metadata: Mapped[Optional[dict]] = mapped_column(JSON, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, server_default=func.now()
    )

    case: Mapped["LegalCase"] = relationship(back_populates="audit_logs")

    __table_args__ = (Index("ix_case_audit_case_id", "case_id"),)


class LegalOpinion(TimestampMixin, Base):
    """Practitioner's written opinion. At most one per case."""
    __tablename__ = "legal_opinions"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    case_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("legal_cases.id"), unique=True, nullable=False
    )
    practitioner_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("practitioners.id"), nullable=False
    )
    opinion_doc_url: Mapped[str] = mapped_column(Text, nullable=False)
    opinion_type: Mapped[OpinionType] = mapped_column(Enum(OpinionType), nullable=False)
    summary: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    conditions: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    approval_status: Mapped[OpinionApproval] = mapped_column(
        Enum(OpinionApproval), default=OpinionApproval.PENDING_REVIEW, nullable=False
    )
    reviewed_by_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        Uuid, ForeignKey("users.id"), nullable=True
    )
    reviewed_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    review_notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    delivered_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))

    case: Mapped["LegalCase"] = relationship(back_populates="opinion")


class OpinionRating(TimestampMixin, Base):
    """Customer rating of a delivered opinion. One per case (enforced by unique constraint)."""
    __tablename__ = "opinion_ratings"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    case_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("legal_cases.id"), unique=True, nullable=False
    )
    practitioner_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("practitioners.id"), nullable=False
    )
    customer_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        Uuid, ForeignKey("users.id"), nullable=True
    )
    rating: Mapped[int] = mapped_column(SmallInteger, nullable=False)
    feedback: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    __table_args__ = (
        CheckConstraint("rating >= 1 AND rating <= 5", name="ck_opinion_rating_range"),
        Index("ix_opinion_ratings_practitioner_id", "practitioner_id"),
    )


class Payout(TimestampMixin, Base):
    """Settlement record for a completed case. Amounts are integer paise."""
    __tablename__ = "payouts"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    case_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("legal_cases.id"), unique=True, nullable=False
    )
    practitioner_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("practitioners.id"), nullable=False
    )
    gross_fee: Mapped[int] = mapped_column(BigInteger, nullable=False)
    commission_rate: Mapped[int] = mapped_column(Integer, nullable=False)
    commission_amount: Mapped[int] = mapped_column(BigInteger, nullable=False)
    net_amount: Mapped[int] = mapped_column(BigInteger, nullable=False)

    status: Mapped[PayoutStatus] = mapped_column(
        Enum(PayoutStatus), default=PayoutStatus.PENDING, nullable=False
    )
    payout_mode: Mapped[Optional[str]] = mapped_column(String(10), nullable=True)
    batch_id: Mapped[Optional[str]] = mapped_column(String(40), nullable=True)
    external_transaction_id: Mapped[Optional[str]] = mapped_column(
        String(100), unique=True, nullable=True
    )
    # Bumped by each operator retry; part of the gateway idempotency key
    retry_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    failure_reason: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    confirmed_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    processed_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))

    case: Mapped["LegalCase"] = relationship(back_populates="payout")

    __table_args__ = (
        CheckConstraint(
            "commission_amount + net_amount = gross_fee", name="ck_payout_split_sums"
        ),
        Index("ix_payouts_practitioner_status", "practitioner_id", "status"),
        Index("ix_payouts_status_created", "status", "created_at"),
        Index("ix_payouts_batch_id", "batch_id"),
    )


class Notification(TimestampMixin, Base):
    """In-app notification log."""
    __tablename__ = "notifications"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    user_id: Mapped[uuid.UUID] = mapped_column(Uuid, ForeignKey("users.id"), nullable=False)
    case_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        Uuid, ForeignKey("legal_cases.id"), nullable=True
    )
    type: Mapped[NotificationType] = mapped_column(Enum(NotificationType), nullable=False)
    title: Mapped[str] = mapped_column(String(255), nullable=False)
    body: Mapped[str] = mapped_column(Text, nullable=False)
    data: Mapped[Optional[dict]] = mapped_column(JSON, nullable=True)
    is_read: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    read_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))

    user: Mapped["User"] = relationship(back_populates="notifications")

    __table_args__ = (Index("ix_notifications_user_id_read", "user_id", "is_read"),)


class OperatorAuditLog(Base):
    """Immutable log of all operator actions."""
    __tablename__ = "operator_audit_logs"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    operator_id: Mapped[uuid.UUID] = mapped_column(Uuid, ForeignKey("users.id"), nullable=False)
    action: Mapped[str] = mapped_column(String(100), nullable=False)
    entity_type: Mapped[str] = mapped_column(String(50), nullable=False)
    entity_id: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    payload: Mapped[Optional[dict]] = mapped_column(JSON, nullable=True)
    ip_address: Mapped[Optional[str]] = mapped_column(String(45), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, server_default=func.now()
    )

    __table_args__ = (
        Index("ix_operator_audit_operator_id", "operator_id"),
        Index("ix_operator_audit_created_at", "created_at"),
    )
