"""
services/practitioner/service.py
Practitioner Registry: profile lifecycle, expertise, commission tier,
availability and bank accounts. The decline tracker and reputation engine
write their counters back into these rows.
"""

import logging
import uuid
from datetime import datetime, timezone
from typing import Iterable, Optional

from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from config.settings import settings
from services.notification.service import notify
from shared.errors.errors import (
    AlreadyReviewed,
    AlreadyVerified,
    ExpertiseRequestNotFound,
    HasActiveCases,
    InvalidStatus,
    NotFound,
    PractitionerNotFound,
    PractitionerNotVerified,
    RateOutOfBounds,
    ReasonRequired,
)
from shared.models.models import (
    ACTIVE_CASE_STATUSES,
    BankAccount,
    ExpertiseRequestStatus,
    ExpertiseTag,
    LegalCase,
    NotificationType,
    Practitioner,
    PractitionerExpertise,
    PractitionerExpertiseRequest,
    PractitionerTier,
    User,
    UserRole,
    VerificationStatus,
)
from shared.utils.security import encrypt_account_number, mask_account_number

logger = logging.getLogger(__name__)


# ── Tier & Rate ───────────────────────────────────────────────

def derive_tier(commission_rate: int) -> PractitionerTier:
    """Lower commission → preferred tier."""
    if commission_rate <= settings.PREFERRED_TIER_MAX_RATE:
        return PractitionerTier.PREFERRED
    return PractitionerTier.STANDARD


def validate_commission_rate(commission_rate: int) -> int:
    if not settings.COMMISSION_RATE_MIN <= commission_rate <= settings.COMMISSION_RATE_MAX:
        raise RateOutOfBounds(
            f"Commission rate must be between {settings.COMMISSION_RATE_MIN} "
            f"and {settings.COMMISSION_RATE_MAX}, got {commission_rate}"
        )
    return commission_rate


# ── Lookups ───────────────────────────────────────────────────

async def get_practitioner_or_404(
    db: AsyncSession, practitioner_id: uuid.UUID, for_update: bool = False
) -> Practitioner:
    query = select(Practitioner).where(Practitioner.id == practitioner_id)
    if for_update:
        query = query.with_for_update(of=Practitioner)
    result = await db.execute(query)
    practitioner = result.scalar_one_or_none()
    if not practitioner:
        raise PractitionerNotFound()
    return practitioner


async def get_verified_practitioner(db: AsyncSession, practitioner_id: uuid.UUID) -> Practitioner:
    practitioner = await get_practitioner_or_404(db, practitioner_id)
    if practitioner.verification_status != VerificationStatus.VERIFIED:
        raise PractitionerNotVerified(
            f"Practitioner is {practitioner.verification_status.value}, not VERIFIED"
        )
    return practitioner


async def count_active_cases(db: AsyncSession, practitioner_id: uuid.UUID) -> int:
    count = await db.scalar(
        select(func.count(LegalCase.id)).where(
            LegalCase.practitioner_id == practitioner_id,
            LegalCase.status.in_(ACTIVE_CASE_STATUSES),
        )
    )
    return count or 0


# ── Registration & Verification ───────────────────────────────

async def register_practitioner(
    db: AsyncSession,
    user: User,
    bar_council_number: str,
    state_bar_council: str,
    admission_year: int,
    city: str,
) -> Practitioner:
    """
    Create a PENDING profile, or resubmit a rejected/pending one.
    Verified and suspended profiles can't be resubmitted.
    """
    result = await db.execute(select(Practitioner).where(Practitioner.user_id == user.id))
    practitioner = result.scalar_one_or_none()

    if practitioner is None:
        practitioner = Practitioner(
            user_id=user.id,
            commission_rate=settings.DEFAULT_COMMISSION_RATE,
            tier=derive_tier(settings.DEFAULT_COMMISSION_RATE),
            bar_council_number=bar_council_number,
            state_bar_council=state_bar_council,
            admission_year=admission_year,
            city=city,
        )
        db.add(practitioner)
    elif practitioner.verification_status == VerificationStatus.VERIFIED:
        raise AlreadyVerified()
    elif practitioner.verification_status == VerificationStatus.SUSPENDED:
        raise InvalidStatus("Suspended practitioners can't resubmit their profile")
    else:
        practitioner.bar_council_number = bar_council_number
        practitioner.state_bar_council = state_bar_council
        practitioner.admission_year = admission_year
        practitioner.city = city
        practitioner.verification_status = VerificationStatus.PENDING
        practitioner.verification_notes = None

    if user.role != UserRole.PRACTITIONER:
        user.role = UserRole.PRACTITIONER

    await db.flush()
    await db.refresh(practitioner)
    logger.info("Practitioner profile %s submitted for verification", practitioner.id)
    return practitioner


async def review_verification(
    db: AsyncSession,
    practitioner_id: uuid.UUID,
    operator: User,
    approve: bool,
    notes: Optional[str] = None,
) -> Practitioner:
    practitioner = await get_practitioner_or_404(db, practitioner_id)
    if practitioner.verification_status == VerificationStatus.VERIFIED:
        raise AlreadyVerified()
    if practitioner.verification_status != VerificationStatus.PENDING:
        raise InvalidStatus(
            f"Only PENDING profiles can be reviewed, this one is {practitioner.verification_status.value}"
        )

    if approve:
        practitioner.verification_status = VerificationStatus.VERIFIED
        practitioner.verified_at = datetime.now(timezone.utc)
        practitioner.verified_by_id = operator.id
        notify(db, practitioner.user_id, NotificationType.ACCOUNT_VERIFIED)
    else:
        practitioner.verification_status = VerificationStatus.REJECTED
    practitioner.verification_notes = notes

    await db.flush()
    logger.info(
        "Practitioner %s %s by operator %s",
        practitioner.id, practitioner.verification_status.value, operator.id,
    )
    return practitioner


# ── Operator Mutations ────────────────────────────────────────

async def assign_expertise(
    db: AsyncSession, practitioner_id: uuid.UUID, tags: Iterable[str]
) -> Practitioner:
    """Replace the practitioner's ordered tag set. Duplicates are dropped, first position wins."""
    practitioner = await get_verified_practitioner(db, practitioner_id)

    ordered: list[ExpertiseTag] = []
    for tag in tags:
        tag = ExpertiseTag(tag)
        if tag not in ordered:
            ordered.append(tag)

    practitioner.expertise.clear()
    await db.flush()
    practitioner.expertise.extend(
        PractitionerExpertise(tag=tag, position=i) for i, tag in enumerate(ordered)
    )
    await db.flush()
    return practitioner


# ── Expertise Requests ────────────────────────────────────────

async def request_expertise_tag(
    db: AsyncSession,
    practitioner: Practitioner,
    requested_tag: str,
    supporting_doc_url: Optional[str] = None,
) -> PractitionerExpertiseRequest:
    request = PractitionerExpertiseRequest(
        practitioner_id=practitioner.id,
        requested_tag=ExpertiseTag(requested_tag),
        supporting_doc_url=supporting_doc_url,
    )
    db.add(request)
    await db.flush()
    await db.refresh(request)
    logger.info("Practitioner %s requested expertise %s", practitioner.id, request.requested_tag.value)
    return request


async def pending_expertise_requests(db: AsyncSession) -> list[PractitionerExpertiseRequest]:
    """Oldest first."""
    result = await db.scalars(
        select(PractitionerExpertiseRequest)
        .where(PractitionerExpertiseRequest.status == ExpertiseRequestStatus.PENDING)
        .order_by(PractitionerExpertiseRequest.created_at.asc())
    )
    return list(result.all())


async def review_expertise_request(
    db: AsyncSession,
    request_id: uuid.UUID,
    operator: User,
    approve: bool,
    rejection_reason: Optional[str] = None,
) -> PractitionerExpertiseRequest:
    """
    Approve or reject a PENDING request. Approval adds the tag after the
    practitioner's existing ones; a tag they already hold is left where it is.
    """
    request = await db.scalar(
        select(PractitionerExpertiseRequest).where(PractitionerExpertiseRequest.id == request_id)
    )
    if not request:
        raise ExpertiseRequestNotFound()
    if not approve and not (rejection_reason or "").strip():
        raise ReasonRequired("A rejection reason is required")

    target = ExpertiseRequestStatus.APPROVED if approve else ExpertiseRequestStatus.REJECTED
    result = await db.execute(
        update(PractitionerExpertiseRequest)
        .where(
            PractitionerExpertiseRequest.id == request.id,
            PractitionerExpertiseRequest.status == ExpertiseRequestStatus.PENDING,
        )
        .values(
            status=target,
            reviewed_by_id=operator.id,
            reviewed_at=datetime.now(timezone.utc),
            rejection_reason=None if approve else rejection_reason.strip(),
        )
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        raise AlreadyReviewed("Expertise request has already been reviewed")

    if approve:
        practitioner = await get_practitioner_or_404(db, request.practitioner_id)
        if request.requested_tag not in [e.tag for e in practitioner.expertise]:
            practitioner.expertise.append(
                PractitionerExpertise(
                    tag=request.requested_tag,
                    position=max((e.position for e in practitioner.expertise), default=-1) + 1,
                )
            )

    await db.flush()
    await db.refresh(request)
    logger.info(
        "Expertise request %s (%s) %s by operator %s",
        request.id, request.requested_tag.value, target.value, operator.id,
    )
    return request


async def update_commission_rate(
    db: AsyncSession, practitioner_id: uuid.UUID, commission_rate: int
) -> Practitioner:
    """Existing cases keep the rate snapshotted when they were created."""
    validate_commission_rate(commission_rate)
    practitioner = await get_practitioner_or_404(db, practitioner_id)
    practitioner.commission_rate = commission_rate
    practitioner.tier = derive_tier(commission_rate)
    await db.flush()
    logger.info(
        "Practitioner %s commission rate set to %s%% (%s)",
        practitioner.id, commission_rate, practitioner.tier.value,
    )
    return practitioner


async def suspend_practitioner(
    db: AsyncSession, practitioner_id: uuid.UUID, reason: str
) -> Practitioner:
    practitioner = await get_practitioner_or_404(db, practitioner_id, for_update=True)
    if practitioner.verification_status == VerificationStatus.SUSPENDED:
        raise InvalidStatus("Practitioner is already suspended")

    active = await count_active_cases(db, practitioner.id)
    if active:
        raise HasActiveCases(f"Practitioner has {active} active case(s); reassign them first")

    practitioner.verification_status = VerificationStatus.SUSPENDED
    practitioner.verification_notes = reason
    await db.flush()
    logger.warning("Practitioner %s suspended: %s", practitioner.id, reason)
    return practitioner


async def reinstate_practitioner(db: AsyncSession, practitioner_id: uuid.UUID) -> Practitioner:
    practitioner = await get_practitioner_or_404(db, practitioner_id)
    if practitioner.verification_status != VerificationStatus.SUSPENDED:
        raise InvalidStatus("Only suspended practitioners can be reinstated")
    practitioner.verification_status = VerificationStatus.VERIFIED
    practitioner.verification_notes = None
    await db.flush()
    return practitioner


async def set_dnd(db: AsyncSession, practitioner_id: uuid.UUID, enabled: bool) -> Practitioner:
    practitioner = await get_practitioner_or_404(db, practitioner_id)
    practitioner.dnd_enabled = enabled
    await db.flush()
    return practitioner


# ── Bank Accounts ─────────────────────────────────────────────

async def add_bank_account(
    db: AsyncSession,
    practitioner: Practitioner,
    account_holder_name: str,
    bank_name: str,
    account_number: str,
    ifsc: str,
    upi_id: Optional[str] = None,
) -> BankAccount:
    """The first account a practitioner adds becomes the default."""
    existing = await db.scalar(
        select(func.count(BankAccount.id)).where(BankAccount.practitioner_id == practitioner.id)
    )
    account = BankAccount(
        practitioner_id=practitioner.id,
        account_holder_name=account_holder_name,
        bank_name=bank_name,
        ifsc=ifsc.upper(),
        account_number_masked=mask_account_number(account_number),
        account_number_encrypted=encrypt_account_number(account_number),
        upi_id=upi_id,
        is_default=not existing,
    )
    db.add(account)
    await db.flush()
    return account


async def list_bank_accounts(db: AsyncSession, practitioner_id: uuid.UUID) -> list[BankAccount]:
    result = await db.execute(
        select(BankAccount)
        .where(BankAccount.practitioner_id == practitioner_id)
        .order_by(BankAccount.is_default.desc(), BankAccount.created_at)
    )
    return list(result.scalars())


async def set_default_bank_account(
    db: AsyncSession, practitioner_id: uuid.UUID, account_id: uuid.UUID
) -> BankAccount:
    account = await db.scalar(
        select(BankAccount).where(
            BankAccount.id == account_id, BankAccount.practitioner_id == practitioner_id
        )
    )
    if not account:
        raise NotFound("Bank account not found")

    # Clear first so the one-default index never sees two rows
    await db.execute(
        update(BankAccount)
        .where(BankAccount.practitioner_id == practitioner_id, BankAccount.id != account_id)
        .values(is_default=False)
        .execution_options(synchronize_session=False)
    )
    await db.flush()
    account.is_default = True
    await db.flush()
    return account


async def get_default_bank_account(
    db: AsyncSession, practitioner_id: uuid.UUID
) -> Optional[BankAccount]:
    return await db.scalar(
        select(BankAccount).where(
            BankAccount.practitioner_id == practitioner_id, BankAccount.is_default == True
        )
    )
