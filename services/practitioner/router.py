"""
services/practitioner/router.py
Practitioner self-service: registration, profile, do-not-disturb, bank
accounts, expertise requests, cases, earnings, performance and payout history.
"""

from typing import Optional
from uuid import UUID

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from config.database import get_db
from services.case.service import list_cases
from services.payout.service import earnings_summary, next_payout_info, payout_history
from services.practitioner import service as registry
from services.rating.service import performance_metrics, rating_summary
from shared.middleware.auth import get_current_practitioner, get_current_user
from shared.models.models import PayoutStatus, Practitioner, User
from shared.schemas.schemas import (
    BankAccountCreateRequest,
    BankAccountResponse,
    CaseResponse,
    DndToggleRequest,
    EarningsSummaryResponse,
    ExpertiseRequestCreate,
    ExpertiseRequestResponse,
    NextPayoutResponse,
    PayoutResponse,
    PerformanceMetricsResponse,
    PractitionerRegisterRequest,
    PractitionerResponse,
    RatingSummaryResponse,
)

router = APIRouter(prefix="/practitioners", tags=["Practitioners"])


# ── Profile ───────────────────────────────────────────────────

@router.post("/register", response_model=PractitionerResponse, status_code=status.HTTP_201_CREATED)
async def register(
    data: PractitionerRegisterRequest,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """Submit (or resubmit) a profile for operator verification."""
    practitioner = await registry.register_practitioner(
        db,
        current_user,
        bar_council_number=data.bar_council_number,
        state_bar_council=data.state_bar_council,
        admission_year=data.admission_year,
        city=data.city,
    )
    await db.commit()
    return PractitionerResponse.model_validate(practitioner)


@router.get("/me", response_model=PractitionerResponse)
async def get_my_profile(practitioner: Practitioner = Depends(get_current_practitioner)):
    return PractitionerResponse.model_validate(practitioner)


@router.patch("/me/dnd", response_model=PractitionerResponse)
async def toggle_my_dnd(
    data: DndToggleRequest,
    practitioner: Practitioner = Depends(get_current_practitioner),
    db: AsyncSession = Depends(get_db),
):
    """While do-not-disturb is on the practitioner is left out of routing suggestions."""
    practitioner = await registry.set_dnd(db, practitioner.id, data.enabled)
    await db.commit()
    return PractitionerResponse.model_validate(practitioner)


@router.get("/{practitioner_id}/ratings", response_model=RatingSummaryResponse)
async def get_rating_summary(
    practitioner_id: UUID,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    return RatingSummaryResponse(**await rating_summary(db, practitioner_id))


# ── Bank Accounts ─────────────────────────────────────────────

@router.post(
    "/me/bank-accounts", response_model=BankAccountResponse, status_code=status.HTTP_201_CREATED
)
async def add_bank_account(
    data: BankAccountCreateRequest,
    practitioner: Practitioner = Depends(get_current_practitioner),
    db: AsyncSession = Depends(get_db),
):
    account = await registry.add_bank_account(
        db,
        practitioner,
        account_holder_name=data.account_holder_name,
        bank_name=data.bank_name,
        account_number=data.account_number,
        ifsc=data.ifsc,
        upi_id=data.upi_id,
    )
    await db.commit()
    return BankAccountResponse.model_validate(account)


@router.get("/me/bank-accounts", response_model=list[BankAccountResponse])
async def list_my_bank_accounts(
    practitioner: Practitioner = Depends(get_current_practitioner),
    db: AsyncSession = Depends(get_db),
):
    accounts = await registry.list_bank_accounts(db, practitioner.id)
    return [BankAccountResponse.model_validate(a) for a in accounts]


@router.post("/me/bank-accounts/{account_id}/default", response_model=BankAccountResponse)
async def make_default_bank_account(
    account_id: UUID,
    practitioner: Practitioner = Depends(get_current_practitioner),
    db: AsyncSession = Depends(get_db),
):
    account = await registry.set_default_bank_account(db, practitioner.id, account_id)
    await db.commit()
    return BankAccountResponse.model_validate(account)


# ── Work & Earnings ───────────────────────────────────────────

@router.get("/me/cases", response_model=list[CaseResponse])
async def list_my_cases(
    status_filter: Optional[str] = Query(None, alias="status"),
    page: int = Query(1, ge=1),
    page_size: int = Query(20, ge=1, le=100),
    practitioner: Practitioner = Depends(get_current_practitioner),
    db: AsyncSession = Depends(get_db),
):
    cases = await list_cases(
        db,
        practitioner_id=practitioner.id,
        status=status_filter,
        limit=page_size,
        offset=(page - 1) * page_size,
    )
    return [CaseResponse.model_validate(c) for c in cases]


@router.get("/me/earnings", response_model=EarningsSummaryResponse)
async def get_my_earnings(
    practitioner: Practitioner = Depends(get_current_practitioner),
    db: AsyncSession = Depends(get_db),
):
    return EarningsSummaryResponse(**await earnings_summary(db, practitioner.id))


@router.get("/me/payouts", response_model=list[PayoutResponse])
async def get_my_payouts(
    status_filter: Optional[PayoutStatus] = Query(None, alias="status"),
    page: int = Query(1, ge=1),
    page_size: int = Query(20, ge=1, le=100),
    practitioner: Practitioner = Depends(get_current_practitioner),
    db: AsyncSession = Depends(get_db),
):
    payouts = await payout_history(
        db,
        practitioner.id,
        status=status_filter,
        limit=page_size,
        offset=(page - 1) * page_size,
    )
    return [PayoutResponse.model_validate(p) for p in payouts]


@router.get("/me/next-payout", response_model=NextPayoutResponse)
async def get_my_next_payout(
    practitioner: Practitioner = Depends(get_current_practitioner),
    db: AsyncSession = Depends(get_db),
):
    """Amount awaiting settlement and the next settlement date (1st or 15th)."""
    return NextPayoutResponse(**await next_payout_info(db, practitioner.id))


@router.get("/me/performance", response_model=PerformanceMetricsResponse)
async def get_my_performance(
    practitioner: Practitioner = Depends(get_current_practitioner),
    db: AsyncSession = Depends(get_db),
):
    return PerformanceMetricsResponse(**await performance_metrics(db, practitioner.id))


# ── Expertise Requests ────────────────────────────────────────

@router.post(
    "/me/expertise-requests",
    response_model=ExpertiseRequestResponse,
    status_code=status.HTTP_201_CREATED,
)
async def request_expertise(
    data: ExpertiseRequestCreate,
    practitioner: Practitioner = Depends(get_current_practitioner),
    db: AsyncSession = Depends(get_db),
):
    """Ask operators to add a tag; it joins the review queue as PENDING."""
    request = await registry.request_expertise_tag(
        db, practitioner, data.requested_tag, data.supporting_doc_url
    )
    await db.commit()
    return ExpertiseRequestResponse.model_validate(request)
