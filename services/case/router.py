"""
services/case/router.py
Case endpoints: operator assignment and reassignment, practitioner
accept/decline, completion and case details.
"""

import logging
from datetime import timedelta
from typing import Optional
from uuid import UUID

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from config.database import get_db
from config.settings import settings
from services.case import service as cases
from services.practitioner.service import get_practitioner_or_404
from shared.errors.errors import NotAssigned, NotCaseCustomer
from shared.middleware.auth import get_current_practitioner, get_current_user, require_operator
from shared.models.models import CaseStatus, LegalCase, Practitioner, User, UserRole
from shared.schemas.schemas import (
    CaseCreateRequest,
    CaseDeclineRequest,
    CaseDetailResponse,
    CaseReassignRequest,
    CaseResponse,
    DeclineResponse,
    PayoutResponse,
)
from tasks.case_tasks import check_case_acceptance_timeout

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/cases", tags=["Cases"])


def _schedule_acceptance_check(case: LegalCase) -> None:
    """Queue the reminder that fires if the practitioner hasn't responded in time."""
    try:
        check_case_acceptance_timeout.apply_async(
            args=[str(case.id), str(case.practitioner_id)],
            countdown=int(timedelta(hours=settings.CASE_ACCEPTANCE_TIMEOUT_HOURS).total_seconds()),
        )
    except Exception:
        # The case itself is already committed; only the reminder is lost
        logger.exception("Could not schedule acceptance check for case %s", case.case_number)


async def _ensure_can_view(db: AsyncSession, case: LegalCase, user: User) -> None:
    if user.role == UserRole.OPERATOR or case.customer_id == user.id:
        return
    if user.role == UserRole.PRACTITIONER:
        practitioner = await get_practitioner_or_404(db, case.practitioner_id)
        if practitioner.user_id == user.id:
            return
        raise NotAssigned()
    raise NotCaseCustomer()


# ── Operator ──────────────────────────────────────────────────

@router.post("", response_model=CaseResponse, status_code=status.HTTP_201_CREATED)
async def create_case(
    data: CaseCreateRequest,
    operator: User = Depends(require_operator),
    db: AsyncSession = Depends(get_db),
):
    """Assign a case to a verified practitioner (usually one picked from /routing/suggestions)."""
    case = await cases.create_case(
        db,
        assigned_by=operator,
        practitioner_id=data.practitioner_id,
        required_expertise=data.required_expertise,
        fee_amount=data.fee_amount,
        priority=data.priority,
        customer_id=data.customer_id,
        service_request_id=data.service_request_id,
        city=data.city,
        issue_summary=data.issue_summary,
    )
    await db.commit()
    _schedule_acceptance_check(case)
    return CaseResponse.model_validate(case)


@router.post("/{case_id}/reassign", response_model=CaseResponse)
async def reassign_case(
    case_id: UUID,
    data: CaseReassignRequest,
    operator: User = Depends(require_operator),
    db: AsyncSession = Depends(get_db),
):
    case = await cases.reassign_case(
        db, case_id, data.practitioner_id, operator, reason=data.reason
    )
    await db.commit()
    _schedule_acceptance_check(case)
    return CaseResponse.model_validate(case)


@router.post("/{case_id}/complete")
async def complete_case(
    case_id: UUID,
    operator: User = Depends(require_operator),
    db: AsyncSession = Depends(get_db),
):
    """Close a delivered case. The payout is created in the same transaction."""
    case, payout = await cases.complete_case(db, case_id, operator)
    await db.commit()
    return {
        "case": CaseResponse.model_validate(case),
        "payout": PayoutResponse.model_validate(payout),
    }


@router.get("", response_model=list[CaseResponse])
async def list_cases(
    practitioner_id: Optional[UUID] = None,
    customer_id: Optional[UUID] = None,
    status_filter: Optional[CaseStatus] = Query(None, alias="status"),
    page: int = Query(1, ge=1),
    page_size: int = Query(20, ge=1, le=100),
    operator: User = Depends(require_operator),
    db: AsyncSession = Depends(get_db),
):
    results = await cases.list_cases(
        db,
        practitioner_id=practitioner_id,
        customer_id=customer_id,
        status=status_filter,
        limit=page_size,
        offset=(page - 1) * page_size,
    )
    return [CaseResponse.model_validate(c) for c in results]


# ── Practitioner ──────────────────────────────────────────────

@router.post("/{case_id}/accept", response_model=CaseResponse)
async def accept_case(
    case_id: UUID,
    practitioner: Practitioner = Depends(get_current_practitioner),
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    case = await cases.accept_case(db, case_id, practitioner, current_user)
    await db.commit()
    return CaseResponse.model_validate(case)


@router.post("/{case_id}/decline", response_model=DeclineResponse)
async def decline_case(
    case_id: UUID,
    data: CaseDeclineRequest,
    practitioner: Practitioner = Depends(get_current_practitioner),
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    case, outcome = await cases.decline_case(
        db, case_id, practitioner, data.full_reason, current_user
    )
    await db.commit()
    return DeclineResponse(
        case=CaseResponse.model_validate(case),
        decline_count=outcome.decline_count,
        decline_rate=outcome.decline_rate,
        flagged=outcome.flagged,
    )


# ── Details ───────────────────────────────────────────────────

@router.get("/{case_id}", response_model=CaseDetailResponse)
async def get_case(
    case_id: UUID,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """Case with its fee breakdown. Visible to the operator, the assignee and the customer."""
    details = await cases.get_case_details(db, case_id)
    await _ensure_can_view(db, details["case"], current_user)
    base = CaseResponse.model_validate(details["case"]).model_dump()
    return CaseDetailResponse(
        **base,
        fee_breakdown=details["fee_breakdown"],
        has_opinion=details["has_opinion"],
    )
