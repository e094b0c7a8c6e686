"""
services/ops/router.py
Operator console: practitioner verification queue, expertise requests, registry changes,
marketplace dashboard, leaderboard and the operator audit log.

Every mutation writes an OperatorAuditLog row in the same transaction.
"""

from typing import Optional
from uuid import UUID

from fastapi import APIRouter, Depends, Query, Request
from sqlalchemy.ext.asyncio import AsyncSession

from config.database import get_db
from services.ops import service as ops
from services.practitioner import service as registry
from shared.middleware.auth import require_operator
from shared.models.models import User
from shared.schemas.schemas import (
    AuditLogResponse,
    CommissionRateUpdateRequest,
    DndToggleRequest,
    ExpertiseRequestResponse,
    ExpertiseRequestReview,
    ExpertiseUpdateRequest,
    LeaderboardEntry,
    MarketplaceDashboardResponse,
    PractitionerDetailResponse,
    PractitionerResponse,
    RatingSummaryResponse,
    RejectionRequest,
    SuspendRequest,
    VerificationReviewRequest,
)

router = APIRouter(prefix="/ops", tags=["Operator Console"])


# ── Verification Queue ────────────────────────────────────────

@router.get("/practitioners/pending")
async def get_pending_practitioners(
    page: int = Query(1, ge=1),
    page_size: int = Query(20, ge=1, le=50),
    operator: User = Depends(require_operator),
    db: AsyncSession = Depends(get_db),
):
    """Practitioners awaiting verification, oldest first."""
    items, total = await ops.pending_verifications(
        db, limit=page_size, offset=(page - 1) * page_size
    )
    return {
        "items": [PractitionerResponse.model_validate(p) for p in items],
        "total": total,
        "page": page,
        "page_size": page_size,
        "total_pages": -(-total // page_size),
    }


@router.post("/practitioners/{practitioner_id}/verify", response_model=PractitionerResponse)
async def verify_practitioner(
    practitioner_id: UUID,
    data: VerificationReviewRequest,
    request: Request,
    operator: User = Depends(require_operator),
    db: AsyncSession = Depends(get_db),
):
    practitioner = await registry.review_verification(
        db, practitioner_id, operator, approve=True, notes=data.notes
    )
    ops.record_operator_action(
        db, operator, "VERIFY_PRACTITIONER", "practitioner", practitioner.id,
        {"notes": data.notes}, request,
    )
    await db.commit()
    return PractitionerResponse.model_validate(practitioner)


@router.post("/practitioners/{practitioner_id}/reject", response_model=PractitionerResponse)
async def reject_practitioner(
    practitioner_id: UUID,
    data: RejectionRequest,
    request: Request,
    operator: User = Depends(require_operator),
    db: AsyncSession = Depends(get_db),
):
    practitioner = await registry.review_verification(
        db, practitioner_id, operator, approve=False, notes=data.reason
    )
    ops.record_operator_action(
        db, operator, "REJECT_PRACTITIONER", "practitioner", practitioner.id,
        {"reason": data.reason}, request,
    )
    await db.commit()
    return PractitionerResponse.model_validate(practitioner)


# ── Expertise Requests ────────────────────────────────────────

@router.get("/expertise-requests/pending", response_model=list[ExpertiseRequestResponse])
async def get_pending_expertise_requests(
    operator: User = Depends(require_operator),
    db: AsyncSession = Depends(get_db),
):
    """Tag requests awaiting review, oldest first."""
    requests = await registry.pending_expertise_requests(db)
    return [ExpertiseRequestResponse.model_validate(r) for r in requests]


@router.post("/expertise-requests/{request_id}/review", response_model=ExpertiseRequestResponse)
async def review_expertise_request(
    request_id: UUID,
    data: ExpertiseRequestReview,
    request: Request,
    operator: User = Depends(require_operator),
    db: AsyncSession = Depends(get_db),
):
    """Approving adds the tag to the practitioner; rejecting needs a reason."""
    expertise_request = await registry.review_expertise_request(
        db, request_id, operator,
        approve=data.action == "approve",
        rejection_reason=data.rejection_reason,
    )
    ops.record_operator_action(
        db, operator, f"{data.action.upper()}_EXPERTISE_REQUEST", "expertise_request",
        expertise_request.id,
        {"tag": expertise_request.requested_tag.value, "reason": data.rejection_reason}, request,
    )
    await db.commit()
    return ExpertiseRequestResponse.model_validate(expertise_request)


# ── Registry Changes ──────────────────────────────────────────

@router.put("/practitioners/{practitioner_id}/expertise", response_model=PractitionerResponse)
async def set_expertise(
    practitioner_id: UUID,
    data: ExpertiseUpdateRequest,
    request: Request,
    operator: User = Depends(require_operator),
    db: AsyncSession = Depends(get_db),
):
    practitioner = await registry.assign_expertise(db, practitioner_id, data.tags)
    ops.record_operator_action(
        db, operator, "ASSIGN_EXPERTISE", "practitioner", practitioner.id,
        {"tags": practitioner.expertise_tags}, request,
    )
    await db.commit()
    return PractitionerResponse.model_validate(practitioner)


@router.patch("/practitioners/{practitioner_id}/commission", response_model=PractitionerResponse)
async def set_commission_rate(
    practitioner_id: UUID,
    data: CommissionRateUpdateRequest,
    request: Request,
    operator: User = Depends(require_operator),
    db: AsyncSession = Depends(get_db),
):
    """New rate applies to cases created from now on."""
    practitioner = await registry.update_commission_rate(db, practitioner_id, data.commission_rate)
    ops.record_operator_action(
        db, operator, "UPDATE_COMMISSION", "practitioner", practitioner.id,
        {"commission_rate": data.commission_rate, "tier": practitioner.tier.value}, request,
    )
    await db.commit()
    return PractitionerResponse.model_validate(practitioner)


@router.post("/practitioners/{practitioner_id}/suspend", response_model=PractitionerResponse)
async def suspend_practitioner(
    practitioner_id: UUID,
    data: SuspendRequest,
    request: Request,
    operator: User = Depends(require_operator),
    db: AsyncSession = Depends(get_db),
):
    practitioner = await registry.suspend_practitioner(db, practitioner_id, data.reason)
    ops.record_operator_action(
        db, operator, "SUSPEND_PRACTITIONER", "practitioner", practitioner.id,
        {"reason": data.reason}, request,
    )
    await db.commit()
    return PractitionerResponse.model_validate(practitioner)


@router.post("/practitioners/{practitioner_id}/reinstate", response_model=PractitionerResponse)
async def reinstate_practitioner(
    practitioner_id: UUID,
    request: Request,
    operator: User = Depends(require_operator),
    db: AsyncSession = Depends(get_db),
):
    practitioner = await registry.reinstate_practitioner(db, practitioner_id)
    ops.record_operator_action(
        db, operator, "REINSTATE_PRACTITIONER", "practitioner", practitioner.id, request=request
    )
    await db.commit()
    return PractitionerResponse.model_validate(practitioner)


@router.patch("/practitioners/{practitioner_id}/dnd", response_model=PractitionerResponse)
async def set_practitioner_dnd(
    practitioner_id: UUID,
    data: DndToggleRequest,
    request: Request,
    operator: User = Depends(require_operator),
    db: AsyncSession = Depends(get_db),
):
    practitioner = await registry.set_dnd(db, practitioner_id, data.enabled)
    ops.record_operator_action(
        db, operator, "TOGGLE_DND", "practitioner", practitioner.id,
        {"enabled": data.enabled}, request,
    )
    await db.commit()
    return PractitionerResponse.model_validate(practitioner)


@router.get("/practitioners/{practitioner_id}", response_model=PractitionerDetailResponse)
async def get_practitioner_detail(
    practitioner_id: UUID,
    operator: User = Depends(require_operator),
    db: AsyncSession = Depends(get_db),
):
    detail = await ops.practitioner_detail(db, practitioner_id)
    return PractitionerDetailResponse(
        practitioner=PractitionerResponse.model_validate(detail["practitioner"]),
        active_case_count=detail["active_case_count"],
        acceptance_rate=detail["acceptance_rate"],
        decline_rate=detail["decline_rate"],
        decline_reasons=detail["decline_reasons"],
        rating_summary=RatingSummaryResponse(**detail["rating_summary"]),
    )


# ── Marketplace ───────────────────────────────────────────────

@router.get("/dashboard", response_model=MarketplaceDashboardResponse)
async def get_dashboard(
    operator: User = Depends(require_operator),
    db: AsyncSession = Depends(get_db),
):
    return MarketplaceDashboardResponse(**await ops.marketplace_dashboard(db))


@router.get("/leaderboard", response_model=list[LeaderboardEntry])
async def get_leaderboard(
    city: Optional[str] = None,
    limit: int = Query(10, ge=1, le=100),
    operator: User = Depends(require_operator),
    db: AsyncSession = Depends(get_db),
):
    return [LeaderboardEntry(**row) for row in await ops.leaderboard(db, city=city, limit=limit)]


@router.get("/audit-logs", response_model=list[AuditLogResponse])
async def get_audit_logs(
    action: Optional[str] = None,
    entity_type: Optional[str] = None,
    page: int = Query(1, ge=1),
    page_size: int = Query(50, ge=1, le=200),
    operator: User = Depends(require_operator),
    db: AsyncSession = Depends(get_db),
):
    logs = await ops.audit_logs(
        db, action=action, entity_type=entity_type,
        limit=page_size, offset=(page - 1) * page_size,
    )
    return [AuditLogResponse.model_validate(log) for log in logs]
