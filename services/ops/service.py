"""
services/ops/service.py
Read-side queries for the operator console and the operator audit trail.
"""

import uuid
from datetime import datetime, timezone
from typing import Optional

from fastapi import Request
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from services.case.decline import decline_rate
from services.practitioner.service import count_active_cases, get_practitioner_or_404
from services.rating.service import rating_summary
from shared.models.models import (
    CaseAuditLog,
    CaseStatus,
    LegalCase,
    OperatorAuditLog,
    Payout,
    PayoutStatus,
    Practitioner,
    User,
    VerificationStatus,
)


def record_operator_action(
    db: AsyncSession,
    operator: User,
    action: str,
    entity_type: str,
    entity_id,
    payload: Optional[dict] = None,
    request: Optional[Request] = None,
) -> None:
    """Append an immutable row to the operator audit log."""
    db.add(
        OperatorAuditLog(
            operator_id=operator.id,
            action=action,
            entity_type=entity_type,
            entity_id=str(entity_id) if entity_id is not None else None,
            payload=payload or {},
            ip_address=request.client.host if request and request.client else None,
        )
    )


async def pending_verifications(
    db: AsyncSession, limit: int = 20, offset: int = 0
) -> tuple[list[Practitioner], int]:
    """Oldest applications first."""
    query = select(Practitioner).where(
        Practitioner.verification_status == VerificationStatus.PENDING
    )
    total = await db.scalar(select(func.count()).select_from(query.subquery()))
    rows = await db.scalars(query.order_by(Practitioner.created_at.asc()).offset(offset).limit(limit))
    return list(rows.unique().all()), total or 0


async def marketplace_dashboard(db: AsyncSession, now: Optional[datetime] = None) -> dict:
    now = now or datetime.now(timezone.utc)
    month_start = now.replace(day=1, hour=0, minute=0, second=0, microsecond=0)

    by_status = dict(
        (await db.execute(
            select(LegalCase.status, func.count(LegalCase.id)).group_by(LegalCase.status)
        )).all()
    )
    completed_this_month = await db.scalar(
        select(func.count(LegalCase.id)).where(
            LegalCase.status == CaseStatus.COMPLETED, LegalCase.completed_at >= month_start
        )
    )
    pending_verifications_count = await db.scalar(
        select(func.count(Practitioner.id)).where(
            Practitioner.verification_status == VerificationStatus.PENDING
        )
    )
    payouts_pending = await db.scalar(
        select(func.count(Payout.id)).where(
            Payout.status.in_((PayoutStatus.PENDING, PayoutStatus.CONFIRMED))
        )
    )
    return {
        "assigned": by_status.get(CaseStatus.ASSIGNED, 0),
        "in_progress": by_status.get(CaseStatus.IN_PROGRESS, 0),
        "awaiting_review": by_status.get(CaseStatus.OPINION_SUBMITTED, 0),
        "completed_this_month": completed_this_month or 0,
        "pending_verifications": pending_verifications_count or 0,
        "payouts_pending": payouts_pending or 0,
    }


async def leaderboard(db: AsyncSession, city: Optional[str] = None, limit: int = 10) -> list[dict]:
    query = select(Practitioner).where(
        Practitioner.verification_status == VerificationStatus.VERIFIED
    )
    if city:
        query = query.where(func.lower(Practitioner.city) == city.strip().lower())
    query = query.order_by(
        Practitioner.completed_case_count.desc(), Practitioner.rating_avg.desc()
    ).limit(limit)
    return [
        {
            "practitioner_id": p.id,
            "name": p.display_name,
            "city": p.city,
            "completed_case_count": p.completed_case_count,
            "rating_avg": float(p.rating_avg or 0),
            "tier": p.tier.value,
        }
        for p in (await db.scalars(query)).unique().all()
    ]


def _reason_category(reason: Optional[str]) -> str:
    # Free text after "Other:" is grouped under "Other"
    if not reason:
        return "Unspecified"
    return reason.split(":", 1)[0].strip()


async def practitioner_detail(db: AsyncSession, practitioner_id: uuid.UUID) -> dict:
    """Profile plus acceptance and decline behaviour, derived from the case audit trail."""
    practitioner = await get_practitioner_or_404(db, practitioner_id)
    await db.refresh(practitioner)

    responses = await db.execute(
        select(CaseAuditLog.to_status, CaseAuditLog.reason).where(
            CaseAuditLog.changed_by_id == practitioner.user_id,
            CaseAuditLog.from_status == CaseStatus.ASSIGNED.value,
            CaseAuditLog.to_status.in_((CaseStatus.IN_PROGRESS.value, CaseStatus.REASSIGNED.value)),
        )
    )
    accepted = 0
    decline_reasons: dict[str, int] = {}
    for to_status, reason in responses.all():
        if to_status == CaseStatus.IN_PROGRESS.value:
            accepted += 1
        else:
            category = _reason_category(reason)
            decline_reasons[category] = decline_reasons.get(category, 0) + 1

    total = practitioner.total_assignment_count
    return {
        "practitioner": practitioner,
        "active_case_count": await count_active_cases(db, practitioner.id),
        "acceptance_rate": accepted / max(total, 1),
        "decline_rate": decline_rate(practitioner.decline_count, total),
        "decline_reasons": decline_reasons,
        "rating_summary": await rating_summary(db, practitioner.id),
    }


async def audit_logs(
    db: AsyncSession,
    action: Optional[str] = None,
    entity_type: Optional[str] = None,
    limit: int = 50,
    offset: int = 0,
) -> list[OperatorAuditLog]:
    query = select(OperatorAuditLog)
    if action:
        query = query.where(OperatorAuditLog.action == action)
    if entity_type:
        query = query.where(OperatorAuditLog.entity_type == entity_type)
    query = query.order_by(OperatorAuditLog.created_at.desc()).offset(offset).limit(limit)
    return list((await db.scalars(query)).all())
