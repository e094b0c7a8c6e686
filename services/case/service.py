"""
services/case/service.py
Case Lifecycle. Every transition is checked against services.case.lifecycle
and written as a compare-and-swap on the status that was read; if another
request got there first the loser gets StaleState instead of overwriting.
"""

import logging
import random
import string
import uuid
from datetime import datetime, timedelta, timezone
from typing import Optional

from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from config.settings import settings
from services.case.decline import DeclineOutcome, record_decline
from services.case.lifecycle import CaseAction, next_status
from services.notification.service import notify
from services.payout.service import compute_split, create_payout_for_case
from services.practitioner.service import get_verified_practitioner
from shared.errors.errors import CaseNotFound, NotAssigned, ReasonRequired, StaleState
from shared.models.models import (
    CaseAuditLog,
    CasePriority,
    CaseStatus,
    ExpertiseTag,
    LegalCase,
    LegalOpinion,
    NotificationType,
    Payout,
    Practitioner,
    User,
)

logger = logging.getLogger(__name__)


# ── Helpers ───────────────────────────────────────────────────

def generate_case_number(now: Optional[datetime] = None) -> str:
    """LC-<epoch millis>-<4 uppercase alphanumerics>, e.g. LC-1760659200000-X7K9."""
    now = now or datetime.now(timezone.utc)
    suffix = "".join(random.choices(string.ascii_uppercase + string.digits, k=4))
    return f"LC-{int(now.timestamp() * 1000)}-{suffix}"


def compute_deadline(priority: CasePriority, now: datetime) -> datetime:
    days = (
        settings.CASE_DEADLINE_DAYS_URGENT
        if CasePriority(priority) == CasePriority.URGENT
        else settings.CASE_DEADLINE_DAYS_NORMAL
    )
    return now + timedelta(days=days)


async def get_case_or_404(db: AsyncSession, case_id: uuid.UUID) -> LegalCase:
    case = await db.scalar(select(LegalCase).where(LegalCase.id == case_id))
    if not case:
        raise CaseNotFound()
    return case


def ensure_assigned(case: LegalCase, practitioner: Practitioner) -> None:
    if case.practitioner_id != practitioner.id:
        raise NotAssigned()


async def transition_case(
    db: AsyncSession,
    case: LegalCase,
    action: CaseAction,
    changed_by: Optional[User],
    values: Optional[dict] = None,
    expected_practitioner_id: Optional[uuid.UUID] = None,
    reason: Optional[str] = None,
    metadata: Optional[dict] = None,
) -> CaseStatus:
    """
    Apply `action` to `case`: table check, conditional UPDATE, audit row.
    Raises InvalidStatus for a disallowed move and StaleState when the
    row changed between read and write.
    """
    from_status = case.status
    target = next_status(action, from_status)

    stmt = update(LegalCase).where(LegalCase.id == case.id, LegalCase.status == from_status)
    if expected_practitioner_id is not None:
        stmt = stmt.where(LegalCase.practitioner_id == expected_practitioner_id)
    result = await db.execute(
        stmt.values(status=target, **(values or {})).execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        raise StaleState(f"Case {case.case_number} changed while {action.value.lower()} was in flight")

    db.add(
        CaseAuditLog(
            case_id=case.id,
            from_status=from_status.value,
            to_status=target.value,
            changed_by_id=changed_by.id if changed_by else None,
            reason=reason,
            audit_metadata=metadata,
        )
    )
    await db.flush()
    await db.refresh(case)
    logger.info("Case %s %s → %s", case.case_number, from_status.value, target.value)
    return target


async def _bump_assignment_count(db: AsyncSession, practitioner_id: uuid.UUID) -> None:
    await db.execute(
        update(Practitioner)
        .where(Practitioner.id == practitioner_id)
        .values(total_assignment_count=Practitioner.total_assignment_count + 1)
        .execution_options(synchronize_session=False)
    )


def _notify_assignment(db: AsyncSession, case: LegalCase, practitioner: Practitioner) -> None:
    notify(
        db,
        practitioner.user_id,
        NotificationType.CASE_ASSIGNED,
        {
            "case_number": case.case_number,
            "timeout_hours": settings.CASE_ACCEPTANCE_TIMEOUT_HOURS,
        },
        case_id=case.id,
    )


# ── Create ────────────────────────────────────────────────────

async def create_case(
    db: AsyncSession,
    assigned_by: Optional[User],
    practitioner_id: uuid.UUID,
    required_expertise: str,
    fee_amount: int,
    priority: str = CasePriority.NORMAL,
    customer_id: Optional[uuid.UUID] = None,
    service_request_id: Optional[str] = None,
    city: Optional[str] = None,
    issue_summary: Optional[str] = None,
    now: Optional[datetime] = None,
) -> LegalCase:
    """Assign a new case. The practitioner's current commission rate is copied onto the case."""
    now = now or datetime.now(timezone.utc)
    practitioner = await get_verified_practitioner(db, practitioner_id)
    priority = CasePriority(priority)

    case = LegalCase(
        case_number=generate_case_number(now),
        service_request_id=service_request_id,
        practitioner_id=practitioner.id,
        customer_id=customer_id,
        assigned_by_id=assigned_by.id if assigned_by else None,
        required_expertise=ExpertiseTag(required_expertise),
        city=city or practitioner.city,
        issue_summary=issue_summary,
        priority=priority,
        status=CaseStatus.ASSIGNED,
        fee_amount=fee_amount,
        commission_rate=practitioner.commission_rate,
        deadline_at=compute_deadline(priority, now),
        assigned_at=now,
    )
    db.add(case)
    await db.flush()

    await _bump_assignment_count(db, practitioner.id)
    db.add(
        CaseAuditLog(
            case_id=case.id,
            from_status=None,
            to_status=CaseStatus.ASSIGNED.value,
            changed_by_id=assigned_by.id if assigned_by else None,
        )
    )
    _notify_assignment(db, case, practitioner)
    await db.flush()

    logger.info(
        "Case %s assigned to practitioner %s (%s, fee=%s, rate=%s%%)",
        case.case_number, practitioner.id, priority.value, fee_amount, case.commission_rate,
    )
    return case


# ── Practitioner Actions ──────────────────────────────────────

async def accept_case(
    db: AsyncSession, case_id: uuid.UUID, practitioner: Practitioner, actor: User
) -> LegalCase:
    case = await get_case_or_404(db, case_id)
    ensure_assigned(case, practitioner)
    await transition_case(
        db,
        case,
        CaseAction.ACCEPT,
        actor,
        values={"accepted_at": datetime.now(timezone.utc)},
        expected_practitioner_id=practitioner.id,
    )
    return case


async def decline_case(
    db: AsyncSession,
    case_id: uuid.UUID,
    practitioner: Practitioner,
    reason: str,
    actor: User,
) -> tuple[LegalCase, DeclineOutcome]:
    """Status change and decline counter commit together."""
    if not reason or not reason.strip():
        raise ReasonRequired("A decline reason is required")

    case = await get_case_or_404(db, case_id)
    ensure_assigned(case, practitioner)
    await transition_case(
        db,
        case,
        CaseAction.DECLINE,
        actor,
        values={"declined_at": datetime.now(timezone.utc), "decline_reason": reason.strip()},
        expected_practitioner_id=practitioner.id,
        reason=reason.strip(),
    )
    outcome = await record_decline(db, practitioner.id)

    if case.assigned_by_id:
        notify(
            db,
            case.assigned_by_id,
            NotificationType.CASE_DECLINED,
            {"case_number": case.case_number, "reason": reason.strip()},
            case_id=case.id,
        )
    return case, outcome


# ── Operator Actions ──────────────────────────────────────────

async def reassign_case(
    db: AsyncSession,
    case_id: uuid.UUID,
    new_practitioner_id: uuid.UUID,
    operator: User,
    reason: Optional[str] = None,
    now: Optional[datetime] = None,
) -> LegalCase:
    """
    Hand the case to another practitioner with a fresh deadline.
    The commission snapshot taken at creation is kept.
    """
    now = now or datetime.now(timezone.utc)
    case = await get_case_or_404(db, case_id)
    new_practitioner = await get_verified_practitioner(db, new_practitioner_id)
    previous_practitioner_id = case.practitioner_id

    await transition_case(
        db,
        case,
        CaseAction.REASSIGN,
        operator,
        values={
            "practitioner_id": new_practitioner.id,
            "assigned_by_id": operator.id,
            "assigned_at": now,
            "deadline_at": compute_deadline(case.priority, now),
            "accepted_at": None,
            "declined_at": None,
            "decline_reason": None,
        },
        expected_practitioner_id=previous_practitioner_id,
        reason=reason,
        metadata={
            "from_practitioner_id": str(previous_practitioner_id),
            "to_practitioner_id": str(new_practitioner.id),
        },
    )
    await _bump_assignment_count(db, new_practitioner.id)
    _notify_assignment(db, case, new_practitioner)
    await db.flush()
    return case


async def complete_case(
    db: AsyncSession, case_id: uuid.UUID, actor: User
) -> tuple[LegalCase, Payout]:
    """Close the case, bump the practitioner's completed count and create its payout."""
    case = await get_case_or_404(db, case_id)
    await transition_case(
        db,
        case,
        CaseAction.COMPLETE,
        actor,
        values={"completed_at": datetime.now(timezone.utc)},
    )
    await db.execute(
        update(Practitioner)
        .where(Practitioner.id == case.practitioner_id)
        .values(completed_case_count=Practitioner.completed_case_count + 1)
        .execution_options(synchronize_session=False)
    )
    payout = await create_payout_for_case(db, case)
    return case, payout


# ── Acceptance Timeout ────────────────────────────────────────

async def check_acceptance_timeout(
    db: AsyncSession, case_id: uuid.UUID, practitioner_id: uuid.UUID
) -> bool:
    """
    Notify whoever assigned the case if `practitioner_id` still hasn't responded.
    Returns True when a reminder was raised; any other state is a no-op.
    """
    case = await db.scalar(select(LegalCase).where(LegalCase.id == case_id))
    if (
        not case
        or case.status != CaseStatus.ASSIGNED
        or case.practitioner_id != practitioner_id
    ):
        return False

    if not case.assigned_by_id:
        logger.warning("Case %s not accepted in time and has no assigning operator", case.case_number)
        return False

    notify(
        db,
        case.assigned_by_id,
        NotificationType.CASE_ACCEPTANCE_TIMEOUT,
        {
            "case_number": case.case_number,
            "timeout_hours": settings.CASE_ACCEPTANCE_TIMEOUT_HOURS,
        },
        case_id=case.id,
    )
    await db.flush()
    logger.warning("Case %s not accepted within %sh", case.case_number, settings.CASE_ACCEPTANCE_TIMEOUT_HOURS)
    return True


# ── Read Side ─────────────────────────────────────────────────

async def get_case_details(db: AsyncSession, case_id: uuid.UUID) -> dict:
    case = await get_case_or_404(db, case_id)
    commission, net = compute_split(case.fee_amount, case.commission_rate)
    has_opinion = await db.scalar(
        select(func.count(LegalOpinion.id)).where(LegalOpinion.case_id == case.id)
    )
    return {
        "case": case,
        "fee_breakdown": {
            "gross_fee": case.fee_amount,
            "commission_rate": case.commission_rate,
            "commission_amount": commission,
            "net_amount": net,
        },
        "has_opinion": bool(has_opinion),
    }


async def list_cases(
    db: AsyncSession,
    practitioner_id: Optional[uuid.UUID] = None,
    customer_id: Optional[uuid.UUID] = None,
    status: Optional[str] = None,
    limit: int = 20,
    offset: int = 0,
) -> list[LegalCase]:
    query = select(LegalCase)
    if practitioner_id:
        query = query.where(LegalCase.practitioner_id == practitioner_id)
    if customer_id:
        query = query.where(LegalCase.customer_id == customer_id)
    if status:
        query = query.where(LegalCase.status == CaseStatus(status))
    query = query.order_by(LegalCase.created_at.desc()).offset(offset).limit(limit)
    return list((await db.scalars(query)).all())
