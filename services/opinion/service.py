"""
services/opinion/service.py
Opinion Review Workflow: submit → review (approve | reject) → deliver.
A rejected opinion is deleted and the case goes back to IN_PROGRESS so the
practitioner can resubmit.
"""

import logging
import uuid
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import delete, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from services.case.lifecycle import CaseAction
from services.case.service import ensure_assigned, get_case_or_404, transition_case
from services.notification.service import notify
from services.practitioner.service import get_practitioner_or_404
from shared.errors.errors import (
    AlreadyReviewed,
    NotApproved,
    NotCaseCustomer,
    NotDelivered,
    OpinionExists,
    OpinionNotFound,
    StaleState,
)
from shared.models.models import (
    CaseStatus,
    LegalCase,
    LegalOpinion,
    NotificationType,
    OpinionApproval,
    OpinionType,
    Practitioner,
    User,
    UserRole,
)

logger = logging.getLogger(__name__)


async def get_opinion_for_case(db: AsyncSession, case_id: uuid.UUID) -> Optional[LegalOpinion]:
    return await db.scalar(select(LegalOpinion).where(LegalOpinion.case_id == case_id))


async def _get_opinion_or_404(db: AsyncSession, case_id: uuid.UUID) -> LegalOpinion:
    opinion = await get_opinion_for_case(db, case_id)
    if not opinion:
        raise OpinionNotFound()
    return opinion


async def submit_opinion(
    db: AsyncSession,
    case_id: uuid.UUID,
    practitioner: Practitioner,
    actor: User,
    opinion_doc_url: str,
    opinion_type: str,
    summary: Optional[str] = None,
    conditions: Optional[str] = None,
) -> tuple[LegalCase, LegalOpinion]:
    case = await get_case_or_404(db, case_id)
    ensure_assigned(case, practitioner)
    if await get_opinion_for_case(db, case.id):
        raise OpinionExists()

    await transition_case(
        db, case, CaseAction.SUBMIT_OPINION, actor, expected_practitioner_id=practitioner.id
    )
    opinion = LegalOpinion(
        case_id=case.id,
        practitioner_id=practitioner.id,
        opinion_doc_url=opinion_doc_url,
        opinion_type=OpinionType(opinion_type),
        summary=summary,
        conditions=conditions,
        approval_status=OpinionApproval.PENDING_REVIEW,
    )
    db.add(opinion)
    try:
        await db.flush()
    except IntegrityError as exc:
        raise OpinionExists() from exc
    return case, opinion


async def review_opinion(
    db: AsyncSession,
    case_id: uuid.UUID,
    reviewer: User,
    approved: bool,
    notes: Optional[str] = None,
) -> tuple[LegalCase, Optional[LegalOpinion]]:
    """Returns the opinion when approved, None when it was rejected (and deleted)."""
    opinion = await _get_opinion_or_404(db, case_id)
    if opinion.approval_status != OpinionApproval.PENDING_REVIEW:
        raise AlreadyReviewed()
    case = await get_case_or_404(db, case_id)

    if approved:
        await transition_case(db, case, CaseAction.APPROVE_OPINION, reviewer, reason=notes)
        result = await db.execute(
            update(LegalOpinion)
            .where(
                LegalOpinion.id == opinion.id,
                LegalOpinion.approval_status == OpinionApproval.PENDING_REVIEW,
            )
            .values(
                approval_status=OpinionApproval.APPROVED,
                reviewed_by_id=reviewer.id,
                reviewed_at=datetime.now(timezone.utc),
                review_notes=notes,
            )
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            raise StaleState("Opinion was reviewed concurrently")
        await db.refresh(opinion)
        return case, opinion

    await transition_case(db, case, CaseAction.REJECT_OPINION, reviewer, reason=notes)
    result = await db.execute(
        delete(LegalOpinion)
        .where(
            LegalOpinion.id == opinion.id,
            LegalOpinion.approval_status == OpinionApproval.PENDING_REVIEW,
        )
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        raise StaleState("Opinion was reviewed concurrently")
    db.expunge(opinion)

    practitioner = await get_practitioner_or_404(db, case.practitioner_id)
    notify(
        db,
        practitioner.user_id,
        NotificationType.OPINION_REJECTED,
        {"case_number": case.case_number, "notes": notes or ""},
        case_id=case.id,
    )
    logger.info("Opinion for case %s rejected", case.case_number)
    return case, None


async def deliver_opinion(
    db: AsyncSession, case_id: uuid.UUID, actor: User
) -> tuple[LegalCase, LegalOpinion]:
    opinion = await _get_opinion_or_404(db, case_id)
    if opinion.approval_status != OpinionApproval.APPROVED:
        raise NotApproved()
    case = await get_case_or_404(db, case_id)

    await transition_case(db, case, CaseAction.DELIVER_OPINION, actor)
    opinion.delivered_at = datetime.now(timezone.utc)
    await db.flush()

    if case.customer_id:
        notify(
            db,
            case.customer_id,
            NotificationType.OPINION_DELIVERED,
            {"case_number": case.case_number},
            case_id=case.id,
        )
    return case, opinion


async def get_opinion_for_customer(
    db: AsyncSession, case_id: uuid.UUID, user: User
) -> LegalOpinion:
    case = await get_case_or_404(db, case_id)
    if user.role != UserRole.OPERATOR and case.customer_id != user.id:
        raise NotCaseCustomer()
    if case.status not in (CaseStatus.OPINION_DELIVERED, CaseStatus.COMPLETED):
        raise NotDelivered()
    return await _get_opinion_or_404(db, case.id)
