"""
services/opinion/router.py
Opinion submission by the practitioner, operator review and delivery,
and customer access to the delivered opinion.
"""

from uuid import UUID

from fastapi import APIRouter, Depends, status
from sqlalchemy.ext.asyncio import AsyncSession

from config.database import get_db
from services.opinion import service as opinions
from shared.middleware.auth import get_current_practitioner, get_current_user, require_operator
from shared.models.models import Practitioner, User
from shared.schemas.schemas import (
    CaseResponse,
    OpinionResponse,
    OpinionReviewRequest,
    OpinionReviewResponse,
    OpinionSubmitRequest,
)

router = APIRouter(prefix="/cases/{case_id}/opinion", tags=["Opinions"])


@router.post("", response_model=OpinionReviewResponse, status_code=status.HTTP_201_CREATED)
async def submit_opinion(
    case_id: UUID,
    data: OpinionSubmitRequest,
    practitioner: Practitioner = Depends(get_current_practitioner),
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    case, opinion = await opinions.submit_opinion(
        db,
        case_id,
        practitioner,
        current_user,
        opinion_doc_url=data.opinion_doc_url,
        opinion_type=data.opinion_type,
        summary=data.summary,
        conditions=data.conditions,
    )
    await db.commit()
    return OpinionReviewResponse(
        case=CaseResponse.model_validate(case),
        opinion=OpinionResponse.model_validate(opinion),
    )


@router.post("/review", response_model=OpinionReviewResponse)
async def review_opinion(
    case_id: UUID,
    data: OpinionReviewRequest,
    operator: User = Depends(require_operator),
    db: AsyncSession = Depends(get_db),
):
    """Approve, or reject and send the case back to the practitioner."""
    case, opinion = await opinions.review_opinion(
        db, case_id, operator, approved=data.approved, notes=data.notes
    )
    await db.commit()
    return OpinionReviewResponse(
        case=CaseResponse.model_validate(case),
        opinion=OpinionResponse.model_validate(opinion) if opinion else None,
    )


@router.post("/deliver", response_model=OpinionReviewResponse)
async def deliver_opinion(
    case_id: UUID,
    operator: User = Depends(require_operator),
    db: AsyncSession = Depends(get_db),
):
    case, opinion = await opinions.deliver_opinion(db, case_id, operator)
    await db.commit()
    return OpinionReviewResponse(
        case=CaseResponse.model_validate(case),
        opinion=OpinionResponse.model_validate(opinion),
    )


@router.get("", response_model=OpinionResponse)
async def get_delivered_opinion(
    case_id: UUID,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    opinion = await opinions.get_opinion_for_customer(db, case_id, current_user)
    return OpinionResponse.model_validate(opinion)
