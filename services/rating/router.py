"""
services/rating/router.py
Customer rating of a delivered opinion.
"""

from dataclasses import asdict
from uuid import UUID

from fastapi import APIRouter, Depends, status
from sqlalchemy.ext.asyncio import AsyncSession

from config.database import get_db
from services.rating.service import submit_rating
from shared.middleware.auth import require_customer
from shared.models.models import User
from shared.schemas.schemas import RatingOutcomeResponse, RatingSubmitRequest

router = APIRouter(prefix="/cases/{case_id}/rating", tags=["Ratings"])


@router.post("", response_model=RatingOutcomeResponse, status_code=status.HTTP_201_CREATED)
async def rate_case(
    case_id: UUID,
    data: RatingSubmitRequest,
    current_user: User = Depends(require_customer),
    db: AsyncSession = Depends(get_db),
):
    """Ratings are final; a case can be rated once."""
    outcome = await submit_rating(db, case_id, current_user, data.rating, data.feedback)
    await db.commit()
    return RatingOutcomeResponse(**asdict(outcome))
