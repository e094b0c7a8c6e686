"""
services/routing/router.py
Operator-facing practitioner suggestions for a new case.
"""

from dataclasses import asdict

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from config.database import get_db
from services.routing.service import suggest_practitioners
from shared.middleware.auth import require_operator
from shared.models.models import User
from shared.schemas.schemas import SuggestedPractitionerResponse

router = APIRouter(prefix="/routing", tags=["Routing"])


@router.get("/suggestions", response_model=list[SuggestedPractitionerResponse])
async def get_suggestions(
    expertise: str = Query(..., description="Expertise tag, e.g. PROPERTY_TAX_DISPUTES"),
    city: str = Query(..., min_length=1),
    operator: User = Depends(require_operator),
    db: AsyncSession = Depends(get_db),
):
    """An unknown tag yields an empty list rather than an error."""
    suggestions = await suggest_practitioners(db, expertise, city)
    return [SuggestedPractitionerResponse(**asdict(s)) for s in suggestions]
