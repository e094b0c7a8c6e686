"""
services/routing/service.py
Case Router: ranks verified practitioners who can take a case for a given
expertise tag and city. Read-only; any failure yields an empty list.
"""

import logging
import uuid
from dataclasses import dataclass, field

from sqlalchemy import func, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from shared.models.models import (
    ACTIVE_CASE_STATUSES,
    ExpertiseTag,
    LegalCase,
    Practitioner,
    PractitionerExpertise,
    VerificationStatus,
)

logger = logging.getLogger(__name__)


@dataclass
class SuggestedPractitioner:
    id: uuid.UUID
    name: str
    city: str
    rating_avg: float
    rating_count: int
    completed_case_count: int
    tier: str
    commission_rate: int
    active_case_count: int
    expertise_tags: list[str] = field(default_factory=list)


async def suggest_practitioners(
    db: AsyncSession, expertise_tag: str, city: str
) -> list[SuggestedPractitioner]:
    """
    Eligible = verified, not on do-not-disturb, same city, holds the tag.
    Ordered by rating, then lifetime completed cases.
    """
    try:
        tag = ExpertiseTag(expertise_tag)
    except ValueError:
        logger.info("Routing requested for unknown expertise tag %r", expertise_tag)
        return []

    active_cases = (
        select(func.count(LegalCase.id))
        .where(
            LegalCase.practitioner_id == Practitioner.id,
            LegalCase.status.in_(ACTIVE_CASE_STATUSES),
        )
        .correlate(Practitioner)
        .scalar_subquery()
    )
    query = (
        select(Practitioner, active_cases.label("active_case_count"))
        .join(PractitionerExpertise, PractitionerExpertise.practitioner_id == Practitioner.id)
        .where(
            PractitionerExpertise.tag == tag,
            Practitioner.verification_status == VerificationStatus.VERIFIED,
            Practitioner.dnd_enabled == False,
            func.lower(Practitioner.city) == city.strip().lower(),
        )
        .order_by(
            Practitioner.rating_avg.desc(),
            Practitioner.completed_case_count.desc(),
            Practitioner.created_at,
        )
    )

    try:
        rows = (await db.execute(query)).all()
    except SQLAlchemyError:
        logger.exception("Practitioner suggestion query failed for %s in %s", tag.value, city)
        return []

    return [
        SuggestedPractitioner(
            id=p.id,
            name=p.display_name,
            city=p.city,
            rating_avg=float(p.rating_avg or 0),
            rating_count=p.rating_count,
            completed_case_count=p.completed_case_count,
            tier=p.tier.value,
            commission_rate=p.commission_rate,
            active_case_count=active or 0,
            expertise_tags=p.expertise_tags,
        )
        for p, active in rows
    ]
