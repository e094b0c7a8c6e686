"""
services/rating/service.py
Reputation Engine: one immutable rating per delivered case, lifetime
average recomputed from every rating on each submission, and the
per-practitioner performance figures shown on the earnings dashboard.
"""

import calendar
import logging
import uuid
from dataclasses import dataclass
from datetime import datetime, timezone
from decimal import ROUND_HALF_UP, Decimal
from typing import Optional

from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from config.settings import settings
from services.case.service import get_case_or_404
from services.practitioner.service import get_practitioner_or_404
from shared.errors.errors import AlreadyRated, InvalidRating, NotCaseCustomer, NotDelivered
from shared.models.models import (
    CaseStatus,
    LegalCase,
    LegalOpinion,
    OpinionRating,
    OpinionType,
    User,
    UserRole,
)

logger = logging.getLogger(__name__)

RATEABLE_STATUSES = (CaseStatus.OPINION_DELIVERED, CaseStatus.COMPLETED)


@dataclass(frozen=True)
class RatingOutcome:
    rating: int
    rating_avg: float
    rating_count: int
    flagged: bool


def is_low_rated(rating_avg: float, rating_count: int) -> bool:
    return (
        rating_count >= settings.LOW_RATING_FLAG_MIN_COUNT
        and rating_avg < settings.LOW_RATING_FLAG_THRESHOLD
    )


def rounded_average(total: int, count: int) -> Decimal:
    """Mean rating rounded half-up to 2 places, the precision stored on the practitioner."""
    if not count:
        return Decimal("0.00")
    return (Decimal(total) / Decimal(count)).quantize(Decimal("0.01"), rounding=ROUND_HALF_UP)


async def submit_rating(
    db: AsyncSession,
    case_id: uuid.UUID,
    rater: User,
    rating: int,
    feedback: Optional[str] = None,
) -> RatingOutcome:
    if isinstance(rating, bool) or not isinstance(rating, int) or not 1 <= rating <= 5:
        raise InvalidRating()

    case = await get_case_or_404(db, case_id)
    # Only the case's own customer rates it; operators and practitioners never do
    if rater.role != UserRole.CUSTOMER or (case.customer_id and rater.id != case.customer_id):
        raise NotCaseCustomer()
    if await db.scalar(select(OpinionRating.id).where(OpinionRating.case_id == case.id)):
        raise AlreadyRated()
    if case.status not in RATEABLE_STATUSES:
        raise NotDelivered(f"Case {case.case_number} is {case.status.value}; it can't be rated yet")

    # Lock the practitioner row so concurrent ratings aggregate serially
    practitioner = await get_practitioner_or_404(db, case.practitioner_id, for_update=True)

    db.add(
        OpinionRating(
            case_id=case.id,
            practitioner_id=practitioner.id,
            customer_id=case.customer_id or rater.id,
            rating=rating,
            feedback=feedback,
        )
    )
    try:
        await db.flush()
    except IntegrityError as exc:
        raise AlreadyRated() from exc

    total, count = (
        await db.execute(
            select(func.coalesce(func.sum(OpinionRating.rating), 0), func.count(OpinionRating.id))
            .where(OpinionRating.practitioner_id == practitioner.id)
        )
    ).one()
    rating_avg = rounded_average(total, count)

    practitioner.rating_avg = rating_avg
    practitioner.rating_count = count
    await db.flush()

    # Flag on the same rounded average that is stored and reported
    flagged = is_low_rated(float(rating_avg), count)
    if flagged:
        logger.warning(
            "Practitioner %s flagged for low rating: %.2f over %s ratings",
            practitioner.id, rating_avg, count,
        )
    return RatingOutcome(
        rating=rating,
        rating_avg=float(rating_avg),
        rating_count=count,
        flagged=flagged,
    )


async def rating_summary(db: AsyncSession, practitioner_id: uuid.UUID) -> dict:
    practitioner = await get_practitioner_or_404(db, practitioner_id)
    rows = await db.execute(
        select(OpinionRating.rating, func.count(OpinionRating.id))
        .where(OpinionRating.practitioner_id == practitioner_id)
        .group_by(OpinionRating.rating)
    )
    distribution = {star: 0 for star in range(1, 6)}
    for star, count in rows.all():
        distribution[int(star)] = count
    return {
        "practitioner_id": practitioner.id,
        "rating_avg": float(practitioner.rating_avg or 0),
        "rating_count": practitioner.rating_count,
        "distribution": distribution,
    }


# ── Performance ───────────────────────────────────────────────

def months_back(now: datetime, months: int) -> datetime:
    """Same day `months` calendar months earlier, clamped to the end of shorter months."""
    year, month = divmod(now.year * 12 + now.month - 1 - months, 12)
    month += 1
    day = min(now.day, calendar.monthrange(year, month)[1])
    return now.replace(year=year, month=month, day=day)


async def performance_metrics(
    db: AsyncSession, practitioner_id: uuid.UUID, now: Optional[datetime] = None
) -> dict:
    """
    Dashboard figures for one practitioner: completed volume, mean days from
    assignment to completion, opinion verdict mix and a monthly rating trend
    over the last PERFORMANCE_TREND_MONTHS months.
    """
    now = now or datetime.now(timezone.utc)
    practitioner = await get_practitioner_or_404(db, practitioner_id)

    spans = (
        await db.execute(
            select(LegalCase.assigned_at, LegalCase.completed_at).where(
                LegalCase.practitioner_id == practitioner.id,
                LegalCase.status == CaseStatus.COMPLETED,
                LegalCase.completed_at.is_not(None),
            )
        )
    ).all()
    avg_days = None
    if spans:
        seconds = sum((completed - assigned).total_seconds() for assigned, completed in spans)
        avg_days = float(
            (Decimal(seconds) / len(spans) / 86400).quantize(Decimal("0.1"), rounding=ROUND_HALF_UP)
        )

    verdicts = {opinion_type.value: 0 for opinion_type in OpinionType}
    rows = await db.execute(
        select(LegalOpinion.opinion_type, func.count(LegalOpinion.id))
        .where(LegalOpinion.practitioner_id == practitioner.id)
        .group_by(LegalOpinion.opinion_type)
    )
    for opinion_type, count in rows.all():
        verdicts[OpinionType(opinion_type).value] = count

    ratings = await db.execute(
        select(OpinionRating.rating, OpinionRating.created_at)
        .where(
            OpinionRating.practitioner_id == practitioner.id,
            OpinionRating.created_at >= months_back(now, settings.PERFORMANCE_TREND_MONTHS),
        )
        .order_by(OpinionRating.created_at)
    )
    by_month: dict[str, list[int]] = {}
    for stars, created_at in ratings.all():
        by_month.setdefault(created_at.strftime("%Y-%m"), []).append(stars)
    trend = [
        {
            "month": month,
            "avg_rating": float(
                (Decimal(sum(stars)) / len(stars)).quantize(Decimal("0.1"), rounding=ROUND_HALF_UP)
            ),
            "count": len(stars),
        }
        for month, stars in sorted(by_month.items())
    ]

    return {
        "total_cases_completed": practitioner.completed_case_count,
        "avg_case_duration_days": avg_days,
        "opinion_type_distribution": verdicts,
        "rating_trend": trend,
    }
