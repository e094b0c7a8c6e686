"""
services/case/decline.py
Decline Tracker. Runs on the decline transaction so the counter bump and the
case status change commit (or roll back) together.
"""

import logging
import uuid
from dataclasses import dataclass

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from config.settings import settings
from shared.models.models import Practitioner

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class DeclineOutcome:
    decline_count: int
    decline_rate: float
    flagged: bool


def decline_rate(decline_count: int, total_assignments: int) -> float:
    return decline_count / max(total_assignments, 1)


async def record_decline(db: AsyncSession, practitioner_id: uuid.UUID) -> DeclineOutcome:
    # Atomic increment; the row stays locked until the caller commits
    await db.execute(
        update(Practitioner)
        .where(Practitioner.id == practitioner_id)
        .values(decline_count=Practitioner.decline_count + 1)
        .execution_options(synchronize_session=False)
    )
    row = (
        await db.execute(
            select(Practitioner.decline_count, Practitioner.total_assignment_count).where(
                Practitioner.id == practitioner_id
            )
        )
    ).one()

    rate = decline_rate(row.decline_count, row.total_assignment_count)
    flagged = rate > settings.DECLINE_RATE_FLAG_THRESHOLD
    if flagged:
        logger.warning(
            "Practitioner %s decline rate %.2f (%s/%s) above threshold",
            practitioner_id, rate, row.decline_count, row.total_assignment_count,
        )
    return DeclineOutcome(decline_count=row.decline_count, decline_rate=rate, flagged=flagged)
