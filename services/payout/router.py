"""
services/payout/router.py
Operator payout controls (sweep, batch, retry, manual settlement record)
and the RazorpayX webhook.
"""

import json
import logging
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Request, status
from redis.asyncio import Redis
from sqlalchemy.ext.asyncio import AsyncSession

from config.database import get_db
from config.redis_client import RedisCache, get_redis
from services.case.service import get_case_or_404
from services.payout import service as payouts
from shared.middleware.auth import require_operator
from shared.models.models import User
from shared.schemas.schemas import (
    MessageResponse,
    PayoutBatchResponse,
    PayoutResponse,
    SweepResponse,
)
from shared.utils.security import verify_razorpay_webhook_signature
from tasks.payout_tasks import execute_payout_task

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/payouts", tags=["Payouts"])


# ── Operator Controls ─────────────────────────────────────────

@router.post("/sweep", response_model=SweepResponse)
async def run_auto_confirm(
    operator: User = Depends(require_operator),
    db: AsyncSession = Depends(get_db),
):
    """Run the auto-confirm sweep now instead of waiting for midnight."""
    confirmed = await payouts.auto_confirm_pending_payouts(db)
    await db.commit()
    return SweepResponse(confirmed=confirmed)


@router.post("/batch", response_model=PayoutBatchResponse)
async def run_batch(
    operator: User = Depends(require_operator),
    db: AsyncSession = Depends(get_db),
    redis: Redis = Depends(get_redis),
):
    """Claim a batch out of schedule and hand each payout to a worker."""
    batch_id, claimed, requeued = await payouts.run_batch_pass(db, RedisCache(redis))
    for payout_id in claimed:
        execute_payout_task.delay(str(payout_id))
    return PayoutBatchResponse(batch_id=batch_id, payout_ids=claimed, requeued=requeued)


@router.post("/{payout_id}/retry", response_model=PayoutResponse)
async def retry_failed_payout(
    payout_id: UUID,
    operator: User = Depends(require_operator),
    db: AsyncSession = Depends(get_db),
):
    payout = await payouts.retry_payout(db, payout_id)
    await db.commit()
    logger.info("Operator %s requeued payout %s", operator.id, payout.id)
    return PayoutResponse.model_validate(payout)


@router.post("/cases/{case_id}", response_model=PayoutResponse, status_code=status.HTTP_201_CREATED)
async def create_payout(
    case_id: UUID,
    operator: User = Depends(require_operator),
    db: AsyncSession = Depends(get_db),
):
    """Settlement record for a completed case that doesn't have one."""
    case = await get_case_or_404(db, case_id)
    payout = await payouts.create_payout_for_case(db, case)
    await db.commit()
    return PayoutResponse.model_validate(payout)


@router.get("/{payout_id}", response_model=PayoutResponse)
async def get_payout(
    payout_id: UUID,
    operator: User = Depends(require_operator),
    db: AsyncSession = Depends(get_db),
):
    return PayoutResponse.model_validate(await payouts.get_payout_or_404(db, payout_id))


# ── RazorpayX Webhook ─────────────────────────────────────────

@router.post("/webhook", response_model=MessageResponse)
async def razorpayx_webhook(request: Request, db: AsyncSession = Depends(get_db)):
    """
    Payout status callbacks. Redeliveries and out-of-order events are harmless;
    only a real move to COMPLETED notifies the practitioner.
    """
    body = await request.body()
    signature = request.headers.get("X-Razorpay-Signature", "")
    if not verify_razorpay_webhook_signature(body, signature):
        raise HTTPException(status_code=400, detail="Invalid webhook signature")

    try:
        event = json.loads(body)
    except json.JSONDecodeError:
        raise HTTPException(status_code=400, detail="Malformed webhook body")

    event_name = event.get("event", "")
    if not event_name.startswith("payout."):
        return MessageResponse(message=f"Ignored event {event_name}")

    entity = event.get("payload", {}).get("payout", {}).get("entity", {})
    external_id = entity.get("id")
    gateway_status = entity.get("status")
    if not external_id or not gateway_status:
        raise HTTPException(status_code=400, detail="Webhook is missing the payout id or status")

    payout = await payouts.reconcile_webhook(
        db, external_id, gateway_status, failure_reason=entity.get("failure_reason")
    )
    await db.commit()
    if payout is None:
        return MessageResponse(message="Unknown payout")
    return MessageResponse(message=f"Payout is {payout.status.value}")
