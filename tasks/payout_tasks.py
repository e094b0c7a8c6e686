"""
tasks/payout_tasks.py
Celery tasks for settlement:
- Daily auto-confirm of PENDING payouts past the confirmation window
- Twice-monthly batch pass that claims CONFIRMED payouts
- Per-payout execution through RazorpayX

Gateway failures are not retried here; the payout is left FAILED and the
next batch pass requeues it.
"""

import logging
import uuid

import redis.asyncio as aioredis

from config.redis_client import RedisCache
from config.settings import settings
from services.payout.gateway import get_payout_gateway
from services.payout.service import auto_confirm_pending_payouts, execute_payout, run_batch_pass
from shared.errors.errors import BusinessError
from tasks.celery_app import celery_app
from tasks.runner import run_with_session

logger = logging.getLogger(__name__)


@celery_app.task
def auto_confirm_payouts() -> dict:
    """Runs daily at midnight IST."""
    confirmed = run_with_session(auto_confirm_pending_payouts)
    return {"confirmed": confirmed}


async def _batch_pass(db):
    client = aioredis.from_url(settings.REDIS_URL, decode_responses=True)
    try:
        return await run_batch_pass(db, RedisCache(client))
    finally:
        await client.aclose()


@celery_app.task
def process_payout_batch() -> dict:
    """
    Runs on the 1st and 15th at 06:00 IST. Each claimed payout is executed
    by its own task so one slow gateway call doesn't hold up the batch.
    """
    batch_id, claimed, requeued = run_with_session(_batch_pass)
    for payout_id in claimed:
        execute_payout_task.delay(str(payout_id))
    logger.info("Batch %s: %s payout(s) queued, %s requeued", batch_id, len(claimed), requeued)
    return {"batch_id": batch_id, "queued": len(claimed), "requeued": requeued}


@celery_app.task
def execute_payout_task(payout_id: str) -> dict:
    gateway = get_payout_gateway()
    try:
        payout = run_with_session(lambda db: execute_payout(db, uuid.UUID(payout_id), gateway))
    except BusinessError as exc:
        # The payout row already reflects the failure
        logger.warning("Payout %s not sent: %s", payout_id, exc.message)
        return {"payout_id": payout_id, "status": "FAILED", "code": exc.code}
    return {
        "payout_id": payout_id,
        "status": payout.status.value,
        "external_transaction_id": payout.external_transaction_id,
    }
