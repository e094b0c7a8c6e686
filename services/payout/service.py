"""
services/payout/service.py
Payout Engine: commission split, settlement records, the auto-confirm sweep,
batch settlement, gateway execution and webhook reconciliation.

Every status write is conditional on the status that was read, so the sweep,
the batch pass, execution and webhooks can all run concurrently and repeatedly.
"""

import asyncio
import logging
import uuid
from datetime import date, datetime, timedelta, timezone
from typing import Optional

from sqlalchemy import func, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from config.redis_client import RedisCache
from config.settings import settings
from services.notification.service import notify
from services.payout.gateway import BankDetails, PayoutGateway
from services.payout.status import can_transition, map_gateway_status
from services.practitioner.service import get_default_bank_account, get_practitioner_or_404
from shared.errors.errors import (
    CaseNotCompleted,
    InvalidStatus,
    NoBankAccount,
    PayoutExists,
    PayoutNotFound,
    PractitionerNotVerified,
)
from shared.models.models import (
    BankAccount,
    CaseStatus,
    LegalCase,
    NotificationType,
    Payout,
    PayoutStatus,
    VerificationStatus,
)
from shared.utils.security import decrypt_account_number

logger = logging.getLogger(__name__)

BATCH_LOCK_NAME = "payout_batch"

# Cases whose fee is earned but not yet settled
_UNSETTLED_CASE_STATUSES = (
    CaseStatus.ASSIGNED,
    CaseStatus.PENDING_ACCEPTANCE,
    CaseStatus.IN_PROGRESS,
    CaseStatus.OPINION_SUBMITTED,
    CaseStatus.OPINION_APPROVED,
    CaseStatus.OPINION_DELIVERED,
)


def _now() -> datetime:
    return datetime.now(timezone.utc)


# ── Commission Math ───────────────────────────────────────────

def compute_split(gross_fee: int, commission_rate: int) -> tuple[int, int]:
    """
    Returns (commission, net) in paise. Commission is floored so the platform
    never rounds in its own favour; net takes the remainder.

    >>> compute_split(500000, 20)
    (100000, 400000)
    """
    if gross_fee < 0:
        raise ValueError("gross_fee must be non-negative")
    commission = gross_fee * commission_rate // 100
    return commission, gross_fee - commission


def gateway_reference(payout_id: uuid.UUID, retry_count: int = 0) -> str:
    """
    Idempotency key for the gateway (RazorpayX caps reference_id at 40 chars).
    RazorpayX replays the stored result for a key it has seen, so every
    operator retry needs a fresh one.
    """
    return f"po_{payout_id.hex}_{retry_count}"


def contact_reference(practitioner_id: uuid.UUID) -> str:
    return f"prac_{practitioner_id.hex}"


# ── Lookups ───────────────────────────────────────────────────

async def get_payout_or_404(db: AsyncSession, payout_id: uuid.UUID) -> Payout:
    payout = await db.scalar(select(Payout).where(Payout.id == payout_id))
    if not payout:
        raise PayoutNotFound()
    return payout


# ── Creation ──────────────────────────────────────────────────

async def create_payout_for_case(db: AsyncSession, case: LegalCase) -> Payout:
    """Settlement record for a completed case, using the case's commission snapshot."""
    if case.status != CaseStatus.COMPLETED:
        raise CaseNotCompleted(f"Case {case.case_number} is {case.status.value}")

    existing = await db.scalar(select(Payout.id).where(Payout.case_id == case.id))
    if existing:
        raise PayoutExists()

    commission, net = compute_split(case.fee_amount, case.commission_rate)
    payout = Payout(
        case_id=case.id,
        practitioner_id=case.practitioner_id,
        gross_fee=case.fee_amount,
        commission_rate=case.commission_rate,
        commission_amount=commission,
        net_amount=net,
        status=PayoutStatus.PENDING,
    )
    db.add(payout)
    try:
        await db.flush()
    except IntegrityError as exc:
        raise PayoutExists() from exc

    logger.info(
        "Payout %s created for case %s: gross=%s commission=%s net=%s",
        payout.id, case.case_number, payout.gross_fee, commission, net,
    )
    return payout


# ── Status Transitions ────────────────────────────────────────

async def _transition(
    db: AsyncSession,
    payout: Payout,
    target: PayoutStatus,
    failure_reason: Optional[str] = None,
) -> bool:
    """
    Move `payout` to `target` if the table allows it and nobody moved it first.
    Returns True only when this call performed the transition.
    """
    current = payout.status
    if target == current:
        return False
    if not can_transition(current, target):
        logger.info(
            "Ignoring payout %s transition %s → %s", payout.id, current.value, target.value
        )
        return False

    now = _now()
    values: dict = {"status": target}
    if target == PayoutStatus.CONFIRMED:
        values["confirmed_at"] = now
    elif target == PayoutStatus.COMPLETED:
        values["processed_at"] = now
    elif target == PayoutStatus.FAILED:
        values["failure_reason"] = (failure_reason or "Unknown failure")[:1000]

    result = await db.execute(
        update(Payout)
        .where(Payout.id == payout.id, Payout.status == current)
        .values(**values)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        await db.refresh(payout)
        return False

    await db.refresh(payout)
    logger.info("Payout %s %s → %s", payout.id, current.value, target.value)

    if target == PayoutStatus.COMPLETED:
        await _notify_payout_sent(db, payout)
    return True


async def _notify_payout_sent(db: AsyncSession, payout: Payout) -> None:
    case_number = await db.scalar(select(LegalCase.case_number).where(LegalCase.id == payout.case_id))
    practitioner = await get_practitioner_or_404(db, payout.practitioner_id)
    notify(
        db,
        practitioner.user_id,
        NotificationType.PAYOUT_SENT,
        {"amount": f"{payout.net_amount / 100:.2f}", "case_number": case_number},
        case_id=payout.case_id,
    )


async def auto_confirm_pending_payouts(db: AsyncSession, now: Optional[datetime] = None) -> int:
    """PENDING payouts older than the confirmation window become CONFIRMED."""
    now = now or _now()
    cutoff = now - timedelta(days=settings.PAYOUT_AUTO_CONFIRM_DAYS)
    result = await db.execute(
        update(Payout)
        .where(Payout.status == PayoutStatus.PENDING, Payout.created_at < cutoff)
        .values(status=PayoutStatus.CONFIRMED, confirmed_at=now)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount:
        logger.info("Auto-confirmed %s pending payout(s)", result.rowcount)
    return result.rowcount


async def requeue_failed_payouts(db: AsyncSession) -> int:
    """
    Failed payouts the gateway never accepted go back to CONFIRMED for the next
    batch. They keep their idempotency key, so a request that did reach the
    gateway before the failure is not paid twice.
    """
    result = await db.execute(
        update(Payout)
        .where(
            Payout.status == PayoutStatus.FAILED,
            Payout.external_transaction_id.is_(None),
        )
        .values(status=PayoutStatus.CONFIRMED, batch_id=None)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount:
        logger.info("Requeued %s failed payout(s)", result.rowcount)
    return result.rowcount


async def create_payout_batch(
    db: AsyncSession, now: Optional[datetime] = None
) -> tuple[Optional[str], list[uuid.UUID]]:
    """
    Claim every CONFIRMED payout that isn't in a batch yet and move it to PROCESSING.
    Returns (batch_id, claimed ids); (None, []) when there was nothing to claim.
    """
    now = now or _now()
    candidates = list(
        (
            await db.scalars(
                select(Payout.id).where(
                    Payout.status == PayoutStatus.CONFIRMED, Payout.batch_id.is_(None)
                )
            )
        ).all()
    )
    if not candidates:
        return None, []

    batch_id = f"BATCH-{int(now.timestamp() * 1000)}"
    await db.execute(
        update(Payout)
        .where(
            Payout.id.in_(candidates),
            Payout.status == PayoutStatus.CONFIRMED,
            Payout.batch_id.is_(None),
        )
        .values(status=PayoutStatus.PROCESSING, batch_id=batch_id)
        .execution_options(synchronize_session=False)
    )
    claimed = list(
        (await db.scalars(select(Payout.id).where(Payout.batch_id == batch_id))).all()
    )
    logger.info("Batch %s claimed %s payout(s)", batch_id, len(claimed))
    return batch_id, claimed


async def run_batch_pass(
    db: AsyncSession, cache: RedisCache, now: Optional[datetime] = None
) -> tuple[Optional[str], list[uuid.UUID], int]:
    """
    Requeue failed payouts and claim a new batch, holding the batch lock so
    only one pass runs at a time. Commits before returning so the claimed ids
    can be handed to workers. Returns (batch_id, claimed ids, requeued count).
    """
    owner = uuid.uuid4().hex
    if not await cache.acquire_lock(BATCH_LOCK_NAME, owner):
        logger.info("Payout batch pass already running, skipping")
        return None, [], 0
    try:
        requeued = await requeue_failed_payouts(db)
        batch_id, claimed = await create_payout_batch(db, now)
        await db.commit()
    finally:
        await cache.release_lock(BATCH_LOCK_NAME)
    return batch_id, claimed, requeued


async def retry_payout(db: AsyncSession, payout_id: uuid.UUID) -> Payout:
    """
    Operator remediation: FAILED → CONFIRMED so the next batch picks it up
    under a new idempotency key.
    """
    payout = await get_payout_or_404(db, payout_id)
    if payout.status != PayoutStatus.FAILED:
        raise InvalidStatus(f"Only FAILED payouts can be retried, this one is {payout.status.value}")

    await db.execute(
        update(Payout)
        .where(Payout.id == payout.id, Payout.status == PayoutStatus.FAILED)
        .values(
            status=PayoutStatus.CONFIRMED,
            batch_id=None,
            external_transaction_id=None,
            retry_count=Payout.retry_count + 1,
            confirmed_at=_now(),
        )
        .execution_options(synchronize_session=False)
    )
    await db.refresh(payout)
    return payout


# ── Gateway Execution ─────────────────────────────────────────

async def _ensure_gateway_accounts(
    db: AsyncSession, account: BankAccount, practitioner_name: str, practitioner_id: uuid.UUID,
    gateway: PayoutGateway,
) -> str:
    """
    Get-or-create the gateway contact and fund account for `account`.
    Ids are committed before any payout call; a concurrent first payout
    loses the conditional write and reuses the winner's ids.
    """
    if not account.gateway_contact_id:
        contact_id = await db.scalar(
            select(BankAccount.gateway_contact_id).where(
                BankAccount.practitioner_id == practitioner_id,
                BankAccount.gateway_contact_id.is_not(None),
            ).limit(1)
        )
        if not contact_id:
            contact_id = await asyncio.to_thread(
                gateway.create_contact, practitioner_name, contact_reference(practitioner_id)
            )
        await db.execute(
            update(BankAccount)
            .where(BankAccount.id == account.id, BankAccount.gateway_contact_id.is_(None))
            .values(gateway_contact_id=contact_id)
            .execution_options(synchronize_session=False)
        )
        await db.commit()
        await db.refresh(account)

    if not account.gateway_fund_account_id:
        fund_account_id = await asyncio.to_thread(
            gateway.create_fund_account,
            account.gateway_contact_id,
            BankDetails(
                account_holder_name=account.account_holder_name,
                ifsc=account.ifsc,
                account_number=decrypt_account_number(account.account_number_encrypted),
            ),
        )
        await db.execute(
            update(BankAccount)
            .where(BankAccount.id == account.id, BankAccount.gateway_fund_account_id.is_(None))
            .values(gateway_fund_account_id=fund_account_id)
            .execution_options(synchronize_session=False)
        )
        await db.commit()
        await db.refresh(account)

    return account.gateway_fund_account_id


async def _claim_for_execution(db: AsyncSession, payout: Payout) -> bool:
    """CONFIRMED → PROCESSING. Batch-claimed payouts are already PROCESSING."""
    if payout.status == PayoutStatus.PROCESSING:
        return True
    if payout.status != PayoutStatus.CONFIRMED:
        raise InvalidStatus(f"Payout {payout.id} is {payout.status.value}, not executable")
    claimed = await _transition(db, payout, PayoutStatus.PROCESSING)
    await db.commit()
    return claimed


async def execute_payout(
    db: AsyncSession, payout_id: uuid.UUID, gateway: PayoutGateway
) -> Payout:
    """
    Send one payout through the gateway. Commits its own progress.
    Any failure after the payout is claimed marks it FAILED and re-raises.
    """
    payout = await get_payout_or_404(db, payout_id)
    if payout.external_transaction_id:
        logger.info("Payout %s already sent as %s", payout.id, payout.external_transaction_id)
        return payout
    if not await _claim_for_execution(db, payout):
        logger.info("Payout %s was claimed by another worker", payout.id)
        return payout

    try:
        practitioner = await get_practitioner_or_404(db, payout.practitioner_id)
        if practitioner.verification_status != VerificationStatus.VERIFIED:
            raise PractitionerNotVerified(
                f"Practitioner {practitioner.id} is {practitioner.verification_status.value}"
            )
        account = await get_default_bank_account(db, practitioner.id)
        if not account:
            raise NoBankAccount()

        fund_account_id = await _ensure_gateway_accounts(
            db, account, practitioner.display_name, practitioner.id, gateway
        )
        case_number = await db.scalar(
            select(LegalCase.case_number).where(LegalCase.id == payout.case_id)
        )
        mode = settings.PAYOUT_DEFAULT_MODE
        sent = await asyncio.to_thread(
            gateway.create_payout,
            fund_account_id,
            payout.net_amount,
            mode,
            gateway_reference(payout.id, payout.retry_count),
            f"Case {case_number}",
        )

        await db.execute(
            update(Payout)
            .where(
                Payout.id == payout.id,
                Payout.status == PayoutStatus.PROCESSING,
                Payout.external_transaction_id.is_(None),
            )
            .values(external_transaction_id=sent.external_id, payout_mode=mode)
            .execution_options(synchronize_session=False)
        )
        await db.refresh(payout)

        mapped = map_gateway_status(sent.status)
        if mapped is not None:
            await _transition(
                db, payout, mapped, failure_reason=f"Gateway returned {sent.status}"
            )
        await db.commit()
        logger.info("Payout %s sent as %s (%s)", payout.id, sent.external_id, sent.status)
        return payout
    except Exception as exc:
        await db.rollback()
        logger.exception("Payout %s execution failed", payout_id)
        await _mark_failed(db, payout_id, str(exc) or type(exc).__name__)
        await db.commit()
        raise


async def _mark_failed(db: AsyncSession, payout_id: uuid.UUID, reason: str) -> None:
    await db.execute(
        update(Payout)
        .where(
            Payout.id == payout_id,
            Payout.status.in_((PayoutStatus.CONFIRMED, PayoutStatus.PROCESSING)),
        )
        .values(status=PayoutStatus.FAILED, failure_reason=reason[:1000])
        .execution_options(synchronize_session=False)
    )


# ── Webhook Reconciliation ────────────────────────────────────

async def reconcile_webhook(
    db: AsyncSession,
    external_id: str,
    gateway_status: str,
    failure_reason: Optional[str] = None,
) -> Optional[Payout]:
    """
    Apply a gateway status notification. Unknown ids and statuses are ignored;
    repeats and backwards moves are no-ops, so redelivery is safe.
    """
    payout = await db.scalar(select(Payout).where(Payout.external_transaction_id == external_id))
    if not payout:
        logger.info("Webhook for unknown payout %s ignored", external_id)
        return None

    target = map_gateway_status(gateway_status)
    if target is None:
        logger.warning("Webhook for payout %s has unknown status %r", payout.id, gateway_status)
        return payout

    await _transition(
        db, payout, target, failure_reason=failure_reason or f"Gateway reported {gateway_status}"
    )
    return payout


# ── Read Side ─────────────────────────────────────────────────

async def payout_history(
    db: AsyncSession,
    practitioner_id: uuid.UUID,
    status: Optional[PayoutStatus] = None,
    limit: int = 20,
    offset: int = 0,
) -> list[Payout]:
    query = select(Payout).where(Payout.practitioner_id == practitioner_id)
    if status:
        query = query.where(Payout.status == status)
    query = query.order_by(Payout.created_at.desc()).offset(offset).limit(limit)
    return list((await db.scalars(query)).all())


async def earnings_summary(db: AsyncSession, practitioner_id: uuid.UUID) -> dict:
    rows = await db.execute(
        select(Payout.status, func.coalesce(func.sum(Payout.net_amount), 0))
        .where(Payout.practitioner_id == practitioner_id)
        .group_by(Payout.status)
    )
    totals = {status: int(total) for status, total in rows.all()}

    open_cases = await db.execute(
        select(LegalCase.fee_amount, LegalCase.commission_rate).where(
            LegalCase.practitioner_id == practitioner_id,
            LegalCase.status.in_(_UNSETTLED_CASE_STATUSES),
        )
    )
    estimate = sum(compute_split(fee, rate)[1] for fee, rate in open_cases.all())

    completed_cases = await db.scalar(
        select(func.count(LegalCase.id)).where(
            LegalCase.practitioner_id == practitioner_id,
            LegalCase.status == CaseStatus.COMPLETED,
        )
    )
    return {
        "completed_total": totals.get(PayoutStatus.COMPLETED, 0),
        "pending_total": totals.get(PayoutStatus.PENDING, 0) + totals.get(PayoutStatus.CONFIRMED, 0),
        "in_flight_total": totals.get(PayoutStatus.PROCESSING, 0),
        "failed_total": totals.get(PayoutStatus.FAILED, 0),
        "in_progress_estimate": estimate,
        "completed_case_count": completed_cases or 0,
    }


def next_payout_date(today: date) -> date:
    """Settlement runs on the 1st and the 15th: the 15th of this month, else the 1st of next."""
    if today.day <= 15:
        return today.replace(day=15)
    if today.month == 12:
        return date(today.year + 1, 1, 1)
    return date(today.year, today.month + 1, 1)


async def next_payout_info(
    db: AsyncSession, practitioner_id: uuid.UUID, today: Optional[date] = None
) -> dict:
    """Net owed but not yet sent (PENDING + CONFIRMED) and when it is due to go out."""
    pending = await db.scalar(
        select(func.coalesce(func.sum(Payout.net_amount), 0)).where(
            Payout.practitioner_id == practitioner_id,
            Payout.status.in_((PayoutStatus.PENDING, PayoutStatus.CONFIRMED)),
        )
    )
    today = today or _now().date()
    return {"pending_amount": int(pending or 0), "next_payout_date": next_payout_date(today)}
