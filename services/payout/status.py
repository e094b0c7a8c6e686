"""
services/payout/status.py
Payout state machine and the RazorpayX → local status table.

    PENDING → CONFIRMED → PROCESSING → COMPLETED
    PENDING | CONFIRMED | PROCESSING → FAILED
    FAILED → CONFIRMED only via an explicit retry (not a gateway transition)
"""

from typing import Optional

from shared.models.models import PayoutStatus

PAYOUT_TRANSITIONS: dict[PayoutStatus, frozenset[PayoutStatus]] = {
    PayoutStatus.PENDING: frozenset({PayoutStatus.CONFIRMED, PayoutStatus.FAILED}),
    PayoutStatus.CONFIRMED: frozenset({PayoutStatus.PROCESSING, PayoutStatus.FAILED}),
    PayoutStatus.PROCESSING: frozenset({PayoutStatus.COMPLETED, PayoutStatus.FAILED}),
    PayoutStatus.COMPLETED: frozenset(),
    PayoutStatus.FAILED: frozenset(),
}

GATEWAY_STATUS_MAP: dict[str, PayoutStatus] = {
    "queued": PayoutStatus.PENDING,
    "pending": PayoutStatus.PENDING,
    "processing": PayoutStatus.PROCESSING,
    "processed": PayoutStatus.COMPLETED,
    "reversed": PayoutStatus.FAILED,
    "cancelled": PayoutStatus.FAILED,
    "rejected": PayoutStatus.FAILED,
    "failed": PayoutStatus.FAILED,
}


def map_gateway_status(gateway_status: str) -> Optional[PayoutStatus]:
    return GATEWAY_STATUS_MAP.get((gateway_status or "").strip().lower())


def can_transition(current: PayoutStatus, target: PayoutStatus) -> bool:
    return target in PAYOUT_TRANSITIONS[current]
