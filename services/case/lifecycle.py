"""
services/case/lifecycle.py
Case state machine. Every status mutation is checked against this table.

    ASSIGNED → IN_PROGRESS → OPINION_SUBMITTED → OPINION_APPROVED
             → OPINION_DELIVERED → COMPLETED
    ASSIGNED → REASSIGNED            (decline)
    OPINION_SUBMITTED → IN_PROGRESS  (opinion rejected)
    ASSIGNED | IN_PROGRESS | REASSIGNED → ASSIGNED  (operator reassignment)
"""

from enum import Enum as PyEnum

from shared.errors.errors import InvalidStatus
from shared.models.models import CaseStatus


class CaseAction(str, PyEnum):
    ACCEPT = "ACCEPT"
    DECLINE = "DECLINE"
    REASSIGN = "REASSIGN"
    SUBMIT_OPINION = "SUBMIT_OPINION"
    APPROVE_OPINION = "APPROVE_OPINION"
    REJECT_OPINION = "REJECT_OPINION"
    DELIVER_OPINION = "DELIVER_OPINION"
    COMPLETE = "COMPLETE"


# action → (allowed source statuses, target status)
TRANSITIONS: dict[CaseAction, tuple[frozenset[CaseStatus], CaseStatus]] = {
    CaseAction.ACCEPT: (frozenset({CaseStatus.ASSIGNED}), CaseStatus.IN_PROGRESS),
    CaseAction.DECLINE: (frozenset({CaseStatus.ASSIGNED}), CaseStatus.REASSIGNED),
    CaseAction.REASSIGN: (
        frozenset({CaseStatus.ASSIGNED, CaseStatus.IN_PROGRESS, CaseStatus.REASSIGNED}),
        CaseStatus.ASSIGNED,
    ),
    CaseAction.SUBMIT_OPINION: (frozenset({CaseStatus.IN_PROGRESS}), CaseStatus.OPINION_SUBMITTED),
    CaseAction.APPROVE_OPINION: (
        frozenset({CaseStatus.OPINION_SUBMITTED}), CaseStatus.OPINION_APPROVED
    ),
    CaseAction.REJECT_OPINION: (frozenset({CaseStatus.OPINION_SUBMITTED}), CaseStatus.IN_PROGRESS),
    CaseAction.DELIVER_OPINION: (
        frozenset({CaseStatus.OPINION_APPROVED}), CaseStatus.OPINION_DELIVERED
    ),
    CaseAction.COMPLETE: (frozenset({CaseStatus.OPINION_DELIVERED}), CaseStatus.COMPLETED),
}


def next_status(action: CaseAction, current: CaseStatus) -> CaseStatus:
    """Target status for `action` from `current`, or InvalidStatus."""
    sources, target = TRANSITIONS[action]
    if current not in sources:
        allowed = ", ".join(sorted(s.value for s in sources))
        raise InvalidStatus(
            f"Cannot {action.value.lower().replace('_', ' ')} a case in {current.value} (allowed from: {allowed})"
        )
    return target


def is_allowed(current: CaseStatus, target: CaseStatus) -> bool:
    return any(
        current in sources and to == target for sources, to in TRANSITIONS.values()
    )
