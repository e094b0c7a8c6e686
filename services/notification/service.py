"""
services/notification/service.py
In-app notification log. Push/SMS/WhatsApp delivery is handled outside this service.
"""

import logging
import uuid
from typing import Optional

from sqlalchemy.ext.asyncio import AsyncSession

from shared.models.models import Notification, NotificationType

logger = logging.getLogger(__name__)


TEMPLATES = {
    NotificationType.CASE_ASSIGNED: {
        "title": "New case assigned",
        "body": "Case {case_number} has been assigned to you. Please accept or decline within {timeout_hours} hours.",
    },
    NotificationType.CASE_ACCEPTANCE_TIMEOUT: {
        "title": "Case not accepted",
        "body": "The practitioner has not responded to case {case_number} within {timeout_hours} hours. Please reassign.",
    },
    NotificationType.CASE_DECLINED: {
        "title": "Case declined",
        "body": "Case {case_number} was declined: {reason}. Please reassign.",
    },
    NotificationType.OPINION_REJECTED: {
        "title": "Opinion sent back",
        "body": "Your opinion for case {case_number} needs revision. {notes}",
    },
    NotificationType.OPINION_DELIVERED: {
        "title": "Your legal opinion is ready",
        "body": "The legal opinion for case {case_number} has been delivered.",
    },
    NotificationType.PAYOUT_SENT: {
        "title": "Payout sent",
        "body": "Payout of Rs.{amount} for case {case_number} has been processed.",
    },
    NotificationType.ACCOUNT_VERIFIED: {
        "title": "Profile verified",
        "body": "Your practitioner profile has been verified. You can now receive cases.",
    },
}


def notify(
    db: AsyncSession,
    user_id: uuid.UUID,
    notification_type: NotificationType,
    template_vars: Optional[dict] = None,
    case_id: Optional[uuid.UUID] = None,
) -> Notification:
    """Queue an in-app notification on the caller's transaction."""
    template = TEMPLATES[notification_type]
    vars_ = template_vars or {}

    notif = Notification(
        user_id=user_id,
        case_id=case_id,
        type=notification_type,
        title=template["title"].format(**vars_),
        body=template["body"].format(**vars_).strip(),
        data={k: str(v) for k, v in vars_.items()},
    )
    db.add(notif)
    logger.debug("Notification %s queued for user %s", notification_type.value, user_id)
    return notif
