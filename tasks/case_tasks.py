"""
tasks/case_tasks.py
Delayed checks on case assignments.
"""

import logging
import uuid

from services.case.service import check_acceptance_timeout
from tasks.celery_app import celery_app
from tasks.runner import run_with_session

logger = logging.getLogger(__name__)


@celery_app.task
def check_case_acceptance_timeout(case_id: str, practitioner_id: str) -> dict:
    """
    Scheduled when a case is assigned. If the same practitioner still hasn't
    accepted or declined, the assigning operator is notified. Safe to run
    more than once.
    """
    reminded = run_with_session(
        lambda db: check_acceptance_timeout(db, uuid.UUID(case_id), uuid.UUID(practitioner_id))
    )
    logger.info("Acceptance check for case %s: reminded=%s", case_id, reminded)
    return {"case_id": case_id, "reminded": reminded}
