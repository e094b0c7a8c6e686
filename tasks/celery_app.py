"""
tasks/celery_app.py
Celery application instance, shared across all task modules.

Workers are started with:
    celery -A tasks.celery_app worker --loglevel=info -Q default,payouts

Beat scheduler (periodic tasks):
    celery -A tasks.celery_app beat --loglevel=info
"""

from celery import Celery
from celery.schedules import crontab

from config.settings import settings

celery_app = Celery(
    "legal_marketplace",
    broker=settings.CELERY_BROKER_URL,
    backend=settings.CELERY_RESULT_BACKEND,
    include=[
        "tasks.case_tasks",
        "tasks.payout_tasks",
    ],
)

# ── Configuration ─────────────────────────────────────────────

celery_app.conf.update(
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",
    # crontab entries below are evaluated in this timezone
    timezone="Asia/Kolkata",
    enable_utc=True,

    # Acknowledge after execution so a dead worker's task is redelivered
    task_acks_late=True,
    task_reject_on_worker_lost=True,

    result_expires=3600,

    task_default_queue="default",
    task_routes={
        "tasks.payout_tasks.*": {"queue": "payouts"},
        "tasks.case_tasks.*": {"queue": "default"},
    },

    worker_prefetch_multiplier=1,
)

# ── Periodic Tasks (Beat Schedule) ────────────────────────────

celery_app.conf.beat_schedule = {
    # PENDING payouts older than the confirmation window become CONFIRMED
    "auto-confirm-payouts": {
        "task": "tasks.payout_tasks.auto_confirm_payouts",
        "schedule": crontab(hour=0, minute=0),
    },

    # Settlement runs twice a month
    "process-payout-batch": {
        "task": "tasks.payout_tasks.process_payout_batch",
        "schedule": crontab(hour=6, minute=0, day_of_month="1,15"),
    },
}
