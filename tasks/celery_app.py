"""
tasks/celery_app.py
Celery application instance, shared across all task modules.

Workers are started with:
    celery -A tasks.celery_app worker --loglevel=info --concurrency=2

Beat scheduler (periodic tasks):
    celery -A tasks.celery_app beat --loglevel=info
"""

from celery import Celery
from celery.schedules import crontab

from config.settings import settings

celery_app = Celery(
    "gas_agency",
    broker=settings.CELERY_BROKER_URL,
    backend=settings.CELERY_RESULT_BACKEND,
    include=[
        "tasks.allocation_tasks",
    ],
)

# ── Configuration ─────────────────────────────────────────────────────────────

celery_app.conf.update(
    # Serialization
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",
    timezone=settings.BUSINESS_TIMEZONE,
    enable_utc=True,

    # Acknowledge after execution so a worker crash re-queues the task
    task_acks_late=True,
    task_reject_on_worker_lost=True,

    # Result expiry: keep task results for 1 hour
    result_expires=3600,

    task_routes={
        "tasks.allocation_tasks.*": {"queue": "default"},
    },

    worker_prefetch_multiplier=1,
)

# ── Periodic Tasks (Beat Schedule) ────────────────────────────────────────────

celery_app.conf.beat_schedule = {
    # Checks hourly; only the first run on January 1st (business timezone) resets.
    # Reruns are no-ops once a BARREL_RESET log exists for the year.
    "annual-barrel-reset": {
        "task": "tasks.allocation_tasks.annual_barrel_reset",
        "schedule": crontab(minute=0),  # top of every hour
    },
}
