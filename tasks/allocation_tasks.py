"""
tasks/allocation_tasks.py
Celery task for the yearly cylinder allocation reset.

Usage (manual trigger from a shell):
    from tasks.allocation_tasks import annual_barrel_reset
    annual_barrel_reset.delay()
"""

import asyncio
import logging
from typing import Optional

from config.database import close_db, get_db_context
from services.allocation.ledger import AllocationLedger
from services.allocation.trigger import run_annual_reset_if_due
from services.notification.dispatcher import NotificationDispatcher, Outbox
from services.notification.email import EmailService
from tasks.celery_app import celery_app

logger = logging.getLogger(__name__)


async def _run_annual_reset() -> Optional[dict]:
    dispatcher = NotificationDispatcher(EmailService.from_settings())
    try:
        async with get_db_context() as db:
            ledger = AllocationLedger(db, Outbox(dispatcher))
            summary = await run_annual_reset_if_due(ledger)
    finally:
        # Each asyncio.run() gets a fresh loop; pooled connections must not outlive it
        await close_db()

    if summary is None:
        return None
    return {"processed": summary.processed, "failed": summary.failed}


@celery_app.task(name="tasks.allocation_tasks.annual_barrel_reset")
def annual_barrel_reset():
    """Hourly beat entry. Resets every user's allocation once per calendar year."""
    result = asyncio.run(_run_annual_reset())
    if result is None:
        logger.debug("annual_barrel_reset: not due")
        return {"status": "skipped"}

    logger.info(
        "annual_barrel_reset: %d users reset, %d failed", result["processed"], result["failed"]
    )
    return {"status": "completed", **result}
