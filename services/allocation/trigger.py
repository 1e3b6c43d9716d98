"""
services/allocation/trigger.py
Decides whether the annual reset should run and runs it.
Safe under at-least-once scheduling: the BARREL_RESET log check is the only guard.
"""

import logging
from datetime import datetime
from typing import Optional

from services.allocation.ledger import AllocationLedger, ResetSummary
from shared.models.models import utcnow

logger = logging.getLogger(__name__)


async def run_annual_reset_if_due(
    ledger: AllocationLedger,
    now: Optional[datetime] = None,
) -> Optional[ResetSummary]:
    """Returns the reset summary, or None when no reset was due."""
    now = now or utcnow()
    if not await ledger.is_reset_due(now):
        logger.debug("Annual barrel reset not due at %s", now.isoformat())
        return None

    logger.info("Annual barrel reset due, resetting all users")
    return await ledger.reset_all(at=now)
