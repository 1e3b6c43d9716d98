"""
shared/utils/audit.py
Best-effort writer for the Log table.

Entries are written after the business transaction has committed, on a
short-lived session of their own: a failed write is rolled back and logged
there, never raised, and never touches the caller's session.
"""

import logging
import uuid
from datetime import datetime
from typing import Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from shared.models.models import Log, LogAction

logger = logging.getLogger(__name__)


class AuditTrail:
    def __init__(self, db: AsyncSession):
        self.bind = db.bind

    async def record(
        self,
        user_id: Optional[uuid.UUID],
        action: LogAction | str,
        details: str,
        at: Optional[datetime] = None,
    ) -> bool:
        action_value = action.value if isinstance(action, LogAction) else action
        entry = Log(user_id=user_id, action=action_value, details=details)
        if at is not None:
            entry.created_at = at

        async with AsyncSession(bind=self.bind, expire_on_commit=False) as session:
            session.add(entry)
            try:
                await session.commit()
                return True
            except SQLAlchemyError:
                await session.rollback()
                logger.warning(
                    "Audit log write failed: %s (%s)", action_value, details, exc_info=True
                )
                return False
