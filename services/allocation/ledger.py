"""
services/allocation/ledger.py
Per-user annual cylinder allocation (users.barrels_remaining).

decrement/restore run inside the caller's transaction and never commit;
the caller releases the outbox after its own commit. The bulk reset owns
its transactions: one commit per user so a bad row cannot stop the batch,
and each user's BARREL_RESET log lands in the same commit as the new balance.
"""

import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import List, Optional
from zoneinfo import ZoneInfo

from sqlalchemy import func, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from config.settings import settings
from services.notification.dispatcher import Outbox
from services.notification.events import (
    ALLOWANCE_RESET,
    ALLOWANCE_RESTORED,
    ALLOWANCE_USED,
    AllowanceChanged,
)
from shared.models.models import Log, LogAction, User, utcnow
from shared.utils.audit import AuditTrail
from shared.utils.errors import InsufficientBalanceError, NotFoundError

logger = logging.getLogger(__name__)


@dataclass
class ResetSummary:
    processed: int = 0
    failed: int = 0
    failed_user_ids: List[str] = field(default_factory=list)


class AllocationLedger:
    def __init__(
        self,
        db: AsyncSession,
        outbox: Outbox,
        quota: Optional[int] = None,
        timezone_name: Optional[str] = None,
    ):
        self.db = db
        self.outbox = outbox
        self.quota = settings.ANNUAL_BARREL_QUOTA if quota is None else quota
        self.tz = ZoneInfo(timezone_name or settings.BUSINESS_TIMEZONE)
        self.audit = AuditTrail(db)

    async def _load_user(self, user_id: uuid.UUID) -> User:
        # populate_existing: bulk UPDATEs below bypass the identity map
        result = await self.db.execute(
            select(User).where(User.id == user_id).execution_options(populate_existing=True)
        )
        user = result.scalar_one_or_none()
        if not user:
            raise NotFoundError("User not found")
        return user

    async def balance(self, user_id: uuid.UUID) -> int:
        return (await self._load_user(user_id)).barrels_remaining

    # ── Single-user adjustments ───────────────────────────────

    async def decrement(self, user_id: uuid.UUID) -> int:
        """
        Reserve one cylinder. A single conditional UPDATE, so two concurrent
        bookings cannot both take the last cylinder.
        """
        result = await self.db.execute(
            update(User)
            .where(User.id == user_id, User.barrels_remaining > 0)
            .values(barrels_remaining=User.barrels_remaining - 1)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount == 0:
            await self._load_user(user_id)
            raise InsufficientBalanceError()

        user = await self._load_user(user_id)
        logger.info("Barrel used by %s, %d remaining", user.email, user.barrels_remaining)
        self.outbox.add(
            AllowanceChanged(user.email, user.name, user.barrels_remaining, ALLOWANCE_USED)
        )
        return user.barrels_remaining

    async def restore(self, user_id: uuid.UUID) -> int:
        """Return a reserved cylinder (rejected regular booking). Not capped at the quota."""
        result = await self.db.execute(
            update(User)
            .where(User.id == user_id)
            .values(barrels_remaining=User.barrels_remaining + 1)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount == 0:
            raise NotFoundError("User not found")

        user = await self._load_user(user_id)
        logger.info("Barrel restored for %s, %d remaining", user.email, user.barrels_remaining)
        self.outbox.add(
            AllowanceChanged(user.email, user.name, user.barrels_remaining, ALLOWANCE_RESTORED)
        )
        return user.barrels_remaining

    # ── Resets ────────────────────────────────────────────────

    async def reset_all(self, at: Optional[datetime] = None) -> ResetSummary:
        """Set every user back to the annual quota and notify each one."""
        at = (at or utcnow()).astimezone(timezone.utc)
        rows = (
            await self.db.execute(
                select(User.id, User.email, User.name, User.barrels_remaining).order_by(User.created_at)
            )
        ).all()

        summary = ResetSummary()
        for row in rows:
            try:
                result = await self.db.execute(
                    update(User)
                    .where(User.id == row.id)
                    .values(barrels_remaining=self.quota)
                    .execution_options(synchronize_session=False)
                )
                if result.rowcount == 0:
                    # Deleted after the user list was read
                    logger.info("User %s no longer exists, skipping barrel reset", row.id)
                    continue
                self.db.add(
                    Log(
                        user_id=row.id,
                        action=LogAction.BARREL_RESET.value,
                        details=f"Annual barrel reset: {row.barrels_remaining} → {self.quota}",
                        created_at=at,
                    )
                )
                await self.db.commit()
            except SQLAlchemyError:
                await self.db.rollback()
                summary.failed += 1
                summary.failed_user_ids.append(str(row.id))
                logger.exception("Barrel reset failed for user %s", row.id)
                continue

            summary.processed += 1
            self.outbox.add(AllowanceChanged(row.email, row.name, self.quota, ALLOWANCE_RESET))

        await self.outbox.release()
        logger.info(
            "Barrel reset finished: %d users reset, %d failed", summary.processed, summary.failed
        )
        return summary

    async def manual_reset(self, admin_id: uuid.UUID, at: Optional[datetime] = None) -> ResetSummary:
        """Admin-triggered reset, bracketed by attribution logs."""
        await self.audit.record(
            admin_id, LogAction.MANUAL_BARREL_RESET, "Manual barrel reset initiated by admin"
        )
        summary = await self.reset_all(at)
        await self.audit.record(
            admin_id,
            LogAction.MANUAL_BARREL_RESET_COMPLETE,
            f"Manual barrel reset completed: {summary.processed} users reset, {summary.failed} failed",
        )
        return summary

    async def reset_user(self, user_id: uuid.UUID, admin_id: uuid.UUID) -> User:
        previous = await self.balance(user_id)
        await self.db.execute(
            update(User)
            .where(User.id == user_id)
            .values(barrels_remaining=self.quota)
            .execution_options(synchronize_session=False)
        )
        await self.db.commit()

        user = await self._load_user(user_id)
        event = AllowanceChanged(user.email, user.name, user.barrels_remaining, ALLOWANCE_RESET)
        await self.audit.record(
            admin_id,
            LogAction.USER_BARREL_RESET,
            f"Barrels for {user.email} reset: {previous} → {self.quota}",
        )
        self.outbox.add(event)
        await self.outbox.release()
        return user

    # ── Queries ───────────────────────────────────────────────

    async def is_reset_due(self, now: Optional[datetime] = None) -> bool:
        """
        True only on January 1 (business timezone) when no BARREL_RESET
        has been logged inside that calendar year.
        """
        now = now or utcnow()
        if now.tzinfo is None:
            now = now.replace(tzinfo=timezone.utc)
        local = now.astimezone(self.tz)
        if (local.month, local.day) != (1, 1):
            return False

        year_start = datetime(local.year, 1, 1, tzinfo=self.tz).astimezone(timezone.utc)
        next_year = datetime(local.year + 1, 1, 1, tzinfo=self.tz).astimezone(timezone.utc)
        existing = await self.db.scalar(
            select(func.count(Log.id)).where(
                Log.action == LogAction.BARREL_RESET.value,
                Log.created_at >= year_start,
                Log.created_at < next_year,
            )
        )
        return not existing

    async def stats(self) -> dict:
        total_users = await self.db.scalar(select(func.count(User.id)))
        users_with_barrels = await self.db.scalar(
            select(func.count(User.id)).where(User.barrels_remaining > 0)
        )
        average = await self.db.scalar(select(func.avg(User.barrels_remaining)))
        last_reset_at = await self.db.scalar(
            select(func.max(Log.created_at)).where(Log.action == LogAction.BARREL_RESET.value)
        )
        return {
            "total_users": total_users or 0,
            "users_with_barrels": users_with_barrels or 0,
            "average_barrels_remaining": round(float(average or 0), 2),
            "last_reset_at": last_reset_at,
        }
