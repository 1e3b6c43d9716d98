"""
services/allocation/router.py
Admin endpoints for the annual cylinder allocation:
manual bulk reset, reset status/stats, and single-user reset.
"""

from typing import Optional
from uuid import UUID

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from config.database import get_db
from services.allocation.ledger import AllocationLedger
from services.notification.dispatcher import NotificationDispatcher, Outbox, get_dispatcher
from shared.middleware.auth import Principal, require_admin
from shared.schemas.schemas import (
    BarrelResetRequest,
    BarrelResetResponse,
    BarrelStatsResponse,
    BarrelStatusResponse,
    UserEnvelope,
    UserResponse,
)
from shared.utils.errors import ValidationError

router = APIRouter(prefix="/admin", tags=["Allocation"])


def get_ledger(
    db: AsyncSession = Depends(get_db),
    dispatcher: NotificationDispatcher = Depends(get_dispatcher),
) -> AllocationLedger:
    return AllocationLedger(db, Outbox(dispatcher))


@router.post("/barrel-reset", response_model=BarrelResetResponse)
async def manual_barrel_reset(
    data: Optional[BarrelResetRequest] = None,
    principal: Principal = Depends(require_admin),
    ledger: AllocationLedger = Depends(get_ledger),
):
    """Reset every user's allocation now, regardless of the date."""
    if data and data.admin_id and data.admin_id != principal.id:
        raise ValidationError("admin_id does not match the authenticated admin")

    summary = await ledger.manual_reset(principal.id)
    return BarrelResetResponse(
        message="Barrel reset completed successfully",
        processed=summary.processed,
        failed=summary.failed,
    )


@router.get("/barrel-reset", response_model=BarrelStatusResponse)
async def barrel_reset_status(
    principal: Principal = Depends(require_admin),
    ledger: AllocationLedger = Depends(get_ledger),
):
    stats = await ledger.stats()
    return BarrelStatusResponse(
        stats=BarrelStatsResponse(**stats),
        is_reset_needed=await ledger.is_reset_due(),
    )


@router.post("/users/{user_id}/reset-barrels", response_model=UserEnvelope)
async def reset_user_barrels(
    user_id: UUID,
    principal: Principal = Depends(require_admin),
    ledger: AllocationLedger = Depends(get_ledger),
):
    user = await ledger.reset_user(user_id, principal.id)
    return UserEnvelope(
        message=f"Barrels reset to {ledger.quota}",
        user=UserResponse.model_validate(user),
    )
