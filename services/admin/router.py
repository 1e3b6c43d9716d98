"""
services/admin/router.py
Admin-only endpoints: user moderation, agency verification,
booking overview and the audit log.

Every mutation is recorded in the Log table after it commits.
"""

from typing import Optional
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from config.database import get_db
from config.redis_client import get_redis
from services.agency.router import invalidate_directory
from shared.middleware.auth import Principal, require_admin
from shared.models.models import Agency, Booking, BookingStatus, Log, LogAction, User
from shared.schemas.schemas import (
    AgencyResponse,
    BookingResponse,
    LogResponse,
    MessageResponse,
    PaginatedResponse,
    UserResponse,
)
from shared.utils.audit import AuditTrail

router = APIRouter(prefix="/admin", tags=["Admin"])


@router.get("/profile", response_model=UserResponse)
async def admin_profile(principal: Principal = Depends(require_admin)):
    return UserResponse.model_validate(principal.account)


# ── Users ─────────────────────────────────────────────────────────────────────

@router.get("/users", response_model=PaginatedResponse)
async def list_users(
    search: Optional[str] = Query(None, max_length=100),
    page: int = Query(1, ge=1),
    page_size: int = Query(20, ge=1, le=100),
    principal: Principal = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    query = select(User)
    if search:
        pattern = f"%{search}%"
        query = query.where(User.name.ilike(pattern) | User.email.ilike(pattern))

    total = await db.scalar(select(func.count()).select_from(query.subquery()))
    result = await db.execute(
        query.order_by(User.created_at.desc()).offset((page - 1) * page_size).limit(page_size)
    )
    return PaginatedResponse(
        items=[UserResponse.model_validate(u).model_dump(mode="json") for u in result.scalars()],
        total=total or 0,
        page=page,
        page_size=page_size,
    )


async def _get_user_or_404(user_id: UUID, db: AsyncSession) -> User:
    user = await db.get(User, user_id)
    if not user:
        raise HTTPException(status_code=404, detail="User not found")
    return user


@router.post("/users/{user_id}/toggle-status", response_model=UserResponse)
async def toggle_user_status(
    user_id: UUID,
    principal: Principal = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    """Activate or deactivate a user account."""
    user = await _get_user_or_404(user_id, db)
    if user.id == principal.id:
        raise HTTPException(status_code=400, detail="You cannot deactivate your own account")

    user.is_active = not user.is_active
    await db.commit()

    state = "activated" if user.is_active else "deactivated"
    await AuditTrail(db).record(
        principal.id, LogAction.USER_STATUS_TOGGLE, f"User {user.email} {state}"
    )
    return UserResponse.model_validate(user)


@router.post("/users/{user_id}/toggle-block", response_model=UserResponse)
async def toggle_user_block(
    user_id: UUID,
    principal: Principal = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    user = await _get_user_or_404(user_id, db)
    if user.id == principal.id:
        raise HTTPException(status_code=400, detail="You cannot block your own account")

    user.is_blocked = not user.is_blocked
    await db.commit()

    state = "blocked" if user.is_blocked else "unblocked"
    await AuditTrail(db).record(
        principal.id, LogAction.USER_STATUS_TOGGLE, f"User {user.email} {state}"
    )
    return UserResponse.model_validate(user)


@router.delete("/users/{user_id}", response_model=MessageResponse)
async def delete_user(
    user_id: UUID,
    principal: Principal = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    """Hard delete. Cascades to the user's bookings, payments and read markers."""
    user = await _get_user_or_404(user_id, db)
    if user.id == principal.id:
        raise HTTPException(status_code=400, detail="You cannot delete your own account")

    email = user.email
    await db.delete(user)
    await db.commit()

    await AuditTrail(db).record(principal.id, LogAction.USER_DELETE, f"User {email} deleted")
    return MessageResponse(message="User deleted successfully")


# ── Agencies ──────────────────────────────────────────────────────────────────

@router.get("/agencies", response_model=list[AgencyResponse])
async def list_all_agencies(
    verified: Optional[bool] = Query(None),
    principal: Principal = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    """Every agency, including those still awaiting verification."""
    query = select(Agency).order_by(Agency.created_at.asc())
    if verified is not None:
        query = query.where(Agency.is_verified == verified)
    result = await db.execute(query)
    return [AgencyResponse.model_validate(a) for a in result.scalars()]


async def _get_agency_or_404(agency_id: UUID, db: AsyncSession) -> Agency:
    agency = await db.get(Agency, agency_id)
    if not agency:
        raise HTTPException(status_code=404, detail="Agency not found")
    return agency


@router.post("/agencies/{agency_id}/verify", response_model=AgencyResponse)
async def verify_agency(
    agency_id: UUID,
    principal: Principal = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
    redis=Depends(get_redis),
):
    agency = await _get_agency_or_404(agency_id, db)
    if agency.is_verified:
        raise HTTPException(status_code=400, detail="Agency is already verified")

    agency.is_verified = True
    await db.commit()
    await invalidate_directory(redis)

    await AuditTrail(db).record(
        principal.id, LogAction.AGENCY_VERIFY, f"Agency {agency.email} verified"
    )
    return AgencyResponse.model_validate(agency)


@router.post("/agencies/{agency_id}/toggle-status", response_model=AgencyResponse)
async def toggle_agency_status(
    agency_id: UUID,
    principal: Principal = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
    redis=Depends(get_redis),
):
    agency = await _get_agency_or_404(agency_id, db)
    agency.is_active = not agency.is_active
    await db.commit()
    await invalidate_directory(redis)

    state = "activated" if agency.is_active else "deactivated"
    await AuditTrail(db).record(
        principal.id, LogAction.AGENCY_STATUS_TOGGLE, f"Agency {agency.email} {state}"
    )
    return AgencyResponse.model_validate(agency)


# ── Bookings & Audit Log ──────────────────────────────────────────────────────

@router.get("/bookings")
async def list_all_bookings(
    status_filter: Optional[BookingStatus] = Query(None, alias="status"),
    page: int = Query(1, ge=1),
    page_size: int = Query(20, ge=1, le=100),
    principal: Principal = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    query = select(Booking)
    if status_filter:
        query = query.where(Booking.status == status_filter)
    result = await db.execute(
        query.order_by(Booking.created_at.desc()).offset((page - 1) * page_size).limit(page_size)
    )
    return {"bookings": [BookingResponse.model_validate(b) for b in result.scalars()]}


@router.get("/logs", response_model=list[LogResponse])
async def get_logs(
    action: Optional[str] = Query(None),
    user_id: Optional[UUID] = Query(None),
    limit: int = Query(100, ge=1, le=500),
    principal: Principal = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    """Append-only audit trail, newest first."""
    query = select(Log)
    if action:
        query = query.where(Log.action == action)
    if user_id:
        query = query.where(Log.user_id == user_id)
    result = await db.execute(query.order_by(Log.created_at.desc()).limit(limit))
    return [LogResponse.model_validate(entry) for entry in result.scalars()]
