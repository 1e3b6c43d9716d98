"""
services/agency/router.py
Public agency directory (verified, active agencies only), cached in Redis,
plus the signed-in agency's own profile and customer list.
"""

from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from config.database import get_db
from config.redis_client import RedisCache, get_redis
from shared.middleware.auth import Principal, require_agency
from shared.models.models import Agency, Booking, User
from shared.schemas.schemas import (
    AgencyCustomerResponse,
    AgencyEnvelope,
    AgencyProfileResponse,
    AgencyResponse,
    AgencyUpdateRequest,
    BookingResponse,
)

router = APIRouter(prefix="/agencies", tags=["Agencies"])

DIRECTORY_CACHE_KEY = "agencies:directory"


async def invalidate_directory(redis) -> None:
    """Call after any change to an agency's verified/active flags or listing details."""
    await RedisCache(redis).delete(DIRECTORY_CACHE_KEY)


# ── Directory ─────────────────────────────────────────────────

@router.get("", response_model=list[AgencyResponse])
async def list_agencies(
    db: AsyncSession = Depends(get_db),
    redis=Depends(get_redis),
):
    cache = RedisCache(redis)
    cached = await cache.get(DIRECTORY_CACHE_KEY)
    if cached is not None:
        return cached

    result = await db.execute(
        select(Agency)
        .where(Agency.is_verified == True, Agency.is_active == True)  # noqa: E712
        .order_by(Agency.name)
    )
    agencies = [AgencyResponse.model_validate(a).model_dump(mode="json") for a in result.scalars()]
    await cache.set(DIRECTORY_CACHE_KEY, agencies)
    return agencies


# ── Own Profile (agency token) ────────────────────────────────

def _customer(user: User, booking_count: int) -> AgencyCustomerResponse:
    return AgencyCustomerResponse(
        id=user.id,
        name=user.name,
        email=user.email,
        phone=user.phone,
        address=user.address,
        city=user.city,
        pincode=user.pincode,
        barrels_remaining=user.barrels_remaining,
        is_active=user.is_active,
        booking_count=booking_count or 0,
        created_at=user.created_at,
    )


@router.get("/me", response_model=AgencyProfileResponse)
async def get_my_agency(
    principal: Principal = Depends(require_agency),
    db: AsyncSession = Depends(get_db),
):
    """Profile with the five most recent bookings and the number of linked customers."""
    agency: Agency = principal.account
    recent = await db.execute(
        select(Booking)
        .where(Booking.agency_id == agency.id)
        .order_by(Booking.created_at.desc())
        .limit(5)
    )
    customer_count = await db.scalar(
        select(func.count(User.id)).where(User.default_vendor_id == agency.id)
    )
    return AgencyProfileResponse(
        agency=AgencyResponse.model_validate(agency),
        customer_count=customer_count or 0,
        recent_bookings=[BookingResponse.model_validate(b) for b in recent.scalars()],
    )


@router.put("/me", response_model=AgencyEnvelope)
async def update_my_agency(
    data: AgencyUpdateRequest,
    principal: Principal = Depends(require_agency),
    db: AsyncSession = Depends(get_db),
    redis=Depends(get_redis),
):
    agency: Agency = principal.account
    updates = data.model_dump(exclude_none=True)
    for field, value in updates.items():
        setattr(agency, field, value)

    if updates:
        await db.commit()
        await db.refresh(agency)
        await invalidate_directory(redis)

    return AgencyEnvelope(
        message="Profile updated successfully",
        agency=AgencyResponse.model_validate(agency),
    )


@router.get("/me/users")
async def list_my_customers(
    principal: Principal = Depends(require_agency),
    db: AsyncSession = Depends(get_db),
):
    """Users who picked this agency as their default vendor, newest first."""
    booking_count = (
        select(func.count(Booking.id))
        .where(Booking.user_id == User.id)
        .correlate(User)
        .scalar_subquery()
    )
    result = await db.execute(
        select(User, booking_count.label("booking_count"))
        .where(User.default_vendor_id == principal.id)
        .order_by(User.created_at.desc())
    )

    return {"users": [_customer(user, count) for user, count in result.all()]}


@router.get("/{agency_id}", response_model=AgencyResponse)
async def get_agency(agency_id: UUID, db: AsyncSession = Depends(get_db)):
    agency = await db.get(Agency, agency_id)
    if not agency or not agency.can_login:
        raise HTTPException(status_code=404, detail="Agency not found")
    return AgencyResponse.model_validate(agency)
