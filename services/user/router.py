"""
services/user/router.py
User profile management and default vendor (fallback agency) selection.
"""

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.ext.asyncio import AsyncSession

from config.database import get_db
from shared.middleware.auth import get_current_user
from shared.models.models import Agency, User
from shared.schemas.schemas import (
    AgencyResponse,
    DefaultVendorRequest,
    UserResponse,
    UserUpdateRequest,
)

router = APIRouter(prefix="/users", tags=["Users"])


@router.get("/me", response_model=UserResponse)
async def get_me(current_user: User = Depends(get_current_user)):
    """Profile including the remaining cylinder allocation for this year."""
    return UserResponse.model_validate(current_user)


@router.patch("/me", response_model=UserResponse)
async def update_me(
    data: UserUpdateRequest,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """Only non-None fields in the request body are updated."""
    updates = data.model_dump(exclude_none=True)
    if not updates:
        return UserResponse.model_validate(current_user)

    for field, value in updates.items():
        setattr(current_user, field, value)

    await db.commit()
    await db.refresh(current_user)
    return UserResponse.model_validate(current_user)


@router.get("/me/default-vendor", response_model=AgencyResponse | None)
async def get_default_vendor(
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    if not current_user.default_vendor_id:
        return None
    agency = await db.get(Agency, current_user.default_vendor_id)
    return AgencyResponse.model_validate(agency) if agency else None


@router.put("/me/default-vendor", response_model=UserResponse)
async def set_default_vendor(
    data: DefaultVendorRequest,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """Pick the agency used when a booking does not name one. null clears it."""
    if data.agency_id:
        agency = await db.get(Agency, data.agency_id)
        if not agency:
            raise HTTPException(status_code=404, detail="Agency not found")
        if not agency.can_login:
            raise HTTPException(status_code=400, detail="Agency is not verified or inactive")

    current_user.default_vendor_id = data.agency_id
    await db.commit()
    await db.refresh(current_user)
    return UserResponse.model_validate(current_user)
