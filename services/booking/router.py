"""
services/booking/router.py
Cylinder booking endpoints. All lifecycle rules live in BookingStateMachine;
this layer resolves who is calling and shapes the responses.
States: PENDING → APPROVED → DELIVERED, PENDING → REJECTED
"""

from typing import Optional
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from config.database import get_db
from services.booking.state_machine import BookingStateMachine
from services.notification.dispatcher import NotificationDispatcher, get_dispatcher
from shared.middleware.auth import (
    Principal,
    get_current_principal,
    get_current_user,
    require_agency,
    require_booking_operator,
)
from shared.models.models import Booking, BookingStatus, User
from shared.schemas.schemas import (
    BookingActionRequest,
    BookingCreateRequest,
    BookingDeliverRequest,
    BookingEnvelope,
    BookingRejectRequest,
    BookingResponse,
    BookingScheduleRequest,
    ErrorResponse,
)

router = APIRouter(
    prefix="/bookings",
    tags=["Bookings"],
    responses={400: {"model": ErrorResponse}, 404: {"model": ErrorResponse}},
)


# ── Helpers ───────────────────────────────────────────────────

def get_state_machine(
    db: AsyncSession = Depends(get_db),
    dispatcher: NotificationDispatcher = Depends(get_dispatcher),
) -> BookingStateMachine:
    return BookingStateMachine.build(db, dispatcher)


def _check_acting_as(principal: Principal, admin_id: Optional[UUID]) -> None:
    """Body admin_id is informational; it may not name someone other than the caller."""
    if admin_id and admin_id != principal.id:
        raise HTTPException(status_code=403, detail="admin_id does not match the authenticated account")


def _envelope(message: str, booking: Booking) -> BookingEnvelope:
    return BookingEnvelope(message=message, booking=BookingResponse.model_validate(booking))


def _parse_status(status_filter: Optional[str]) -> Optional[BookingStatus]:
    if not status_filter:
        return None
    try:
        return BookingStatus(status_filter)
    except ValueError:
        raise HTTPException(status_code=400, detail=f"Invalid status: {status_filter}")


# ── Create ────────────────────────────────────────────────────

@router.post("", response_model=BookingEnvelope)
async def create_booking(
    data: BookingCreateRequest,
    principal: Principal = Depends(get_current_principal),
    machine: BookingStateMachine = Depends(get_state_machine),
):
    """
    Book a cylinder. Users book for themselves; admins may book on behalf of a user.
    Regular bookings consume one cylinder of the annual allocation, extra ones do not.
    """
    if principal.is_agency:
        raise HTTPException(status_code=403, detail="Agencies cannot create bookings")
    if not principal.is_admin and data.user_id != principal.id:
        raise HTTPException(status_code=403, detail="You can only create bookings for yourself")

    booking = await machine.create(
        user_id=data.user_id,
        payment_method=data.payment_method,
        agency_id=data.agency_id,
        is_extra=data.is_extra,
        notes=data.notes,
    )
    return _envelope("Booking created successfully", booking)


# ── Transitions (admin or assigned agency) ────────────────────

@router.post("/approve", response_model=BookingEnvelope)
async def approve_booking(
    data: BookingActionRequest,
    principal: Principal = Depends(require_booking_operator),
    machine: BookingStateMachine = Depends(get_state_machine),
):
    _check_acting_as(principal, data.admin_id)
    booking = await machine.approve(data.booking_id, principal)
    return _envelope("Booking approved successfully", booking)


@router.post("/reject", response_model=BookingEnvelope)
async def reject_booking(
    data: BookingRejectRequest,
    principal: Principal = Depends(require_booking_operator),
    machine: BookingStateMachine = Depends(get_state_machine),
):
    """Rejecting a regular booking returns its cylinder to the user's allocation."""
    _check_acting_as(principal, data.admin_id)
    booking = await machine.reject(data.booking_id, principal, data.reason)
    return _envelope("Booking rejected successfully", booking)


@router.post("/deliver", response_model=BookingEnvelope)
async def deliver_booking(
    data: BookingDeliverRequest,
    principal: Principal = Depends(require_booking_operator),
    machine: BookingStateMachine = Depends(get_state_machine),
):
    _check_acting_as(principal, data.admin_id)
    booking = await machine.deliver(data.booking_id, principal, data.delivery_notes)
    return _envelope("Delivery marked as complete", booking)


@router.post("/schedule", response_model=BookingEnvelope)
async def schedule_delivery(
    data: BookingScheduleRequest,
    principal: Principal = Depends(require_booking_operator),
    machine: BookingStateMachine = Depends(get_state_machine),
):
    _check_acting_as(principal, data.admin_id)
    booking = await machine.schedule(
        data.booking_id,
        principal,
        scheduled_for=data.scheduled_for,
        delivery_address=data.delivery_address,
        contact_number=data.contact_number,
    )
    return _envelope("Delivery scheduled successfully", booking)


# ── Read Endpoints ────────────────────────────────────────────

@router.get("/history")
async def booking_history(
    page: int = Query(1, ge=1),
    page_size: int = Query(20, ge=1, le=100),
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """All of the caller's bookings, newest first."""
    result = await db.execute(
        select(Booking)
        .where(Booking.user_id == current_user.id)
        .order_by(Booking.created_at.desc())
        .offset((page - 1) * page_size)
        .limit(page_size)
    )
    return {"bookings": [BookingResponse.model_validate(b) for b in result.scalars()]}


@router.get("/current")
async def current_bookings(
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """Bookings still in progress (PENDING or APPROVED)."""
    result = await db.execute(
        select(Booking)
        .where(
            Booking.user_id == current_user.id,
            Booking.status.in_([BookingStatus.PENDING, BookingStatus.APPROVED]),
        )
        .order_by(Booking.created_at.desc())
    )
    return {"current_bookings": [BookingResponse.model_validate(b) for b in result.scalars()]}


@router.get("/agency")
async def agency_bookings(
    status_filter: Optional[str] = Query(None, alias="status"),
    page: int = Query(1, ge=1),
    page_size: int = Query(20, ge=1, le=100),
    principal: Principal = Depends(require_agency),
    db: AsyncSession = Depends(get_db),
):
    """Bookings assigned to the calling agency."""
    query = select(Booking).where(Booking.agency_id == principal.id)
    wanted = _parse_status(status_filter)
    if wanted:
        query = query.where(Booking.status == wanted)
    query = query.order_by(Booking.created_at.desc()).offset((page - 1) * page_size).limit(page_size)
    result = await db.execute(query)
    return {"bookings": [BookingResponse.model_validate(b) for b in result.scalars()]}


@router.get("/{booking_id}", response_model=BookingResponse)
async def get_booking(
    booking_id: UUID,
    principal: Principal = Depends(get_current_principal),
    db: AsyncSession = Depends(get_db),
):
    """Owner, assigned agency, or any admin."""
    booking = await db.get(Booking, booking_id)
    if not booking:
        raise HTTPException(status_code=404, detail="Booking not found")

    allowed = (
        principal.is_admin
        or (principal.is_agency and booking.agency_id == principal.id)
        or booking.user_id == principal.id
    )
    if not allowed:
        raise HTTPException(status_code=403, detail="Not authorized")
    return BookingResponse.model_validate(booking)
