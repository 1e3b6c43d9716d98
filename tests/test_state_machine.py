"""
tests/test_state_machine.py
Service-level tests for the booking lifecycle:
PENDING → APPROVED → DELIVERED, PENDING → REJECTED, and allocation effects.
"""

import uuid
from datetime import datetime, timedelta, timezone
from unittest.mock import AsyncMock, patch

import pytest
from sqlalchemy import select, update
from sqlalchemy.exc import OperationalError

from services.booking.state_machine import BookingStateMachine
from services.notification.dispatcher import NotificationDispatcher
from services.notification.email import DEFAULT_REJECTION_REASON
from shared.middleware.auth import Principal
from shared.models.models import (
    Agency,
    Booking,
    BookingStatus,
    Log,
    LogAction,
    PaymentMethod,
    User,
)
from shared.utils.errors import (
    ConflictingPendingBookingError,
    ForbiddenError,
    InsufficientBalanceError,
    InvalidStateTransitionError,
    NoAgencySelectedError,
    NotFoundError,
)
from tests.conftest import make_user


@pytest.fixture
def machine(db, dispatcher: NotificationDispatcher) -> BookingStateMachine:
    return BookingStateMachine.build(db, dispatcher)


async def _create(machine: BookingStateMachine, user: User, **kwargs) -> Booking:
    kwargs.setdefault("payment_method", PaymentMethod.COD)
    return await machine.create(user_id=user.id, **kwargs)


# ── Create ─────────────────────────────────────────────────────────────────────

@pytest.mark.asyncio
async def test_create_uses_default_vendor_and_consumes_cylinder(machine, db, user, agency, mailer):
    booking = await _create(machine, user)

    assert booking.status == BookingStatus.PENDING
    assert booking.agency_id == agency.id
    await db.refresh(user)
    assert user.barrels_remaining == 11

    mailer.send_booking_confirmation.assert_awaited_once()
    mailer.send_account_balance_notification.assert_awaited_once()

    [entry] = (
        await db.execute(select(Log).where(Log.action == LogAction.BOOKING_CREATE.value))
    ).scalars().all()
    assert entry.user_id == user.id
    assert entry.details == f"User {user.email} created a booking with COD"


@pytest.mark.asyncio
async def test_create_with_explicit_agency(machine, user, other_agency):
    booking = await _create(machine, user, agency_id=other_agency.id)
    assert booking.agency_id == other_agency.id


@pytest.mark.asyncio
async def test_create_extra_booking_keeps_allocation(machine, db, user, mailer):
    booking = await _create(machine, user, is_extra=True, payment_method=PaymentMethod.ONLINE)

    assert booking.is_extra is True
    await db.refresh(user)
    assert user.barrels_remaining == 12
    mailer.send_account_balance_notification.assert_not_awaited()


@pytest.mark.asyncio
async def test_create_extra_allowed_with_empty_allocation(machine, db, agency):
    empty = await make_user(db, barrels_remaining=0, default_vendor_id=agency.id)
    booking = await _create(machine, empty, is_extra=True)
    assert booking.status == BookingStatus.PENDING


@pytest.mark.asyncio
async def test_create_without_allocation_fails(machine, db, agency, mailer):
    empty = await make_user(db, barrels_remaining=0, default_vendor_id=agency.id)

    with pytest.raises(InsufficientBalanceError):
        await _create(machine, empty)

    count = (await db.execute(select(Booking).where(Booking.user_id == empty.id))).all()
    assert count == []
    mailer.send_booking_confirmation.assert_not_awaited()


@pytest.mark.asyncio
async def test_balance_checked_before_pending_rule(machine, db, agency):
    """With no cylinders left, a second regular booking reports the balance error."""
    almost = await make_user(db, barrels_remaining=1, default_vendor_id=agency.id)
    await _create(machine, almost)

    with pytest.raises(InsufficientBalanceError):
        await _create(machine, almost)


@pytest.mark.asyncio
async def test_second_pending_booking_rejected(machine, db, user):
    await _create(machine, user)

    with pytest.raises(ConflictingPendingBookingError):
        await _create(machine, user, is_extra=True)

    await db.refresh(user)
    assert user.barrels_remaining == 11


@pytest.mark.asyncio
async def test_create_without_any_agency(machine, db):
    loner = await make_user(db)
    with pytest.raises(NoAgencySelectedError):
        await _create(machine, loner)
    await db.refresh(loner)
    assert loner.barrels_remaining == 12


@pytest.mark.asyncio
async def test_create_with_unknown_agency(machine, user):
    with pytest.raises(NotFoundError):
        await _create(machine, user, agency_id=uuid.uuid4())


@pytest.mark.asyncio
async def test_create_for_unknown_user(machine):
    with pytest.raises(NotFoundError):
        await machine.create(user_id=uuid.uuid4(), payment_method=PaymentMethod.COD)


# ── Concurrent requests ────────────────────────────────────────────────────────

@pytest.mark.asyncio
async def test_unique_pending_index_stops_racing_booking(
    session_factory, dispatcher, db, agency, mailer
):
    racer = await make_user(db, barrels_remaining=5, default_vendor_id=agency.id)

    async with session_factory() as first, session_factory() as second:
        await BookingStateMachine.build(first, dispatcher).create(
            user_id=racer.id, payment_method=PaymentMethod.COD
        )

        # The second request read "no pending booking" before the first committed
        with patch.object(second, "scalar", AsyncMock(return_value=None)):
            with pytest.raises(ConflictingPendingBookingError):
                await BookingStateMachine.build(second, dispatcher).create(
                    user_id=racer.id, payment_method=PaymentMethod.COD
                )

    bookings = (
        await db.execute(select(Booking).where(Booking.user_id == racer.id))
    ).scalars().all()
    assert len(bookings) == 1
    await db.refresh(racer)
    assert racer.barrels_remaining == 4
    mailer.send_booking_confirmation.assert_awaited_once()


@pytest.mark.asyncio
async def test_conditional_decrement_stops_stale_balance(
    session_factory, dispatcher, db, agency, mailer
):
    racer = await make_user(db, barrels_remaining=1, default_vendor_id=agency.id)

    async with session_factory() as stale, session_factory() as other:
        real_get = stale.get

        async def get_then_spend_last_cylinder(entity, ident, **kwargs):
            obj = await real_get(entity, ident, **kwargs)
            if entity is User:
                await other.execute(
                    update(User).where(User.id == ident).values(barrels_remaining=0)
                )
                await other.commit()
            return obj

        machine = BookingStateMachine.build(stale, dispatcher)
        with patch.object(stale, "get", get_then_spend_last_cylinder):
            with pytest.raises(InsufficientBalanceError):
                await machine.create(user_id=racer.id, payment_method=PaymentMethod.COD)
        assert machine.outbox.pending == []

    bookings = (
        await db.execute(select(Booking).where(Booking.user_id == racer.id))
    ).scalars().all()
    assert bookings == []
    await db.refresh(racer)
    assert racer.barrels_remaining == 0
    mailer.send_booking_confirmation.assert_not_awaited()


# ── Transitions ────────────────────────────────────────────────────────────────

@pytest.mark.asyncio
async def test_full_lifecycle(machine, user, agency: Agency, mailer):
    actor = Principal.from_agency(agency)
    booking = await _create(machine, user)

    approved = await machine.approve(booking.id, actor)
    assert approved.status == BookingStatus.APPROVED
    assert approved.approved_at is not None
    mailer.send_booking_approval.assert_awaited_once()
    mailer.send_transaction_acknowledgment.assert_awaited_once()

    when = datetime.now(timezone.utc) + timedelta(days=1)
    scheduled = await machine.schedule(
        booking.id, actor, scheduled_for=when, delivery_address="4 MG Road", contact_number="999"
    )
    assert scheduled.status == BookingStatus.APPROVED
    assert scheduled.delivery_address == "4 MG Road"

    delivered = await machine.deliver(booking.id, actor, "Left with neighbour")
    assert delivered.status == BookingStatus.DELIVERED
    assert delivered.delivered_at is not None
    assert delivered.delivery_notes == "Left with neighbour"
    mailer.send_delivery_confirmation.assert_awaited_once()


@pytest.mark.asyncio
async def test_reject_restores_cylinder(machine, db, user, admin, mailer):
    booking = await _create(machine, user)

    rejected = await machine.reject(booking.id, Principal.from_user(admin), "Address not serviceable")

    assert rejected.status == BookingStatus.REJECTED
    assert rejected.rejected_at is not None
    assert rejected.notes == "Address not serviceable"
    await db.refresh(user)
    assert user.barrels_remaining == 12
    mailer.send_booking_rejection.assert_awaited_once()
    assert mailer.send_booking_rejection.await_args.args[3] == "Address not serviceable"


@pytest.mark.asyncio
async def test_reject_extra_booking_does_not_restore(machine, db, user, admin):
    booking = await _create(machine, user, is_extra=True)
    await machine.reject(booking.id, Principal.from_user(admin))
    await db.refresh(user)
    assert user.barrels_remaining == 12


@pytest.mark.asyncio
async def test_reject_without_reason_uses_default(machine, user, admin, mailer):
    booking = await _create(machine, user)
    await machine.reject(booking.id, Principal.from_user(admin))
    assert mailer.send_booking_rejection.await_args.args[3] == DEFAULT_REJECTION_REASON


@pytest.mark.asyncio
async def test_rejected_booking_frees_pending_slot(machine, user, admin):
    first = await _create(machine, user)
    await machine.reject(first.id, Principal.from_user(admin))

    second = await _create(machine, user)
    assert second.status == BookingStatus.PENDING


@pytest.mark.asyncio
async def test_cannot_approve_twice(machine, user, admin):
    actor = Principal.from_user(admin)
    booking = await _create(machine, user)
    await machine.approve(booking.id, actor)

    with pytest.raises(InvalidStateTransitionError):
        await machine.approve(booking.id, actor)
    with pytest.raises(InvalidStateTransitionError):
        await machine.reject(booking.id, actor)


@pytest.mark.asyncio
async def test_cannot_deliver_or_schedule_pending(machine, user, admin):
    actor = Principal.from_user(admin)
    booking = await _create(machine, user)

    with pytest.raises(InvalidStateTransitionError):
        await machine.deliver(booking.id, actor)
    with pytest.raises(InvalidStateTransitionError):
        await machine.schedule(booking.id, actor, scheduled_for=datetime.now(timezone.utc))


@pytest.mark.asyncio
async def test_delivered_is_terminal(machine, user, admin):
    actor = Principal.from_user(admin)
    booking = await _create(machine, user)
    await machine.approve(booking.id, actor)
    await machine.deliver(booking.id, actor)

    with pytest.raises(InvalidStateTransitionError):
        await machine.deliver(booking.id, actor)


@pytest.mark.asyncio
async def test_other_agency_cannot_manage_booking(machine, user, other_agency):
    booking = await _create(machine, user)
    with pytest.raises(ForbiddenError):
        await machine.approve(booking.id, Principal.from_agency(other_agency))


@pytest.mark.asyncio
async def test_user_cannot_manage_booking(machine, user):
    booking = await _create(machine, user)
    with pytest.raises(ForbiddenError):
        await machine.approve(booking.id, Principal.from_user(user))


@pytest.mark.asyncio
async def test_unknown_booking(machine, admin):
    with pytest.raises(NotFoundError):
        await machine.approve(uuid.uuid4(), Principal.from_user(admin))


@pytest.mark.asyncio
async def test_mail_failure_does_not_undo_transition(machine, db, user, admin, mailer):
    mailer.send_booking_approval.side_effect = RuntimeError("resend unavailable")
    booking = await _create(machine, user)

    approved = await machine.approve(booking.id, Principal.from_user(admin))

    assert approved.status == BookingStatus.APPROVED
    await db.refresh(approved)
    assert approved.status == BookingStatus.APPROVED
    # The second approval handler still ran
    mailer.send_transaction_acknowledgment.assert_awaited_once()


@pytest.mark.asyncio
async def test_failed_commit_leaves_booking_pending(machine, db, session_factory, user, admin, mailer):
    booking = await _create(machine, user)
    broken_commit = AsyncMock(
        side_effect=OperationalError("COMMIT", {}, Exception("disk I/O error"))
    )

    with patch.object(db, "commit", broken_commit):
        with pytest.raises(OperationalError):
            await machine.approve(booking.id, Principal.from_user(admin))

    assert machine.outbox.pending == []
    mailer.send_booking_approval.assert_not_awaited()
    async with session_factory() as fresh:
        stored = await fresh.get(Booking, booking.id)
        assert stored.status == BookingStatus.PENDING
        assert stored.approved_at is None
