"""
services/booking/state_machine.py
Booking lifecycle.

    PENDING → APPROVED → DELIVERED
    PENDING → REJECTED

Each operation: validate, write, commit, then record the audit log and
release notification events. Audit and email failures never undo or fail
the committed transition.
"""

import logging
import uuid
from datetime import datetime
from typing import Optional

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from services.allocation.ledger import AllocationLedger
from services.notification.dispatcher import NotificationDispatcher, Outbox
from services.notification.email import DEFAULT_REJECTION_REASON
from services.notification.events import (
    BookingApproved,
    BookingCreated,
    BookingDelivered,
    BookingRejected,
)
from shared.middleware.auth import Principal
from shared.models.models import (
    Agency,
    Booking,
    BookingStatus,
    LogAction,
    PaymentMethod,
    User,
    utcnow,
)
from shared.utils.audit import AuditTrail
from shared.utils.errors import (
    ConflictingPendingBookingError,
    ForbiddenError,
    InsufficientBalanceError,
    InvalidStateTransitionError,
    NoAgencySelectedError,
    NotFoundError,
)

logger = logging.getLogger(__name__)


class BookingStateMachine:
    def __init__(
        self,
        db: AsyncSession,
        ledger: AllocationLedger,
        outbox: Outbox,
        audit: Optional[AuditTrail] = None,
    ):
        self.db = db
        self.ledger = ledger
        self.outbox = outbox
        self.audit = audit or AuditTrail(db)

    @classmethod
    def build(cls, db: AsyncSession, dispatcher: NotificationDispatcher) -> "BookingStateMachine":
        outbox = Outbox(dispatcher)
        return cls(db, AllocationLedger(db, outbox), outbox)

    # ── Helpers ───────────────────────────────────────────────

    async def _get_booking(self, booking_id: uuid.UUID) -> Booking:
        result = await self.db.execute(
            select(Booking)
            .options(selectinload(Booking.user), selectinload(Booking.agency))
            .where(Booking.id == booking_id)
            .execution_options(populate_existing=True)
        )
        booking = result.scalar_one_or_none()
        if not booking:
            raise NotFoundError("Booking not found")
        return booking

    @staticmethod
    def _authorize(booking: Booking, actor: Principal) -> None:
        """Admins act on any booking; an agency only on bookings assigned to it."""
        if actor.is_admin:
            return
        if actor.is_agency and booking.agency_id == actor.id:
            return
        raise ForbiddenError("Not authorized to manage this booking")

    @staticmethod
    def _require_status(booking: Booking, expected: BookingStatus, message: str) -> None:
        if booking.status != expected:
            raise InvalidStateTransitionError(message)

    async def _resolve_agency(self, user: User, agency_id: Optional[uuid.UUID]) -> Agency:
        if agency_id:
            agency = await self.db.get(Agency, agency_id)
            if not agency:
                raise NotFoundError("Agency not found")
            return agency
        if user.default_vendor_id:
            agency = await self.db.get(Agency, user.default_vendor_id)
            if agency:
                return agency
        raise NoAgencySelectedError()

    async def _finish(self, actor_id: uuid.UUID, action: LogAction, details: str) -> None:
        await self.audit.record(actor_id, action, details)
        await self.outbox.release()

    # ── Create ────────────────────────────────────────────────

    async def create(
        self,
        user_id: uuid.UUID,
        payment_method: PaymentMethod,
        agency_id: Optional[uuid.UUID] = None,
        is_extra: bool = False,
        notes: Optional[str] = None,
    ) -> Booking:
        user = await self.db.get(User, user_id, populate_existing=True)
        if not user:
            raise NotFoundError("User not found")

        # Balance is checked before the pending-booking rule
        if not is_extra and user.barrels_remaining <= 0:
            raise InsufficientBalanceError()

        pending = await self.db.scalar(
            select(Booking.id)
            .where(Booking.user_id == user.id, Booking.status == BookingStatus.PENDING)
            .limit(1)
        )
        if pending:
            raise ConflictingPendingBookingError()

        agency = await self._resolve_agency(user, agency_id)

        booking = Booking(
            user_id=user.id,
            agency_id=agency.id,
            status=BookingStatus.PENDING,
            payment_method=payment_method,
            is_extra=is_extra,
            notes=notes,
        )
        try:
            self.db.add(booking)
            try:
                await self.db.flush()
            except IntegrityError:
                # Partial unique index: a concurrent request won the pending slot
                raise ConflictingPendingBookingError()
            if not is_extra:
                await self.ledger.decrement(user.id)
            await self.db.commit()
        except Exception:
            await self.db.rollback()
            self.outbox.discard()
            raise

        method = PaymentMethod(payment_method).value
        logger.info("Booking %s created for %s (extra=%s)", booking.id, user.email, is_extra)
        self.outbox.add(
            BookingCreated(
                booking_id=str(booking.id),
                user_email=user.email,
                user_name=user.name,
                agency_name=agency.name,
                payment_method=method,
                is_extra=is_extra,
            )
        )
        kind = "extra " if is_extra else ""
        await self._finish(
            user.id,
            LogAction.BOOKING_CREATE,
            f"User {user.email} created a {kind}booking with {method}",
        )
        return booking

    # ── Transitions ───────────────────────────────────────────

    async def approve(self, booking_id: uuid.UUID, actor: Principal) -> Booking:
        booking = await self._get_booking(booking_id)
        self._authorize(booking, actor)
        self._require_status(booking, BookingStatus.PENDING, "Booking is not in pending status")

        try:
            booking.status = BookingStatus.APPROVED
            booking.approved_at = utcnow()
            await self.db.commit()
        except Exception:
            await self.db.rollback()
            self.outbox.discard()
            raise

        logger.info("Booking %s approved by %s", booking.id, actor.email)
        self.outbox.add(
            BookingApproved(
                booking_id=str(booking.id),
                user_email=booking.user.email,
                user_name=booking.user.name,
                agency_name=booking.agency.name,
                payment_method=booking.payment_method.value,
            )
        )
        await self._finish(
            actor.id,
            LogAction.BOOKING_APPROVE,
            f"Booking {booking.id} approved by {actor.email}",
        )
        return booking

    async def reject(
        self,
        booking_id: uuid.UUID,
        actor: Principal,
        reason: Optional[str] = None,
    ) -> Booking:
        booking = await self._get_booking(booking_id)
        self._authorize(booking, actor)
        self._require_status(booking, BookingStatus.PENDING, "Booking is not in pending status")

        try:
            # Give the reserved cylinder back before the booking leaves PENDING
            if not booking.is_extra:
                await self.ledger.restore(booking.user_id)
            booking.status = BookingStatus.REJECTED
            booking.rejected_at = utcnow()
            booking.notes = reason or booking.notes
            await self.db.commit()
        except Exception:
            await self.db.rollback()
            self.outbox.discard()
            raise

        logger.info("Booking %s rejected by %s", booking.id, actor.email)
        self.outbox.add(
            BookingRejected(
                booking_id=str(booking.id),
                user_email=booking.user.email,
                user_name=booking.user.name,
                reason=reason or DEFAULT_REJECTION_REASON,
            )
        )
        await self._finish(
            actor.id,
            LogAction.BOOKING_REJECT,
            f"Booking {booking.id} rejected by {actor.email}. Reason: {reason or 'Not specified'}",
        )
        return booking

    async def deliver(
        self,
        booking_id: uuid.UUID,
        actor: Principal,
        delivery_notes: Optional[str] = None,
    ) -> Booking:
        booking = await self._get_booking(booking_id)
        self._authorize(booking, actor)
        self._require_status(
            booking, BookingStatus.APPROVED, "Booking must be approved before delivery"
        )

        try:
            booking.status = BookingStatus.DELIVERED
            booking.delivered_at = utcnow()
            booking.delivery_notes = delivery_notes or booking.delivery_notes
            booking.notes = delivery_notes or booking.notes
            await self.db.commit()
        except Exception:
            await self.db.rollback()
            self.outbox.discard()
            raise

        logger.info("Booking %s delivered, marked by %s", booking.id, actor.email)
        self.outbox.add(
            BookingDelivered(
                booking_id=str(booking.id),
                user_email=booking.user.email,
                user_name=booking.user.name,
                delivery_notes=booking.delivery_notes,
            )
        )
        await self._finish(
            actor.id,
            LogAction.BOOKING_DELIVER,
            f"Booking {booking.id} marked delivered by {actor.email}",
        )
        return booking

    async def schedule(
        self,
        booking_id: uuid.UUID,
        actor: Principal,
        scheduled_for: datetime,
        delivery_address: Optional[str] = None,
        contact_number: Optional[str] = None,
    ) -> Booking:
        booking = await self._get_booking(booking_id)
        self._authorize(booking, actor)
        self._require_status(
            booking, BookingStatus.APPROVED, "Booking must be approved before scheduling"
        )

        try:
            booking.scheduled_for = scheduled_for
            booking.delivery_address = delivery_address or booking.delivery_address
            booking.contact_number = contact_number or booking.contact_number
            await self.db.commit()
        except Exception:
            await self.db.rollback()
            self.outbox.discard()
            raise

        await self._finish(
            actor.id,
            LogAction.BOOKING_SCHEDULE,
            f"Booking {booking.id} scheduled for {scheduled_for.isoformat()} by {actor.email}",
        )
        return booking
