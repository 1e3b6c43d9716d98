"""
services/payment/router.py
Razorpay integration for ONLINE bookings: order creation, checkout
signature verification, client-reported failures and payment history.

Payment confirmation never changes the booking lifecycle status; an
agency or admin still approves the booking separately.
"""

import asyncio
import logging
from decimal import Decimal
from uuid import UUID

import razorpay
from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from tenacity import retry, stop_after_attempt, wait_exponential

from config.database import get_db
from config.settings import settings
from shared.models.models import (
    Booking,
    BookingStatus,
    LogAction,
    Payment,
    PaymentMethod,
    PaymentStatus,
    User,
    UserRole,
)
from shared.middleware.auth import get_current_user
from shared.schemas.schemas import (
    MessageResponse,
    PaymentFailureRequest,
    PaymentOrderRequest,
    PaymentOrderResponse,
    PaymentResponse,
    PaymentVerifyRequest,
)
from shared.utils.audit import AuditTrail
from shared.utils.security import verify_razorpay_signature

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/payments", tags=["Payments"])


def get_razorpay_client() -> razorpay.Client:
    return razorpay.Client(auth=(settings.RAZORPAY_KEY_ID, settings.RAZORPAY_KEY_SECRET))


@retry(stop=stop_after_attempt(3), wait=wait_exponential(multiplier=0.5, max=4), reraise=True)
def _fetch_gateway_payment(client: razorpay.Client, payment_id: str) -> dict:
    return client.payment.fetch(payment_id)


def booking_price(booking: Booking) -> Decimal:
    price = settings.EXTRA_CYLINDER_PRICE if booking.is_extra else settings.CYLINDER_PRICE
    return Decimal(str(price))


async def _get_own_booking_or_404(booking_id: UUID, user: User, db: AsyncSession) -> Booking:
    booking = await db.get(Booking, booking_id)
    if not booking or (booking.user_id != user.id and user.role != UserRole.ADMIN):
        raise HTTPException(status_code=404, detail="Booking not found")
    return booking


async def _get_payment_or_404(booking_id: UUID, db: AsyncSession) -> Payment:
    payment = await db.scalar(select(Payment).where(Payment.booking_id == booking_id))
    if not payment:
        raise HTTPException(status_code=404, detail="Payment record not found")
    return payment


# ── Create Order ──────────────────────────────────────────────

@router.post("/create-order", response_model=PaymentOrderResponse)
async def create_order(
    data: PaymentOrderRequest,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """
    Create a Razorpay order for a booking.
    The client opens checkout with order_id + razorpay_key_id.
    """
    booking = await _get_own_booking_or_404(data.booking_id, current_user, db)
    if booking.status == BookingStatus.REJECTED:
        raise HTTPException(status_code=400, detail="Cannot pay for a rejected booking")

    existing = await db.scalar(select(Payment).where(Payment.booking_id == booking.id))
    if existing and existing.status != PaymentStatus.FAILED:
        raise HTTPException(status_code=400, detail="Payment already initiated for this booking")

    amount = booking_price(booking)
    amount_paise = int(amount * 100)

    try:
        order = get_razorpay_client().order.create({
            "amount": amount_paise,
            "currency": settings.RAZORPAY_CURRENCY,
            "receipt": f"booking_{booking.id}",
            "notes": {"user_id": str(booking.user_id), "is_extra": str(booking.is_extra)},
        })
    except Exception as e:
        logger.error("Razorpay order creation failed for booking %s: %s", booking.id, e)
        raise HTTPException(status_code=502, detail="Payment gateway error")

    if existing:
        # Retry after a failed attempt reuses the row
        existing.razorpay_order_id = order["id"]
        existing.razorpay_payment_id = None
        existing.razorpay_signature = None
        existing.failure_reason = None
        existing.status = PaymentStatus.PENDING
        existing.amount = amount
    else:
        db.add(Payment(
            booking_id=booking.id,
            razorpay_order_id=order["id"],
            amount=amount,
            currency=settings.RAZORPAY_CURRENCY,
            status=PaymentStatus.PENDING,
        ))

    booking.amount = amount
    booking.payment_method = PaymentMethod.ONLINE
    booking.payment_status = PaymentStatus.PROCESSING
    await db.commit()

    logger.info("Razorpay order %s created for booking %s", order["id"], booking.id)
    return PaymentOrderResponse(
        order_id=order["id"],
        razorpay_key_id=settings.RAZORPAY_KEY_ID,
        amount=amount_paise,
        currency=settings.RAZORPAY_CURRENCY,
        booking_id=booking.id,
    )


# ── Verify (called by the client after checkout) ──────────────

@router.post("/verify", response_model=PaymentResponse)
async def verify_payment(
    data: PaymentVerifyRequest,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    booking = await _get_own_booking_or_404(data.booking_id, current_user, db)
    payment = await _get_payment_or_404(booking.id, db)
    if payment.razorpay_order_id != data.razorpay_order_id:
        raise HTTPException(status_code=400, detail="Order does not belong to this booking")

    if not verify_razorpay_signature(
        data.razorpay_order_id, data.razorpay_payment_id, data.razorpay_signature
    ):
        payment.status = PaymentStatus.FAILED
        payment.failure_reason = "Invalid signature"
        booking.payment_status = PaymentStatus.FAILED
        await db.commit()
        await AuditTrail(db).record(
            current_user.id,
            LogAction.PAYMENT_FAILURE,
            f"Invalid payment signature for booking {booking.id}",
        )
        raise HTTPException(status_code=400, detail="Invalid payment signature")

    method = None
    try:
        details = await asyncio.to_thread(
            _fetch_gateway_payment, get_razorpay_client(), data.razorpay_payment_id
        )
        if isinstance(details, dict):
            method = details.get("method")
    except Exception as e:
        logger.warning("Could not fetch Razorpay payment %s: %s", data.razorpay_payment_id, e)

    payment.razorpay_payment_id = data.razorpay_payment_id
    payment.razorpay_signature = data.razorpay_signature
    payment.method = method
    payment.status = PaymentStatus.COMPLETED
    booking.payment_status = PaymentStatus.COMPLETED
    await db.commit()

    await AuditTrail(db).record(
        current_user.id,
        LogAction.PAYMENT_SUCCESS,
        f"Payment {data.razorpay_payment_id} completed for booking {booking.id}",
    )
    return PaymentResponse.model_validate(payment)


@router.post("/failure", response_model=MessageResponse)
async def record_payment_failure(
    data: PaymentFailureRequest,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """Checkout was dismissed or declined on the client."""
    booking = await _get_own_booking_or_404(data.booking_id, current_user, db)
    payment = await _get_payment_or_404(booking.id, db)
    if payment.status == PaymentStatus.COMPLETED:
        raise HTTPException(status_code=400, detail="Payment already completed")

    reason = data.error_description or "Payment failed"
    payment.status = PaymentStatus.FAILED
    payment.failure_reason = reason
    booking.payment_status = PaymentStatus.FAILED
    await db.commit()

    await AuditTrail(db).record(
        current_user.id,
        LogAction.PAYMENT_FAILURE,
        f"Payment failed for booking {booking.id}: {reason}",
    )
    return MessageResponse(message="Payment failure recorded")


@router.get("/history", response_model=list[PaymentResponse])
async def payment_history(
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    result = await db.execute(
        select(Payment)
        .join(Booking, Payment.booking_id == Booking.id)
        .where(Booking.user_id == current_user.id)
        .order_by(Payment.created_at.desc())
        .limit(50)
    )
    return [PaymentResponse.model_validate(p) for p in result.scalars()]
