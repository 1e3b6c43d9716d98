"""
shared/schemas/schemas.py
All Pydantic v2 request/response schemas for the platform.
"""

import uuid
from datetime import datetime
from decimal import Decimal
from typing import Any, List, Optional

from pydantic import BaseModel, ConfigDict, EmailStr, Field

from shared.models.models import NotificationType, PaymentMethod


# ── Base ──────────────────────────────────────────────────────

class BaseSchema(BaseModel):
    model_config = ConfigDict(from_attributes=True, use_enum_values=True)


class PaginatedResponse(BaseSchema):
    items: List[Any]
    total: int
    page: int
    page_size: int


# ── Auth ──────────────────────────────────────────────────────

class UserRegisterRequest(BaseSchema):
    name: str = Field(..., min_length=2, max_length=255)
    email: EmailStr
    password: str = Field(..., min_length=6, max_length=72)
    phone: Optional[str] = Field(None, max_length=20)
    address: Optional[str] = None
    city: Optional[str] = Field(None, max_length=100)
    state: Optional[str] = Field(None, max_length=100)
    pincode: Optional[str] = Field(None, pattern=r"^\d{6}$")


class AgencyRegisterRequest(BaseSchema):
    name: str = Field(..., min_length=2, max_length=255)
    email: EmailStr
    password: str = Field(..., min_length=6, max_length=72)
    phone: str = Field(..., max_length=20)
    address: str
    city: Optional[str] = Field(None, max_length=100)
    state: Optional[str] = Field(None, max_length=100)
    pincode: Optional[str] = Field(None, pattern=r"^\d{6}$")
    license_number: str = Field(..., max_length=100)
    cylinder_price: Decimal = Field(default=Decimal("850.00"), ge=0)
    delivery_radius_km: Decimal = Field(default=Decimal("10.0"), gt=0)


class LoginRequest(BaseSchema):
    email: EmailStr
    password: str


class TokenResponse(BaseSchema):
    access_token: str
    token_type: str = "bearer"
    expires_in: int  # seconds
    role: str
    account: dict


class MeResponse(BaseSchema):
    id: uuid.UUID
    role: str
    email: str
    name: str


# ── User ──────────────────────────────────────────────────────

class UserResponse(BaseSchema):
    id: uuid.UUID
    email: EmailStr
    name: str
    role: str
    barrels_remaining: int
    default_vendor_id: Optional[uuid.UUID]
    phone: Optional[str]
    address: Optional[str]
    city: Optional[str]
    state: Optional[str]
    pincode: Optional[str]
    is_active: bool
    is_blocked: bool
    created_at: datetime


class UserUpdateRequest(BaseSchema):
    name: Optional[str] = Field(None, min_length=2, max_length=255)
    phone: Optional[str] = Field(None, max_length=20)
    address: Optional[str] = None
    city: Optional[str] = Field(None, max_length=100)
    state: Optional[str] = Field(None, max_length=100)
    pincode: Optional[str] = Field(None, pattern=r"^\d{6}$")


class DefaultVendorRequest(BaseSchema):
    agency_id: Optional[uuid.UUID] = None  # None clears the default


# ── Agency ────────────────────────────────────────────────────

class AgencyResponse(BaseSchema):
    id: uuid.UUID
    name: str
    email: EmailStr
    phone: Optional[str]
    address: Optional[str]
    city: Optional[str]
    state: Optional[str]
    pincode: Optional[str]
    license_number: Optional[str]
    cylinder_price: Decimal
    delivery_radius_km: Decimal
    is_verified: bool
    is_active: bool
    created_at: datetime


class AgencyUpdateRequest(BaseSchema):
    """Email and password are not editable here."""
    name: Optional[str] = Field(None, min_length=2, max_length=255)
    phone: Optional[str] = Field(None, max_length=20)
    address: Optional[str] = None
    city: Optional[str] = Field(None, max_length=100)
    state: Optional[str] = Field(None, max_length=100)
    pincode: Optional[str] = Field(None, pattern=r"^\d{6}$")
    license_number: Optional[str] = Field(None, max_length=100)
    cylinder_price: Optional[Decimal] = Field(None, ge=0)
    delivery_radius_km: Optional[Decimal] = Field(None, gt=0)


class AgencyEnvelope(BaseSchema):
    message: str
    agency: AgencyResponse


class AgencyCustomerResponse(BaseSchema):
    id: uuid.UUID
    name: str
    email: EmailStr
    phone: Optional[str]
    address: Optional[str]
    city: Optional[str]
    pincode: Optional[str]
    barrels_remaining: int
    is_active: bool
    booking_count: int
    created_at: datetime


# ── Booking ───────────────────────────────────────────────────

class BookingCreateRequest(BaseSchema):
    user_id: uuid.UUID
    agency_id: Optional[uuid.UUID] = None
    payment_method: PaymentMethod
    is_extra: bool = False
    notes: Optional[str] = Field(None, max_length=1000)


class BookingActionRequest(BaseSchema):
    booking_id: uuid.UUID
    admin_id: Optional[uuid.UUID] = None  # Must match the token subject when sent


class BookingRejectRequest(BookingActionRequest):
    reason: Optional[str] = Field(None, max_length=1000)


class BookingDeliverRequest(BookingActionRequest):
    delivery_notes: Optional[str] = Field(None, max_length=1000)


class BookingScheduleRequest(BookingActionRequest):
    scheduled_for: datetime
    delivery_address: Optional[str] = None
    contact_number: Optional[str] = Field(None, max_length=20)


class BookingResponse(BaseSchema):
    id: uuid.UUID
    user_id: uuid.UUID
    agency_id: uuid.UUID
    status: str
    payment_method: str
    is_extra: bool
    notes: Optional[str]
    delivery_notes: Optional[str]
    amount: Optional[Decimal]
    payment_status: Optional[str]
    scheduled_for: Optional[datetime]
    delivery_address: Optional[str]
    contact_number: Optional[str]
    approved_at: Optional[datetime]
    rejected_at: Optional[datetime]
    delivered_at: Optional[datetime]
    created_at: datetime


class BookingEnvelope(BaseSchema):
    message: str
    booking: BookingResponse


class AgencyProfileResponse(BaseSchema):
    agency: AgencyResponse
    customer_count: int
    recent_bookings: List[BookingResponse]


# ── Allocation ────────────────────────────────────────────────

class BarrelResetRequest(BaseSchema):
    admin_id: Optional[uuid.UUID] = None


class BarrelResetResponse(BaseSchema):
    message: str
    processed: int
    failed: int


class BarrelStatsResponse(BaseSchema):
    total_users: int
    users_with_barrels: int
    average_barrels_remaining: float
    last_reset_at: Optional[datetime]


class BarrelStatusResponse(BaseSchema):
    stats: BarrelStatsResponse
    is_reset_needed: bool


class UserEnvelope(BaseSchema):
    message: str
    user: UserResponse


# ── Payment ───────────────────────────────────────────────────

class PaymentOrderRequest(BaseSchema):
    booking_id: uuid.UUID


class PaymentOrderResponse(BaseSchema):
    order_id: str
    razorpay_key_id: str
    amount: int          # in paise
    currency: str
    booking_id: uuid.UUID


class PaymentVerifyRequest(BaseSchema):
    razorpay_order_id: str
    razorpay_payment_id: str
    razorpay_signature: str
    booking_id: uuid.UUID


class PaymentFailureRequest(BaseSchema):
    booking_id: uuid.UUID
    razorpay_order_id: Optional[str] = None
    error_description: Optional[str] = Field(None, max_length=1000)


class PaymentResponse(BaseSchema):
    id: uuid.UUID
    booking_id: uuid.UUID
    amount: Decimal
    currency: str
    status: str
    method: Optional[str]
    razorpay_order_id: Optional[str]
    razorpay_payment_id: Optional[str]
    failure_reason: Optional[str]
    created_at: datetime


# ── Notification ──────────────────────────────────────────────

class NotificationCreateRequest(BaseSchema):
    title: str = Field(..., min_length=1, max_length=255)
    message: str = Field(..., min_length=1)
    type: NotificationType = NotificationType.INFO
    user_id: Optional[uuid.UUID] = None  # None = broadcast to everyone


class NotificationResponse(BaseSchema):
    id: uuid.UUID
    title: str
    message: str
    type: str
    user_id: Optional[uuid.UUID]
    is_active: bool
    created_at: datetime
    is_read: bool = False


# ── Admin ─────────────────────────────────────────────────────

class LogResponse(BaseSchema):
    id: uuid.UUID
    user_id: Optional[uuid.UUID]
    action: str
    details: Optional[str]
    created_at: datetime


# ── Generic ───────────────────────────────────────────────────

class MessageResponse(BaseSchema):
    message: str
    success: bool = True


class ErrorResponse(BaseSchema):
    detail: str
    code: Optional[str] = None
