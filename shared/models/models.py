"""
shared/models/models.py
All SQLAlchemy ORM models for the Gas Agency Booking Platform.
UUID primary keys throughout; portable column types (PostgreSQL and SQLite).
"""

import uuid
from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum as PyEnum
from typing import List, Optional

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    DateTime,
    Enum,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Text,
    UniqueConstraint,
    Uuid,
    func,
    text,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from config.database import Base


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


# ── Enumerations ──────────────────────────────────────────────

class UserRole(str, PyEnum):
    USER = "USER"
    ADMIN = "ADMIN"


class BookingStatus(str, PyEnum):
    PENDING = "PENDING"
    APPROVED = "APPROVED"
    REJECTED = "REJECTED"
    DELIVERED = "DELIVERED"


class PaymentMethod(str, PyEnum):
    COD = "COD"
    ONLINE = "ONLINE"
    PAYTM_QR = "PAYTM_QR"


class PaymentStatus(str, PyEnum):
    PENDING = "PENDING"
    PROCESSING = "PROCESSING"   # Booking side only: gateway order open
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"


class NotificationType(str, PyEnum):
    INFO = "INFO"
    WARNING = "WARNING"
    SUCCESS = "SUCCESS"
    ERROR = "ERROR"


class LogAction(str, PyEnum):
    LOGIN = "LOGIN"
    REGISTER = "REGISTER"
    BOOKING_CREATE = "BOOKING_CREATE"
    BOOKING_APPROVE = "BOOKING_APPROVE"
    BOOKING_REJECT = "BOOKING_REJECT"
    BOOKING_DELIVER = "BOOKING_DELIVER"
    BOOKING_SCHEDULE = "BOOKING_SCHEDULE"
    BARREL_RESET = "BARREL_RESET"
    MANUAL_BARREL_RESET = "MANUAL_BARREL_RESET"
    MANUAL_BARREL_RESET_COMPLETE = "MANUAL_BARREL_RESET_COMPLETE"
    USER_BARREL_RESET = "USER_BARREL_RESET"
    PAYMENT_SUCCESS = "PAYMENT_SUCCESS"
    PAYMENT_FAILURE = "PAYMENT_FAILURE"
    NOTIFICATION_CREATE = "NOTIFICATION_CREATE"
    USER_STATUS_TOGGLE = "USER_STATUS_TOGGLE"
    USER_DELETE = "USER_DELETE"
    AGENCY_VERIFY = "AGENCY_VERIFY"
    AGENCY_STATUS_TOGGLE = "AGENCY_STATUS_TOGGLE"


# ── Mixins ────────────────────────────────────────────────────

class TimestampMixin:
    """Adds created_at and updated_at to any model."""
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, server_default=func.now(), nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=utcnow,
        server_default=func.now(),
        onupdate=utcnow,
        nullable=False,
    )


# ── Models ────────────────────────────────────────────────────

class Agency(TimestampMixin, Base):
    """Gas agency (vendor). Logs in with its own credentials once verified."""
    __tablename__ = "agencies"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    email: Mapped[str] = mapped_column(String(255), nullable=False, unique=True)
    password_hash: Mapped[str] = mapped_column(String(255), nullable=False)
    phone: Mapped[Optional[str]] = mapped_column(String(20), nullable=True)
    address: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    city: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    state: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    pincode: Mapped[Optional[str]] = mapped_column(String(10), nullable=True)
    license_number: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    cylinder_price: Mapped[Decimal] = mapped_column(Numeric(10, 2), default=850.00)
    delivery_radius_km: Mapped[Decimal] = mapped_column(Numeric(6, 2), default=10.0)
    is_verified: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    bookings: Mapped[List["Booking"]] = relationship(back_populates="agency")

    __table_args__ = (
        Index("ix_agencies_verified_active", "is_verified", "is_active"),
    )

    @property
    def can_login(self) -> bool:
        return self.is_verified and self.is_active

    def __repr__(self) -> str:
        return f"<Agency {self.email}>"


class User(TimestampMixin, Base):
    """
    End-user or admin account.
    barrels_remaining is the annual cylinder allocation: starts at 12,
    decremented by regular bookings, restored on rejection, reset every Jan 1.
    """
    __tablename__ = "users"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    email: Mapped[str] = mapped_column(String(255), nullable=False, unique=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    password_hash: Mapped[str] = mapped_column(String(255), nullable=False)
    role: Mapped[UserRole] = mapped_column(
        Enum(UserRole), nullable=False, default=UserRole.USER
    )
    barrels_remaining: Mapped[int] = mapped_column(Integer, nullable=False, default=12)
    default_vendor_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        Uuid, ForeignKey("agencies.id", ondelete="SET NULL"), nullable=True
    )
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    is_blocked: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)

    # Profile
    phone: Mapped[Optional[str]] = mapped_column(String(20), nullable=True)
    address: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    city: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    state: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    pincode: Mapped[Optional[str]] = mapped_column(String(10), nullable=True)

    # Relationships
    default_vendor: Mapped[Optional["Agency"]] = relationship(foreign_keys=[default_vendor_id])
    bookings: Mapped[List["Booking"]] = relationship(
        back_populates="user", cascade="all, delete-orphan"
    )
    notification_reads: Mapped[List["NotificationReadStatus"]] = relationship(
        back_populates="user", cascade="all, delete-orphan"
    )

    __table_args__ = (
        CheckConstraint("barrels_remaining >= 0", name="ck_users_barrels_non_negative"),
        Index("ix_users_role", "role"),
    )

    def __repr__(self) -> str:
        return f"<User {self.email} ({self.role})>"


class Booking(TimestampMixin, Base):
    """
    Cylinder booking.
    Status transitions: PENDING → APPROVED → DELIVERED; PENDING → REJECTED.
    At most one PENDING booking per user (partial unique index).
    """
    __tablename__ = "bookings"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    user_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("users.id", ondelete="CASCADE"), nullable=False
    )
    agency_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("agencies.id"), nullable=False
    )

    status: Mapped[BookingStatus] = mapped_column(
        Enum(BookingStatus), nullable=False, default=BookingStatus.PENDING
    )
    payment_method: Mapped[PaymentMethod] = mapped_column(
        Enum(PaymentMethod), nullable=False, default=PaymentMethod.COD
    )
    is_extra: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    delivery_notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    # Online payment
    amount: Mapped[Optional[Decimal]] = mapped_column(Numeric(10, 2), nullable=True)
    payment_status: Mapped[Optional[PaymentStatus]] = mapped_column(
        Enum(PaymentStatus), nullable=True
    )

    # Delivery schedule
    scheduled_for: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    delivery_address: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    contact_number: Mapped[Optional[str]] = mapped_column(String(20), nullable=True)

    # Transition timestamps
    approved_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    rejected_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    delivered_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))

    user: Mapped["User"] = relationship(back_populates="bookings")
    agency: Mapped["Agency"] = relationship(back_populates="bookings")
    payment: Mapped[Optional["Payment"]] = relationship(
        back_populates="booking", uselist=False, cascade="all, delete-orphan"
    )

    __table_args__ = (
        Index("ix_bookings_user_id", "user_id"),
        Index("ix_bookings_agency_id", "agency_id"),
        Index("ix_bookings_status", "status"),
        Index(
            "uq_bookings_user_pending",
            "user_id",
            unique=True,
            postgresql_where=text("status = 'PENDING'"),
            sqlite_where=text("status = 'PENDING'"),
        ),
    )


class Payment(TimestampMixin, Base):
    """Razorpay payment. Linked 1-to-1 with an ONLINE booking."""
    __tablename__ = "payments"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    booking_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("bookings.id", ondelete="CASCADE"), unique=True, nullable=False
    )
    razorpay_order_id: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    razorpay_payment_id: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    razorpay_signature: Mapped[Optional[str]] = mapped_column(String(500), nullable=True)
    amount: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False)
    currency: Mapped[str] = mapped_column(String(3), default="INR")
    method: Mapped[Optional[str]] = mapped_column(String(30), nullable=True)  # upi, card, ...
    status: Mapped[PaymentStatus] = mapped_column(
        Enum(PaymentStatus), default=PaymentStatus.PENDING, nullable=False
    )
    failure_reason: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    booking: Mapped["Booking"] = relationship(back_populates="payment")

    __table_args__ = (
        Index("ix_payments_razorpay_order", "razorpay_order_id"),
    )


class Notification(TimestampMixin, Base):
    """Admin broadcast. user_id NULL means every user sees it."""
    __tablename__ = "notifications"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    title: Mapped[str] = mapped_column(String(255), nullable=False)
    message: Mapped[str] = mapped_column(Text, nullable=False)
    type: Mapped[NotificationType] = mapped_column(
        Enum(NotificationType), nullable=False, default=NotificationType.INFO
    )
    user_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        Uuid, ForeignKey("users.id", ondelete="CASCADE"), nullable=True
    )
    created_by_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        Uuid, ForeignKey("users.id", ondelete="SET NULL"), nullable=True
    )
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    read_statuses: Mapped[List["NotificationReadStatus"]] = relationship(
        back_populates="notification", cascade="all, delete-orphan"
    )

    __table_args__ = (Index("ix_notifications_user_active", "user_id", "is_active"),)


class NotificationReadStatus(Base):
    """Per-user read marker for a notification."""
    __tablename__ = "notification_read_statuses"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    notification_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("notifications.id", ondelete="CASCADE"), nullable=False
    )
    user_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("users.id", ondelete="CASCADE"), nullable=False
    )
    read_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, nullable=False
    )

    notification: Mapped["Notification"] = relationship(back_populates="read_statuses")
    user: Mapped["User"] = relationship(back_populates="notification_reads")

    __table_args__ = (
        UniqueConstraint("notification_id", "user_id", name="uq_notification_read"),
    )


class Log(Base):
    """
    Append-only audit trail.
    user_id is not a foreign key: the actor may be a user, an admin or an agency.
    A BARREL_RESET row inside a calendar year marks that year's reset as done.
    """
    __tablename__ = "logs"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    user_id: Mapped[Optional[uuid.UUID]] = mapped_column(Uuid, nullable=True)
    action: Mapped[str] = mapped_column(String(50), nullable=False)
    details: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, nullable=False
    )

    __table_args__ = (
        Index("ix_logs_action_created_at", "action", "created_at"),
        Index("ix_logs_user_id", "user_id"),
    )
