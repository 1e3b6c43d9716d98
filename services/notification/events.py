"""
services/notification/events.py
Domain events emitted by the booking state machine and the allocation ledger.
They are collected during a unit of work and dispatched only after commit.
"""

from dataclasses import dataclass
from typing import Optional


@dataclass(frozen=True)
class BookingCreated:
    booking_id: str
    user_email: str
    user_name: str
    agency_name: str
    payment_method: str
    is_extra: bool


@dataclass(frozen=True)
class BookingApproved:
    booking_id: str
    user_email: str
    user_name: str
    agency_name: str
    payment_method: str


@dataclass(frozen=True)
class BookingRejected:
    booking_id: str
    user_email: str
    user_name: str
    reason: str


@dataclass(frozen=True)
class BookingDelivered:
    booking_id: str
    user_email: str
    user_name: str
    delivery_notes: Optional[str] = None


@dataclass(frozen=True)
class AllowanceChanged:
    user_email: str
    user_name: str
    barrels_remaining: int
    action: str  # "used" | "restored due to booking rejection" | "reset"


ALLOWANCE_USED = "used"
ALLOWANCE_RESTORED = "restored due to booking rejection"
ALLOWANCE_RESET = "reset"
