"""
services/notification/dispatcher.py
In-process, post-commit notification delivery.

Outbox collects events while a unit of work runs; release() hands them to
the NotificationDispatcher once the transaction has committed. Each handler
runs in its own try/except: a failed email is logged and the next handler
still runs. Delivery is at-most-once, no retries, no queue.
"""

import logging
from typing import Any, Awaitable, Callable, Dict, List, Type

from fastapi import Request

from services.notification.email import EmailService
from services.notification.events import (
    AllowanceChanged,
    BookingApproved,
    BookingCreated,
    BookingDelivered,
    BookingRejected,
)

logger = logging.getLogger(__name__)

Handler = Callable[[Any], Awaitable[None]]


class NotificationDispatcher:
    def __init__(self, mailer: EmailService):
        self.mailer = mailer
        self._handlers: Dict[Type, List[Handler]] = {
            BookingCreated: [self._booking_confirmation],
            BookingApproved: [self._booking_approval, self._approval_acknowledgment],
            BookingRejected: [self._booking_rejection],
            BookingDelivered: [self._delivery_confirmation],
            AllowanceChanged: [self._allowance_update],
        }

    def subscribe(self, event_type: Type, handler: Handler) -> None:
        self._handlers.setdefault(event_type, []).append(handler)

    async def dispatch(self, event: Any) -> int:
        """Run every handler for the event. Returns how many failed."""
        failures = 0
        for handler in self._handlers.get(type(event), []):
            try:
                await handler(event)
            except Exception:
                failures += 1
                logger.exception(
                    "Notification handler %s failed for %s",
                    getattr(handler, "__name__", repr(handler)),
                    type(event).__name__,
                )
        return failures

    # ── Handlers ──────────────────────────────────────────────

    async def _booking_confirmation(self, event: BookingCreated) -> None:
        await self.mailer.send_booking_confirmation(
            event.user_email,
            event.user_name,
            event.booking_id,
            event.agency_name,
            event.payment_method,
            event.is_extra,
        )

    async def _booking_approval(self, event: BookingApproved) -> None:
        await self.mailer.send_booking_approval(
            event.user_email, event.user_name, event.booking_id, event.agency_name
        )

    async def _approval_acknowledgment(self, event: BookingApproved) -> None:
        await self.mailer.send_transaction_acknowledgment(
            event.user_email,
            event.user_name,
            booking_id=event.booking_id,
            action="Booking Approved",
            payment_method=event.payment_method,
            status="APPROVED",
        )

    async def _booking_rejection(self, event: BookingRejected) -> None:
        await self.mailer.send_booking_rejection(
            event.user_email, event.user_name, event.booking_id, event.reason
        )

    async def _delivery_confirmation(self, event: BookingDelivered) -> None:
        await self.mailer.send_delivery_confirmation(
            event.user_email, event.user_name, event.booking_id, event.delivery_notes
        )

    async def _allowance_update(self, event: AllowanceChanged) -> None:
        await self.mailer.send_account_balance_notification(
            event.user_email, event.user_name, event.barrels_remaining, event.action
        )


class Outbox:
    """Events queued by one unit of work."""

    def __init__(self, dispatcher: NotificationDispatcher):
        self.dispatcher = dispatcher
        self._events: List[Any] = []

    @property
    def pending(self) -> List[Any]:
        return list(self._events)

    def add(self, event: Any) -> None:
        self._events.append(event)

    def discard(self) -> None:
        if self._events:
            logger.debug("Discarding %d unsent notification events", len(self._events))
        self._events.clear()

    async def release(self) -> int:
        """Dispatch and clear everything queued. Call only after commit."""
        events, self._events = self._events, []
        failures = 0
        for event in events:
            failures += await self.dispatcher.dispatch(event)
        return failures


def get_dispatcher(request: Request) -> NotificationDispatcher:
    """FastAPI dependency: the dispatcher built once in create_app()."""
    return request.app.state.dispatcher
