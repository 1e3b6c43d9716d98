"""
services/notification/email.py
Transactional email via Resend.

Every send either succeeds or raises; callers (the dispatcher) decide
that failures are non-fatal. With no RESEND_API_KEY configured the
message is logged and skipped, which keeps local and test runs offline.
"""

import asyncio
import logging
from typing import Optional

import resend

from config.settings import Settings, settings as app_settings

logger = logging.getLogger(__name__)


DEFAULT_REJECTION_REASON = (
    "Your booking could not be processed at this time. "
    "Please contact support for more information."
)


def _layout(title: str, body: str, app_name: str) -> str:
    return f"""
    <div style="font-family: sans-serif; max-width: 600px; margin: 0 auto; padding: 20px;">
        <div style="background: #0F4C81; padding: 20px; border-radius: 8px 8px 0 0; text-align: center;">
            <h1 style="color: white; margin: 0;">{app_name}</h1>
        </div>
        <div style="background: white; padding: 24px; border: 1px solid #eee; border-radius: 0 0 8px 8px;">
            <h2 style="color: #333;">{title}</h2>
            {body}
            <p style="color: #999; font-size: 12px; margin-top: 24px;">
                You received this email because you have an account on {app_name}.
            </p>
        </div>
    </div>
    """


class EmailService:
    def __init__(self, api_key: str, sender: str, app_name: str = "Gas Agency"):
        self.api_key = api_key
        self.sender = sender
        self.app_name = app_name

    @classmethod
    def from_settings(cls, settings: Optional[Settings] = None) -> "EmailService":
        s = settings or app_settings
        return cls(
            api_key=s.RESEND_API_KEY,
            sender=f"{s.EMAIL_FROM_NAME} <{s.EMAIL_FROM}>",
            app_name=s.EMAIL_FROM_NAME,
        )

    @property
    def enabled(self) -> bool:
        return bool(self.api_key)

    async def send_email(self, to_email: str, to_name: str, subject: str, html_body: str) -> None:
        if not self.enabled:
            logger.info("Email disabled, skipping '%s' to %s", subject, to_email)
            return

        resend.api_key = self.api_key
        params = {
            "from": self.sender,
            "to": [f"{to_name} <{to_email}>"],
            "subject": subject,
            "html": _layout(subject, html_body, self.app_name),
        }
        # resend's client is blocking
        await asyncio.to_thread(resend.Emails.send, params)
        logger.info("Email '%s' sent to %s", subject, to_email)

    # ── Booking lifecycle ─────────────────────────────────────

    async def send_booking_confirmation(
        self,
        to_email: str,
        to_name: str,
        booking_id: str,
        agency_name: str,
        payment_method: str,
        is_extra: bool,
    ) -> None:
        kind = "extra cylinder" if is_extra else "cylinder"
        body = (
            f"<p>Hi {to_name},</p>"
            f"<p>Your {kind} booking <b>#{booking_id}</b> with {agency_name} has been received "
            f"and is awaiting approval.</p>"
            f"<p>Payment method: {payment_method}</p>"
        )
        await self.send_email(to_email, to_name, "Booking Received", body)

    async def send_booking_approval(
        self, to_email: str, to_name: str, booking_id: str, agency_name: str
    ) -> None:
        body = (
            f"<p>Hi {to_name},</p>"
            f"<p>Your booking <b>#{booking_id}</b> has been approved by {agency_name}. "
            f"You will be notified when the delivery is scheduled.</p>"
        )
        await self.send_email(to_email, to_name, "Booking Approved", body)

    async def send_booking_rejection(
        self, to_email: str, to_name: str, booking_id: str, reason: str
    ) -> None:
        body = (
            f"<p>Hi {to_name},</p>"
            f"<p>Your booking <b>#{booking_id}</b> has been rejected.</p>"
            f"<p>Reason: {reason}</p>"
        )
        await self.send_email(to_email, to_name, "Booking Rejected", body)

    async def send_delivery_confirmation(
        self,
        to_email: str,
        to_name: str,
        booking_id: str,
        delivery_notes: Optional[str] = None,
    ) -> None:
        body = (
            f"<p>Hi {to_name},</p>"
            f"<p>Your cylinder for booking <b>#{booking_id}</b> has been delivered.</p>"
        )
        if delivery_notes:
            body += f"<p>Delivery notes: {delivery_notes}</p>"
        await self.send_email(to_email, to_name, "Cylinder Delivered", body)

    # ── Account ───────────────────────────────────────────────

    async def send_account_balance_notification(
        self, to_email: str, to_name: str, barrels_remaining: int, action: str
    ) -> None:
        """action is "used", "restored due to booking rejection" or "reset"."""
        if action == "reset":
            headline = "Your annual cylinder allocation has been reset."
        else:
            headline = f"A cylinder from your annual allocation was {action}."
        body = (
            f"<p>Hi {to_name},</p>"
            f"<p>{headline}</p>"
            f"<p>Cylinders remaining this year: <b>{barrels_remaining}</b></p>"
        )
        await self.send_email(to_email, to_name, "Cylinder Balance Update", body)

    async def send_transaction_acknowledgment(
        self,
        to_email: str,
        to_name: str,
        booking_id: str,
        action: str,
        payment_method: str,
        status: str,
    ) -> None:
        body = (
            f"<p>Hi {to_name},</p>"
            f"<p>This confirms the following transaction on your account:</p>"
            f"<ul>"
            f"<li>Booking: #{booking_id}</li>"
            f"<li>Action: {action}</li>"
            f"<li>Payment method: {payment_method}</li>"
            f"<li>Status: {status}</li>"
            f"</ul>"
        )
        await self.send_email(to_email, to_name, f"Transaction Acknowledgment: {action}", body)
