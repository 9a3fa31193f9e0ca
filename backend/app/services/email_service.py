"""Email service for sending transactional emails via SMTP."""

from __future__ import annotations

import logging
from email.message import EmailMessage
from typing import TYPE_CHECKING

from app.core.config import settings
from app.services.recovery_messages import format_money

if TYPE_CHECKING:
    from app.models.order import Order
    from app.models.user import User

logger = logging.getLogger(__name__)


class EmailService:
    """Service for sending transactional emails via SMTP."""

    async def send_email(
        self,
        to: str,
        subject: str,
        html_body: str,
        text_body: str | None = None,
    ) -> bool:
        """Send an email via SMTP.

        Args:
            to: Recipient email address.
            subject: Email subject line.
            html_body: HTML content of the email.
            text_body: Plain-text alternative.

        Returns:
            True if sent successfully (or no-op when SMTP unconfigured).
        """
        if not settings.SMTP_HOST:
            logger.info("SMTP not configured, skipping email to %s: %s", to, subject)
            return True

        import aiosmtplib

        msg = EmailMessage()
        msg["From"] = f"{settings.SMTP_FROM_NAME} <{settings.SMTP_FROM_EMAIL}>"
        msg["To"] = to
        msg["Subject"] = subject
        msg.set_content(text_body or "Please view this email in an HTML-capable client.")
        msg.add_alternative(html_body, subtype="html")

        await aiosmtplib.send(
            msg,
            hostname=settings.SMTP_HOST,
            port=settings.SMTP_PORT,
            username=settings.SMTP_USERNAME or None,
            password=settings.SMTP_PASSWORD or None,
            start_tls=settings.SMTP_USE_TLS,
        )
        logger.info("Email sent to %s: %s", to, subject)
        return True

    async def send_order_confirmation(self, order: Order, user: User) -> bool:
        """Send the order confirmation email.

        Returns:
            False when the user has no email address.
        """
        if not user.email:
            logger.warning("User %s has no email, skipping order confirmation", user.id)
            return False

        currency = str(order.currency or settings.DEFAULT_CURRENCY)
        subject = f"Order {order.order_ref} confirmed"
        html_body = (
            f"<h2>Thank you for your order</h2>"
            f"<p>Dear {user.name or 'Customer'},</p>"
            f"<p>We have received your payment and your order is confirmed.</p>"
            f"<table>"
            f"<tr><td><strong>Order #:</strong></td><td>{order.order_ref}</td></tr>"
            f"<tr><td><strong>Subtotal:</strong></td>"
            f"<td>{format_money(order.subtotal_subunits, currency)}</td></tr>"  # type: ignore[arg-type]
            f"<tr><td><strong>Shipping:</strong></td>"
            f"<td>{format_money(order.shipping_fee_subunits, currency)}</td></tr>"  # type: ignore[arg-type]
            f"<tr><td><strong>Discount:</strong></td>"
            f"<td>{format_money(order.discount_total_subunits, currency)}</td></tr>"  # type: ignore[arg-type]
            f"<tr><td><strong>Total:</strong></td>"
            f"<td>{format_money(order.total_subunits, currency)}</td></tr>"  # type: ignore[arg-type]
            f"</table>"
            f"<p>We will let you know when it ships.</p>"
        )
        text_body = (
            f"Order {order.order_ref} confirmed. "
            f"Total paid: {format_money(order.total_subunits, currency)}."  # type: ignore[arg-type]
        )
        return await self.send_email(
            to=str(user.email),
            subject=subject,
            html_body=html_body,
            text_body=text_body,
        )
