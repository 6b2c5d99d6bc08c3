"""Notification services for sending booking emails."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from django.conf import settings  # type: ignore
from django.core.mail import send_mail  # type: ignore
from django.template.loader import render_to_string  # type: ignore
from django.utils.html import strip_tags  # type: ignore

if TYPE_CHECKING:  # pragma: no cover
    from apps.bookings.models import Booking

logger = logging.getLogger(__name__)


# ============================================================================
# EMAIL NOTIFICATIONS
# ============================================================================

def send_email_notification(
    recipient_email: str,
    subject: str,
    template_name: str | None,
    context: dict,
    *,
    html_message: str | None = None,
) -> bool:
    """
    Send one email.

    Args:
        recipient_email: Recipient address
        subject: Subject line
        template_name: Django template to render (optional)
        context: Template context; context["message"] is the plain text
            body when neither a template nor html_message is given
        html_message: Ready HTML body (optional)

    Returns:
        bool: True if the message was handed to the mail backend
    """
    if not recipient_email:
        logger.warning(f"Skipping email without recipient: {subject}")
        return False

    try:
        if html_message:
            text_message = strip_tags(html_message)
        elif template_name:
            html_message = render_to_string(template_name, context)
            text_message = strip_tags(html_message)
        else:
            text_message = context.get("message", "")
            html_message = None

        send_mail(
            subject=subject,
            message=text_message,
            from_email=settings.DEFAULT_FROM_EMAIL,
            recipient_list=[recipient_email],
            html_message=html_message,
            fail_silently=False,
        )

        logger.info(f"Email sent successfully to {recipient_email}: {subject}")
        return True

    except Exception as e:
        logger.error(f"Failed to send email to {recipient_email}: {e}", exc_info=True)
        return False


def _customer_name(booking: "Booking") -> str:
    user = booking.user
    return user.get_full_name() or user.get_username() or user.email


def _money(amount) -> str:
    return f"{settings.CURRENCY_SYMBOL}{amount}"


def send_booking_completed_email(booking: "Booking") -> bool:
    """Settlement receipt for a completed booking."""
    subject = f"Booking #{booking.booking_code} completed"

    lines = [
        f"Booking code: {booking.booking_code}",
        f"Car: {booking.car}",
        f"Returned at: {booking.actual_return_at:%d.%m.%Y %H:%M}" if booking.actual_return_at else "",
        f"Total: {_money(booking.final_amount)}",
        f"Advance paid: {_money(booking.advance_paid)}",
        f"Late fee ({booking.late_hours} h): {_money(booking.late_fee)}" if booking.late_hours else "",
        f"Collected at return: {_money(booking.full_payment_amount)} ({booking.full_payment_method})",
        f"Invoice: {booking.invoice_number}" if booking.invoice_number else "",
    ]
    items = "".join(f"<li>{line}</li>" for line in lines if line)

    html_message = f"""
    <html>
    <body>
        <h2>Hello, {_customer_name(booking)}!</h2>
        <p>Thank you for riding with us. Your booking is now closed.</p>
        <ul>{items}</ul>
    </body>
    </html>
    """

    return send_email_notification(
        recipient_email=booking.user.email,
        subject=subject,
        template_name=None,
        context={"booking": booking},
        html_message=html_message,
    )


def send_refund_processed_email(booking: "Booking") -> bool:
    subject = f"Refund for booking #{booking.booking_code}"
    message = (
        f"Hello, {_customer_name(booking)}!\n\n"
        f"A refund of {_money(booking.refund_amount)} for booking {booking.booking_code} "
        f"has been processed."
    )
    if booking.refund_reason:
        message += f"\nReason: {booking.refund_reason}"

    return send_email_notification(
        recipient_email=booking.user.email,
        subject=subject,
        template_name=None,
        context={"message": message},
    )


def send_refund_rejected_email(booking: "Booking") -> bool:
    subject = f"Refund request for booking #{booking.booking_code}"
    message = (
        f"Hello, {_customer_name(booking)}!\n\n"
        f"Your refund request for booking {booking.booking_code} was not approved."
    )
    if booking.refund_reason:
        message += f"\nReason: {booking.refund_reason}"

    return send_email_notification(
        recipient_email=booking.user.email,
        subject=subject,
        template_name=None,
        context={"message": message},
    )
