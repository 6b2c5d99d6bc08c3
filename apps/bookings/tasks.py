"""Celery tasks for the booking domain."""

from __future__ import annotations

import logging

import structlog  # type: ignore
from celery import shared_task  # type: ignore
from django.utils import timezone  # type: ignore

from .models import Booking
from .services import bookings_due_for_stage_sync, sync_rental_stages

logger = logging.getLogger(__name__)
sweep_logger = structlog.get_logger(__name__)

SYNC_BATCH_SIZE = 500


# ============================================================================
# PERIODIC TASKS (run by Celery Beat)
# ============================================================================

@shared_task(name="bookings.sync_rental_stages")
def sync_rental_stages_task() -> dict[str, int]:
    """
    Move open bookings through their rental stages.

    Picks up every confirmed booking that is not completed and runs the
    stage engine on it: pickups that started become Active, returns past
    the grace period become Overdue and accrue late fees.

    Every due booking is visited on each run, SYNC_BATCH_SIZE rows at a
    time.

    Runs every RENTAL_STAGE_SYNC_INTERVAL_SECONDS via Celery Beat.

    Returns:
        dict: {"checked": bookings looked at, "updated": bookings changed}
    """
    now = timezone.now()
    checked = updated = 0

    due = bookings_due_for_stage_sync()
    booking_ids = list(due.values_list("pk", flat=True))
    for start in range(0, len(booking_ids), SYNC_BATCH_SIZE):
        batch = list(due.filter(pk__in=booking_ids[start:start + SYNC_BATCH_SIZE]))
        checked += len(batch)
        updated += sync_rental_stages(batch, now)

    sweep_logger.info("rental_stage_sweep", checked=checked, updated=updated)
    return {"checked": checked, "updated": updated}


# ============================================================================
# SETTLEMENT SIDE EFFECTS
# ============================================================================

@shared_task(name="bookings.generate_settlement_document")
def generate_settlement_document(booking_id: int) -> str | None:
    """
    Assign the invoice number of a settled booking, then queue the receipt.

    Repeat calls keep the first number and do not send the receipt again.
    """
    booking = Booking.objects.filter(pk=booking_id).only("booking_code", "invoice_number").first()
    if booking is None:
        logger.error(f"Booking {booking_id} not found for settlement document")
        return None

    if booking.invoice_number:
        return booking.invoice_number

    now = timezone.now()
    invoice_number = f"INV-{now:%Y%m%d}-{booking.booking_code}"
    assigned = Booking.objects.filter(pk=booking_id, invoice_number="").update(
        invoice_number=invoice_number,
        invoice_generated_at=now,
    )
    if assigned:
        logger.info(f"Settlement document {invoice_number} generated for booking {booking.booking_code}")
        notify_booking_completed.delay(booking_id)
    return Booking.objects.filter(pk=booking_id).values_list("invoice_number", flat=True).first()


# ============================================================================
# NOTIFICATION TASKS
# ============================================================================

@shared_task(name="bookings.notify_booking_completed")
def notify_booking_completed(booking_id: int) -> bool:
    """Receipt to the customer once the booking is settled."""
    try:
        booking = Booking.objects.select_related("user", "car").get(id=booking_id)
    except Booking.DoesNotExist:
        logger.error(f"Booking {booking_id} not found for completion notification")
        return False

    from apps.notifications.services import send_booking_completed_email

    sent = send_booking_completed_email(booking)
    logger.info(f"[NOTIFICATION] Completion message for booking {booking.booking_code}, sent={sent}")
    return sent


@shared_task(name="bookings.notify_refund_processed")
def notify_refund_processed(booking_id: int) -> bool:
    try:
        booking = Booking.objects.select_related("user").get(id=booking_id)
    except Booking.DoesNotExist:
        logger.error(f"Booking {booking_id} not found for refund notification")
        return False

    from apps.notifications.services import send_refund_processed_email

    return send_refund_processed_email(booking)


@shared_task(name="bookings.notify_refund_rejected")
def notify_refund_rejected(booking_id: int) -> bool:
    try:
        booking = Booking.objects.select_related("user").get(id=booking_id)
    except Booking.DoesNotExist:
        logger.error(f"Booking {booking_id} not found for refund notification")
        return False

    from apps.notifications.services import send_refund_rejected_email

    return send_refund_rejected_email(booking)
