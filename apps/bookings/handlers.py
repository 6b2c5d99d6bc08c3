"""
Booking Event Handlers

Dispatch Celery tasks for committed booking events. Handlers only
enqueue work; a failure to enqueue is logged by the message bus and
never reaches the use case that produced the event.
"""

import logging

from shared.application.message_bus import MessageBus, message_bus
from apps.bookings.domain.events import (
    BookingConfirmed,
    BookingSettled,
    RefundProcessed,
    RefundRejected,
)

logger = logging.getLogger(__name__)


# ===== Booking Events =====

def reserve_car_on_booking_confirmed(event: BookingConfirmed):
    from apps.fleet.tasks import reserve_car

    if event.car_id:
        reserve_car.delay(event.car_id)


def release_car_on_booking_settled(event: BookingSettled):
    from apps.fleet.tasks import release_car_for_booking

    if event.car_id:
        release_car_for_booking.delay(event.booking_id)


def release_driver_on_booking_settled(event: BookingSettled):
    from apps.fleet.tasks import release_driver_for_booking

    if event.driver_id:
        release_driver_for_booking.delay(event.booking_id)


def generate_document_on_booking_settled(event: BookingSettled):
    """The document task queues the customer receipt once the invoice number exists."""
    from apps.bookings.tasks import generate_settlement_document

    generate_settlement_document.delay(event.booking_id)


# ===== Refund Events =====

def notify_customer_on_refund_processed(event: RefundProcessed):
    from apps.bookings.tasks import notify_refund_processed

    notify_refund_processed.delay(event.booking_id)


def notify_customer_on_refund_rejected(event: RefundRejected):
    from apps.bookings.tasks import notify_refund_rejected

    notify_refund_rejected.delay(event.booking_id)


def register_event_handlers(bus: MessageBus = message_bus):
    """Wire booking events to their handlers; safe to call more than once."""
    bus.register_event_handler(BookingConfirmed, reserve_car_on_booking_confirmed)

    bus.register_event_handler(BookingSettled, release_driver_on_booking_settled)
    bus.register_event_handler(BookingSettled, release_car_on_booking_settled)
    bus.register_event_handler(BookingSettled, generate_document_on_booking_settled)

    bus.register_event_handler(RefundProcessed, notify_customer_on_refund_processed)
    bus.register_event_handler(RefundRejected, notify_customer_on_refund_rejected)

    logger.debug("Booking event handlers registered")
