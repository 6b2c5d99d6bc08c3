"""
Booking Domain Events

Events that represent things that have happened in the booking domain.
These are published after successful transaction commits.
"""

from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal

from shared.domain.base import DomainEvent


@dataclass
class BookingConfirmed(DomainEvent):
    """
    Event: A rental request was paid and turned into a confirmed booking

    Triggers:
    - Mark the car as reserved in the fleet
    """
    booking_id: int
    car_id: int | None
    user_id: int
    subscription_hours_used: Decimal


@dataclass
class BookingSettled(DomainEvent):
    """
    Event: Booking was completed and the balance collected

    Triggers (all best-effort):
    - Release the car back to the available pool
    - Release the assigned driver and count the trip
    - Generate the settlement document
    - Send the completion notification
    """
    booking_id: int
    car_id: int | None
    driver_id: int | None
    collected_amount: Decimal
    settled_at: datetime


@dataclass
class RefundProcessed(DomainEvent):
    """
    Event: Refund was applied to a booking

    Triggers:
    - Notify the customer
    """
    booking_id: int
    refund_amount: Decimal
    refund_type: str


@dataclass
class RefundRejected(DomainEvent):
    """Event: Staff rejected a refund request"""
    booking_id: int
    reason: str
