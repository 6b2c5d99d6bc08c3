"""
Booking Domain Entities

Status vocabularies and the immutable booking snapshot every pure
calculation in this package works on:
- RentalStage: time-driven lifecycle of a confirmed booking
- BookingStatus / PaymentStatus / TripStatus / RefundStatus
- BookingSnapshot: read-only view of a booking at one instant
"""

from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal

from shared.domain.base import ChoiceEnum, ValueObject
from shared.domain.value_objects import ZERO


class RentalStage(ChoiceEnum):
    """
    Rental Stage

    Stage transitions only move forward:
    - SCHEDULED -> ACTIVE (pickup time reached)
    - ACTIVE -> OVERDUE (drop time + grace period passed)
    - any -> COMPLETED (settlement)
    """
    SCHEDULED = 'Scheduled'
    ACTIVE = 'Active'
    OVERDUE = 'Overdue'
    COMPLETED = 'Completed'

    @property
    def order(self) -> int:
        return STAGE_ORDER[self]


STAGE_ORDER = {
    RentalStage.SCHEDULED: 1,
    RentalStage.ACTIVE: 2,
    RentalStage.OVERDUE: 3,
    RentalStage.COMPLETED: 4,
}


class BookingStatus(ChoiceEnum):
    PENDING = 'Pending'
    CONFIRMED = 'Confirmed'
    COMPLETED = 'Completed'
    CANCELLED = 'Cancelled'
    REJECTED = 'Rejected'


class PaymentStatus(ChoiceEnum):
    PENDING = 'Pending'
    PARTIALLY_PAID = 'Partially Paid'
    FULLY_PAID = 'Fully Paid'
    REFUNDED = 'Refunded'

    @property
    def is_advance_paid(self) -> bool:
        return self in (PaymentStatus.PARTIALLY_PAID, PaymentStatus.FULLY_PAID)


class TripStatus(ChoiceEnum):
    UPCOMING = 'upcoming'
    ACTIVE = 'active'
    COMPLETED = 'completed'


class RefundStatus(ChoiceEnum):
    NONE = 'None'
    PROCESSED = 'Processed'
    REJECTED = 'Rejected'


class RefundType(ChoiceEnum):
    FULL = 'Full'
    PARTIAL = 'Partial'


class PaymentMethod(ChoiceEnum):
    NONE = 'NONE'
    CARD = 'CARD'
    UPI = 'UPI'
    NETBANKING = 'NETBANKING'
    CASH = 'CASH'


class RentalType(ChoiceEnum):
    ONE_TIME = 'OneTime'
    SUBSCRIPTION = 'Subscription'


@dataclass(frozen=True)
class InspectionSnapshot(ValueObject):
    """Return inspection as recorded by staff when the car comes back."""
    damage_detected: bool = False
    damage_cost: Decimal = ZERO
    current_mileage: int | None = None
    is_locked: bool = False
    inspected_at: datetime | None = None

    @property
    def is_settleable(self) -> bool:
        return bool(self.is_locked and self.inspected_at)

    @property
    def chargeable_damage(self) -> Decimal:
        if not self.damage_detected:
            return ZERO
        return max(self.damage_cost or ZERO, ZERO)


@dataclass(frozen=True)
class BookingSnapshot(ValueObject):
    """
    Booking Snapshot

    Everything the stage, settlement and refund calculations need,
    captured at one instant. Calculations never mutate a snapshot; they
    return new values (see dataclasses.replace) and the caller persists
    only the fields that changed.
    """

    booking_status: BookingStatus
    pickup_at: datetime | None = None
    drop_at: datetime | None = None
    rental_stage: RentalStage = RentalStage.SCHEDULED
    trip_status: TripStatus = TripStatus.UPCOMING
    payment_status: PaymentStatus = PaymentStatus.PENDING
    actual_return_at: datetime | None = None
    cancelled_at: datetime | None = None
    grace_period_hours: Decimal | None = None

    # Pricing
    price_per_day: Decimal = ZERO
    total_amount: Decimal = ZERO
    final_amount: Decimal = ZERO
    advance_required: Decimal = ZERO
    advance_paid: Decimal = ZERO
    full_payment_amount: Decimal = ZERO
    remaining_amount: Decimal = ZERO

    # Late metrics
    hourly_late_rate: Decimal = ZERO
    late_hours: int = 0
    late_fee: Decimal = ZERO

    refund_status: RefundStatus = RefundStatus.NONE
    inspection: InspectionSnapshot | None = field(default=None)

    def is_completed(self, stage: RentalStage | None = None) -> bool:
        """True when any completion signal is present."""
        return (
            self.booking_status == BookingStatus.COMPLETED
            or self.trip_status == TripStatus.COMPLETED
            or (stage or self.rental_stage) == RentalStage.COMPLETED
            or self.actual_return_at is not None
        )

    @property
    def resolved_final_amount(self) -> Decimal:
        """final_amount when set, else the booking total."""
        if self.final_amount and self.final_amount > 0:
            return self.final_amount
        if self.total_amount and self.total_amount > 0:
            return self.total_amount
        return ZERO

    @property
    def resolved_advance_paid(self) -> Decimal:
        """
        Advance actually paid

        Older bookings only carry the advance-paid payment flag; for those
        the required advance stands in for the paid amount.
        """
        if self.advance_paid and self.advance_paid > 0:
            return self.advance_paid
        if self.payment_status.is_advance_paid:
            return max(self.advance_required or ZERO, ZERO)
        return ZERO

    @property
    def damage_cost(self) -> Decimal:
        if self.inspection is None:
            return ZERO
        return self.inspection.chargeable_damage
