"""
Rental Stage Engine

Pure computation of a booking's next rental stage and late-fee metrics.
No I/O: input is a BookingSnapshot plus the caller's notion of "now",
output is a StageComputation describing the new values.

Rules:
- Stages only move forward (Scheduled < Active < Overdue < Completed)
- Scheduled -> Active once now >= pickup
- Active -> Overdue once now > drop + grace period
- The hourly late rate is locked the first time the booking is
  Active/Overdue and never recomputed afterwards
- Late hours and late fee never decrease while Overdue and are frozen
  once the booking is completed or fully paid
"""

from dataclasses import dataclass, replace
from datetime import datetime
from decimal import Decimal

from shared.domain.base import ValueObject
from shared.domain.value_objects import ONE_HOUR, ZERO, round_currency, to_amount, to_decimal

from .entities import BookingSnapshot, BookingStatus, PaymentStatus, RentalStage, TripStatus

LATE_RATE_MULTIPLIER = Decimal('1.5')
HOURS_PER_DAY = Decimal('24')
DEFAULT_GRACE_PERIOD_HOURS = Decimal('1')


def normalize_grace_period_hours(value) -> Decimal:
    """Missing or negative grace periods fall back to one hour."""
    hours = to_decimal(value, DEFAULT_GRACE_PERIOD_HOURS)
    if hours < 0:
        return DEFAULT_GRACE_PERIOD_HOURS
    return hours


def overdue_threshold(snapshot: BookingSnapshot) -> datetime | None:
    if snapshot.drop_at is None:
        return None
    grace = normalize_grace_period_hours(snapshot.grace_period_hours)
    return snapshot.drop_at + ONE_HOUR * float(grace)


def calculate_hourly_late_rate(price_per_day) -> Decimal:
    """(price per day / 24) * 1.5, rounded to cents."""
    price = to_amount(price_per_day)
    if price <= 0:
        return ZERO
    return round_currency(price / HOURS_PER_DAY * LATE_RATE_MULTIPLIER)


@dataclass(frozen=True)
class LateMetrics(ValueObject):
    """
    Late-fee metrics

    merge() is the only way two observations are combined: the locked
    rate wins over a fresh one, hours and fee take the maximum. Applying
    merge repeatedly with any sequence of observations can therefore
    never lower a customer's recorded lateness.
    """
    hourly_late_rate: Decimal = ZERO
    late_hours: int = 0
    late_fee: Decimal = ZERO

    def merge(self, other: 'LateMetrics') -> 'LateMetrics':
        rate = self.hourly_late_rate if self.hourly_late_rate > 0 else other.hourly_late_rate
        return LateMetrics(
            hourly_late_rate=rate,
            late_hours=max(self.late_hours, other.late_hours),
            late_fee=max(self.late_fee, other.late_fee),
        )


@dataclass(frozen=True)
class StageComputation(ValueObject):
    """Result of one engine run; next_stage is None when there is no stage to report."""
    next_stage: RentalStage | None
    trip_status: TripStatus
    metrics: LateMetrics
    remaining_amount: Decimal

    @property
    def hourly_late_rate(self) -> Decimal:
        return self.metrics.hourly_late_rate

    @property
    def late_hours(self) -> int:
        return self.metrics.late_hours

    @property
    def late_fee(self) -> Decimal:
        return self.metrics.late_fee

    def changes_against(self, snapshot: BookingSnapshot) -> dict:
        """Model fields whose values differ from the snapshot."""
        changes = {}
        if self.next_stage is not None and self.next_stage != snapshot.rental_stage:
            changes['rental_stage'] = self.next_stage.value
        if self.trip_status != snapshot.trip_status:
            changes['trip_status'] = self.trip_status.value
        if self.hourly_late_rate != snapshot.hourly_late_rate:
            changes['hourly_late_rate'] = self.hourly_late_rate
        if self.late_hours != snapshot.late_hours:
            changes['late_hours'] = self.late_hours
        if self.late_fee != snapshot.late_fee:
            changes['late_fee'] = self.late_fee
        if self.remaining_amount != snapshot.remaining_amount:
            changes['remaining_amount'] = self.remaining_amount
        return changes

    def apply_to(self, snapshot: BookingSnapshot) -> BookingSnapshot:
        """Snapshot as it will look once the changes are persisted."""
        return replace(
            snapshot,
            rental_stage=self.next_stage or snapshot.rental_stage,
            trip_status=self.trip_status,
            hourly_late_rate=self.hourly_late_rate,
            late_hours=self.late_hours,
            late_fee=self.late_fee,
            remaining_amount=self.remaining_amount,
        )


def resolve_next_stage(snapshot: BookingSnapshot, now: datetime) -> RentalStage:
    """Time-based stage for the snapshot, never behind the current one."""
    current = snapshot.rental_stage or RentalStage.SCHEDULED

    if snapshot.is_completed():
        return RentalStage.COMPLETED

    if snapshot.booking_status != BookingStatus.CONFIRMED:
        return current

    next_stage = current

    if next_stage == RentalStage.SCHEDULED and snapshot.pickup_at and now >= snapshot.pickup_at:
        next_stage = RentalStage.ACTIVE

    if next_stage == RentalStage.ACTIVE:
        threshold = overdue_threshold(snapshot)
        if threshold is not None and now > threshold:
            next_stage = RentalStage.OVERDUE

    if next_stage.order < current.order:
        return current
    return next_stage


def overdue_hours(snapshot: BookingSnapshot, now: datetime) -> int:
    """Started hours past drop + grace; 0 when not yet overdue."""
    threshold = overdue_threshold(snapshot)
    if threshold is None or now <= threshold:
        return 0
    overdue = now - threshold
    # ceil for timedelta: -((-a) // b)
    return -((-overdue) // ONE_HOUR)


def calculate_late_metrics(snapshot: BookingSnapshot, stage: RentalStage, now: datetime) -> LateMetrics:
    stored = LateMetrics(
        hourly_late_rate=round_currency(to_amount(snapshot.hourly_late_rate)),
        late_hours=max(int(snapshot.late_hours or 0), 0),
        late_fee=round_currency(to_amount(snapshot.late_fee)),
    )
    if snapshot.payment_status == PaymentStatus.FULLY_PAID:
        return stored

    frozen = snapshot.is_completed(stage)

    existing_rate = stored.hourly_late_rate
    can_lock_rate = stage in (RentalStage.ACTIVE, RentalStage.OVERDUE) or (
        stage == RentalStage.COMPLETED and existing_rate > 0
    )
    if existing_rate > 0:
        rate = existing_rate
    elif can_lock_rate:
        rate = calculate_hourly_late_rate(snapshot.price_per_day)
    else:
        rate = ZERO

    metrics = replace(stored, hourly_late_rate=rate)

    if frozen or stage != RentalStage.OVERDUE:
        return metrics

    hours = overdue_hours(snapshot, now)
    if hours <= 0:
        return metrics

    hours = max(metrics.late_hours, hours)
    accrued = LateMetrics(
        hourly_late_rate=rate,
        late_hours=hours,
        late_fee=round_currency(hours * rate),
    )
    return metrics.merge(accrued)


def calculate_remaining_amount(snapshot: BookingSnapshot, late_fee: Decimal) -> Decimal:
    if snapshot.payment_status == PaymentStatus.FULLY_PAID:
        return ZERO
    outstanding = max(snapshot.resolved_final_amount - snapshot.resolved_advance_paid, ZERO)
    return round_currency(outstanding + late_fee)


def compute_rental_stage(snapshot: BookingSnapshot, now: datetime) -> StageComputation:
    """
    Run the engine once

    Idempotent: feeding the resulting snapshot back in with the same or
    a later `now` never moves the stage or the late metrics backwards.
    """
    next_stage = resolve_next_stage(snapshot, now)

    trip_status = snapshot.trip_status
    if next_stage in (RentalStage.ACTIVE, RentalStage.OVERDUE) and trip_status not in (
        TripStatus.ACTIVE,
        TripStatus.COMPLETED,
    ):
        trip_status = TripStatus.ACTIVE

    metrics = calculate_late_metrics(snapshot, next_stage, now)

    return StageComputation(
        next_stage=next_stage,
        trip_status=trip_status,
        metrics=metrics,
        remaining_amount=calculate_remaining_amount(snapshot, metrics.late_fee),
    )
