"""Domain services for booking workflows."""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Iterable, Optional, TYPE_CHECKING

from django.db.models import Q, QuerySet  # type: ignore
from django.utils import timezone  # type: ignore

from shared.domain.value_objects import to_amount

from .domain.entities import (
    BookingSnapshot,
    BookingStatus,
    InspectionSnapshot,
    PaymentStatus,
    RefundStatus,
    RentalStage,
    TripStatus,
)
from .domain.stages import StageComputation, compute_rental_stage
from .repositories import DjangoBookingRepository

if TYPE_CHECKING:  # pragma: no cover - type checking only
    from .models import Booking

logger = logging.getLogger(__name__)


def snapshot_from_booking(booking: "Booking") -> BookingSnapshot:
    """Freeze the fields the lifecycle rules read from a booking row."""

    inspection = booking.inspection
    inspection_snapshot = None
    if inspection is not None:
        inspection_snapshot = InspectionSnapshot(
            damage_detected=inspection.damage_detected,
            damage_cost=to_amount(inspection.damage_cost),
            current_mileage=inspection.current_mileage,
            is_locked=inspection.is_locked,
            inspected_at=inspection.inspected_at,
        )

    return BookingSnapshot(
        booking_status=BookingStatus.coerce(booking.booking_status, BookingStatus.PENDING),
        pickup_at=booking.pickup_at,
        drop_at=booking.drop_at,
        rental_stage=RentalStage.coerce(booking.rental_stage, RentalStage.SCHEDULED),
        trip_status=TripStatus.coerce(booking.trip_status, TripStatus.UPCOMING),
        payment_status=PaymentStatus.coerce(booking.payment_status, PaymentStatus.PENDING),
        actual_return_at=booking.actual_return_at,
        cancelled_at=booking.cancelled_at,
        grace_period_hours=booking.grace_period_hours,
        price_per_day=to_amount(booking.price_per_day),
        total_amount=to_amount(booking.total_amount),
        final_amount=to_amount(booking.final_amount),
        advance_required=to_amount(booking.advance_required),
        advance_paid=to_amount(booking.advance_paid),
        full_payment_amount=to_amount(booking.full_payment_amount),
        remaining_amount=to_amount(booking.remaining_amount),
        hourly_late_rate=to_amount(booking.hourly_late_rate),
        late_hours=max(int(booking.late_hours or 0), 0),
        late_fee=to_amount(booking.late_fee),
        refund_status=RefundStatus.coerce(booking.refund_status, RefundStatus.NONE),
        inspection=inspection_snapshot,
    )


def stage_write_guard(computation: StageComputation) -> Q:
    """
    Rows the stage engine may still write to

    A concurrent writer may have moved the booking further (settlement
    completing it, another sweep marking it overdue); the update must
    then match nothing instead of dragging the stage back.
    """
    target = computation.next_stage or RentalStage.SCHEDULED
    allowed = [stage.value for stage in RentalStage if stage.order <= target.order]
    guard = Q(rental_stage__in=allowed)
    if target != RentalStage.COMPLETED:
        guard &= ~Q(booking_status=BookingStatus.COMPLETED.value)
    return guard


def sync_rental_stage(
    booking: "Booking",
    now: Optional[datetime] = None,
    *,
    persist: bool = True,
    repository: Optional[DjangoBookingRepository] = None,
) -> dict:
    """
    Bring one booking's stage and late metrics up to `now`.

    Returns the fields that changed. The in-memory booking is updated
    as well, so callers can keep using it.
    """

    now = now or timezone.now()
    snapshot = snapshot_from_booking(booking)
    computation = compute_rental_stage(snapshot, now)
    changes = computation.changes_against(snapshot)
    if not changes:
        return {}

    if persist:
        repository = repository or DjangoBookingRepository()
        matched = repository.update_fields(booking.pk, changes, stage_write_guard(computation))
        if not matched:
            logger.info(f"Booking {booking.booking_code} moved on concurrently, stage sync skipped")
            return {}

    for field_name, value in changes.items():
        setattr(booking, field_name, value)

    if "rental_stage" in changes:
        logger.info(
            f"Booking {booking.booking_code} stage {snapshot.rental_stage} -> {changes['rental_stage']}"
        )
    return changes


def sync_rental_stages(
    bookings: Iterable["Booking"],
    now: Optional[datetime] = None,
    *,
    persist: bool = True,
    repository: Optional[DjangoBookingRepository] = None,
) -> int:
    """Run the stage engine over several bookings; returns how many changed."""

    now = now or timezone.now()
    repository = repository or DjangoBookingRepository()
    changed = 0
    for booking in bookings:
        if sync_rental_stage(booking, now, persist=persist, repository=repository):
            changed += 1
    return changed


def bookings_due_for_stage_sync() -> QuerySet:
    """Confirmed bookings that have not been closed yet."""

    from .models import Booking  # Local import to prevent circular dependency

    return (
        Booking.objects.filter(booking_status=BookingStatus.CONFIRMED.value)
        .exclude(rental_stage=RentalStage.COMPLETED.value)
        .exclude(trip_status=TripStatus.COMPLETED.value)
        .filter(actual_return_at__isnull=True)
        .select_related("return_inspection")
        .order_by("pickup_at")
    )
