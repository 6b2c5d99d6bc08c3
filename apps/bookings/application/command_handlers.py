"""
Booking Command Handlers

These are the use cases for the booking lifecycle.
They orchestrate the pure domain rules within transactions.

Commands:
- ConfirmBookingRequestCommand: Turn a paid rental request into a booking
- SettleBookingCommand: Close a returned booking and collect the balance
- ProcessRefundCommand: Refund a cancelled or completed booking
- RejectRefundCommand: Turn a refund request down
"""

from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import Optional
import logging

from django.conf import settings
from django.db import DatabaseError
from django.db.models import Q
from django.utils import timezone

from shared.application.uow import DjangoUnitOfWork
from shared.domain.exceptions import ConflictError, ValidationError
from apps.bookings.domain.entities import (
    BookingStatus,
    PaymentMethod,
    PaymentStatus,
    RefundStatus,
    RentalStage,
    RentalType,
    TripStatus,
)
from apps.bookings.domain.events import (
    BookingConfirmed,
    BookingSettled,
    RefundProcessed,
    RefundRejected,
)
from apps.bookings.domain.pricing import calculate_advance_breakdown, get_rental_duration_hours
from apps.bookings.domain.refunds import RefundOutcome, apply_refund, reject_refund
from apps.bookings.domain.settlement import (
    SETTLEMENT_PAYMENT_METHODS,
    ensure_settlement_allowed,
    normalize_payment_method,
    quote_settlement,
)
from apps.bookings.domain.stages import compute_rental_stage, normalize_grace_period_hours
from apps.bookings.models import Booking, RentalRequest
from apps.bookings.repositories import DjangoBookingRepository
from apps.bookings.services import snapshot_from_booking

logger = logging.getLogger(__name__)


def allowed_payment_methods():
    """Payment methods accepted at the counter, from settings when configured."""
    configured = getattr(settings, 'SETTLEMENT_PAYMENT_METHODS', None)
    if not configured:
        return SETTLEMENT_PAYMENT_METHODS
    methods = {PaymentMethod.coerce(str(name).strip().upper()) for name in configured}
    methods.discard(None)
    methods.discard(PaymentMethod.NONE)
    return frozenset(methods) or SETTLEMENT_PAYMENT_METHODS


# ===== Commands =====

@dataclass
class ConfirmBookingRequestCommand:
    """
    Command to confirm a rental request once its advance is paid

    This is the only entry point that creates bookings.
    """
    request_id: int
    payment_method: Optional[str] = None
    now: Optional[datetime] = None


@dataclass
class SettleBookingCommand:
    """Command to close a booking after the car came back"""
    booking_id: int
    payment_method: Optional[str] = None
    now: Optional[datetime] = None


@dataclass
class ProcessRefundCommand:
    """Command to refund a cancelled or completed booking"""
    booking_id: int
    refund_amount: Optional[Decimal] = None
    refund_type: Optional[str] = None
    refund_reason: str = ''
    now: Optional[datetime] = None


@dataclass
class RejectRefundCommand:
    """Command to reject a refund request"""
    booking_id: int
    reason: str = ''


@dataclass
class SettlementResult:
    booking: Booking
    collected_amount: Decimal


# ===== Command Handlers =====

class ConfirmBookingRequestHandler:
    """
    Handler for ConfirmBookingRequest command

    Steps:
    1. Validate the pending request and the car
    2. Reserve subscription hours (subscription rentals only, fails closed)
    3. Work out the advance from the price left after coverage
    4. Create the booking and convert the request in one transaction
    5. On failure give the reserved hours back and re-raise
    6. On success record subscription usage (best-effort)

    The car is marked Reserved by the BookingConfirmed event handler.
    """

    def __init__(self, subscription_repo=None):
        self.subscription_repo = subscription_repo

    def handle(self, command: ConfirmBookingRequestCommand) -> Booking:
        from apps.fleet.models import Car
        from apps.subscriptions import services as subscription_services

        now = command.now or timezone.now()
        logger.info(f"Confirming rental request {command.request_id}")

        request = (
            RentalRequest.objects.select_related("car")
            .filter(pk=command.request_id)
            .first()
        )
        if request is None:
            raise ValidationError("Request not found", request_id=command.request_id)

        if request.status != RentalRequest.Status.PENDING:
            raise ValidationError("Only pending requests can be confirmed", status=request.status)

        if request.car.fleet_status not in (Car.FleetStatus.AVAILABLE, Car.FleetStatus.RESERVED):
            message = (
                "Vehicle under maintenance"
                if request.car.fleet_status == Car.FleetStatus.MAINTENANCE
                else "Vehicle temporarily unavailable"
            )
            raise ValidationError(message, car_id=request.car_id)

        base_amount = request.final_amount or request.total_amount
        if RentalType.coerce(request.rental_type) == RentalType.SUBSCRIPTION:
            result = subscription_services.reserve_subscription_hours(
                user_id=request.user_id,
                base_amount=request.subscription_base_amount or base_amount,
                rental_hours=get_rental_duration_hours(request.pickup_at, request.drop_at),
                now=now,
                subscription_id=request.user_subscription_id,
                repository=self.subscription_repo,
            )
        else:
            result = subscription_services.one_time_pricing(base_amount)

        reservation = result.reservation

        try:
            breakdown = calculate_advance_breakdown(result.pricing.final_amount)
            if breakdown.advance_required > 0:
                method = normalize_payment_method(command.payment_method, allowed=allowed_payment_methods())
            else:
                method = PaymentMethod.coerce(
                    str(command.payment_method or '').strip().upper(),
                    PaymentMethod.NONE,
                )

            with DjangoUnitOfWork() as uow:
                booking = Booking.objects.create(
                    request=request,
                    user_id=request.user_id,
                    car_id=request.car_id,
                    driver_id=request.driver_id,
                    pickup_at=request.pickup_at,
                    drop_at=request.drop_at,
                    grace_period_hours=normalize_grace_period_hours(request.grace_period_hours),
                    rental_stage=RentalStage.SCHEDULED.value,
                    trip_status=TripStatus.UPCOMING.value,
                    booking_status=BookingStatus.CONFIRMED.value,
                    payment_status=PaymentStatus.PARTIALLY_PAID.value,
                    price_per_day=request.price_per_day or request.car.price_per_day,
                    total_amount=breakdown.final_amount,
                    advance_required=breakdown.advance_required,
                    advance_paid=breakdown.advance_required,
                    advance_payment_method=method.value,
                    remaining_amount=breakdown.remaining_amount,
                    **result.pricing.as_booking_fields(),
                )

                converted = RentalRequest.objects.filter(
                    pk=request.pk,
                    status=RentalRequest.Status.PENDING,
                ).update(status=RentalRequest.Status.CONVERTED)
                if not converted:
                    raise ConflictError("Request was already confirmed", request_id=request.pk)

                uow.add_event(BookingConfirmed(
                    booking_id=booking.pk,
                    car_id=booking.car_id,
                    user_id=booking.user_id,
                    subscription_hours_used=result.pricing.subscription_hours_used,
                ))
        except Exception:
            subscription_services.rollback_subscription_reservation(
                reservation,
                repository=self.subscription_repo,
            )
            raise

        if reservation is not None:
            try:
                subscription_services.append_usage_history(
                    reservation,
                    booking.pk,
                    repository=self.subscription_repo,
                )
            except DatabaseError as e:
                logger.error(f"Failed to append subscription usage for booking {booking.pk}: {e}", exc_info=True)

        logger.info(
            f"Booking {booking.booking_code} confirmed from request {request.pk}, "
            f"advance {breakdown.advance_required}"
        )
        return booking


class SettleBookingHandler:
    """
    Handler for SettleBooking command

    The late metrics are brought up to `now`, the amount due is
    computed, and every field is written in one conditional UPDATE that
    only matches a still-confirmed, not-completed booking. A second,
    concurrent settlement therefore gets a ConflictError instead of
    charging twice.

    Releasing the car and driver, the settlement document and the
    completion email run after commit from the BookingSettled event.
    """

    def __init__(self, booking_repo=None):
        self.booking_repo = booking_repo or DjangoBookingRepository()

    def handle(self, command: SettleBookingCommand) -> SettlementResult:
        now = command.now or timezone.now()
        logger.info(f"Settling booking {command.booking_id}")

        with DjangoUnitOfWork() as uow:
            booking = self.booking_repo.get_by_id(command.booking_id)
            snapshot = snapshot_from_booking(booking) if booking else None
            ensure_settlement_allowed(snapshot)

            method = normalize_payment_method(command.payment_method, allowed=allowed_payment_methods())

            computation = compute_rental_stage(snapshot, now)
            quote = quote_settlement(computation.apply_to(snapshot))

            changes = {
                'hourly_late_rate': computation.hourly_late_rate,
                'late_hours': computation.late_hours,
                'late_fee': computation.late_fee,
                **quote.changes(method, now),
            }

            matched = self.booking_repo.update_fields(
                booking.pk,
                changes,
                ~Q(rental_stage=RentalStage.COMPLETED.value),
                ~Q(trip_status=TripStatus.COMPLETED.value),
                booking_status=BookingStatus.CONFIRMED.value,
            )
            if not matched:
                raise ConflictError("Booking is already completed", booking_id=booking.pk)

            uow.add_event(BookingSettled(
                booking_id=booking.pk,
                car_id=booking.car_id,
                driver_id=booking.driver_id,
                collected_amount=quote.collected_amount,
                settled_at=now,
            ))

        for field_name, value in changes.items():
            setattr(booking, field_name, value)

        logger.info(
            f"Booking {booking.booking_code} settled: collected {quote.collected_amount} "
            f"(late fee {quote.late_fee}, damage {quote.damage_cost}) via {method.value}"
        )
        return SettlementResult(booking=booking, collected_amount=quote.collected_amount)


class ProcessRefundHandler:
    """
    Handler for ProcessRefund command

    Idempotent at the storage level: the write only matches a booking
    whose refund is not processed yet, so two racing refunds cannot
    both succeed.
    """

    def __init__(self, booking_repo=None):
        self.booking_repo = booking_repo or DjangoBookingRepository()

    def handle(self, command: ProcessRefundCommand) -> RefundOutcome:
        now = command.now or timezone.now()
        logger.info(f"Processing refund for booking {command.booking_id}")

        with DjangoUnitOfWork() as uow:
            booking = self.booking_repo.get_by_id(command.booking_id)
            if booking is None:
                raise ValidationError("Booking not found", booking_id=command.booking_id)

            outcome = apply_refund(
                snapshot_from_booking(booking),
                refund_amount=command.refund_amount,
                refund_type=command.refund_type,
                refund_reason=command.refund_reason,
                now=now,
            )

            matched = self.booking_repo.update_fields(
                booking.pk,
                outcome.changes,
                ~Q(refund_status=RefundStatus.PROCESSED.value),
            )
            if not matched:
                raise ConflictError("Refund is already processed for this booking", booking_id=booking.pk)

            uow.add_event(RefundProcessed(
                booking_id=booking.pk,
                refund_amount=outcome.refund_amount,
                refund_type=outcome.refund_type.value,
            ))

        logger.info(
            f"Refund {outcome.refund_type} of {outcome.refund_amount} processed "
            f"for booking {booking.booking_code}"
        )
        return outcome


class RejectRefundHandler:
    """Handler for RejectRefund command"""

    def __init__(self, booking_repo=None):
        self.booking_repo = booking_repo or DjangoBookingRepository()

    def handle(self, command: RejectRefundCommand) -> dict:
        logger.info(f"Rejecting refund for booking {command.booking_id}")

        with DjangoUnitOfWork() as uow:
            booking = self.booking_repo.get_by_id(command.booking_id)
            changes = reject_refund(snapshot_from_booking(booking) if booking else None, command.reason)

            matched = self.booking_repo.update_fields(
                booking.pk,
                changes,
                ~Q(refund_status=RefundStatus.PROCESSED.value),
            )
            if not matched:
                raise ConflictError("Cannot reject a processed refund", booking_id=booking.pk)

            uow.add_event(RefundRejected(booking_id=booking.pk, reason=changes['refund_reason']))

        return changes
