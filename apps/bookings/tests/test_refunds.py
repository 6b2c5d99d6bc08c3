"""Tests for refund calculation and processing."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from decimal import Decimal

import pytest
from django.contrib.auth import get_user_model
from django.core import mail
from django.test import TestCase

from apps.bookings.application.command_handlers import (
    ProcessRefundCommand,
    ProcessRefundHandler,
    RejectRefundCommand,
    RejectRefundHandler,
)
from apps.bookings.domain.entities import (
    BookingSnapshot,
    BookingStatus,
    InspectionSnapshot,
    PaymentStatus,
    RefundStatus,
    RefundType,
)
from apps.bookings.domain.refunds import (
    apply_refund,
    calculate_refund_amount,
    reject_refund,
    validate_refund_eligibility,
)
from apps.bookings.models import Booking
from apps.bookings.repositories import DjangoBookingRepository
from apps.fleet.models import Car
from shared.domain.exceptions import ConflictError, ValidationError

PICKUP = datetime(2025, 5, 20, 8, 0, tzinfo=timezone.utc)
DROP = PICKUP + timedelta(days=2)
NOW = DROP + timedelta(days=3)


def cancelled_booking(**overrides) -> BookingSnapshot:
    values = dict(
        booking_status=BookingStatus.CANCELLED,
        pickup_at=PICKUP,
        drop_at=DROP,
        cancelled_at=PICKUP - timedelta(days=1),
        payment_status=PaymentStatus.PARTIALLY_PAID,
        final_amount=Decimal("4000.00"),
        advance_required=Decimal("1000.00"),
        advance_paid=Decimal("1000.00"),
        remaining_amount=Decimal("3000.00"),
    )
    values.update(overrides)
    return BookingSnapshot(**values)


def completed_booking(**overrides) -> BookingSnapshot:
    values = dict(
        booking_status=BookingStatus.COMPLETED,
        pickup_at=PICKUP,
        drop_at=DROP,
        payment_status=PaymentStatus.FULLY_PAID,
        final_amount=Decimal("2400.00"),
        advance_required=Decimal("600.00"),
        advance_paid=Decimal("600.00"),
        full_payment_amount=Decimal("2550.00"),
        inspection=InspectionSnapshot(
            damage_detected=True,
            damage_cost=Decimal("300.00"),
            is_locked=True,
            inspected_at=DROP,
        ),
    )
    values.update(overrides)
    return BookingSnapshot(**values)


def test_cancellation_before_pickup_refunds_the_advance():
    quote = calculate_refund_amount(cancelled_booking())

    assert quote.refund_type == RefundType.FULL
    assert quote.refund_amount == Decimal("1000.00")
    assert quote.full_refund_eligible


def test_full_refund_amount_is_fixed():
    with pytest.raises(ValidationError):
        calculate_refund_amount(cancelled_booking(), refund_amount=Decimal("800"))

    # Asking for exactly the fixed amount is fine
    quote = calculate_refund_amount(cancelled_booking(), refund_amount="1000")
    assert quote.refund_amount == Decimal("1000.00")


def test_full_refund_empties_both_payments():
    outcome = apply_refund(cancelled_booking(), refund_reason="  plans changed ", now=NOW)

    assert outcome.refund_type == RefundType.FULL
    assert outcome.total_paid_before_refund == Decimal("1000.00")
    assert outcome.total_paid_after_refund == Decimal("0.00")
    assert outcome.changes["advance_paid"] == Decimal("0.00")
    assert outcome.changes["full_payment_amount"] == Decimal("0.00")
    assert outcome.changes["payment_status"] == PaymentStatus.REFUNDED.value
    assert outcome.changes["refund_status"] == RefundStatus.PROCESSED.value
    assert outcome.changes["refund_reason"] == "plans changed"
    assert outcome.changes["refund_processed_at"] == NOW
    assert outcome.changes["remaining_amount"] == Decimal("0.00")


def test_full_refund_requires_cancellation_before_pickup():
    with pytest.raises(ValidationError):
        calculate_refund_amount(completed_booking(), refund_type="full")

    late_cancel = cancelled_booking(cancelled_at=PICKUP + timedelta(hours=1))
    with pytest.raises(ValidationError):
        calculate_refund_amount(late_cancel, refund_type="Full")


def test_cancellation_after_pickup_allows_partial_refund():
    late_cancel = cancelled_booking(cancelled_at=PICKUP + timedelta(hours=1))

    outcome = apply_refund(late_cancel, refund_amount="400", now=NOW)

    assert outcome.refund_type == RefundType.PARTIAL
    assert outcome.changes["advance_paid"] == Decimal("600.00")
    assert outcome.changes["payment_status"] == PaymentStatus.PARTIALLY_PAID.value


def test_partial_refund_needs_an_amount():
    with pytest.raises(ValidationError):
        calculate_refund_amount(completed_booking())

    with pytest.raises(ValidationError):
        calculate_refund_amount(completed_booking(), refund_amount="-50")


def test_partial_refund_is_capped_by_damage_adjusted_total():
    # 600 advance + 2550 collected - 300 damage
    eligibility = validate_refund_eligibility(completed_booking())
    assert eligibility.total_paid == Decimal("3150.00")
    assert eligibility.max_refundable_amount == Decimal("2850.00")

    quote = calculate_refund_amount(completed_booking(), refund_amount="2850")
    assert quote.refund_amount == Decimal("2850.00")

    with pytest.raises(ValidationError):
        calculate_refund_amount(completed_booking(), refund_amount="2850.01")


def test_partial_refund_drains_full_payment_first():
    snapshot = completed_booking(full_payment_amount=Decimal("1000.00"), inspection=None)

    outcome = apply_refund(snapshot, refund_amount="1200", refund_type="partial", now=NOW)

    assert outcome.changes["full_payment_amount"] == Decimal("0.00")
    assert outcome.changes["advance_paid"] == Decimal("400.00")
    assert outcome.total_paid_after_refund == Decimal("400.00")
    assert outcome.changes["payment_status"] == PaymentStatus.FULLY_PAID.value


def test_refunding_everything_marks_payment_refunded():
    snapshot = completed_booking(full_payment_amount=Decimal("1000.00"), inspection=None)

    outcome = apply_refund(snapshot, refund_amount="1600", now=NOW)

    assert outcome.changes["payment_status"] == PaymentStatus.REFUNDED.value


def test_overdue_penalty_above_advance_blocks_refund():
    snapshot = completed_booking(late_hours=8, late_fee=Decimal("1200.00"))

    with pytest.raises(ValidationError):
        calculate_refund_amount(snapshot, refund_amount="100")


def test_damage_covering_everything_blocks_refund():
    snapshot = completed_booking(
        full_payment_amount=Decimal("0.00"),
        inspection=InspectionSnapshot(damage_detected=True, damage_cost=Decimal("900.00"), is_locked=True),
    )

    with pytest.raises(ValidationError):
        calculate_refund_amount(snapshot, refund_amount="100")


@pytest.mark.parametrize(
    "overrides",
    [
        {"booking_status": BookingStatus.CONFIRMED},
        {"booking_status": BookingStatus.PENDING},
        {"payment_status": PaymentStatus.PENDING},
        {"payment_status": PaymentStatus.REFUNDED},
        {"advance_paid": Decimal("0.00"), "advance_required": Decimal("0.00"), "full_payment_amount": Decimal("0.00")},
    ],
)
def test_ineligible_bookings_are_rejected(overrides):
    with pytest.raises(ValidationError):
        validate_refund_eligibility(completed_booking(**overrides))


def test_missing_booking_is_rejected():
    with pytest.raises(ValidationError):
        validate_refund_eligibility(None)


def test_processed_refund_cannot_be_repeated_or_rejected():
    snapshot = cancelled_booking(refund_status=RefundStatus.PROCESSED)

    with pytest.raises(ConflictError):
        apply_refund(snapshot, now=NOW)

    with pytest.raises(ConflictError):
        reject_refund(snapshot, "too late")


def test_reject_refund_fields():
    assert reject_refund(completed_booking(), " no receipt ") == {
        "refund_status": RefundStatus.REJECTED.value,
        "refund_reason": "no receipt",
        "refund_processed_at": None,
    }


class StaleBookingRepository(DjangoBookingRepository):
    def __init__(self, stale_booking: Booking):
        self.stale_booking = stale_booking

    def get_by_id(self, booking_id: int):
        return self.stale_booking


class RefundHandlerTests(TestCase):
    def setUp(self) -> None:
        self.user = get_user_model().objects.create_user(
            username="traveller",
            email="traveller@example.com",
            password="TravelPass123",
        )
        self.car = Car.objects.create(name="Maruti Swift", price_per_day=Decimal("2000.00"))
        self.booking = Booking.objects.create(
            user=self.user,
            car=self.car,
            pickup_at=PICKUP,
            drop_at=DROP,
            booking_status="Cancelled",
            cancelled_at=PICKUP - timedelta(days=1),
            payment_status="Partially Paid",
            price_per_day=Decimal("2000.00"),
            total_amount=Decimal("4000.00"),
            final_amount=Decimal("4000.00"),
            advance_required=Decimal("1000.00"),
            advance_paid=Decimal("1000.00"),
            remaining_amount=Decimal("3000.00"),
        )

    def test_full_refund_is_persisted_and_customer_notified(self) -> None:
        with self.captureOnCommitCallbacks(execute=True):
            outcome = ProcessRefundHandler().handle(
                ProcessRefundCommand(booking_id=self.booking.pk, refund_reason="Cancelled early", now=NOW)
            )

        self.assertEqual(outcome.refund_amount, Decimal("1000.00"))
        self.booking.refresh_from_db()
        self.assertEqual(self.booking.refund_status, "Processed")
        self.assertEqual(self.booking.refund_amount, Decimal("1000.00"))
        self.assertEqual(self.booking.advance_paid, Decimal("0.00"))
        self.assertEqual(self.booking.payment_status, "Refunded")
        self.assertEqual(self.booking.refund_processed_at, NOW)

        self.assertEqual(len(mail.outbox), 1)
        self.assertEqual(mail.outbox[0].to, ["traveller@example.com"])
        self.assertIn("Cancelled early", mail.outbox[0].body)

    def test_refund_is_processed_once(self) -> None:
        handler = ProcessRefundHandler()
        handler.handle(ProcessRefundCommand(booking_id=self.booking.pk, now=NOW))

        with self.assertRaises(ConflictError):
            handler.handle(ProcessRefundCommand(booking_id=self.booking.pk, now=NOW))

    def test_racing_refund_loses_conditional_update(self) -> None:
        stale = Booking.objects.get(pk=self.booking.pk)
        ProcessRefundHandler().handle(ProcessRefundCommand(booking_id=self.booking.pk, now=NOW))

        with self.assertRaises(ConflictError):
            ProcessRefundHandler(booking_repo=StaleBookingRepository(stale)).handle(
                ProcessRefundCommand(booking_id=self.booking.pk, now=NOW)
            )

        self.booking.refresh_from_db()
        self.assertEqual(self.booking.refund_amount, Decimal("1000.00"))

    def test_invalid_refund_leaves_booking_untouched(self) -> None:
        with self.assertRaises(ValidationError):
            ProcessRefundHandler().handle(
                ProcessRefundCommand(booking_id=self.booking.pk, refund_amount=Decimal("800"), now=NOW)
            )

        self.booking.refresh_from_db()
        self.assertEqual(self.booking.refund_status, "None")
        self.assertEqual(self.booking.advance_paid, Decimal("1000.00"))

    def test_unknown_booking_is_rejected(self) -> None:
        with self.assertRaises(ValidationError):
            ProcessRefundHandler().handle(ProcessRefundCommand(booking_id=999999, now=NOW))

    def test_reject_refund(self) -> None:
        with self.captureOnCommitCallbacks(execute=True):
            changes = RejectRefundHandler().handle(
                RejectRefundCommand(booking_id=self.booking.pk, reason="Outside policy")
            )

        self.assertEqual(changes["refund_status"], "Rejected")
        self.booking.refresh_from_db()
        self.assertEqual(self.booking.refund_status, "Rejected")
        self.assertEqual(self.booking.refund_reason, "Outside policy")
        self.assertEqual(self.booking.advance_paid, Decimal("1000.00"))
        self.assertEqual(len(mail.outbox), 1)
        self.assertIn("not approved", mail.outbox[0].body)

    def test_processed_refund_cannot_be_rejected(self) -> None:
        ProcessRefundHandler().handle(ProcessRefundCommand(booking_id=self.booking.pk, now=NOW))

        with self.assertRaises(ConflictError):
            RejectRefundHandler().handle(RejectRefundCommand(booking_id=self.booking.pk, reason="late"))

        self.booking.refresh_from_db()
        self.assertEqual(self.booking.refund_status, "Processed")
