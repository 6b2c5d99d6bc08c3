"""Persisting rental stages and the periodic sweep."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone as dt_timezone
from decimal import Decimal
from unittest import mock

from django.conf import settings
from django.contrib.auth import get_user_model
from django.core import mail
from django.test import TestCase
from django.utils import timezone

from apps.bookings.models import Booking
from apps.bookings.services import bookings_due_for_stage_sync, sync_rental_stage, sync_rental_stages
from apps.bookings.tasks import generate_settlement_document, sync_rental_stages_task
from apps.fleet.models import Car

PICKUP = datetime(2025, 4, 1, 10, 0, tzinfo=dt_timezone.utc)
DROP = PICKUP + timedelta(days=1)


class StageSyncTests(TestCase):
    def setUp(self) -> None:
        self.user = get_user_model().objects.create_user(
            username="kiran",
            email="kiran@example.com",
            password="KiranPass123",
        )
        self.car = Car.objects.create(name="Mahindra XUV700", price_per_day=Decimal("2400.00"))

    def _booking(self, pickup_at: datetime = PICKUP, drop_at: datetime = DROP, **overrides) -> Booking:
        values = dict(
            user=self.user,
            car=self.car,
            pickup_at=pickup_at,
            drop_at=drop_at,
            grace_period_hours=Decimal("1"),
            booking_status="Confirmed",
            payment_status="Partially Paid",
            price_per_day=Decimal("2400.00"),
            total_amount=Decimal("2400.00"),
            final_amount=Decimal("2400.00"),
            advance_required=Decimal("600.00"),
            advance_paid=Decimal("600.00"),
            remaining_amount=Decimal("1800.00"),
        )
        values.update(overrides)
        return Booking.objects.create(**values)

    def test_sync_persists_active_stage(self) -> None:
        booking = self._booking()

        changes = sync_rental_stage(booking, PICKUP + timedelta(minutes=1))

        self.assertEqual(changes["rental_stage"], "Active")
        self.assertEqual(booking.rental_stage, "Active")
        booking.refresh_from_db()
        self.assertEqual(booking.rental_stage, "Active")
        self.assertEqual(booking.trip_status, "active")
        self.assertEqual(booking.hourly_late_rate, Decimal("150.00"))

    def test_sync_accrues_late_fee(self) -> None:
        booking = self._booking()

        sync_rental_stage(booking, DROP + timedelta(hours=1, minutes=130))

        booking.refresh_from_db()
        self.assertEqual(booking.rental_stage, "Overdue")
        self.assertEqual(booking.late_hours, 3)
        self.assertEqual(booking.late_fee, Decimal("450.00"))
        self.assertEqual(booking.remaining_amount, Decimal("2250.00"))

    def test_repeated_sync_is_a_no_op(self) -> None:
        booking = self._booking()
        now = DROP + timedelta(hours=3)
        sync_rental_stage(booking, now)

        self.assertEqual(sync_rental_stage(booking, now), {})
        self.assertEqual(sync_rental_stage(Booking.objects.get(pk=booking.pk), now), {})

    def test_dry_run_does_not_write(self) -> None:
        booking = self._booking()

        changes = sync_rental_stage(booking, PICKUP, persist=False)

        self.assertEqual(changes["rental_stage"], "Active")
        self.assertEqual(Booking.objects.get(pk=booking.pk).rental_stage, "Scheduled")

    def test_stale_copy_cannot_undo_completion(self) -> None:
        booking = self._booking()
        stale = Booking.objects.get(pk=booking.pk)
        Booking.objects.filter(pk=booking.pk).update(
            booking_status="Completed",
            rental_stage="Completed",
            trip_status="completed",
        )

        self.assertEqual(sync_rental_stage(stale, DROP + timedelta(hours=5)), {})

        booking.refresh_from_db()
        self.assertEqual(booking.rental_stage, "Completed")
        self.assertEqual(booking.late_hours, 0)

    def test_stale_copy_cannot_move_stage_backwards(self) -> None:
        booking = self._booking()
        stale = Booking.objects.get(pk=booking.pk)
        sync_rental_stage(booking, DROP + timedelta(hours=4))

        # The stale copy still says Scheduled; a sweep with an earlier clock must not win
        self.assertEqual(sync_rental_stage(stale, PICKUP + timedelta(minutes=5)), {})

        booking.refresh_from_db()
        self.assertEqual(booking.rental_stage, "Overdue")
        self.assertEqual(booking.late_hours, 3)

    def test_batch_sync_counts_changed_bookings(self) -> None:
        upcoming = self._booking(pickup_at=PICKUP + timedelta(days=7), drop_at=DROP + timedelta(days=7))
        started = self._booking()

        changed = sync_rental_stages([upcoming, started], PICKUP + timedelta(hours=2))

        self.assertEqual(changed, 1)

    def test_only_open_confirmed_bookings_are_due(self) -> None:
        open_booking = self._booking()
        self._booking(booking_status="Pending")
        self._booking(booking_status="Completed", rental_stage="Completed", trip_status="completed")
        self._booking(actual_return_at=DROP)

        self.assertEqual(list(bookings_due_for_stage_sync()), [open_booking])

    def test_sweep_task_moves_open_bookings(self) -> None:
        now = timezone.now()
        overdue = self._booking(pickup_at=now - timedelta(days=2), drop_at=now - timedelta(days=1))
        upcoming = self._booking(pickup_at=now + timedelta(days=1), drop_at=now + timedelta(days=2))
        closed = self._booking(
            pickup_at=now - timedelta(days=2),
            drop_at=now - timedelta(days=1),
            booking_status="Completed",
            rental_stage="Completed",
            trip_status="completed",
        )

        result = sync_rental_stages_task()

        self.assertEqual(result, {"checked": 2, "updated": 1})
        overdue.refresh_from_db()
        self.assertEqual(overdue.rental_stage, "Overdue")
        self.assertGreaterEqual(overdue.late_hours, 23)
        upcoming.refresh_from_db()
        self.assertEqual(upcoming.rental_stage, "Scheduled")
        closed.refresh_from_db()
        self.assertEqual(closed.late_hours, 0)

    def test_sweep_visits_every_due_booking_across_batches(self) -> None:
        now = timezone.now()
        bookings = [
            self._booking(pickup_at=now - timedelta(days=3, hours=offset), drop_at=now - timedelta(days=2))
            for offset in range(3)
        ]

        with mock.patch("apps.bookings.tasks.SYNC_BATCH_SIZE", 2):
            result = sync_rental_stages_task()

        self.assertEqual(result, {"checked": 3, "updated": 3})
        for booking in bookings:
            booking.refresh_from_db()
            self.assertEqual(booking.rental_stage, "Overdue")

    def test_sweep_task_is_registered_for_beat(self) -> None:
        from config.celery import app

        entry = app.conf.beat_schedule["sync-rental-stages"]
        self.assertEqual(entry["task"], sync_rental_stages_task.name)
        self.assertEqual(entry["schedule"], float(settings.RENTAL_STAGE_SYNC_INTERVAL_SECONDS))
        self.assertLess(entry["options"]["expires"], entry["schedule"])

    def test_settlement_document_number_is_kept(self) -> None:
        booking = self._booking(booking_status="Completed", rental_stage="Completed")

        first = generate_settlement_document(booking.pk)
        second = generate_settlement_document(booking.pk)

        self.assertTrue(first.startswith("INV-"))
        self.assertEqual(first, second)
        booking.refresh_from_db()
        self.assertEqual(booking.invoice_number, first)

    def test_receipt_is_sent_once_with_the_invoice_number(self) -> None:
        booking = self._booking(booking_status="Completed", rental_stage="Completed")

        invoice_number = generate_settlement_document(booking.pk)
        generate_settlement_document(booking.pk)

        self.assertEqual(len(mail.outbox), 1)
        self.assertIn(f"Invoice: {invoice_number}", mail.outbox[0].body)

    def test_settlement_document_for_unknown_booking(self) -> None:
        self.assertIsNone(generate_settlement_document(987654))
