"""Subscription hour reservation against concurrent writers."""

from __future__ import annotations

from dataclasses import replace
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from unittest import mock

from django.contrib.auth import get_user_model
from django.db import DatabaseError
from django.test import TestCase

from apps.subscriptions.models import SubscriptionPlan, SubscriptionUsage, UserSubscription
from apps.subscriptions.repositories import DjangoSubscriptionRepository
from apps.subscriptions.services import (
    append_usage_history,
    get_active_subscription,
    reserve_subscription_hours,
    rollback_subscription_reservation,
)
from shared.domain.exceptions import ConflictError, ValidationError

NOW = datetime(2025, 8, 15, 9, 30, tzinfo=timezone.utc)


class StaleReadRepository(DjangoSubscriptionRepository):
    """First read returns a snapshot taken before other reservations landed."""

    def __init__(self, stale: UserSubscription):
        self.stale = stale
        self.decrements = 0

    def get_active(self, user_id, now):
        return self.stale

    def reload_active(self, subscription_id, user_id, now):
        if self.decrements == 0:
            return self.stale
        return super().reload_active(subscription_id, user_id, now)

    def decrement_if_available(self, subscription_id, user_id, hours, now):
        self.decrements += 1
        return super().decrement_if_available(subscription_id, user_id, hours, now)


class AlwaysStaleRepository(StaleReadRepository):
    """Every reload still shows the old balance, so the update never matches."""

    def reload_active(self, subscription_id, user_id, now):
        return self.stale


class VanishingRepository(StaleReadRepository):
    def reload_active(self, subscription_id, user_id, now):
        if self.decrements == 0:
            return self.stale
        return None


class SubscriptionReservationTests(TestCase):
    def setUp(self) -> None:
        self.user = get_user_model().objects.create_user(username="meera", password="MeeraPass123")
        self.plan = SubscriptionPlan.objects.create(
            plan_name="Weekend Pack",
            included_rental_hours=Decimal("5.00"),
            late_fee_discount_percentage=Decimal("150.00"),
        )
        self.subscription = self._subscription(remaining="5.00")

    def _subscription(self, remaining: str, **overrides) -> UserSubscription:
        values = dict(
            user=self.user,
            plan=self.plan,
            start_date=NOW - timedelta(days=3),
            end_date=NOW + timedelta(days=27),
            status=UserSubscription.Status.ACTIVE,
            payment_status=UserSubscription.PaymentStatus.PAID,
            remaining_rental_hours=Decimal(remaining),
        )
        values.update(overrides)
        return UserSubscription.objects.create(**values)

    def _reserve(self, hours: str, base: str = "1000.00", **kwargs):
        return reserve_subscription_hours(
            user_id=self.user.pk,
            base_amount=Decimal(base),
            rental_hours=Decimal(hours),
            now=NOW,
            **kwargs,
        )

    def _balance(self) -> tuple[Decimal, Decimal]:
        self.subscription.refresh_from_db()
        return self.subscription.remaining_rental_hours, self.subscription.total_used_hours

    def test_reservation_takes_hours(self) -> None:
        result = self._reserve("4")

        self.assertEqual(result.reservation.covered_hours, Decimal("4.00"))
        self.assertEqual(result.pricing.final_amount, Decimal("0.00"))
        self.assertEqual(result.pricing.subscription_coverage_amount, Decimal("1000.00"))
        self.assertEqual(result.pricing.user_subscription_id, self.subscription.pk)
        # Plan discounts are clamped to 0..100
        self.assertEqual(result.pricing.late_fee_discount_percentage, Decimal("100"))
        self.assertEqual(self._balance(), (Decimal("1.00"), Decimal("4.00")))

    def test_losing_writer_recomputes_against_fresh_balance(self) -> None:
        stale = UserSubscription.objects.select_related("plan").get(pk=self.subscription.pk)
        first = self._reserve("4")

        second = self._reserve("4", repository=StaleReadRepository(stale))

        # The stale read promised 4 hours, only 1 was left
        self.assertEqual(first.reservation.covered_hours + second.reservation.covered_hours, Decimal("5.00"))
        self.assertEqual(second.reservation.covered_hours, Decimal("1.00"))
        self.assertEqual(second.pricing.subscription_coverage_amount, Decimal("250.00"))
        self.assertEqual(second.pricing.final_amount, Decimal("750.00"))
        self.assertEqual(self._balance(), (Decimal("0.00"), Decimal("5.00")))

    def test_balance_is_never_overdrawn(self) -> None:
        covered = [self._reserve("1").reservation.covered_hours for _ in range(7)]

        self.assertEqual(sum(covered), Decimal("5.00"))
        self.assertEqual(covered.count(Decimal("1.00")), 5)
        self.assertEqual(self._balance(), (Decimal("0.00"), Decimal("5.00")))

    def test_exhausted_balance_returns_empty_reservation(self) -> None:
        UserSubscription.objects.filter(pk=self.subscription.pk).update(remaining_rental_hours=Decimal("0.00"))

        result = self._reserve("3")

        self.assertTrue(result.reservation.is_empty)
        self.assertEqual(result.pricing.final_amount, Decimal("1000.00"))
        self.assertEqual(result.pricing.subscription_hours_used, Decimal("0.00"))

    def test_retry_budget_is_bounded(self) -> None:
        stale = UserSubscription.objects.select_related("plan").get(pk=self.subscription.pk)
        UserSubscription.objects.filter(pk=self.subscription.pk).update(remaining_rental_hours=Decimal("0.50"))
        repository = AlwaysStaleRepository(stale)

        with self.assertRaises(ConflictError) as ctx:
            self._reserve("4", repository=repository)

        self.assertTrue(ctx.exception.retryable)
        self.assertEqual(repository.decrements, 3)
        self.assertEqual(self._balance(), (Decimal("0.50"), Decimal("0.00")))

    def test_retry_budget_can_be_overridden(self) -> None:
        stale = UserSubscription.objects.select_related("plan").get(pk=self.subscription.pk)
        UserSubscription.objects.filter(pk=self.subscription.pk).update(remaining_rental_hours=Decimal("0.50"))
        repository = AlwaysStaleRepository(stale)

        with self.assertRaises(ConflictError):
            self._reserve("4", repository=repository, max_attempts=5)

        self.assertEqual(repository.decrements, 5)

    def test_subscription_cancelled_mid_reservation(self) -> None:
        stale = UserSubscription.objects.select_related("plan").get(pk=self.subscription.pk)
        UserSubscription.objects.filter(pk=self.subscription.pk).update(status=UserSubscription.Status.CANCELLED)

        with self.assertRaises(ValidationError):
            self._reserve("2", repository=VanishingRepository(stale))

    def test_no_active_subscription(self) -> None:
        UserSubscription.objects.filter(pk=self.subscription.pk).update(
            payment_status=UserSubscription.PaymentStatus.UNPAID,
        )

        with self.assertRaises(ValidationError):
            self._reserve("2")

    def test_latest_ending_subscription_is_used(self) -> None:
        longer = self._subscription(remaining="8.00", end_date=NOW + timedelta(days=60))

        self.assertEqual(get_active_subscription(self.user.pk, NOW), longer)

    def test_elapsed_subscriptions_expire_on_lookup(self) -> None:
        UserSubscription.objects.filter(pk=self.subscription.pk).update(end_date=NOW)

        self.assertIsNone(get_active_subscription(self.user.pk, NOW))
        self.subscription.refresh_from_db()
        self.assertEqual(self.subscription.status, UserSubscription.Status.EXPIRED)

    def test_elapsed_auto_renew_subscription_is_renewed(self) -> None:
        UserSubscription.objects.filter(pk=self.subscription.pk).update(
            end_date=NOW - timedelta(hours=1),
            remaining_rental_hours=Decimal("0.50"),
            auto_renew=True,
        )

        renewed = get_active_subscription(self.user.pk, NOW)

        self.assertIsNotNone(renewed)
        self.assertNotEqual(renewed.pk, self.subscription.pk)
        self.assertEqual(renewed.renewal_of_id, self.subscription.pk)
        self.assertEqual(renewed.remaining_rental_hours, Decimal("5.00"))
        self.assertEqual(renewed.start_date, NOW)
        self.assertEqual(renewed.end_date, NOW + timedelta(days=30))
        self.assertEqual(renewed.status, UserSubscription.Status.ACTIVE)
        self.assertEqual(renewed.payment_status, UserSubscription.PaymentStatus.PAID)
        self.assertTrue(renewed.auto_renew)
        self.subscription.refresh_from_db()
        self.assertEqual(self.subscription.status, UserSubscription.Status.EXPIRED)

        # The renewal is now the active subscription; no second one is created
        self.assertEqual(get_active_subscription(self.user.pk, NOW + timedelta(days=1)), renewed)
        self.assertEqual(UserSubscription.objects.filter(user=self.user).count(), 2)

    def test_subscription_on_retired_plan_is_not_renewed(self) -> None:
        UserSubscription.objects.filter(pk=self.subscription.pk).update(end_date=NOW, auto_renew=True)
        SubscriptionPlan.objects.filter(pk=self.plan.pk).update(is_active=False)

        self.assertIsNone(get_active_subscription(self.user.pk, NOW))
        self.assertEqual(UserSubscription.objects.filter(user=self.user).count(), 1)

    def test_renewal_can_be_skipped(self) -> None:
        UserSubscription.objects.filter(pk=self.subscription.pk).update(end_date=NOW, auto_renew=True)

        self.assertIsNone(get_active_subscription(self.user.pk, NOW, allow_auto_renew=False))
        self.assertEqual(UserSubscription.objects.filter(user=self.user).count(), 1)

    def test_subscription_is_renewed_at_most_once(self) -> None:
        UserSubscription.objects.filter(pk=self.subscription.pk).update(end_date=NOW, auto_renew=True)
        self._subscription(
            remaining="5.00",
            status=UserSubscription.Status.CANCELLED,
            renewal_of=self.subscription,
        )

        self.assertIsNone(get_active_subscription(self.user.pk, NOW))
        self.assertEqual(UserSubscription.objects.filter(user=self.user).count(), 2)

    def test_rollback_restores_exact_counters(self) -> None:
        UserSubscription.objects.filter(pk=self.subscription.pk).update(
            remaining_rental_hours=Decimal("10.00"),
            total_used_hours=Decimal("2.00"),
        )
        result = self._reserve("3")
        self.assertEqual(self._balance(), (Decimal("7.00"), Decimal("5.00")))

        self.assertTrue(rollback_subscription_reservation(result.reservation))

        self.assertEqual(self._balance(), (Decimal("10.00"), Decimal("2.00")))

    def test_rollback_never_drives_used_hours_negative(self) -> None:
        result = self._reserve("3")
        UserSubscription.objects.filter(pk=self.subscription.pk).update(total_used_hours=Decimal("1.00"))

        rollback_subscription_reservation(result.reservation)

        self.assertEqual(self._balance(), (Decimal("5.00"), Decimal("0.00")))

    def test_rollback_of_nothing_is_a_no_op(self) -> None:
        self.assertFalse(rollback_subscription_reservation(None))

        UserSubscription.objects.filter(pk=self.subscription.pk).update(remaining_rental_hours=Decimal("0.00"))
        empty = self._reserve("2").reservation
        self.assertFalse(rollback_subscription_reservation(empty))

    def test_rollback_storage_error_is_logged_not_raised(self) -> None:
        result = self._reserve("2")
        repository = DjangoSubscriptionRepository()

        with mock.patch.object(repository, "increment_hours", side_effect=DatabaseError("connection lost")):
            with self.assertLogs("apps.subscriptions.services", level="ERROR"):
                restored = rollback_subscription_reservation(result.reservation, repository=repository)

        self.assertFalse(restored)

    def test_usage_history_keeps_most_recent_entries(self) -> None:
        for offset in range(5):
            reservation = self._reserve("0.5").reservation
            reservation = replace(reservation, used_at=NOW + timedelta(minutes=offset))
            append_usage_history(reservation, booking_id=None, limit=3)

        history = list(SubscriptionUsage.objects.filter(subscription=self.subscription))
        self.assertEqual(len(history), 3)
        self.assertEqual(
            [entry.used_at for entry in history],
            [NOW + timedelta(minutes=offset) for offset in (4, 3, 2)],
        )
        self.assertEqual(history[0].hours_used, Decimal("0.50"))
        self.assertEqual(history[0].amount_covered, Decimal("1000.00"))
