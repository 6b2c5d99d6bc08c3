"""Subscription plans, purchased subscriptions and their usage history."""

from __future__ import annotations

from decimal import Decimal

from django.conf import settings  # type: ignore
from django.db import models  # type: ignore
from django.db.models import Q  # type: ignore
from django.utils.translation import gettext_lazy as _  # type: ignore


class SubscriptionPlan(models.Model):
    """Plan a user can buy: a number of prepaid rental hours for a period."""

    class DurationType(models.TextChoices):
        MONTHLY = "Monthly", _("Monthly")
        QUARTERLY = "Quarterly", _("Quarterly")
        YEARLY = "Yearly", _("Yearly")

    DEFAULT_DURATION_DAYS = {
        DurationType.MONTHLY: 30,
        DurationType.QUARTERLY: 90,
        DurationType.YEARLY: 365,
    }

    plan_name = models.CharField(max_length=120)
    duration_type = models.CharField(
        max_length=20,
        choices=DurationType.choices,
        default=DurationType.MONTHLY,
    )
    duration_in_days = models.PositiveIntegerField(default=30)
    price = models.DecimalField(max_digits=12, decimal_places=2, default=Decimal("0.00"))
    included_rental_hours = models.DecimalField(
        max_digits=8,
        decimal_places=2,
        default=Decimal("0.00"),
    )
    late_fee_discount_percentage = models.DecimalField(
        max_digits=5,
        decimal_places=2,
        default=Decimal("0.00"),
    )
    damage_fee_discount_percentage = models.DecimalField(
        max_digits=5,
        decimal_places=2,
        default=Decimal("0.00"),
    )
    is_active = models.BooleanField(default=True)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        verbose_name = _("Subscription plan")
        verbose_name_plural = _("Subscription plans")
        ordering = ["price"]

    def __str__(self) -> str:
        return self.plan_name

    @property
    def resolved_duration_days(self) -> int:
        if self.duration_in_days and self.duration_in_days > 0:
            return self.duration_in_days
        return self.DEFAULT_DURATION_DAYS.get(self.duration_type, 30)


class UserSubscription(models.Model):
    """
    A plan bought by a user.

    Valid on [start_date, end_date). remaining_rental_hours is only ever
    changed through atomic conditional updates (see repositories.py) and
    can never go below zero.
    """

    class Status(models.TextChoices):
        ACTIVE = "Active", _("Active")
        EXPIRED = "Expired", _("Expired")
        CANCELLED = "Cancelled", _("Cancelled")

    class PaymentStatus(models.TextChoices):
        UNPAID = "Unpaid", _("Unpaid")
        PAID = "Paid", _("Paid")
        FAILED = "Failed", _("Failed")
        REFUNDED = "Refunded", _("Refunded")

    user = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.CASCADE,
        related_name="subscriptions",
    )
    plan = models.ForeignKey(
        SubscriptionPlan,
        on_delete=models.PROTECT,
        related_name="subscriptions",
    )
    start_date = models.DateTimeField()
    end_date = models.DateTimeField()
    status = models.CharField(
        max_length=20,
        choices=Status.choices,
        default=Status.ACTIVE,
    )
    payment_status = models.CharField(
        max_length=20,
        choices=PaymentStatus.choices,
        default=PaymentStatus.UNPAID,
    )
    remaining_rental_hours = models.DecimalField(
        max_digits=8,
        decimal_places=2,
        default=Decimal("0.00"),
    )
    total_used_hours = models.DecimalField(
        max_digits=8,
        decimal_places=2,
        default=Decimal("0.00"),
    )
    auto_renew = models.BooleanField(default=False)
    renewal_of = models.OneToOneField(
        "self",
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="renewal",
    )
    amount_paid = models.DecimalField(max_digits=12, decimal_places=2, default=Decimal("0.00"))
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        verbose_name = _("User subscription")
        verbose_name_plural = _("User subscriptions")
        ordering = ["-end_date", "-created_at"]
        constraints = [
            models.CheckConstraint(
                condition=Q(remaining_rental_hours__gte=0),
                name="subscription_remaining_hours_non_negative",
            ),
            models.CheckConstraint(
                condition=Q(end_date__gt=models.F("start_date")),
                name="subscription_valid_dates",
            ),
        ]
        indexes = [
            models.Index(fields=["user", "status", "payment_status"]),
        ]

    def __str__(self) -> str:
        return f"{self.plan} for {self.user_id} until {self.end_date:%Y-%m-%d}"


class SubscriptionUsage(models.Model):
    """One entry of a subscription's bounded usage history."""

    subscription = models.ForeignKey(
        UserSubscription,
        on_delete=models.CASCADE,
        related_name="usage_history",
    )
    booking = models.ForeignKey(
        "bookings.Booking",
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="subscription_usage",
    )
    hours_used = models.DecimalField(max_digits=8, decimal_places=2, default=Decimal("0.00"))
    amount_covered = models.DecimalField(max_digits=12, decimal_places=2, default=Decimal("0.00"))
    amount_charged = models.DecimalField(max_digits=12, decimal_places=2, default=Decimal("0.00"))
    used_at = models.DateTimeField()

    class Meta:
        verbose_name = _("Subscription usage")
        verbose_name_plural = _("Subscription usage")
        ordering = ["-used_at", "-id"]
        indexes = [models.Index(fields=["subscription", "-used_at"])]

    def __str__(self) -> str:
        return f"{self.hours_used}h on {self.subscription_id}"
