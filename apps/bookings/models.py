"""Booking models for the car rental lifecycle."""

from __future__ import annotations

import secrets
from decimal import Decimal

from django.conf import settings  # type: ignore
from django.db import models  # type: ignore
from django.utils.translation import gettext_lazy as _  # type: ignore

from .domain.entities import (
    BookingStatus,
    PaymentMethod,
    PaymentStatus,
    RefundStatus,
    RentalStage,
    RentalType,
    TripStatus,
)

ZERO = Decimal("0.00")


def default_grace_period_hours() -> Decimal:
    return Decimal(str(getattr(settings, "RENTAL_DEFAULT_GRACE_PERIOD_HOURS", 1)))


def money_field(**kwargs) -> models.DecimalField:
    kwargs.setdefault("default", ZERO)
    return models.DecimalField(max_digits=12, decimal_places=2, **kwargs)


class RentalRequest(models.Model):
    """Rental asked for by a customer and waiting for the advance payment."""

    class Status(models.TextChoices):
        PENDING = "pending", _("Pending")
        CONVERTED = "converted", _("Converted to booking")
        REJECTED = "rejected", _("Rejected")

    user = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.CASCADE,
        related_name="rental_requests",
    )
    car = models.ForeignKey(
        "fleet.Car",
        on_delete=models.PROTECT,
        related_name="rental_requests",
    )
    driver = models.ForeignKey(
        "fleet.Driver",
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="rental_requests",
    )
    user_subscription = models.ForeignKey(
        "subscriptions.UserSubscription",
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="rental_requests",
    )
    rental_type = models.CharField(
        max_length=20,
        choices=RentalType.choices(),
        default=RentalType.ONE_TIME.value,
    )
    pickup_at = models.DateTimeField()
    drop_at = models.DateTimeField()
    grace_period_hours = models.DecimalField(
        max_digits=5,
        decimal_places=2,
        default=default_grace_period_hours,
    )
    price_per_day = money_field()
    total_amount = money_field()
    final_amount = money_field()
    subscription_base_amount = money_field()
    status = models.CharField(
        max_length=20,
        choices=Status.choices,
        default=Status.PENDING,
    )
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        verbose_name = _("Rental request")
        verbose_name_plural = _("Rental requests")
        ordering = ["-created_at"]
        constraints = [
            models.CheckConstraint(
                condition=models.Q(drop_at__gt=models.F("pickup_at")),
                name="rental_request_valid_dates",
            ),
        ]

    def __str__(self) -> str:
        return f"Request #{self.pk} for {self.car_id}"


class Booking(models.Model):
    """Confirmed car rental and everything owed on it."""

    booking_code = models.CharField(max_length=12, unique=True, editable=False)
    request = models.OneToOneField(
        RentalRequest,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="booking",
    )
    user = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.CASCADE,
        related_name="bookings",
    )
    car = models.ForeignKey(
        "fleet.Car",
        on_delete=models.PROTECT,
        null=True,
        blank=True,
        related_name="bookings",
    )
    driver = models.ForeignKey(
        "fleet.Driver",
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="bookings",
    )
    user_subscription = models.ForeignKey(
        "subscriptions.UserSubscription",
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="bookings",
    )
    rental_type = models.CharField(
        max_length=20,
        choices=RentalType.choices(),
        default=RentalType.ONE_TIME.value,
    )

    # Schedule
    pickup_at = models.DateTimeField()
    drop_at = models.DateTimeField()
    actual_pickup_at = models.DateTimeField(null=True, blank=True)
    actual_return_at = models.DateTimeField(null=True, blank=True)
    grace_period_hours = models.DecimalField(
        max_digits=5,
        decimal_places=2,
        default=default_grace_period_hours,
        help_text=_("Hours after the drop time before the rental counts as overdue."),
    )

    # Lifecycle
    rental_stage = models.CharField(
        max_length=20,
        choices=RentalStage.choices(),
        default=RentalStage.SCHEDULED.value,
    )
    trip_status = models.CharField(
        max_length=20,
        choices=TripStatus.choices(),
        default=TripStatus.UPCOMING.value,
    )
    booking_status = models.CharField(
        max_length=20,
        choices=BookingStatus.choices(),
        default=BookingStatus.PENDING.value,
    )
    payment_status = models.CharField(
        max_length=20,
        choices=PaymentStatus.choices(),
        default=PaymentStatus.PENDING.value,
    )
    cancelled_at = models.DateTimeField(null=True, blank=True)

    # Pricing
    price_per_day = money_field(help_text=_("Daily rate fixed when the booking was made."))
    total_amount = money_field()
    final_amount = money_field()
    advance_required = money_field()
    advance_paid = money_field()
    advance_payment_method = models.CharField(
        max_length=20,
        choices=PaymentMethod.choices(),
        default=PaymentMethod.NONE.value,
    )
    remaining_amount = money_field()
    full_payment_amount = money_field()
    full_payment_method = models.CharField(
        max_length=20,
        choices=PaymentMethod.choices(),
        default=PaymentMethod.NONE.value,
    )
    full_payment_received_at = models.DateTimeField(null=True, blank=True)

    # Late return
    hourly_late_rate = money_field()
    late_hours = models.PositiveIntegerField(default=0)
    late_fee = money_field()

    # Subscription coverage
    subscription_base_amount = money_field()
    subscription_hours_used = models.DecimalField(max_digits=8, decimal_places=2, default=ZERO)
    subscription_coverage_amount = money_field()
    subscription_extra_amount = money_field()
    subscription_late_fee_discount_percentage = models.DecimalField(
        max_digits=5,
        decimal_places=2,
        default=ZERO,
    )
    subscription_damage_fee_discount_percentage = models.DecimalField(
        max_digits=5,
        decimal_places=2,
        default=ZERO,
    )

    # Refund
    refund_status = models.CharField(
        max_length=20,
        choices=RefundStatus.choices(),
        default=RefundStatus.NONE.value,
    )
    refund_amount = money_field()
    refund_reason = models.CharField(max_length=500, blank=True)
    refund_processed_at = models.DateTimeField(null=True, blank=True)

    # Settlement document
    invoice_number = models.CharField(max_length=32, blank=True)
    invoice_generated_at = models.DateTimeField(null=True, blank=True)

    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        verbose_name = _("Booking")
        verbose_name_plural = _("Bookings")
        ordering = ["-created_at"]
        constraints = [
            models.CheckConstraint(
                condition=models.Q(drop_at__gt=models.F("pickup_at")),
                name="booking_valid_dates",
            ),
        ]
        indexes = [
            models.Index(fields=["booking_status", "rental_stage"]),
            models.Index(fields=["car", "pickup_at", "drop_at"]),
            models.Index(fields=["booking_code"]),
        ]

    def __str__(self) -> str:
        return f"Booking #{self.booking_code} for car {self.car_id}"

    def save(self, *args, **kwargs):  # type: ignore
        if self._state.adding and not self.booking_code:
            self.booking_code = self.generate_booking_code()
        super().save(*args, **kwargs)

    @staticmethod
    def generate_booking_code() -> str:
        return secrets.token_hex(4).upper()

    @property
    def inspection(self) -> "ReturnInspection | None":
        try:
            return self.return_inspection
        except ReturnInspection.DoesNotExist:
            return None

    @property
    def return_mileage(self) -> int | None:
        inspection = self.inspection
        if inspection is None:
            return None
        return inspection.current_mileage


class ReturnInspection(models.Model):
    """Condition of the car as recorded by staff at return."""

    booking = models.OneToOneField(
        Booking,
        on_delete=models.CASCADE,
        related_name="return_inspection",
    )
    damage_detected = models.BooleanField(default=False)
    damage_cost = money_field()
    current_mileage = models.PositiveIntegerField(null=True, blank=True)
    notes = models.TextField(blank=True)
    is_locked = models.BooleanField(
        default=False,
        help_text=_("Locked inspections can no longer be edited and allow settlement."),
    )
    inspected_at = models.DateTimeField(null=True, blank=True)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        verbose_name = _("Return inspection")
        verbose_name_plural = _("Return inspections")

    def __str__(self) -> str:
        return f"Inspection for booking {self.booking_id}"
