"""Fleet models: rentable cars and chauffeurs."""

from __future__ import annotations

from decimal import Decimal

from django.db import models  # type: ignore
from django.utils.translation import gettext_lazy as _  # type: ignore


class Car(models.Model):
    """Car available for rent."""

    class FleetStatus(models.TextChoices):
        AVAILABLE = "Available", _("Available")
        RESERVED = "Reserved", _("Reserved")
        RENTED = "Rented", _("Rented")
        MAINTENANCE = "Maintenance", _("Under maintenance")
        INACTIVE = "Inactive", _("Inactive")

    name = models.CharField(max_length=120)
    registration_number = models.CharField(max_length=20, blank=True)
    price_per_day = models.DecimalField(
        max_digits=10,
        decimal_places=2,
        default=Decimal("0.00"),
        help_text=_("Daily rate copied onto a booking when it is created."),
    )
    fleet_status = models.CharField(
        max_length=20,
        choices=FleetStatus.choices,
        default=FleetStatus.AVAILABLE,
    )
    total_trips_completed = models.PositiveIntegerField(default=0)
    current_mileage = models.PositiveIntegerField(null=True, blank=True)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        verbose_name = _("Car")
        verbose_name_plural = _("Cars")
        ordering = ["name"]
        indexes = [models.Index(fields=["fleet_status"])]

    def __str__(self) -> str:
        return self.name


class Driver(models.Model):
    """Chauffeur that can be attached to a booking."""

    name = models.CharField(max_length=120)
    phone = models.CharField(max_length=20, blank=True)
    is_available = models.BooleanField(default=True)
    completed_trips = models.PositiveIntegerField(default=0)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        verbose_name = _("Driver")
        verbose_name_plural = _("Drivers")
        ordering = ["name"]

    def __str__(self) -> str:
        return self.name
