"""Admin registration for the fleet."""

from __future__ import annotations

from django.contrib import admin

from .models import Car, Driver


@admin.register(Car)
class CarAdmin(admin.ModelAdmin):
    list_display = (
        "name",
        "registration_number",
        "fleet_status",
        "price_per_day",
        "total_trips_completed",
        "current_mileage",
    )
    list_filter = ("fleet_status",)
    search_fields = ("name", "registration_number")
    readonly_fields = ("total_trips_completed", "created_at", "updated_at")


@admin.register(Driver)
class DriverAdmin(admin.ModelAdmin):
    list_display = ("name", "phone", "is_available", "completed_trips")
    list_filter = ("is_available",)
    search_fields = ("name", "phone")
    readonly_fields = ("completed_trips", "created_at", "updated_at")
