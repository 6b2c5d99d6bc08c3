"""Admin registration for bookings."""

from __future__ import annotations

from django.contrib import admin

from .models import Booking, RentalRequest, ReturnInspection


class ReturnInspectionInline(admin.StackedInline):
    model = ReturnInspection
    extra = 0
    readonly_fields = ("created_at", "updated_at")


@admin.register(Booking)
class BookingAdmin(admin.ModelAdmin):
    list_display = (
        "booking_code",
        "car",
        "user",
        "booking_status",
        "rental_stage",
        "payment_status",
        "pickup_at",
        "drop_at",
        "remaining_amount",
        "created_at",
    )
    list_filter = ("booking_status", "rental_stage", "payment_status", "refund_status", "rental_type")
    search_fields = ("booking_code", "car__name", "user__email", "invoice_number")
    # Money and lifecycle fields are written by the command handlers only
    readonly_fields = (
        "booking_code",
        "created_at",
        "updated_at",
        "rental_stage",
        "trip_status",
        "hourly_late_rate",
        "late_hours",
        "late_fee",
        "remaining_amount",
        "full_payment_amount",
        "full_payment_method",
        "full_payment_received_at",
        "refund_status",
        "refund_amount",
        "refund_processed_at",
        "subscription_hours_used",
        "subscription_coverage_amount",
        "subscription_extra_amount",
        "invoice_number",
        "invoice_generated_at",
    )
    inlines = [ReturnInspectionInline]


@admin.register(RentalRequest)
class RentalRequestAdmin(admin.ModelAdmin):
    list_display = ("id", "car", "user", "rental_type", "pickup_at", "drop_at", "final_amount", "status")
    list_filter = ("status", "rental_type")
    search_fields = ("car__name", "user__email")
