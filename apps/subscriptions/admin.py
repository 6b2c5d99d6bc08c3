"""Admin registration for subscriptions."""

from __future__ import annotations

from django.contrib import admin

from .models import SubscriptionPlan, SubscriptionUsage, UserSubscription


@admin.register(SubscriptionPlan)
class SubscriptionPlanAdmin(admin.ModelAdmin):
    list_display = (
        "plan_name",
        "duration_type",
        "duration_in_days",
        "price",
        "included_rental_hours",
        "is_active",
    )
    list_filter = ("duration_type", "is_active")
    search_fields = ("plan_name",)


class SubscriptionUsageInline(admin.TabularInline):
    model = SubscriptionUsage
    extra = 0
    can_delete = False
    readonly_fields = ("booking", "hours_used", "amount_covered", "amount_charged", "used_at")


@admin.register(UserSubscription)
class UserSubscriptionAdmin(admin.ModelAdmin):
    list_display = (
        "user",
        "plan",
        "status",
        "payment_status",
        "start_date",
        "end_date",
        "remaining_rental_hours",
        "total_used_hours",
    )
    list_filter = ("status", "payment_status", "auto_renew")
    search_fields = ("user__email", "user__username", "plan__plan_name")
    # Hours are only moved by the reservation service
    readonly_fields = ("remaining_rental_hours", "total_used_hours", "created_at", "updated_at")
    inlines = [SubscriptionUsageInline]

    def get_readonly_fields(self, request, obj=None):
        if obj is None:
            return ("created_at", "updated_at")
        return self.readonly_fields
