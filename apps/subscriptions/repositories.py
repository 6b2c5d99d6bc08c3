"""
Subscription Repository

Storage access for user subscriptions. The hours balance is only
changed through single UPDATE statements whose WHERE clause re-checks
every condition the caller relied on, so no row lock is ever held.
"""

from datetime import datetime, timedelta
from decimal import Decimal
from typing import Optional
import logging

from django.db import IntegrityError, transaction
from django.db.models import DecimalField, F, Q, Value
from django.db.models.functions import Greatest

from .models import SubscriptionUsage, UserSubscription

logger = logging.getLogger(__name__)

HOURS_FIELD = DecimalField(max_digits=8, decimal_places=2)


def active_subscription_filter(user_id: int, now: datetime) -> Q:
    """Active, paid and valid at `now` (start <= now < end)."""
    return Q(
        user_id=user_id,
        status=UserSubscription.Status.ACTIVE,
        payment_status=UserSubscription.PaymentStatus.PAID,
        start_date__lte=now,
        end_date__gt=now,
    )


class DjangoSubscriptionRepository:
    """Subscription accessor backed by the Django ORM."""

    def get_active(self, user_id: int, now: datetime) -> Optional[UserSubscription]:
        """The user's active subscription; the one ending last wins."""
        return (
            UserSubscription.objects.select_related("plan")
            .filter(active_subscription_filter(user_id, now))
            .order_by("-end_date", "-created_at")
            .first()
        )

    def reload_active(self, subscription_id: int, user_id: int, now: datetime) -> Optional[UserSubscription]:
        """Fresh copy of one subscription, or None if it stopped being active."""
        return (
            UserSubscription.objects.select_related("plan")
            .filter(active_subscription_filter(user_id, now), pk=subscription_id)
            .first()
        )

    def decrement_if_available(
        self,
        subscription_id: int,
        user_id: int,
        hours: Decimal,
        now: datetime,
    ) -> bool:
        """
        Atomically take `hours` from the balance

        Matches nothing (and returns False) when another writer got there
        first and the balance is now below `hours`, or when the
        subscription is no longer active.
        """
        updated = UserSubscription.objects.filter(
            active_subscription_filter(user_id, now),
            pk=subscription_id,
            remaining_rental_hours__gte=hours,
        ).update(
            remaining_rental_hours=F("remaining_rental_hours") - hours,
            total_used_hours=F("total_used_hours") + hours,
        )
        return updated == 1

    def increment_hours(self, subscription_id: int, user_id: int, hours: Decimal) -> int:
        """Give `hours` back; neither counter ever drops below zero."""
        zero = Value(Decimal("0.00"), output_field=HOURS_FIELD)
        return UserSubscription.objects.filter(pk=subscription_id, user_id=user_id).update(
            remaining_rental_hours=Greatest(
                F("remaining_rental_hours") + hours,
                zero,
                output_field=HOURS_FIELD,
            ),
            total_used_hours=Greatest(
                F("total_used_hours") - hours,
                zero,
                output_field=HOURS_FIELD,
            ),
        )

    def append_usage(
        self,
        subscription_id: int,
        *,
        booking_id: Optional[int],
        hours_used: Decimal,
        amount_covered: Decimal,
        amount_charged: Decimal,
        used_at: datetime,
        limit: int,
    ) -> SubscriptionUsage:
        """Insert one usage entry and drop everything beyond the newest `limit`."""
        entry = SubscriptionUsage.objects.create(
            subscription_id=subscription_id,
            booking_id=booking_id,
            hours_used=hours_used,
            amount_covered=amount_covered,
            amount_charged=amount_charged,
            used_at=used_at,
        )

        stale_ids = list(
            SubscriptionUsage.objects.filter(subscription_id=subscription_id)
            .order_by("-used_at", "-id")
            .values_list("id", flat=True)[limit:]
        )
        if stale_ids:
            SubscriptionUsage.objects.filter(pk__in=stale_ids).delete()
            logger.debug(f"Trimmed {len(stale_ids)} usage entries of subscription {subscription_id}")

        return entry

    def expire_elapsed(self, now: datetime, user_id: Optional[int] = None) -> int:
        """Flip active subscriptions whose end date has passed to Expired."""
        queryset = UserSubscription.objects.filter(
            status=UserSubscription.Status.ACTIVE,
            end_date__lte=now,
        )
        if user_id is not None:
            queryset = queryset.filter(user_id=user_id)
        return queryset.update(status=UserSubscription.Status.EXPIRED)

    def latest_auto_renew_candidate(self, user_id: int, now: datetime) -> Optional[UserSubscription]:
        """The user's most recently ended paid subscription that asked to be renewed."""
        return (
            UserSubscription.objects.select_related("plan")
            .filter(
                user_id=user_id,
                status=UserSubscription.Status.EXPIRED,
                payment_status=UserSubscription.PaymentStatus.PAID,
                auto_renew=True,
                end_date__lte=now,
            )
            .order_by("-end_date", "-created_at")
            .first()
        )

    def create_renewal(self, source: UserSubscription, now: datetime) -> Optional[UserSubscription]:
        """
        Start a new period of the source's plan at `now`

        A subscription is renewed at most once; returns None when another
        writer already created its renewal.
        """
        plan = source.plan
        try:
            with transaction.atomic():
                return UserSubscription.objects.create(
                    user_id=source.user_id,
                    plan=plan,
                    start_date=now,
                    end_date=now + timedelta(days=plan.resolved_duration_days),
                    status=UserSubscription.Status.ACTIVE,
                    payment_status=UserSubscription.PaymentStatus.PAID,
                    remaining_rental_hours=max(plan.included_rental_hours, Decimal("0.00")),
                    total_used_hours=Decimal("0.00"),
                    auto_renew=True,
                    amount_paid=plan.price,
                    renewal_of=source,
                )
        except IntegrityError:
            logger.info(f"Subscription {source.pk} was already renewed")
            return None
