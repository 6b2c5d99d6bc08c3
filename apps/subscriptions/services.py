"""
Subscription hour reservation.

Turns the hours of a rental into subscription coverage without letting
two concurrent confirmations overdraw one balance:

1. read the balance and compute coverage against it
2. take the covered hours with one conditional UPDATE
   (remaining >= covered, still active and paid)
3. if the UPDATE matched nothing, reload, recompute and try again,
   at most SUBSCRIPTION_RESERVATION_MAX_ATTEMPTS times

The reservation is undone with a compensating increment, not a
transaction rollback, because it is taken before the booking exists.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import Optional

from django.conf import settings  # type: ignore
from django.db import DatabaseError  # type: ignore
from django.utils import timezone  # type: ignore

from apps.bookings.domain.entities import RentalType
from shared.domain.base import ValueObject
from shared.domain.exceptions import ConflictError, ValidationError
from shared.domain.value_objects import ZERO, round_currency, to_amount

from .domain.coverage import SubscriptionCoverage, calculate_subscription_coverage
from .models import UserSubscription
from .repositories import DjangoSubscriptionRepository

logger = logging.getLogger(__name__)

DEFAULT_MAX_ATTEMPTS = 3
DEFAULT_USAGE_HISTORY_LIMIT = 300


@dataclass(frozen=True)
class SubscriptionReservation(ValueObject):
    """Hours taken from one subscription for one rental."""
    subscription_id: int
    user_id: int
    covered_hours: Decimal
    coverage_amount: Decimal
    extra_amount: Decimal
    rental_hours: Decimal
    used_at: datetime

    @property
    def is_empty(self) -> bool:
        return self.covered_hours <= 0


@dataclass(frozen=True)
class SubscriptionPricing(ValueObject):
    """Price fields a booking inherits from its subscription coverage."""
    rental_type: RentalType
    final_amount: Decimal
    subscription_base_amount: Decimal = ZERO
    user_subscription_id: Optional[int] = None
    subscription_hours_used: Decimal = ZERO
    subscription_coverage_amount: Decimal = ZERO
    subscription_extra_amount: Decimal = ZERO
    late_fee_discount_percentage: Decimal = ZERO
    damage_fee_discount_percentage: Decimal = ZERO

    def as_booking_fields(self) -> dict:
        return {
            'rental_type': self.rental_type.value,
            'final_amount': self.final_amount,
            'subscription_base_amount': self.subscription_base_amount,
            'user_subscription_id': self.user_subscription_id,
            'subscription_hours_used': self.subscription_hours_used,
            'subscription_coverage_amount': self.subscription_coverage_amount,
            'subscription_extra_amount': self.subscription_extra_amount,
            'subscription_late_fee_discount_percentage': self.late_fee_discount_percentage,
            'subscription_damage_fee_discount_percentage': self.damage_fee_discount_percentage,
        }


@dataclass(frozen=True)
class ReservationResult(ValueObject):
    pricing: SubscriptionPricing
    reservation: Optional[SubscriptionReservation] = None


def _max_attempts(value: Optional[int]) -> int:
    if value is None:
        value = getattr(settings, 'SUBSCRIPTION_RESERVATION_MAX_ATTEMPTS', DEFAULT_MAX_ATTEMPTS)
    return max(int(value), 1)


def _history_limit(value: Optional[int]) -> int:
    if value is None:
        value = getattr(settings, 'SUBSCRIPTION_USAGE_HISTORY_LIMIT', DEFAULT_USAGE_HISTORY_LIMIT)
    return max(int(value), 1)


def clamp_percent(value) -> Decimal:
    return min(max(to_amount(value), ZERO), Decimal('100'))


def one_time_pricing(final_amount) -> ReservationResult:
    amount = round_currency(to_amount(final_amount))
    return ReservationResult(
        pricing=SubscriptionPricing(
            rental_type=RentalType.ONE_TIME,
            final_amount=amount,
            subscription_extra_amount=amount,
        ),
    )


def subscription_pricing(
    subscription: UserSubscription,
    coverage: SubscriptionCoverage,
    base_amount: Decimal,
) -> SubscriptionPricing:
    plan = subscription.plan
    return SubscriptionPricing(
        rental_type=RentalType.SUBSCRIPTION,
        final_amount=coverage.extra_amount,
        subscription_base_amount=round_currency(base_amount),
        user_subscription_id=subscription.pk,
        subscription_hours_used=coverage.covered_hours,
        subscription_coverage_amount=coverage.coverage_amount,
        subscription_extra_amount=coverage.extra_amount,
        late_fee_discount_percentage=clamp_percent(plan.late_fee_discount_percentage),
        damage_fee_discount_percentage=clamp_percent(plan.damage_fee_discount_percentage),
    )


def get_active_subscription(
    user_id: int,
    now: Optional[datetime] = None,
    *,
    allow_auto_renew: bool = True,
    repository: Optional[DjangoSubscriptionRepository] = None,
) -> Optional[UserSubscription]:
    """
    Active, paid subscription valid at `now`

    Elapsed subscriptions are expired first. When nothing is active, the
    latest expired auto-renewing subscription is renewed for another
    period of its plan, provided the plan is still offered.
    """
    repository = repository or DjangoSubscriptionRepository()
    now = now or timezone.now()
    repository.expire_elapsed(now, user_id=user_id)

    subscription = repository.get_active(user_id, now)
    if subscription is not None or not allow_auto_renew:
        return subscription
    return renew_subscription(user_id, now, repository=repository)


def renew_subscription(
    user_id: int,
    now: datetime,
    *,
    repository: Optional[DjangoSubscriptionRepository] = None,
) -> Optional[UserSubscription]:
    repository = repository or DjangoSubscriptionRepository()

    source = repository.latest_auto_renew_candidate(user_id, now)
    if source is None:
        return None
    if not source.plan.is_active:
        logger.info(f"Subscription {source.pk} not renewed, plan {source.plan_id} is no longer offered")
        return None

    renewed = repository.create_renewal(source, now)
    if renewed is None:
        return repository.get_active(user_id, now)

    logger.info(f"Subscription {source.pk} auto-renewed as {renewed.pk} with {renewed.remaining_rental_hours}h")
    return renewed


def reserve_subscription_hours(
    *,
    user_id: int,
    base_amount,
    rental_hours,
    now: datetime,
    subscription_id: Optional[int] = None,
    repository: Optional[DjangoSubscriptionRepository] = None,
    max_attempts: Optional[int] = None,
) -> ReservationResult:
    """
    Reserve subscription hours for a rental

    Raises:
        ValidationError: the user has no usable subscription
        ConflictError: the balance kept changing under us; retry the
            whole confirmation
    """
    repository = repository or DjangoSubscriptionRepository()
    attempts = _max_attempts(max_attempts)
    base_amount = round_currency(to_amount(base_amount))

    repository.expire_elapsed(now, user_id=user_id)

    subscription = None
    if subscription_id:
        subscription = repository.reload_active(subscription_id, user_id, now)
    if subscription is None:
        subscription = repository.get_active(user_id, now)
    if subscription is None:
        raise ValidationError(
            "Active subscription is no longer available. Please create booking again.",
            user_id=user_id,
        )

    for attempt in range(1, attempts + 1):
        coverage = calculate_subscription_coverage(
            base_amount=base_amount,
            rental_hours=rental_hours,
            available_hours=subscription.remaining_rental_hours,
        )
        reservation = SubscriptionReservation(
            subscription_id=subscription.pk,
            user_id=user_id,
            covered_hours=coverage.covered_hours,
            coverage_amount=coverage.coverage_amount,
            extra_amount=coverage.extra_amount,
            rental_hours=coverage.rental_hours,
            used_at=now,
        )

        if coverage.is_empty:
            logger.info(f"Subscription {subscription.pk} has no hours to cover the rental")
            return ReservationResult(
                pricing=subscription_pricing(subscription, coverage, base_amount),
                reservation=reservation,
            )

        if repository.decrement_if_available(subscription.pk, user_id, coverage.covered_hours, now):
            logger.info(
                f"Reserved {coverage.covered_hours}h on subscription {subscription.pk} "
                f"(attempt {attempt}/{attempts})"
            )
            return ReservationResult(
                pricing=subscription_pricing(subscription, coverage, base_amount),
                reservation=reservation,
            )

        logger.warning(
            f"Lost reservation race on subscription {subscription.pk} "
            f"(attempt {attempt}/{attempts}), reloading balance"
        )
        refreshed = repository.reload_active(subscription.pk, user_id, now)
        if refreshed is None:
            raise ValidationError(
                "Active subscription is no longer available. Please create booking again.",
                subscription_id=subscription.pk,
            )
        subscription = refreshed

    raise ConflictError(
        "Failed to reserve subscription hours. Please try again.",
        subscription_id=subscription.pk,
        attempts=attempts,
    )


def rollback_subscription_reservation(
    reservation: Optional[SubscriptionReservation],
    *,
    repository: Optional[DjangoSubscriptionRepository] = None,
) -> bool:
    """
    Give reserved hours back

    Compensating action for a booking that failed to persist. Storage
    errors are logged rather than raised so they never mask the failure
    that triggered the rollback.
    """
    if reservation is None or reservation.is_empty:
        return False

    repository = repository or DjangoSubscriptionRepository()
    try:
        restored = repository.increment_hours(
            reservation.subscription_id,
            reservation.user_id,
            reservation.covered_hours,
        )
    except DatabaseError as e:
        logger.error(
            f"Failed to roll back {reservation.covered_hours}h on subscription "
            f"{reservation.subscription_id}: {e}",
            exc_info=True,
        )
        return False

    logger.info(f"Rolled back {reservation.covered_hours}h on subscription {reservation.subscription_id}")
    return bool(restored)


def append_usage_history(
    reservation: Optional[SubscriptionReservation],
    booking_id: Optional[int],
    *,
    repository: Optional[DjangoSubscriptionRepository] = None,
    limit: Optional[int] = None,
):
    """Record a reservation in the subscription's most-recent-N history."""
    if reservation is None:
        return None

    repository = repository or DjangoSubscriptionRepository()
    return repository.append_usage(
        reservation.subscription_id,
        booking_id=booking_id,
        hours_used=max(reservation.covered_hours, ZERO),
        amount_covered=round_currency(reservation.coverage_amount),
        amount_charged=round_currency(reservation.extra_amount),
        used_at=reservation.used_at,
        limit=_history_limit(limit),
    )
