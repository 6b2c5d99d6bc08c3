"""
Rental Pricing Helpers

Advance-payment tiers and billable rental duration.
"""

from dataclasses import dataclass
from datetime import datetime, timedelta
from decimal import Decimal, ROUND_HALF_UP

from shared.domain.base import ValueObject
from shared.domain.value_objects import ZERO, to_amount

ONE_MINUTE = timedelta(minutes=1)
MINUTES_PER_HOUR = Decimal('60')

# (upper bound inclusive, advance rate); None means no upper bound
ADVANCE_RATE_TIERS = (
    (Decimal('2999.99'), Decimal('0.30')),
    (Decimal('10000'), Decimal('0.25')),
    (None, Decimal('0.20')),
)


def get_advance_rate(amount) -> Decimal:
    amount = to_amount(amount)
    if amount <= 0:
        return ADVANCE_RATE_TIERS[0][1]
    for upper_bound, rate in ADVANCE_RATE_TIERS:
        if upper_bound is None or amount <= upper_bound:
            return rate
    return ADVANCE_RATE_TIERS[-1][1]


@dataclass(frozen=True)
class AdvanceBreakdown(ValueObject):
    final_amount: Decimal
    advance_rate: Decimal
    advance_required: Decimal
    remaining_amount: Decimal


def calculate_advance_breakdown(final_amount) -> AdvanceBreakdown:
    """Advance is a whole-rupee share of the final amount."""
    final_amount = to_amount(final_amount)
    rate = get_advance_rate(final_amount)
    advance = max((final_amount * rate).quantize(Decimal('1'), rounding=ROUND_HALF_UP), ZERO)
    return AdvanceBreakdown(
        final_amount=final_amount,
        advance_rate=rate,
        advance_required=advance,
        remaining_amount=max(final_amount - advance, ZERO),
    )


def get_rental_duration_hours(pickup_at: datetime | None, drop_at: datetime | None) -> Decimal:
    """Rental length in hours; any started minute is billable."""
    if pickup_at is None or drop_at is None:
        return ZERO
    elapsed = drop_at - pickup_at
    if elapsed <= timedelta(0):
        return ZERO
    minutes = -((-elapsed) // ONE_MINUTE)
    return Decimal(minutes) / MINUTES_PER_HOUR
