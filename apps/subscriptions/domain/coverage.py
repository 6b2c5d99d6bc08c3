"""
Subscription Coverage

Pure split of a rental's base price into the part paid by subscription
hours and the part charged to the customer.
"""

from dataclasses import dataclass
from decimal import Decimal

from shared.domain.base import ValueObject
from shared.domain.value_objects import ZERO, round_currency, round_to, to_amount

HOURS_PLACES = 2
RATIO_PLACES = 6


@dataclass(frozen=True)
class SubscriptionCoverage(ValueObject):
    rental_hours: Decimal
    available_hours: Decimal
    covered_hours: Decimal
    extra_hours: Decimal
    coverage_ratio: Decimal
    coverage_amount: Decimal
    extra_amount: Decimal

    @property
    def is_empty(self) -> bool:
        return self.covered_hours <= 0


def calculate_subscription_coverage(base_amount, rental_hours, available_hours) -> SubscriptionCoverage:
    """
    Split base_amount by the share of rental_hours the subscription covers.

    Example: 2 of 5 hours available on a 1000 base gives 400 covered,
    600 charged and a 0.4 ratio. A rental with no price or no duration
    consumes no hours at all.
    """
    base = round_currency(to_amount(base_amount))
    requested = to_amount(rental_hours)
    available = to_amount(available_hours)

    if base <= 0 or requested <= 0:
        return SubscriptionCoverage(
            rental_hours=round_to(requested, HOURS_PLACES),
            available_hours=round_to(available, HOURS_PLACES),
            covered_hours=ZERO,
            extra_hours=round_to(requested, HOURS_PLACES),
            coverage_ratio=round_to(ZERO, RATIO_PLACES),
            coverage_amount=ZERO,
            extra_amount=base,
        )

    covered = min(available, requested)
    extra = max(requested - covered, ZERO)
    ratio = covered / requested
    coverage_amount = round_currency(base * ratio)

    return SubscriptionCoverage(
        rental_hours=round_to(requested, HOURS_PLACES),
        available_hours=round_to(available, HOURS_PLACES),
        covered_hours=round_to(covered, HOURS_PLACES),
        extra_hours=round_to(extra, HOURS_PLACES),
        coverage_ratio=round_to(ratio, RATIO_PLACES),
        coverage_amount=coverage_amount,
        extra_amount=round_currency(max(base - coverage_amount, ZERO)),
    )
