"""
Common Value Objects

Numeric helpers used across the rental domains:
- Money helpers: currency rounding and tolerant amount parsing
- ONE_HOUR, the unit late fees are charged in
"""

from datetime import timedelta
from decimal import Decimal, InvalidOperation, ROUND_HALF_UP

ZERO = Decimal('0.00')
CENT = Decimal('0.01')
ONE_HOUR = timedelta(hours=1)


def to_decimal(value, fallback: Decimal = ZERO) -> Decimal:
    """Parse a number into Decimal, returning fallback for junk input."""
    if value is None or isinstance(value, bool):
        return fallback
    if isinstance(value, Decimal):
        result = value
    else:
        try:
            result = Decimal(str(value))
        except (InvalidOperation, ValueError):
            return fallback
    if not result.is_finite():
        return fallback
    return result


def to_amount(value, fallback: Decimal = ZERO) -> Decimal:
    """Non-negative amount; negative or unparsable values become fallback."""
    amount = to_decimal(value, fallback)
    if amount < 0:
        return fallback
    return amount


def round_currency(value) -> Decimal:
    """Round to cents, half up, the way invoices are printed."""
    return to_decimal(value).quantize(CENT, rounding=ROUND_HALF_UP)


def round_to(value, places: int) -> Decimal:
    return to_decimal(value).quantize(Decimal(1).scaleb(-places), rounding=ROUND_HALF_UP)

