"""
Refund Calculator

Pure refund rules for bookings that already reached a terminal status
(cancelled or completed).

Paths:
- Full refund: a cancellation recorded before the scheduled pickup is
  entitled to the advance back (capped by the refundable ceiling). The
  amount is fixed; a different caller-supplied amount is rejected.
- Partial refund: staff supply an amount, 0 < amount <= ceiling.

The refund is drained from the full-payment bucket first and only then
from the advance; the resulting payment status depends on that order.
"""

from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal

from shared.domain.base import ValueObject
from shared.domain.exceptions import ConflictError, ValidationError
from shared.domain.value_objects import ZERO, round_currency, to_amount, to_decimal

from .entities import (
    BookingSnapshot,
    BookingStatus,
    PaymentStatus,
    RefundStatus,
    RefundType,
)

REFUNDABLE_BOOKING_STATUSES = (BookingStatus.CANCELLED, BookingStatus.COMPLETED)
REFUNDABLE_PAYMENT_STATUSES = (PaymentStatus.PARTIALLY_PAID, PaymentStatus.FULLY_PAID)
FULL_REFUND_TOLERANCE = Decimal('0.009')


def resolve_total_paid(snapshot: BookingSnapshot) -> Decimal:
    return round_currency(snapshot.resolved_advance_paid + to_amount(snapshot.full_payment_amount))


def is_cancelled_before_pickup(snapshot: BookingSnapshot) -> bool:
    if snapshot.booking_status != BookingStatus.CANCELLED:
        return False
    if snapshot.pickup_at is None or snapshot.cancelled_at is None:
        return False
    return snapshot.cancelled_at < snapshot.pickup_at


@dataclass(frozen=True)
class RefundEligibility(ValueObject):
    total_paid: Decimal
    max_refundable_amount: Decimal
    advance_paid: Decimal
    late_fee: Decimal
    damage_cost: Decimal


def validate_refund_eligibility(snapshot: BookingSnapshot | None) -> RefundEligibility:
    if snapshot is None:
        raise ValidationError("Booking not found")

    if snapshot.booking_status not in REFUNDABLE_BOOKING_STATUSES:
        raise ValidationError("Refund allowed only for cancelled or completed bookings")

    if snapshot.payment_status not in REFUNDABLE_PAYMENT_STATUSES:
        raise ValidationError("Refund allowed only for partially paid or fully paid bookings")

    if snapshot.refund_status == RefundStatus.PROCESSED:
        raise ConflictError("Refund is already processed for this booking")

    total_paid = resolve_total_paid(snapshot)
    if total_paid <= 0:
        raise ValidationError("No paid amount available for refund")

    advance_paid = snapshot.resolved_advance_paid
    late_fee = to_amount(snapshot.late_fee)
    late_hours = max(int(snapshot.late_hours or 0), 0)
    damage_cost = snapshot.damage_cost
    max_refundable = round_currency(max(total_paid - damage_cost, ZERO))

    if max_refundable <= 0:
        raise ValidationError("No refund allowed after damage charges adjustment")

    if late_hours > 0 and late_fee > advance_paid:
        raise ValidationError("No refund allowed because overdue penalty exceeds advance paid")

    return RefundEligibility(
        total_paid=total_paid,
        max_refundable_amount=max_refundable,
        advance_paid=advance_paid,
        late_fee=late_fee,
        damage_cost=damage_cost,
    )


@dataclass(frozen=True)
class RefundQuote(ValueObject):
    refund_amount: Decimal
    refund_type: RefundType
    total_paid: Decimal
    full_refund_eligible: bool


def calculate_refund_amount(
    snapshot: BookingSnapshot,
    refund_amount=None,
    refund_type=None,
) -> RefundQuote:
    eligibility = validate_refund_eligibility(snapshot)

    requested = to_decimal(refund_amount, ZERO)
    has_requested = requested > 0
    requested_type = RefundType.coerce(str(refund_type or '').strip().capitalize())
    full_refund_eligible = is_cancelled_before_pickup(snapshot)

    if full_refund_eligible:
        full_amount = round_currency(min(eligibility.advance_paid, eligibility.max_refundable_amount))
        if full_amount <= 0:
            raise ValidationError("No advance amount available for full refund")

        if has_requested and round_currency(requested) != full_amount:
            raise ValidationError(
                f"This booking qualifies for fixed full refund of {full_amount}. "
                f"Partial/manual amount is not allowed.",
                full_refund_amount=full_amount,
            )

        return RefundQuote(
            refund_amount=full_amount,
            refund_type=RefundType.FULL,
            total_paid=eligibility.total_paid,
            full_refund_eligible=True,
        )

    if requested_type == RefundType.FULL:
        raise ValidationError("Full refund is allowed only when cancellation happens before pickup")

    if not has_requested:
        raise ValidationError("refundAmount is required for partial refund")

    amount = round_currency(requested)
    if amount <= 0:
        raise ValidationError("refundAmount must be greater than 0")

    if amount > eligibility.max_refundable_amount:
        raise ValidationError(
            f"refundAmount cannot exceed refundable amount ({eligibility.max_refundable_amount})",
            max_refundable_amount=eligibility.max_refundable_amount,
        )

    return RefundQuote(
        refund_amount=amount,
        refund_type=RefundType.PARTIAL,
        total_paid=eligibility.total_paid,
        full_refund_eligible=False,
    )


@dataclass(frozen=True)
class RefundOutcome(ValueObject):
    refund_amount: Decimal
    refund_type: RefundType
    total_paid_before_refund: Decimal
    total_paid_after_refund: Decimal
    remaining_amount: Decimal
    refund_reason: str
    changes: dict = field(default_factory=dict, compare=False)


def apply_refund(
    snapshot: BookingSnapshot,
    *,
    refund_amount=None,
    refund_type=None,
    refund_reason: str = '',
    now: datetime,
) -> RefundOutcome:
    """Compute the refund and the booking fields it rewrites."""
    reason = str(refund_reason or '').strip()
    quote = calculate_refund_amount(snapshot, refund_amount=refund_amount, refund_type=refund_type)

    remaining_refund = quote.refund_amount

    current_full_payment = to_amount(snapshot.full_payment_amount)
    from_full_payment = min(current_full_payment, remaining_refund)
    next_full_payment = round_currency(current_full_payment - from_full_payment)
    remaining_refund = round_currency(remaining_refund - from_full_payment)

    current_advance = snapshot.resolved_advance_paid
    from_advance = min(current_advance, remaining_refund)
    next_advance = round_currency(current_advance - from_advance)

    if quote.refund_amount >= quote.total_paid - FULL_REFUND_TOLERANCE:
        payment_status = PaymentStatus.REFUNDED
    elif snapshot.booking_status == BookingStatus.CANCELLED:
        payment_status = PaymentStatus.PARTIALLY_PAID
    else:
        payment_status = PaymentStatus.FULLY_PAID

    changes = {
        'full_payment_amount': max(next_full_payment, ZERO),
        'advance_paid': max(next_advance, ZERO),
        'refund_amount': quote.refund_amount,
        'refund_status': RefundStatus.PROCESSED.value,
        'refund_reason': reason,
        'refund_processed_at': now,
        'remaining_amount': ZERO,
        'payment_status': payment_status.value,
    }

    return RefundOutcome(
        refund_amount=quote.refund_amount,
        refund_type=quote.refund_type,
        total_paid_before_refund=quote.total_paid,
        total_paid_after_refund=round_currency(changes['full_payment_amount'] + changes['advance_paid']),
        remaining_amount=ZERO,
        refund_reason=reason,
        changes=changes,
    )


def reject_refund(snapshot: BookingSnapshot | None, reason: str = '') -> dict:
    """Fields written when staff turn a refund request down."""
    if snapshot is None:
        raise ValidationError("Booking not found")

    if snapshot.refund_status == RefundStatus.PROCESSED:
        raise ConflictError("Cannot reject a processed refund")

    return {
        'refund_status': RefundStatus.REJECTED.value,
        'refund_reason': str(reason or '').strip(),
        'refund_processed_at': None,
    }

