"""
Booking Settlement

Pure rules for closing a confirmed booking once the car is back:
preconditions, payment method validation and the amount collected at
the counter. The transactional part lives in
apps.bookings.application.command_handlers.SettleBookingHandler.
"""

from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import Iterable

from shared.domain.base import ValueObject
from shared.domain.exceptions import ValidationError
from shared.domain.value_objects import ZERO, round_currency, to_amount

from .entities import (
    BookingSnapshot,
    BookingStatus,
    PaymentMethod,
    PaymentStatus,
    RentalStage,
    TripStatus,
)

SETTLEMENT_PAYMENT_METHODS = frozenset({
    PaymentMethod.CARD,
    PaymentMethod.UPI,
    PaymentMethod.NETBANKING,
    PaymentMethod.CASH,
})


def normalize_payment_method(
    value,
    allowed: Iterable[PaymentMethod] = SETTLEMENT_PAYMENT_METHODS,
    default: PaymentMethod = PaymentMethod.CASH,
) -> PaymentMethod:
    """
    Parse a payment method name

    Blank input means cash at the counter; anything outside `allowed`
    is rejected.
    """
    raw = str(value or default.value).strip().upper()
    method = PaymentMethod.coerce(raw)
    allowed = frozenset(allowed)
    if method is None or method not in allowed:
        names = ', '.join(sorted(m.value for m in allowed))
        raise ValidationError(f"paymentMethod must be one of: {names}", payment_method=raw)
    return method


def ensure_settlement_allowed(snapshot: BookingSnapshot | None) -> None:
    """Raise ValidationError unless the booking may be settled."""
    if snapshot is None:
        raise ValidationError("Booking not found")

    if (
        snapshot.trip_status == TripStatus.COMPLETED
        or snapshot.rental_stage == RentalStage.COMPLETED
        or snapshot.booking_status == BookingStatus.COMPLETED
    ):
        raise ValidationError("Booking is already completed")

    if snapshot.booking_status != BookingStatus.CONFIRMED:
        raise ValidationError(
            "Only confirmed bookings can be completed",
            booking_status=str(snapshot.booking_status),
        )

    if snapshot.inspection is None or not snapshot.inspection.is_settleable:
        raise ValidationError("Return inspection must be submitted before completion")


@dataclass(frozen=True)
class SettlementQuote(ValueObject):
    final_amount: Decimal
    advance_paid: Decimal
    late_fee: Decimal
    damage_cost: Decimal
    collected_amount: Decimal

    def changes(self, method: PaymentMethod, finalized_at: datetime) -> dict:
        """Model fields written when the booking is closed."""
        return {
            'rental_stage': RentalStage.COMPLETED.value,
            'trip_status': TripStatus.COMPLETED.value,
            'booking_status': BookingStatus.COMPLETED.value,
            'payment_status': PaymentStatus.FULLY_PAID.value,
            'remaining_amount': ZERO,
            'final_amount': self.final_amount,
            'full_payment_amount': self.collected_amount,
            'full_payment_method': method.value,
            'full_payment_received_at': finalized_at,
            'actual_return_at': finalized_at,
        }


def quote_settlement(snapshot: BookingSnapshot) -> SettlementQuote:
    """
    Amount due at settlement

    The snapshot must already carry the final late metrics. The stored
    remaining amount is honoured when it is higher than the fresh
    calculation, and the fresh calculation wins when the stored value is
    stale, so the customer is never undercharged.
    """
    final_amount = snapshot.resolved_final_amount
    advance_paid = snapshot.resolved_advance_paid
    late_fee = to_amount(snapshot.late_fee)
    damage_cost = snapshot.damage_cost

    calculated = max(final_amount - advance_paid, ZERO) + late_fee + damage_cost
    existing = to_amount(snapshot.remaining_amount, calculated)

    return SettlementQuote(
        final_amount=final_amount,
        advance_paid=advance_paid,
        late_fee=late_fee,
        damage_cost=damage_cost,
        collected_amount=round_currency(max(existing, calculated)),
    )
