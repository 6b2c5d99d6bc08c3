"""
Booking Repository

Reads bookings and writes only the fields a use case changed, as one
UPDATE whose WHERE clause carries the caller's expectations about the
current row. The number of rows matched tells the caller whether those
expectations still held.
"""

from typing import Optional
import logging

from django.db.models import Q
from django.utils import timezone

from .models import Booking

logger = logging.getLogger(__name__)


class DjangoBookingRepository:
    """Booking accessor backed by the Django ORM."""

    def get_by_id(self, booking_id: int) -> Optional[Booking]:
        return (
            Booking.objects.select_related("return_inspection", "car", "driver", "user")
            .filter(pk=booking_id)
            .first()
        )

    def update_fields(self, booking_id: int, changes: dict, *conditions: Q, **filters) -> int:
        """
        Write `changes` to one booking

        Returns the number of rows matched: 0 means the booking is gone
        or no longer satisfies `conditions` / `filters`.
        """
        if not changes:
            return 0

        values = dict(changes)
        values.setdefault("updated_at", timezone.now())

        matched = Booking.objects.filter(*conditions, pk=booking_id, **filters).update(**values)
        if not matched:
            logger.info(f"Conditional update of booking {booking_id} matched no rows")
        return matched
