"""Fleet status transitions triggered by the booking lifecycle."""

from __future__ import annotations

import logging

from django.db import transaction  # type: ignore
from django.db.models import F  # type: ignore

from .models import Car, Driver

logger = logging.getLogger(__name__)

# Statuses the booking lifecycle may overwrite; maintenance and inactive
# cars are managed by staff and stay where they are.
RELEASABLE_FLEET_STATUSES = (
    Car.FleetStatus.AVAILABLE,
    Car.FleetStatus.RESERVED,
    Car.FleetStatus.RENTED,
)


def reserve_car(car_id: int | None) -> bool:
    """Flip an available car to Reserved. Returns False if it was not available."""

    if not car_id:
        return False

    updated = Car.objects.filter(
        pk=car_id,
        fleet_status=Car.FleetStatus.AVAILABLE,
    ).update(fleet_status=Car.FleetStatus.RESERVED)

    if updated:
        logger.info(f"Car {car_id} reserved")
    else:
        logger.warning(f"Car {car_id} could not be reserved: not available")
    return bool(updated)


@transaction.atomic
def release_car_for_booking(booking_id: int) -> bool:
    """
    Return the booking's car to the available pool.

    Counts the finished trip and records the odometer reading from the
    return inspection when one was taken.
    """

    from apps.bookings.models import Booking  # Local import to prevent circular dependency

    booking = (
        Booking.objects.select_related("car", "return_inspection")
        .filter(pk=booking_id)
        .first()
    )
    if booking is None or booking.car_id is None:
        logger.warning(f"No car to release for booking {booking_id}")
        return False

    updates = {"total_trips_completed": F("total_trips_completed") + 1}
    mileage = booking.return_mileage
    if mileage is not None:
        updates["current_mileage"] = mileage

    Car.objects.filter(pk=booking.car_id).update(**updates)

    released = Car.objects.filter(
        pk=booking.car_id,
        fleet_status__in=RELEASABLE_FLEET_STATUSES,
    ).update(fleet_status=Car.FleetStatus.AVAILABLE)

    logger.info(
        f"Car {booking.car_id} returned from booking {booking.booking_code}, "
        f"released={bool(released)}"
    )
    return bool(released)


def release_driver_for_booking(booking_id: int, *, increment_trip_count: bool = True) -> bool:
    """Mark the booking's driver available again and count the trip."""

    from apps.bookings.models import Booking  # Local import to prevent circular dependency

    driver_id = Booking.objects.filter(pk=booking_id).values_list("driver_id", flat=True).first()
    if not driver_id:
        return False

    updates = {"is_available": True}
    if increment_trip_count:
        updates["completed_trips"] = F("completed_trips") + 1

    released = Driver.objects.filter(pk=driver_id).update(**updates)
    if released:
        logger.info(f"Driver {driver_id} released from booking {booking_id}")
    return bool(released)
