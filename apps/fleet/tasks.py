"""Celery tasks for the fleet."""

from __future__ import annotations

import logging

from celery import shared_task  # type: ignore

from . import services

logger = logging.getLogger(__name__)


@shared_task(name="fleet.release_car_for_booking")
def release_car_for_booking(booking_id: int) -> bool:
    """Return the car to the pool once the trip is settled."""
    return services.release_car_for_booking(booking_id)


@shared_task(name="fleet.release_driver_for_booking")
def release_driver_for_booking(booking_id: int) -> bool:
    """Free the chauffeur once the trip is settled."""
    return services.release_driver_for_booking(booking_id, increment_trip_count=True)


@shared_task(name="fleet.reserve_car")
def reserve_car(car_id: int) -> bool:
    return services.reserve_car(car_id)
