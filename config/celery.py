import os

from celery import Celery
from django.conf import settings  # type: ignore

os.environ.setdefault("DJANGO_SETTINGS_MODULE", "config.settings.dev")

app = Celery("car_rental")

app.config_from_object("django.conf:settings", namespace="CELERY")
app.autodiscover_tasks()

RENTAL_STAGE_SYNC_INTERVAL = float(settings.RENTAL_STAGE_SYNC_INTERVAL_SECONDS)


# ============================================================================
# CELERY BEAT SCHEDULE (Periodic Tasks)
# ============================================================================

app.conf.beat_schedule = {
    # Rental stages and late fees of open bookings
    "sync-rental-stages": {
        "task": "bookings.sync_rental_stages",
        "schedule": RENTAL_STAGE_SYNC_INTERVAL,
        # A run still queued when the next one is due is dropped
        "options": {"expires": RENTAL_STAGE_SYNC_INTERVAL * 0.8},
    },
}
