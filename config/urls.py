"""URL configuration for the car rental project.

Only the Django admin is routed; the booking lifecycle is driven by
command handlers and Celery tasks rather than an HTTP API.
"""
from django.contrib import admin  # type: ignore
from django.urls import path  # type: ignore

urlpatterns = [
    path('admin/', admin.site.urls),
]
