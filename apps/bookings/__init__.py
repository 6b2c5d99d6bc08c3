"""Bookings app package.

This app encapsulates the car rental booking lifecycle: confirmation of
paid rental requests, time-driven rental stages with late fees,
settlement at return and refunds. Financial transitions are written
with conditional updates inside database transactions, and their side
effects (fleet release, settlement documents, notifications) run as
Celery tasks after commit.
"""
