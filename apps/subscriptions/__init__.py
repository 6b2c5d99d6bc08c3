"""Subscriptions app package.

Prepaid rental-hour plans. A user's active subscription covers part of
a rental's price; the hours it covers are reserved with an atomic
conditional update so that concurrent bookings can never overdraw the
same balance.
"""
