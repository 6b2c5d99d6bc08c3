"""Notifications app package.

Customer-facing emails sent by the booking lifecycle: settlement
receipts and refund decisions. Messages are sent from Celery tasks so
a mail failure never affects the booking that triggered it.
"""
