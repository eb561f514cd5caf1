"""
Background tasks for the booking engine.

Workers run the hold expiry and schedule sweeps, replay failed payment
webhooks and deliver the notification outbox.
"""

from .celery_app import celery_app

__all__ = ["celery_app"]
