# booking_engine/tasks/beat_schedule.py
"""
Periodic work of the booking engine.

Every sweep re-checks each candidate under the booking's version column, so
a run that overlaps the previous one only wastes a query.
"""

from datetime import timedelta
from typing import Any, Dict

from ..core.config import Settings


def build_beat_schedule(config: Settings) -> Dict[str, Dict[str, Any]]:
    """Beat entries with the cadence taken from ``config``."""

    def every(seconds: int) -> timedelta:
        return timedelta(seconds=seconds)

    return {
        # Unpaid bookings past their hold give the capacity back.
        "expire-booking-holds": {
            "task": "bookings.expire_stale_holds",
            "schedule": every(config.hold_expiry_interval_seconds),
            # A skipped run is covered by the next one.
            "options": {"expires": config.hold_expiry_interval_seconds},
        },
        "advance-booking-schedule": {
            "task": "bookings.advance_schedule",
            "schedule": every(config.schedule_advance_interval_seconds),
            "options": {"expires": config.schedule_advance_interval_seconds},
        },
        # Payment webhooks that arrived before their booking was committed.
        "replay-payment-webhooks": {
            "task": "payments.replay_failed_webhooks",
            "schedule": every(config.webhook_replay_interval_seconds),
            "options": {"expires": config.webhook_replay_interval_seconds},
        },
        "dispatch-notifications": {
            "task": "notifications.dispatch_due",
            "schedule": every(config.outbox_dispatch_interval_seconds),
            "options": {"expires": config.outbox_dispatch_interval_seconds},
        },
    }
