# booking_engine/tasks/booking_tasks.py
"""
Celery tasks for the time-driven booking transitions.

- ``bookings.expire_stale_holds`` expires unpaid bookings past their hold
- ``bookings.advance_schedule`` starts and completes confirmed bookings
"""

from datetime import datetime, timezone
from typing import Any, Dict

from celery.utils.log import get_task_logger

from ..database import SessionLocal
from ..services.booking_service import BookingService
from .celery_app import celery_app

logger = get_task_logger(__name__)


@celery_app.task(name="bookings.expire_stale_holds", bind=True, max_retries=0, queue="bookings")
def expire_stale_holds(self: Any) -> Dict[str, Any]:
    """Expire bookings whose capacity hold ran out before payment."""
    db = SessionLocal()
    try:
        expired = BookingService(db).expire_stale_holds()
        return {
            "expired": expired,
            "processed_at": datetime.now(timezone.utc).isoformat(),
        }
    finally:
        db.close()


@celery_app.task(name="bookings.advance_schedule", bind=True, max_retries=0, queue="bookings")
def advance_schedule(self: Any) -> Dict[str, Any]:
    """Move confirmed bookings into progress and finished ones to completed."""
    db = SessionLocal()
    try:
        result = BookingService(db).advance_schedule()
        if result.started or result.completed:
            logger.info(
                "Advanced booking schedule: started=%s completed=%s",
                result.started,
                result.completed,
            )
        return {
            "started": result.started,
            "completed": result.completed,
            "processed_at": datetime.now(timezone.utc).isoformat(),
        }
    finally:
        db.close()
