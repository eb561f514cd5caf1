# booking_engine/tasks/payment_tasks.py
"""
Celery tasks for payment reconciliation.

Replays ledger entries that failed, usually a notification that overtook
the commit of its booking.
"""

from datetime import datetime, timezone
from typing import Any, Dict

from celery.utils.log import get_task_logger

from ..core.config import settings
from ..database import SessionLocal
from ..services.payment_reconciler import PaymentReconciler
from .celery_app import celery_app

logger = get_task_logger(__name__)

REPLAY_BATCH_SIZE = 100


@celery_app.task(name="payments.replay_failed_webhooks", max_retries=0)
def replay_failed_webhooks() -> Dict[str, Any]:
    """Re-run failed payment notifications that still have replays left."""
    db = SessionLocal()
    try:
        replayed = PaymentReconciler(db).replay_failed(
            max_replays=settings.webhook_max_replays, limit=REPLAY_BATCH_SIZE
        )
        return {
            "replayed": replayed,
            "processed_at": datetime.now(timezone.utc).isoformat(),
        }
    finally:
        db.close()
