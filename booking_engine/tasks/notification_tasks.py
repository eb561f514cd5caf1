# booking_engine/tasks/notification_tasks.py
"""
Celery tasks delivering the notification outbox.

``notifications.dispatch_due`` runs on the beat and queues one
``notifications.deliver`` per due entry. Delivery hands the effect to the
notification service under its ``event:booking_id`` key, so an entry sent
twice after a worker crash is dropped on the receiving side. Retries are
driven by the outbox itself: a failed entry stays pending with a later
``deliver_after`` and the next dispatch picks it up.
"""

from time import monotonic
from typing import Optional

from celery.utils.log import get_task_logger

from ..database import SessionLocal
from ..domain.notification_effect import NotificationEffect
from ..models.notification_outbox import OutboxStatus
from ..monitoring.prometheus_metrics import PrometheusMetrics
from ..repositories.notification_outbox_repository import NotificationOutboxRepository
from ..services.notification_provider import (
    NotificationProvider,
    NotificationProviderError,
    NotificationProviderTemporaryError,
)
from .celery_app import celery_app

logger = get_task_logger(__name__)

# Wait before the 2nd, 3rd, ... attempt; the last entry ends the retries.
RETRY_DELAYS_SECONDS = (30, 120, 600, 1800, 7200)
MAX_ATTEMPTS = len(RETRY_DELAYS_SECONDS)
DISPATCH_BATCH_SIZE = 200


def retry_delay(attempt: int) -> int:
    """Delay after the ``attempt``-th failed delivery (1-indexed)."""
    return RETRY_DELAYS_SECONDS[min(max(attempt, 1), MAX_ATTEMPTS) - 1]


@celery_app.task(name="notifications.dispatch_due", max_retries=0)
def dispatch_due_notifications(limit: int = DISPATCH_BATCH_SIZE) -> int:
    """Queue a delivery for every due outbox entry; returns how many."""
    db = SessionLocal()
    try:
        entry_ids = [
            entry.id for entry in NotificationOutboxRepository(db).due_for_delivery(limit=limit)
        ]
        db.commit()
    finally:
        db.close()
    for entry_id in entry_ids:
        deliver_notification.delay(entry_id)
    if entry_ids:
        logger.info("Queued %s notification(s) for delivery", len(entry_ids))
    return len(entry_ids)


def _observe(event: str, started: float, outcome: str) -> None:
    PrometheusMetrics.observe_notification_dispatch(event, monotonic() - started)
    PrometheusMetrics.record_notification_outcome(event, outcome)


@celery_app.task(name="notifications.deliver", max_retries=0)
def deliver_notification(entry_id: str) -> Optional[str]:
    """
    Deliver one outbox entry.

    Returns the entry id once sent, None when there was nothing to send or
    the attempt failed. Failures never raise: they are written to the entry.
    """
    db = SessionLocal()
    try:
        outbox = NotificationOutboxRepository(db)
        entry = outbox.get_by_id(entry_id, load_relationships=False)
        if entry is None or entry.status != OutboxStatus.PENDING.value:
            logger.info("Outbox entry %s is not pending; nothing to deliver", entry_id)
            return None

        effect = NotificationEffect.from_outbox(entry)
        attempt = entry.attempts + 1
        PrometheusMetrics.record_notification_attempt(effect.event)
        started = monotonic()
        try:
            NotificationProvider().deliver(effect)
        except NotificationProviderError as exc:
            outbox.record_failure(
                entry_id, status=OutboxStatus.REJECTED, attempts=attempt, error=str(exc)
            )
            db.commit()
            _observe(effect.event, started, "rejected")
            logger.error("Notification %s rejected: %s", effect.idempotency_key, exc)
            return None
        except Exception as exc:
            error = f"{type(exc).__name__}: {exc}"
            if attempt >= MAX_ATTEMPTS:
                outbox.record_failure(
                    entry_id, status=OutboxStatus.EXHAUSTED, attempts=attempt, error=error
                )
                db.commit()
                _observe(effect.event, started, "exhausted")
                logger.error(
                    "Giving up on notification %s after %s attempts: %s",
                    effect.idempotency_key,
                    attempt,
                    exc,
                )
                return None
            delay = retry_delay(attempt)
            outbox.schedule_retry(entry_id, attempts=attempt, delay_seconds=delay, error=error)
            db.commit()
            _observe(effect.event, started, "retrying")
            if isinstance(exc, NotificationProviderTemporaryError):
                logger.warning(
                    "Notification %s failed (%s); retrying in %ss",
                    effect.idempotency_key,
                    exc,
                    delay,
                )
            else:
                logger.exception(
                    "Unexpected error delivering %s; retrying in %ss",
                    effect.idempotency_key,
                    delay,
                )
            return None

        outbox.record_delivery(entry_id, attempts=attempt)
        db.commit()
        _observe(effect.event, started, "sent")
        logger.info("Delivered %s on attempt %s", effect.idempotency_key, attempt)
        return entry_id
    finally:
        db.close()
