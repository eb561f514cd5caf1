# booking_engine/tasks/celery_app.py
"""
Celery application for the booking engine workers.

Work is split over three queues: ``bookings`` for the hold and schedule
sweeps, ``payments`` for webhook replays and ``notifications`` for outbox
delivery. Tasks carry their own state in the database, so results are not
stored.
"""

import logging
from typing import Any

from celery import Celery, Task
from celery.signals import setup_logging

from ..core.config import Settings, settings
from .beat_schedule import build_beat_schedule

logger = logging.getLogger(__name__)

TASK_MODULES = (
    "booking_engine.tasks.booking_tasks",
    "booking_engine.tasks.payment_tasks",
    "booking_engine.tasks.notification_tasks",
)

TASK_ROUTES = {
    "bookings.*": {"queue": "bookings"},
    "payments.*": {"queue": "payments"},
    "notifications.*": {"queue": "notifications"},
}


class BookingEngineTask(Task):  # type: ignore[misc]
    """Logs failed runs with the task's arguments."""

    def on_failure(self, exc: Exception, task_id: str, args: Any, kwargs: Any, einfo: Any) -> None:
        logger.error(
            "Task %s[%s] failed: %s",
            self.name,
            task_id,
            exc,
            extra={"task_name": self.name, "task_id": task_id, "task_args": args},
        )
        super().on_failure(exc, task_id, args, kwargs, einfo)


def broker_url(config: Settings) -> str:
    return config.celery_broker_url or config.redis_url or "redis://localhost:6379/0"


def create_celery_app(config: Settings = settings) -> Celery:
    app = Celery(
        "booking_engine",
        broker=broker_url(config),
        include=list(TASK_MODULES),
        task_cls=BookingEngineTask,
    )
    app.conf.update(
        task_serializer="json",
        accept_content=["json"],
        timezone="UTC",
        enable_utc=True,
        task_ignore_result=True,
        task_routes=TASK_ROUTES,
        # A task lost with its worker runs again; every task is safe to repeat.
        task_acks_late=True,
        task_reject_on_worker_lost=True,
        worker_prefetch_multiplier=1,
        worker_hijack_root_logger=False,
        beat_schedule=build_beat_schedule(config),
    )
    return app


@setup_logging.connect  # type: ignore[misc]
def configure_worker_logging(*args: Any, **kwargs: Any) -> None:
    """Workers log the same way as the API."""
    logging.basicConfig(
        level=getattr(logging, settings.log_level.upper(), logging.INFO),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )


celery_app = create_celery_app()
