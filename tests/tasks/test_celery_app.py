from __future__ import annotations

from datetime import timedelta

from booking_engine.core.config import Settings
from booking_engine.tasks.beat_schedule import build_beat_schedule
from booking_engine.tasks.celery_app import TASK_ROUTES, broker_url, celery_app


def test_every_scheduled_task_is_registered_and_routed():
    schedule = build_beat_schedule(Settings())
    celery_app.loader.import_default_modules()

    for entry in schedule.values():
        assert entry["task"] in celery_app.tasks
        prefix = entry["task"].split(".")[0]
        assert f"{prefix}.*" in TASK_ROUTES


def test_cadence_follows_settings():
    schedule = build_beat_schedule(
        Settings(hold_expiry_interval_seconds=15, outbox_dispatch_interval_seconds=10)
    )

    assert schedule["expire-booking-holds"]["schedule"] == timedelta(seconds=15)
    assert schedule["expire-booking-holds"]["options"]["expires"] == 15
    assert schedule["dispatch-notifications"]["schedule"] == timedelta(seconds=10)
    assert schedule["advance-booking-schedule"]["schedule"] == timedelta(minutes=5)


def test_broker_prefers_dedicated_url():
    assert (
        broker_url(Settings(celery_broker_url="redis://broker:6379/1", redis_url="redis://r/0"))
        == "redis://broker:6379/1"
    )
    assert broker_url(Settings(redis_url="redis://r:6379/0")) == "redis://r:6379/0"
    assert broker_url(Settings(redis_url="")) == "redis://localhost:6379/0"
