from __future__ import annotations

from unittest.mock import patch

import pytest

from booking_engine.domain.notification_effect import NotificationEffect
from booking_engine.models.notification_outbox import NotificationOutboxEntry, OutboxStatus
from booking_engine.repositories.notification_outbox_repository import NotificationOutboxRepository
from booking_engine.services.notification_provider import (
    NotificationProviderError,
    NotificationProviderTemporaryError,
)
from booking_engine.tasks.notification_tasks import (
    MAX_ATTEMPTS,
    RETRY_DELAYS_SECONDS,
    deliver_notification,
    dispatch_due_notifications,
    retry_delay,
)

DELIVER = "booking_engine.tasks.notification_tasks.NotificationProvider.deliver"


@pytest.fixture
def queue_effect(db):
    def _queue(booking_id: str, event: str = "booking.confirmed") -> NotificationOutboxEntry:
        effect = NotificationEffect(
            event=event,
            booking_id=booking_id,
            recipient_contact={"name": "Ana Souza", "email": "ana@example.com"},
            template_data={"confirmation_code": "ABCD1234"},
        )
        entry = NotificationOutboxRepository(db).enqueue(effect)
        db.commit()
        return entry

    return _queue


def _reload(db, entry_id: str) -> NotificationOutboxEntry:
    db.expire_all()
    return db.get(NotificationOutboxEntry, entry_id)


def test_dispatch_queues_every_due_entry(task_sessions, queue_effect):
    first = queue_effect("booking-1")
    second = queue_effect("booking-2", event="booking.expired")

    with patch.object(deliver_notification, "delay") as delay:
        assert dispatch_due_notifications() == 2

    assert {call.args[0] for call in delay.call_args_list} == {first.id, second.id}


def test_dispatch_respects_batch_limit(task_sessions, queue_effect):
    queue_effect("booking-1")
    queue_effect("booking-2")

    with patch.object(deliver_notification, "delay") as delay:
        assert dispatch_due_notifications(limit=1) == 1

    assert delay.call_count == 1


def test_unknown_entry_is_skipped(task_sessions):
    with patch(DELIVER) as deliver:
        assert deliver_notification.run("01HNOSUCHENTRYXXXXXXXXXXXX") is None

    deliver.assert_not_called()


def test_delivery_hands_over_the_effect(db, task_sessions, queue_effect):
    entry = queue_effect("booking-3")

    with patch(DELIVER) as deliver:
        assert deliver_notification.run(entry.id) == entry.id

    (effect,), _ = deliver.call_args
    assert effect.idempotency_key == "booking.confirmed:booking-3"
    assert effect.recipient_contact["email"] == "ana@example.com"
    assert effect.template_data == {"confirmation_code": "ABCD1234"}
    refreshed = _reload(db, entry.id)
    assert refreshed.status == OutboxStatus.SENT.value
    assert refreshed.attempts == 1


def test_sent_entry_is_not_delivered_again(db, task_sessions, queue_effect):
    entry = queue_effect("booking-3")

    with patch(DELIVER) as deliver:
        deliver_notification.run(entry.id)
        assert deliver_notification.run(entry.id) is None

    assert deliver.call_count == 1


@pytest.mark.parametrize(
    "error",
    [NotificationProviderTemporaryError("503"), RuntimeError("boom")],
    ids=["temporary", "unexpected"],
)
def test_failed_attempt_is_postponed(db, task_sessions, queue_effect, error):
    entry = queue_effect("booking-4", event="booking.expired")

    with patch(DELIVER, side_effect=error):
        assert deliver_notification.run(entry.id) is None

    refreshed = _reload(db, entry.id)
    assert refreshed.status == OutboxStatus.PENDING.value
    assert refreshed.attempts == 1
    assert refreshed.last_error == f"{type(error).__name__}: {error}"
    assert NotificationOutboxRepository(db).due_for_delivery() == []


def test_last_attempt_exhausts_entry(db, task_sessions, queue_effect):
    entry = queue_effect("booking-5", event="booking.expired")
    entry.attempts = MAX_ATTEMPTS - 1
    db.commit()

    with patch(DELIVER, side_effect=NotificationProviderTemporaryError("503")):
        assert deliver_notification.run(entry.id) is None

    refreshed = _reload(db, entry.id)
    assert refreshed.status == OutboxStatus.EXHAUSTED.value
    assert refreshed.attempts == MAX_ATTEMPTS


def test_rejection_is_final(db, task_sessions, queue_effect):
    entry = queue_effect("booking-6", event="booking.canceled")

    with patch(DELIVER, side_effect=NotificationProviderError("422 unknown template")):
        assert deliver_notification.run(entry.id) is None

    refreshed = _reload(db, entry.id)
    assert refreshed.status == OutboxStatus.REJECTED.value
    assert refreshed.attempts == 1
    assert refreshed.last_error == "422 unknown template"


def test_retry_delays_grow_and_cap():
    assert retry_delay(1) == RETRY_DELAYS_SECONDS[0]
    assert retry_delay(3) == 600
    assert retry_delay(99) == RETRY_DELAYS_SECONDS[-1]
