from __future__ import annotations

from booking_engine.models.booking import BookingRecord
from booking_engine.tasks.payment_tasks import replay_failed_webhooks


def _status(db, booking_id: str) -> str:
    db.expire_all()
    return db.get(BookingRecord, booking_id).status


def test_replay_failed_webhooks_task(db, task_sessions, reconciler, pending_booking,
                                     paid_notification):
    body = paid_notification(pending_booking)
    entry = reconciler.ledger.record(
        source="payment_service",
        event_type="payment.approved",
        payload=body,
        provider_event_id=body["providerEventId"],
    )
    reconciler.ledger.mark_failed(entry.id, error="UnknownBookingException: not yet")

    result = replay_failed_webhooks.run()

    assert result["replayed"] == 1
    assert _status(db, pending_booking.id) == "confirmed"
