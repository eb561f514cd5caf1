from __future__ import annotations

from booking_engine.models.webhook_ledger import WebhookLedgerEntry
from booking_engine.services.webhook_ledger_service import WebhookLedgerService, redact_headers


def _record(service, provider_event_id="evt_1", **overrides):
    values = dict(
        source="payment_service",
        event_type="payment.approved",
        payload={"providerEventId": provider_event_id},
        provider_event_id=provider_event_id,
    )
    values.update(overrides)
    return service.record(**values)


def test_record_stores_webhook_with_redacted_headers(db):
    service = WebhookLedgerService(db)
    entry = _record(
        service,
        headers={"X-Signature": "sha256=abc", "X-Request-Id": "req", "Authorization": "secret"},
    )

    assert entry.status == "received"
    assert entry.deliveries == 1
    assert entry.headers == {"X-Signature": "***", "X-Request-Id": "req", "Authorization": "***"}
    stored = db.get(WebhookLedgerEntry, entry.id)
    assert stored.payload == {"providerEventId": "evt_1"}


def test_redelivery_counts_on_existing_entry(db):
    service = WebhookLedgerService(db)
    first = _record(service)

    second = _record(service, headers={"Stripe-Signature": "t=1"})

    assert second.id == first.id
    assert second.deliveries == 2
    assert second.headers == {"Stripe-Signature": "***"}
    assert db.query(WebhookLedgerEntry).count() == 1


def test_same_event_id_from_other_source_is_separate(db):
    service = WebhookLedgerService(db)
    first = _record(service)
    second = _record(service, source="stripe", event_type="payment_intent.succeeded")

    assert first.id != second.id


def test_deliveries_without_event_id_are_never_merged(db):
    service = WebhookLedgerService(db)

    first = _record(service, provider_event_id=None)
    second = _record(service, provider_event_id=None)

    assert first.id != second.id


def test_missing_event_type_is_unknown(db):
    entry = _record(WebhookLedgerService(db), event_type="")

    assert entry.event_type == "unknown"


def test_mark_processed_keeps_outcome_and_booking(db):
    service = WebhookLedgerService(db)
    entry = _record(service)

    service.mark_processed(entry.id, outcome="applied", booking_id="booking-1")

    db.refresh(entry)
    assert entry.status == "processed"
    assert entry.outcome == "applied"
    assert entry.processed_at is not None
    assert [logged.id for logged in service.history("booking-1")] == [entry.id]


def test_mark_failed_truncates_error(db):
    service = WebhookLedgerService(db)
    entry = _record(service)

    service.mark_failed(entry.id, error="x" * 5000)

    db.refresh(entry)
    assert entry.status == "failed"
    assert len(entry.error) == 2000


def test_replay_budget(db):
    service = WebhookLedgerService(db)
    failed = _record(service, provider_event_id="evt_failed")
    processed = _record(service, provider_event_id="evt_ok")
    service.mark_failed(failed.id, error="UnknownBookingException: not yet")
    service.mark_processed(processed.id)

    assert [entry.id for entry in service.replayable(max_replays=2)] == [failed.id]

    service.start_replay(failed.id)
    assert service.replayable(max_replays=2) != []

    service.start_replay(failed.id)
    assert service.replayable(max_replays=2) == []
    db.refresh(failed)
    assert failed.replays == 2


def test_redact_headers_is_case_insensitive():
    assert redact_headers({"x-api-key": "k", "X-API-KEY": "k", "Accept": "json"}) == {
        "x-api-key": "***",
        "X-API-KEY": "***",
        "Accept": "json",
    }
