"""
End-to-end booking flows through the API, the payment webhook and the
background tasks, all against one in-memory database.
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from unittest.mock import patch

from sqlalchemy import update

from booking_engine.models.booking import BookingRecord
from booking_engine.models.notification_outbox import OutboxStatus
from booking_engine.repositories.notification_outbox_repository import NotificationOutboxRepository
from booking_engine.tasks.booking_tasks import expire_stale_holds
from booking_engine.tasks.notification_tasks import deliver_notification

BOOKINGS_URL = "/api/v1/bookings"


def _day(offset: int) -> str:
    return (datetime.now(timezone.utc) + timedelta(days=offset)).date().isoformat()


def _stay(asset, check_in: int = 7, check_out: int = 9) -> dict:
    return {
        "asset_type": "accommodation",
        "asset_id": asset.id,
        "check_in": _day(check_in),
        "check_out": _day(check_out),
        "rooms": 1,
        "guests": 2,
        "customer": {"name": "Bruno Lima", "email": "bruno@example.com"},
    }


def _pay(client, booking: dict, event_id: str = "evt_paid_1") -> dict:
    response = client.post(
        "/webhooks/payments",
        json={
            "providerEventId": event_id,
            "providerPaymentId": f"pay_{event_id}",
            "bookingReference": booking["booking_id"],
            "status": "approved",
            "amount": booking["final_amount"],
            "currency": booking["currency"],
        },
    )
    assert response.status_code == 200, response.text
    return response.json()


def test_accommodation_needs_partner_confirmation(client, db, task_sessions, make_asset):
    inn = make_asset(asset_type="accommodation", name="Pousada do Mar", unit_price=15000,
                     capacity_per_slot=1)

    created = client.post(BOOKINGS_URL, json=_stay(inn))
    assert created.status_code == 201, created.text
    booking = created.json()
    assert booking["base_amount"] == 30000

    # The only room is held for both nights, including the overlapping one
    overlapping = client.post(BOOKINGS_URL, json=_stay(inn, check_in=8, check_out=10))
    assert overlapping.status_code == 409

    ack = _pay(client, booking)
    assert ack["bookingStatus"] == "awaiting_confirmation"
    assert ack["paymentStatus"] == "paid"

    confirmed = client.post(f"{BOOKINGS_URL}/{booking['booking_id']}/confirm")
    assert confirmed.status_code == 200
    assert confirmed.json()["status"] == "confirmed"
    assert confirmed.json()["confirmed_at"] is not None

    outbox = NotificationOutboxRepository(db)
    assert {entry.event for entry in outbox.for_booking(booking["booking_id"])} == {
        "booking.payment_requested",
        "booking.awaiting_confirmation",
        "booking.confirmed",
    }

    with patch("booking_engine.tasks.notification_tasks.NotificationProvider.deliver") as deliver:
        for entry in outbox.due_for_delivery():
            deliver_notification.run(entry.id)

    assert deliver.call_count == 3
    db.expire_all()
    assert {entry.status for entry in outbox.for_booking(booking["booking_id"])} == {
        OutboxStatus.SENT.value
    }

    # Canceling gives the room back for the same nights
    canceled = client.post(f"{BOOKINGS_URL}/{booking['booking_id']}/cancel")
    assert canceled.json()["status"] == "canceled"
    assert client.post(BOOKINGS_URL, json=_stay(inn, check_in=8, check_out=10)).status_code == 201


def test_expired_hold_frees_capacity(client, db, task_sessions, make_asset):
    kayak = make_asset(capacity_per_slot=2)
    body = {
        "asset_type": "activity",
        "asset_id": kayak.id,
        "participants": 2,
        "scheduled_date": _day(5),
        "scheduled_time": "09:30",
        "customer": {"name": "Ana Souza", "email": "ana@example.com"},
    }
    first = client.post(BOOKINGS_URL, json=body).json()
    assert client.post(BOOKINGS_URL, json=body).status_code == 409

    db.execute(
        update(BookingRecord)
        .where(BookingRecord.id == first["booking_id"])
        .values(hold_expires_at=datetime.now(timezone.utc) - timedelta(minutes=1))
    )
    db.commit()
    assert expire_stale_holds.run()["expired"] == 1

    assert client.get(f"{BOOKINGS_URL}/{first['booking_id']}").json()["status"] == "expired"
    assert client.post(BOOKINGS_URL, json=body).status_code == 201

    # A payment that lands after expiry is recorded as an anomaly, not applied
    late = _pay(client, first, event_id="evt_late")
    assert late["outcome"] == "anomaly"
    assert late["bookingStatus"] == "expired"
