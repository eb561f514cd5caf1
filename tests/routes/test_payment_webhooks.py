"""Route tests for the payment service and Stripe webhook endpoints."""

from __future__ import annotations

import hashlib
import hmac
import json
import time

from pydantic import SecretStr
import pytest

from booking_engine.core.config import settings
from booking_engine.models.webhook_ledger import WebhookLedgerEntry
from booking_engine.routes.payment_webhooks import compute_signature, verify_signature

PAYMENTS_URL = "/webhooks/payments"
STRIPE_URL = "/webhooks/stripe"


@pytest.fixture
def notification(pending_booking, paid_notification):
    body = paid_notification(pending_booking)
    body.pop("timestamp")
    return body


class TestSignatures:
    def test_verify_signature_formats(self):
        body = b'{"a": 1}'
        digest = compute_signature(body, "secret")

        assert verify_signature(body, digest, "secret")
        assert verify_signature(body, f"sha256={digest}", "secret")
        assert not verify_signature(body, "sha256=deadbeef", "secret")
        assert not verify_signature(body, None, "secret")


class TestPaymentWebhook:
    def test_paid_notification(self, client, pending_booking, notification):
        response = client.post(PAYMENTS_URL, json=notification)

        assert response.status_code == 200, response.text
        assert response.json() == {
            "received": True,
            "outcome": "applied",
            "bookingId": pending_booking.id,
            "bookingStatus": "confirmed",
            "paymentStatus": "paid",
        }

    def test_redelivery_is_duplicate(self, client, db, notification):
        client.post(PAYMENTS_URL, json=notification)

        response = client.post(PAYMENTS_URL, json=notification)

        assert response.status_code == 200
        assert response.json()["outcome"] == "duplicate"
        entry = db.query(WebhookLedgerEntry).one()
        assert entry.deliveries == 2

    def test_unknown_booking_is_not_found(self, client, db, notification):
        notification["bookingReference"] = "01HF4G12ABCDEF3456789XYZAB"

        response = client.post(PAYMENTS_URL, json=notification)

        assert response.status_code == 404
        assert response.json()["code"] == "UNKNOWN_BOOKING"
        assert db.query(WebhookLedgerEntry).one().status == "failed"

    def test_body_must_be_json(self, client):
        response = client.post(
            PAYMENTS_URL, content=b"not json", headers={"Content-Type": "application/json"}
        )

        assert response.status_code == 400
        assert response.json()["code"] == "INVALID_JSON"

    def test_body_must_be_object(self, client):
        response = client.post(PAYMENTS_URL, json=["approved"])

        assert response.status_code == 400

    def test_invalid_notification_is_kept(self, client, db):
        response = client.post(PAYMENTS_URL, json={"providerEventId": "evt_bad"})

        assert response.status_code == 422
        assert response.json()["code"] == "INVALID_PAYMENT_NOTIFICATION"
        entry = db.query(WebhookLedgerEntry).one()
        assert entry.event_type == "payment.invalid"

    def test_signature_required_when_secret_set(self, client, monkeypatch, notification):
        monkeypatch.setattr(settings, "payment_webhook_secret", SecretStr("whsec"))
        body = json.dumps(notification).encode()

        unsigned = client.post(
            PAYMENTS_URL, content=body, headers={"Content-Type": "application/json"}
        )
        signed = client.post(
            PAYMENTS_URL,
            content=body,
            headers={
                "Content-Type": "application/json",
                "X-Signature": f"sha256={compute_signature(body, 'whsec')}",
            },
        )

        assert unsigned.status_code == 401
        assert unsigned.json()["code"] == "INVALID_SIGNATURE"
        assert signed.status_code == 200
        assert signed.json()["outcome"] == "applied"


def _stripe_header(payload: bytes, secret: str) -> str:
    timestamp = int(time.time())
    signed_payload = f"{timestamp}.{payload.decode()}".encode()
    signature = hmac.new(secret.encode(), signed_payload, hashlib.sha256).hexdigest()
    return f"t={timestamp},v1={signature}"


class TestStripeWebhook:
    def test_missing_signature(self, client):
        response = client.post(STRIPE_URL, json={"id": "evt_1"})

        assert response.status_code == 400

    def test_not_configured(self, client):
        response = client.post(
            STRIPE_URL, json={"id": "evt_1"}, headers={"stripe-signature": "t=1,v1=abc"}
        )

        assert response.status_code == 503

    def test_invalid_signature(self, client, monkeypatch):
        monkeypatch.setattr(settings, "stripe_webhook_secret", SecretStr("whsec_test"))

        response = client.post(
            STRIPE_URL, json={"id": "evt_1"}, headers={"stripe-signature": "t=1,v1=abc"}
        )

        assert response.status_code == 400

    def test_payment_intent_succeeded(self, client, monkeypatch, pending_booking):
        monkeypatch.setattr(settings, "stripe_webhook_secret", SecretStr("whsec_test"))
        payload = json.dumps(
            {
                "id": "evt_stripe_1",
                "object": "event",
                "type": "payment_intent.succeeded",
                "created": int(time.time()),
                "data": {
                    "object": {
                        "id": "pi_123",
                        "object": "payment_intent",
                        "amount": 20000,
                        "amount_received": 20000,
                        "currency": "brl",
                        "metadata": {"booking_id": pending_booking.id},
                    }
                },
            }
        ).encode()

        response = client.post(
            STRIPE_URL,
            content=payload,
            headers={
                "Content-Type": "application/json",
                "stripe-signature": _stripe_header(payload, "whsec_test"),
            },
        )

        assert response.status_code == 200, response.text
        assert response.json()["outcome"] == "applied"
        assert response.json()["bookingStatus"] == "confirmed"

    def test_unrelated_event_is_ignored(self, client, monkeypatch):
        monkeypatch.setattr(settings, "stripe_webhook_secret", SecretStr("whsec_test"))
        payload = json.dumps(
            {"id": "evt_2", "object": "event", "type": "customer.created", "data": {"object": {}}}
        ).encode()

        response = client.post(
            STRIPE_URL,
            content=payload,
            headers={
                "Content-Type": "application/json",
                "stripe-signature": _stripe_header(payload, "whsec_test"),
            },
        )

        assert response.status_code == 200
        assert response.json()["outcome"] == "ignored"
