import json

import httpx
import pytest

from booking_engine.core.config import Settings
from booking_engine.domain.notification_effect import NotificationEffect
from booking_engine.services.notification_provider import (
    NotificationProvider,
    NotificationProviderError,
    NotificationProviderTemporaryError,
)

URL = "https://notify.example.com/events"

CONFIRMED = NotificationEffect(
    event="booking.confirmed",
    booking_id="b1",
    recipient_contact={"email": "ana@example.com"},
    template_data={"confirmation_code": "ABCD1234"},
)
EXPIRED = NotificationEffect(event="booking.expired", booking_id="b1", recipient_contact={})


def provider_for(handler, **overrides):
    values = dict(notification_service_url=URL, notification_service_api_key="secret-key")
    values.update(overrides)
    return NotificationProvider(Settings(**values), transport=httpx.MockTransport(handler))


class TestNotificationProvider:
    def test_without_service_only_logs(self, caplog):
        provider = NotificationProvider(Settings(notification_service_url=None))

        with caplog.at_level("INFO", logger="booking_engine.services.notification_provider"):
            result = provider.deliver(CONFIRMED)

        assert result.delivered is False
        assert result.idempotency_key == "booking.confirmed:b1"
        assert "booking.confirmed:b1" in caplog.text

    def test_posts_effect_under_its_key(self):
        seen = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen["url"] = str(request.url)
            seen["headers"] = request.headers
            seen["body"] = json.loads(request.content)
            return httpx.Response(202, json={"accepted": True})

        result = provider_for(handler).deliver(CONFIRMED)

        assert result.delivered is True
        assert result.status_code == 202
        assert seen["url"] == URL
        assert seen["headers"]["Idempotency-Key"] == "booking.confirmed:b1"
        assert seen["headers"]["x-api-key"] == "secret-key"
        assert seen["body"] == {
            "event": "booking.confirmed",
            "booking_id": "b1",
            "recipient": {"email": "ana@example.com"},
            "data": {"confirmation_code": "ABCD1234"},
        }

    @pytest.mark.parametrize("status", [500, 503, 429])
    def test_server_errors_are_temporary(self, status):
        provider = provider_for(lambda request: httpx.Response(status))

        with pytest.raises(NotificationProviderTemporaryError):
            provider.deliver(EXPIRED)

    def test_client_errors_are_terminal(self):
        provider = provider_for(lambda request: httpx.Response(422, json={"error": "bad"}))

        with pytest.raises(NotificationProviderError, match="booking.expired:b1"):
            provider.deliver(EXPIRED)

    def test_transport_errors_are_temporary(self):
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("connection refused", request=request)

        with pytest.raises(NotificationProviderTemporaryError):
            provider_for(handler).deliver(EXPIRED)
