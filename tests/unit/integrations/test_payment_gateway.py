"""
Tests for the payment gateway clients and the retry wrapper.
"""

import json
from types import SimpleNamespace

import httpx
import pytest
import stripe

from booking_engine.core.config import Settings
from booking_engine.core.exceptions import ProviderException
from booking_engine.integrations.payment_gateway import (
    FakePaymentGatewayClient,
    PaymentServiceClient,
    PreferenceItem,
    PreferenceRequest,
    RetryingPaymentGateway,
    StripeCheckoutGateway,
    build_payment_gateway,
    call_with_retry,
)

BASE_URL = "https://payments.example.com/"


def preference_request(**overrides):
    values = dict(
        booking_id="01HBOOKING",
        asset_type="activity",
        amount=20000,
        currency="BRL",
        items=[PreferenceItem(title="Sunset kayak tour", quantity=2, unit_price=10000)],
        payer={"name": "Ana Souza", "email": "ana@example.com", "phone": None},
        callback_urls={
            "success": "https://shop.example.com/ok",
            "failure": "https://shop.example.com/fail",
            "pending": "https://shop.example.com/wait",
        },
    )
    values.update(overrides)
    return PreferenceRequest(**values)


def client_for(handler):
    return PaymentServiceClient(
        base_url=BASE_URL, api_key="pk_test", transport=httpx.MockTransport(handler)
    )


class TestPaymentServiceClient:
    def test_create_preference(self):
        seen = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen["url"] = str(request.url)
            seen["headers"] = request.headers
            seen["body"] = json.loads(request.content)
            return httpx.Response(
                201,
                json={"preferenceId": "pref_1", "checkoutUrl": "https://pay.example.com/p/1"},
            )

        result = client_for(handler).create_preference(preference_request())

        assert result.preference_id == "pref_1"
        assert result.checkout_url == "https://pay.example.com/p/1"
        assert seen["url"] == "https://payments.example.com/api/payments/preference"
        assert seen["headers"]["x-api-key"] == "pk_test"
        assert seen["headers"]["Idempotency-Key"] == "preference:01HBOOKING"
        assert seen["body"]["items"] == [
            {"title": "Sunset kayak tour", "quantity": 2, "unitPrice": 10000}
        ]
        assert seen["body"]["payer"] == {"name": "Ana Souza", "email": "ana@example.com"}
        assert seen["body"]["metadata"] == {"source": "booking-engine"}

    def test_sandbox_checkout_url(self):
        client = client_for(
            lambda request: httpx.Response(
                200, json={"preferenceId": "pref_1", "sandboxInitPoint": "https://sandbox/p/1"}
            )
        )

        assert client.create_preference(preference_request()).checkout_url == "https://sandbox/p/1"

    def test_incomplete_preference_is_terminal(self):
        client = client_for(lambda request: httpx.Response(200, json={"preferenceId": "p"}))

        with pytest.raises(ProviderException) as exc_info:
            client.create_preference(preference_request())
        assert exc_info.value.transient is False

    @pytest.mark.parametrize("status,transient", [(500, True), (503, True), (429, True),
                                                  (400, False), (404, False)])
    def test_http_errors(self, status, transient):
        client = client_for(lambda request: httpx.Response(status, text="boom"))

        with pytest.raises(ProviderException) as exc_info:
            client.refund("pay_1")
        assert exc_info.value.transient is transient
        assert exc_info.value.status_code == status

    def test_network_errors_are_transient(self):
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ReadTimeout("timed out", request=request)

        with pytest.raises(ProviderException) as exc_info:
            client_for(handler).capture("pay_1")
        assert exc_info.value.transient is True

    def test_non_object_payload(self):
        client = client_for(lambda request: httpx.Response(200, json=["unexpected"]))

        with pytest.raises(ProviderException):
            client.cancel("pay_1")

    def test_refund_status_defaults(self):
        seen = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append((request.url.path, json.loads(request.content)))
            return httpx.Response(200, json={"refundId": "re_1"})

        client = client_for(handler)
        full = client.refund("pay_1")
        partial = client.refund("pay_1", 500)

        assert (full.status, full.refund_id) == ("refunded", "re_1")
        assert partial.status == "partially_refunded"
        assert seen == [
            ("/api/payments/payment/pay_1/refund", {"amount": None}),
            ("/api/payments/payment/pay_1/refund", {"amount": 500}),
        ]

    def test_requires_api_key(self):
        with pytest.raises(ValueError):
            PaymentServiceClient(base_url=BASE_URL, api_key="")


class TestRetry:
    def test_transient_failures_back_off_exponentially(self):
        sleeps = []
        attempts = iter(
            [
                ProviderException("down", transient=True),
                ProviderException("down", transient=True),
            ]
        )

        def flaky():
            error = next(attempts, None)
            if error is not None:
                raise error
            return "ok"

        result = call_with_retry(flaky, gateway="fake", operation="refund", sleep=sleeps.append)

        assert result == "ok"
        assert sleeps == [0.5, 1.0]

    def test_gives_up_after_max_attempts(self):
        sleeps = []

        def always_down():
            raise ProviderException("down", transient=True)

        with pytest.raises(ProviderException):
            call_with_retry(
                always_down, gateway="fake", operation="refund", max_attempts=3,
                sleep=sleeps.append,
            )
        assert sleeps == [0.5, 1.0]

    def test_terminal_errors_are_not_retried(self):
        sleeps = []

        def rejected():
            raise ProviderException("card declined", transient=False)

        with pytest.raises(ProviderException):
            call_with_retry(rejected, gateway="fake", operation="capture", sleep=sleeps.append)
        assert sleeps == []

    def test_other_exceptions_propagate(self):
        def broken():
            raise KeyError("bug")

        with pytest.raises(KeyError):
            call_with_retry(broken, gateway="fake", operation="capture", sleep=lambda _: None)

    def test_retrying_gateway_wraps_calls(self):
        inner = FakePaymentGatewayClient(failures=[ProviderException("down", transient=True)])
        sleeps = []
        gateway = RetryingPaymentGateway(inner, sleep=sleeps.append)

        result = gateway.refund("pay_1", 300)

        assert result.status == "partially_refunded"
        assert gateway.name == "fake"
        assert inner.calls == [("refund", ("pay_1", 300)), ("refund", ("pay_1", 300))]
        assert sleeps == [0.5]


class TestStripeCheckoutGateway:
    def test_create_preference(self, monkeypatch):
        captured = {}

        def fake_create(**kwargs):
            captured.update(kwargs)
            return SimpleNamespace(id="cs_test_1", url="https://checkout.stripe.com/c/cs_test_1")

        monkeypatch.setattr(stripe.checkout.Session, "create", fake_create)

        result = StripeCheckoutGateway(api_key="sk_test").create_preference(preference_request())

        assert result.preference_id == "cs_test_1"
        assert captured["api_key"] == "sk_test"
        assert captured["client_reference_id"] == "01HBOOKING"
        assert captured["line_items"][0]["price_data"]["currency"] == "brl"
        assert captured["payment_intent_data"] == {
            "metadata": {"booking_id": "01HBOOKING", "asset_type": "activity"}
        }
        assert captured["idempotency_key"] == "preference:01HBOOKING"

    def test_refund(self, monkeypatch):
        captured = {}

        def fake_refund(**kwargs):
            captured.update(kwargs)
            return SimpleNamespace(id="re_1", status="succeeded")

        monkeypatch.setattr(stripe.Refund, "create", fake_refund)

        result = StripeCheckoutGateway(api_key="sk_test").refund("pi_1", 500)

        assert result.status == "partially_refunded"
        assert result.refund_id == "re_1"
        assert captured == {"api_key": "sk_test", "payment_intent": "pi_1", "amount": 500}

    def test_rate_limit_is_transient(self, monkeypatch):
        def fake_refund(**kwargs):
            raise stripe.RateLimitError("slow down")

        monkeypatch.setattr(stripe.Refund, "create", fake_refund)

        with pytest.raises(ProviderException) as exc_info:
            StripeCheckoutGateway(api_key="sk_test").refund("pi_1")
        assert exc_info.value.transient is True

    def test_invalid_request_is_terminal(self, monkeypatch):
        def fake_refund(**kwargs):
            raise stripe.InvalidRequestError("No such payment_intent", "payment_intent")

        monkeypatch.setattr(stripe.Refund, "create", fake_refund)

        with pytest.raises(ProviderException) as exc_info:
            StripeCheckoutGateway(api_key="sk_test").refund("pi_missing")
        assert exc_info.value.transient is False

    def test_requires_secret_key(self):
        with pytest.raises(ValueError):
            StripeCheckoutGateway(api_key="")


class TestBuildPaymentGateway:
    def test_fake_by_default(self):
        gateway = build_payment_gateway(Settings(payment_gateway="fake"))

        assert isinstance(gateway, RetryingPaymentGateway)
        assert isinstance(gateway.inner, FakePaymentGatewayClient)

    def test_payment_service(self):
        config = Settings(
            payment_gateway="payment_service",
            payment_service_api_key="pk_live",
            gateway_max_attempts=5,
        )

        gateway = build_payment_gateway(config)

        assert isinstance(gateway.inner, PaymentServiceClient)
        assert gateway.name == "payment_service"

    def test_stripe(self):
        gateway = build_payment_gateway(
            Settings(payment_gateway="stripe", stripe_secret_key="sk_test")
        )

        assert isinstance(gateway.inner, StripeCheckoutGateway)
