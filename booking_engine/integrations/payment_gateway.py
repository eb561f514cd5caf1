"""
Payment gateway clients.

The engine never moves money itself; it asks a gateway for a checkout
preference and forwards capture / cancel / refund requests. Three
implementations share one interface:

- PaymentServiceClient: the in-house payment service over HTTP (httpx)
- StripeCheckoutGateway: Stripe Checkout Sessions and PaymentIntents
- FakePaymentGatewayClient: deterministic stand-in for local runs and tests

RetryingPaymentGateway wraps any of them with bounded exponential backoff
that only retries failures marked transient.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
import json
import logging
import time
from typing import Any, Callable, Dict, List, Optional, TypeVar

import httpx
from pydantic import SecretStr
import stripe

from ..core.config import Settings, settings as default_settings
from ..core.exceptions import ProviderException
from ..monitoring.prometheus_metrics import prometheus_metrics

logger = logging.getLogger(__name__)

R = TypeVar("R")


@dataclass(frozen=True)
class PreferenceItem:
    title: str
    quantity: int
    unit_price: int


@dataclass(frozen=True)
class PreferenceRequest:
    """Everything a gateway needs to build a checkout for one booking."""

    booking_id: str
    asset_type: str
    amount: int
    currency: str
    items: List[PreferenceItem]
    payer: Dict[str, Optional[str]]
    callback_urls: Dict[str, str]
    metadata: Dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class PreferenceResult:
    preference_id: str
    checkout_url: str


@dataclass(frozen=True)
class PaymentOperationResult:
    payment_id: str
    status: str
    refund_id: Optional[str] = None


class PaymentGatewayClient(ABC):
    """Interface every gateway implements."""

    name: str = "gateway"

    @abstractmethod
    def create_preference(self, request: PreferenceRequest) -> PreferenceResult:
        """Create a checkout for the booking and return where to send the payer."""

    @abstractmethod
    def capture(self, payment_id: str, amount: Optional[int] = None) -> PaymentOperationResult:
        """Capture an authorized payment."""

    @abstractmethod
    def cancel(self, payment_id: str) -> PaymentOperationResult:
        """Void an uncaptured payment."""

    @abstractmethod
    def refund(self, payment_id: str, amount: Optional[int] = None) -> PaymentOperationResult:
        """Refund a captured payment, fully when ``amount`` is None."""


def call_with_retry(
    fn: Callable[[], R],
    *,
    gateway: str,
    operation: str,
    max_attempts: int = 3,
    backoff_seconds: float = 0.5,
    sleep: Callable[[float], None] = time.sleep,
) -> R:
    """
    Run ``fn`` retrying transient ProviderExceptions with exponential backoff.

    Terminal provider errors and any other exception propagate immediately.
    """
    for attempt in range(max_attempts):
        try:
            result = fn()
        except ProviderException as exc:
            last_attempt = attempt >= max_attempts - 1
            if not exc.transient or last_attempt:
                prometheus_metrics.record_gateway_request(gateway, operation, "error")
                logger.error(
                    "Gateway %s.%s failed after %s attempt(s): %s",
                    gateway,
                    operation,
                    attempt + 1,
                    exc.message,
                    extra={"gateway": gateway, "operation": operation, "transient": exc.transient},
                )
                raise
            wait_time = backoff_seconds * (2**attempt)
            prometheus_metrics.record_gateway_request(gateway, operation, "retry")
            logger.warning(
                f"Attempt {attempt + 1}/{max_attempts} failed for {gateway}.{operation}: "
                f"{exc.message}. Retrying in {wait_time}s..."
            )
            sleep(wait_time)
        else:
            prometheus_metrics.record_gateway_request(gateway, operation, "success")
            return result
    raise RuntimeError("Retry loop exited without a result")


class RetryingPaymentGateway(PaymentGatewayClient):
    """Decorates a gateway so every call goes through ``call_with_retry``."""

    def __init__(
        self,
        inner: PaymentGatewayClient,
        *,
        max_attempts: int = 3,
        backoff_seconds: float = 0.5,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.inner = inner
        self.name = inner.name
        self._max_attempts = max_attempts
        self._backoff_seconds = backoff_seconds
        self._sleep = sleep

    def _run(self, operation: str, fn: Callable[[], R]) -> R:
        return call_with_retry(
            fn,
            gateway=self.name,
            operation=operation,
            max_attempts=self._max_attempts,
            backoff_seconds=self._backoff_seconds,
            sleep=self._sleep,
        )

    def create_preference(self, request: PreferenceRequest) -> PreferenceResult:
        return self._run("create_preference", lambda: self.inner.create_preference(request))

    def capture(self, payment_id: str, amount: Optional[int] = None) -> PaymentOperationResult:
        return self._run("capture", lambda: self.inner.capture(payment_id, amount))

    def cancel(self, payment_id: str) -> PaymentOperationResult:
        return self._run("cancel", lambda: self.inner.cancel(payment_id))

    def refund(self, payment_id: str, amount: Optional[int] = None) -> PaymentOperationResult:
        return self._run("refund", lambda: self.inner.refund(payment_id, amount))


class PaymentServiceClient(PaymentGatewayClient):
    """Thin client for the payment service REST API."""

    name = "payment_service"

    def __init__(
        self,
        *,
        base_url: str,
        api_key: str | SecretStr,
        timeout: float = 10.0,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        secret_value = api_key.get_secret_value() if isinstance(api_key, SecretStr) else api_key
        if not secret_value:
            raise ValueError("Payment service API key must be provided")
        self._api_key = secret_value
        self._base_url = base_url.rstrip("/")
        self._timeout = timeout
        self._transport = transport

    def create_preference(self, request: PreferenceRequest) -> PreferenceResult:
        body = {
            "bookingId": request.booking_id,
            "assetType": request.asset_type,
            "currency": request.currency,
            "items": [
                {"title": item.title, "quantity": item.quantity, "unitPrice": item.unit_price}
                for item in request.items
            ],
            "payer": {key: value for key, value in request.payer.items() if value is not None},
            "backUrls": request.callback_urls,
            "metadata": {**request.metadata, "source": "booking-engine"},
        }
        result = self.request(
            "POST",
            "/api/payments/preference",
            json_body=body,
            headers={"Idempotency-Key": f"preference:{request.booking_id}"},
        )
        preference_id = result.get("preferenceId")
        checkout_url = result.get("checkoutUrl") or result.get("sandboxInitPoint")
        if not preference_id or not checkout_url:
            raise ProviderException(
                "Payment service returned an incomplete preference",
                transient=False,
                provider=self.name,
            )
        return PreferenceResult(preference_id=str(preference_id), checkout_url=str(checkout_url))

    def capture(self, payment_id: str, amount: Optional[int] = None) -> PaymentOperationResult:
        result = self.request(
            "POST", f"/api/payments/payment/{payment_id}/capture", json_body={"amount": amount}
        )
        return PaymentOperationResult(payment_id=payment_id, status=str(result.get("status", "")))

    def cancel(self, payment_id: str) -> PaymentOperationResult:
        result = self.request("POST", f"/api/payments/payment/{payment_id}/cancel", json_body={})
        return PaymentOperationResult(
            payment_id=payment_id, status=str(result.get("status") or "cancelled")
        )

    def refund(self, payment_id: str, amount: Optional[int] = None) -> PaymentOperationResult:
        result = self.request(
            "POST", f"/api/payments/payment/{payment_id}/refund", json_body={"amount": amount}
        )
        default_status = "refunded" if amount is None else "partially_refunded"
        return PaymentOperationResult(
            payment_id=payment_id,
            status=str(result.get("status") or default_status),
            refund_id=result.get("refundId"),
        )

    def request(
        self,
        method: str,
        path: str,
        *,
        json_body: Dict[str, Any] | None = None,
        headers: Dict[str, str] | None = None,
    ) -> Dict[str, Any]:
        """Perform a payment service request and return the parsed JSON payload."""
        url = f"{self._base_url}{path}"
        with httpx.Client(
            timeout=self._timeout,
            transport=self._transport,
            headers={"Accept": "application/json", "x-api-key": self._api_key},
        ) as client:
            try:
                response = client.request(method, url, json=json_body, headers=headers)
                response.raise_for_status()
            except httpx.HTTPStatusError as exc:
                status = exc.response.status_code
                transient = status >= 500 or status == 429
                logger.error(
                    "Payment service error %s for %s %s: %s",
                    status,
                    method,
                    path,
                    exc.response.text[:500],
                )
                raise ProviderException(
                    f"Payment service responded with {status}",
                    transient=transient,
                    status_code=status,
                    provider=self.name,
                ) from exc
            except httpx.TransportError as exc:
                logger.warning("Payment service unreachable for %s %s: %s", method, path, exc)
                raise ProviderException(
                    f"Payment service unreachable: {exc}",
                    transient=True,
                    provider=self.name,
                ) from exc

        try:
            payload = response.json()
        except json.JSONDecodeError as exc:
            raise ProviderException(
                "Payment service returned invalid JSON",
                transient=False,
                status_code=response.status_code,
                provider=self.name,
            ) from exc
        if not isinstance(payload, dict):
            raise ProviderException(
                "Payment service returned an unexpected payload",
                transient=False,
                status_code=response.status_code,
                provider=self.name,
            )
        return payload


class StripeCheckoutGateway(PaymentGatewayClient):
    """Stripe Checkout for preferences, PaymentIntents for follow-up operations."""

    name = "stripe"

    def __init__(self, *, api_key: str | SecretStr) -> None:
        secret_value = api_key.get_secret_value() if isinstance(api_key, SecretStr) else api_key
        if not secret_value:
            raise ValueError("Stripe secret key must be provided")
        self._api_key = secret_value

    def _wrap(self, operation: str, fn: Callable[[], R]) -> R:
        try:
            return fn()
        except (stripe.APIConnectionError, stripe.RateLimitError) as exc:
            raise ProviderException(
                f"Stripe {operation} temporarily unavailable: {exc}",
                transient=True,
                status_code=getattr(exc, "http_status", None),
                provider=self.name,
            ) from exc
        except stripe.APIError as exc:
            status = getattr(exc, "http_status", None)
            raise ProviderException(
                f"Stripe {operation} failed: {exc}",
                transient=status is None or status >= 500,
                status_code=status,
                provider=self.name,
            ) from exc
        except stripe.StripeError as exc:
            raise ProviderException(
                f"Stripe rejected {operation}: {exc}",
                transient=False,
                status_code=getattr(exc, "http_status", None),
                provider=self.name,
            ) from exc

    def create_preference(self, request: PreferenceRequest) -> PreferenceResult:
        metadata = {"booking_id": request.booking_id, "asset_type": request.asset_type}

        def _create() -> Any:
            return stripe.checkout.Session.create(
                api_key=self._api_key,
                mode="payment",
                client_reference_id=request.booking_id,
                customer_email=request.payer.get("email"),
                line_items=[
                    {
                        "price_data": {
                            "currency": request.currency.lower(),
                            "product_data": {"name": item.title},
                            "unit_amount": item.unit_price,
                        },
                        "quantity": item.quantity,
                    }
                    for item in request.items
                ],
                success_url=request.callback_urls["success"],
                cancel_url=request.callback_urls["failure"],
                metadata=metadata,
                payment_intent_data={"metadata": metadata},
                idempotency_key=f"preference:{request.booking_id}",
            )

        session = self._wrap("create_preference", _create)
        return PreferenceResult(preference_id=session.id, checkout_url=session.url)

    def capture(self, payment_id: str, amount: Optional[int] = None) -> PaymentOperationResult:
        params: Dict[str, Any] = {"api_key": self._api_key}
        if amount is not None:
            params["amount_to_capture"] = amount
        intent = self._wrap("capture", lambda: stripe.PaymentIntent.capture(payment_id, **params))
        return PaymentOperationResult(payment_id=payment_id, status=intent.status)

    def cancel(self, payment_id: str) -> PaymentOperationResult:
        intent = self._wrap(
            "cancel", lambda: stripe.PaymentIntent.cancel(payment_id, api_key=self._api_key)
        )
        return PaymentOperationResult(payment_id=payment_id, status=intent.status)

    def refund(self, payment_id: str, amount: Optional[int] = None) -> PaymentOperationResult:
        params: Dict[str, Any] = {"api_key": self._api_key, "payment_intent": payment_id}
        if amount is not None:
            params["amount"] = amount
        refund = self._wrap("refund", lambda: stripe.Refund.create(**params))
        if refund.status == "succeeded":
            status = "refunded" if amount is None else "partially_refunded"
        else:
            status = refund.status
        return PaymentOperationResult(payment_id=payment_id, status=status, refund_id=refund.id)


class FakePaymentGatewayClient(PaymentGatewayClient):
    """
    In-memory gateway for development and tests.

    ``failures`` is a queue of exceptions raised by the next calls, in order.
    """

    name = "fake"

    def __init__(self, failures: Optional[List[Exception]] = None) -> None:
        self.failures: List[Exception] = list(failures or [])
        self.calls: List[tuple[str, Any]] = []

    def _maybe_fail(self) -> None:
        if self.failures:
            raise self.failures.pop(0)

    def create_preference(self, request: PreferenceRequest) -> PreferenceResult:
        self.calls.append(("create_preference", request))
        self._maybe_fail()
        return PreferenceResult(
            preference_id=f"pref_{request.booking_id}",
            checkout_url=f"https://checkout.example.com/pay/{request.booking_id}",
        )

    def capture(self, payment_id: str, amount: Optional[int] = None) -> PaymentOperationResult:
        self.calls.append(("capture", (payment_id, amount)))
        self._maybe_fail()
        return PaymentOperationResult(payment_id=payment_id, status="succeeded")

    def cancel(self, payment_id: str) -> PaymentOperationResult:
        self.calls.append(("cancel", payment_id))
        self._maybe_fail()
        return PaymentOperationResult(payment_id=payment_id, status="canceled")

    def refund(self, payment_id: str, amount: Optional[int] = None) -> PaymentOperationResult:
        self.calls.append(("refund", (payment_id, amount)))
        self._maybe_fail()
        status = "refunded" if amount is None else "partially_refunded"
        return PaymentOperationResult(
            payment_id=payment_id, status=status, refund_id=f"re_{payment_id}"
        )


def build_payment_gateway(
    config: Optional[Settings] = None,
    *,
    sleep: Callable[[float], None] = time.sleep,
) -> PaymentGatewayClient:
    """Create the configured gateway wrapped with retry."""
    cfg = config or default_settings
    inner: PaymentGatewayClient
    if cfg.payment_gateway == "payment_service":
        inner = PaymentServiceClient(
            base_url=cfg.payment_service_url,
            api_key=cfg.payment_service_api_key,
            timeout=cfg.gateway_timeout_seconds,
        )
    elif cfg.payment_gateway == "stripe":
        inner = StripeCheckoutGateway(api_key=cfg.stripe_secret_key)
    else:
        inner = FakePaymentGatewayClient()
    return RetryingPaymentGateway(
        inner,
        max_attempts=cfg.gateway_max_attempts,
        backoff_seconds=cfg.gateway_backoff_seconds,
        sleep=sleep,
    )
