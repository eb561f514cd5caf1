"""External service integrations for the booking engine."""

from .payment_gateway import (
    FakePaymentGatewayClient,
    PaymentGatewayClient,
    PaymentServiceClient,
    StripeCheckoutGateway,
    build_payment_gateway,
)

__all__ = [
    "FakePaymentGatewayClient",
    "PaymentGatewayClient",
    "PaymentServiceClient",
    "StripeCheckoutGateway",
    "build_payment_gateway",
]
