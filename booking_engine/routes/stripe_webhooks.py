"""
Stripe Webhook Endpoint

Verifies the ``stripe-signature`` header, then hands payment-affecting
events (``payment_intent.*``, ``checkout.session.*``, ``charge.refunded``)
to the payment reconciler. Other event types are logged and acknowledged.
"""

import asyncio
import logging

from fastapi import APIRouter, Depends, HTTPException, Request, status
import stripe

from ..api.dependencies import get_payment_reconciler
from ..core.config import settings
from ..core.exceptions import DomainException
from ..schemas.payment_webhook import PaymentWebhookAck
from ..services.payment_reconciler import PaymentReconciler
from .payment_webhooks import ack_from_result, parse_json_object
from .v1.bookings import handle_domain_exception

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/webhooks", tags=["stripe-webhooks"])


@router.post("/stripe", response_model=PaymentWebhookAck, response_model_by_alias=True)
async def handle_stripe_webhook(
    request: Request,
    reconciler: PaymentReconciler = Depends(get_payment_reconciler),
) -> PaymentWebhookAck:
    """
    Handle Stripe payment webhook events.

    Raises:
        HTTPException: 400 on a missing or invalid signature
    """
    payload = await request.body()
    signature = request.headers.get("stripe-signature")
    if not signature:
        logger.warning("Missing Stripe signature header")
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST, detail="Missing stripe-signature header"
        )

    secret = settings.stripe_webhook_secret.get_secret_value()
    if not secret:
        logger.error("Stripe webhook received but STRIPE_WEBHOOK_SECRET is not configured")
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Stripe webhooks are not configured",
        )

    try:
        stripe.Webhook.construct_event(payload, signature, secret)
    except (ValueError, stripe.SignatureVerificationError):
        logger.warning("Invalid Stripe webhook signature")
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST, detail="Invalid webhook signature"
        )

    event = parse_json_object(payload)
    event_type = event.get("type", "")
    logger.info("Processing Stripe webhook event: %s", event_type)

    try:
        result = await asyncio.to_thread(
            reconciler.handle_stripe_event, event, dict(request.headers)
        )
    except DomainException as e:
        handle_domain_exception(e)

    if result is None:
        logger.info("Ignored Stripe webhook event type: %s", event_type)
        return PaymentWebhookAck(outcome="ignored")
    return ack_from_result(result)
