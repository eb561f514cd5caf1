"""
Payment Webhook Endpoint

Receives payment notifications from the payment service. Every delivery is
written to the webhook ledger before it is reconciled; a 2xx answer means
the event is durably recorded, anything else makes the provider retry.

Requests are authenticated with an HMAC-SHA256 of the raw body in the
``X-Signature`` header when ``PAYMENT_WEBHOOK_SECRET`` is set.
"""

import asyncio
import hashlib
import hmac
import json
import logging
from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, HTTPException, Request, status
from fastapi.encoders import jsonable_encoder
from pydantic import ValidationError

from ..api.dependencies import get_payment_reconciler
from ..core.config import settings
from ..core.exceptions import HTTP_422_UNPROCESSABLE, DomainException
from ..schemas.payment_webhook import PaymentWebhookAck, PaymentWebhookPayload
from ..services.payment_reconciler import PaymentReconciler, ReconciliationResult
from .v1.bookings import handle_domain_exception

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/webhooks", tags=["payment-webhooks"])

SIGNATURE_HEADER = "X-Signature"


def compute_signature(body: bytes, secret: str) -> str:
    return hmac.new(secret.encode("utf-8"), body, hashlib.sha256).hexdigest()


def verify_signature(body: bytes, signature: Optional[str], secret: str) -> bool:
    """Constant-time check; accepts a bare hex digest or ``sha256=<hex>``."""
    if not signature:
        return False
    provided = signature.strip()
    if provided.startswith("sha256="):
        provided = provided[len("sha256=") :]
    return hmac.compare_digest(compute_signature(body, secret), provided)


def parse_json_object(body: bytes) -> Dict[str, Any]:
    try:
        parsed = json.loads(body.decode("utf-8"))
    except (UnicodeDecodeError, json.JSONDecodeError):
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail={"message": "Body is not valid JSON", "code": "INVALID_JSON"},
        )
    if not isinstance(parsed, dict):
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail={"message": "Body must be a JSON object", "code": "INVALID_JSON"},
        )
    return parsed


def ack_from_result(result: ReconciliationResult) -> PaymentWebhookAck:
    return PaymentWebhookAck(
        outcome=result.outcome.value,
        booking_id=result.booking_id,
        booking_status=result.booking_status,
        payment_status=result.payment_status,
    )


@router.post("/payments", response_model=PaymentWebhookAck, response_model_by_alias=True)
async def handle_payment_webhook(
    request: Request,
    reconciler: PaymentReconciler = Depends(get_payment_reconciler),
) -> PaymentWebhookAck:
    """
    Reconcile one payment notification.

    Returns 2xx for every recorded outcome, including duplicates, stale and
    unmapped statuses, and anomalies. An unknown booking answers 404 so the
    provider redelivers once the booking's commit is visible.
    """
    body = await request.body()
    secret = settings.payment_webhook_secret.get_secret_value()
    if secret and not verify_signature(body, request.headers.get(SIGNATURE_HEADER), secret):
        logger.warning("Invalid payment webhook signature")
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail={"message": "Invalid webhook signature", "code": "INVALID_SIGNATURE"},
        )

    raw = parse_json_object(body)
    headers = dict(request.headers)
    try:
        payload = PaymentWebhookPayload.model_validate(raw)
    except ValidationError as exc:
        await asyncio.to_thread(
            reconciler.record_invalid_notification, raw, str(exc), headers
        )
        raise HTTPException(
            status_code=HTTP_422_UNPROCESSABLE,
            detail={
                "message": "Invalid payment notification",
                "code": "INVALID_PAYMENT_NOTIFICATION",
                "details": jsonable_encoder(exc.errors(include_context=False)),
            },
        )

    logger.info(
        "Payment notification %s for %s: %s",
        payload.provider_event_id,
        payload.booking_reference,
        payload.status,
    )
    try:
        result = await asyncio.to_thread(
            reconciler.handle_payment_notification, payload, raw, headers
        )
    except DomainException as e:
        handle_domain_exception(e)
    return ack_from_result(result)
