"""
Translate Stripe webhook events into normalized payment notifications.

Only payment-affecting events are translated; everything else returns None
and is acknowledged without touching a booking.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Callable, Dict, Mapping, Optional

from ..schemas.payment_webhook import PaymentWebhookPayload

STRIPE_PROVIDER = "stripe"

# PaymentIntent events carry their outcome in the event type.
_PAYMENT_INTENT_STATUSES: Dict[str, str] = {
    "payment_intent.succeeded": "succeeded",
    "payment_intent.payment_failed": "payment_failed",
    "payment_intent.canceled": "canceled",
    "payment_intent.processing": "processing",
    "payment_intent.requires_action": "requires_action",
    "payment_intent.amount_capturable_updated": "requires_capture",
}


def _booking_reference(obj: Mapping[str, Any], fallback: Optional[str]) -> Optional[str]:
    metadata = obj.get("metadata") or {}
    return metadata.get("booking_id") or obj.get("client_reference_id") or fallback


def _timestamp(event: Mapping[str, Any]) -> Optional[datetime]:
    created = event.get("created")
    if created is None:
        return None
    return datetime.fromtimestamp(int(created), tz=timezone.utc)


def _from_payment_intent(
    event: Mapping[str, Any], obj: Mapping[str, Any]
) -> Optional[Dict[str, Any]]:
    status = _PAYMENT_INTENT_STATUSES[event["type"]]
    amount = obj.get("amount_received") if status == "succeeded" else obj.get("amount")
    return {
        "provider_payment_id": obj.get("id"),
        "booking_reference": _booking_reference(obj, obj.get("id")),
        "status": status,
        "amount": amount,
        "currency": obj.get("currency"),
    }


def _from_checkout_session(
    event: Mapping[str, Any], obj: Mapping[str, Any]
) -> Optional[Dict[str, Any]]:
    payment_status = obj.get("payment_status")
    if payment_status == "paid":
        status = "paid"
    elif payment_status == "unpaid":
        status = "pending"
    else:
        return None
    return {
        "provider_payment_id": obj.get("payment_intent"),
        "booking_reference": _booking_reference(obj, obj.get("payment_intent")),
        "status": status,
        "amount": obj.get("amount_total"),
        "currency": obj.get("currency"),
    }


def _from_charge_refund(
    event: Mapping[str, Any], obj: Mapping[str, Any]
) -> Optional[Dict[str, Any]]:
    amount = obj.get("amount") or 0
    refunded = obj.get("amount_refunded") or 0
    status = "refunded" if obj.get("refunded") or refunded >= amount else "partially_refunded"
    return {
        "provider_payment_id": obj.get("payment_intent"),
        "booking_reference": _booking_reference(obj, obj.get("payment_intent")),
        "status": status,
        "amount": refunded,
        "currency": obj.get("currency"),
    }


_HANDLERS: Dict[str, Callable[[Mapping[str, Any], Mapping[str, Any]], Optional[Dict[str, Any]]]] = {
    **{event_type: _from_payment_intent for event_type in _PAYMENT_INTENT_STATUSES},
    "checkout.session.completed": _from_checkout_session,
    "checkout.session.async_payment_succeeded": _from_checkout_session,
    "checkout.session.async_payment_failed": lambda event, obj: {
        "provider_payment_id": obj.get("payment_intent"),
        "booking_reference": _booking_reference(obj, obj.get("payment_intent")),
        "status": "failed",
        "amount": obj.get("amount_total"),
        "currency": obj.get("currency"),
    },
    "charge.refunded": _from_charge_refund,
}


def is_payment_event(event_type: str) -> bool:
    return event_type in _HANDLERS


def normalize_stripe_event(event: Mapping[str, Any]) -> Optional[PaymentWebhookPayload]:
    """
    Build a PaymentWebhookPayload from a Stripe event dict.

    Returns None for event types that do not affect a booking's payment, or
    when the event cannot be tied to any booking reference.
    """
    event_type = event.get("type") or ""
    handler = _HANDLERS.get(event_type)
    if handler is None:
        return None
    obj = (event.get("data") or {}).get("object") or {}
    fields = handler(event, obj)
    if not fields or not fields.get("booking_reference"):
        return None
    return PaymentWebhookPayload(
        provider_event_id=event["id"],
        timestamp=_timestamp(event),
        provider=STRIPE_PROVIDER,
        **fields,
    )
