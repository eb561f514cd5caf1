"""Provider payment status vocabulary and its mapping onto PaymentStatus."""

from __future__ import annotations

from typing import Dict, Optional

from ..core.enums import BookingTrigger, PaymentStatus

P = PaymentStatus

# Native values, Stripe PaymentIntent / Charge statuses and Mercado Pago statuses.
PROVIDER_TO_PAYMENT_STATUS: Dict[str, PaymentStatus] = {
    # native
    "pending": P.PENDING,
    "processing": P.PROCESSING,
    "requires_capture": P.REQUIRES_CAPTURE,
    "awaiting_payment_method": P.AWAITING_PAYMENT_METHOD,
    "paid": P.PAID,
    "partially_paid": P.PARTIALLY_PAID,
    "failed": P.FAILED,
    "refunded": P.REFUNDED,
    "partially_refunded": P.PARTIALLY_REFUNDED,
    "canceled": P.CANCELED,
    # stripe
    "succeeded": P.PAID,
    "requires_payment_method": P.AWAITING_PAYMENT_METHOD,
    "requires_action": P.PENDING,
    "requires_confirmation": P.PENDING,
    "payment_failed": P.FAILED,
    # mercado pago
    "approved": P.PAID,
    "authorized": P.REQUIRES_CAPTURE,
    "in_process": P.PROCESSING,
    "in_mediation": P.PROCESSING,
    "rejected": P.FAILED,
    "cancelled": P.CANCELED,
    "charged_back": P.REFUNDED,
}

# Informational statuses rank below settled ones; an event may only move the
# recorded payment status sideways or up, never back down.
PAYMENT_STATUS_RANK: Dict[PaymentStatus, int] = {
    P.PENDING: 0,
    P.PROCESSING: 0,
    P.REQUIRES_CAPTURE: 0,
    P.AWAITING_PAYMENT_METHOD: 0,
    P.PAID: 1,
    P.PARTIALLY_PAID: 1,
    P.FAILED: 1,
    P.CANCELED: 1,
    P.PARTIALLY_REFUNDED: 2,
    P.REFUNDED: 3,
}

# Booking trigger fired by a payment status; statuses not listed only update
# the booking's payment_status.
PAYMENT_STATUS_TRIGGERS: Dict[PaymentStatus, BookingTrigger] = {
    P.PAID: BookingTrigger.PAYMENT_SUCCEEDED,
    P.PARTIALLY_PAID: BookingTrigger.PAYMENT_SUCCEEDED,
    P.FAILED: BookingTrigger.PAYMENT_FAILED,
    P.CANCELED: BookingTrigger.PAYMENT_FAILED,
    P.REFUNDED: BookingTrigger.REFUNDED,
    P.PARTIALLY_REFUNDED: BookingTrigger.REFUNDED,
}


def map_provider_status(raw_status: Optional[str]) -> Optional[PaymentStatus]:
    """Map a provider status string to PaymentStatus; None when unknown."""
    if not raw_status:
        return None
    return PROVIDER_TO_PAYMENT_STATUS.get(raw_status.strip().lower())


def status_rank(status: Optional[str]) -> int:
    if not status:
        return -1
    return PAYMENT_STATUS_RANK.get(PaymentStatus(status), -1)
