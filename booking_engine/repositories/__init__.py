"""Repositories: data access only, transactions belong to services."""

from .base_repository import BaseRepository
from .booking_repository import BookingRepository
from .capacity_repository import CapacityRepository
from .coupon_repository import CouponRepository
from .notification_outbox_repository import NotificationOutboxRepository
from .payment_event_repository import PaymentEventRepository
from .webhook_ledger_repository import WebhookLedgerRepository

__all__ = [
    "BaseRepository",
    "BookingRepository",
    "CapacityRepository",
    "CouponRepository",
    "NotificationOutboxRepository",
    "PaymentEventRepository",
    "WebhookLedgerRepository",
]
