"""
SQLAlchemy models for the booking engine.

Importing this package registers every table on ``Base.metadata``.
"""

from .bookable_asset import BookableAsset
from .booking import BookingCoupon, BookingRecord, BookingTransition
from .capacity import CapacityHold, CapacityHoldLine, CapacitySlot
from .coupon import Coupon, CouponApplicableAsset, CouponRedemption, CouponUserUsage
from .notification_outbox import NotificationOutboxEntry, OutboxStatus
from .payment_event import PaymentEvent
from .webhook_ledger import WebhookLedgerEntry

__all__ = [
    "BookableAsset",
    "BookingCoupon",
    "BookingRecord",
    "BookingTransition",
    "CapacityHold",
    "CapacityHoldLine",
    "CapacitySlot",
    "Coupon",
    "CouponApplicableAsset",
    "CouponRedemption",
    "CouponUserUsage",
    "NotificationOutboxEntry",
    "OutboxStatus",
    "PaymentEvent",
    "WebhookLedgerEntry",
]
