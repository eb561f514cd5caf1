# booking_engine/core/enums.py
"""Shared enumerations for bookings, payments and coupons."""

from enum import Enum


class AssetType(str, Enum):
    """Kinds of bookable assets."""

    ACTIVITY = "activity"
    EVENT = "event"
    RESTAURANT = "restaurant"
    VEHICLE = "vehicle"
    ACCOMMODATION = "accommodation"
    PACKAGE = "package"


class BookingStatus(str, Enum):
    """Booking lifecycle states."""

    DRAFT = "draft"
    PAYMENT_PENDING = "payment_pending"
    AWAITING_CONFIRMATION = "awaiting_confirmation"
    CONFIRMED = "confirmed"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    CANCELED = "canceled"
    NO_SHOW = "no_show"
    EXPIRED = "expired"


class BookingTrigger(str, Enum):
    """Events that move a booking between states."""

    PAYMENT_REQUESTED = "payment_requested"
    PAYMENT_SUCCEEDED = "payment_succeeded"
    CONFIRMED = "confirmed"
    STARTED = "started"
    COMPLETED = "completed"
    HOLD_EXPIRED = "hold_expired"
    CANCELED = "canceled"
    PAYMENT_FAILED = "payment_failed"
    REFUNDED = "refunded"
    NO_SHOW = "no_show"


class PaymentStatus(str, Enum):
    """Normalized payment status across providers."""

    PENDING = "pending"
    PROCESSING = "processing"
    REQUIRES_CAPTURE = "requires_capture"
    AWAITING_PAYMENT_METHOD = "awaiting_payment_method"
    PAID = "paid"
    PARTIALLY_PAID = "partially_paid"
    FAILED = "failed"
    REFUNDED = "refunded"
    PARTIALLY_REFUNDED = "partially_refunded"
    CANCELED = "canceled"


class PaymentEventOutcome(str, Enum):
    """What the reconciler did with an ingested payment event."""

    APPLIED = "applied"
    RECORDED = "recorded"
    DUPLICATE = "duplicate"
    ANOMALY = "anomaly"
    STALE = "stale"
    UNMAPPED = "unmapped"


class HoldStatus(str, Enum):
    ACTIVE = "active"
    RELEASED = "released"


class DiscountType(str, Enum):
    PERCENTAGE = "percentage"
    FIXED_AMOUNT = "fixed_amount"


class CouponType(str, Enum):
    PUBLIC = "public"
    PRIVATE = "private"
    FIRST_PURCHASE = "first_purchase"
    RETURNING_CUSTOMER = "returning_customer"


class CouponStatus(str, Enum):
    """Presentation status derived from a coupon's flags, window and usage."""

    ACTIVE = "active"
    INACTIVE = "inactive"
    SCHEDULED = "scheduled"
    EXPIRED = "expired"
    USED_UP = "used_up"


class RedemptionStatus(str, Enum):
    APPLIED = "applied"
    RELEASED = "released"


class CouponRejectionReason(str, Enum):
    """Enumerated reasons a coupon was not counted, in check order."""

    INVALID_CODE_FORMAT = "invalid_code_format"
    NOT_FOUND = "not_found"
    INACTIVE = "inactive"
    NOT_YET_VALID = "not_yet_valid"
    EXPIRED = "expired"
    NOT_ALLOWED_FOR_USER = "not_allowed_for_user"
    PURCHASE_HISTORY_REQUIRED = "purchase_history_required"
    NOT_FIRST_PURCHASE = "not_first_purchase"
    NOT_RETURNING_CUSTOMER = "not_returning_customer"
    ASSET_NOT_APPLICABLE = "asset_not_applicable"
    BELOW_MINIMUM_ORDER = "below_minimum_order"
    ABOVE_MAXIMUM_ORDER = "above_maximum_order"
    USAGE_LIMIT_REACHED = "usage_limit_reached"
    USER_USAGE_LIMIT_REACHED = "user_usage_limit_reached"
    DUPLICATE_CODE = "duplicate_code"
    TYPE_CONFLICT = "type_conflict"
    STACKING_CONFLICT = "stacking_conflict"
    ORDER_FULLY_DISCOUNTED = "order_fully_discounted"


class WebhookEventStatus(str, Enum):
    RECEIVED = "received"
    PROCESSED = "processed"
    FAILED = "failed"
