"""
Coupon eligibility, discount arithmetic and multi-coupon resolution.

Everything here is a pure function over coupon-shaped objects (the ORM model
or anything with the same attributes); persistence and usage counters live in
CouponEngine / CouponRepository.

Resolution policy:
- each coupon is validated and priced independently against the original
  order value, so the result does not depend on the order codes are given in;
- at most one first_purchase and one returning_customer coupon count;
- two or more valid non-stackable coupons keep only the single largest
  discount among all valid coupons;
- one non-stackable coupon next to stackable ones keeps whichever side is
  larger, the non-stackable coupon winning ties;
- ties between coupons break by code, ascending;
- a total above the order value is clamped by trimming coupons in code order.
"""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from datetime import datetime, timedelta
from decimal import ROUND_HALF_UP, Decimal
import re
import secrets
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence, Tuple

from ..core.enums import CouponRejectionReason, CouponStatus, CouponType, DiscountType
from ..core.time_utils import as_utc

R = CouponRejectionReason

CODE_PATTERN = re.compile(r"^[A-Z0-9-]{3,20}$")
CODE_ALPHABET = "ABCDEFGHIJKLMNOPQRSTUVWXYZ0123456789"

_MESSAGES: Dict[CouponRejectionReason, str] = {
    R.INVALID_CODE_FORMAT: "Coupon codes use 3-20 letters, digits or dashes",
    R.NOT_FOUND: "Coupon not found",
    R.INACTIVE: "Coupon is not active",
    R.NOT_YET_VALID: "Coupon is not valid yet",
    R.EXPIRED: "Coupon has expired",
    R.NOT_ALLOWED_FOR_USER: "Coupon is not available for this customer",
    R.PURCHASE_HISTORY_REQUIRED: "Purchase history is required to use this coupon",
    R.NOT_FIRST_PURCHASE: "Coupon is only valid on a first purchase",
    R.NOT_RETURNING_CUSTOMER: "Coupon is only valid for returning customers",
    R.ASSET_NOT_APPLICABLE: "Coupon does not apply to this item",
    R.BELOW_MINIMUM_ORDER: "Order value is below the coupon minimum",
    R.ABOVE_MAXIMUM_ORDER: "Order value is above the coupon maximum",
    R.USAGE_LIMIT_REACHED: "Coupon usage limit reached",
    R.USER_USAGE_LIMIT_REACHED: "Coupon already used the maximum number of times",
    R.DUPLICATE_CODE: "Coupon code given more than once",
    R.TYPE_CONFLICT: "Only one coupon of this type can be used per order",
    R.STACKING_CONFLICT: "Coupon cannot be combined with the other coupons",
    R.ORDER_FULLY_DISCOUNTED: "Order is already fully discounted",
}


def rejection_message(reason: CouponRejectionReason) -> str:
    return _MESSAGES[reason]


@dataclass(frozen=True)
class CouponContext:
    """Facts about the order a coupon is checked against."""

    order_value: int
    now: datetime
    user_id: Optional[str] = None
    user_key: Optional[str] = None
    asset_type: Optional[str] = None
    asset_id: Optional[str] = None
    has_purchase_history: Optional[bool] = None


@dataclass(frozen=True)
class CouponEligibility:
    eligible: bool
    reason: Optional[CouponRejectionReason] = None

    @property
    def message(self) -> Optional[str]:
        return rejection_message(self.reason) if self.reason else None


@dataclass(frozen=True)
class AppliedCoupon:
    coupon: Any
    code: str
    discount_amount: int


@dataclass(frozen=True)
class RejectedCoupon:
    code: str
    reason: CouponRejectionReason

    @property
    def message(self) -> str:
        return rejection_message(self.reason)


@dataclass
class CouponResolution:
    order_value: int
    applied: List[AppliedCoupon] = field(default_factory=list)
    rejected: List[RejectedCoupon] = field(default_factory=list)

    @property
    def total_discount(self) -> int:
        return sum(item.discount_amount for item in self.applied)

    @property
    def final_amount(self) -> int:
        return self.order_value - self.total_discount


def normalize_code(code: str) -> str:
    return (code or "").strip().upper()


def is_valid_code_format(code: str) -> bool:
    return bool(CODE_PATTERN.match(code or ""))


def generate_coupon_code(prefix: Optional[str] = None, length: int = 8) -> str:
    """Random code, optionally ``PREFIX-XXXX``, always within the code format."""
    if prefix:
        head = normalize_code(prefix)
        body_length = max(4, min(length, 20) - len(head) - 1)
        body = "".join(secrets.choice(CODE_ALPHABET) for _ in range(body_length))
        return f"{head}-{body}"[:20]
    return "".join(secrets.choice(CODE_ALPHABET) for _ in range(max(3, min(length, 20))))


# ---------------------------------------------------------------- eligibility


def _asset_applicable(coupon: Any, ctx: CouponContext) -> bool:
    if ctx.asset_type is None and ctx.asset_id is None:
        return True
    if coupon.is_global:
        types = list(coupon.global_asset_types or [])
        return not types or ctx.asset_type in types
    for entry in coupon.applicable_assets or []:
        if not entry.is_active or entry.asset_id != ctx.asset_id:
            continue
        if ctx.asset_type is None or entry.asset_type == ctx.asset_type:
            return True
    return False


def _type_rejection(coupon: Any, ctx: CouponContext) -> Optional[CouponRejectionReason]:
    coupon_type = CouponType(coupon.coupon_type)
    if coupon_type == CouponType.PRIVATE:
        if not ctx.user_id or ctx.user_id not in (coupon.allowed_users or []):
            return R.NOT_ALLOWED_FOR_USER
    elif coupon_type == CouponType.FIRST_PURCHASE:
        if ctx.has_purchase_history is None:
            return R.PURCHASE_HISTORY_REQUIRED
        if ctx.has_purchase_history:
            return R.NOT_FIRST_PURCHASE
    elif coupon_type == CouponType.RETURNING_CUSTOMER:
        if ctx.has_purchase_history is None:
            return R.PURCHASE_HISTORY_REQUIRED
        if not ctx.has_purchase_history:
            return R.NOT_RETURNING_CUSTOMER
    return None


def validate(coupon: Any, ctx: CouponContext, user_usage_count: int = 0) -> CouponEligibility:
    """
    Check one coupon against an order; the first failing check wins.

    Order: active flag, validity window, coupon type, asset, order bounds,
    global usage, per-user usage. Code syntax and existence are checked by
    the caller before a coupon object exists.
    """
    if not coupon.is_active:
        return CouponEligibility(False, R.INACTIVE)

    now = as_utc(ctx.now)
    if now < as_utc(coupon.valid_from):
        return CouponEligibility(False, R.NOT_YET_VALID)
    if now > as_utc(coupon.valid_until):
        return CouponEligibility(False, R.EXPIRED)

    type_reason = _type_rejection(coupon, ctx)
    if type_reason is not None:
        return CouponEligibility(False, type_reason)

    if not _asset_applicable(coupon, ctx):
        return CouponEligibility(False, R.ASSET_NOT_APPLICABLE)

    if coupon.minimum_order_value is not None and ctx.order_value < coupon.minimum_order_value:
        return CouponEligibility(False, R.BELOW_MINIMUM_ORDER)
    if coupon.maximum_order_value is not None and ctx.order_value > coupon.maximum_order_value:
        return CouponEligibility(False, R.ABOVE_MAXIMUM_ORDER)

    if coupon.usage_limit is not None and (coupon.usage_count or 0) >= coupon.usage_limit:
        return CouponEligibility(False, R.USAGE_LIMIT_REACHED)
    if (
        coupon.user_usage_limit is not None
        and ctx.user_key is not None
        and user_usage_count >= coupon.user_usage_limit
    ):
        return CouponEligibility(False, R.USER_USAGE_LIMIT_REACHED)

    return CouponEligibility(True)


# ------------------------------------------------------------------- pricing


def compute_discount(coupon: Any, order_value: int) -> int:
    """Discount in minor units; never negative and never above the order."""
    if order_value <= 0:
        return 0
    value = Decimal(str(coupon.discount_value))
    if DiscountType(coupon.discount_type) == DiscountType.PERCENTAGE:
        raw = (Decimal(order_value) * value / Decimal(100)).quantize(
            Decimal("1"), rounding=ROUND_HALF_UP
        )
        amount = int(raw)
        if coupon.max_discount_amount is not None:
            amount = min(amount, int(coupon.max_discount_amount))
    else:
        amount = int(value.to_integral_value(rounding=ROUND_HALF_UP))
    return max(0, min(amount, order_value))


def _best_first(item: AppliedCoupon) -> Tuple[int, str]:
    return (-item.discount_amount, item.code)


def _conflict_winner(item: AppliedCoupon) -> Tuple[int, bool, str]:
    # Equal discounts go to the non-stackable coupon, then to the lower code.
    return (-item.discount_amount, bool(item.coupon.stackable), item.code)


def _by_code(items: Iterable[AppliedCoupon]) -> List[AppliedCoupon]:
    return sorted(items, key=lambda item: item.code)


def _resolve_type_conflicts(
    valid: List[AppliedCoupon], rejected: List[RejectedCoupon]
) -> List[AppliedCoupon]:
    dropped: set[str] = set()
    for coupon_type in (CouponType.FIRST_PURCHASE, CouponType.RETURNING_CUSTOMER):
        group = [item for item in valid if item.coupon.coupon_type == coupon_type.value]
        if len(group) <= 1:
            continue
        winner = min(group, key=_best_first)
        for item in group:
            if item is not winner:
                dropped.add(item.code)
                rejected.append(RejectedCoupon(item.code, R.TYPE_CONFLICT))
    return [item for item in valid if item.code not in dropped]


def _resolve_stacking(
    valid: List[AppliedCoupon], rejected: List[RejectedCoupon], order_value: int
) -> List[AppliedCoupon]:
    non_stackable = [item for item in valid if not item.coupon.stackable]
    stackable = [item for item in valid if item.coupon.stackable]

    if len(non_stackable) >= 2:
        keep = [min(valid, key=_conflict_winner)]
    elif len(non_stackable) == 1 and stackable:
        single = non_stackable[0]
        stacked_total = min(sum(item.discount_amount for item in stackable), order_value)
        keep = [single] if single.discount_amount >= stacked_total else stackable
    else:
        keep = valid

    kept_codes = {item.code for item in keep}
    for item in valid:
        if item.code not in kept_codes:
            rejected.append(RejectedCoupon(item.code, R.STACKING_CONFLICT))
    return _by_code(keep)


def _clamp_to_order(
    applied: List[AppliedCoupon], rejected: List[RejectedCoupon], order_value: int
) -> List[AppliedCoupon]:
    if sum(item.discount_amount for item in applied) <= order_value:
        return applied
    remaining = order_value
    clamped: List[AppliedCoupon] = []
    for item in applied:
        amount = min(item.discount_amount, remaining)
        if amount <= 0:
            rejected.append(RejectedCoupon(item.code, R.ORDER_FULLY_DISCOUNTED))
            continue
        clamped.append(replace(item, discount_amount=amount))
        remaining -= amount
    return clamped


def resolve(
    requested: Sequence[Tuple[str, Optional[Any]]],
    ctx: CouponContext,
    user_usage_counts: Optional[Mapping[str, int]] = None,
) -> CouponResolution:
    """
    Decide which of the requested coupons count and for how much.

    Args:
        requested: (code as typed, coupon or None when the lookup missed)
        ctx: Order facts shared by all coupons
        user_usage_counts: Per coupon id, how often ``ctx.user_key`` used it
    """
    usage = user_usage_counts or {}
    resolution = CouponResolution(order_value=ctx.order_value)
    valid: List[AppliedCoupon] = []
    seen: set[str] = set()

    for raw_code, coupon in requested:
        code = normalize_code(raw_code)
        if not is_valid_code_format(code):
            resolution.rejected.append(RejectedCoupon(code, R.INVALID_CODE_FORMAT))
            continue
        if code in seen:
            resolution.rejected.append(RejectedCoupon(code, R.DUPLICATE_CODE))
            continue
        seen.add(code)
        if coupon is None:
            resolution.rejected.append(RejectedCoupon(code, R.NOT_FOUND))
            continue
        eligibility = validate(coupon, ctx, usage.get(coupon.id, 0))
        if eligibility.reason is not None:
            resolution.rejected.append(RejectedCoupon(code, eligibility.reason))
            continue
        valid.append(AppliedCoupon(coupon, code, compute_discount(coupon, ctx.order_value)))

    valid = _resolve_type_conflicts(valid, resolution.rejected)
    applied = _resolve_stacking(valid, resolution.rejected, ctx.order_value)
    resolution.applied = _clamp_to_order(applied, resolution.rejected, ctx.order_value)
    return resolution


# --------------------------------------------------------------- presentation


def coupon_status(coupon: Any, now: datetime) -> CouponStatus:
    current = as_utc(now)
    if not coupon.is_active:
        return CouponStatus.INACTIVE
    if current > as_utc(coupon.valid_until):
        return CouponStatus.EXPIRED
    if coupon.usage_limit is not None and (coupon.usage_count or 0) >= coupon.usage_limit:
        return CouponStatus.USED_UP
    if current < as_utc(coupon.valid_from):
        return CouponStatus.SCHEDULED
    return CouponStatus.ACTIVE


def is_expiring_soon(coupon: Any, now: datetime, days: int = 3) -> bool:
    current = as_utc(now)
    valid_until = as_utc(coupon.valid_until)
    return current < valid_until <= current + timedelta(days=days)


def format_minor(amount: int) -> str:
    return f"{Decimal(amount) / 100:.2f}"


def describe(coupon: Any) -> str:
    """Short human readable summary, e.g. ``10% off (max 50.00)``."""
    value = Decimal(str(coupon.discount_value))
    if DiscountType(coupon.discount_type) == DiscountType.PERCENTAGE:
        text = f"{value.normalize():f}% off"
        if coupon.max_discount_amount is not None:
            text += f" (max {format_minor(coupon.max_discount_amount)})"
    else:
        text = f"{format_minor(int(value))} off"
    if coupon.minimum_order_value:
        text += f" on orders from {format_minor(coupon.minimum_order_value)}"
    return text


# ----------------------------------------------------------------- definition


def validate_definition(
    *,
    code: str,
    discount_type: str,
    discount_value: Decimal,
    valid_from: datetime,
    valid_until: datetime,
    coupon_type: str,
    is_global: bool,
    applicable_assets: Sequence[Any],
    allowed_users: Sequence[str],
    max_discount_amount: Optional[int] = None,
    minimum_order_value: Optional[int] = None,
    maximum_order_value: Optional[int] = None,
    usage_limit: Optional[int] = None,
    user_usage_limit: Optional[int] = None,
    max_validity_days: int = 730,
) -> List[str]:
    """Return every problem with a new coupon definition; empty means valid."""
    errors: List[str] = []
    if not is_valid_code_format(normalize_code(code)):
        errors.append("code must be 3-20 characters of A-Z, 0-9 or '-'")

    if discount_value <= 0:
        errors.append("discount_value must be greater than zero")
    if discount_type == DiscountType.PERCENTAGE.value:
        if discount_value > 100:
            errors.append("percentage discounts cannot exceed 100")
    elif discount_value != discount_value.to_integral_value():
        errors.append("fixed discounts are whole minor units")
    if max_discount_amount is not None and max_discount_amount <= 0:
        errors.append("max_discount_amount must be greater than zero")

    start = as_utc(valid_from)
    end = as_utc(valid_until)
    if start >= end:
        errors.append("valid_from must be before valid_until")
    elif end - start > timedelta(days=max_validity_days):
        errors.append(f"validity window cannot exceed {max_validity_days} days")

    if usage_limit is not None and usage_limit <= 0:
        errors.append("usage_limit must be greater than zero")
    if user_usage_limit is not None and user_usage_limit <= 0:
        errors.append("user_usage_limit must be greater than zero")
    if (
        usage_limit is not None
        and user_usage_limit is not None
        and user_usage_limit > usage_limit
    ):
        errors.append("user_usage_limit cannot exceed usage_limit")

    if (
        minimum_order_value is not None
        and maximum_order_value is not None
        and minimum_order_value > maximum_order_value
    ):
        errors.append("minimum_order_value cannot exceed maximum_order_value")

    if not is_global and not applicable_assets:
        errors.append("coupon must be global or list at least one applicable asset")
    if coupon_type == CouponType.PRIVATE.value and not allowed_users:
        errors.append("private coupons need at least one allowed user")
    return errors
