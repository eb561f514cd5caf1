# booking_engine/services/coupon_engine.py
"""
CouponEngine: coupon lookup, previews, redemption accounting and admin.

Eligibility and pricing are pure functions in ``domain.coupon_rules``; this
service feeds them database facts (coupon rows, per-user usage, purchase
history) and turns an accepted resolution into usage counters and redemption
rows inside the booking's transaction.
"""

from dataclasses import dataclass
import logging
from typing import List, Optional, Sequence

from sqlalchemy.orm import Session

from ..core.config import settings
from ..core.enums import CouponRejectionReason
from ..core.exceptions import (
    ConflictException,
    CouponRejectedException,
    NotFoundException,
    ValidationException,
)
from ..core.time_utils import utc_now
from ..domain import coupon_rules
from ..domain.coupon_rules import CouponContext, CouponResolution
from ..models.coupon import Coupon, CouponApplicableAsset
from ..monitoring.prometheus_metrics import prometheus_metrics
from ..repositories.booking_repository import BookingRepository
from ..repositories.coupon_repository import CouponRepository
from ..schemas.coupon import CouponCreate
from .base import BaseService

logger = logging.getLogger(__name__)

_CODE_GENERATION_ATTEMPTS = 5


@dataclass(frozen=True)
class CouponPreview:
    """Answer to "what would this coupon do to this order"."""

    code: str
    is_valid: bool
    order_value: int
    discount_amount: int = 0
    final_amount: Optional[int] = None
    reason: Optional[CouponRejectionReason] = None

    @property
    def message(self) -> Optional[str]:
        return coupon_rules.rejection_message(self.reason) if self.reason else None


class CouponEngine(BaseService):
    """Coupon operations backed by the database."""

    def __init__(
        self,
        db: Session,
        coupon_repository: Optional[CouponRepository] = None,
        booking_repository: Optional[BookingRepository] = None,
    ):
        super().__init__(db)
        self.repository = coupon_repository or CouponRepository(db)
        self.booking_repository = booking_repository or BookingRepository(db)

    @staticmethod
    def customer_user_key(user_id: Optional[str], email: Optional[str]) -> Optional[str]:
        """Identity used for per-user limits; guests are keyed by email."""
        if user_id:
            return f"user:{user_id}"
        if email:
            return f"email:{email.strip().lower()}"
        return None

    def build_context(
        self,
        order_value: int,
        *,
        user_id: Optional[str] = None,
        email: Optional[str] = None,
        asset_type: Optional[str] = None,
        asset_id: Optional[str] = None,
        has_purchase_history: Optional[bool] = None,
    ) -> CouponContext:
        if has_purchase_history is None and (user_id or email):
            has_purchase_history = self.booking_repository.has_purchase_history(
                user_id=user_id, email=email
            )
        return CouponContext(
            order_value=order_value,
            now=utc_now(),
            user_id=user_id,
            user_key=self.customer_user_key(user_id, email),
            asset_type=asset_type,
            asset_id=asset_id,
            has_purchase_history=has_purchase_history,
        )

    def resolve(self, codes: Sequence[str], ctx: CouponContext) -> CouponResolution:
        """Look the codes up and decide which ones count toward the order."""
        coupons = self.repository.get_many_by_codes(codes)
        requested = [(code, coupons.get(coupon_rules.normalize_code(code))) for code in codes]
        usage = {}
        if ctx.user_key:
            usage = self.repository.user_usage_counts(
                [coupon.id for coupon in coupons.values()], ctx.user_key
            )
        return coupon_rules.resolve(requested, ctx, usage)

    @BaseService.measure_operation("preview_coupon")
    def preview(
        self,
        code: str,
        *,
        order_value: int,
        user_id: Optional[str] = None,
        email: Optional[str] = None,
        asset_type: Optional[str] = None,
        asset_id: Optional[str] = None,
        has_purchase_history: Optional[bool] = None,
    ) -> CouponPreview:
        """Validate a single coupon against an order without redeeming it."""
        if order_value < 0:
            raise ValidationException("Order value cannot be negative", code="INVALID_ORDER_VALUE")
        ctx = self.build_context(
            order_value,
            user_id=user_id,
            email=email,
            asset_type=asset_type,
            asset_id=asset_id,
            has_purchase_history=has_purchase_history,
        )
        resolution = self.resolve([code], ctx)
        normalized = coupon_rules.normalize_code(code)
        if resolution.applied:
            applied = resolution.applied[0]
            return CouponPreview(
                code=applied.code,
                is_valid=True,
                order_value=order_value,
                discount_amount=applied.discount_amount,
                final_amount=order_value - applied.discount_amount,
            )
        reason = resolution.rejected[0].reason if resolution.rejected else None
        return CouponPreview(
            code=normalized, is_valid=False, order_value=order_value, reason=reason
        )

    # ------------------------------------------------------------ redemption
    def redeem(
        self,
        resolution: CouponResolution,
        *,
        booking_id: str,
        user_key: str,
        user_id: Optional[str] = None,
    ) -> None:
        """
        Count every applied coupon against its limits.

        Runs inside the caller's transaction; a lost race on a limit raises
        CouponRejectedException and the caller rolls the whole booking back.
        """
        for item in resolution.applied:
            coupon = item.coupon
            if not self.repository.try_increment_usage(coupon.id):
                prometheus_metrics.record_coupon_redemption("usage_limit")
                raise CouponRejectedException(
                    item.code,
                    CouponRejectionReason.USAGE_LIMIT_REACHED.value,
                    coupon_rules.rejection_message(CouponRejectionReason.USAGE_LIMIT_REACHED),
                )
            if not self.repository.try_increment_user_usage(
                coupon.id, user_key, coupon.user_usage_limit
            ):
                prometheus_metrics.record_coupon_redemption("user_usage_limit")
                raise CouponRejectedException(
                    item.code,
                    CouponRejectionReason.USER_USAGE_LIMIT_REACHED.value,
                    coupon_rules.rejection_message(
                        CouponRejectionReason.USER_USAGE_LIMIT_REACHED
                    ),
                )
            self.repository.create_redemption(
                coupon_id=coupon.id,
                booking_id=booking_id,
                user_key=user_key,
                user_id=user_id,
                discount_amount=item.discount_amount,
            )
            prometheus_metrics.record_coupon_redemption("applied")

    def release_for_booking(self, booking_id: str) -> int:
        """Undo a booking's redemptions inside the caller's transaction."""
        released = 0
        for redemption in self.repository.applied_redemptions_for_booking(booking_id):
            if not self.repository.mark_redemption_released(redemption.id):
                continue
            self.repository.decrement_usage(redemption.coupon_id)
            self.repository.decrement_user_usage(redemption.coupon_id, redemption.user_key)
            released += 1
        if released:
            prometheus_metrics.record_coupon_redemption("released")
            logger.info("Released %s coupon redemption(s) for booking %s", released, booking_id)
        return released

    # ----------------------------------------------------------------- admin
    def _unique_code(self, prefix: Optional[str]) -> str:
        for _ in range(_CODE_GENERATION_ATTEMPTS):
            candidate = coupon_rules.generate_coupon_code(prefix)
            if self.repository.get_by_code(candidate) is None:
                return candidate
        raise ConflictException("Could not generate a unique coupon code", code="CODE_EXHAUSTED")

    @BaseService.measure_operation("create_coupon")
    def create_coupon(self, data: CouponCreate) -> Coupon:
        """Validate and persist a new coupon."""
        code = coupon_rules.normalize_code(data.code) if data.code else self._unique_code(
            data.code_prefix
        )
        errors = coupon_rules.validate_definition(
            code=code,
            discount_type=data.discount_type.value,
            discount_value=data.discount_value,
            valid_from=data.valid_from,
            valid_until=data.valid_until,
            coupon_type=data.coupon_type,
            is_global=data.is_global,
            applicable_assets=data.applicable_assets,
            allowed_users=data.allowed_users,
            max_discount_amount=data.max_discount_amount,
            minimum_order_value=data.minimum_order_value,
            maximum_order_value=data.maximum_order_value,
            usage_limit=data.usage_limit,
            user_usage_limit=data.user_usage_limit,
            max_validity_days=settings.coupon_max_validity_days,
        )
        if errors:
            raise ValidationException(
                "Invalid coupon definition", code="INVALID_COUPON", details={"errors": errors}
            )
        if self.repository.get_by_code(code) is not None:
            raise ConflictException(
                f"Coupon {code} already exists", code="DUPLICATE_COUPON", details={"code": code}
            )

        with self.transaction():
            coupon = Coupon(
                code=code,
                name=data.name,
                description=data.description,
                discount_type=data.discount_type.value,
                discount_value=data.discount_value,
                max_discount_amount=data.max_discount_amount,
                minimum_order_value=data.minimum_order_value,
                maximum_order_value=data.maximum_order_value,
                usage_limit=data.usage_limit,
                user_usage_limit=data.user_usage_limit,
                usage_count=0,
                valid_from=data.valid_from,
                valid_until=data.valid_until,
                coupon_type=data.coupon_type,
                allowed_users=list(data.allowed_users),
                is_global=data.is_global,
                global_asset_types=[asset_type.value for asset_type in data.global_asset_types],
                stackable=data.stackable,
                is_active=data.is_active,
                created_by=data.created_by,
            )
            coupon.applicable_assets = [
                CouponApplicableAsset(asset_type=ref.asset_type.value, asset_id=ref.asset_id)
                for ref in data.applicable_assets
            ]
            self.db.add(coupon)
            self.db.flush()

        self.log_operation("create_coupon", coupon_id=coupon.id, code=coupon.code)
        return coupon

    def get_coupon(self, code: str) -> Coupon:
        coupon = self.repository.get_by_code(code)
        if coupon is None:
            raise NotFoundException(
                "Coupon not found", code="COUPON_NOT_FOUND", details={"code": code}
            )
        return coupon

    @BaseService.measure_operation("deactivate_coupon")
    def deactivate(self, code: str) -> Coupon:
        """Soft-deactivate a coupon; redeemed coupons are never deleted."""
        coupon = self.get_coupon(code)
        if coupon.is_active:
            with self.transaction():
                coupon.is_active = False
            self.log_operation("deactivate_coupon", coupon_id=coupon.id, code=coupon.code)
        return coupon

    def list_coupons(self, *, active_only: bool = False, limit: int = 100) -> List[Coupon]:
        return self.repository.list_coupons(active_only=active_only, limit=limit)
