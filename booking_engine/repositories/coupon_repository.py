# booking_engine/repositories/coupon_repository.py
"""
Coupon persistence and atomic usage accounting.

Usage counters follow the same rule as capacity counters: a conditional
UPDATE with the ceiling in its WHERE clause, judged by affected rows.
"""

from datetime import datetime
from typing import Dict, Iterable, List, Optional

from sqlalchemy import func, select, update
from sqlalchemy.orm import Session

from ..core.enums import RedemptionStatus
from ..core.time_utils import utc_now
from ..core.ulid_helper import generate_ulid
from ..models.coupon import Coupon, CouponRedemption, CouponUserUsage
from .base_repository import BaseRepository


class CouponRepository(BaseRepository[Coupon]):
    """Data access for coupons, redemptions and per-user usage."""

    def __init__(self, db: Session):
        super().__init__(db, Coupon)

    # ---------------------------------------------------------------- lookups
    def get_by_code(self, code: str) -> Optional[Coupon]:
        return self.db.execute(
            select(Coupon).where(Coupon.code == code.strip().upper())
        ).scalar_one_or_none()

    def get_many_by_codes(self, codes: Iterable[str]) -> Dict[str, Coupon]:
        wanted = {code.strip().upper() for code in codes if code}
        if not wanted:
            return {}
        rows = self.db.execute(select(Coupon).where(Coupon.code.in_(wanted))).scalars()
        return {coupon.code: coupon for coupon in rows}

    def list_coupons(self, *, active_only: bool = False, limit: int = 100) -> List[Coupon]:
        stmt = select(Coupon).order_by(Coupon.created_at.desc(), Coupon.code.asc()).limit(limit)
        if active_only:
            stmt = stmt.where(Coupon.is_active.is_(True))
        return list(self.db.execute(stmt).scalars())

    def user_usage_counts(self, coupon_ids: Iterable[str], user_key: str) -> Dict[str, int]:
        ids = list(coupon_ids)
        if not ids:
            return {}
        rows = self.db.execute(
            select(CouponUserUsage.coupon_id, CouponUserUsage.usage_count).where(
                CouponUserUsage.coupon_id.in_(ids), CouponUserUsage.user_key == user_key
            )
        )
        return {coupon_id: count for coupon_id, count in rows}

    # --------------------------------------------------------------- counters
    def try_increment_usage(self, coupon_id: str) -> bool:
        stmt = (
            update(Coupon)
            .where(
                Coupon.id == coupon_id,
                (Coupon.usage_limit.is_(None)) | (Coupon.usage_count < Coupon.usage_limit),
            )
            .values(usage_count=Coupon.usage_count + 1)
        )
        return self.db.execute(stmt).rowcount == 1

    def decrement_usage(self, coupon_id: str) -> bool:
        stmt = (
            update(Coupon)
            .where(Coupon.id == coupon_id, Coupon.usage_count > 0)
            .values(usage_count=Coupon.usage_count - 1)
        )
        return self.db.execute(stmt).rowcount == 1

    def try_increment_user_usage(
        self, coupon_id: str, user_key: str, limit: Optional[int]
    ) -> bool:
        self._insert_ignore(
            CouponUserUsage,
            {"id": generate_ulid(), "coupon_id": coupon_id, "user_key": user_key, "usage_count": 0},
            ["coupon_id", "user_key"],
        )
        conditions = [CouponUserUsage.coupon_id == coupon_id, CouponUserUsage.user_key == user_key]
        if limit is not None:
            conditions.append(CouponUserUsage.usage_count < limit)
        stmt = (
            update(CouponUserUsage)
            .where(*conditions)
            .values(usage_count=CouponUserUsage.usage_count + 1)
        )
        return self.db.execute(stmt).rowcount == 1

    def decrement_user_usage(self, coupon_id: str, user_key: str) -> bool:
        stmt = (
            update(CouponUserUsage)
            .where(
                CouponUserUsage.coupon_id == coupon_id,
                CouponUserUsage.user_key == user_key,
                CouponUserUsage.usage_count > 0,
            )
            .values(usage_count=CouponUserUsage.usage_count - 1)
        )
        return self.db.execute(stmt).rowcount == 1

    # ------------------------------------------------------------ redemptions
    def create_redemption(
        self,
        *,
        coupon_id: str,
        booking_id: str,
        user_key: str,
        user_id: Optional[str],
        discount_amount: int,
    ) -> CouponRedemption:
        redemption = CouponRedemption(
            coupon_id=coupon_id,
            booking_id=booking_id,
            user_key=user_key,
            user_id=user_id,
            discount_amount=discount_amount,
            status=RedemptionStatus.APPLIED.value,
            applied_at=utc_now(),
        )
        self.db.add(redemption)
        self.db.flush()
        return redemption

    def applied_redemptions_for_booking(self, booking_id: str) -> List[CouponRedemption]:
        return list(
            self.db.execute(
                select(CouponRedemption).where(
                    CouponRedemption.booking_id == booking_id,
                    CouponRedemption.status == RedemptionStatus.APPLIED.value,
                )
            ).scalars()
        )

    def mark_redemption_released(self, redemption_id: str, at: Optional[datetime] = None) -> bool:
        stmt = (
            update(CouponRedemption)
            .where(
                CouponRedemption.id == redemption_id,
                CouponRedemption.status == RedemptionStatus.APPLIED.value,
            )
            .values(status=RedemptionStatus.RELEASED.value, released_at=at or utc_now())
        )
        return self.db.execute(stmt).rowcount == 1

    def count_applied_redemptions(self, coupon_id: str) -> int:
        return int(
            self.db.execute(
                select(func.count(CouponRedemption.id)).where(
                    CouponRedemption.coupon_id == coupon_id,
                    CouponRedemption.status == RedemptionStatus.APPLIED.value,
                )
            ).scalar_one()
        )
