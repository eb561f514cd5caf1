# booking_engine/models/coupon.py
"""
Coupon models.

``usage_count`` on Coupon and CouponUserUsage are counters that are only ever
changed by conditional UPDATE statements in CouponRepository; never assign
them directly once a coupon is live.
"""

from datetime import datetime, timezone

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Column,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Text,
    UniqueConstraint,
    func,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import relationship
from sqlalchemy.types import JSON

from ..core.enums import CouponType, DiscountType, RedemptionStatus
from ..core.ulid_helper import generate_ulid
from ..database import Base


def _now_utc() -> datetime:
    return datetime.now(timezone.utc)


class Coupon(Base):
    """
    Discount instrument.

    Attributes:
        discount_value: Percent for percentage coupons, minor units for fixed
        max_discount_amount: Cap for percentage coupons, minor units
        is_global: Applies to every asset (optionally narrowed by
            ``global_asset_types``) instead of the ``applicable_assets`` list
        allowed_users: User ids allowed to use a private coupon
    """

    __tablename__ = "coupons"

    id = Column(String(26), primary_key=True, default=generate_ulid)
    code = Column(String(20), nullable=False, unique=True)
    name = Column(String(120), nullable=True)
    description = Column(Text, nullable=True)
    discount_type = Column(String(20), nullable=False, default=DiscountType.PERCENTAGE.value)
    discount_value = Column(Numeric(12, 2), nullable=False)
    max_discount_amount = Column(Integer, nullable=True)
    minimum_order_value = Column(Integer, nullable=True)
    maximum_order_value = Column(Integer, nullable=True)
    usage_limit = Column(Integer, nullable=True)
    user_usage_limit = Column(Integer, nullable=True)
    usage_count = Column(Integer, nullable=False, default=0)
    valid_from = Column(DateTime(timezone=True), nullable=False)
    valid_until = Column(DateTime(timezone=True), nullable=False)
    coupon_type = Column(String(30), nullable=False, default=CouponType.PUBLIC.value)
    allowed_users = Column(
        JSONB(astext_type=Text()).with_variant(JSON(), "sqlite"),
        nullable=False,
        default=list,
    )
    is_global = Column(Boolean, nullable=False, default=False)
    global_asset_types = Column(
        JSONB(astext_type=Text()).with_variant(JSON(), "sqlite"),
        nullable=False,
        default=list,
    )
    stackable = Column(Boolean, nullable=False, default=False)
    is_active = Column(Boolean, nullable=False, default=True)
    created_by = Column(String(64), nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())
    updated_at = Column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
        onupdate=func.now(),
    )

    applicable_assets = relationship(
        "CouponApplicableAsset",
        back_populates="coupon",
        cascade="all, delete-orphan",
        lazy="selectin",
    )

    __table_args__ = (
        CheckConstraint("discount_value > 0", name="ck_coupons_discount_value"),
        CheckConstraint("usage_count >= 0", name="ck_coupons_usage_count"),
        CheckConstraint(
            "usage_limit IS NULL OR usage_count <= usage_limit",
            name="ck_coupons_usage_ceiling",
        ),
        CheckConstraint("valid_from < valid_until", name="ck_coupons_window"),
    )

    def __repr__(self) -> str:
        return f"<Coupon {self.code} {self.discount_type}={self.discount_value}>"


class CouponApplicableAsset(Base):
    """Allow-list entry for a non-global coupon."""

    __tablename__ = "coupon_applicable_assets"

    id = Column(String(26), primary_key=True, default=generate_ulid)
    coupon_id = Column(String(26), ForeignKey("coupons.id", ondelete="CASCADE"), nullable=False)
    asset_type = Column(String(20), nullable=False)
    asset_id = Column(String(26), nullable=False)
    is_active = Column(Boolean, nullable=False, default=True)

    coupon = relationship("Coupon", back_populates="applicable_assets")

    __table_args__ = (
        UniqueConstraint("coupon_id", "asset_type", "asset_id", name="uq_coupon_asset"),
        Index("ix_coupon_applicable_assets_asset", "asset_type", "asset_id"),
    )


class CouponRedemption(Base):
    """
    Redemption fact written with the booking that used the coupon.

    Rows are never deleted; releasing a redemption flips its status so the
    audit trail survives while usage counters give the slot back.
    """

    __tablename__ = "coupon_redemptions"

    id = Column(String(26), primary_key=True, default=generate_ulid)
    coupon_id = Column(String(26), ForeignKey("coupons.id"), nullable=False, index=True)
    booking_id = Column(String(26), ForeignKey("bookings.id"), nullable=False, index=True)
    user_key = Column(String(280), nullable=False, index=True)
    user_id = Column(String(64), nullable=True)
    discount_amount = Column(Integer, nullable=False)
    status = Column(String(20), nullable=False, default=RedemptionStatus.APPLIED.value)
    applied_at = Column(DateTime(timezone=True), nullable=False, default=_now_utc)
    released_at = Column(DateTime(timezone=True), nullable=True)

    __table_args__ = (
        UniqueConstraint("coupon_id", "booking_id", name="uq_coupon_redemption_booking"),
    )


class CouponUserUsage(Base):
    """Per-user usage counter backing ``user_usage_limit``."""

    __tablename__ = "coupon_user_usage"

    id = Column(String(26), primary_key=True, default=generate_ulid)
    coupon_id = Column(String(26), ForeignKey("coupons.id", ondelete="CASCADE"), nullable=False)
    user_key = Column(String(280), nullable=False)
    usage_count = Column(Integer, nullable=False, default=0)

    __table_args__ = (
        UniqueConstraint("coupon_id", "user_key", name="uq_coupon_user_usage"),
        CheckConstraint("usage_count >= 0", name="ck_coupon_user_usage_count"),
    )
