# booking_engine/models/booking.py
"""
Booking models.

A BookingRecord is created for every reservation attempt regardless of asset
type. Variant specific input (rooms, pickup location, ...) is kept verbatim in
``details`` while the columns hold what the lifecycle needs: amounts, status,
schedule and the capacity hold.
"""

import logging
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from sqlalchemy import (
    CheckConstraint,
    Column,
    Date,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    Time,
    func,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import relationship
from sqlalchemy.types import JSON

from ..core.enums import BookingStatus, PaymentStatus
from ..core.ulid_helper import generate_ulid
from ..database import Base

logger = logging.getLogger(__name__)


def _now_utc() -> datetime:
    return datetime.now(timezone.utc)


# Audit column stamped when a booking enters each status.
STATUS_TIMESTAMP_COLUMNS: Dict[BookingStatus, str] = {
    BookingStatus.PAYMENT_PENDING: "payment_requested_at",
    BookingStatus.AWAITING_CONFIRMATION: "paid_at",
    BookingStatus.CONFIRMED: "confirmed_at",
    BookingStatus.IN_PROGRESS: "started_at",
    BookingStatus.COMPLETED: "completed_at",
    BookingStatus.CANCELED: "canceled_at",
    BookingStatus.EXPIRED: "expired_at",
    BookingStatus.NO_SHOW: "no_show_at",
}


class BookingRecord(Base):
    """
    One reservation attempt for any asset type.

    ``version`` is SQLAlchemy's version counter: every flush checks it, so a
    transition computed from a stale read fails with StaleDataError instead of
    overwriting a concurrent change.
    """

    __tablename__ = "bookings"

    id = Column(String(26), primary_key=True, default=generate_ulid)
    asset_type = Column(String(20), nullable=False, index=True)
    asset_id = Column(String(26), ForeignKey("bookable_assets.id"), nullable=False, index=True)

    # Customer contact
    customer_name = Column(String(200), nullable=False)
    customer_email = Column(String(254), nullable=False, index=True)
    customer_phone = Column(String(40), nullable=True)
    customer_user_id = Column(String(64), nullable=True, index=True)

    # What and when
    quantity = Column(Integer, nullable=False)
    scheduled_date = Column(Date, nullable=True)
    scheduled_time = Column(Time, nullable=True)
    end_date = Column(Date, nullable=True)
    scheduled_start_at = Column(DateTime(timezone=True), nullable=True, index=True)
    scheduled_end_at = Column(DateTime(timezone=True), nullable=True, index=True)
    details = Column(
        JSONB(astext_type=Text()).with_variant(JSON(), "sqlite"),
        nullable=False,
        default=dict,
    )
    special_requests = Column(Text, nullable=True)

    # Money, integer minor units
    currency = Column(String(3), nullable=False)
    base_amount = Column(Integer, nullable=False)
    discount_amount = Column(Integer, nullable=False, default=0)
    final_amount = Column(Integer, nullable=False)

    # Lifecycle
    status = Column(String(30), nullable=False, default=BookingStatus.DRAFT.value, index=True)
    payment_status = Column(String(30), nullable=True, index=True)
    confirmation_code = Column(String(12), nullable=True, unique=True)
    capacity_hold_id = Column(String(26), ForeignKey("capacity_holds.id"), nullable=True)
    hold_expires_at = Column(DateTime(timezone=True), nullable=True, index=True)
    cancellation_reason = Column(Text, nullable=True)

    # Provider references
    payment_preference_id = Column(String(255), nullable=True)
    provider_payment_id = Column(String(255), nullable=True, index=True)
    checkout_url = Column(Text, nullable=True)
    amount_paid = Column(Integer, nullable=False, default=0)

    # Audit timestamps
    created_at = Column(DateTime(timezone=True), nullable=False, default=_now_utc)
    updated_at = Column(
        DateTime(timezone=True), nullable=False, default=_now_utc, onupdate=_now_utc
    )
    payment_requested_at = Column(DateTime(timezone=True), nullable=True)
    paid_at = Column(DateTime(timezone=True), nullable=True)
    confirmed_at = Column(DateTime(timezone=True), nullable=True)
    started_at = Column(DateTime(timezone=True), nullable=True)
    completed_at = Column(DateTime(timezone=True), nullable=True)
    canceled_at = Column(DateTime(timezone=True), nullable=True)
    expired_at = Column(DateTime(timezone=True), nullable=True)
    no_show_at = Column(DateTime(timezone=True), nullable=True)

    version = Column(Integer, nullable=False)

    applied_coupons = relationship(
        "BookingCoupon",
        back_populates="booking",
        order_by="BookingCoupon.position",
        cascade="all, delete-orphan",
        lazy="selectin",
    )
    capacity_hold = relationship("CapacityHold", lazy="joined")

    __mapper_args__ = {"version_id_col": version}

    __table_args__ = (
        CheckConstraint("quantity > 0", name="ck_bookings_quantity_positive"),
        CheckConstraint("base_amount >= 0", name="ck_bookings_base_amount"),
        CheckConstraint(
            "discount_amount >= 0 AND discount_amount <= base_amount",
            name="ck_bookings_discount_bounds",
        ),
        CheckConstraint(
            "final_amount = base_amount - discount_amount",
            name="ck_bookings_final_amount",
        ),
        Index("ix_bookings_status_hold_expires", "status", "hold_expires_at"),
    )

    def __repr__(self) -> str:
        return f"<BookingRecord {self.id} {self.asset_type} status={self.status}>"

    def apply_status(self, new_status: BookingStatus, at: Optional[datetime] = None) -> None:
        """Set the status and stamp its audit column."""
        stamp = at or _now_utc()
        self.status = new_status.value
        column = STATUS_TIMESTAMP_COLUMNS.get(new_status)
        if column and getattr(self, column) is None:
            setattr(self, column, stamp)
        self.updated_at = stamp

    @property
    def is_settled(self) -> bool:
        """True when the booking's money has arrived."""
        return self.payment_status in (PaymentStatus.PAID.value, PaymentStatus.PARTIALLY_PAID.value)

    @property
    def outstanding_amount(self) -> int:
        return max(0, (self.final_amount or 0) - (self.amount_paid or 0))

    def contact(self) -> Dict[str, Any]:
        return {
            "name": self.customer_name,
            "email": self.customer_email,
            "phone": self.customer_phone,
            "user_id": self.customer_user_id,
        }


class BookingCoupon(Base):
    """A coupon counted toward a booking's discount, frozen at application time."""

    __tablename__ = "booking_coupons"

    id = Column(String(26), primary_key=True, default=generate_ulid)
    booking_id = Column(String(26), ForeignKey("bookings.id", ondelete="CASCADE"), nullable=False)
    coupon_id = Column(String(26), ForeignKey("coupons.id"), nullable=False)
    code = Column(String(20), nullable=False)
    position = Column(Integer, nullable=False)
    discount_amount = Column(Integer, nullable=False)
    created_at = Column(DateTime(timezone=True), nullable=False, default=_now_utc)

    booking = relationship("BookingRecord", back_populates="applied_coupons")

    __table_args__ = (
        CheckConstraint("discount_amount >= 0", name="ck_booking_coupons_discount"),
        Index("ix_booking_coupons_booking", "booking_id"),
    )


class BookingTransition(Base):
    """Audit trail of applied transitions and reconciliation anomalies."""

    __tablename__ = "booking_transitions"

    id = Column(String(26), primary_key=True, default=generate_ulid)
    booking_id = Column(String(26), ForeignKey("bookings.id", ondelete="CASCADE"), nullable=False)
    trigger = Column(String(30), nullable=False)
    from_status = Column(String(30), nullable=False)
    to_status = Column(String(30), nullable=True)
    outcome = Column(String(20), nullable=False)
    source = Column(String(30), nullable=False)
    reason = Column(Text, nullable=True)
    provider_event_id = Column(String(255), nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=_now_utc)

    __table_args__ = (Index("ix_booking_transitions_booking", "booking_id", "created_at"),)
