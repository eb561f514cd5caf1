# booking_engine/repositories/booking_repository.py
"""
Booking persistence.

Status changes go through the ORM so the mapper's version check guards every
flush; the sweep queries below only select candidates and the service
re-checks each one before acting.
"""

from datetime import datetime
from typing import List, Optional

from sqlalchemy import and_, or_, select
from sqlalchemy.orm import Query, Session, selectinload

from ..core.enums import BookingStatus, PaymentStatus
from ..models.bookable_asset import BookableAsset
from ..models.booking import BookingCoupon, BookingRecord, BookingTransition
from .base_repository import BaseRepository

_HISTORY_STATUSES = (
    BookingStatus.CONFIRMED.value,
    BookingStatus.IN_PROGRESS.value,
    BookingStatus.COMPLETED.value,
)
_SETTLED_PAYMENTS = (PaymentStatus.PAID.value, PaymentStatus.PARTIALLY_PAID.value)


class BookingRepository(BaseRepository[BookingRecord]):
    """Data access for booking records, applied coupons and the audit log."""

    def __init__(self, db: Session):
        super().__init__(db, BookingRecord)

    def _apply_eager_loading(self, query: Query) -> Query:
        return query.options(selectinload(BookingRecord.applied_coupons))

    def get_fresh(self, booking_id: str) -> Optional[BookingRecord]:
        """Reload a booking from the database, discarding the identity-map copy."""
        return self.db.execute(
            select(BookingRecord)
            .where(BookingRecord.id == booking_id)
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()

    def get_by_confirmation_code(self, code: str) -> Optional[BookingRecord]:
        return self.db.execute(
            select(BookingRecord).where(BookingRecord.confirmation_code == code)
        ).scalar_one_or_none()

    def get_by_provider_payment_id(self, payment_id: str) -> Optional[BookingRecord]:
        return self.db.execute(
            select(BookingRecord)
            .where(BookingRecord.provider_payment_id == payment_id)
            .order_by(BookingRecord.created_at.desc())
            .limit(1)
        ).scalar_one_or_none()

    def confirmation_code_exists(self, code: str) -> bool:
        return (
            self.db.execute(
                select(BookingRecord.id).where(BookingRecord.confirmation_code == code)
            ).first()
            is not None
        )

    def get_asset(self, asset_id: str) -> Optional[BookableAsset]:
        return self.db.get(BookableAsset, asset_id)

    def has_purchase_history(self, *, user_id: Optional[str], email: Optional[str]) -> bool:
        """True when the customer has at least one paid or fulfilled booking."""
        identity = []
        if user_id:
            identity.append(BookingRecord.customer_user_id == user_id)
        if email:
            identity.append(BookingRecord.customer_email == email.strip().lower())
        if not identity:
            return False
        stmt = (
            select(BookingRecord.id)
            .where(
                or_(*identity),
                or_(
                    BookingRecord.status.in_(_HISTORY_STATUSES),
                    BookingRecord.payment_status.in_(_SETTLED_PAYMENTS),
                ),
            )
            .limit(1)
        )
        return self.db.execute(stmt).first() is not None

    # ------------------------------------------------------------ sweeps
    def find_expirable_ids(self, now: datetime, limit: int) -> List[str]:
        stmt = (
            select(BookingRecord.id)
            .where(
                BookingRecord.status.in_(
                    (BookingStatus.DRAFT.value, BookingStatus.PAYMENT_PENDING.value)
                ),
                BookingRecord.hold_expires_at.is_not(None),
                BookingRecord.hold_expires_at <= now,
            )
            .order_by(BookingRecord.hold_expires_at.asc())
            .limit(limit)
        )
        return list(self.db.execute(stmt).scalars())

    def find_due_to_start_ids(self, now: datetime, limit: int) -> List[str]:
        stmt = (
            select(BookingRecord.id)
            .where(
                BookingRecord.status == BookingStatus.CONFIRMED.value,
                BookingRecord.scheduled_start_at.is_not(None),
                BookingRecord.scheduled_start_at <= now,
            )
            .order_by(BookingRecord.scheduled_start_at.asc())
            .limit(limit)
        )
        return list(self.db.execute(stmt).scalars())

    def find_due_to_complete_ids(self, now: datetime, limit: int) -> List[str]:
        stmt = (
            select(BookingRecord.id)
            .where(
                and_(
                    BookingRecord.status == BookingStatus.IN_PROGRESS.value,
                    BookingRecord.scheduled_end_at.is_not(None),
                    BookingRecord.scheduled_end_at <= now,
                )
            )
            .order_by(BookingRecord.scheduled_end_at.asc())
            .limit(limit)
        )
        return list(self.db.execute(stmt).scalars())

    # ------------------------------------------------------------ children
    def add_applied_coupon(
        self, booking: BookingRecord, *, coupon_id: str, code: str, discount_amount: int
    ) -> BookingCoupon:
        entry = BookingCoupon(
            coupon_id=coupon_id,
            code=code,
            position=len(booking.applied_coupons),
            discount_amount=discount_amount,
        )
        booking.applied_coupons.append(entry)
        return entry

    def add_transition(
        self,
        *,
        booking_id: str,
        trigger: str,
        from_status: str,
        to_status: Optional[str],
        outcome: str,
        source: str,
        reason: Optional[str] = None,
        provider_event_id: Optional[str] = None,
    ) -> BookingTransition:
        entry = BookingTransition(
            booking_id=booking_id,
            trigger=trigger,
            from_status=from_status,
            to_status=to_status,
            outcome=outcome,
            source=source,
            reason=reason,
            provider_event_id=provider_event_id,
        )
        self.db.add(entry)
        return entry

    def list_transitions(self, booking_id: str) -> List[BookingTransition]:
        return list(
            self.db.execute(
                select(BookingTransition)
                .where(BookingTransition.booking_id == booking_id)
                .order_by(BookingTransition.created_at.asc(), BookingTransition.id.asc())
            ).scalars()
        )
