"""Repository for reconciled payment events."""

from __future__ import annotations

from typing import List, Optional

from sqlalchemy import select
from sqlalchemy.orm import Session

from ..models.payment_event import PaymentEvent
from .base_repository import BaseRepository


class PaymentEventRepository(BaseRepository[PaymentEvent]):
    def __init__(self, db: Session):
        super().__init__(db, PaymentEvent)

    def find(self, booking_id: str, provider_event_id: str) -> Optional[PaymentEvent]:
        return self.db.execute(
            select(PaymentEvent).where(
                PaymentEvent.booking_id == booking_id,
                PaymentEvent.provider_event_id == provider_event_id,
            )
        ).scalar_one_or_none()

    def list_for_booking(self, booking_id: str) -> List[PaymentEvent]:
        return list(
            self.db.execute(
                select(PaymentEvent)
                .where(PaymentEvent.booking_id == booking_id)
                .order_by(PaymentEvent.received_at.asc(), PaymentEvent.id.asc())
            ).scalars()
        )
