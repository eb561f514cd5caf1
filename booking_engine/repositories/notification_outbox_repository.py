"""Repository for the notification outbox."""

from __future__ import annotations

from datetime import datetime, timedelta
import logging
from typing import Any, List, Optional

from sqlalchemy import select, update
from sqlalchemy.orm import Session

from ..core.time_utils import utc_now
from ..core.ulid_helper import generate_ulid
from ..domain.notification_effect import NotificationEffect
from ..models.notification_outbox import NotificationOutboxEntry, OutboxStatus
from .base_repository import BaseRepository

logger = logging.getLogger(__name__)

_MAX_ERROR_LENGTH = 1000


class NotificationOutboxRepository(BaseRepository[NotificationOutboxEntry]):
    def __init__(self, db: Session):
        super().__init__(db, NotificationOutboxEntry)

    def enqueue(self, effect: NotificationEffect) -> NotificationOutboxEntry:
        """
        Add ``effect`` to the outbox unless the booking already has that event.

        Runs inside the caller's transaction and returns the stored row, new
        or existing.
        """
        now = utc_now()
        inserted = self._insert_ignore(
            NotificationOutboxEntry,
            {
                "id": generate_ulid(),
                "event": effect.event,
                "booking_id": effect.booking_id,
                "recipient_contact": dict(effect.recipient_contact),
                "template_data": dict(effect.template_data),
                "status": OutboxStatus.PENDING.value,
                "attempts": 0,
                "deliver_after": now,
                "created_at": now,
                "updated_at": now,
            },
            ["event", "booking_id"],
        )
        if not inserted:
            logger.debug("%s is already in the outbox", effect.idempotency_key)
        entry = self.find(effect.event, effect.booking_id)
        if entry is None:
            raise RuntimeError(f"Outbox entry {effect.idempotency_key} missing after enqueue")
        return entry

    def find(self, event: str, booking_id: str) -> Optional[NotificationOutboxEntry]:
        return self.db.execute(
            select(NotificationOutboxEntry).where(
                NotificationOutboxEntry.event == event,
                NotificationOutboxEntry.booking_id == booking_id,
            )
        ).scalar_one_or_none()

    def for_booking(self, booking_id: str) -> List[NotificationOutboxEntry]:
        """Every notification of a booking in the order it was produced."""
        return list(
            self.db.execute(
                select(NotificationOutboxEntry)
                .where(NotificationOutboxEntry.booking_id == booking_id)
                .order_by(NotificationOutboxEntry.created_at, NotificationOutboxEntry.id)
            ).scalars()
        )

    def due_for_delivery(
        self, *, limit: int = 200, now: Optional[datetime] = None
    ) -> List[NotificationOutboxEntry]:
        """Pending entries whose delivery time has come, oldest first."""
        stmt = (
            select(NotificationOutboxEntry)
            .where(
                NotificationOutboxEntry.status == OutboxStatus.PENDING.value,
                NotificationOutboxEntry.deliver_after <= (now or utc_now()),
            )
            .order_by(NotificationOutboxEntry.deliver_after, NotificationOutboxEntry.id)
            .limit(limit)
        )
        if self.dialect_name == "postgresql":
            stmt = stmt.with_for_update(skip_locked=True)
        return list(self.db.execute(stmt).scalars())

    def _set(self, entry_id: str, **values: Any) -> None:
        values["updated_at"] = utc_now()
        self.db.execute(
            update(NotificationOutboxEntry)
            .where(NotificationOutboxEntry.id == entry_id)
            .values(**values)
        )
        self.db.flush()

    def record_delivery(self, entry_id: str, *, attempts: int) -> None:
        self._set(
            entry_id,
            status=OutboxStatus.SENT.value,
            attempts=attempts,
            last_error=None,
            delivered_at=utc_now(),
        )

    def schedule_retry(
        self, entry_id: str, *, attempts: int, delay_seconds: int, error: str
    ) -> None:
        """Keep the entry pending but out of the queue for ``delay_seconds``."""
        self._set(
            entry_id,
            attempts=attempts,
            last_error=error[:_MAX_ERROR_LENGTH],
            deliver_after=utc_now() + timedelta(seconds=max(delay_seconds, 1)),
        )

    def record_failure(
        self, entry_id: str, *, status: OutboxStatus, attempts: int, error: str
    ) -> None:
        """Take the entry out of the queue for good as REJECTED or EXHAUSTED."""
        self._set(
            entry_id,
            status=status.value,
            attempts=attempts,
            last_error=error[:_MAX_ERROR_LENGTH],
        )
