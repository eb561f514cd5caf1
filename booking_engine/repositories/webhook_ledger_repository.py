"""Repository for the webhook ledger."""

from __future__ import annotations

from typing import List, Optional

from sqlalchemy import select
from sqlalchemy.orm import Session

from ..core.enums import WebhookEventStatus
from ..models.webhook_ledger import WebhookLedgerEntry
from .base_repository import BaseRepository


class WebhookLedgerRepository(BaseRepository[WebhookLedgerEntry]):
    def __init__(self, db: Session):
        super().__init__(db, WebhookLedgerEntry)

    def find_delivery(self, source: str, provider_event_id: str) -> Optional[WebhookLedgerEntry]:
        return self.db.execute(
            select(WebhookLedgerEntry).where(
                WebhookLedgerEntry.source == source,
                WebhookLedgerEntry.provider_event_id == provider_event_id,
            )
        ).scalar_one_or_none()

    def for_booking(self, booking_id: str) -> List[WebhookLedgerEntry]:
        return list(
            self.db.execute(
                select(WebhookLedgerEntry)
                .where(WebhookLedgerEntry.booking_id == booking_id)
                .order_by(WebhookLedgerEntry.received_at)
            ).scalars()
        )

    def failed_with_replays_left(self, *, max_replays: int, limit: int) -> List[WebhookLedgerEntry]:
        """Failed entries under their replay budget, oldest first."""
        return list(
            self.db.execute(
                select(WebhookLedgerEntry)
                .where(
                    WebhookLedgerEntry.status == WebhookEventStatus.FAILED.value,
                    WebhookLedgerEntry.replays < max_replays,
                )
                .order_by(WebhookLedgerEntry.received_at, WebhookLedgerEntry.id)
                .limit(limit)
            ).scalars()
        )
