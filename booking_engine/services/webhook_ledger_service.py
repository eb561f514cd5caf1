"""Service for recording and replaying inbound payment webhooks."""

from __future__ import annotations

import logging
from typing import Any, Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from ..core.enums import WebhookEventStatus
from ..core.exceptions import RepositoryException
from ..core.time_utils import utc_now
from ..models.webhook_ledger import WebhookLedgerEntry
from ..repositories.webhook_ledger_repository import WebhookLedgerRepository
from .base import BaseService

logger = logging.getLogger(__name__)

# Credentials a gateway may send; they never reach the database.
_REDACTED_HEADERS = frozenset({"authorization", "stripe-signature", "x-api-key", "x-signature"})

_MAX_ERROR_LENGTH = 2000


def redact_headers(headers: dict[str, Any]) -> dict[str, Any]:
    return {
        name: ("***" if name.lower() in _REDACTED_HEADERS else value)
        for name, value in headers.items()
    }


class WebhookLedgerService(BaseService):
    """
    Keeps the webhook ledger.

    Every method commits on its own: an entry has to survive a rollback of
    the reconciliation that follows it.
    """

    def __init__(self, db: Session) -> None:
        super().__init__(db)
        self.repository = WebhookLedgerRepository(db)

    def _redelivered(
        self, entry: WebhookLedgerEntry, headers: Optional[dict[str, Any]]
    ) -> WebhookLedgerEntry:
        entry.deliveries += 1
        entry.last_received_at = utc_now()
        if headers is not None:
            entry.headers = headers
        self.repository.flush()
        logger.info(
            "Webhook %s/%s delivered %s times",
            entry.source,
            entry.provider_event_id,
            entry.deliveries,
        )
        return entry

    @BaseService.measure_operation("webhook_ledger.record")
    def record(
        self,
        *,
        source: str,
        event_type: str,
        payload: dict[str, Any],
        headers: Optional[dict[str, Any]] = None,
        provider_event_id: Optional[str] = None,
    ) -> WebhookLedgerEntry:
        """
        Store a webhook before it is processed.

        A repeat of a known (source, provider_event_id) pair counts another
        delivery on the existing entry instead of adding one.
        """
        stored_headers = redact_headers(headers) if headers else None
        try:
            with self.transaction():
                if provider_event_id:
                    known = self.repository.find_delivery(source, provider_event_id)
                    if known is not None:
                        return self._redelivered(known, stored_headers)
                return self.repository.create(
                    source=source,
                    provider_event_id=provider_event_id,
                    event_type=event_type or "unknown",
                    payload=payload,
                    headers=stored_headers,
                    status=WebhookEventStatus.RECEIVED.value,
                )
        except RepositoryException as exc:
            # Another worker stored the same delivery first.
            if not (provider_event_id and isinstance(exc.__cause__, IntegrityError)):
                raise
        with self.transaction():
            known = self.repository.find_delivery(source, provider_event_id)
            if known is None:
                raise RepositoryException(
                    f"Webhook {source}/{provider_event_id} missing after a unique conflict"
                )
            return self._redelivered(known, stored_headers)

    def _get(self, entry_id: str) -> WebhookLedgerEntry:
        entry = self.repository.get_by_id(entry_id, load_relationships=False)
        if entry is None:
            raise RepositoryException(f"Webhook ledger entry {entry_id} not found")
        return entry

    @BaseService.measure_operation("webhook_ledger.mark_processed")
    def mark_processed(
        self,
        entry_id: str,
        *,
        outcome: Optional[str] = None,
        booking_id: Optional[str] = None,
    ) -> WebhookLedgerEntry:
        with self.transaction():
            entry = self._get(entry_id)
            entry.status = WebhookEventStatus.PROCESSED.value
            entry.outcome = outcome
            entry.booking_id = booking_id or entry.booking_id
            entry.error = None
            entry.processed_at = utc_now()
        return entry

    @BaseService.measure_operation("webhook_ledger.mark_failed")
    def mark_failed(self, entry_id: str, *, error: str) -> WebhookLedgerEntry:
        """Fail the entry; the replay task picks it up while replays remain."""
        with self.transaction():
            entry = self._get(entry_id)
            entry.status = WebhookEventStatus.FAILED.value
            entry.error = error[:_MAX_ERROR_LENGTH]
            entry.processed_at = utc_now()
        return entry

    def replayable(self, *, max_replays: int, limit: int = 100) -> list[WebhookLedgerEntry]:
        return self.repository.failed_with_replays_left(max_replays=max_replays, limit=limit)

    @BaseService.measure_operation("webhook_ledger.start_replay")
    def start_replay(self, entry_id: str) -> WebhookLedgerEntry:
        with self.transaction():
            entry = self._get(entry_id)
            entry.replays += 1
        return entry

    def history(self, booking_id: str) -> list[WebhookLedgerEntry]:
        """Webhooks reconciled against a booking, oldest first."""
        return self.repository.for_booking(booking_id)
