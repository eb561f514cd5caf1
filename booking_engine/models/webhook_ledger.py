"""
Ledger of inbound payment webhooks.

Every notification from the payment service or Stripe is stored here before
reconciliation runs, so nothing the gateway sends is lost when processing
fails. Failed entries are replayed by the payments worker.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Optional

import sqlalchemy as sa
from sqlalchemy import DateTime, Integer, String, Text, func
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import Mapped, mapped_column
from sqlalchemy.types import JSON

from ..core.enums import WebhookEventStatus
from ..core.ulid_helper import generate_ulid
from ..database import Base


def _now_utc() -> datetime:
    return datetime.now(timezone.utc)


class WebhookLedgerEntry(Base):
    """One webhook as received, with how reconciling it went."""

    __tablename__ = "webhook_ledger"

    __table_args__ = (
        # Gateways redeliver; the same provider event keeps a single entry.
        sa.UniqueConstraint(
            "source", "provider_event_id", name="uq_webhook_ledger_source_event"
        ),
        sa.Index("ix_webhook_ledger_status_received", "status", "received_at"),
        sa.Index("ix_webhook_ledger_booking_id", "booking_id"),
    )

    id: Mapped[str] = mapped_column(String(26), primary_key=True, default=generate_ulid)
    source: Mapped[str] = mapped_column(String(32), nullable=False)
    provider_event_id: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    event_type: Mapped[str] = mapped_column(String(100), nullable=False)
    booking_id: Mapped[Optional[str]] = mapped_column(String(26), nullable=True)
    payload: Mapped[dict[str, Any]] = mapped_column(
        JSONB(astext_type=Text()).with_variant(JSON(), "sqlite"), nullable=False
    )
    headers: Mapped[Optional[dict[str, Any]]] = mapped_column(
        JSONB(astext_type=Text()).with_variant(JSON(), "sqlite"), nullable=True
    )
    status: Mapped[str] = mapped_column(
        String(20), nullable=False, default=WebhookEventStatus.RECEIVED.value
    )
    # ReconciliationOutcome of the last successful run.
    outcome: Mapped[Optional[str]] = mapped_column(String(20), nullable=True)
    error: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    deliveries: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    replays: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    received_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_now_utc, server_default=func.now()
    )
    last_received_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_now_utc, server_default=func.now()
    )
    processed_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
