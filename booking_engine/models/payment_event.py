"""Ingested payment provider notifications."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any

import sqlalchemy as sa
from sqlalchemy import DateTime, Integer, String, Text, func
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import Mapped, mapped_column
from sqlalchemy.types import JSON

from ..core.ulid_helper import generate_ulid
from ..database import Base


def _now_utc() -> datetime:
    return datetime.now(timezone.utc)


class PaymentEvent(Base):
    """
    A provider notification that was reconciled against a booking.

    The row is written after the booking transition in the same commit, so
    its presence is the per-booking deduplication marker.
    """

    __tablename__ = "payment_events"

    __table_args__ = (
        sa.UniqueConstraint(
            "booking_id", "provider_event_id", name="uq_payment_events_booking_event"
        ),
        sa.Index("ix_payment_events_provider_payment_id", "provider_payment_id"),
        sa.Index("ix_payment_events_outcome", "outcome"),
    )

    id: Mapped[str] = mapped_column(String(26), primary_key=True, default=generate_ulid)
    booking_id: Mapped[str] = mapped_column(
        String(26), sa.ForeignKey("bookings.id"), nullable=False, index=True
    )
    booking_reference: Mapped[str] = mapped_column(String(64), nullable=False)
    provider: Mapped[str] = mapped_column(String(30), nullable=False)
    provider_event_id: Mapped[str] = mapped_column(String(255), nullable=False)
    provider_payment_id: Mapped[str | None] = mapped_column(String(255), nullable=True)
    raw_status: Mapped[str] = mapped_column(String(50), nullable=False)
    payment_status: Mapped[str | None] = mapped_column(String(30), nullable=True)
    amount: Mapped[int | None] = mapped_column(Integer, nullable=True)
    currency: Mapped[str | None] = mapped_column(String(3), nullable=True)
    outcome: Mapped[str] = mapped_column(String(20), nullable=False)
    anomaly_reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    booking_status_before: Mapped[str] = mapped_column(String(30), nullable=False)
    booking_status_after: Mapped[str] = mapped_column(String(30), nullable=False)
    event_timestamp: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    raw_payload: Mapped[dict[str, Any]] = mapped_column(
        JSONB(astext_type=Text()).with_variant(JSON(), "sqlite"),
        nullable=False,
        default=dict,
    )
    received_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=_now_utc,
        server_default=func.now(),
    )
