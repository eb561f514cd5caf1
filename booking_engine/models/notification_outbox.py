"""
Notification outbox.

Each row is one NotificationEffect written in the same commit as the booking
transition that produced it. A booking gets at most one row per event, which
is what keeps a replayed payment webhook from notifying the customer twice.
"""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Any, Optional

import sqlalchemy as sa
from sqlalchemy import DateTime, Integer, String, Text, func
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import Mapped, mapped_column
from sqlalchemy.types import JSON

from ..core.ulid_helper import generate_ulid
from ..database import Base


class OutboxStatus(str, Enum):
    PENDING = "pending"
    SENT = "sent"
    # The notification service refused the effect; retrying would not help.
    REJECTED = "rejected"
    # Every retry ended in a temporary failure.
    EXHAUSTED = "exhausted"


class NotificationOutboxEntry(Base):
    """A notification effect waiting for, or done with, delivery."""

    __tablename__ = "notification_outbox"

    __table_args__ = (
        sa.UniqueConstraint("event", "booking_id", name="uq_notification_outbox_event_booking"),
        sa.Index("ix_notification_outbox_due", "status", "deliver_after"),
        sa.Index("ix_notification_outbox_booking_id", "booking_id"),
    )

    id: Mapped[str] = mapped_column(String(26), primary_key=True, default=generate_ulid)
    event: Mapped[str] = mapped_column(String(64), nullable=False)
    booking_id: Mapped[str] = mapped_column(String(26), nullable=False)
    recipient_contact: Mapped[dict[str, Any]] = mapped_column(
        JSONB(astext_type=Text()).with_variant(JSON(), "sqlite"), nullable=False, default=dict
    )
    template_data: Mapped[dict[str, Any]] = mapped_column(
        JSONB(astext_type=Text()).with_variant(JSON(), "sqlite"), nullable=False, default=dict
    )
    status: Mapped[str] = mapped_column(
        String(20), nullable=False, default=OutboxStatus.PENDING.value
    )
    attempts: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    deliver_after: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    last_error: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    delivered_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, server_default=func.now()
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, server_default=func.now(), onupdate=func.now()
    )

    @property
    def idempotency_key(self) -> str:
        return f"{self.event}:{self.booking_id}"

    def __repr__(self) -> str:
        return f"<NotificationOutboxEntry {self.idempotency_key} {self.status}>"
