# booking_engine/models/capacity.py
"""
Capacity counters and holds.

A slot is one countable unit of inventory for an asset: a session, a night,
a rental day. A hold groups the slot reservations made for one booking so
they are released together, exactly once.
"""

from datetime import datetime, timezone

from sqlalchemy import (
    CheckConstraint,
    Column,
    DateTime,
    ForeignKey,
    Integer,
    String,
    UniqueConstraint,
)
from sqlalchemy.orm import relationship

from ..core.enums import HoldStatus
from ..core.ulid_helper import generate_ulid
from ..database import Base


def _now_utc() -> datetime:
    return datetime.now(timezone.utc)


class CapacitySlot(Base):
    """Reservation counter for one asset slot; ``capacity`` None means unlimited."""

    __tablename__ = "capacity_slots"

    id = Column(String(26), primary_key=True, default=generate_ulid)
    asset_id = Column(String(26), nullable=False)
    slot_key = Column(String(64), nullable=False)
    capacity = Column(Integer, nullable=True)
    reserved = Column(Integer, nullable=False, default=0)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=_now_utc)

    __table_args__ = (
        UniqueConstraint("asset_id", "slot_key", name="uq_capacity_slots_asset_slot"),
        CheckConstraint("reserved >= 0", name="ck_capacity_slots_reserved_non_negative"),
        CheckConstraint(
            "capacity IS NULL OR reserved <= capacity",
            name="ck_capacity_slots_reserved_ceiling",
        ),
    )


class CapacityHold(Base):
    """Reservation made on behalf of a single booking."""

    __tablename__ = "capacity_holds"

    id = Column(String(26), primary_key=True, default=generate_ulid)
    asset_id = Column(String(26), nullable=False, index=True)
    status = Column(String(20), nullable=False, default=HoldStatus.ACTIVE.value, index=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=_now_utc)
    released_at = Column(DateTime(timezone=True), nullable=True)

    lines = relationship(
        "CapacityHoldLine",
        back_populates="hold",
        cascade="all, delete-orphan",
        lazy="selectin",
    )

    @property
    def is_active(self) -> bool:
        return self.status == HoldStatus.ACTIVE.value

    @property
    def total_quantity(self) -> int:
        return sum(line.quantity for line in self.lines)


class CapacityHoldLine(Base):
    """Quantity taken from one slot by a hold."""

    __tablename__ = "capacity_hold_lines"

    id = Column(String(26), primary_key=True, default=generate_ulid)
    hold_id = Column(
        String(26), ForeignKey("capacity_holds.id", ondelete="CASCADE"), nullable=False
    )
    slot_id = Column(String(26), ForeignKey("capacity_slots.id"), nullable=False)
    slot_key = Column(String(64), nullable=False)
    quantity = Column(Integer, nullable=False)

    hold = relationship("CapacityHold", back_populates="lines")

    __table_args__ = (CheckConstraint("quantity > 0", name="ck_capacity_hold_lines_quantity"),)
