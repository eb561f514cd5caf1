# booking_engine/repositories/capacity_repository.py
"""
Capacity counter persistence.

Every counter change is a single conditional UPDATE so two concurrent
reservations can never both pass the ceiling check; callers inspect the
affected row count instead of reading and then writing.
"""

from datetime import datetime
from typing import List, Optional

from sqlalchemy import or_, select, update
from sqlalchemy.orm import Session

from ..core.enums import HoldStatus
from ..core.time_utils import utc_now
from ..core.ulid_helper import generate_ulid
from ..models.capacity import CapacityHold, CapacityHoldLine, CapacitySlot
from .base_repository import BaseRepository


class CapacityRepository(BaseRepository[CapacityHold]):
    """Data access for capacity slots and holds."""

    def __init__(self, db: Session):
        super().__init__(db, CapacityHold)

    # ------------------------------------------------------------------ slots
    def ensure_slot(self, asset_id: str, slot_key: str, capacity: Optional[int]) -> None:
        """Create the counter row for a slot if it does not exist yet."""
        self._insert_ignore(
            CapacitySlot,
            {
                "id": generate_ulid(),
                "asset_id": asset_id,
                "slot_key": slot_key,
                "capacity": capacity,
                "reserved": 0,
                "updated_at": utc_now(),
            },
            ["asset_id", "slot_key"],
        )

    def get_slot(self, asset_id: str, slot_key: str) -> Optional[CapacitySlot]:
        return self.db.execute(
            select(CapacitySlot)
            .where(CapacitySlot.asset_id == asset_id, CapacitySlot.slot_key == slot_key)
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()

    def try_increment(self, asset_id: str, slot_key: str, quantity: int) -> bool:
        """Add ``quantity`` to the slot if it stays within capacity."""
        stmt = (
            update(CapacitySlot)
            .where(
                CapacitySlot.asset_id == asset_id,
                CapacitySlot.slot_key == slot_key,
                or_(
                    CapacitySlot.capacity.is_(None),
                    CapacitySlot.reserved + quantity <= CapacitySlot.capacity,
                ),
            )
            .values(reserved=CapacitySlot.reserved + quantity, updated_at=utc_now())
        )
        return self.db.execute(stmt).rowcount == 1

    def decrement(self, slot_id: str, quantity: int) -> bool:
        stmt = (
            update(CapacitySlot)
            .where(CapacitySlot.id == slot_id, CapacitySlot.reserved >= quantity)
            .values(reserved=CapacitySlot.reserved - quantity, updated_at=utc_now())
        )
        return self.db.execute(stmt).rowcount == 1

    def set_capacity(self, asset_id: str, slot_key: str, capacity: Optional[int]) -> bool:
        """Change a slot's capacity unless it would drop below what is reserved."""
        self.ensure_slot(asset_id, slot_key, capacity)
        conditions = [CapacitySlot.asset_id == asset_id, CapacitySlot.slot_key == slot_key]
        if capacity is not None:
            conditions.append(CapacitySlot.reserved <= capacity)
        stmt = (
            update(CapacitySlot)
            .where(*conditions)
            .values(capacity=capacity, updated_at=utc_now())
        )
        return self.db.execute(stmt).rowcount == 1

    # ------------------------------------------------------------------ holds
    def create_hold(self, asset_id: str) -> CapacityHold:
        return self.create(asset_id=asset_id, status=HoldStatus.ACTIVE.value)

    def add_line(self, hold: CapacityHold, asset_id: str, slot_key: str, quantity: int) -> None:
        slot = self.get_slot(asset_id, slot_key)
        if slot is None:
            raise RuntimeError(f"Capacity slot {asset_id}/{slot_key} vanished after reserve")
        hold.lines.append(
            CapacityHoldLine(slot_id=slot.id, slot_key=slot_key, quantity=quantity)
        )
        self.db.flush()

    def mark_released(self, hold_id: str, at: Optional[datetime] = None) -> bool:
        """Flip an active hold to released; False if it was not active."""
        stmt = (
            update(CapacityHold)
            .where(CapacityHold.id == hold_id, CapacityHold.status == HoldStatus.ACTIVE.value)
            .values(status=HoldStatus.RELEASED.value, released_at=at or utc_now())
        )
        return self.db.execute(stmt).rowcount == 1

    def get_lines(self, hold_id: str) -> List[CapacityHoldLine]:
        return list(
            self.db.execute(
                select(CapacityHoldLine).where(CapacityHoldLine.hold_id == hold_id)
            ).scalars()
        )
