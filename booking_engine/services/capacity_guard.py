# booking_engine/services/capacity_guard.py
"""
CapacityGuard: atomic reservation of limited inventory.

A reservation is a conditional increment per slot; the database decides who
wins, so two requests racing for the last seats can never both succeed.
``reserve_many`` and ``release_hold`` join the caller's unit of work (booking
creation and transitions commit them together with the booking row), while
``reserve`` and ``release`` are standalone operations that commit.
"""

import logging
from typing import Dict, List, Optional, Sequence

from sqlalchemy.orm import Session

from ..core.exceptions import CapacityExceededException, ValidationException
from ..domain.booking_plan import SlotRequest
from ..monitoring.prometheus_metrics import prometheus_metrics
from ..repositories.capacity_repository import CapacityRepository
from .base import BaseService

logger = logging.getLogger(__name__)


class CapacityGuard(BaseService):
    """Reserve and release per-slot capacity for bookings."""

    def __init__(self, db: Session, repository: Optional[CapacityRepository] = None):
        super().__init__(db)
        self.repository = repository or CapacityRepository(db)

    @staticmethod
    def _merge(requests: Sequence[SlotRequest]) -> List[SlotRequest]:
        totals: Dict[str, int] = {}
        for request in requests:
            if request.quantity <= 0:
                raise ValidationException(
                    "Reservation quantity must be positive",
                    code="INVALID_QUANTITY",
                    details={"slot": request.slot_key, "quantity": request.quantity},
                )
            totals[request.slot_key] = totals.get(request.slot_key, 0) + request.quantity
        # Fixed slot order keeps multi-slot reservations from deadlocking each other
        return [SlotRequest(key, totals[key]) for key in sorted(totals)]

    def reserve_many(
        self,
        asset_id: str,
        requests: Sequence[SlotRequest],
        *,
        capacity: Optional[int],
    ) -> str:
        """
        Reserve every requested slot under one hold, all or nothing.

        Does not commit. On CapacityExceededException the caller must roll
        back, which also undoes increments already made for earlier slots.

        Args:
            asset_id: Asset whose slots are reserved
            requests: Slot/quantity pairs; duplicate slots are summed
            capacity: Ceiling used when a slot row is first created

        Returns:
            The hold id to store on the booking
        """
        merged = self._merge(requests)
        if not merged:
            raise ValidationException("At least one slot must be reserved", code="NO_SLOTS")

        hold = self.repository.create_hold(asset_id)
        for request in merged:
            self.repository.ensure_slot(asset_id, request.slot_key, capacity)
            if not self.repository.try_increment(asset_id, request.slot_key, request.quantity):
                prometheus_metrics.record_capacity("rejected")
                logger.info(
                    "Capacity exceeded for %s/%s (requested %s)",
                    asset_id,
                    request.slot_key,
                    request.quantity,
                )
                raise CapacityExceededException(asset_id, request.slot_key, request.quantity)
            self.repository.add_line(hold, asset_id, request.slot_key, request.quantity)

        prometheus_metrics.record_capacity("reserved")
        return str(hold.id)

    @BaseService.measure_operation("reserve_capacity")
    def reserve(
        self,
        asset_id: str,
        slot_key: str,
        quantity: int,
        *,
        capacity: Optional[int] = None,
    ) -> str:
        """Reserve ``quantity`` units of one slot and commit; returns the hold id."""
        with self.transaction():
            return self.reserve_many(
                asset_id, [SlotRequest(slot_key, quantity)], capacity=capacity
            )

    def release_hold(self, hold_id: Optional[str]) -> bool:
        """
        Give a hold's capacity back inside the caller's transaction.

        Releasing an unknown or already released hold is a no-op that
        returns False.
        """
        if not hold_id:
            return False
        if not self.repository.mark_released(hold_id):
            prometheus_metrics.record_capacity("release_noop")
            return False
        for line in self.repository.get_lines(hold_id):
            if not self.repository.decrement(line.slot_id, line.quantity):
                # Counter drifted below the hold's own quantity; never go negative
                logger.error(
                    "Capacity counter underflow releasing hold %s slot %s",
                    hold_id,
                    line.slot_key,
                )
        prometheus_metrics.record_capacity("released")
        return True

    @BaseService.measure_operation("release_capacity")
    def release(self, hold_id: Optional[str]) -> bool:
        """Release a hold and commit."""
        with self.transaction():
            return self.release_hold(hold_id)

    def available(self, asset_id: str, slot_key: str) -> Optional[int]:
        """Units still free in a slot; None when the slot is unlimited."""
        slot = self.repository.get_slot(asset_id, slot_key)
        if slot is None or slot.capacity is None:
            return None
        return max(0, slot.capacity - slot.reserved)

    @BaseService.measure_operation("configure_slot")
    def configure_slot(self, asset_id: str, slot_key: str, capacity: Optional[int]) -> None:
        """Set a slot's capacity; refuses to go below what is already reserved."""
        if capacity is not None and capacity < 0:
            raise ValidationException("Capacity cannot be negative", code="INVALID_CAPACITY")
        with self.transaction():
            if not self.repository.set_capacity(asset_id, slot_key, capacity):
                raise ValidationException(
                    "Capacity cannot drop below the units already reserved",
                    code="CAPACITY_BELOW_RESERVED",
                    details={"asset_id": asset_id, "slot": slot_key, "capacity": capacity},
                )
