"""
Notification effects and their outbox dispatcher.

Transitions never send anything themselves. They describe what the customer
should be told as NotificationEffect values and the dispatcher inserts them
into the notification outbox within the same commit; the outbox worker
delivers them afterwards.
"""

import logging
from typing import Any, Dict, Iterable, List, Optional

from sqlalchemy.orm import Session

from ..core.enums import BookingStatus
from ..domain.notification_effect import NotificationEffect
from ..models.booking import BookingRecord
from ..models.notification_outbox import NotificationOutboxEntry
from ..repositories.notification_outbox_repository import NotificationOutboxRepository

logger = logging.getLogger(__name__)

__all__ = [
    "STATUS_EVENTS",
    "EffectDispatcher",
    "NotificationEffect",
    "effect_for_status",
    "template_data_for",
]

# Customer-facing event emitted when a booking enters a status.
STATUS_EVENTS: Dict[BookingStatus, str] = {
    BookingStatus.PAYMENT_PENDING: "booking.payment_requested",
    BookingStatus.AWAITING_CONFIRMATION: "booking.awaiting_confirmation",
    BookingStatus.CONFIRMED: "booking.confirmed",
    BookingStatus.COMPLETED: "booking.completed",
    BookingStatus.CANCELED: "booking.canceled",
    BookingStatus.EXPIRED: "booking.expired",
    BookingStatus.NO_SHOW: "booking.no_show",
}


def template_data_for(booking: BookingRecord) -> Dict[str, Any]:
    """Values notification templates may reference."""
    return {
        "booking_id": booking.id,
        "confirmation_code": booking.confirmation_code,
        "asset_type": booking.asset_type,
        "asset_id": booking.asset_id,
        "status": booking.status,
        "quantity": booking.quantity,
        "scheduled_date": booking.scheduled_date.isoformat() if booking.scheduled_date else None,
        "scheduled_time": (
            booking.scheduled_time.strftime("%H:%M") if booking.scheduled_time else None
        ),
        "final_amount": booking.final_amount,
        "currency": booking.currency,
        "checkout_url": booking.checkout_url,
        "cancellation_reason": booking.cancellation_reason,
    }


def effect_for_status(
    booking: BookingRecord, status: BookingStatus
) -> Optional[NotificationEffect]:
    """The effect for a booking entering ``status``; None when nothing is sent."""
    event = STATUS_EVENTS.get(status)
    if event is None:
        return None
    contact = {
        "name": booking.customer_name,
        "email": booking.customer_email,
        "phone": booking.customer_phone,
    }
    return NotificationEffect(
        event=event,
        booking_id=booking.id,
        recipient_contact=contact,
        template_data=template_data_for(booking),
    )


class EffectDispatcher:
    """Enqueue effects into the outbox inside the caller's transaction."""

    def __init__(self, db: Session, repository: Optional[NotificationOutboxRepository] = None):
        self.db = db
        self.repository = repository or NotificationOutboxRepository(db)

    def dispatch(self, effects: Iterable[NotificationEffect]) -> List[NotificationOutboxEntry]:
        entries = []
        for effect in effects:
            entries.append(self.repository.enqueue(effect))
            logger.debug("Enqueued %s", effect.idempotency_key)
        return entries
