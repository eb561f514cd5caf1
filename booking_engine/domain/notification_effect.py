"""Notification effects produced by booking transitions."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, Optional, Protocol


class OutboxEntryLike(Protocol):
    event: str
    booking_id: str
    recipient_contact: Dict[str, Optional[str]]
    template_data: Dict[str, Any]


@dataclass(frozen=True)
class NotificationEffect:
    """
    A notification the engine has decided is needed.

    One booking gets at most one notification per event, so ``event`` and
    ``booking_id`` together identify the effect everywhere: in the outbox
    and as the Idempotency-Key the notification service deduplicates on.
    """

    event: str
    booking_id: str
    recipient_contact: Dict[str, Optional[str]]
    template_data: Dict[str, Any] = field(default_factory=dict)

    @property
    def idempotency_key(self) -> str:
        return f"{self.event}:{self.booking_id}"

    def request_body(self) -> Dict[str, Any]:
        """JSON body handed to the notification service."""
        return {
            "event": self.event,
            "booking_id": self.booking_id,
            "recipient": dict(self.recipient_contact),
            "data": dict(self.template_data),
        }

    @classmethod
    def from_outbox(cls, entry: OutboxEntryLike) -> "NotificationEffect":
        return cls(
            event=entry.event,
            booking_id=entry.booking_id,
            recipient_contact=dict(entry.recipient_contact or {}),
            template_data=dict(entry.template_data or {}),
        )
