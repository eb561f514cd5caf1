"""
Booking lifecycle transition table.

``evaluate`` is total over ``BookingStatus x BookingTrigger``: every pair
yields either a target status or a rejection reason, and nothing here touches
the database. Services decide what to do with a rejection (raise for API
actions, record an anomaly for payment notifications).
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, FrozenSet, List, Optional, Tuple

from ..core.enums import BookingStatus, BookingTrigger
from ..core.exceptions import InvalidTransitionException

S = BookingStatus
T = BookingTrigger

TERMINAL_STATUSES: FrozenSet[BookingStatus] = frozenset(
    {S.COMPLETED, S.CANCELED, S.NO_SHOW, S.EXPIRED}
)

# Statuses in which the booking still owes a payment.
UNPAID_STATUSES: FrozenSet[BookingStatus] = frozenset({S.DRAFT, S.PAYMENT_PENDING})

# trigger -> (allowed source statuses, target status)
TRANSITIONS: Dict[BookingTrigger, Tuple[FrozenSet[BookingStatus], BookingStatus]] = {
    T.PAYMENT_REQUESTED: (frozenset({S.DRAFT}), S.PAYMENT_PENDING),
    T.PAYMENT_SUCCEEDED: (frozenset({S.PAYMENT_PENDING}), S.AWAITING_CONFIRMATION),
    T.CONFIRMED: (frozenset({S.AWAITING_CONFIRMATION}), S.CONFIRMED),
    T.STARTED: (frozenset({S.CONFIRMED}), S.IN_PROGRESS),
    T.COMPLETED: (frozenset({S.IN_PROGRESS}), S.COMPLETED),
    T.HOLD_EXPIRED: (frozenset({S.DRAFT, S.PAYMENT_PENDING}), S.EXPIRED),
    T.CANCELED: (
        frozenset(
            {
                S.DRAFT,
                S.PAYMENT_PENDING,
                S.AWAITING_CONFIRMATION,
                S.CONFIRMED,
                S.IN_PROGRESS,
            }
        ),
        S.CANCELED,
    ),
    T.PAYMENT_FAILED: (
        frozenset({S.DRAFT, S.PAYMENT_PENDING, S.AWAITING_CONFIRMATION}),
        S.CANCELED,
    ),
    T.REFUNDED: (
        frozenset({S.AWAITING_CONFIRMATION, S.CONFIRMED, S.IN_PROGRESS, S.COMPLETED}),
        S.CANCELED,
    ),
    T.NO_SHOW: (frozenset({S.CONFIRMED, S.IN_PROGRESS}), S.NO_SHOW),
}

# Triggers whose transition gives the capacity hold back in the same commit.
# A refund deliberately keeps the hold; see BookingService.release_capacity.
RELEASES_CAPACITY: FrozenSet[BookingTrigger] = frozenset(
    {T.HOLD_EXPIRED, T.CANCELED, T.PAYMENT_FAILED}
)


@dataclass(frozen=True)
class TransitionResult:
    """Outcome of evaluating a trigger against a status."""

    current: BookingStatus
    trigger: BookingTrigger
    target: Optional[BookingStatus] = None
    reason: Optional[str] = None

    @property
    def allowed(self) -> bool:
        return self.target is not None

    @property
    def releases_capacity(self) -> bool:
        return self.allowed and self.trigger in RELEASES_CAPACITY


def _rejection_reason(current: BookingStatus, trigger: BookingTrigger) -> str:
    if current in TERMINAL_STATUSES:
        return f"booking is {current.value}; no further transitions are possible"
    if trigger == T.HOLD_EXPIRED:
        return "only unpaid bookings can expire"
    if trigger in (T.STARTED, T.COMPLETED) and current in UNPAID_STATUSES:
        return f"cannot mark a booking {trigger.value} before it is paid and confirmed"
    if trigger == T.PAYMENT_SUCCEEDED and current != S.PAYMENT_PENDING:
        return f"payment already settled for a booking in status {current.value}"
    if trigger == T.REFUNDED and current in UNPAID_STATUSES:
        return "nothing to refund on an unpaid booking"
    sources, _ = TRANSITIONS[trigger]
    expected = ", ".join(sorted(status.value for status in sources))
    return f"'{trigger.value}' requires status in [{expected}], booking is {current.value}"


def evaluate(current: BookingStatus | str, trigger: BookingTrigger | str) -> TransitionResult:
    """Return the transition for ``trigger`` from ``current`` or a rejection."""
    status = BookingStatus(current)
    event = BookingTrigger(trigger)
    sources, target = TRANSITIONS[event]
    if status in sources:
        return TransitionResult(current=status, trigger=event, target=target)
    return TransitionResult(
        current=status, trigger=event, reason=_rejection_reason(status, event)
    )


def apply_transition(
    current: BookingStatus | str,
    trigger: BookingTrigger | str,
    *,
    booking_id: Optional[str] = None,
) -> BookingStatus:
    """Return the next status or raise InvalidTransitionException."""
    result = evaluate(current, trigger)
    if result.target is None:
        raise InvalidTransitionException(
            result.current.value, result.trigger.value, result.reason, booking_id=booking_id
        )
    return result.target


def allowed_triggers(current: BookingStatus | str) -> List[BookingTrigger]:
    """Triggers that are valid from ``current``, in declaration order."""
    status = BookingStatus(current)
    return [trigger for trigger, (sources, _) in TRANSITIONS.items() if status in sources]


def is_terminal(status: BookingStatus | str) -> bool:
    return BookingStatus(status) in TERMINAL_STATUSES
