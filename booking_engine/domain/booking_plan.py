"""Value objects describing what a booking reserves and when it happens."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime, time, timedelta, timezone
from typing import Iterator, Optional


@dataclass(frozen=True)
class SlotRequest:
    """Quantity wanted from one slot of an asset."""

    slot_key: str
    quantity: int


@dataclass(frozen=True)
class BookingSchedule:
    """When a booking takes place; every field is optional for open-dated assets."""

    scheduled_date: Optional[date] = None
    scheduled_time: Optional[time] = None
    end_date: Optional[date] = None
    start_at: Optional[datetime] = None
    end_at: Optional[datetime] = None


def slot_key_for(day: date, at: Optional[time] = None) -> str:
    """``2025-03-01`` for day slots, ``2025-03-01T19:30`` for timed ones."""
    if at is None:
        return day.isoformat()
    return f"{day.isoformat()}T{at.strftime('%H:%M')}"


def iter_days(start: date, end: date) -> Iterator[date]:
    """Days from ``start`` up to but excluding ``end``."""
    current = start
    while current < end:
        yield current
        current += timedelta(days=1)


def at_utc(day: date, at: Optional[time] = None) -> datetime:
    return datetime.combine(day, at or time(0, 0), tzinfo=timezone.utc)
