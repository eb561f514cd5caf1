"""
Per-booking mutex kept in Redis.

Mutations of a booking take this lock first so concurrent workers rarely
collide. It narrows contention only: the booking row's version column still
decides which writer wins, so callers treat a missing or broken Redis as if
the lock had been granted.
"""

from __future__ import annotations

from contextlib import contextmanager
import logging
import threading
from typing import Iterator, Optional

from redis import Redis
from redis.exceptions import RedisError

from ..monitoring.prometheus_metrics import prometheus_metrics
from .config import settings
from .ulid_helper import generate_ulid

logger = logging.getLogger(__name__)

# Deletes the key only while it still carries the holder's token, so a lock
# that expired and was taken by another worker is left alone.
_RELEASE_SCRIPT = """
if redis.call('get', KEYS[1]) == ARGV[1] then
    return redis.call('del', KEYS[1])
end
return 0
"""

_client: Optional[Redis] = None
_client_guard = threading.Lock()


def get_lock_client() -> Optional[Redis]:
    """Shared Redis connection for locks; None when Redis is off or unreachable."""
    global _client
    if not settings.redis_url:
        return None
    with _client_guard:
        if _client is None:
            try:
                candidate = Redis.from_url(
                    settings.redis_url, decode_responses=True, socket_timeout=2.0
                )
                candidate.ping()
            except RedisError as exc:
                logger.warning("Booking locks unavailable, Redis unreachable: %s", exc)
                return None
            _client = candidate
        return _client


class BookingLock:
    """Token-owned lock on one booking."""

    def __init__(
        self,
        booking_id: str,
        ttl_seconds: Optional[int] = None,
        client: Optional[Redis] = None,
    ):
        self.booking_id = booking_id
        self.key = f"booking_engine:booking:{booking_id}:lock"
        self.ttl_seconds = ttl_seconds or settings.booking_lock_ttl_seconds
        self.token = generate_ulid()
        self.held = False
        self._client = client

    def acquire(self) -> bool:
        """
        Try to take the lock without waiting.

        Returns False only when another holder has it. Redis being absent or
        failing counts as granted.
        """
        client = self._client or get_lock_client()
        if client is None:
            prometheus_metrics.record_booking_lock("acquire", "redis_unavailable")
            return True
        self._client = client
        try:
            self.held = bool(client.set(self.key, self.token, nx=True, ex=self.ttl_seconds))
        except RedisError as exc:
            prometheus_metrics.record_booking_lock("acquire", "error")
            logger.warning(
                "Could not lock booking %s: %s",
                self.booking_id,
                exc,
                extra={"booking_id": self.booking_id, "error_type": type(exc).__name__},
            )
            return True
        prometheus_metrics.record_booking_lock("acquire", "success" if self.held else "blocked")
        return self.held

    def release(self) -> None:
        if not self.held or self._client is None:
            return
        self.held = False
        try:
            released = self._client.eval(_RELEASE_SCRIPT, 1, self.key, self.token)
        except RedisError as exc:
            prometheus_metrics.record_booking_lock("release", "error")
            logger.warning("Could not unlock booking %s: %s", self.booking_id, exc)
            return
        # Zero means the TTL ran out while the work was still going.
        prometheus_metrics.record_booking_lock("release", "success" if released else "expired")
        if not released:
            logger.warning("Lock on booking %s expired before release", self.booking_id)


@contextmanager
def booking_lock_sync(booking_id: str, ttl_s: Optional[int] = None) -> Iterator[bool]:
    """Hold the booking's lock for the block; yields whether it was granted."""
    lock = BookingLock(booking_id, ttl_seconds=ttl_s)
    granted = lock.acquire()
    try:
        yield granted
    finally:
        lock.release()
