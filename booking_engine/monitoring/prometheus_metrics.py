"""
Prometheus metrics for the booking engine.

Service timings come from the @measure_operation decorator; domain counters
cover booking transitions, payment events, capacity and coupon usage, the
booking mutex and the notification outbox.
"""

from threading import Lock
from time import monotonic
from typing import Optional

from prometheus_client import (
    CONTENT_TYPE_LATEST,
    CollectorRegistry,
    Counter,
    Histogram,
    generate_latest,
)

# Create a custom registry to avoid conflicts with default metrics
REGISTRY = CollectorRegistry()

service_operation_duration_seconds = Histogram(
    "booking_engine_service_operation_duration_seconds",
    "Service operation duration in seconds",
    ["service", "operation"],
    registry=REGISTRY,
    buckets=(0.001, 0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5),
)

service_operations_total = Counter(
    "booking_engine_service_operations_total",
    "Total number of service operations",
    ["service", "operation", "status"],
    registry=REGISTRY,
)

errors_total = Counter(
    "booking_engine_errors_total",
    "Total number of errors",
    ["service", "operation", "error_type"],
    registry=REGISTRY,
)

booking_transitions_total = Counter(
    "booking_engine_booking_transitions_total",
    "Booking state machine evaluations by trigger and outcome",
    ["trigger", "outcome"],  # outcome: applied | rejected | anomaly
    registry=REGISTRY,
)

payment_events_total = Counter(
    "booking_engine_payment_events_total",
    "Ingested payment events by outcome",
    ["outcome", "payment_status"],
    registry=REGISTRY,
)

capacity_reservations_total = Counter(
    "booking_engine_capacity_reservations_total",
    "Capacity reservation attempts by outcome",
    ["outcome"],  # reserved | exceeded | released | release_noop
    registry=REGISTRY,
)

coupon_redemptions_total = Counter(
    "booking_engine_coupon_redemptions_total",
    "Coupon redemption attempts by outcome",
    ["outcome"],  # applied | rejected | released
    registry=REGISTRY,
)

gateway_requests_total = Counter(
    "booking_engine_gateway_requests_total",
    "Outbound payment gateway calls",
    ["gateway", "operation", "outcome"],
    registry=REGISTRY,
)

booking_lock_total = Counter(
    "booking_engine_booking_lock_total",
    "Booking mutex operations",
    ["action", "outcome"],
    registry=REGISTRY,
)

notifications_outbox_total = Counter(
    "booking_engine_notifications_outbox_total",
    "Total notification outbox events by terminal status",
    ["status", "event_type"],
    registry=REGISTRY,
)

notifications_outbox_attempt_total = Counter(
    "booking_engine_notifications_outbox_attempt_total",
    "Number of notification outbox delivery attempts",
    ["event_type"],
    registry=REGISTRY,
)

notifications_dispatch_seconds = Histogram(
    "booking_engine_notifications_dispatch_seconds",
    "Notification provider dispatch duration in seconds",
    ["event_type"],
    registry=REGISTRY,
    buckets=(0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0),
)


class PrometheusMetrics:
    """Manages Prometheus metrics collection and exposure."""

    _cache_lock: Lock = Lock()
    _cache_payload: Optional[bytes] = None
    _cache_ts: Optional[float] = None
    _cache_ttl_seconds: float = 1.0

    @staticmethod
    def record_service_operation(
        service: str,
        operation: str,
        duration: float,
        status: str = "success",
        error_type: Optional[str] = None,
    ) -> None:
        """
        Record service operation metrics from @measure_operation decorator.

        Args:
            service: Service name (e.g., 'BookingService')
            operation: Operation name (e.g., 'create_booking')
            duration: Operation duration in seconds
            status: Operation status ('success' or 'error')
            error_type: Type of error if status is 'error'
        """
        service_operation_duration_seconds.labels(service=service, operation=operation).observe(
            duration
        )
        service_operations_total.labels(service=service, operation=operation, status=status).inc()
        if status == "error" and error_type:
            errors_total.labels(service=service, operation=operation, error_type=error_type).inc()
        PrometheusMetrics._invalidate_cache()

    @staticmethod
    def record_transition(trigger: str, outcome: str) -> None:
        booking_transitions_total.labels(trigger=trigger, outcome=outcome).inc()
        PrometheusMetrics._invalidate_cache()

    @staticmethod
    def record_payment_event(outcome: str, payment_status: Optional[str]) -> None:
        payment_events_total.labels(
            outcome=outcome, payment_status=payment_status or "unmapped"
        ).inc()
        PrometheusMetrics._invalidate_cache()

    @staticmethod
    def record_capacity(outcome: str) -> None:
        capacity_reservations_total.labels(outcome=outcome).inc()
        PrometheusMetrics._invalidate_cache()

    @staticmethod
    def record_coupon_redemption(outcome: str) -> None:
        coupon_redemptions_total.labels(outcome=outcome).inc()
        PrometheusMetrics._invalidate_cache()

    @staticmethod
    def record_gateway_request(gateway: str, operation: str, outcome: str) -> None:
        gateway_requests_total.labels(gateway=gateway, operation=operation, outcome=outcome).inc()
        PrometheusMetrics._invalidate_cache()

    @staticmethod
    def record_booking_lock(action: str, outcome: str) -> None:
        booking_lock_total.labels(action=action, outcome=outcome).inc()
        PrometheusMetrics._invalidate_cache()

    @staticmethod
    def record_notification_outcome(event_type: str, status: str) -> None:
        notifications_outbox_total.labels(status=status, event_type=event_type).inc()
        PrometheusMetrics._invalidate_cache()

    @staticmethod
    def record_notification_attempt(event_type: str) -> None:
        notifications_outbox_attempt_total.labels(event_type=event_type).inc()
        PrometheusMetrics._invalidate_cache()

    @staticmethod
    def observe_notification_dispatch(event_type: str, duration: float) -> None:
        notifications_dispatch_seconds.labels(event_type=event_type).observe(max(duration, 0.0))
        PrometheusMetrics._invalidate_cache()

    @classmethod
    def _invalidate_cache(cls) -> None:
        with cls._cache_lock:
            cls._cache_payload = None
            cls._cache_ts = None

    @classmethod
    def get_metrics(cls) -> bytes:
        """Render the registry, reusing the payload for a short TTL."""
        now = monotonic()
        with cls._cache_lock:
            if (
                cls._cache_payload is not None
                and cls._cache_ts is not None
                and now - cls._cache_ts < cls._cache_ttl_seconds
            ):
                return cls._cache_payload
            payload = generate_latest(REGISTRY)
            cls._cache_payload = payload
            cls._cache_ts = now
            return payload

    @staticmethod
    def get_content_type() -> str:
        return CONTENT_TYPE_LATEST


prometheus_metrics = PrometheusMetrics()
