# booking_engine/services/payment_reconciler.py
"""
Payment Reconciler for the booking engine.

Turns provider payment notifications into booking transitions. Providers
deliver at least once and in any order, so every event is:
- logged to the webhook ledger before anything else
- deduplicated per booking by provider event id
- ranked against the recorded payment status (late informational events
  never downgrade a settled payment)
- applied through the booking state machine, or recorded as an anomaly when
  the booking can no longer take it (a payment landing on an expired hold)

The PaymentEvent row is written in the same commit as the booking change, so
an event is either fully reconciled or not at all.
"""

from dataclasses import dataclass
import logging
from typing import Any, Dict, List, Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from ..constants.payment_status import (
    PAYMENT_STATUS_TRIGGERS,
    map_provider_status,
    status_rank,
)
from ..core.enums import BookingTrigger, PaymentEventOutcome, PaymentStatus
from ..core.exceptions import UnknownBookingException
from ..domain.booking_state_machine import evaluate
from ..domain.notification_effect import NotificationEffect
from ..integrations.stripe_events import STRIPE_PROVIDER, normalize_stripe_event
from ..models.booking import BookingRecord
from ..models.payment_event import PaymentEvent
from ..models.webhook_ledger import WebhookLedgerEntry
from ..monitoring.prometheus_metrics import prometheus_metrics
from ..repositories.payment_event_repository import PaymentEventRepository
from ..schemas.payment_webhook import PaymentWebhookPayload
from .base import BaseService
from .booking_service import BookingService
from .webhook_ledger_service import WebhookLedgerService

logger = logging.getLogger(__name__)

PAYMENT_SERVICE_SOURCE = "payment_service"

_SETTLED = frozenset({PaymentStatus.PAID, PaymentStatus.PARTIALLY_PAID})


def _is_follow_up(booking: BookingRecord, trigger: BookingTrigger) -> bool:
    """A later payment or refund for a booking an earlier event already moved."""
    if trigger == BookingTrigger.PAYMENT_SUCCEEDED:
        return booking.is_settled
    if trigger == BookingTrigger.REFUNDED:
        return booking.payment_status == PaymentStatus.PARTIALLY_REFUNDED.value
    return False



@dataclass(frozen=True)
class ReconciliationResult:
    """What happened to one payment notification."""

    outcome: PaymentEventOutcome
    booking_id: Optional[str] = None
    booking_status: Optional[str] = None
    payment_status: Optional[str] = None
    reason: Optional[str] = None


@dataclass
class _Decision:
    outcome: PaymentEventOutcome
    payment_status: Optional[PaymentStatus] = None
    reason: Optional[str] = None


class PaymentReconciler(BaseService):
    """Reconciles provider payment notifications against bookings."""

    def __init__(
        self,
        db: Session,
        booking_service: Optional[BookingService] = None,
        *,
        repository: Optional[PaymentEventRepository] = None,
        ledger: Optional[WebhookLedgerService] = None,
    ):
        super().__init__(db)
        self.bookings = booking_service or BookingService(db)
        self.booking_repository = self.bookings.repository
        self.repository = repository or PaymentEventRepository(db)
        self.ledger = ledger or WebhookLedgerService(db)

    # ---------------------------------------------------------------- lookup
    def _resolve_booking(self, reference: str) -> BookingRecord:
        """Booking id first, then confirmation code, then provider payment id."""
        ref = reference.strip()
        booking = self.booking_repository.get_by_id(ref, load_relationships=False)
        if booking is None:
            booking = self.booking_repository.get_by_confirmation_code(ref.upper())
        if booking is None:
            booking = self.booking_repository.get_by_provider_payment_id(ref)
        if booking is None:
            raise UnknownBookingException(ref)
        return booking

    # -------------------------------------------------------------- decision
    def _decide(
        self,
        booking: BookingRecord,
        payload: PaymentWebhookPayload,
        effects: List[NotificationEffect],
    ) -> _Decision:
        """Mutate ``booking`` for this event and return the outcome."""
        mapped = map_provider_status(payload.status)
        if mapped is None:
            logger.warning(
                "Unmapped payment status '%s' from %s for booking %s; reconcile manually",
                payload.status,
                payload.provider,
                booking.id,
                extra={"provider_event_id": payload.provider_event_id},
            )
            return _Decision(
                PaymentEventOutcome.UNMAPPED,
                reason=f"unmapped provider status '{payload.status}'",
            )

        status = mapped
        if (
            status == PaymentStatus.PAID
            and payload.amount is not None
            and payload.amount < booking.final_amount
        ):
            status = PaymentStatus.PARTIALLY_PAID

        if status in _SETTLED and payload.currency and payload.currency != booking.currency:
            reason = (
                f"currency {payload.currency} does not match booking currency {booking.currency}"
            )
            self.bookings.record_rejected_trigger(
                booking,
                BookingTrigger.PAYMENT_SUCCEEDED,
                source="webhook",
                reason=reason,
                provider_event_id=payload.provider_event_id,
            )
            return _Decision(PaymentEventOutcome.ANOMALY, status, reason)

        if status_rank(status.value) < status_rank(booking.payment_status):
            return _Decision(
                PaymentEventOutcome.STALE,
                status,
                f"'{status.value}' arrived after '{booking.payment_status}'",
            )

        trigger = PAYMENT_STATUS_TRIGGERS.get(status)
        if trigger is None or booking.payment_status == status.value:
            self._record_status(booking, payload, status)
            return _Decision(PaymentEventOutcome.RECORDED, status)

        check = evaluate(booking.status, trigger)
        if not check.allowed:
            if _is_follow_up(booking, trigger):
                self._record_status(booking, payload, status)
                return _Decision(PaymentEventOutcome.RECORDED, status)
            self.bookings.record_rejected_trigger(
                booking,
                trigger,
                source="webhook",
                reason=check.reason,
                provider_event_id=payload.provider_event_id,
            )
            logger.warning(
                "Payment anomaly on booking %s: %s while %s (%s)",
                booking.id,
                status.value,
                booking.status,
                check.reason,
            )
            return _Decision(PaymentEventOutcome.ANOMALY, status, check.reason)

        self._record_status(booking, payload, status)
        effects.extend(
            self.bookings.apply_trigger(
                booking,
                trigger,
                source="webhook",
                reason=f"provider status {payload.status}",
                provider_event_id=payload.provider_event_id,
            )
        )
        return _Decision(PaymentEventOutcome.APPLIED, status)

    @staticmethod
    def _record_status(
        booking: BookingRecord, payload: PaymentWebhookPayload, status: PaymentStatus
    ) -> None:
        """Store an accepted event's payment facts on the booking."""
        booking.payment_status = status.value
        if payload.provider_payment_id:
            booking.provider_payment_id = payload.provider_payment_id
        if status in _SETTLED:
            amount = payload.amount if payload.amount is not None else booking.final_amount
            booking.amount_paid = max(booking.amount_paid or 0, amount)

    def _event_row(
        self,
        booking: BookingRecord,
        payload: PaymentWebhookPayload,
        decision: _Decision,
        status_before: str,
        raw_payload: Optional[Dict[str, Any]],
    ) -> PaymentEvent:
        return PaymentEvent(
            booking_id=booking.id,
            booking_reference=payload.booking_reference,
            provider=payload.provider,
            provider_event_id=payload.provider_event_id,
            provider_payment_id=payload.provider_payment_id,
            raw_status=payload.status,
            payment_status=decision.payment_status.value if decision.payment_status else None,
            amount=payload.amount,
            currency=payload.currency,
            outcome=decision.outcome.value,
            anomaly_reason=decision.reason,
            booking_status_before=status_before,
            booking_status_after=booking.status,
            event_timestamp=payload.timestamp,
            raw_payload=raw_payload or payload.model_dump(mode="json", by_alias=True),
        )

    # ----------------------------------------------------------------- apply
    @BaseService.measure_operation("reconcile_payment_event")
    def reconcile(
        self,
        payload: PaymentWebhookPayload,
        raw_payload: Optional[Dict[str, Any]] = None,
    ) -> ReconciliationResult:
        """
        Apply one normalized payment notification to its booking.

        Raises:
            UnknownBookingException: the reference matches no booking yet
        """
        booking_id = self._resolve_booking(payload.booking_reference).id
        decision = _Decision(PaymentEventOutcome.DUPLICATE)

        def _reconcile(booking: BookingRecord) -> List[NotificationEffect]:
            nonlocal decision
            effects: List[NotificationEffect] = []
            if self.repository.find(booking.id, payload.provider_event_id) is not None:
                decision = _Decision(PaymentEventOutcome.DUPLICATE)
                return effects
            status_before = booking.status
            decision = self._decide(booking, payload, effects)
            self.db.add(self._event_row(booking, payload, decision, status_before, raw_payload))
            return effects

        try:
            booking = self.bookings.mutate_booking(booking_id, _reconcile)
        except IntegrityError:
            # The same event committed first in another worker
            logger.info(
                "Payment event %s for booking %s reconciled concurrently",
                payload.provider_event_id,
                booking_id,
            )
            decision = _Decision(PaymentEventOutcome.DUPLICATE)
            concurrent = self.booking_repository.get_fresh(booking_id)
            if concurrent is None:
                raise UnknownBookingException(booking_id)
            booking = concurrent

        prometheus_metrics.record_payment_event(
            decision.outcome.value,
            decision.payment_status.value if decision.payment_status else None,
        )
        self.log_operation(
            "reconcile_payment_event",
            booking_id=booking.id,
            provider_event_id=payload.provider_event_id,
            outcome=decision.outcome.value,
        )
        return ReconciliationResult(
            outcome=decision.outcome,
            booking_id=booking.id,
            booking_status=booking.status,
            payment_status=booking.payment_status,
            reason=decision.reason,
        )

    # --------------------------------------------------------------- ingress
    def _process_logged(
        self,
        entry_id: str,
        payload: PaymentWebhookPayload,
        raw_payload: Dict[str, Any],
    ) -> ReconciliationResult:
        try:
            result = self.reconcile(payload, raw_payload)
        except Exception as exc:
            self.ledger.mark_failed(entry_id, error=f"{type(exc).__name__}: {exc}")
            raise
        self.ledger.mark_processed(
            entry_id, outcome=result.outcome.value, booking_id=result.booking_id
        )
        return result

    def _process_optional(
        self,
        entry_id: str,
        payload: Optional[PaymentWebhookPayload],
        raw_payload: Dict[str, Any],
    ) -> Optional[ReconciliationResult]:
        """Events that carry no payment change are closed without reconciling."""
        if payload is None:
            self.ledger.mark_processed(entry_id)
            return None
        return self._process_logged(entry_id, payload, raw_payload)

    def handle_payment_notification(
        self,
        payload: PaymentWebhookPayload,
        raw_payload: Dict[str, Any],
        headers: Optional[Dict[str, Any]] = None,
    ) -> ReconciliationResult:
        """Ledger, then reconcile, for the payment service's own webhook."""
        entry = self.ledger.record(
            source=PAYMENT_SERVICE_SOURCE,
            event_type=f"payment.{payload.status}",
            payload=raw_payload,
            headers=headers,
            provider_event_id=payload.provider_event_id,
        )
        return self._process_logged(entry.id, payload, raw_payload)

    def record_invalid_notification(
        self,
        raw_payload: Dict[str, Any],
        error: str,
        headers: Optional[Dict[str, Any]] = None,
    ) -> None:
        """Keep a notification that failed validation for manual reconciliation."""
        event_id = raw_payload.get("providerEventId") or raw_payload.get("provider_event_id")
        entry = self.ledger.record(
            source=PAYMENT_SERVICE_SOURCE,
            event_type="payment.invalid",
            payload=raw_payload,
            headers=headers,
            provider_event_id=str(event_id) if event_id else None,
        )
        self.ledger.mark_failed(entry.id, error=error)
        logger.warning("Rejected invalid payment notification %s: %s", event_id, error)

    def handle_stripe_event(
        self,
        event: Dict[str, Any],
        headers: Optional[Dict[str, Any]] = None,
    ) -> Optional[ReconciliationResult]:
        """
        Ledger and reconcile a verified Stripe event.

        Returns None for event types that carry no payment change.
        """
        entry = self.ledger.record(
            source=STRIPE_PROVIDER,
            event_type=event.get("type") or "unknown",
            payload=event,
            headers=headers,
            provider_event_id=event.get("id"),
        )
        return self._process_optional(entry.id, normalize_stripe_event(event), event)

    def _payload_for(self, entry: WebhookLedgerEntry) -> Optional[PaymentWebhookPayload]:
        if entry.source == STRIPE_PROVIDER:
            return normalize_stripe_event(entry.payload)
        return PaymentWebhookPayload.model_validate(entry.payload)

    @BaseService.measure_operation("replay_failed_payment_events")
    def replay_failed(self, *, max_replays: int = 5, limit: int = 100) -> int:
        """
        Re-run failed ledger entries, typically notifications that overtook
        their booking's commit. Returns how many now succeeded.
        """
        replayed = 0
        for entry in self.ledger.replayable(max_replays=max_replays, limit=limit):
            entry_id = entry.id
            self.ledger.start_replay(entry_id)
            try:
                self._process_optional(entry_id, self._payload_for(entry), entry.payload)
            except Exception as exc:
                logger.warning("Replay of webhook %s failed: %s", entry_id, exc)
                continue
            replayed += 1
        if replayed:
            logger.info("Replayed %s failed payment webhook(s)", replayed)
        return replayed
