# booking_engine/services/booking_service.py
"""
Booking Service for the booking engine.

Owns the booking lifecycle:
- creation (price, coupons, capacity hold and draft record in one commit,
  then the payment preference outside any transaction)
- explicit transitions requested by customers and partners
- time-driven sweeps (hold expiry, start and completion)

Every status change goes through ``apply_trigger`` on a freshly read row
inside ``mutate_booking``. The row's version column turns a concurrent change
into StaleDataError, which is retried with a fresh read a bounded number of
times before ConcurrentModificationException is raised.
"""

from dataclasses import dataclass, field
from datetime import datetime, timedelta
import logging
import secrets
from typing import Callable, List, Optional, Sequence

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session
from sqlalchemy.orm.exc import StaleDataError

from ..constants.payment_status import map_provider_status
from ..core.booking_lock import booking_lock_sync
from ..core.config import Settings, settings as default_settings
from ..core.enums import BookingStatus, BookingTrigger, CouponRejectionReason, PaymentStatus
from ..core.exceptions import (
    BusinessRuleException,
    ConcurrentModificationException,
    ConflictException,
    CouponRejectedException,
    DomainException,
    InvalidTransitionException,
    NotFoundException,
    ProviderException,
    ValidationException,
)
from ..core.time_utils import as_utc, utc_now
from ..domain.booking_state_machine import UNPAID_STATUSES, evaluate
from ..domain.coupon_rules import CouponResolution, RejectedCoupon
from ..domain.notification_effect import NotificationEffect
from ..integrations.payment_gateway import (
    PaymentGatewayClient,
    PreferenceItem,
    PreferenceRequest,
    build_payment_gateway,
)
from ..models.bookable_asset import BookableAsset
from ..models.booking import BookingRecord
from ..monitoring.prometheus_metrics import prometheus_metrics
from ..repositories.booking_repository import BookingRepository
from ..schemas.booking import BookingCreate
from .base import BaseService
from .capacity_guard import CapacityGuard
from .coupon_engine import CouponEngine
from .effect_dispatcher import EffectDispatcher, effect_for_status

logger = logging.getLogger(__name__)

CONFIRMATION_CODE_ALPHABET = "ABCDEFGHJKLMNPQRSTUVWXYZ23456789"
_CONFIRMATION_CODE_ATTEMPTS = 10

# Coupon discards that do not fail the booking; the rest are customer errors.
NON_BLOCKING_COUPON_REASONS = frozenset(
    {
        CouponRejectionReason.DUPLICATE_CODE,
        CouponRejectionReason.TYPE_CONFLICT,
        CouponRejectionReason.STACKING_CONFLICT,
        CouponRejectionReason.ORDER_FULLY_DISCOUNTED,
    }
)

# Triggers after which an unpaid booking gives its coupon redemptions back.
_COUPON_RELEASING_TRIGGERS = frozenset({BookingTrigger.HOLD_EXPIRED, BookingTrigger.PAYMENT_FAILED})

# Statuses from which capacity may be released explicitly.
_CAPACITY_RELEASABLE = frozenset({BookingStatus.CANCELED, BookingStatus.NO_SHOW})

# Gateway answers that settle a refund synchronously.
_REFUND_STATUSES = frozenset({PaymentStatus.REFUNDED, PaymentStatus.PARTIALLY_REFUNDED})


@dataclass
class BookingCreationResult:
    booking: BookingRecord
    discarded_coupons: List[RejectedCoupon] = field(default_factory=list)

    @property
    def payment_redirect_url(self) -> Optional[str]:
        return self.booking.checkout_url


@dataclass(frozen=True)
class ScheduleSweepResult:
    started: int = 0
    completed: int = 0


class BookingService(BaseService):
    """Service layer for the booking lifecycle."""

    def __init__(
        self,
        db: Session,
        gateway: Optional[PaymentGatewayClient] = None,
        *,
        repository: Optional[BookingRepository] = None,
        capacity_guard: Optional[CapacityGuard] = None,
        coupon_engine: Optional[CouponEngine] = None,
        effect_dispatcher: Optional[EffectDispatcher] = None,
        config: Optional[Settings] = None,
    ):
        super().__init__(db)
        self.settings = config or default_settings
        self.repository = repository or BookingRepository(db)
        self.capacity = capacity_guard or CapacityGuard(db)
        self.coupons = coupon_engine or CouponEngine(db, booking_repository=self.repository)
        self.effects = effect_dispatcher or EffectDispatcher(db)
        self.gateway = gateway or build_payment_gateway(self.settings)

    # ------------------------------------------------------------ transitions
    def requires_partner_confirmation(self, booking: BookingRecord) -> bool:
        """Catalog override first, then the per-type policy from settings."""
        asset = self.repository.get_asset(booking.asset_id)
        if asset is not None and asset.requires_partner_confirmation is not None:
            return bool(asset.requires_partner_confirmation)
        return booking.asset_type in self.settings.manual_confirmation_types

    def apply_trigger(
        self,
        booking: BookingRecord,
        trigger: BookingTrigger,
        *,
        source: str,
        reason: Optional[str] = None,
        provider_event_id: Optional[str] = None,
    ) -> List[NotificationEffect]:
        """
        Apply ``trigger`` to a loaded booking inside the current transaction.

        Releases capacity and coupon redemptions where the transition calls
        for it, writes the audit row and returns the notification effects.
        Auto-confirmed assets pass straight through awaiting_confirmation and
        only the confirmation is announced.

        Raises:
            InvalidTransitionException: trigger not allowed from the current status
        """
        result = evaluate(booking.status, trigger)
        if result.target is None:
            raise InvalidTransitionException(
                result.current.value, result.trigger.value, result.reason, booking_id=booking.id
            )

        previous = result.current
        now = utc_now()
        booking.apply_status(result.target, now)

        if result.releases_capacity:
            self.capacity.release_hold(booking.capacity_hold_id)
        if trigger in _COUPON_RELEASING_TRIGGERS or (
            trigger == BookingTrigger.CANCELED and previous in UNPAID_STATUSES
        ):
            self.coupons.release_for_booking(booking.id)

        self.repository.add_transition(
            booking_id=booking.id,
            trigger=trigger.value,
            from_status=previous.value,
            to_status=result.target.value,
            outcome="applied",
            source=source,
            reason=reason,
            provider_event_id=provider_event_id,
        )
        prometheus_metrics.record_transition(trigger.value, "applied")
        logger.info(
            "Booking %s %s -> %s (%s via %s)",
            booking.id,
            previous.value,
            result.target.value,
            trigger.value,
            source,
        )

        if (
            result.target == BookingStatus.AWAITING_CONFIRMATION
            and not self.requires_partner_confirmation(booking)
        ):
            return self.apply_trigger(
                booking,
                BookingTrigger.CONFIRMED,
                source="auto_confirm",
                provider_event_id=provider_event_id,
            )

        effect = effect_for_status(booking, result.target)
        return [effect] if effect is not None else []

    def record_rejected_trigger(
        self,
        booking: BookingRecord,
        trigger: BookingTrigger,
        *,
        source: str,
        reason: Optional[str],
        outcome: str = "anomaly",
        provider_event_id: Optional[str] = None,
    ) -> None:
        """Audit a trigger that was not applied; the booking is left untouched."""
        self.repository.add_transition(
            booking_id=booking.id,
            trigger=trigger.value,
            from_status=booking.status,
            to_status=None,
            outcome=outcome,
            source=source,
            reason=reason,
            provider_event_id=provider_event_id,
        )
        prometheus_metrics.record_transition(trigger.value, outcome)

    def _commit_mutation(
        self,
        booking_id: str,
        mutate: Callable[[BookingRecord], Sequence[NotificationEffect]],
    ) -> BookingRecord:
        attempts = self.settings.transition_max_attempts
        for attempt in range(1, attempts + 1):
            booking = self.repository.get_fresh(booking_id)
            if booking is None:
                raise NotFoundException(
                    "Booking not found",
                    code="BOOKING_NOT_FOUND",
                    details={"booking_id": booking_id},
                )
            try:
                with self.transaction():
                    effects = mutate(booking)
                    if effects:
                        self.effects.dispatch(effects)
                return booking
            except StaleDataError:
                prometheus_metrics.record_transition("any", "version_conflict")
                logger.warning(
                    "Booking %s changed concurrently (attempt %s/%s); retrying",
                    booking_id,
                    attempt,
                    attempts,
                )
        raise ConcurrentModificationException(booking_id, attempts)

    def mutate_booking(
        self,
        booking_id: str,
        mutate: Callable[[BookingRecord], Sequence[NotificationEffect]],
    ) -> BookingRecord:
        """
        Run ``mutate`` against a fresh copy of the booking and commit.

        Effects returned by ``mutate`` are enqueued in the same commit. A lost
        optimistic-concurrency race re-reads the row and runs ``mutate`` again.
        When another worker holds the booking's mutex the version check alone
        serializes the change.
        """
        with booking_lock_sync(booking_id) as acquired:
            if not acquired:
                logger.debug("Booking %s is locked; relying on version check", booking_id)
            return self._commit_mutation(booking_id, mutate)

    def try_mutate_booking(
        self,
        booking_id: str,
        mutate: Callable[[BookingRecord], Sequence[NotificationEffect]],
    ) -> Optional[BookingRecord]:
        """Like ``mutate_booking`` but returns None when the booking is locked elsewhere."""
        with booking_lock_sync(booking_id) as acquired:
            if not acquired:
                logger.debug("Booking %s is locked; skipping", booking_id)
                return None
            return self._commit_mutation(booking_id, mutate)

    def _transition(
        self,
        booking_id: str,
        trigger: BookingTrigger,
        *,
        source: str,
        reason: Optional[str] = None,
    ) -> BookingRecord:
        def _apply(booking: BookingRecord) -> List[NotificationEffect]:
            return self.apply_trigger(booking, trigger, source=source, reason=reason)

        return self.mutate_booking(booking_id, _apply)

    # --------------------------------------------------------------- creation
    def _load_bookable_asset(self, asset_id: str, asset_type: str) -> BookableAsset:
        asset = self.repository.get_asset(asset_id)
        if asset is None or not asset.is_active:
            raise NotFoundException(
                "Asset not found", code="ASSET_NOT_FOUND", details={"asset_id": asset_id}
            )
        if asset.asset_type != asset_type:
            raise ValidationException(
                f"Asset {asset_id} is not bookable as {asset_type}",
                code="ASSET_TYPE_MISMATCH",
                details={"asset_id": asset_id, "asset_type": asset.asset_type},
            )
        return asset

    def _resolve_coupons(
        self, data: BookingCreate, asset: BookableAsset, base_amount: int
    ) -> CouponResolution:
        if not data.coupon_codes:
            return CouponResolution(order_value=base_amount)
        ctx = self.coupons.build_context(
            base_amount,
            user_id=data.customer.user_id,
            email=data.customer.email,
            asset_type=asset.asset_type,
            asset_id=asset.id,
        )
        resolution = self.coupons.resolve(data.coupon_codes, ctx)
        for rejected in resolution.rejected:
            if rejected.reason not in NON_BLOCKING_COUPON_REASONS:
                raise CouponRejectedException(
                    rejected.code, rejected.reason.value, rejected.message
                )
        return resolution

    def _new_confirmation_code(self) -> str:
        length = self.settings.confirmation_code_length
        for _ in range(_CONFIRMATION_CODE_ATTEMPTS):
            code = "".join(secrets.choice(CONFIRMATION_CODE_ALPHABET) for _ in range(length))
            if not self.repository.confirmation_code_exists(code):
                return code
        raise ConflictException(
            "Could not allocate a confirmation code", code="CONFIRMATION_CODE_EXHAUSTED"
        )

    def _preference_request(
        self, booking: BookingRecord, asset: BookableAsset
    ) -> PreferenceRequest:
        base_url = self.settings.frontend_url.rstrip("/")
        return PreferenceRequest(
            booking_id=booking.id,
            asset_type=booking.asset_type,
            amount=booking.final_amount,
            currency=booking.currency,
            items=[PreferenceItem(title=asset.name, quantity=1, unit_price=booking.final_amount)],
            payer={
                "name": booking.customer_name,
                "email": booking.customer_email,
                "phone": booking.customer_phone,
            },
            callback_urls={
                "success": f"{base_url}/bookings/{booking.id}/success",
                "pending": f"{base_url}/bookings/{booking.id}/pending",
                "failure": f"{base_url}/bookings/{booking.id}/failure",
            },
            metadata={"quantity": booking.quantity, "asset_id": booking.asset_id},
        )

    @BaseService.measure_operation("create_booking")
    def create_booking(self, data: BookingCreate) -> BookingCreationResult:
        """
        Create a booking and its payment preference.

        Steps:
        1. Validate the asset, the schedule and the coupons (no side effects)
        2. Reserve capacity, persist the draft and redeem coupons in one commit
        3. Ask the gateway for a checkout preference (no transaction held)
        4. Move to payment_pending, or cancel with payment_failed when the
           gateway refuses, releasing the hold and the coupons

        Raises:
            NotFoundException: unknown or inactive asset
            ValidationException / CouponRejectedException: bad input
            CapacityExceededException: a slot is full
            ProviderException: the gateway could not create the preference
        """
        self.log_operation(
            "create_booking",
            asset_type=data.asset_type,
            asset_id=data.asset_id,
            coupon_count=len(data.coupon_codes),
        )

        # 1. Validation, all read-only
        asset = self._load_bookable_asset(data.asset_id, data.asset_type)
        duration = asset.duration_minutes or self.settings.default_service_duration_minutes
        schedule = data.schedule(duration)
        now = utc_now()
        if schedule.scheduled_date is not None and schedule.scheduled_date < now.date():
            raise ValidationException(
                "Cannot book a date in the past",
                code="DATE_IN_PAST",
                details={"scheduled_date": schedule.scheduled_date.isoformat()},
            )
        base_amount = asset.unit_price * data.billable_units()
        resolution = self._resolve_coupons(data, asset, base_amount)
        user_key = self.coupons.customer_user_key(data.customer.user_id, data.customer.email)
        if user_key is None:
            raise ValidationException(
                "A customer email or user id is required", code="CUSTOMER_IDENTITY_REQUIRED"
            )

        # 2. Hold, draft and redemptions commit together or not at all
        try:
            with self.transaction():
                hold_id = self.capacity.reserve_many(
                    asset.id, data.slot_requests(), capacity=asset.capacity_per_slot
                )
                booking = BookingRecord(
                    asset_type=asset.asset_type,
                    asset_id=asset.id,
                    customer_name=data.customer.name,
                    customer_email=data.customer.email,
                    customer_phone=data.customer.phone,
                    customer_user_id=data.customer.user_id,
                    quantity=data.quantity,
                    scheduled_date=schedule.scheduled_date,
                    scheduled_time=schedule.scheduled_time,
                    end_date=schedule.end_date,
                    scheduled_start_at=schedule.start_at,
                    scheduled_end_at=schedule.end_at,
                    details=data.details(),
                    special_requests=data.special_requests,
                    currency=asset.currency or self.settings.currency,
                    base_amount=base_amount,
                    discount_amount=resolution.total_discount,
                    final_amount=resolution.final_amount,
                    status=BookingStatus.DRAFT.value,
                    capacity_hold_id=hold_id,
                    hold_expires_at=now + timedelta(minutes=self.settings.booking_hold_minutes),
                    amount_paid=0,
                )
                self.db.add(booking)
                self.db.flush()
                for item in resolution.applied:
                    self.repository.add_applied_coupon(
                        booking,
                        coupon_id=item.coupon.id,
                        code=item.code,
                        discount_amount=item.discount_amount,
                    )
                self.coupons.redeem(
                    resolution,
                    booking_id=booking.id,
                    user_key=user_key,
                    user_id=data.customer.user_id,
                )
        except IntegrityError as exc:
            logger.warning("Integrity conflict creating booking for %s: %s", asset.id, exc)
            raise ConflictException(
                "Booking could not be created due to a conflicting change",
                code="BOOKING_CONFLICT",
                details={"asset_id": asset.id},
            ) from exc

        discarded = list(resolution.rejected)
        if booking.final_amount == 0:
            return BookingCreationResult(self._settle_free_booking(booking.id), discarded)

        # 3. Gateway call with no transaction open
        try:
            preference = self.gateway.create_preference(self._preference_request(booking, asset))
        except ProviderException as exc:
            logger.error(
                "Payment preference failed for booking %s: %s",
                booking.id,
                exc.message,
                extra={"booking_id": booking.id, "transient": exc.transient},
            )

            def _fail(record: BookingRecord) -> List[NotificationEffect]:
                record.payment_status = PaymentStatus.FAILED.value
                return self.apply_trigger(
                    record, BookingTrigger.PAYMENT_FAILED, source="gateway", reason=exc.message
                )

            self.mutate_booking(booking.id, _fail)
            raise

        # 4. Record the preference and request payment
        def _request_payment(record: BookingRecord) -> List[NotificationEffect]:
            if not record.capacity_hold_id:
                raise InvalidTransitionException(
                    record.status,
                    BookingTrigger.PAYMENT_REQUESTED.value,
                    "payment can only be requested for a booking holding capacity",
                    booking_id=record.id,
                )
            record.confirmation_code = record.confirmation_code or self._new_confirmation_code()
            record.payment_status = PaymentStatus.PENDING.value
            record.payment_preference_id = preference.preference_id
            record.checkout_url = preference.checkout_url
            return self.apply_trigger(record, BookingTrigger.PAYMENT_REQUESTED, source="api")

        committed = self.mutate_booking(booking.id, _request_payment)
        self.log_operation(
            "create_booking_completed",
            booking_id=committed.id,
            final_amount=committed.final_amount,
        )
        return BookingCreationResult(committed, discarded)

    def _settle_free_booking(self, booking_id: str) -> BookingRecord:
        """A fully discounted booking needs no checkout; it is paid on creation."""

        def _settle(record: BookingRecord) -> List[NotificationEffect]:
            record.confirmation_code = record.confirmation_code or self._new_confirmation_code()
            self.apply_trigger(record, BookingTrigger.PAYMENT_REQUESTED, source="api")
            record.payment_status = PaymentStatus.PAID.value
            return self.apply_trigger(
                record, BookingTrigger.PAYMENT_SUCCEEDED, source="api", reason="fully discounted"
            )

        return self.mutate_booking(booking_id, _settle)

    # ---------------------------------------------------------------- queries
    def get_booking(self, booking_id: str) -> BookingRecord:
        booking = self.repository.get_by_id(booking_id)
        if booking is None:
            raise NotFoundException(
                "Booking not found", code="BOOKING_NOT_FOUND", details={"booking_id": booking_id}
            )
        return booking

    def get_by_confirmation_code(self, code: str) -> BookingRecord:
        booking = self.repository.get_by_confirmation_code(code.strip().upper())
        if booking is None:
            raise NotFoundException("Booking not found", code="BOOKING_NOT_FOUND")
        return booking

    # --------------------------------------------------------------- actions
    @BaseService.measure_operation("cancel_booking")
    def cancel_booking(self, booking_id: str, reason: Optional[str] = None) -> BookingRecord:
        def _cancel(booking: BookingRecord) -> List[NotificationEffect]:
            booking.cancellation_reason = reason
            return self.apply_trigger(booking, BookingTrigger.CANCELED, source="api", reason=reason)

        return self.mutate_booking(booking_id, _cancel)

    @BaseService.measure_operation("confirm_booking")
    def confirm_booking(self, booking_id: str) -> BookingRecord:
        """Partner acceptance of a paid booking."""
        return self._transition(booking_id, BookingTrigger.CONFIRMED, source="partner")

    @BaseService.measure_operation("start_booking")
    def start_booking(self, booking_id: str) -> BookingRecord:
        return self._transition(booking_id, BookingTrigger.STARTED, source="partner")

    @BaseService.measure_operation("complete_booking")
    def complete_booking(self, booking_id: str) -> BookingRecord:
        return self._transition(booking_id, BookingTrigger.COMPLETED, source="partner")

    @BaseService.measure_operation("mark_no_show")
    def mark_no_show(self, booking_id: str) -> BookingRecord:
        return self._transition(booking_id, BookingTrigger.NO_SHOW, source="partner")

    def _require_payment_reference(self, booking: BookingRecord) -> str:
        if not booking.provider_payment_id:
            raise BusinessRuleException(
                "Booking has no captured payment at the provider",
                code="NO_PROVIDER_PAYMENT",
                details={"booking_id": booking.id},
            )
        return str(booking.provider_payment_id)

    @BaseService.measure_operation("capture_payment")
    def capture_payment(self, booking_id: str, amount: Optional[int] = None) -> str:
        """
        Ask the gateway to capture an authorized payment.

        The booking itself changes when the provider's notification arrives.
        """
        booking = self.get_booking(booking_id)
        payment_id = self._require_payment_reference(booking)
        result = self.gateway.capture(payment_id, amount)
        self.log_operation("capture_payment", booking_id=booking_id, status=result.status)
        return result.status

    @BaseService.measure_operation("request_refund")
    def request_refund(
        self, booking_id: str, amount: Optional[int] = None, reason: Optional[str] = None
    ) -> BookingRecord:
        """
        Refund a paid booking through the gateway.

        Any settled refund, full or partial, cancels the booking; capacity
        stays held until ``release_capacity``. A booking that is already
        partially refunded may be refunded further without another
        transition. Pending refunds are settled by the provider's notification.
        """
        booking = self.get_booking(booking_id)
        payment_id = self._require_payment_reference(booking)
        paid = booking.amount_paid or booking.final_amount
        if amount is not None and amount > paid:
            raise ValidationException(
                "Refund amount exceeds the amount paid",
                code="REFUND_EXCEEDS_PAID",
                details={"amount": amount, "amount_paid": paid},
            )
        check = evaluate(booking.status, BookingTrigger.REFUNDED)
        follow_up = booking.payment_status == PaymentStatus.PARTIALLY_REFUNDED.value
        if not check.allowed and not follow_up:
            raise InvalidTransitionException(
                check.current.value, check.trigger.value, check.reason, booking_id=booking.id
            )

        full_refund = amount is None or amount == paid
        result = self.gateway.refund(payment_id, None if full_refund else amount)
        mapped = map_provider_status(result.status)
        self.log_operation(
            "request_refund", booking_id=booking_id, status=result.status, amount=amount
        )
        if mapped is None or mapped not in _REFUND_STATUSES:
            return booking
        refund_status: PaymentStatus = mapped

        def _refunded(record: BookingRecord) -> List[NotificationEffect]:
            if record.payment_status != PaymentStatus.REFUNDED.value:
                record.payment_status = refund_status.value
            if not evaluate(record.status, BookingTrigger.REFUNDED).allowed:
                return []
            record.cancellation_reason = reason or record.cancellation_reason
            return self.apply_trigger(record, BookingTrigger.REFUNDED, source="api", reason=reason)

        return self.mutate_booking(booking_id, _refunded)

    @BaseService.measure_operation("release_capacity")
    def release_capacity(self, booking_id: str) -> bool:
        """
        Give back the capacity of a booking that ended without using it.

        Only canceled and no-show bookings qualify; releasing twice is a
        no-op that returns False.
        """
        with booking_lock_sync(booking_id):
            booking = self.get_booking(booking_id)
            if BookingStatus(booking.status) not in _CAPACITY_RELEASABLE:
                raise BusinessRuleException(
                    f"Capacity cannot be released for a booking in status {booking.status}",
                    code="CAPACITY_NOT_RELEASABLE",
                    details={"booking_id": booking_id, "status": booking.status},
                )
            with self.transaction():
                released = self.capacity.release_hold(booking.capacity_hold_id)
            if released:
                self.log_operation("release_capacity", booking_id=booking_id)
            return released

    # ----------------------------------------------------------------- sweeps
    @BaseService.measure_operation("expire_stale_holds")
    def expire_stale_holds(
        self, now: Optional[datetime] = None, limit: Optional[int] = None
    ) -> int:
        """
        Expire unpaid bookings whose hold window has passed.

        Each candidate is re-read under the version check right before it is
        expired, so a payment that lands first wins and the expiry is dropped.
        """
        current = now or utc_now()
        candidates = self.repository.find_expirable_ids(
            current, limit or self.settings.sweep_batch_size
        )
        expired = 0
        for booking_id in candidates:
            outcome = {"expired": False}

            def _expire(booking: BookingRecord) -> List[NotificationEffect]:
                if BookingStatus(booking.status) not in UNPAID_STATUSES:
                    return []
                if booking.hold_expires_at is None or as_utc(booking.hold_expires_at) > current:
                    return []
                outcome["expired"] = True
                return self.apply_trigger(booking, BookingTrigger.HOLD_EXPIRED, source="sweep")

            try:
                self.try_mutate_booking(booking_id, _expire)
            except DomainException as exc:
                logger.warning("Could not expire booking %s: %s", booking_id, exc.message)
                continue
            if outcome["expired"]:
                expired += 1
        if expired:
            logger.info("Expired %s stale booking hold(s)", expired)
        return expired

    def _advance(
        self, booking_ids: Sequence[str], trigger: BookingTrigger, expected: BookingStatus
    ) -> int:
        advanced = 0
        for booking_id in booking_ids:
            outcome = {"applied": False}

            def _step(booking: BookingRecord) -> List[NotificationEffect]:
                if booking.status != expected.value:
                    return []
                outcome["applied"] = True
                return self.apply_trigger(booking, trigger, source="sweep")

            try:
                self.try_mutate_booking(booking_id, _step)
            except DomainException as exc:
                logger.warning(
                    "Could not apply %s to booking %s: %s", trigger.value, booking_id, exc.message
                )
                continue
            if outcome["applied"]:
                advanced += 1
        return advanced

    @BaseService.measure_operation("advance_schedule")
    def advance_schedule(
        self, now: Optional[datetime] = None, limit: Optional[int] = None
    ) -> ScheduleSweepResult:
        """Start confirmed bookings that have begun and complete those that have ended."""
        current = now or utc_now()
        batch = limit or self.settings.sweep_batch_size
        started = self._advance(
            self.repository.find_due_to_start_ids(current, batch),
            BookingTrigger.STARTED,
            BookingStatus.CONFIRMED,
        )
        completed = self._advance(
            self.repository.find_due_to_complete_ids(current, batch),
            BookingTrigger.COMPLETED,
            BookingStatus.IN_PROGRESS,
        )
        if started or completed:
            logger.info("Schedule sweep started %s and completed %s booking(s)", started, completed)
        return ScheduleSweepResult(started=started, completed=completed)
