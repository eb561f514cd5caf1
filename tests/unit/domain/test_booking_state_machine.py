"""
Tests for the booking transition table.
"""

import pytest

from booking_engine.core.enums import BookingStatus, BookingTrigger
from booking_engine.core.exceptions import InvalidTransitionException
from booking_engine.domain.booking_state_machine import (
    TERMINAL_STATUSES,
    TRANSITIONS,
    allowed_triggers,
    apply_transition,
    evaluate,
    is_terminal,
)

S = BookingStatus
T = BookingTrigger

EXPECTED = {
    (S.DRAFT, T.PAYMENT_REQUESTED): S.PAYMENT_PENDING,
    (S.PAYMENT_PENDING, T.PAYMENT_SUCCEEDED): S.AWAITING_CONFIRMATION,
    (S.AWAITING_CONFIRMATION, T.CONFIRMED): S.CONFIRMED,
    (S.CONFIRMED, T.STARTED): S.IN_PROGRESS,
    (S.IN_PROGRESS, T.COMPLETED): S.COMPLETED,
    (S.DRAFT, T.HOLD_EXPIRED): S.EXPIRED,
    (S.PAYMENT_PENDING, T.HOLD_EXPIRED): S.EXPIRED,
    (S.DRAFT, T.CANCELED): S.CANCELED,
    (S.PAYMENT_PENDING, T.CANCELED): S.CANCELED,
    (S.AWAITING_CONFIRMATION, T.CANCELED): S.CANCELED,
    (S.CONFIRMED, T.CANCELED): S.CANCELED,
    (S.IN_PROGRESS, T.CANCELED): S.CANCELED,
    (S.DRAFT, T.PAYMENT_FAILED): S.CANCELED,
    (S.PAYMENT_PENDING, T.PAYMENT_FAILED): S.CANCELED,
    (S.AWAITING_CONFIRMATION, T.PAYMENT_FAILED): S.CANCELED,
    (S.AWAITING_CONFIRMATION, T.REFUNDED): S.CANCELED,
    (S.CONFIRMED, T.REFUNDED): S.CANCELED,
    (S.IN_PROGRESS, T.REFUNDED): S.CANCELED,
    (S.COMPLETED, T.REFUNDED): S.CANCELED,
    (S.CONFIRMED, T.NO_SHOW): S.NO_SHOW,
    (S.IN_PROGRESS, T.NO_SHOW): S.NO_SHOW,
}


class TestEvaluate:
    @pytest.mark.parametrize("status", list(S))
    @pytest.mark.parametrize("trigger", list(T))
    def test_every_pair_has_a_defined_answer(self, status, trigger):
        """Each status/trigger pair is either a target or a rejection with a reason."""
        result = evaluate(status, trigger)

        expected = EXPECTED.get((status, trigger))
        assert result.target == expected
        if expected is None:
            assert result.allowed is False
            assert result.reason
        else:
            assert result.allowed is True
            assert result.reason is None

    def test_accepts_raw_strings(self):
        result = evaluate("payment_pending", "payment_succeeded")
        assert result.target == S.AWAITING_CONFIRMATION

    def test_unknown_values_raise(self):
        with pytest.raises(ValueError):
            evaluate("archived", T.CANCELED)

    @pytest.mark.parametrize("status", sorted(TERMINAL_STATUSES, key=lambda s: s.value))
    def test_terminal_statuses_explain_themselves(self, status):
        result = evaluate(status, T.CANCELED)
        assert not result.allowed
        assert "no further transitions" in result.reason

    def test_late_payment_reason_mentions_settlement(self):
        result = evaluate(S.CONFIRMED, T.PAYMENT_SUCCEEDED)
        assert "already settled" in result.reason

    def test_capacity_release_flags(self):
        assert evaluate(S.PAYMENT_PENDING, T.HOLD_EXPIRED).releases_capacity
        assert evaluate(S.CONFIRMED, T.CANCELED).releases_capacity
        assert evaluate(S.DRAFT, T.PAYMENT_FAILED).releases_capacity
        # Refunds keep the hold until it is released explicitly
        assert not evaluate(S.CONFIRMED, T.REFUNDED).releases_capacity
        assert not evaluate(S.CONFIRMED, T.NO_SHOW).releases_capacity
        # Rejected transitions never release anything
        assert not evaluate(S.COMPLETED, T.CANCELED).releases_capacity


class TestHelpers:
    def test_apply_transition_returns_target(self):
        assert apply_transition(S.CONFIRMED, T.STARTED) == S.IN_PROGRESS

    def test_apply_transition_raises_with_context(self):
        with pytest.raises(InvalidTransitionException) as exc_info:
            apply_transition(S.EXPIRED, T.PAYMENT_SUCCEEDED, booking_id="01ABC")

        exc = exc_info.value
        assert exc.code == "INVALID_TRANSITION"
        assert exc.current_status == "expired"
        assert exc.trigger == "payment_succeeded"
        assert exc.details["booking_id"] == "01ABC"

    def test_allowed_triggers_follow_declaration_order(self):
        assert allowed_triggers(S.CONFIRMED) == [T.STARTED, T.CANCELED, T.REFUNDED, T.NO_SHOW]
        assert allowed_triggers(S.EXPIRED) == []

    def test_terminal_statuses_have_no_way_out_except_refund(self):
        for status in TERMINAL_STATUSES:
            assert is_terminal(status)
            triggers = allowed_triggers(status)
            assert triggers in ([], [T.REFUNDED])

    def test_transition_table_covers_every_trigger(self):
        assert set(TRANSITIONS) == set(T)
