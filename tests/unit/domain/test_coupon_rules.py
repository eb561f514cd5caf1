"""
Tests for coupon eligibility, pricing and multi-coupon resolution.

Coupons here are plain namespaces; the rules only read attributes.
"""

from datetime import datetime, timedelta, timezone
from decimal import Decimal
from types import SimpleNamespace

import pytest

from booking_engine.core.enums import CouponRejectionReason as R, CouponStatus
from booking_engine.domain import coupon_rules
from booking_engine.domain.coupon_rules import CouponContext

NOW = datetime(2025, 6, 1, 12, 0, tzinfo=timezone.utc)


def make_coupon(code="SAVE10", **overrides):
    values = dict(
        id=f"id-{code}",
        code=code,
        discount_type="percentage",
        discount_value=Decimal("10"),
        max_discount_amount=None,
        minimum_order_value=None,
        maximum_order_value=None,
        usage_limit=None,
        user_usage_limit=None,
        usage_count=0,
        valid_from=NOW - timedelta(days=1),
        valid_until=NOW + timedelta(days=30),
        coupon_type="public",
        allowed_users=[],
        is_global=True,
        global_asset_types=[],
        applicable_assets=[],
        stackable=False,
        is_active=True,
    )
    values.update(overrides)
    return SimpleNamespace(**values)


def ctx(order_value=100000, **overrides):
    values = dict(order_value=order_value, now=NOW, user_id="u1", user_key="user:u1")
    values.update(overrides)
    return CouponContext(**values)


def resolve(order_value, *coupons, **ctx_overrides):
    return coupon_rules.resolve(
        [(coupon.code, coupon) for coupon in coupons], ctx(order_value, **ctx_overrides)
    )


class TestComputeDiscount:
    def test_percentage_with_cap(self):
        """10% of 1000.00 is 100.00, capped at 50.00."""
        coupon = make_coupon(max_discount_amount=5000)
        assert coupon_rules.compute_discount(coupon, 100000) == 5000

    def test_percentage_rounds_half_up(self):
        coupon = make_coupon(discount_value=Decimal("12.5"))
        # 12.5% of 1005 = 125.625 -> 126
        assert coupon_rules.compute_discount(coupon, 1005) == 126

    def test_fixed_amount_never_exceeds_order(self):
        coupon = make_coupon(discount_type="fixed_amount", discount_value=Decimal("3000"))
        assert coupon_rules.compute_discount(coupon, 10000) == 3000
        assert coupon_rules.compute_discount(coupon, 2000) == 2000

    def test_zero_order(self):
        assert coupon_rules.compute_discount(make_coupon(), 0) == 0


class TestValidate:
    def test_valid_coupon(self):
        assert coupon_rules.validate(make_coupon(), ctx()).eligible

    @pytest.mark.parametrize(
        "overrides, reason",
        [
            ({"is_active": False}, R.INACTIVE),
            ({"valid_from": NOW + timedelta(hours=1)}, R.NOT_YET_VALID),
            ({"valid_until": NOW - timedelta(seconds=1)}, R.EXPIRED),
            ({"minimum_order_value": 200000}, R.BELOW_MINIMUM_ORDER),
            ({"maximum_order_value": 50000}, R.ABOVE_MAXIMUM_ORDER),
            ({"usage_limit": 3, "usage_count": 3}, R.USAGE_LIMIT_REACHED),
            ({"coupon_type": "private", "allowed_users": ["someone-else"]}, R.NOT_ALLOWED_FOR_USER),
        ],
    )
    def test_rejections(self, overrides, reason):
        result = coupon_rules.validate(make_coupon(**overrides), ctx())
        assert not result.eligible
        assert result.reason == reason
        assert result.message

    def test_inactive_is_checked_before_expiry(self):
        coupon = make_coupon(is_active=False, valid_until=NOW - timedelta(days=1))
        assert coupon_rules.validate(coupon, ctx()).reason == R.INACTIVE

    def test_private_coupon_for_allowed_user(self):
        coupon = make_coupon(coupon_type="private", allowed_users=["u1"])
        assert coupon_rules.validate(coupon, ctx()).eligible

    def test_per_user_limit(self):
        coupon = make_coupon(user_usage_limit=1)
        assert coupon_rules.validate(coupon, ctx(), user_usage_count=1).reason == (
            R.USER_USAGE_LIMIT_REACHED
        )
        assert coupon_rules.validate(coupon, ctx(), user_usage_count=0).eligible

    def test_first_purchase_needs_history(self):
        coupon = make_coupon(coupon_type="first_purchase")
        assert coupon_rules.validate(coupon, ctx()).reason == R.PURCHASE_HISTORY_REQUIRED
        assert (
            coupon_rules.validate(coupon, ctx(has_purchase_history=True)).reason
            == R.NOT_FIRST_PURCHASE
        )
        assert coupon_rules.validate(coupon, ctx(has_purchase_history=False)).eligible

    def test_returning_customer(self):
        coupon = make_coupon(coupon_type="returning_customer")
        assert (
            coupon_rules.validate(coupon, ctx(has_purchase_history=False)).reason
            == R.NOT_RETURNING_CUSTOMER
        )
        assert coupon_rules.validate(coupon, ctx(has_purchase_history=True)).eligible

    def test_asset_allow_list(self):
        entry = SimpleNamespace(asset_type="activity", asset_id="A1", is_active=True)
        coupon = make_coupon(is_global=False, applicable_assets=[entry])

        assert coupon_rules.validate(coupon, ctx(asset_type="activity", asset_id="A1")).eligible
        assert (
            coupon_rules.validate(coupon, ctx(asset_type="activity", asset_id="A2")).reason
            == R.ASSET_NOT_APPLICABLE
        )

    def test_asset_check_skipped_without_asset_context(self):
        coupon = make_coupon(is_global=False, applicable_assets=[])
        assert coupon_rules.validate(coupon, ctx()).eligible

    def test_global_coupon_narrowed_by_type(self):
        coupon = make_coupon(global_asset_types=["event"])
        assert coupon_rules.validate(coupon, ctx(asset_type="event", asset_id="E1")).eligible
        assert (
            coupon_rules.validate(coupon, ctx(asset_type="vehicle", asset_id="V1")).reason
            == R.ASSET_NOT_APPLICABLE
        )

    def test_naive_datetimes_are_treated_as_utc(self):
        coupon = make_coupon(
            valid_from=(NOW - timedelta(days=1)).replace(tzinfo=None),
            valid_until=(NOW + timedelta(days=1)).replace(tzinfo=None),
        )
        assert coupon_rules.validate(coupon, ctx()).eligible


class TestResolve:
    def test_single_coupon_with_cap(self):
        coupon = make_coupon(max_discount_amount=5000)
        resolution = resolve(100000, coupon)

        assert [item.code for item in resolution.applied] == ["SAVE10"]
        assert resolution.total_discount == 5000
        assert resolution.final_amount == 95000
        assert resolution.rejected == []

    def test_codes_are_normalized_and_deduplicated(self):
        coupon = make_coupon()
        resolution = coupon_rules.resolve([(" save10 ", coupon), ("SAVE10", coupon)], ctx())

        assert [item.code for item in resolution.applied] == ["SAVE10"]
        assert [(r.code, r.reason) for r in resolution.rejected] == [("SAVE10", R.DUPLICATE_CODE)]

    def test_unknown_and_malformed_codes(self):
        resolution = coupon_rules.resolve([("NOPE", None), ("x!", None)], ctx())

        assert resolution.applied == []
        reasons = {r.code: r.reason for r in resolution.rejected}
        assert reasons == {"NOPE": R.NOT_FOUND, "X!": R.INVALID_CODE_FORMAT}

    def test_stackable_coupons_sum(self):
        a = make_coupon("STACK-A", stackable=True, discount_type="fixed_amount",
                        discount_value=Decimal("1000"))
        b = make_coupon("STACK-B", stackable=True, discount_type="fixed_amount",
                        discount_value=Decimal("2000"))
        resolution = resolve(10000, b, a)

        assert [item.code for item in resolution.applied] == ["STACK-A", "STACK-B"]
        assert resolution.total_discount == 3000

    def test_two_non_stackable_keep_the_best(self):
        small = make_coupon("SMALL", discount_value=Decimal("5"))
        big = make_coupon("BIG", discount_value=Decimal("20"))
        resolution = resolve(10000, small, big)

        assert [item.code for item in resolution.applied] == ["BIG"]
        assert [(r.code, r.reason) for r in resolution.rejected] == [
            ("SMALL", R.STACKING_CONFLICT)
        ]

    def test_equal_non_stackable_break_ties_by_code(self):
        b = make_coupon("BETA", discount_value=Decimal("10"))
        a = make_coupon("ALPHA", discount_value=Decimal("10"))
        assert [item.code for item in resolve(10000, b, a).applied] == ["ALPHA"]

    def test_equal_discounts_in_conflict_prefer_non_stackable(self):
        stackable = make_coupon("AAA", stackable=True, discount_value=Decimal("10"))
        beta = make_coupon("BETA", discount_value=Decimal("10"))
        gamma = make_coupon("GAMMA", discount_value=Decimal("10"))
        resolution = resolve(10000, stackable, gamma, beta)

        assert [item.code for item in resolution.applied] == ["BETA"]
        assert {(r.code, r.reason) for r in resolution.rejected} == {
            ("AAA", R.STACKING_CONFLICT),
            ("GAMMA", R.STACKING_CONFLICT),
        }

    def test_non_stackable_wins_tie_against_stacked_group(self):
        single = make_coupon("SOLO", discount_type="fixed_amount", discount_value=Decimal("3000"))
        a = make_coupon("ST-A", stackable=True, discount_type="fixed_amount",
                        discount_value=Decimal("1000"))
        b = make_coupon("ST-B", stackable=True, discount_type="fixed_amount",
                        discount_value=Decimal("2000"))
        resolution = resolve(10000, a, single, b)

        assert [item.code for item in resolution.applied] == ["SOLO"]
        assert {r.code for r in resolution.rejected} == {"ST-A", "ST-B"}

    def test_stacked_group_beats_smaller_single(self):
        single = make_coupon("SOLO", discount_type="fixed_amount", discount_value=Decimal("2500"))
        a = make_coupon("ST-A", stackable=True, discount_type="fixed_amount",
                        discount_value=Decimal("1000"))
        b = make_coupon("ST-B", stackable=True, discount_type="fixed_amount",
                        discount_value=Decimal("2000"))
        resolution = resolve(10000, single, a, b)

        assert [item.code for item in resolution.applied] == ["ST-A", "ST-B"]
        assert [(r.code, r.reason) for r in resolution.rejected] == [
            ("SOLO", R.STACKING_CONFLICT)
        ]

    def test_only_one_first_purchase_coupon(self):
        welcome = make_coupon("WELCOME", coupon_type="first_purchase", stackable=True,
                              discount_value=Decimal("10"))
        hello = make_coupon("HELLO", coupon_type="first_purchase", stackable=True,
                            discount_value=Decimal("15"))
        resolution = resolve(10000, welcome, hello, has_purchase_history=False)

        assert [item.code for item in resolution.applied] == ["HELLO"]
        assert [(r.code, r.reason) for r in resolution.rejected] == [
            ("WELCOME", R.TYPE_CONFLICT)
        ]

    def test_total_is_clamped_to_order_value(self):
        a = make_coupon("ST-A", stackable=True, discount_type="fixed_amount",
                        discount_value=Decimal("3000"))
        b = make_coupon("ST-B", stackable=True, discount_type="fixed_amount",
                        discount_value=Decimal("3000"))
        c = make_coupon("ST-C", stackable=True, discount_type="fixed_amount",
                        discount_value=Decimal("3000"))
        resolution = resolve(5000, c, b, a)

        assert [(item.code, item.discount_amount) for item in resolution.applied] == [
            ("ST-A", 3000),
            ("ST-B", 2000),
        ]
        assert [(r.code, r.reason) for r in resolution.rejected] == [
            ("ST-C", R.ORDER_FULLY_DISCOUNTED)
        ]
        assert resolution.final_amount == 0

    def test_result_does_not_depend_on_request_order(self):
        coupons = [
            make_coupon("ST-A", stackable=True, discount_value=Decimal("5")),
            make_coupon("ST-B", stackable=True, discount_value=Decimal("7")),
            make_coupon("SOLO", discount_value=Decimal("11")),
        ]
        forward = resolve(10000, *coupons)
        backward = resolve(10000, *reversed(coupons))

        assert forward.applied == backward.applied
        assert forward.total_discount == backward.total_discount


class TestPresentation:
    def test_status(self):
        assert coupon_rules.coupon_status(make_coupon(), NOW) == CouponStatus.ACTIVE
        assert coupon_rules.coupon_status(make_coupon(is_active=False), NOW) == (
            CouponStatus.INACTIVE
        )
        assert coupon_rules.coupon_status(
            make_coupon(usage_limit=1, usage_count=1), NOW
        ) == CouponStatus.USED_UP
        assert coupon_rules.coupon_status(
            make_coupon(valid_from=NOW + timedelta(days=1)), NOW
        ) == CouponStatus.SCHEDULED
        assert coupon_rules.coupon_status(
            make_coupon(valid_until=NOW - timedelta(days=1)), NOW
        ) == CouponStatus.EXPIRED

    def test_describe(self):
        assert coupon_rules.describe(make_coupon(max_discount_amount=5000)) == (
            "10% off (max 50.00)"
        )
        fixed = make_coupon(
            discount_type="fixed_amount", discount_value=Decimal("1500"), minimum_order_value=10000
        )
        assert coupon_rules.describe(fixed) == "15.00 off on orders from 100.00"

    def test_expiring_soon(self):
        assert coupon_rules.is_expiring_soon(make_coupon(valid_until=NOW + timedelta(days=2)), NOW)
        assert not coupon_rules.is_expiring_soon(make_coupon(), NOW)

    def test_generated_codes_match_format(self):
        for prefix in (None, "summer"):
            code = coupon_rules.generate_coupon_code(prefix)
            assert coupon_rules.is_valid_code_format(code)
        assert coupon_rules.generate_coupon_code("summer").startswith("SUMMER-")


class TestValidateDefinition:
    def _errors(self, **overrides):
        values = dict(
            code="SAVE10",
            discount_type="percentage",
            discount_value=Decimal("10"),
            valid_from=NOW,
            valid_until=NOW + timedelta(days=30),
            coupon_type="public",
            is_global=True,
            applicable_assets=[],
            allowed_users=[],
        )
        values.update(overrides)
        return coupon_rules.validate_definition(**values)

    def test_valid_definition(self):
        assert self._errors() == []

    def test_collects_every_problem(self):
        errors = self._errors(
            code="a",
            discount_value=Decimal("150"),
            valid_until=NOW - timedelta(days=1),
            is_global=False,
        )
        assert len(errors) == 4

    def test_private_needs_users(self):
        assert self._errors(coupon_type="private") == [
            "private coupons need at least one allowed user"
        ]

    def test_fixed_amount_must_be_whole(self):
        errors = self._errors(discount_type="fixed_amount", discount_value=Decimal("10.5"))
        assert errors == ["fixed discounts are whole minor units"]

    def test_validity_window_limit(self):
        errors = self._errors(valid_until=NOW + timedelta(days=800))
        assert errors == ["validity window cannot exceed 730 days"]

    def test_user_limit_cannot_exceed_global_limit(self):
        errors = self._errors(usage_limit=5, user_usage_limit=10)
        assert errors == ["user_usage_limit cannot exceed usage_limit"]
