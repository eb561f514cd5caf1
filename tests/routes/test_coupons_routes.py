"""Route tests for /api/v1/coupons."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

COUPONS_URL = "/api/v1/coupons"


def _window(days: int = 30) -> dict:
    now = datetime.now(timezone.utc)
    return {
        "valid_from": (now - timedelta(hours=1)).isoformat(),
        "valid_until": (now + timedelta(days=days)).isoformat(),
    }


def _coupon_body(**overrides):
    body = {
        "code": "summer10",
        "coupon_type": "public",
        "discount_type": "percentage",
        "discount_value": "10",
        "max_discount_amount": 5000,
        "is_global": True,
        **_window(),
    }
    body.update(overrides)
    return body


class TestCreateCoupon:
    def test_create_public_coupon(self, client):
        response = client.post(COUPONS_URL, json=_coupon_body())

        assert response.status_code == 201, response.text
        data = response.json()
        assert data["code"] == "SUMMER10"
        assert data["status"] == "active"
        assert data["summary"] == "10% off (max 50.00)"
        assert data["usage_count"] == 0

    def test_private_coupon_needs_users(self, client):
        response = client.post(COUPONS_URL, json=_coupon_body(coupon_type="private"))

        assert response.status_code == 422

    def test_private_coupon(self, client):
        response = client.post(
            COUPONS_URL, json=_coupon_body(coupon_type="private", allowed_users=["user-1"])
        )

        assert response.status_code == 201
        assert response.json()["coupon_type"] == "private"

    def test_percentage_above_hundred(self, client):
        response = client.post(COUPONS_URL, json=_coupon_body(discount_value="150"))

        assert response.status_code == 422

    def test_duplicate_code(self, client):
        client.post(COUPONS_URL, json=_coupon_body())

        response = client.post(COUPONS_URL, json=_coupon_body())

        assert response.status_code == 409
        assert response.json()["code"] == "DUPLICATE_COUPON"

    def test_generated_code(self, client):
        response = client.post(COUPONS_URL, json=_coupon_body(code=None, code_prefix="fall"))

        assert response.status_code == 201
        assert response.json()["code"].startswith("FALL-")


class TestCouponQueries:
    def test_get_and_deactivate(self, client, make_coupon):
        make_coupon("SAVE10")

        assert client.get(f"{COUPONS_URL}/save10").json()["code"] == "SAVE10"

        response = client.post(f"{COUPONS_URL}/SAVE10/deactivate")

        assert response.status_code == 200
        assert response.json()["is_active"] is False
        assert response.json()["status"] == "inactive"
        assert client.get(COUPONS_URL, params={"active_only": True}).json() == []

    def test_missing_coupon(self, client):
        response = client.get(f"{COUPONS_URL}/NOPE")

        assert response.status_code == 404
        assert response.json()["code"] == "COUPON_NOT_FOUND"

    def test_list(self, client, make_coupon):
        make_coupon("SAVE10")
        make_coupon("SAVE20", discount_value=20)

        codes = {coupon["code"] for coupon in client.get(COUPONS_URL).json()}

        assert codes == {"SAVE10", "SAVE20"}


class TestValidateCoupon:
    def test_valid_coupon(self, client, make_coupon):
        make_coupon("SAVE10", max_discount_amount=5000)

        response = client.post(
            f"{COUPONS_URL}/validate", json={"couponCode": "save10", "orderValue": 100000}
        )

        assert response.status_code == 200
        assert response.json() == {
            "isValid": True,
            "code": "SAVE10",
            "discountAmount": 5000,
            "finalAmount": 95000,
            "reason": None,
            "message": None,
        }

    def test_invalid_coupon_is_a_normal_answer(self, client, make_coupon):
        make_coupon("SAVE10", minimum_order_value=50000)

        response = client.post(
            f"{COUPONS_URL}/validate", json={"couponCode": "SAVE10", "orderValue": 1000}
        )

        assert response.status_code == 200
        data = response.json()
        assert data["isValid"] is False
        assert data["reason"] == "below_minimum_order"
        assert data["discountAmount"] is None

    def test_unknown_field_is_rejected(self, client):
        response = client.post(
            f"{COUPONS_URL}/validate",
            json={"couponCode": "SAVE10", "orderValue": 1000, "bogus": True},
        )

        assert response.status_code == 422
