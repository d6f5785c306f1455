"""Tests for coupon evaluation and the coupon endpoints."""

from datetime import datetime, timedelta

import pytest

from storefront.core.errors import BusinessRuleViolation, NotFound
from storefront.db.models import Coupon
from storefront.services import coupons

NOW = datetime(2026, 10, 1, 12, 0, 0)


def coupon(**fields) -> Coupon:
    base = dict(code="SALE10", type="percent", value=10, min_order_amount=100_000, max_discount=50_000,
                start_date=None, end_date=None, usage_limit=0, used_count=0, is_active=True,
                applicable_tiers=[])
    base.update(fields)
    return Coupon(**base)


class TestEvaluate:
    def test_percent_discount_is_capped(self):
        quote = coupons.evaluate(coupon(), 1_000_000, NOW)
        assert quote.discount_amount == 50_000
        assert quote.final_amount == 950_000

    def test_below_minimum_fails(self):
        with pytest.raises(BusinessRuleViolation, match="at least 100,000"):
            coupons.evaluate(coupon(), 50_000, NOW)

    def test_uncapped_percent(self):
        quote = coupons.evaluate(coupon(max_discount=0), 300_000, NOW)
        assert quote.discount_amount == 30_000

    def test_fixed_discount_never_exceeds_order(self):
        quote = coupons.evaluate(coupon(type="fixed", value=500_000, min_order_amount=0, max_discount=0),
                                 200_000, NOW)
        assert quote.discount_amount == 200_000
        assert quote.final_amount == 0

    def test_rounds_half_up(self):
        quote = coupons.evaluate(coupon(value=15, min_order_amount=0, max_discount=0), 5, NOW)
        # 0.75 rounds to 1
        assert quote.discount_amount == 1
        quote = coupons.evaluate(coupon(value=10, min_order_amount=0, max_discount=0), 5, NOW)
        # 0.5 rounds up too
        assert quote.discount_amount == 1

    def test_expired(self):
        with pytest.raises(BusinessRuleViolation, match="expired"):
            coupons.evaluate(coupon(end_date=NOW - timedelta(seconds=1)), 1_000_000, NOW)

    def test_not_started(self):
        with pytest.raises(BusinessRuleViolation, match="not active yet"):
            coupons.evaluate(coupon(start_date=NOW + timedelta(days=1)), 1_000_000, NOW)

    def test_open_bounds(self):
        c = coupon(start_date=NOW - timedelta(days=1), end_date=None)
        assert coupons.evaluate(c, 1_000_000, NOW).discount_amount == 50_000

    def test_does_not_touch_usage(self):
        c = coupon(used_count=3)
        coupons.evaluate(c, 1_000_000, NOW)
        assert c.used_count == 3

    @pytest.mark.parametrize("amount", [100_000, 250_000, 499_999, 500_000, 10_000_000])
    def test_discount_bounded(self, amount):
        quote = coupons.evaluate(coupon(), amount, NOW)
        assert 0 <= quote.discount_amount <= min(amount, 50_000)
        assert quote.final_amount == amount - quote.discount_amount


class TestCheckoutEligibility:
    def test_usage_limit(self):
        with pytest.raises(BusinessRuleViolation, match="usage limit"):
            coupons.check_checkout_eligibility(coupon(usage_limit=2, used_count=2), "none")

    def test_tier_restriction(self):
        c = coupon(applicable_tiers=["gold", "diamond"])
        with pytest.raises(BusinessRuleViolation, match="membership tier"):
            coupons.check_checkout_eligibility(c, "silver")
        coupons.check_checkout_eligibility(c, "gold")


class TestQuoteCoupon:
    def test_code_is_normalized(self, db, sale10):
        quote = coupons.quote_coupon(db, "  sale10 ", 1_000_000)
        assert quote.coupon.id == sale10.id

    def test_unknown_code(self, db):
        with pytest.raises(NotFound):
            coupons.quote_coupon(db, "NOPE", 1_000_000)

    def test_inactive_code(self, db, sale10):
        sale10.is_active = False
        db.commit()
        with pytest.raises(NotFound):
            coupons.quote_coupon(db, "SALE10", 1_000_000)

    def test_claim_usage_respects_limit(self, db, sale10):
        sale10.usage_limit = 1
        db.commit()
        coupons.claim_usage(db, sale10)
        db.commit()
        assert sale10.used_count == 1
        with pytest.raises(BusinessRuleViolation):
            coupons.claim_usage(db, sale10)


class TestCouponApi:
    def test_apply(self, client, sale10):
        response = client.post("/api/coupons/apply", json={"code": "sale10", "orderAmount": 1_000_000})
        assert response.status_code == 200
        data = response.json()["data"]
        assert data["discountAmount"] == 50_000
        assert data["finalAmount"] == 950_000
        assert data["coupon"]["code"] == "SALE10"

    def test_apply_below_minimum(self, client, sale10):
        response = client.post("/api/coupons/apply", json={"code": "SALE10", "orderAmount": 50_000})
        assert response.status_code == 400
        assert response.json()["status"] == "fail"
        assert "at least" in response.json()["message"]

    def test_apply_unknown(self, client):
        response = client.post("/api/coupons/apply", json={"code": "GHOST", "orderAmount": 50_000})
        assert response.status_code == 404

    def test_available_flags(self, client, sale10):
        data = client.get("/api/coupons/available", params={"orderAmount": 50_000}).json()["data"]
        assert data[0]["code"] == "SALE10"
        assert data[0]["isEligible"] is False
        data = client.get("/api/coupons/available").json()["data"]
        assert data[0]["isEligible"] is True

    def test_admin_create_requires_admin(self, client, customer, admin):
        from conftest import auth_header

        body = {"code": " new5 ", "type": "fixed", "value": 5000}
        assert client.post("/api/admin/coupons", json=body, headers=auth_header(customer)).status_code == 403
        response = client.post("/api/admin/coupons", json=body, headers=auth_header(admin))
        assert response.status_code == 201
        assert response.json()["data"]["code"] == "NEW5"
        assert client.post("/api/admin/coupons", json=body, headers=auth_header(admin)).status_code == 409
