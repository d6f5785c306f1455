"""Tests for loyalty tier resolution and accrual."""

import pytest

from storefront.db.models import LoyaltyConfig, User
from storefront.services import loyalty


def rows(*entries):
    return [LoyaltyConfig(tier=t, min_total_spent=m, discount_percent=p, is_active=True) for t, m, p in entries]


class TestTierResolution:
    def test_sixty_million_is_gold(self):
        assert loyalty.tier_for_total_spent(60_000_000) == "gold"

    @pytest.mark.parametrize("spent,tier", [
        (0, "none"),
        (9_999_999, "none"),
        (10_000_000, "silver"),
        (50_000_000, "gold"),
        (100_000_000, "diamond"),
    ])
    def test_default_thresholds(self, spent, tier):
        assert loyalty.tier_for_total_spent(spent) == tier

    def test_monotonic(self):
        order = ["none", "silver", "gold", "diamond"]
        previous = 0
        for spent in range(0, 150_000_001, 2_500_000):
            rank = order.index(loyalty.tier_for_total_spent(spent))
            assert rank >= previous
            previous = rank

    def test_configured_rows_replace_defaults(self):
        table = rows(("silver", 1_000, 1), ("gold", 5_000, 3))
        assert loyalty.tier_for_total_spent(6_000, table) == "gold"
        assert loyalty.tier_for_total_spent(6_000) == "none"

    def test_inactive_rows_fall_back_to_defaults(self):
        table = rows(("silver", 1_000, 1))
        table[0].is_active = False
        assert loyalty.resolve_tier_table(table) == sorted(loyalty.DEFAULT_TIERS.values(),
                                                           key=lambda r: r.min_total_spent)


class TestDiscountPercent:
    def test_none_tier(self):
        assert loyalty.discount_percent_for_tier("none") == 0
        assert loyalty.discount_percent_for_tier(None) == 0

    def test_defaults(self):
        assert loyalty.discount_percent_for_tier("gold") == 5

    def test_row_wins(self):
        assert loyalty.discount_percent_for_tier("gold", rows(("gold", 50_000_000, 7))) == 7

    def test_unknown_tier(self):
        assert loyalty.discount_percent_for_tier("platinum") == 0


class TestAccrual:
    def test_accrue(self):
        user = User(total_spent=9_500_000, loyalty_points=10, loyalty_tier="none")
        loyalty.accrue_loyalty(user, 1_234_567)
        assert user.total_spent == 10_734_567
        assert user.loyalty_points == 10 + 1_234
        assert user.loyalty_tier == "silver"

    def test_non_positive_is_noop(self):
        user = User(total_spent=100, loyalty_points=0, loyalty_tier="none")
        loyalty.accrue_loyalty(user, 0)
        loyalty.accrue_loyalty(user, -5)
        assert user.total_spent == 100

    def test_summary(self):
        user = User(total_spent=60_000_000, loyalty_points=60_000, loyalty_tier="gold")
        summary = loyalty.loyalty_summary(user)
        assert summary["discountPercent"] == 5
        assert summary["nextTier"] == "diamond"
        assert summary["amountToNextTier"] == 40_000_000


class TestLoyaltyApi:
    def test_me(self, client, db):
        from conftest import auth_header, make_user

        user = make_user(db, total_spent=60_000_000, loyalty_tier="gold")
        data = client.get("/api/loyalty/me", headers=auth_header(user)).json()["data"]
        assert data["tier"] == "gold"
        assert data["nextTier"] == "diamond"

    def test_admin_upsert(self, client, admin):
        from conftest import auth_header

        body = {"min_total_spent": 40_000_000, "discount_percent": 6}
        response = client.put("/api/admin/loyalty/gold", json=body, headers=auth_header(admin))
        assert response.status_code == 200
        assert response.json()["data"]["discount_percent"] == 6
        response = client.put("/api/admin/loyalty/platinum", json=body, headers=auth_header(admin))
        assert response.status_code == 400
