"""Loyalty tiers.

Tier resolution reads the admin-managed ``LoyaltyConfig`` rows and falls back
to ``DEFAULT_TIERS`` when there are none. The functions below take the rows
as an argument so both paths stay pure; ``load_config_rows`` is the only
database access.
"""
from dataclasses import dataclass
from typing import Iterable, Optional, Sequence

from sqlalchemy import select
from sqlalchemy.orm import Session

from storefront.db.models import LoyaltyConfig, Tier, User

POINT_UNIT = 1000


@dataclass(frozen=True)
class TierRule:
    tier: str
    min_total_spent: int
    discount_percent: int


DEFAULT_TIERS = {
    Tier.SILVER.value: TierRule(Tier.SILVER.value, 10_000_000, 2),
    Tier.GOLD.value: TierRule(Tier.GOLD.value, 50_000_000, 5),
    Tier.DIAMOND.value: TierRule(Tier.DIAMOND.value, 100_000_000, 10),
}


def load_config_rows(db: Session) -> list[LoyaltyConfig]:
    return list(db.execute(select(LoyaltyConfig).where(LoyaltyConfig.is_active.is_(True))).scalars())


def _rules_from_rows(rows: Optional[Iterable[LoyaltyConfig]]) -> list[TierRule]:
    return [
        TierRule(r.tier, r.min_total_spent or 0, r.discount_percent or 0)
        for r in (rows or []) if r.is_active
    ]


def resolve_tier_table(rows: Optional[Iterable[LoyaltyConfig]] = None) -> list[TierRule]:
    """Active config rows when any exist, else the defaults; ascending by threshold."""
    rules = _rules_from_rows(rows) or list(DEFAULT_TIERS.values())
    return sorted(rules, key=lambda r: r.min_total_spent)


def discount_percent_for_tier(tier: Optional[str], rows: Optional[Iterable[LoyaltyConfig]] = None) -> int:
    if not tier or tier == Tier.NONE.value:
        return 0
    for rule in _rules_from_rows(rows):
        if rule.tier == tier:
            return rule.discount_percent
    default = DEFAULT_TIERS.get(tier)
    return default.discount_percent if default else 0


def tier_for_total_spent(total_spent: int, rows: Optional[Iterable[LoyaltyConfig]] = None) -> str:
    tier = Tier.NONE.value
    for rule in resolve_tier_table(rows):
        if (total_spent or 0) >= rule.min_total_spent:
            tier = rule.tier
    return tier


def accrue_loyalty(user: User, amount: int, rows: Optional[Sequence[LoyaltyConfig]] = None) -> User:
    amount = int(amount or 0)
    if amount <= 0:
        return user
    user.total_spent = (user.total_spent or 0) + amount
    user.loyalty_points = (user.loyalty_points or 0) + amount // POINT_UNIT
    user.loyalty_tier = tier_for_total_spent(user.total_spent, rows)
    return user


def loyalty_summary(user: User, rows: Optional[Sequence[LoyaltyConfig]] = None) -> dict:
    table = resolve_tier_table(rows)
    spent = user.total_spent or 0
    upcoming = next((r for r in table if r.min_total_spent > spent), None)
    return {
        "tier": user.loyalty_tier or Tier.NONE.value,
        "points": user.loyalty_points or 0,
        "totalSpent": spent,
        "discountPercent": discount_percent_for_tier(user.loyalty_tier, rows),
        "nextTier": upcoming.tier if upcoming else None,
        "amountToNextTier": (upcoming.min_total_spent - spent) if upcoming else 0,
        "tiers": [
            {"tier": r.tier, "minTotalSpent": r.min_total_spent, "discountPercent": r.discount_percent}
            for r in table
        ],
    }
