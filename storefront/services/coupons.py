"""Coupon evaluation.

``evaluate`` is a pure function of a coupon, an order amount and the clock;
it never touches ``used_count``. Usage is only claimed at checkout through
``claim_usage``, which is a conditional update so two orders cannot both
take the last use of a limited coupon.
"""
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal, ROUND_HALF_UP
from typing import Optional

from sqlalchemy import select, update
from sqlalchemy.orm import Session

from storefront.core.config import settings
from storefront.core.errors import BusinessRuleViolation, NotFound
from storefront.db.models import Coupon, CouponType, Tier, utcnow


@dataclass
class CouponQuote:
    coupon: Coupon
    discount_amount: int
    final_amount: int


def round_half_up(value) -> int:
    return int(Decimal(str(value)).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def normalize_code(code: Optional[str]) -> str:
    return (code or "").strip().upper()


def check_window(coupon: Coupon, now: datetime):
    if coupon.start_date and now < coupon.start_date:
        raise BusinessRuleViolation("Coupon is not active yet")
    if coupon.end_date and now > coupon.end_date:
        raise BusinessRuleViolation("Coupon has expired")


def check_minimum(coupon: Coupon, order_amount: int):
    minimum = coupon.min_order_amount or 0
    if minimum and order_amount < minimum:
        raise BusinessRuleViolation(
            f"Order must be at least {minimum:,} {settings.CURRENCY} to use this coupon"
        )


def compute_discount(coupon: Coupon, order_amount: int) -> int:
    if coupon.type == CouponType.PERCENT:
        discount = Decimal(order_amount) * Decimal(coupon.value) / Decimal(100)
    else:
        discount = Decimal(coupon.value)
    if coupon.max_discount and coupon.max_discount > 0 and discount > coupon.max_discount:
        discount = Decimal(coupon.max_discount)
    if discount > order_amount:
        discount = Decimal(order_amount)
    return round_half_up(discount)


def evaluate(coupon: Coupon, order_amount: int, now: Optional[datetime] = None) -> CouponQuote:
    now = now or utcnow()
    check_window(coupon, now)
    check_minimum(coupon, order_amount)
    discount = compute_discount(coupon, order_amount)
    return CouponQuote(coupon=coupon, discount_amount=discount, final_amount=max(0, order_amount - discount))


def find_active_coupon(db: Session, code: str) -> Optional[Coupon]:
    return db.execute(
        select(Coupon).where(Coupon.code == normalize_code(code), Coupon.is_active.is_(True))
    ).scalar_one_or_none()


def quote_coupon(db: Session, code: str, order_amount: int, now: Optional[datetime] = None) -> CouponQuote:
    coupon = find_active_coupon(db, code)
    if not coupon:
        raise NotFound("Coupon code does not exist or is disabled")
    return evaluate(coupon, order_amount, now)


def check_checkout_eligibility(coupon: Coupon, tier: Optional[str]):
    """Rules that only matter when a coupon is actually spent on an order."""
    if coupon.usage_limit and coupon.usage_limit > 0 and (coupon.used_count or 0) >= coupon.usage_limit:
        raise BusinessRuleViolation("Coupon usage limit reached")
    tiers = coupon.applicable_tiers or []
    if tiers and (tier or Tier.NONE.value) not in tiers:
        raise BusinessRuleViolation("Coupon is not available for your membership tier")


def claim_usage(db: Session, coupon: Coupon):
    stmt = update(Coupon).where(Coupon.id == coupon.id)
    if coupon.usage_limit and coupon.usage_limit > 0:
        stmt = stmt.where(Coupon.used_count < Coupon.usage_limit)
    result = db.execute(stmt.values(used_count=Coupon.used_count + 1).execution_options(synchronize_session=False))
    if result.rowcount != 1:
        raise BusinessRuleViolation("Coupon usage limit reached")
    db.expire(coupon, ["used_count"])


def available_coupons(db: Session, order_amount: int = 0, now: Optional[datetime] = None) -> list[dict]:
    now = now or utcnow()
    coupons = db.execute(
        select(Coupon).where(Coupon.is_active.is_(True)).order_by(Coupon.created_at.desc(), Coupon.id.desc())
    ).scalars().all()
    out = []
    for c in coupons:
        start_ok = not c.start_date or c.start_date <= now
        end_ok = not c.end_date or c.end_date >= now
        min_ok = not order_amount or not c.min_order_amount or order_amount >= c.min_order_amount
        out.append({"coupon": c, "is_eligible": bool(start_ok and end_ok and min_ok)})
    return out
