import random
from datetime import datetime
from typing import Optional

from dateutil.relativedelta import relativedelta
from sqlalchemy import select, update
from sqlalchemy.orm import Session

from storefront.core.errors import NotFound
from storefront.db.models import OrderItem, WarrantyPackage, WarrantyStatus, utcnow

DEMO_TAC = "356938"


def luhn_check_digit(digits: str) -> int:
    total = 0
    for i, ch in enumerate(reversed(digits)):
        d = int(ch)
        if i % 2 == 0:
            d *= 2
            if d > 9:
                d -= 9
        total += d
    return (10 - total % 10) % 10


def generate_imei(rng: Optional[random.Random] = None) -> str:
    rng = rng or random
    body = DEMO_TAC + "".join(str(rng.randint(0, 9)) for _ in range(8))
    return body + str(luhn_check_digit(body))


def warranty_window(package: Optional[WarrantyPackage], start: Optional[datetime] = None):
    """(package_id, start, end, status) for an item sold under ``package``."""
    if not package:
        return None, None, None, WarrantyStatus.VOID.value
    start = start or utcnow()
    end = start + relativedelta(months=package.duration_months) if package.duration_months > 0 else None
    return package.id, start, end, WarrantyStatus.ACTIVE.value


def void_order_warranties(db: Session, order_id: int):
    db.execute(
        update(OrderItem)
        .where(OrderItem.order_id == order_id, OrderItem.warranty_status == WarrantyStatus.ACTIVE.value)
        .values(warranty_status=WarrantyStatus.VOID.value)
        .execution_options(synchronize_session=False)
    )


def lookup_by_imei(db: Session, imei: str) -> OrderItem:
    item = db.execute(select(OrderItem).where(OrderItem.imei == imei)).scalar_one_or_none()
    if not item:
        raise NotFound("No purchased item with this IMEI")
    return item


def warranty_state(item: OrderItem, now: Optional[datetime] = None) -> str:
    now = now or utcnow()
    if item.warranty_status != WarrantyStatus.ACTIVE.value:
        return WarrantyStatus.VOID.value
    if item.warranty_end_at and item.warranty_end_at < now:
        return "expired"
    return WarrantyStatus.ACTIVE.value
