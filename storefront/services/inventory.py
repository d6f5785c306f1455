"""Stock movements.

Every decrement is a single conditional UPDATE (``stock >= qty``), so the
sufficiency check and the decrement cannot be split by a concurrent writer.
Products that have variants carry the sum of their variants' stock.
"""
from typing import Optional

from sqlalchemy import func, select, update
from sqlalchemy.orm import Session

from storefront.core.errors import BusinessRuleViolation
from storefront.db.models import Product, ProductVariant


class InsufficientStock(BusinessRuleViolation):
    pass


def sync_product_stock(db: Session, product_id: int) -> int:
    total = db.execute(
        select(func.coalesce(func.sum(ProductVariant.stock_quantity), 0))
        .where(ProductVariant.product_id == product_id)
    ).scalar_one()
    has_variants = db.execute(
        select(func.count(ProductVariant.id)).where(ProductVariant.product_id == product_id)
    ).scalar_one()
    if has_variants:
        db.execute(
            update(Product).where(Product.id == product_id)
            .values(stock_quantity=total, in_stock=total > 0)
            .execution_options(synchronize_session=False)
        )
    return int(total)


def reserve(db: Session, product_id: int, variant_id: Optional[int], qty: int, label: str = ""):
    """Take ``qty`` units or raise ``InsufficientStock``; nothing is taken on failure."""
    if variant_id:
        result = db.execute(
            update(ProductVariant)
            .where(ProductVariant.id == variant_id, ProductVariant.stock_quantity >= qty)
            .values(stock_quantity=ProductVariant.stock_quantity - qty)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            raise InsufficientStock(f'Not enough stock for "{label}"' if label else "Not enough stock")
        sync_product_stock(db, product_id)
    else:
        result = db.execute(
            update(Product)
            .where(Product.id == product_id, Product.stock_quantity >= qty)
            .values(stock_quantity=Product.stock_quantity - qty,
                    in_stock=(Product.stock_quantity - qty) > 0)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            raise InsufficientStock(f'Not enough stock for "{label}"' if label else "Not enough stock")


def release(db: Session, product_id: int, variant_id: Optional[int], qty: int):
    if variant_id:
        db.execute(
            update(ProductVariant).where(ProductVariant.id == variant_id)
            .values(stock_quantity=ProductVariant.stock_quantity + qty)
            .execution_options(synchronize_session=False)
        )
        sync_product_stock(db, product_id)
    else:
        db.execute(
            update(Product).where(Product.id == product_id)
            .values(stock_quantity=Product.stock_quantity + qty, in_stock=True)
            .execution_options(synchronize_session=False)
        )


def available(product: Product, variant: Optional[ProductVariant]) -> int:
    return (variant.stock_quantity if variant else product.stock_quantity) or 0
