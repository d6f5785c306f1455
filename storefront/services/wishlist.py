from sqlalchemy import delete, select
from sqlalchemy.orm import Session

from storefront.core.errors import NotFound
from storefront.db.models import Product, User, WishlistItem


def list_products(db: Session, user: User) -> list[Product]:
    stmt = (select(Product).join(WishlistItem, WishlistItem.product_id == Product.id)
            .where(WishlistItem.user_id == user.id, Product.is_active.is_(True))
            .order_by(WishlistItem.created_at.desc(), WishlistItem.id.desc()))
    return db.execute(stmt).scalars().unique().all()


def _find(db: Session, user: User, product_id: int):
    return db.execute(
        select(WishlistItem).where(WishlistItem.user_id == user.id, WishlistItem.product_id == product_id)
    ).scalars().first()


def contains(db: Session, user: User, product_id: int) -> bool:
    return _find(db, user, product_id) is not None


def add(db: Session, user: User, product_id: int) -> bool:
    """True when the product was added, False when it was already there."""
    product = db.get(Product, product_id)
    if not product or not product.is_active:
        raise NotFound("Product not found")
    if _find(db, user, product_id):
        return False
    db.add(WishlistItem(user_id=user.id, product_id=product_id))
    db.commit()
    return True


def remove(db: Session, user: User, product_id: int):
    item = _find(db, user, product_id)
    if not item:
        raise NotFound("Product is not in the wishlist")
    db.delete(item)
    db.commit()


def clear(db: Session, user: User):
    db.execute(delete(WishlistItem).where(WishlistItem.user_id == user.id))
    db.commit()
