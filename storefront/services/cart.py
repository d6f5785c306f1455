"""Cart aggregation for users and anonymous sessions.

``set_line`` is the only place a line's quantity or price changes, which
keeps ``total_price == price * quantity`` true after every mutation.
"""
from typing import Optional

from sqlalchemy import select
from sqlalchemy.orm import Session

from storefront.core.errors import BusinessRuleViolation, NotFound, Unauthorized
from storefront.db.models import Cart, CartItem, CartStatus, Product, ProductVariant
from storefront.services import inventory


def set_line(item: CartItem, price: int, quantity: int) -> CartItem:
    item.price = price
    item.quantity = quantity
    item.total_price = price * quantity
    return item


def find_active_cart(db: Session, user_id: Optional[int] = None, session_id: Optional[str] = None) -> Optional[Cart]:
    if user_id is not None:
        stmt = select(Cart).where(Cart.user_id == user_id, Cart.status == CartStatus.ACTIVE.value)
    elif session_id:
        stmt = select(Cart).where(Cart.session_id == session_id, Cart.user_id.is_(None),
                                  Cart.status == CartStatus.ACTIVE.value)
    else:
        return None
    return db.execute(stmt.order_by(Cart.id.desc())).scalars().first()


def get_or_create_cart(db: Session, user_id: Optional[int] = None, session_id: Optional[str] = None) -> Cart:
    cart = find_active_cart(db, user_id, session_id)
    if cart:
        return cart
    if user_id is None and not session_id:
        raise Unauthorized("A user or a cart session is required")
    cart = Cart(user_id=user_id, session_id=None if user_id is not None else session_id,
                status=CartStatus.ACTIVE.value)
    db.add(cart); db.flush()
    return cart


def summarize(cart: Optional[Cart]) -> dict:
    if not cart:
        return {"id": None, "items": [], "totalItems": 0, "subtotal": 0}
    items = list(cart.items)
    return {
        "id": cart.id,
        "items": items,
        "totalItems": sum(i.quantity for i in items),
        "subtotal": sum(i.total_price for i in items),
    }


def _resolve(db: Session, product_id: int, variant_id: Optional[int]):
    product = db.get(Product, product_id)
    if not product or not product.is_active:
        raise NotFound("Product not found")
    if not product.in_stock:
        raise BusinessRuleViolation("Product is out of stock")
    variant = None
    if variant_id:
        variant = db.get(ProductVariant, variant_id)
        if not variant or variant.product_id != product.id:
            raise NotFound("Variant not found")
    return product, variant


def _find_line(db: Session, cart: Cart, product_id: int, variant_id: Optional[int]) -> Optional[CartItem]:
    stmt = select(CartItem).where(CartItem.cart_id == cart.id, CartItem.product_id == product_id)
    stmt = stmt.where(CartItem.variant_id == variant_id) if variant_id else stmt.where(CartItem.variant_id.is_(None))
    return db.execute(stmt).scalars().first()


def add_item(db: Session, cart: Cart, product_id: int, variant_id: Optional[int], quantity: int) -> Cart:
    product, variant = _resolve(db, product_id, variant_id)
    price = variant.price if variant else product.price
    stock = inventory.available(product, variant)
    item = _find_line(db, cart, product_id, variant_id)
    new_qty = (item.quantity if item else 0) + quantity
    if new_qty > stock:
        raise BusinessRuleViolation("Quantity exceeds available stock")
    if not item:
        item = CartItem(cart_id=cart.id, product_id=product_id, variant_id=variant_id)
        db.add(item)
    set_line(item, price, new_qty)
    db.commit(); db.refresh(cart)
    return cart


def _owned_line(db: Session, cart: Cart, item_id: int) -> CartItem:
    item = db.get(CartItem, item_id)
    if not item or item.cart_id != cart.id:
        raise NotFound("Cart item not found")
    return item


def update_item(db: Session, cart: Cart, item_id: int, quantity: int) -> Cart:
    item = _owned_line(db, cart, item_id)
    if quantity == 0:
        db.delete(item)
    else:
        stock = inventory.available(item.product, item.variant)
        if quantity > stock:
            raise BusinessRuleViolation("Quantity exceeds available stock")
        set_line(item, item.price, quantity)
    db.commit(); db.refresh(cart)
    return cart


def remove_item(db: Session, cart: Cart, item_id: int) -> Cart:
    db.delete(_owned_line(db, cart, item_id))
    db.commit(); db.refresh(cart)
    return cart


def clear(db: Session, cart: Optional[Cart]):
    if cart:
        for item in list(cart.items):
            db.delete(item)
        db.commit(); db.refresh(cart)


def count(cart: Optional[Cart]) -> int:
    return sum(i.quantity for i in cart.items) if cart else 0


def merge_session_cart(db: Session, user_id: int, session_id: Optional[str]) -> Cart:
    """Move a guest cart into the user's cart, capping quantities at current stock."""
    user_cart = get_or_create_cart(db, user_id=user_id)
    guest = find_active_cart(db, session_id=session_id) if session_id else None
    if not guest:
        db.commit()
        return user_cart
    for line in list(guest.items):
        stock = inventory.available(line.product, line.variant)
        existing = _find_line(db, user_cart, line.product_id, line.variant_id)
        if existing:
            qty = min(existing.quantity + line.quantity, stock)
            if qty <= 0:
                db.delete(existing)
            else:
                set_line(existing, existing.price, qty)
            db.delete(line)
        else:
            qty = min(line.quantity, stock)
            if qty <= 0:
                db.delete(line)
                continue
            line.cart_id = user_cart.id
            set_line(line, line.price, qty)
    guest.status = CartStatus.MERGED.value
    db.commit(); db.refresh(user_cart)
    return user_cart
