"""Cart to order conversion.

Everything between reading the cart and marking it converted runs in the
request session's transaction: a failure at any step rolls back the order,
its items, the stock taken and the coupon use together. The confirmation
event is only published once the commit has succeeded.
"""
from datetime import datetime
from decimal import Decimal
from typing import Optional

from loguru import logger
from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from storefront.core.config import settings
from storefront.core.errors import BusinessRuleViolation, Conflict, ValidationFailed
from storefront.db.models import (
    CartStatus, Order, OrderItem, OrderStatus, PaymentMethod, PaymentStatus, User, utcnow,
)
from storefront.kafka import producer
from storefront.kafka.events import order_event
from storefront.services import cart as cart_service
from storefront.services import catalog, coupons, inventory, loyalty, warranty
from storefront.services.coupons import round_half_up


def normalize_payment_method(method: Optional[str]) -> str:
    value = (method or PaymentMethod.COD.value).strip().lower()
    if value == "card":
        value = PaymentMethod.STRIPE.value
    if value not in {m.value for m in PaymentMethod}:
        raise ValidationFailed("Unsupported payment method")
    return value


def next_order_number(db: Session, now: Optional[datetime] = None) -> str:
    now = now or utcnow()
    count = db.execute(select(func.count(Order.id))).scalar_one()
    return f"ORD-{now:%y%m}-{count + 1:05d}"


ORDER_NUMBER_CONSTRAINT = "uq_orders_order_number"


def is_order_number_clash(exc: IntegrityError) -> bool:
    diag = getattr(exc.orig, "diag", None)
    name = getattr(diag, "constraint_name", None)
    if name:
        return name == ORDER_NUMBER_CONSTRAINT
    return "orders.order_number" in str(exc.orig)


def order_totals(subtotal: int, loyalty_discount: int, coupon_discount: int,
                 tax: int = 0, shipping: int = 0) -> dict:
    gross = subtotal + tax + shipping
    discount = min(loyalty_discount + coupon_discount, gross)
    return {
        "subtotal": subtotal,
        "tax_amount": tax,
        "shipping_amount": shipping,
        "discount_amount": discount,
        "total_amount": gross - discount,
    }


def _priced_lines(cart):
    lines, subtotal = [], 0
    for item in cart.items:
        product, variant = item.product, item.variant
        if not product or not product.is_active or not product.in_stock:
            name = product.name if product else f"#{item.product_id}"
            raise BusinessRuleViolation(f'Product "{name}" is out of stock')
        stock = inventory.available(product, variant)
        if stock < item.quantity:
            label = f"{product.name} ({variant.variant_name})" if variant else product.name
            raise inventory.InsufficientStock(f'Only {stock} left of "{label}"')
        price = variant.price if variant else product.price
        subtotal += price * item.quantity
        lines.append((item, product, variant, price))
    return lines, subtotal


def create_order(db: Session, user: User, shipping_address: dict, payment_method: Optional[str] = None,
                 coupon_code: Optional[str] = None, notes: Optional[str] = None,
                 billing_address: Optional[dict] = None) -> Order:
    method = normalize_payment_method(payment_method)
    cart = cart_service.find_active_cart(db, user_id=user.id)
    if not cart or not cart.items:
        raise BusinessRuleViolation("Cart is empty")

    now = utcnow()
    try:
        lines, subtotal = _priced_lines(cart)

        rows = loyalty.load_config_rows(db)
        pct = loyalty.discount_percent_for_tier(user.loyalty_tier, rows)
        loyalty_discount = round_half_up(Decimal(subtotal) * pct / 100) if pct > 0 else 0

        coupon, coupon_discount = None, 0
        if coupon_code:
            coupon = coupons.find_active_coupon(db, coupon_code)
            if not coupon:
                raise BusinessRuleViolation("Coupon code does not exist or is disabled")
            quote = coupons.evaluate(coupon, subtotal, now)
            coupons.check_checkout_eligibility(coupon, user.loyalty_tier)
            coupon_discount = quote.discount_amount

        order = Order(
            order_number=next_order_number(db, now),
            user_id=user.id,
            status=OrderStatus.PENDING.value,
            payment_status=PaymentStatus.PENDING.value,
            payment_method=method,
            loyalty_discount_amount=loyalty_discount,
            coupon_discount_amount=coupon_discount,
            coupon_code=coupon.code if coupon else None,
            currency=settings.CURRENCY,
            shipping_address=shipping_address,
            billing_address=billing_address or shipping_address,
            notes=notes,
            created_at=now,
            **order_totals(subtotal, loyalty_discount, coupon_discount),
        )
        db.add(order)

        for item, product, variant, price in lines:
            inventory.reserve(db, product.id, variant.id if variant else None, item.quantity,
                              label=product.name)
            package_id, w_start, w_end, w_status = warranty.warranty_window(
                catalog.default_warranty_package(db, product.id), now)
            order.items.append(OrderItem(
                product_id=product.id,
                variant_id=variant.id if variant else None,
                name=product.name,
                variant_name=variant.variant_name if variant else None,
                sku=variant.sku if variant else product.sku,
                image=product.thumbnail,
                price=price,
                quantity=item.quantity,
                total_price=price * item.quantity,
                imei=warranty.generate_imei(),
                warranty_package_id=package_id,
                warranty_start_at=w_start,
                warranty_end_at=w_end,
                warranty_status=w_status,
            ))

        if coupon:
            coupons.claim_usage(db, coupon)

        cart.status = CartStatus.CONVERTED.value
        for item in list(cart.items):
            db.delete(item)
        db.commit()
    except IntegrityError as e:
        db.rollback()
        if not is_order_number_clash(e):
            raise
        logger.warning(f"order number collision for user {user.id}")
        raise Conflict("Another order was placed at the same moment. Please try again.")
    except Exception:
        db.rollback()
        raise

    db.refresh(order)
    logger.info(f"order {order.order_number} created: total={order.total_amount} method={method}")
    producer.publish_order_event(order_event("order.created", order, user))
    return order
