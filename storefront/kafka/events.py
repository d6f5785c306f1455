"""Payloads published on the order events topic."""
from storefront.db.models import Order, User


def _items(order: Order) -> list[dict]:
    return [
        {"name": it.name, "variant": it.variant_name, "quantity": it.quantity,
         "price": it.price, "subtotal": it.total_price}
        for it in order.items
    ]


def order_event(event_type: str, order: Order, user: User | None = None, **extra) -> dict:
    user = user or order.user
    ev = {
        "type": event_type,
        "order_id": order.id,
        "order_number": order.order_number,
        "user_email": user.email if user else None,
        "customer_name": (user.full_name or user.email) if user else None,
        "status": order.status,
        "payment_status": order.payment_status,
        "payment_method": order.payment_method,
        "amount": order.total_amount,
        "currency": order.currency,
    }
    if event_type == "order.created":
        ev.update({
            "items": _items(order),
            "subtotal": order.subtotal,
            "discount": order.discount_amount,
            "shipping_address": order.shipping_address,
        })
    ev.update(extra)
    return ev
