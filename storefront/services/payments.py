"""Payment sessions and reconciliation.

Providers report success at least once, possibly several times and in any
order relative to the browser-side confirmation. ``settle_paid`` is the one
place an order becomes paid: a conditional update on ``payment_status`` so
only the first caller advances the order and accrues loyalty.
"""
from typing import Optional

from loguru import logger
from redis import Redis
from sqlalchemy import update
from sqlalchemy.orm import Session

from storefront.core.config import settings
from storefront.core.errors import BusinessRuleViolation, Forbidden, NotFound
from storefront.db.models import Order, OrderStatus, PaymentMethod, PaymentStatus, User, utcnow
from storefront.kafka import producer
from storefront.kafka.events import order_event
from storefront.payments.payos_client import PayOSClient
from storefront.payments.stripe_client import StripeClient
from storefront.services import loyalty
from storefront.store import webhook_store

UNPAYABLE_STATUSES = (OrderStatus.CANCELLED.value, OrderStatus.REFUNDED.value)


def assert_payable(order: Order):
    if order.payment_status == PaymentStatus.PAID.value:
        raise BusinessRuleViolation("Order has already been paid")
    if order.status in UNPAYABLE_STATUSES:
        raise BusinessRuleViolation("Order can no longer be paid")
    if (order.total_amount or 0) <= 0:
        raise BusinessRuleViolation("Nothing to pay for this order")


def _get_order(db: Session, order_id) -> Order:
    try:
        order = db.get(Order, int(order_id))
    except (TypeError, ValueError):
        order = None
    if not order:
        raise NotFound("Order not found")
    return order


def apply_loyalty_once(db: Session, order: Order) -> bool:
    result = db.execute(
        update(Order).where(Order.id == order.id, Order.loyalty_applied.is_(False))
        .values(loyalty_applied=True)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        return False
    user = db.get(User, order.user_id)
    if user:
        loyalty.accrue_loyalty(user, order.total_amount, loyalty.load_config_rows(db))
        logger.info(f"loyalty: user {user.id} +{order.total_amount} -> {user.loyalty_tier}")
    return True


def settle_paid(db: Session, order_id: int, transaction_id: Optional[str] = None,
                provider: Optional[str] = None, advance_status: bool = True) -> bool:
    """Mark paid if not already; caller commits. Returns whether this call won."""
    values = {"payment_status": PaymentStatus.PAID.value, "paid_at": utcnow()}
    if transaction_id:
        values["payment_transaction_id"] = transaction_id
    if provider:
        values["payment_provider"] = provider
    result = db.execute(
        update(Order)
        .where(Order.id == order_id,
               Order.payment_status.notin_([PaymentStatus.PAID.value, PaymentStatus.REFUNDED.value]))
        .values(**values)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        return False
    if advance_status:
        db.execute(
            update(Order).where(Order.id == order_id, Order.status == OrderStatus.PENDING.value)
            .values(status=OrderStatus.PROCESSING.value)
            .execution_options(synchronize_session=False)
        )
    order = db.get(Order, order_id)
    db.refresh(order)
    apply_loyalty_once(db, order)
    return True


def mark_paid(db: Session, order_id: int, transaction_id: Optional[str] = None,
              provider: Optional[str] = None) -> tuple[Order, bool]:
    order = _get_order(db, order_id)
    try:
        won = settle_paid(db, order.id, transaction_id, provider)
        db.commit()
    except Exception:
        db.rollback()
        raise
    db.refresh(order)
    if won:
        logger.info(f"order {order.order_number} paid via {provider or order.payment_method}")
        producer.publish_order_event(order_event("payment.succeeded", order))
    else:
        logger.info(f"order {order.order_number} already settled, ignoring duplicate success")
    return order, won


def mark_failed(db: Session, order_id: int, transaction_id: Optional[str] = None,
                provider: Optional[str] = None) -> Order:
    order = _get_order(db, order_id)
    values = {"payment_status": PaymentStatus.FAILED.value}
    if transaction_id:
        values["payment_transaction_id"] = transaction_id
    if provider:
        values["payment_provider"] = provider
    db.execute(
        update(Order).where(Order.id == order.id, Order.payment_status == PaymentStatus.PENDING.value)
        .values(**values)
        .execution_options(synchronize_session=False)
    )
    db.commit(); db.refresh(order)
    logger.info(f"order {order.order_number} payment status now {order.payment_status}")
    return order


def _check_owner(order: Order, user: Optional[User], staff: bool = False):
    if user is not None and not staff and order.user_id != user.id:
        raise Forbidden("You do not have permission to perform this action")


# --- Stripe ---

def create_payment_intent(db: Session, order: Order, stripe: StripeClient) -> dict:
    assert_payable(order)
    intent = stripe.create_payment_intent(
        amount=order.total_amount,
        currency=order.currency or settings.CURRENCY,
        metadata={"orderId": order.id, "orderNumber": order.order_number, "userId": order.user_id},
    )
    order.payment_method = PaymentMethod.STRIPE.value
    order.payment_provider = PaymentMethod.STRIPE.value
    order.payment_transaction_id = intent.get("id")
    if order.payment_status == PaymentStatus.FAILED.value:
        order.payment_status = PaymentStatus.PENDING.value
    db.commit(); db.refresh(order)
    return {
        "clientSecret": intent.get("client_secret"),
        "paymentIntentId": intent.get("id"),
        "amount": order.total_amount,
        "currency": order.currency,
    }


def confirm_payment(db: Session, intent_id: str, stripe: StripeClient, user: Optional[User] = None,
                    staff: bool = False) -> dict:
    intent = stripe.retrieve_payment_intent(intent_id)
    order_id = (intent.get("metadata") or {}).get("orderId")
    order = _get_order(db, order_id)
    _check_owner(order, user, staff)
    status = intent.get("status")
    if status == "succeeded":
        order, _ = mark_paid(db, order.id, intent.get("id"), PaymentMethod.STRIPE.value)
    elif status == "canceled" or (status == "requires_payment_method" and intent.get("last_payment_error")):
        order = mark_failed(db, order.id, intent.get("id"), PaymentMethod.STRIPE.value)
    return {"order": order, "intentStatus": status, "paymentStatus": order.payment_status}


def handle_stripe_webhook(db: Session, payload: bytes, signature: str, stripe: StripeClient, r: Redis) -> dict:
    event = stripe.construct_event(payload, signature)
    event_id, event_type = event.get("id"), event.get("type")
    if not webhook_store.first_delivery(r, "stripe", event_id):
        logger.info(f"stripe event {event_id} already processed")
        return {"received": True, "duplicate": True}
    intent = (event.get("data") or {}).get("object") or {}
    order_id = (intent.get("metadata") or {}).get("orderId")
    try:
        if event_type == "payment_intent.succeeded" and order_id:
            mark_paid(db, order_id, intent.get("id"), PaymentMethod.STRIPE.value)
        elif event_type == "payment_intent.payment_failed" and order_id:
            mark_failed(db, order_id, intent.get("id"), PaymentMethod.STRIPE.value)
        else:
            logger.debug(f"stripe event {event_type} ignored")
    except NotFound:
        logger.warning(f"stripe event {event_id} references unknown order {order_id}")
    except Exception:
        webhook_store.forget(r, "stripe", event_id)
        raise
    return {"received": True}


# --- PayOS ---

def create_payment_link(db: Session, order: Order, payos: PayOSClient) -> dict:
    assert_payable(order)
    data = payos.create_payment_link(
        order_code=order.id,
        amount=order.total_amount,
        description=order.order_number,
        items=[{"name": it.name, "quantity": it.quantity, "price": it.price} for it in order.items],
    )
    order.payment_method = PaymentMethod.PAYOS.value
    order.payment_provider = PaymentMethod.PAYOS.value
    if order.payment_status == PaymentStatus.FAILED.value:
        order.payment_status = PaymentStatus.PENDING.value
    db.commit(); db.refresh(order)
    return {
        "checkoutUrl": data.get("checkoutUrl"),
        "paymentLinkId": data.get("paymentLinkId"),
        "qrCode": data.get("qrCode"),
        "orderCode": order.id,
        "amount": order.total_amount,
    }


def handle_payos_webhook(db: Session, body: dict, payos: PayOSClient, r: Redis) -> dict:
    result = payos.verify_webhook(body)
    if not webhook_store.first_delivery(r, "payos", result.event_id):
        logger.info(f"payos event {result.event_id} already processed")
        return {"received": True, "duplicate": True}
    try:
        if result.status == "paid":
            mark_paid(db, result.order_code, result.reference, PaymentMethod.PAYOS.value)
        else:
            mark_failed(db, result.order_code, result.reference, PaymentMethod.PAYOS.value)
    except NotFound:
        logger.warning(f"payos webhook for unknown order code {result.order_code}")
    except Exception:
        webhook_store.forget(r, "payos", result.event_id)
        raise
    return {"received": True}


# --- refunds ---

def refund(db: Session, order: Order, stripe: StripeClient, amount: Optional[int] = None,
           reason: Optional[str] = None) -> Order:
    if order.payment_status != PaymentStatus.PAID.value:
        raise BusinessRuleViolation("Only paid orders can be refunded")
    if amount is not None and (amount <= 0 or amount > order.total_amount):
        raise BusinessRuleViolation("Refund amount must be between 1 and the order total")
    method = order.payment_provider or order.payment_method
    if method != PaymentMethod.COD.value and not order.payment_transaction_id:
        raise BusinessRuleViolation("Order has no payment transaction to refund")
    if method == PaymentMethod.STRIPE.value:
        stripe.create_refund(order.payment_transaction_id, amount=amount,
                             currency=order.currency or settings.CURRENCY, reason=reason)
    elif method == PaymentMethod.PAYOS.value:
        logger.warning(f"order {order.order_number}: PayOS has no refund API, reverse the transfer manually")
    result = db.execute(
        update(Order).where(Order.id == order.id, Order.payment_status == PaymentStatus.PAID.value)
        .values(payment_status=PaymentStatus.REFUNDED.value, status=OrderStatus.REFUNDED.value)
        .execution_options(synchronize_session=False)
    )
    db.commit(); db.refresh(order)
    if result.rowcount == 1:
        logger.info(f"order {order.order_number} refunded ({amount or order.total_amount})")
        producer.publish_order_event(order_event("order.refunded", order, refund_amount=amount or order.total_amount))
    return order
