from typing import Optional

from loguru import logger
from sqlalchemy import or_, select
from sqlalchemy.orm import Session

from storefront.core.errors import BusinessRuleViolation, Forbidden, NotFound, ValidationFailed
from storefront.db.models import Order, OrderStatus, PaymentMethod, PaymentStatus, User, utcnow
from storefront.kafka import producer
from storefront.kafka.events import order_event
from storefront.services import inventory, payments, warranty
from storefront.services.pagination import paginate

S = OrderStatus

TRANSITIONS = {
    S.PENDING.value: {S.CONFIRMED.value, S.PROCESSING.value, S.CANCELLED.value, S.REFUNDED.value},
    S.CONFIRMED.value: {S.PROCESSING.value, S.CANCELLED.value, S.REFUNDED.value},
    S.PROCESSING.value: {S.SHIPPED.value, S.REFUNDED.value},
    S.SHIPPED.value: {S.DELIVERED.value, S.REFUNDED.value},
    S.DELIVERED.value: {S.REFUNDED.value},
    S.CANCELLED.value: {S.REFUNDED.value},
    S.REFUNDED.value: set(),
}

CANCELLABLE = (S.PENDING.value, S.CONFIRMED.value)

SORTABLE = {
    "created_at": Order.created_at,
    "total_amount": Order.total_amount,
    "order_number": Order.order_number,
    "status": Order.status,
}


def can_transition(current: str, target: str) -> bool:
    return target in TRANSITIONS.get(current, set())


def get_order(db: Session, order_id: int) -> Order:
    order = db.get(Order, order_id)
    if not order:
        raise NotFound("Order not found")
    return order


def get_owned_order(db: Session, order_id: int, user: User, staff: bool = False) -> Order:
    order = get_order(db, order_id)
    if not staff and order.user_id != user.id:
        raise Forbidden("You do not have permission to view this order")
    return order


def get_by_number(db: Session, number: str, user: User, staff: bool = False) -> Order:
    order = db.execute(select(Order).where(Order.order_number == number)).scalar_one_or_none()
    if not order:
        raise NotFound("Order not found")
    if not staff and order.user_id != user.id:
        raise Forbidden("You do not have permission to view this order")
    return order


def list_user_orders(db: Session, user: User, status: Optional[str] = None, page: int = 1, limit: int = 10):
    stmt = select(Order).where(Order.user_id == user.id)
    if status:
        stmt = stmt.where(Order.status == status)
    return paginate(db, stmt.order_by(Order.created_at.desc(), Order.id.desc()), page, limit)


def list_all_orders(db: Session, status: Optional[str] = None, payment_status: Optional[str] = None,
                    search: Optional[str] = None, sort: str = "created_at", order: str = "desc",
                    page: int = 1, limit: int = 20):
    stmt = select(Order).join(User, User.id == Order.user_id)
    if status:
        stmt = stmt.where(Order.status == status)
    if payment_status:
        stmt = stmt.where(Order.payment_status == payment_status)
    if search:
        like = f"%{search.strip()}%"
        stmt = stmt.where(or_(
            Order.order_number.ilike(like),
            User.email.ilike(like),
            User.first_name.ilike(like),
            User.last_name.ilike(like),
            User.phone.ilike(like),
        ))
    column = SORTABLE.get(sort, Order.created_at)
    stmt = stmt.order_by(column.asc() if order == "asc" else column.desc(), Order.id.desc())
    return paginate(db, stmt, page, limit)


def _restock(db: Session, order: Order):
    for item in order.items:
        inventory.release(db, item.product_id, item.variant_id, item.quantity)
    warranty.void_order_warranties(db, order.id)


def cancel_order(db: Session, order: Order, user: User, reason: Optional[str] = None) -> Order:
    if order.user_id != user.id:
        raise Forbidden("You do not have permission to cancel this order")
    if order.status not in CANCELLABLE:
        raise BusinessRuleViolation("Only pending or confirmed orders can be cancelled")
    previous = order.status
    try:
        order.status = S.CANCELLED.value
        if reason:
            order.notes = f"{order.notes}\n{reason}".strip() if order.notes else reason
        _restock(db, order)
        db.commit()
    except Exception:
        db.rollback()
        raise
    db.refresh(order)
    logger.info(f"order {order.order_number} cancelled by user {user.id}")
    producer.publish_order_event(order_event("order.cancelled", order, previous_status=previous))
    return order


def repay(db: Session, order: Order, user: User) -> Order:
    if order.user_id != user.id:
        raise Forbidden("You do not have permission to pay for this order")
    if order.status in payments.UNPAYABLE_STATUSES:
        raise BusinessRuleViolation("Order can no longer be paid")
    if order.payment_status != PaymentStatus.FAILED.value:
        raise BusinessRuleViolation("Only orders with a failed payment can be retried")
    order.payment_status = PaymentStatus.PENDING.value
    db.commit(); db.refresh(order)
    return order


def update_status(db: Session, order: Order, target: str, notes: Optional[str] = None,
                  tracking_number: Optional[str] = None) -> Order:
    if target not in TRANSITIONS:
        raise ValidationFailed("Unknown order status")
    previous = order.status
    if not can_transition(previous, target):
        raise BusinessRuleViolation(f"Cannot change order status from {previous} to {target}")
    try:
        order.status = target
        if notes:
            order.notes = notes
        if tracking_number:
            order.tracking_number = tracking_number
        if target == S.CANCELLED.value:
            _restock(db, order)
        elif target == S.REFUNDED.value and order.payment_status == PaymentStatus.PAID.value:
            order.payment_status = PaymentStatus.REFUNDED.value
        elif target == S.DELIVERED.value:
            order.delivered_at = utcnow()
            if order.payment_method == PaymentMethod.COD.value:
                db.flush()
                payments.settle_paid(db, order.id, provider=PaymentMethod.COD.value, advance_status=False)
        db.commit()
    except Exception:
        db.rollback()
        raise
    db.refresh(order)
    logger.info(f"order {order.order_number}: {previous} -> {target}")
    producer.publish_order_event(order_event("order.status_changed", order, previous_status=previous))
    return order
