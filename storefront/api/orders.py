from typing import Optional

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from storefront.api.deps import get_current_user, get_db, ok
from storefront.core.auth import require_staff
from storefront.db.models import User
from storefront.schemas import CancelOrder, CreateOrder, OrderRead, OrderStatusUpdate
from storefront.services import addresses, checkout, orders

router = APIRouter()  # mounted at /api/orders
admin_router = APIRouter(dependencies=[Depends(require_staff)])  # mounted at /api/admin/orders


def _page(rows, meta) -> dict:
    return ok({"orders": [OrderRead.model_validate(o) for o in rows], "pagination": meta})


@router.post("", status_code=201)
def create_order(payload: CreateOrder, user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    if payload.address_id is not None:
        shipping = addresses.get_owned(db, user, payload.address_id).as_shipping()
    else:
        shipping = payload.shipping_address.model_dump()
    order = checkout.create_order(
        db, user,
        shipping_address=shipping,
        payment_method=payload.payment_method,
        coupon_code=payload.coupon_code,
        notes=payload.notes,
        billing_address=payload.billing_address.model_dump() if payload.billing_address else None,
    )
    return ok(OrderRead.model_validate(order), message="Order created")


@router.get("")
def my_orders(status: Optional[str] = None, page: int = 1, limit: int = 10,
              user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    return _page(*orders.list_user_orders(db, user, status, page, limit))


@router.get("/number/{order_number}")
def get_by_number(order_number: str, user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    return ok(OrderRead.model_validate(orders.get_by_number(db, order_number, user)))


@router.get("/{order_id}")
def get_order(order_id: int, user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    return ok(OrderRead.model_validate(orders.get_owned_order(db, order_id, user)))


@router.post("/{order_id}/cancel")
def cancel_order(order_id: int, payload: Optional[CancelOrder] = None,
                 user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    order = orders.get_owned_order(db, order_id, user)
    order = orders.cancel_order(db, order, user, payload.reason if payload else None)
    return ok(OrderRead.model_validate(order), message="Order cancelled")


@router.post("/{order_id}/repay")
def repay(order_id: int, user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    order = orders.repay(db, orders.get_owned_order(db, order_id, user), user)
    return ok(OrderRead.model_validate(order))


@admin_router.get("")
def all_orders(status: Optional[str] = None, payment_status: Optional[str] = None, search: Optional[str] = None,
               sort: str = "created_at", order: str = "desc", page: int = 1, limit: int = 20,
               db: Session = Depends(get_db)):
    return _page(*orders.list_all_orders(db, status, payment_status, search, sort, order, page, limit))


@admin_router.get("/{order_id}")
def admin_get_order(order_id: int, db: Session = Depends(get_db)):
    return ok(OrderRead.model_validate(orders.get_order(db, order_id)))


@admin_router.patch("/{order_id}/status")
def update_status(order_id: int, payload: OrderStatusUpdate, db: Session = Depends(get_db)):
    order = orders.update_status(db, orders.get_order(db, order_id), payload.status,
                                 payload.notes, payload.tracking_number)
    return ok(OrderRead.model_validate(order))
