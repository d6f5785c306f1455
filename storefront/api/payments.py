from fastapi import APIRouter, Depends, Header, Request
from redis import Redis
from sqlalchemy.orm import Session
from starlette.concurrency import run_in_threadpool

from storefront.api.deps import get_current_user, get_db, ok, redis_client
from storefront.core.auth import STAFF_ROLES, require_roles
from storefront.core.errors import ValidationFailed
from storefront.db.models import User
from storefront.payments.payos_client import PayOSClient
from storefront.payments.stripe_client import StripeClient
from storefront.schemas import ConfirmPayment, OrderRead, OrderRef, RefundRequest
from storefront.services import orders, payments

router = APIRouter()  # mounted at /api/payments


def get_stripe() -> StripeClient:
    return StripeClient()


def get_payos() -> PayOSClient:
    return PayOSClient()


@router.post("/create-payment-intent")
def create_payment_intent(payload: OrderRef, user: User = Depends(get_current_user),
                          db: Session = Depends(get_db), stripe: StripeClient = Depends(get_stripe)):
    order = orders.get_owned_order(db, payload.order_id, user)
    return ok(payments.create_payment_intent(db, order, stripe))


@router.post("/confirm-payment")
def confirm_payment(payload: ConfirmPayment, user: User = Depends(get_current_user),
                    db: Session = Depends(get_db), stripe: StripeClient = Depends(get_stripe)):
    result = payments.confirm_payment(db, payload.payment_intent_id, stripe, user, staff=user.role in STAFF_ROLES)
    result["order"] = OrderRead.model_validate(result["order"])
    return ok(result)


@router.post("/webhook")
async def stripe_webhook(request: Request, stripe_signature: str = Header(default="", alias="Stripe-Signature"),
                         db: Session = Depends(get_db), stripe: StripeClient = Depends(get_stripe),
                         r: Redis = Depends(redis_client)):
    payload = await request.body()
    result = await run_in_threadpool(payments.handle_stripe_webhook, db, payload, stripe_signature, stripe, r)
    return ok(result)


@router.post("/payos/create-link")
def create_payos_link(payload: OrderRef, user: User = Depends(get_current_user),
                      db: Session = Depends(get_db), payos: PayOSClient = Depends(get_payos)):
    order = orders.get_owned_order(db, payload.order_id, user)
    return ok(payments.create_payment_link(db, order, payos))


@router.post("/payos/webhook")
async def payos_webhook(request: Request, db: Session = Depends(get_db), payos: PayOSClient = Depends(get_payos),
                        r: Redis = Depends(redis_client)):
    try:
        body = await request.json()
    except ValueError:
        raise ValidationFailed("Invalid webhook payload")
    result = await run_in_threadpool(payments.handle_payos_webhook, db, body, payos, r)
    return ok(result)


@router.post("/refund", dependencies=[Depends(require_roles("admin", "manager"))])
def refund(payload: RefundRequest, db: Session = Depends(get_db), stripe: StripeClient = Depends(get_stripe)):
    order = payments.refund(db, orders.get_order(db, payload.order_id), stripe, payload.amount, payload.reason)
    return ok(OrderRead.model_validate(order), message="Refund processed")
