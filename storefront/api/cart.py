import uuid
from typing import Optional

from fastapi import APIRouter, Cookie, Depends, Response
from sqlalchemy.orm import Session

from storefront.api.deps import get_db, ok
from storefront.core.auth import get_current_identity, get_optional_identity
from storefront.core.config import settings
from storefront.schemas import CartItemAdd, CartItemRead, CartItemUpdate
from storefront.services import cart as cart_service

router = APIRouter()  # mounted at /api/cart

SESSION_COOKIE = "sessionId"


def _owner(identity: Optional[dict], session_id: Optional[str]) -> dict:
    if identity:
        return {"user_id": identity.get("uid")}
    return {"session_id": session_id}


def _render(cart) -> dict:
    summary = cart_service.summarize(cart)
    summary["items"] = [CartItemRead.model_validate(i) for i in summary["items"]]
    return ok(summary)


@router.get("")
def get_cart(identity: Optional[dict] = Depends(get_optional_identity),
             session_id: Optional[str] = Cookie(default=None, alias=SESSION_COOKIE),
             db: Session = Depends(get_db)):
    return _render(cart_service.find_active_cart(db, **_owner(identity, session_id)))


@router.get("/count")
def cart_count(identity: Optional[dict] = Depends(get_optional_identity),
               session_id: Optional[str] = Cookie(default=None, alias=SESSION_COOKIE),
               db: Session = Depends(get_db)):
    return ok({"count": cart_service.count(cart_service.find_active_cart(db, **_owner(identity, session_id)))})


@router.post("/items", status_code=201)
def add_item(payload: CartItemAdd, response: Response,
             identity: Optional[dict] = Depends(get_optional_identity),
             session_id: Optional[str] = Cookie(default=None, alias=SESSION_COOKIE),
             db: Session = Depends(get_db)):
    if not identity and not session_id:
        session_id = uuid.uuid4().hex
        response.set_cookie(SESSION_COOKIE, session_id, httponly=True, samesite="lax",
                            secure=settings.is_production, max_age=30 * 24 * 3600)
    cart = cart_service.get_or_create_cart(db, **_owner(identity, session_id))
    return _render(cart_service.add_item(db, cart, payload.product_id, payload.variant_id, payload.quantity))


@router.patch("/items/{item_id}")
def update_item(item_id: int, payload: CartItemUpdate,
                identity: Optional[dict] = Depends(get_optional_identity),
                session_id: Optional[str] = Cookie(default=None, alias=SESSION_COOKIE),
                db: Session = Depends(get_db)):
    cart = cart_service.get_or_create_cart(db, **_owner(identity, session_id))
    return _render(cart_service.update_item(db, cart, item_id, payload.quantity))


@router.delete("/items/{item_id}")
def remove_item(item_id: int,
                identity: Optional[dict] = Depends(get_optional_identity),
                session_id: Optional[str] = Cookie(default=None, alias=SESSION_COOKIE),
                db: Session = Depends(get_db)):
    cart = cart_service.get_or_create_cart(db, **_owner(identity, session_id))
    return _render(cart_service.remove_item(db, cart, item_id))


@router.delete("/clear")
def clear_cart(identity: Optional[dict] = Depends(get_optional_identity),
               session_id: Optional[str] = Cookie(default=None, alias=SESSION_COOKIE),
               db: Session = Depends(get_db)):
    cart = cart_service.find_active_cart(db, **_owner(identity, session_id))
    cart_service.clear(db, cart)
    return _render(cart)


@router.post("/merge")
def merge_cart(response: Response, identity: dict = Depends(get_current_identity),
               session_id: Optional[str] = Cookie(default=None, alias=SESSION_COOKIE),
               db: Session = Depends(get_db)):
    cart = cart_service.merge_session_cart(db, identity.get("uid"), session_id)
    response.delete_cookie(SESSION_COOKIE)
    return _render(cart)
