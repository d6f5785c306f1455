from fastapi import APIRouter, Depends
from sqlalchemy import select
from sqlalchemy.orm import Session

from storefront.api.deps import get_db, ok
from storefront.core.auth import require_admin
from storefront.core.errors import Conflict, NotFound
from storefront.db.models import Coupon
from storefront.schemas import CouponApply, CouponCreate, CouponRead, CouponUpdate
from storefront.services import coupons

router = APIRouter()  # mounted at /api/coupons
admin_router = APIRouter(dependencies=[Depends(require_admin)])  # mounted at /api/admin/coupons


@router.post("/apply")
def apply_coupon(payload: CouponApply, db: Session = Depends(get_db)):
    quote = coupons.quote_coupon(db, payload.code, payload.order_amount)
    return ok({
        "coupon": CouponRead.model_validate(quote.coupon),
        "discountAmount": quote.discount_amount,
        "finalAmount": quote.final_amount,
    })


@router.get("/available")
def available(orderAmount: int = 0, db: Session = Depends(get_db)):
    rows = coupons.available_coupons(db, orderAmount)
    return ok([{**CouponRead.model_validate(r["coupon"]).model_dump(), "isEligible": r["is_eligible"]} for r in rows])


def _get(db: Session, coupon_id: int) -> Coupon:
    obj = db.get(Coupon, coupon_id)
    if not obj: raise NotFound("Coupon not found")
    return obj


@admin_router.get("")
def list_coupons(db: Session = Depends(get_db)):
    rows = db.execute(select(Coupon).order_by(Coupon.created_at.desc(), Coupon.id.desc())).scalars().all()
    return ok([CouponRead.model_validate(c) for c in rows])


@admin_router.post("", status_code=201)
def create_coupon(payload: CouponCreate, identity: dict = Depends(require_admin), db: Session = Depends(get_db)):
    if db.execute(select(Coupon.id).where(Coupon.code == payload.code)).first():
        raise Conflict("Coupon code already exists")
    obj = Coupon(**payload.model_dump(), used_count=0, created_by=identity.get("uid"))
    db.add(obj); db.commit(); db.refresh(obj)
    return ok(CouponRead.model_validate(obj))


@admin_router.patch("/{coupon_id}")
def update_coupon(coupon_id: int, payload: CouponUpdate, db: Session = Depends(get_db)):
    obj = _get(db, coupon_id)
    for k, v in payload.model_dump(exclude_unset=True).items(): setattr(obj, k, v)
    db.commit(); db.refresh(obj)
    return ok(CouponRead.model_validate(obj))


@admin_router.delete("/{coupon_id}")
def disable_coupon(coupon_id: int, db: Session = Depends(get_db)):
    obj = _get(db, coupon_id)
    obj.is_active = False
    db.commit()
    return ok(message="Coupon disabled")
