from fastapi import APIRouter, Depends
from sqlalchemy import select
from sqlalchemy.orm import Session

from storefront.api.deps import get_db, ok
from storefront.core.auth import require_admin
from storefront.db.models import WarrantyPackage
from storefront.schemas import WarrantyPackageCreate, WarrantyPackageRead
from storefront.services import warranty

router = APIRouter()  # mounted at /api/warranty


@router.get("/packages")
def list_packages(db: Session = Depends(get_db)):
    rows = db.execute(select(WarrantyPackage).where(WarrantyPackage.is_active.is_(True))
                      .order_by(WarrantyPackage.duration_months)).scalars().all()
    return ok([WarrantyPackageRead.model_validate(p) for p in rows])


@router.post("/packages", status_code=201, dependencies=[Depends(require_admin)])
def create_package(payload: WarrantyPackageCreate, db: Session = Depends(get_db)):
    obj = WarrantyPackage(**payload.model_dump(), is_active=True)
    db.add(obj); db.commit(); db.refresh(obj)
    return ok(WarrantyPackageRead.model_validate(obj))


@router.get("/lookup/{imei}")
def lookup(imei: str, db: Session = Depends(get_db)):
    item = warranty.lookup_by_imei(db, imei)
    return ok({
        "imei": item.imei,
        "product": item.name,
        "variant": item.variant_name,
        "orderNumber": item.order.order_number,
        "package": item.warranty_package.name if item.warranty_package else None,
        "startAt": item.warranty_start_at,
        "endAt": item.warranty_end_at,
        "status": warranty.warranty_state(item),
    })
