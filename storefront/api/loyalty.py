from fastapi import APIRouter, Depends
from sqlalchemy import select
from sqlalchemy.orm import Session

from storefront.api.deps import get_current_user, get_db, ok
from storefront.core.auth import require_admin
from storefront.core.errors import NotFound, ValidationFailed
from storefront.db.models import LoyaltyConfig, Tier, User
from storefront.schemas import LoyaltyConfigPut, LoyaltyConfigRead
from storefront.services import loyalty

router = APIRouter()  # mounted at /api/loyalty
admin_router = APIRouter(dependencies=[Depends(require_admin)])  # mounted at /api/admin/loyalty

CONFIGURABLE = (Tier.SILVER.value, Tier.GOLD.value, Tier.DIAMOND.value)


@router.get("/me")
def my_loyalty(user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    return ok(loyalty.loyalty_summary(user, loyalty.load_config_rows(db)))


@admin_router.get("")
def list_configs(db: Session = Depends(get_db)):
    rows = db.execute(select(LoyaltyConfig).order_by(LoyaltyConfig.min_total_spent)).scalars().all()
    return ok({
        "configs": [LoyaltyConfigRead.model_validate(r) for r in rows],
        "effective": loyalty.loyalty_summary(User(total_spent=0, loyalty_points=0), rows)["tiers"],
    })


@admin_router.put("/{tier}")
def upsert_config(tier: str, payload: LoyaltyConfigPut, db: Session = Depends(get_db)):
    if tier not in CONFIGURABLE:
        raise ValidationFailed("tier must be one of silver, gold, diamond")
    row = db.execute(select(LoyaltyConfig).where(LoyaltyConfig.tier == tier)).scalar_one_or_none()
    if not row:
        row = LoyaltyConfig(tier=tier)
        db.add(row)
    for k, v in payload.model_dump().items(): setattr(row, k, v)
    db.commit(); db.refresh(row)
    return ok(LoyaltyConfigRead.model_validate(row))


@admin_router.delete("/{tier}")
def delete_config(tier: str, db: Session = Depends(get_db)):
    row = db.execute(select(LoyaltyConfig).where(LoyaltyConfig.tier == tier)).scalar_one_or_none()
    if not row: raise NotFound("Loyalty config not found")
    db.delete(row); db.commit()
    return ok(message="Loyalty config deleted")
