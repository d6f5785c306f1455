from fastapi import APIRouter, Depends
from typing import Optional
from sqlalchemy.orm import Session
from sqlalchemy import or_, select
from storefront.api.deps import get_db, ok
from storefront.core.auth import require_admin
from storefront.core.errors import Conflict, NotFound
from storefront.db.models import Category, Product, ProductVariant, ProductWarranty
from storefront.schemas import (
    CategoryCreate, CategoryRead, ProductCreate, ProductRead, ProductUpdate, VariantCreate, VariantRead,
    VariantUpdate, WarrantyAttach, WarrantyPackageRead,
)
from storefront.services import catalog

router = APIRouter()  # mounted at /api/catalog


# --- categories ---

@router.get('/categories')
def list_categories(db: Session = Depends(get_db)):
    rows = db.execute(select(Category).where(Category.is_active.is_(True)).order_by(Category.name)).scalars().all()
    return ok([CategoryRead.model_validate(c) for c in rows])

@router.post('/categories', status_code=201, dependencies=[Depends(require_admin)])
def create_category(payload: CategoryCreate, db: Session = Depends(get_db)):
    return ok(CategoryRead.model_validate(catalog.create_category(db, payload.name, payload.description or '')))

@router.patch('/categories/{category_id}', dependencies=[Depends(require_admin)])
def update_category(category_id: int, payload: CategoryCreate, db: Session = Depends(get_db)):
    obj = db.get(Category, category_id)
    if not obj: raise NotFound('Category not found')
    if payload.name != obj.name:
        if db.execute(select(Category).where(Category.name == payload.name)).scalar_one_or_none():
            raise Conflict('Category already exists')
        obj.name = payload.name
        obj.slug = catalog.unique_slug(db, Category, catalog.slugify(payload.name))
    obj.description = payload.description or ''
    db.commit(); db.refresh(obj)
    return ok(CategoryRead.model_validate(obj))

@router.delete('/categories/{category_id}', dependencies=[Depends(require_admin)])
def delete_category(category_id: int, db: Session = Depends(get_db)):
    obj = db.get(Category, category_id)
    if not obj: raise NotFound('Category not found')
    obj.is_active = False
    db.commit()
    return ok(message='Category disabled')


# --- products ---

@router.get('/products')
def list_products(db: Session = Depends(get_db), q: Optional[str] = None, category_id: Optional[int] = None,
                  in_stock: Optional[bool] = None, limit: int = 20, offset: int = 0):
    stmt = select(Product).where(Product.is_active.is_(True))
    if q:
        like = f"%{q.strip().lower()}%"
        stmt = stmt.where(or_(Product.name.ilike(like), Product.search_keywords.ilike(like),
                              Product.sku.ilike(like)))
    if category_id is not None: stmt = stmt.where(Product.category_id == category_id)
    if in_stock is not None: stmt = stmt.where(Product.in_stock.is_(in_stock))
    stmt = stmt.order_by(Product.id.desc()).offset(max(offset, 0)).limit(min(max(limit, 1), 100))
    return ok([ProductRead.model_validate(p) for p in db.execute(stmt).scalars().unique().all()])

@router.get('/products/{product_id}')
def get_product(product_id: int, db: Session = Depends(get_db)):
    return ok(ProductRead.model_validate(catalog.get_product(db, product_id)))

@router.post('/products', status_code=201, dependencies=[Depends(require_admin)])
def create_product(payload: ProductCreate, db: Session = Depends(get_db)):
    return ok(ProductRead.model_validate(catalog.create_product(db, payload.model_dump())))

@router.patch('/products/{product_id}', dependencies=[Depends(require_admin)])
def update_product(product_id: int, payload: ProductUpdate, db: Session = Depends(get_db)):
    obj = catalog.get_product(db, product_id)
    return ok(ProductRead.model_validate(catalog.update_product(db, obj, payload.model_dump(exclude_unset=True))))

@router.delete('/products/{product_id}', dependencies=[Depends(require_admin)])
def delete_product(product_id: int, db: Session = Depends(get_db)):
    obj = catalog.get_product(db, product_id)
    obj.is_active = False
    db.commit()
    return ok(message='Product disabled')


# --- variants ---

def _variant(db: Session, product_id: int, variant_id: int) -> ProductVariant:
    variant = db.get(ProductVariant, variant_id)
    if not variant or variant.product_id != product_id: raise NotFound('Variant not found')
    return variant

@router.get('/products/{product_id}/variants')
def list_variants(product_id: int, db: Session = Depends(get_db)):
    return ok([VariantRead.model_validate(v) for v in catalog.get_product(db, product_id).variants])

@router.post('/products/{product_id}/variants', status_code=201, dependencies=[Depends(require_admin)])
def add_variant(product_id: int, payload: VariantCreate, db: Session = Depends(get_db)):
    product = catalog.get_product(db, product_id)
    return ok(VariantRead.model_validate(catalog.add_variant(db, product, payload.model_dump())))

@router.patch('/products/{product_id}/variants/{variant_id}', dependencies=[Depends(require_admin)])
def update_variant(product_id: int, variant_id: int, payload: VariantUpdate, db: Session = Depends(get_db)):
    variant = _variant(db, product_id, variant_id)
    return ok(VariantRead.model_validate(catalog.update_variant(db, variant, payload.model_dump(exclude_unset=True))))

@router.delete('/products/{product_id}/variants/{variant_id}', dependencies=[Depends(require_admin)])
def delete_variant(product_id: int, variant_id: int, db: Session = Depends(get_db)):
    catalog.delete_variant(db, _variant(db, product_id, variant_id))
    return ok(message='Variant deleted')


# --- warranty links ---

@router.get('/products/{product_id}/warranties')
def list_product_warranties(product_id: int, db: Session = Depends(get_db)):
    catalog.get_product(db, product_id)
    links = db.execute(select(ProductWarranty).where(ProductWarranty.product_id == product_id)).scalars().all()
    return ok([{'package': WarrantyPackageRead.model_validate(l.package), 'isDefault': l.is_default} for l in links])

@router.post('/products/{product_id}/warranties', status_code=201, dependencies=[Depends(require_admin)])
def attach_warranty(product_id: int, payload: WarrantyAttach, db: Session = Depends(get_db)):
    product = catalog.get_product(db, product_id)
    link = catalog.attach_warranty(db, product, payload.warranty_package_id, payload.is_default)
    return ok({'package': WarrantyPackageRead.model_validate(link.package), 'isDefault': link.is_default})
