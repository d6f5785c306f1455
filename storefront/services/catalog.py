import re
import unicodedata
from typing import Optional

from sqlalchemy import func, select, update
from sqlalchemy.orm import Session

from storefront.core.errors import Conflict, NotFound, ValidationFailed
from storefront.db.models import Category, Product, ProductVariant, ProductWarranty, WarrantyPackage
from storefront.services import inventory


def slugify(text: str) -> str:
    text = (text or "").replace("đ", "d").replace("Đ", "D")
    text = unicodedata.normalize("NFKD", text).encode("ascii", "ignore").decode("ascii")
    return re.sub(r"[^a-z0-9]+", "-", text.lower()).strip("-") or "item"


def unique_slug(db: Session, model, base: str, exclude_id: Optional[int] = None) -> str:
    slug, n = base, 1
    while True:
        stmt = select(model.id).where(model.slug == slug)
        if exclude_id is not None:
            stmt = stmt.where(model.id != exclude_id)
        if db.execute(stmt).first() is None:
            return slug
        n += 1
        slug = f"{base}-{n}"


def build_search_keywords(product: Product, category: Optional[Category] = None) -> str:
    words = set()
    for source in (product.name, product.sku, category.name if category else ""):
        for w in re.split(r"\s+", source or ""):
            w = w.strip().lower()
            if w:
                words.add(w)
                words.add(slugify(w))
    return " ".join(sorted(words))


def generate_variant_sku(product_sku: str, attributes: dict) -> str:
    suffix = "-".join(re.sub(r"\s+", "", str(v)).upper() for v in (attributes or {}).values())
    return f"{product_sku}-{suffix}" if suffix else product_sku


# --- categories ---

def create_category(db: Session, name: str, description: str = "") -> Category:
    if db.execute(select(Category).where(Category.name == name)).scalar_one_or_none():
        raise Conflict("Category already exists")
    obj = Category(name=name, description=description or "", slug=unique_slug(db, Category, slugify(name)))
    db.add(obj); db.commit(); db.refresh(obj)
    return obj


# --- products ---

def get_product(db: Session, product_id: int) -> Product:
    obj = db.get(Product, product_id)
    if not obj: raise NotFound("Product not found")
    return obj


def _derive(db: Session, product: Product):
    category = db.get(Category, product.category_id) if product.category_id else None
    if product.category_id and not category:
        raise ValidationFailed("Category does not exist")
    product.slug = unique_slug(db, Product, slugify(product.name), exclude_id=product.id)
    product.search_keywords = build_search_keywords(product, category)
    if not product.variants:
        product.in_stock = (product.stock_quantity or 0) > 0


def create_product(db: Session, data: dict) -> Product:
    if db.execute(select(Product.id).where(Product.sku == data["sku"])).first():
        raise Conflict("SKU already exists")
    obj = Product(**data)
    _derive(db, obj)
    db.add(obj); db.commit(); db.refresh(obj)
    return obj


def update_product(db: Session, product: Product, data: dict) -> Product:
    for k, v in data.items(): setattr(product, k, v)
    _derive(db, product)
    db.add(product); db.commit(); db.refresh(product)
    return product


# --- variants ---

def set_default_variant(db: Session, product_id: int, variant: ProductVariant):
    """Make ``variant`` the only default of its product; caller commits."""
    db.execute(
        update(ProductVariant)
        .where(ProductVariant.product_id == product_id, ProductVariant.id != variant.id)
        .values(is_default=False)
        .execution_options(synchronize_session=False)
    )
    variant.is_default = True


def add_variant(db: Session, product: Product, data: dict) -> ProductVariant:
    data = dict(data)
    make_default = data.pop("is_default", False)
    if not data.get("sku"):
        data["sku"] = generate_variant_sku(product.sku, data.get("attributes") or {})
    if db.execute(select(ProductVariant.id).where(ProductVariant.sku == data["sku"])).first():
        raise Conflict("Variant SKU already exists")
    variant = ProductVariant(product_id=product.id, **data)
    db.add(variant); db.flush()
    siblings = db.execute(
        select(func.count(ProductVariant.id)).where(ProductVariant.product_id == product.id)
    ).scalar_one()
    if make_default or siblings == 1:
        set_default_variant(db, product.id, variant)
    inventory.sync_product_stock(db, product.id)
    db.commit(); db.refresh(variant)
    return variant


def update_variant(db: Session, variant: ProductVariant, data: dict) -> ProductVariant:
    data = dict(data)
    make_default = data.pop("is_default", None)
    for k, v in data.items(): setattr(variant, k, v)
    db.flush()
    if make_default:
        set_default_variant(db, variant.product_id, variant)
    inventory.sync_product_stock(db, variant.product_id)
    db.commit(); db.refresh(variant)
    return variant


def delete_variant(db: Session, variant: ProductVariant):
    product_id, was_default = variant.product_id, variant.is_default
    db.delete(variant); db.flush()
    if was_default:
        successor = db.execute(
            select(ProductVariant).where(ProductVariant.product_id == product_id).order_by(ProductVariant.id)
        ).scalars().first()
        if successor:
            set_default_variant(db, product_id, successor)
    inventory.sync_product_stock(db, product_id)
    db.commit()


# --- warranty links ---

def attach_warranty(db: Session, product: Product, package_id: int, is_default: bool) -> ProductWarranty:
    package = db.get(WarrantyPackage, package_id)
    if not package:
        raise NotFound("Warranty package not found")
    link = db.execute(
        select(ProductWarranty).where(ProductWarranty.product_id == product.id,
                                      ProductWarranty.warranty_package_id == package_id)
    ).scalar_one_or_none()
    if not link:
        link = ProductWarranty(product_id=product.id, warranty_package_id=package_id)
        db.add(link); db.flush()
    if is_default:
        db.execute(
            update(ProductWarranty)
            .where(ProductWarranty.product_id == product.id, ProductWarranty.id != link.id)
            .values(is_default=False)
            .execution_options(synchronize_session=False)
        )
        link.is_default = True
    db.commit(); db.refresh(link)
    return link


def default_warranty_package(db: Session, product_id: int) -> Optional[WarrantyPackage]:
    link = db.execute(
        select(ProductWarranty).where(ProductWarranty.product_id == product_id, ProductWarranty.is_default.is_(True))
    ).scalars().first()
    return link.package if link else None
