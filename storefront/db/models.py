from sqlalchemy.orm import Mapped, mapped_column, relationship
from sqlalchemy import Integer, String, Text, Boolean, DateTime, ForeignKey, BigInteger, JSON, UniqueConstraint, Index, CheckConstraint, Float
from datetime import datetime, timezone
from enum import Enum
from typing import Optional
from storefront.db.session import Base


def utcnow() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None)


class Role(str, Enum):
    CUSTOMER = "customer"
    SUPPORT = "support"
    MANAGER = "manager"
    ADMIN = "admin"

class Tier(str, Enum):
    NONE = "none"
    SILVER = "silver"
    GOLD = "gold"
    DIAMOND = "diamond"

class CartStatus(str, Enum):
    ACTIVE = "active"
    CONVERTED = "converted"
    MERGED = "merged"

class CouponType(str, Enum):
    PERCENT = "percent"
    FIXED = "fixed"

class OrderStatus(str, Enum):
    PENDING = "pending"
    CONFIRMED = "confirmed"
    PROCESSING = "processing"
    SHIPPED = "shipped"
    DELIVERED = "delivered"
    CANCELLED = "cancelled"
    REFUNDED = "refunded"

class PaymentStatus(str, Enum):
    PENDING = "pending"
    PAID = "paid"
    FAILED = "failed"
    REFUNDED = "refunded"

class PaymentMethod(str, Enum):
    COD = "cod"
    STRIPE = "stripe"
    PAYOS = "payos"

class WarrantyStatus(str, Enum):
    ACTIVE = "active"
    VOID = "void"

class AddressType(str, Enum):
    HOME = "home"
    OFFICE = "office"
    OTHER = "other"


# --- identity ---

class User(Base):
    __tablename__ = 'users'
    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    email: Mapped[str] = mapped_column(String(255), unique=True, nullable=False, index=True)
    password_hash: Mapped[str] = mapped_column(String(255), nullable=False)
    first_name: Mapped[str] = mapped_column(String(120), default='')
    last_name: Mapped[str] = mapped_column(String(120), default='')
    phone: Mapped[Optional[str]] = mapped_column(String(32), nullable=True)
    role: Mapped[str] = mapped_column(String(32), default=Role.CUSTOMER.value)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)
    total_spent: Mapped[int] = mapped_column(BigInteger, default=0)
    loyalty_points: Mapped[int] = mapped_column(BigInteger, default=0)
    loyalty_tier: Mapped[str] = mapped_column(String(16), default=Tier.NONE.value)
    created_at: Mapped[datetime] = mapped_column(DateTime(), default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(), default=utcnow, onupdate=utcnow)
    refresh_tokens = relationship('RefreshToken', back_populates='user', cascade='all, delete-orphan')

    @property
    def full_name(self) -> str:
        return f"{self.first_name or ''} {self.last_name or ''}".strip()

class RefreshToken(Base):
    __tablename__ = 'refresh_tokens'
    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[int] = mapped_column(ForeignKey('users.id', ondelete='CASCADE'))
    jti: Mapped[str] = mapped_column(String(64), unique=True, nullable=False)
    token_hash: Mapped[str] = mapped_column(String(64), nullable=False)
    expires_at: Mapped[datetime] = mapped_column(DateTime(), nullable=False)
    revoked: Mapped[bool] = mapped_column(Boolean, default=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(), default=utcnow)
    user = relationship('User', back_populates='refresh_tokens')


# --- catalog ---

class Category(Base):
    __tablename__ = 'categories'
    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    name: Mapped[str] = mapped_column(String(120), unique=True, nullable=False)
    slug: Mapped[str] = mapped_column(String(140), unique=True, nullable=False)
    description: Mapped[str] = mapped_column(Text, default='')
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)
    products = relationship('Product', back_populates='category')

class Product(Base):
    __tablename__ = 'products'
    __table_args__ = (CheckConstraint('stock_quantity >= 0', name='ck_products_stock_nonneg'),)
    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    name: Mapped[str] = mapped_column(String(240), nullable=False)
    slug: Mapped[str] = mapped_column(String(260), unique=True, nullable=False)
    sku: Mapped[str] = mapped_column(String(64), unique=True, nullable=False)
    description: Mapped[str] = mapped_column(Text, default='')
    price: Mapped[int] = mapped_column(BigInteger, nullable=False)
    stock_quantity: Mapped[int] = mapped_column(Integer, default=0)
    in_stock: Mapped[bool] = mapped_column(Boolean, default=False)
    thumbnail: Mapped[Optional[str]] = mapped_column(String(1024), nullable=True)
    search_keywords: Mapped[str] = mapped_column(Text, default='')
    category_id: Mapped[Optional[int]] = mapped_column(ForeignKey('categories.id'), nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)
    rating: Mapped[float] = mapped_column(Float, default=0)
    review_count: Mapped[int] = mapped_column(Integer, default=0)
    created_at: Mapped[datetime] = mapped_column(DateTime(), default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(), default=utcnow, onupdate=utcnow)
    category = relationship('Category', back_populates='products')
    variants = relationship('ProductVariant', back_populates='product', cascade='all, delete-orphan',
                            order_by='ProductVariant.id')
    warranties = relationship('ProductWarranty', back_populates='product', cascade='all, delete-orphan')

class ProductVariant(Base):
    __tablename__ = 'product_variants'
    __table_args__ = (CheckConstraint('stock_quantity >= 0', name='ck_variants_stock_nonneg'),)
    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    product_id: Mapped[int] = mapped_column(ForeignKey('products.id', ondelete='CASCADE'), index=True)
    variant_name: Mapped[str] = mapped_column(String(240), nullable=False)
    sku: Mapped[str] = mapped_column(String(96), unique=True, nullable=False)
    price: Mapped[int] = mapped_column(BigInteger, nullable=False)
    stock_quantity: Mapped[int] = mapped_column(Integer, default=0)
    attributes: Mapped[dict] = mapped_column(JSON, default=dict)
    is_default: Mapped[bool] = mapped_column(Boolean, default=False)
    product = relationship('Product', back_populates='variants')

class WarrantyPackage(Base):
    __tablename__ = 'warranty_packages'
    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    name: Mapped[str] = mapped_column(String(160), nullable=False)
    description: Mapped[str] = mapped_column(Text, default='')
    duration_months: Mapped[int] = mapped_column(Integer, nullable=False)
    price: Mapped[int] = mapped_column(BigInteger, default=0)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)

class ProductWarranty(Base):
    __tablename__ = 'product_warranties'
    __table_args__ = (UniqueConstraint('product_id', 'warranty_package_id'),)
    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    product_id: Mapped[int] = mapped_column(ForeignKey('products.id', ondelete='CASCADE'), index=True)
    warranty_package_id: Mapped[int] = mapped_column(ForeignKey('warranty_packages.id', ondelete='CASCADE'))
    is_default: Mapped[bool] = mapped_column(Boolean, default=False)
    product = relationship('Product', back_populates='warranties')
    package = relationship('WarrantyPackage')


# --- cart ---

class Cart(Base):
    __tablename__ = 'carts'
    __table_args__ = (Index('ix_carts_user_status', 'user_id', 'status'),)
    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[Optional[int]] = mapped_column(ForeignKey('users.id', ondelete='CASCADE'), nullable=True)
    session_id: Mapped[Optional[str]] = mapped_column(String(64), nullable=True, index=True)
    status: Mapped[str] = mapped_column(String(16), default=CartStatus.ACTIVE.value)
    created_at: Mapped[datetime] = mapped_column(DateTime(), default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(), default=utcnow, onupdate=utcnow)
    items = relationship('CartItem', back_populates='cart', cascade='all, delete-orphan', order_by='CartItem.id')

class CartItem(Base):
    __tablename__ = 'cart_items'
    __table_args__ = (
        UniqueConstraint('cart_id', 'product_id', 'variant_id'),
        CheckConstraint('quantity >= 1', name='ck_cart_items_quantity_positive'),
    )
    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    cart_id: Mapped[int] = mapped_column(ForeignKey('carts.id', ondelete='CASCADE'), index=True)
    product_id: Mapped[int] = mapped_column(ForeignKey('products.id'))
    variant_id: Mapped[Optional[int]] = mapped_column(ForeignKey('product_variants.id'), nullable=True)
    quantity: Mapped[int] = mapped_column(Integer, nullable=False)
    price: Mapped[int] = mapped_column(BigInteger, nullable=False)
    total_price: Mapped[int] = mapped_column(BigInteger, default=0)
    added_at: Mapped[datetime] = mapped_column(DateTime(), default=utcnow)
    cart = relationship('Cart', back_populates='items')
    product = relationship('Product')
    variant = relationship('ProductVariant')


# --- pricing ---

class Coupon(Base):
    __tablename__ = 'coupons'
    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    code: Mapped[str] = mapped_column(String(64), unique=True, nullable=False, index=True)
    type: Mapped[str] = mapped_column(String(16), nullable=False)
    value: Mapped[int] = mapped_column(BigInteger, nullable=False)
    min_order_amount: Mapped[int] = mapped_column(BigInteger, default=0)
    max_discount: Mapped[int] = mapped_column(BigInteger, default=0)
    start_date: Mapped[Optional[datetime]] = mapped_column(DateTime(), nullable=True)
    end_date: Mapped[Optional[datetime]] = mapped_column(DateTime(), nullable=True)
    usage_limit: Mapped[int] = mapped_column(Integer, default=0)
    used_count: Mapped[int] = mapped_column(Integer, default=0)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)
    applicable_tiers: Mapped[list] = mapped_column(JSON, default=list)
    description: Mapped[str] = mapped_column(Text, default='')
    created_by: Mapped[Optional[int]] = mapped_column(ForeignKey('users.id', ondelete='SET NULL'), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(), default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(), default=utcnow, onupdate=utcnow)

class LoyaltyConfig(Base):
    __tablename__ = 'loyalty_configs'
    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    tier: Mapped[str] = mapped_column(String(16), unique=True, nullable=False)
    min_total_spent: Mapped[int] = mapped_column(BigInteger, default=0)
    discount_percent: Mapped[int] = mapped_column(Integer, default=0)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)
    note: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)


# --- orders ---

class Order(Base):
    __tablename__ = 'orders'
    __table_args__ = (
        UniqueConstraint('order_number', name='uq_orders_order_number'),
        CheckConstraint('total_amount >= 0', name='ck_orders_total_nonneg'),
    )
    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    order_number: Mapped[str] = mapped_column(String(32), nullable=False)
    user_id: Mapped[int] = mapped_column(ForeignKey('users.id'), index=True)
    status: Mapped[str] = mapped_column(String(16), default=OrderStatus.PENDING.value, index=True)
    payment_status: Mapped[str] = mapped_column(String(16), default=PaymentStatus.PENDING.value, index=True)
    payment_method: Mapped[str] = mapped_column(String(16), default=PaymentMethod.COD.value)
    payment_provider: Mapped[Optional[str]] = mapped_column(String(16), nullable=True)
    payment_transaction_id: Mapped[Optional[str]] = mapped_column(String(128), nullable=True, index=True)
    subtotal: Mapped[int] = mapped_column(BigInteger, nullable=False)
    tax_amount: Mapped[int] = mapped_column(BigInteger, default=0)
    shipping_amount: Mapped[int] = mapped_column(BigInteger, default=0)
    discount_amount: Mapped[int] = mapped_column(BigInteger, default=0)
    loyalty_discount_amount: Mapped[int] = mapped_column(BigInteger, default=0)
    coupon_discount_amount: Mapped[int] = mapped_column(BigInteger, default=0)
    coupon_code: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    total_amount: Mapped[int] = mapped_column(BigInteger, nullable=False)
    currency: Mapped[str] = mapped_column(String(3), default='VND')
    shipping_address: Mapped[dict] = mapped_column(JSON, default=dict)
    billing_address: Mapped[Optional[dict]] = mapped_column(JSON, nullable=True)
    notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    tracking_number: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    loyalty_applied: Mapped[bool] = mapped_column(Boolean, default=False)
    paid_at: Mapped[Optional[datetime]] = mapped_column(DateTime(), nullable=True)
    delivered_at: Mapped[Optional[datetime]] = mapped_column(DateTime(), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(), default=utcnow, index=True)
    updated_at: Mapped[datetime] = mapped_column(DateTime(), default=utcnow, onupdate=utcnow)

    items = relationship("OrderItem", back_populates="order", cascade="all, delete-orphan", order_by="OrderItem.id")
    user = relationship("User")

class OrderItem(Base):
    __tablename__ = "order_items"
    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    order_id: Mapped[int] = mapped_column(ForeignKey("orders.id", ondelete="CASCADE"), index=True)
    product_id: Mapped[int] = mapped_column(ForeignKey("products.id"))
    variant_id: Mapped[Optional[int]] = mapped_column(ForeignKey("product_variants.id"), nullable=True)
    name: Mapped[str] = mapped_column(String(240))
    variant_name: Mapped[Optional[str]] = mapped_column(String(240), nullable=True)
    sku: Mapped[str] = mapped_column(String(96))
    image: Mapped[Optional[str]] = mapped_column(String(1024), nullable=True)
    price: Mapped[int] = mapped_column(BigInteger)
    quantity: Mapped[int] = mapped_column(Integer)
    total_price: Mapped[int] = mapped_column(BigInteger)
    imei: Mapped[Optional[str]] = mapped_column(String(15), nullable=True, index=True)
    warranty_package_id: Mapped[Optional[int]] = mapped_column(ForeignKey("warranty_packages.id"), nullable=True)
    warranty_start_at: Mapped[Optional[datetime]] = mapped_column(DateTime(), nullable=True)
    warranty_end_at: Mapped[Optional[datetime]] = mapped_column(DateTime(), nullable=True)
    warranty_status: Mapped[str] = mapped_column(String(16), default=WarrantyStatus.VOID.value)

    order = relationship("Order", back_populates="items")
    warranty_package = relationship("WarrantyPackage")


# --- account extras ---

class Address(Base):
    __tablename__ = 'addresses'
    __table_args__ = (Index('ix_addresses_user_default', 'user_id', 'is_default'),)
    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[int] = mapped_column(ForeignKey('users.id', ondelete='CASCADE'), index=True)
    full_name: Mapped[str] = mapped_column(String(160), nullable=False)
    phone: Mapped[str] = mapped_column(String(32), nullable=False)
    street: Mapped[str] = mapped_column(String(255), nullable=False)
    ward: Mapped[Optional[str]] = mapped_column(String(120), nullable=True)
    district: Mapped[Optional[str]] = mapped_column(String(120), nullable=True)
    province: Mapped[str] = mapped_column(String(120), nullable=False)
    postal_code: Mapped[Optional[str]] = mapped_column(String(16), nullable=True)
    country: Mapped[str] = mapped_column(String(64), default='Vietnam')
    address_type: Mapped[str] = mapped_column(String(16), default=AddressType.HOME.value)
    is_default: Mapped[bool] = mapped_column(Boolean, default=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(), default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(), default=utcnow, onupdate=utcnow)

    def as_shipping(self) -> dict:
        """The snapshot stored on an order."""
        city = ", ".join(p for p in (self.district, self.province) if p)
        return {"full_name": self.full_name, "phone": self.phone, "address": self.street, "city": city,
                "district": self.district, "ward": self.ward, "country": self.country}

class WishlistItem(Base):
    __tablename__ = 'wishlist_items'
    __table_args__ = (UniqueConstraint('user_id', 'product_id', name='uq_wishlist_user_product'),)
    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[int] = mapped_column(ForeignKey('users.id', ondelete='CASCADE'), index=True)
    product_id: Mapped[int] = mapped_column(ForeignKey('products.id', ondelete='CASCADE'))
    created_at: Mapped[datetime] = mapped_column(DateTime(), default=utcnow)
    product = relationship('Product')

class Review(Base):
    __tablename__ = 'reviews'
    __table_args__ = (
        UniqueConstraint('product_id', 'user_id', name='uq_reviews_product_user'),
        CheckConstraint('rating >= 1 AND rating <= 5', name='ck_reviews_rating_range'),
        Index('ix_reviews_product_created', 'product_id', 'created_at'),
    )
    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    product_id: Mapped[int] = mapped_column(ForeignKey('products.id', ondelete='CASCADE'))
    user_id: Mapped[int] = mapped_column(ForeignKey('users.id', ondelete='CASCADE'), index=True)
    rating: Mapped[int] = mapped_column(Integer, nullable=False)
    title: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    comment: Mapped[str] = mapped_column(Text, nullable=False)
    images: Mapped[list] = mapped_column(JSON, default=list)
    is_verified: Mapped[bool] = mapped_column(Boolean, default=False)
    helpful: Mapped[int] = mapped_column(Integer, default=0)
    not_helpful: Mapped[int] = mapped_column(Integer, default=0)
    created_at: Mapped[datetime] = mapped_column(DateTime(), default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(), default=utcnow, onupdate=utcnow)
    user = relationship('User')
    product = relationship('Product')

    @property
    def author_name(self) -> str:
        return self.user.full_name if self.user else ''

class ReviewFeedback(Base):
    __tablename__ = 'review_feedbacks'
    __table_args__ = (UniqueConstraint('review_id', 'user_id', name='uq_review_feedbacks_review_user'),)
    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    review_id: Mapped[int] = mapped_column(ForeignKey('reviews.id', ondelete='CASCADE'), index=True)
    user_id: Mapped[int] = mapped_column(ForeignKey('users.id', ondelete='CASCADE'))
    helpful: Mapped[bool] = mapped_column(Boolean, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(), default=utcnow)
