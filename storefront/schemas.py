from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, EmailStr, Field, field_validator, model_validator


# --- identity ---

class RegisterPayload(BaseModel):
    email: EmailStr
    password: str = Field(min_length=8)
    first_name: str = ''
    last_name: str = ''
    phone: Optional[str] = None

class LoginPayload(BaseModel):
    email: EmailStr
    password: str

class TokenPair(BaseModel):
    access_token: str
    refresh_token: str
    token_type: str = 'bearer'

class RefreshRequest(BaseModel):
    refresh_token: str

class UserRead(BaseModel):
    id: int
    email: EmailStr
    first_name: str
    last_name: str
    phone: Optional[str] = None
    role: str
    total_spent: int
    loyalty_points: int
    loyalty_tier: str
    class Config: from_attributes = True

class ProfileUpdate(BaseModel):
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    phone: Optional[str] = None


# --- catalog ---

class CategoryCreate(BaseModel):
    name: str = Field(min_length=1, max_length=120)
    description: Optional[str] = ''

class CategoryRead(BaseModel):
    id: int
    name: str
    slug: str
    description: str
    class Config: from_attributes = True

class VariantBase(BaseModel):
    variant_name: str
    sku: Optional[str] = None
    price: int = Field(ge=0)
    stock_quantity: int = Field(default=0, ge=0)
    attributes: Dict[str, Any] = {}
    is_default: bool = False

class VariantCreate(VariantBase): pass

class VariantUpdate(BaseModel):
    variant_name: Optional[str] = None
    price: Optional[int] = Field(default=None, ge=0)
    stock_quantity: Optional[int] = Field(default=None, ge=0)
    attributes: Optional[Dict[str, Any]] = None
    is_default: Optional[bool] = None

class VariantRead(VariantBase):
    id: int
    product_id: int
    sku: str
    class Config: from_attributes = True

class ProductBase(BaseModel):
    name: str = Field(min_length=1, max_length=240)
    description: Optional[str] = ''
    price: int = Field(ge=0)
    sku: str
    stock_quantity: int = Field(default=0, ge=0)
    thumbnail: Optional[str] = None
    category_id: Optional[int] = None
    is_active: bool = True

class ProductCreate(ProductBase): pass

class ProductUpdate(BaseModel):
    name: Optional[str] = None
    description: Optional[str] = None
    price: Optional[int] = Field(default=None, ge=0)
    stock_quantity: Optional[int] = Field(default=None, ge=0)
    thumbnail: Optional[str] = None
    category_id: Optional[int] = None
    is_active: Optional[bool] = None

class ProductRead(ProductBase):
    id: int
    slug: str
    in_stock: bool
    rating: float = 0
    review_count: int = 0
    variants: List[VariantRead] = []
    class Config: from_attributes = True


# --- warranty ---

class WarrantyPackageCreate(BaseModel):
    name: str
    description: Optional[str] = ''
    duration_months: int = Field(ge=1)
    price: int = Field(default=0, ge=0)

class WarrantyPackageRead(WarrantyPackageCreate):
    id: int
    is_active: bool
    class Config: from_attributes = True

class WarrantyAttach(BaseModel):
    warranty_package_id: int
    is_default: bool = False


# --- cart ---

class CartItemAdd(BaseModel):
    product_id: int = Field(alias='productId')
    variant_id: Optional[int] = Field(default=None, alias='variantId')
    quantity: int = Field(default=1, ge=1)
    class Config: populate_by_name = True

class CartItemUpdate(BaseModel):
    quantity: int = Field(ge=0)

class CartItemRead(BaseModel):
    id: int
    product_id: int
    variant_id: Optional[int] = None
    quantity: int
    price: int
    total_price: int
    class Config: from_attributes = True


# --- coupons & loyalty ---

class CouponApply(BaseModel):
    code: str = Field(min_length=1)
    order_amount: int = Field(alias='orderAmount', ge=0)
    class Config: populate_by_name = True

class CouponBase(BaseModel):
    code: str = Field(min_length=1, max_length=64)
    type: str
    value: int = Field(gt=0)
    min_order_amount: int = Field(default=0, ge=0)
    max_discount: int = Field(default=0, ge=0)
    start_date: Optional[datetime] = None
    end_date: Optional[datetime] = None
    usage_limit: int = Field(default=0, ge=0)
    is_active: bool = True
    applicable_tiers: List[str] = []
    description: Optional[str] = ''

    @field_validator('code')
    @classmethod
    def _upper(cls, v: str) -> str:
        return v.strip().upper()

    @field_validator('type')
    @classmethod
    def _type(cls, v: str) -> str:
        if v not in ('percent', 'fixed'):
            raise ValueError("type must be 'percent' or 'fixed'")
        return v

class CouponCreate(CouponBase): pass

class CouponUpdate(BaseModel):
    value: Optional[int] = Field(default=None, gt=0)
    min_order_amount: Optional[int] = Field(default=None, ge=0)
    max_discount: Optional[int] = Field(default=None, ge=0)
    start_date: Optional[datetime] = None
    end_date: Optional[datetime] = None
    usage_limit: Optional[int] = Field(default=None, ge=0)
    is_active: Optional[bool] = None
    applicable_tiers: Optional[List[str]] = None
    description: Optional[str] = None

class CouponRead(CouponBase):
    id: int
    used_count: int
    class Config: from_attributes = True

class LoyaltyConfigPut(BaseModel):
    min_total_spent: int = Field(ge=0)
    discount_percent: int = Field(ge=0, le=100)
    is_active: bool = True
    note: Optional[str] = None

class LoyaltyConfigRead(LoyaltyConfigPut):
    id: int
    tier: str
    class Config: from_attributes = True


# --- orders ---

class Address(BaseModel):
    full_name: str = Field(alias='fullName')
    phone: str
    address: str
    city: str
    district: Optional[str] = None
    ward: Optional[str] = None
    country: str = 'VN'
    class Config: populate_by_name = True

class CreateOrder(BaseModel):
    shipping_address: Optional[Address] = Field(default=None, alias='shippingAddress')
    address_id: Optional[int] = Field(default=None, alias='addressId')
    billing_address: Optional[Address] = Field(default=None, alias='billingAddress')
    payment_method: str = Field(default='cod', alias='paymentMethod')
    coupon_code: Optional[str] = Field(default=None, alias='couponCode')
    notes: Optional[str] = None
    class Config: populate_by_name = True

    @model_validator(mode='after')
    def _needs_address(self):
        if self.shipping_address is None and self.address_id is None:
            raise ValueError('shippingAddress or addressId is required')
        return self

class CancelOrder(BaseModel):
    reason: Optional[str] = None

class OrderStatusUpdate(BaseModel):
    status: str
    notes: Optional[str] = None
    tracking_number: Optional[str] = Field(default=None, alias='trackingNumber')
    class Config: populate_by_name = True

class OrderItemRead(BaseModel):
    id: int
    product_id: int
    variant_id: Optional[int] = None
    name: str
    variant_name: Optional[str] = None
    sku: str
    image: Optional[str] = None
    price: int
    quantity: int
    total_price: int
    imei: Optional[str] = None
    warranty_package_id: Optional[int] = None
    warranty_start_at: Optional[datetime] = None
    warranty_end_at: Optional[datetime] = None
    warranty_status: str
    class Config: from_attributes = True

class OrderRead(BaseModel):
    id: int
    order_number: str
    user_id: int
    status: str
    payment_status: str
    payment_method: str
    payment_provider: Optional[str] = None
    subtotal: int
    tax_amount: int
    shipping_amount: int
    discount_amount: int
    loyalty_discount_amount: int
    coupon_discount_amount: int
    coupon_code: Optional[str] = None
    total_amount: int
    currency: str
    shipping_address: Dict[str, Any]
    billing_address: Optional[Dict[str, Any]] = None
    notes: Optional[str] = None
    tracking_number: Optional[str] = None
    paid_at: Optional[datetime] = None
    delivered_at: Optional[datetime] = None
    created_at: datetime
    items: List[OrderItemRead] = []
    class Config: from_attributes = True


# --- payments ---

class OrderRef(BaseModel):
    order_id: int = Field(alias='orderId')
    class Config: populate_by_name = True

class ConfirmPayment(BaseModel):
    payment_intent_id: str = Field(alias='paymentIntentId')
    class Config: populate_by_name = True

class RefundRequest(BaseModel):
    order_id: int = Field(alias='orderId')
    amount: Optional[int] = Field(default=None, gt=0)
    reason: Optional[str] = None
    class Config: populate_by_name = True


# --- addresses ---

class AddressCreate(BaseModel):
    full_name: str = Field(alias='fullName', min_length=1)
    phone: str = Field(min_length=1)
    street: str = Field(min_length=1)
    ward: Optional[str] = None
    district: Optional[str] = None
    province: str = Field(min_length=1)
    postal_code: Optional[str] = Field(default=None, alias='postalCode')
    country: str = 'Vietnam'
    address_type: str = Field(default='home', alias='addressType', pattern='^(home|office|other)$')
    is_default: bool = Field(default=False, alias='isDefault')
    class Config: populate_by_name = True

class AddressUpdate(BaseModel):
    full_name: Optional[str] = Field(default=None, alias='fullName')
    phone: Optional[str] = None
    street: Optional[str] = None
    ward: Optional[str] = None
    district: Optional[str] = None
    province: Optional[str] = None
    postal_code: Optional[str] = Field(default=None, alias='postalCode')
    country: Optional[str] = None
    address_type: Optional[str] = Field(default=None, alias='addressType', pattern='^(home|office|other)$')
    is_default: Optional[bool] = Field(default=None, alias='isDefault')
    class Config: populate_by_name = True

class AddressRead(BaseModel):
    id: int
    full_name: str
    phone: str
    street: str
    ward: Optional[str] = None
    district: Optional[str] = None
    province: str
    postal_code: Optional[str] = None
    country: str
    address_type: str
    is_default: bool
    class Config: from_attributes = True


# --- wishlist ---

class WishlistAdd(BaseModel):
    product_id: int = Field(alias='productId')
    class Config: populate_by_name = True


# --- reviews ---

class ReviewCreate(BaseModel):
    product_id: int = Field(alias='productId')
    rating: int = Field(ge=1, le=5)
    title: Optional[str] = None
    comment: str = Field(min_length=1)
    images: List[str] = []
    class Config: populate_by_name = True

class ReviewUpdate(BaseModel):
    rating: Optional[int] = Field(default=None, ge=1, le=5)
    title: Optional[str] = None
    comment: Optional[str] = Field(default=None, min_length=1)
    images: Optional[List[str]] = None

class ReviewHelpful(BaseModel):
    helpful: bool

class ReviewVerify(BaseModel):
    is_verified: bool = Field(alias='isVerified')
    class Config: populate_by_name = True

class ReviewRead(BaseModel):
    id: int
    product_id: int
    user_id: int
    author_name: str = ''
    rating: int
    title: Optional[str] = None
    comment: str
    images: List[str] = []
    is_verified: bool
    helpful: int
    not_helpful: int
    created_at: datetime
    class Config: from_attributes = True
