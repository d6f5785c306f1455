"""Pytest fixtures for storefront tests.

The app runs against an in-memory SQLite database shared through a
StaticPool. Redis, Kafka and the payment providers are replaced with
in-process fakes through FastAPI dependency overrides and monkeypatching.
"""

import os

os.environ["POSTGRES_DSN"] = "sqlite://"
os.environ["KAFKA_ENABLED"] = "false"
os.environ["APP_ENV"] = "test"
os.environ["STRIPE_WEBHOOK_SECRET"] = "whsec_test"
os.environ["PAYOS_CHECKSUM_KEY"] = "checksum_test"

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from storefront.api import deps
from storefront.api import payments as payments_api
from storefront.db.models import (
    Cart, CartItem, CartStatus, Coupon, Product, ProductVariant, ProductWarranty, Role, User, WarrantyPackage,
)
from storefront.db.session import Base
from storefront.kafka import producer
from storefront.payments.payos_client import PayOSClient
from storefront.payments.stripe_client import StripeClient
from storefront.security.utils import create_access_token, hash_password


class FakeRedis:
    def __init__(self):
        self.store = {}

    def set(self, key, value, nx=False, ex=None):
        if nx and key in self.store:
            return None
        self.store[key] = value
        return True

    def delete(self, key):
        return 1 if self.store.pop(key, None) is not None else 0


class FakeStripe(StripeClient):
    """Real signature verification, canned REST responses."""

    def __init__(self):
        super().__init__(secret_key="sk_test", webhook_secret="whsec_test", api_base="http://stripe.invalid")
        self.intents = {}
        self.refunds = []

    def create_payment_intent(self, amount, currency, metadata):
        intent_id = f"pi_{len(self.intents) + 1}"
        self.intents[intent_id] = {
            "id": intent_id,
            "client_secret": f"{intent_id}_secret",
            "amount": amount,
            "currency": currency,
            "status": "requires_payment_method",
            "metadata": {k: str(v) for k, v in metadata.items()},
        }
        return self.intents[intent_id]

    def retrieve_payment_intent(self, intent_id):
        return self.intents[intent_id]

    def create_refund(self, payment_intent, amount=None, currency="vnd", reason=None):
        self.refunds.append({"payment_intent": payment_intent, "amount": amount, "reason": reason})
        return {"id": f"re_{len(self.refunds)}", "status": "succeeded"}


class FakePayOS(PayOSClient):
    def __init__(self):
        super().__init__(client_id="cid", api_key="key", checksum_key="checksum_test",
                         api_base="http://payos.invalid")
        self.links = []

    def create_payment_link(self, order_code, amount, description, items, return_url=None, cancel_url=None):
        self.links.append({"orderCode": order_code, "amount": amount, "description": description})
        return {"checkoutUrl": f"https://pay.payos.vn/web/{order_code}", "paymentLinkId": f"pl_{order_code}"}


@pytest.fixture
def engine():
    eng = create_engine("sqlite://", connect_args={"check_same_thread": False}, poolclass=StaticPool)
    Base.metadata.create_all(eng)
    yield eng
    Base.metadata.drop_all(eng)
    eng.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(bind=engine, autoflush=False, autocommit=False, expire_on_commit=True)


@pytest.fixture
def db(session_factory):
    session = session_factory()
    yield session
    session.close()


@pytest.fixture
def events(monkeypatch):
    """Every event handed to the Kafka producer, in order."""
    sent = []
    monkeypatch.setattr(producer, "send", lambda topic, key, value: sent.append(value))
    return sent


@pytest.fixture
def fake_redis():
    return FakeRedis()


@pytest.fixture
def stripe():
    return FakeStripe()


@pytest.fixture
def payos():
    return FakePayOS()


@pytest.fixture
def client(session_factory, events, fake_redis, stripe, payos):
    from storefront.main import app

    def _get_db():
        session = session_factory()
        try:
            yield session
        finally:
            session.close()

    app.dependency_overrides[deps.get_db] = _get_db
    app.dependency_overrides[deps.redis_client] = lambda: fake_redis
    app.dependency_overrides[payments_api.get_stripe] = lambda: stripe
    app.dependency_overrides[payments_api.get_payos] = lambda: payos
    yield TestClient(app)
    app.dependency_overrides.clear()


def make_user(db, email="buyer@example.com", role=Role.CUSTOMER.value, **fields) -> User:
    user = User(email=email, password_hash=hash_password("password123"), role=role,
                first_name="Test", last_name="Buyer", **fields)
    db.add(user)
    db.commit()
    db.refresh(user)
    return user


def auth_header(user: User) -> dict:
    token, _ = create_access_token(user.email, user.role, user.id)
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def customer(db):
    return make_user(db)


@pytest.fixture
def admin(db):
    return make_user(db, email="admin@example.com", role=Role.ADMIN.value)


@pytest.fixture
def product(db):
    obj = Product(name="USB-C Charger", slug="usb-c-charger", sku="CHG-65W", price=1_000_000,
                  stock_quantity=10, in_stock=True, is_active=True)
    db.add(obj)
    db.commit()
    db.refresh(obj)
    return obj


@pytest.fixture
def phone(db):
    """A product with one variant (stock 5) and a 12-month default warranty."""
    obj = Product(name="Pixel 9", slug="pixel-9", sku="PX9", price=20_000_000, stock_quantity=5,
                  in_stock=True, is_active=True)
    db.add(obj)
    db.flush()
    db.add(ProductVariant(product_id=obj.id, variant_name="128GB Black", sku="PX9-128-BLACK", price=20_000_000,
                          stock_quantity=5, attributes={"storage": "128GB", "color": "Black"}, is_default=True))
    package = WarrantyPackage(name="Standard 12M", duration_months=12, price=0, is_active=True)
    db.add(package)
    db.flush()
    db.add(ProductWarranty(product_id=obj.id, warranty_package_id=package.id, is_default=True))
    db.commit()
    db.refresh(obj)
    return obj


@pytest.fixture
def sale10(db):
    coupon = Coupon(code="SALE10", type="percent", value=10, min_order_amount=100_000, max_discount=50_000,
                    usage_limit=0, used_count=0, is_active=True, applicable_tiers=[])
    db.add(coupon)
    db.commit()
    db.refresh(coupon)
    return coupon


def fill_cart(db, user: User, product: Product, quantity: int = 1, variant: ProductVariant | None = None) -> Cart:
    cart = db.query(Cart).filter(Cart.user_id == user.id, Cart.status == CartStatus.ACTIVE.value).first()
    if not cart:
        cart = Cart(user_id=user.id, status=CartStatus.ACTIVE.value)
        db.add(cart)
        db.flush()
    price = variant.price if variant else product.price
    db.add(CartItem(cart_id=cart.id, product_id=product.id, variant_id=variant.id if variant else None,
                    quantity=quantity, price=price, total_price=price * quantity))
    db.commit()
    db.refresh(cart)
    return cart


ADDRESS = {"fullName": "Test Buyer", "phone": "0900000000", "address": "1 Le Loi", "city": "HCMC"}
