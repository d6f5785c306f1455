from fastapi import FastAPI
from loguru import logger
from prometheus_fastapi_instrumentator import Instrumentator
from storefront.version import VERSION
from storefront.core.errors import register_error_handlers
from storefront.core.logging import setup_logging
from storefront.kafka import consumer as notifications_consumer
from storefront.api import (
    addresses, admin, auth, cart, catalog, coupons, loyalty, orders, payments, reviews, warranty, wishlist,
)

setup_logging()

instrumentator = Instrumentator()

app = FastAPI(title="Storefront", version=VERSION)

instrumentator.instrument(app).expose(app, include_in_schema=False, endpoint="/metrics", should_gzip=True)

register_error_handlers(app)

@app.get("/health")
def health():
    return {"status": "ok"}

@app.get("/v1/_info")
def info():
    return {"service": "storefront", "version": VERSION}

@app.on_event("startup")
async def startup_event():
    logger.info(f"storefront {VERSION} starting")
    notifications_consumer.start()

@app.on_event("shutdown")
async def shutdown_event():
    notifications_consumer.stop()

app.include_router(auth.router, prefix="/api/auth", tags=["auth"])
app.include_router(auth.users_router, prefix="/api/users", tags=["users"])
app.include_router(addresses.router, prefix="/api/users/me/addresses", tags=["users"])
app.include_router(wishlist.router, prefix="/api/wishlist", tags=["wishlist"])
app.include_router(catalog.router, prefix="/api/catalog", tags=["catalog"])
app.include_router(cart.router, prefix="/api/cart", tags=["cart"])
app.include_router(coupons.router, prefix="/api/coupons", tags=["coupons"])
app.include_router(coupons.admin_router, prefix="/api/admin/coupons", tags=["admin"])
app.include_router(loyalty.router, prefix="/api/loyalty", tags=["loyalty"])
app.include_router(loyalty.admin_router, prefix="/api/admin/loyalty", tags=["admin"])
app.include_router(orders.router, prefix="/api/orders", tags=["orders"])
app.include_router(orders.admin_router, prefix="/api/admin/orders", tags=["admin"])
app.include_router(payments.router, prefix="/api/payments", tags=["payments"])
app.include_router(admin.router, prefix="/api/admin", tags=["admin"])
app.include_router(reviews.router, prefix="/api/reviews", tags=["reviews"])
app.include_router(reviews.admin_router, prefix="/api/admin/reviews", tags=["admin"])
app.include_router(warranty.router, prefix="/api/warranty", tags=["warranty"])
