"""Product reviews.

Only buyers review: the product must appear in one of the user's delivered
orders, and each user reviews a product once. After every review write the
product's ``rating`` and ``review_count`` are recomputed in the same
transaction.
"""
from decimal import Decimal
from typing import Optional

from sqlalchemy import func, select, update
from sqlalchemy.orm import Session

from storefront.core.errors import BusinessRuleViolation, Forbidden, NotFound
from storefront.db.models import Order, OrderItem, OrderStatus, Product, Review, ReviewFeedback, User
from storefront.services.coupons import round_half_up
from storefront.services.pagination import paginate

SORTS = {
    "newest": (Review.created_at.desc(), Review.id.desc()),
    "oldest": (Review.created_at.asc(), Review.id.asc()),
    "highest_rating": (Review.rating.desc(), Review.id.desc()),
    "lowest_rating": (Review.rating.asc(), Review.id.desc()),
    "most_helpful": (Review.helpful.desc(), Review.id.desc()),
}


def _clean_images(images) -> list[str]:
    return [u.strip() for u in images or [] if isinstance(u, str) and u.strip()]


def has_purchased(db: Session, user_id: int, product_id: int) -> bool:
    stmt = (select(OrderItem.id).join(Order, Order.id == OrderItem.order_id)
            .where(Order.user_id == user_id, Order.status == OrderStatus.DELIVERED.value,
                   OrderItem.product_id == product_id)
            .limit(1))
    return db.execute(stmt).first() is not None


def refresh_product_rating(db: Session, product_id: int):
    avg, count = db.execute(
        select(func.avg(Review.rating), func.count(Review.id)).where(Review.product_id == product_id)
    ).one()
    db.execute(
        update(Product).where(Product.id == product_id)
        .values(rating=round(float(avg or 0), 2), review_count=int(count or 0))
        .execution_options(synchronize_session=False)
    )


def _owned(db: Session, user: User, review_id: int) -> Review:
    review = db.get(Review, review_id)
    if not review or review.user_id != user.id:
        raise NotFound("Review not found")
    return review


def create_review(db: Session, user: User, product_id: int, rating: int, comment: str,
                  title: Optional[str] = None, images=None) -> Review:
    product = db.get(Product, product_id)
    if not product:
        raise NotFound("Product not found")
    if not has_purchased(db, user.id, product_id):
        raise Forbidden("You can only review products from your delivered orders")
    exists = db.execute(
        select(Review.id).where(Review.user_id == user.id, Review.product_id == product_id)
    ).first()
    if exists:
        raise BusinessRuleViolation("You have already reviewed this product")
    review = Review(product_id=product_id, user_id=user.id, rating=rating, title=title, comment=comment,
                    images=_clean_images(images), is_verified=True, helpful=0, not_helpful=0)
    db.add(review)
    db.flush()
    refresh_product_rating(db, product_id)
    db.commit(); db.refresh(review)
    return review


def update_review(db: Session, user: User, review_id: int, data: dict) -> Review:
    review = _owned(db, user, review_id)
    for field in ("rating", "title", "comment"):
        if data.get(field) is not None:
            setattr(review, field, data[field])
    if "images" in data:
        review.images = _clean_images(data["images"])
    review.is_verified = True
    db.flush()
    refresh_product_rating(db, review.product_id)
    db.commit(); db.refresh(review)
    return review


def delete_review(db: Session, user: User, review_id: int):
    review = _owned(db, user, review_id)
    product_id = review.product_id
    db.delete(review)
    db.flush()
    refresh_product_rating(db, product_id)
    db.commit()


def product_reviews(db: Session, product_id: int, page: int = 1, limit: int = 10, sort: str = "newest",
                    rating: Optional[int] = None, verified: Optional[bool] = None) -> dict:
    if not db.get(Product, product_id):
        raise NotFound("Product not found")
    counts = dict(db.execute(
        select(Review.rating, func.count(Review.id)).where(Review.product_id == product_id).group_by(Review.rating)
    ).all())
    rating_counts = {r: int(counts.get(r, 0)) for r in range(1, 6)}
    total_reviews = sum(rating_counts.values())
    average = sum(r * c for r, c in rating_counts.items()) / total_reviews if total_reviews else 0

    stmt = select(Review).where(Review.product_id == product_id)
    if rating:
        stmt = stmt.where(Review.rating == rating)
    if verified is not None:
        stmt = stmt.where(Review.is_verified.is_(verified))
    rows, meta = paginate(db, stmt.order_by(*SORTS.get(sort, SORTS["newest"])), page, limit)
    return {"reviews": rows, "pagination": meta, "averageRating": round(average, 2), "ratingCounts": rating_counts}


def user_reviews(db: Session, user: User, page: int = 1, limit: int = 10):
    stmt = select(Review).where(Review.user_id == user.id).order_by(Review.created_at.desc(), Review.id.desc())
    return paginate(db, stmt, page, limit)


def all_reviews(db: Session, page: int = 1, limit: int = 10, verified: Optional[bool] = None):
    stmt = select(Review)
    if verified is not None:
        stmt = stmt.where(Review.is_verified.is_(verified))
    return paginate(db, stmt.order_by(Review.created_at.desc(), Review.id.desc()), page, limit)


def verify_review(db: Session, review_id: int, is_verified: bool) -> Review:
    review = db.get(Review, review_id)
    if not review:
        raise NotFound("Review not found")
    review.is_verified = is_verified
    db.commit(); db.refresh(review)
    return review


def mark_helpful(db: Session, user: User, review_id: int, helpful: bool) -> Review:
    """One vote per user per review; changing the vote moves it between the two counters."""
    review = db.get(Review, review_id)
    if not review:
        raise NotFound("Review not found")
    if review.user_id == user.id:
        raise BusinessRuleViolation("You cannot rate your own review")
    vote = db.execute(
        select(ReviewFeedback).where(ReviewFeedback.review_id == review_id, ReviewFeedback.user_id == user.id)
    ).scalars().first()
    if vote and vote.helpful == helpful:
        return review
    if vote:
        vote.helpful = helpful
        shift = 1 if helpful else -1
        review.helpful += shift
        review.not_helpful -= shift
    else:
        db.add(ReviewFeedback(review_id=review_id, user_id=user.id, helpful=helpful))
        if helpful:
            review.helpful += 1
        else:
            review.not_helpful += 1
    db.commit(); db.refresh(review)
    return review


def purchased_products(db: Session, user: User) -> list[dict]:
    """Products from delivered orders with the lowest price paid after order discounts."""
    rows = db.execute(
        select(OrderItem, Order.subtotal, Order.total_amount)
        .join(Order, Order.id == OrderItem.order_id)
        .where(Order.user_id == user.id, Order.status == OrderStatus.DELIVERED.value)
        .order_by(OrderItem.id)
    ).all()
    reviewed = set(db.execute(select(Review.product_id).where(Review.user_id == user.id)).scalars().all())
    products: dict[int, dict] = {}
    for item, subtotal, total in rows:
        paid = round_half_up(Decimal(item.price) * total / subtotal) if subtotal and total else item.price
        seen = products.get(item.product_id)
        if seen is None:
            products[item.product_id] = {
                "productId": item.product_id,
                "name": item.name,
                "image": item.image,
                "price": item.price,
                "paidPrice": paid,
                "hasReviewed": item.product_id in reviewed,
            }
        elif paid < seen["paidPrice"]:
            seen["paidPrice"] = paid
    return list(products.values())
