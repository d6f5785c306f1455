from typing import Optional

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from storefront.api.deps import get_current_user, get_db, ok
from storefront.core.auth import require_roles
from storefront.db.models import User
from storefront.schemas import ReviewCreate, ReviewHelpful, ReviewRead, ReviewUpdate, ReviewVerify
from storefront.services import reviews

router = APIRouter()  # mounted at /api/reviews
admin_router = APIRouter(dependencies=[Depends(require_roles("admin", "manager"))])  # mounted at /api/admin/reviews


def _page(rows, meta) -> dict:
    return ok({"reviews": [ReviewRead.model_validate(r) for r in rows], "pagination": meta})


@router.get("/product/{product_id}")
def product_reviews(product_id: int, page: int = 1, limit: int = 10, sort: str = "newest",
                    rating: Optional[int] = None, verified: Optional[bool] = None, db: Session = Depends(get_db)):
    data = reviews.product_reviews(db, product_id, page, limit, sort, rating, verified)
    data["reviews"] = [ReviewRead.model_validate(r) for r in data["reviews"]]
    return ok(data)


@router.get("/user")
def my_reviews(page: int = 1, limit: int = 10, user: User = Depends(get_current_user),
               db: Session = Depends(get_db)):
    return _page(*reviews.user_reviews(db, user, page, limit))


@router.get("/purchased-products")
def purchased_products(user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    return ok(reviews.purchased_products(db, user))


@router.post("", status_code=201)
def create_review(payload: ReviewCreate, user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    review = reviews.create_review(db, user, payload.product_id, payload.rating, payload.comment,
                                   title=payload.title, images=payload.images)
    return ok(ReviewRead.model_validate(review))


@router.put("/{review_id}")
def update_review(review_id: int, payload: ReviewUpdate, user: User = Depends(get_current_user),
                  db: Session = Depends(get_db)):
    review = reviews.update_review(db, user, review_id, payload.model_dump(exclude_unset=True))
    return ok(ReviewRead.model_validate(review))


@router.delete("/{review_id}")
def delete_review(review_id: int, user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    reviews.delete_review(db, user, review_id)
    return ok(message="Review deleted")


@router.put("/{review_id}/helpful")
def mark_helpful(review_id: int, payload: ReviewHelpful, user: User = Depends(get_current_user),
                 db: Session = Depends(get_db)):
    review = reviews.mark_helpful(db, user, review_id, payload.helpful)
    return ok({"id": review.id, "helpful": review.helpful, "notHelpful": review.not_helpful})


@admin_router.get("")
def all_reviews(page: int = 1, limit: int = 10, verified: Optional[bool] = None, db: Session = Depends(get_db)):
    return _page(*reviews.all_reviews(db, page, limit, verified))


@admin_router.patch("/{review_id}/verify")
def verify_review(review_id: int, payload: ReviewVerify, db: Session = Depends(get_db)):
    review = reviews.verify_review(db, review_id, payload.is_verified)
    return ok({"id": review.id, "isVerified": review.is_verified},
              message="Review approved" if review.is_verified else "Review rejected")
