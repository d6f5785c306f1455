from fastapi import APIRouter, Depends, Response
from sqlalchemy.orm import Session

from storefront.api.deps import get_current_user, get_db, ok
from storefront.db.models import User
from storefront.schemas import ProductRead, WishlistAdd
from storefront.services import wishlist

router = APIRouter()  # mounted at /api/wishlist


@router.get("")
def get_wishlist(user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    return ok([ProductRead.model_validate(p) for p in wishlist.list_products(db, user)])


@router.post("", status_code=201)
def add_to_wishlist(payload: WishlistAdd, response: Response, user: User = Depends(get_current_user),
                    db: Session = Depends(get_db)):
    if not wishlist.add(db, user, payload.product_id):
        response.status_code = 200
        return ok(message="Product is already in the wishlist")
    return ok(message="Product added to the wishlist")


@router.get("/check/{product_id}")
def check(product_id: int, user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    return ok({"inWishlist": wishlist.contains(db, user, product_id)})


@router.delete("/{product_id}")
def remove(product_id: int, user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    wishlist.remove(db, user, product_id)
    return ok(message="Product removed from the wishlist")


@router.delete("")
def clear(user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    wishlist.clear(db, user)
    return ok(message="Wishlist cleared")
