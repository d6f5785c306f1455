from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from storefront.api.deps import get_current_user, get_db, ok
from storefront.db.models import User
from storefront.schemas import AddressCreate, AddressRead, AddressUpdate
from storefront.services import addresses

router = APIRouter()  # mounted at /api/users/me/addresses


@router.get("")
def list_addresses(user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    return ok([AddressRead.model_validate(a) for a in addresses.list_addresses(db, user)])


@router.post("", status_code=201)
def add_address(payload: AddressCreate, user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    return ok(AddressRead.model_validate(addresses.add_address(db, user, payload.model_dump())))


@router.patch("/{address_id}")
def update_address(address_id: int, payload: AddressUpdate, user: User = Depends(get_current_user),
                   db: Session = Depends(get_db)):
    address = addresses.update_address(db, user, address_id, payload.model_dump(exclude_unset=True))
    return ok(AddressRead.model_validate(address))


@router.post("/{address_id}/default")
def set_default(address_id: int, user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    return ok(AddressRead.model_validate(addresses.set_default(db, user, address_id)))


@router.delete("/{address_id}")
def delete_address(address_id: int, user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    addresses.delete_address(db, user, address_id)
    return ok(message="Address deleted")
