"""Saved shipping addresses.

A user has at most one default address. Every write that can change the
default clears the others in the same transaction before committing; the
first address a user saves becomes the default.
"""
from typing import Optional

from sqlalchemy import func, select, update
from sqlalchemy.orm import Session

from storefront.core.errors import NotFound
from storefront.db.models import Address, User


def list_addresses(db: Session, user: User) -> list[Address]:
    stmt = (select(Address).where(Address.user_id == user.id)
            .order_by(Address.is_default.desc(), Address.created_at.desc(), Address.id.desc()))
    return db.execute(stmt).scalars().all()


def get_owned(db: Session, user: User, address_id: int) -> Address:
    address = db.get(Address, address_id)
    if not address or address.user_id != user.id:
        raise NotFound("Address not found")
    return address


def default_address(db: Session, user: User) -> Optional[Address]:
    return db.execute(
        select(Address).where(Address.user_id == user.id, Address.is_default.is_(True))
    ).scalars().first()


def _clear_default(db: Session, user_id: int, keep_id: Optional[int] = None):
    stmt = update(Address).where(Address.user_id == user_id, Address.is_default.is_(True))
    if keep_id is not None:
        stmt = stmt.where(Address.id != keep_id)
    db.execute(stmt.values(is_default=False).execution_options(synchronize_session=False))


def add_address(db: Session, user: User, data: dict) -> Address:
    count = db.execute(select(func.count(Address.id)).where(Address.user_id == user.id)).scalar_one()
    if count == 0:
        data["is_default"] = True
    if data.get("is_default"):
        _clear_default(db, user.id)
    address = Address(user_id=user.id, **data)
    db.add(address)
    db.commit(); db.refresh(address)
    return address


def update_address(db: Session, user: User, address_id: int, data: dict) -> Address:
    address = get_owned(db, user, address_id)
    if data.get("is_default") and not address.is_default:
        _clear_default(db, user.id, keep_id=address.id)
    for k, v in data.items():
        if v is not None:
            setattr(address, k, v)
    db.commit(); db.refresh(address)
    return address


def set_default(db: Session, user: User, address_id: int) -> Address:
    address = get_owned(db, user, address_id)
    _clear_default(db, user.id, keep_id=address.id)
    address.is_default = True
    db.commit(); db.refresh(address)
    return address


def delete_address(db: Session, user: User, address_id: int):
    """Delete, promoting the most recent remaining address when the default goes."""
    address = get_owned(db, user, address_id)
    was_default = address.is_default
    db.delete(address)
    db.flush()
    if was_default:
        successor = db.execute(
            select(Address).where(Address.user_id == user.id)
            .order_by(Address.created_at.desc(), Address.id.desc())
        ).scalars().first()
        if successor:
            successor.is_default = True
    db.commit()
