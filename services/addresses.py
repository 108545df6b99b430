"""Saved address book of a customer.

Each user has at most one default address. The first saved address becomes
the default, and deleting the default promotes the oldest remaining one.
"""
import logging
from typing import List

from sqlalchemy.orm import Session

from core.db import atomic
from core.exceptions import NotFoundError
from models.address import Address
from models.user import User
from schemas.address import SavedAddressIn

logger = logging.getLogger(__name__)

ADDRESS_NOT_FOUND = "Address not found"


def _user_addresses(db: Session, user: User):
    return db.query(Address).filter(Address.user_id == user.id)


def list_addresses(db: Session, user: User) -> List[Address]:
    return _user_addresses(db, user).order_by(Address.is_default.desc(), Address.created_at, Address.id).all()


def get_address(db: Session, user: User, address_id: int) -> Address:
    # Someone else's address is reported exactly like a missing one
    address = _user_addresses(db, user).filter(Address.id == address_id).one_or_none()
    if address is None:
        raise NotFoundError(ADDRESS_NOT_FOUND)
    return address


def _clear_default(db: Session, user: User) -> None:
    for address in _user_addresses(db, user).filter(Address.is_default.is_(True)):
        address.is_default = False


def create_address(db: Session, user: User, data: SavedAddressIn) -> Address:
    with atomic(db):
        first = _user_addresses(db, user).count() == 0
        if data.is_default:
            _clear_default(db, user)
        address = Address(
            user_id=user.id,
            **data.model_dump(exclude={"address_type", "is_default"}),
            address_type=data.address_type.value,
            is_default=data.is_default or first,
        )
        db.add(address)
    logger.info("User %s saved address %s", user.id, address.id)
    return address


def update_address(db: Session, user: User, address_id: int, data: SavedAddressIn) -> Address:
    with atomic(db):
        address = get_address(db, user, address_id)
        for field, value in data.model_dump(exclude={"address_type", "is_default"}).items():
            setattr(address, field, value)
        address.address_type = data.address_type.value
        if data.is_default and not address.is_default:
            _clear_default(db, user)
            address.is_default = True
    return address


def set_default(db: Session, user: User, address_id: int) -> Address:
    with atomic(db):
        address = get_address(db, user, address_id)
        if not address.is_default:
            _clear_default(db, user)
            address.is_default = True
    return address


def delete_address(db: Session, user: User, address_id: int) -> None:
    with atomic(db):
        address = get_address(db, user, address_id)
        was_default = address.is_default
        db.delete(address)
        db.flush()
        if was_default:
            successor = _user_addresses(db, user).order_by(Address.created_at, Address.id).first()
            if successor is not None:
                successor.is_default = True
    logger.info("User %s deleted address %s", user.id, address_id)
