from typing import List

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from core.db import get_db
from models.user import User
from routes.auth import get_current_user
from schemas.address import SavedAddressIn, SavedAddressOut
from services import addresses as address_service

router = APIRouter(prefix="/api/addresses", tags=["addresses"])


@router.get("", response_model=List[SavedAddressOut])
def list_addresses(current_user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    return address_service.list_addresses(db, current_user)


@router.get("/{address_id}", response_model=SavedAddressOut)
def get_address(address_id: int, current_user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    return address_service.get_address(db, current_user, address_id)


@router.post("", response_model=SavedAddressOut, status_code=201)
def create_address(
    data: SavedAddressIn, current_user: User = Depends(get_current_user), db: Session = Depends(get_db)
):
    return address_service.create_address(db, current_user, data)


@router.put("/{address_id}", response_model=SavedAddressOut)
def update_address(
    address_id: int,
    data: SavedAddressIn,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    return address_service.update_address(db, current_user, address_id, data)


@router.put("/{address_id}/default", response_model=SavedAddressOut)
def set_default_address(
    address_id: int, current_user: User = Depends(get_current_user), db: Session = Depends(get_db)
):
    return address_service.set_default(db, current_user, address_id)


@router.delete("/{address_id}", status_code=204)
def delete_address(address_id: int, current_user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    address_service.delete_address(db, current_user, address_id)
    return None
