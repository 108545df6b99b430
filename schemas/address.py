from datetime import datetime
from pydantic import BaseModel
from typing import Optional

from models.address import AddressType
from schemas.order import AddressIn


class SavedAddressIn(AddressIn):
    address_type: AddressType = AddressType.SHIPPING
    is_default: bool = False


class SavedAddressOut(BaseModel):
    id: int
    first_name: str
    last_name: str
    address_line1: str
    address_line2: Optional[str] = None
    city: str
    state: Optional[str] = None
    postal_code: str
    country: str
    phone: Optional[str] = None
    address_type: AddressType
    is_default: bool
    created_at: datetime
    updated_at: datetime

    class Config:
        from_attributes = True
