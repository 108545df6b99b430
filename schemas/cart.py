from datetime import datetime
from pydantic import BaseModel, Field
from typing import List, Optional


class CartItemAdd(BaseModel):
    product_id: int
    variant_id: Optional[int] = None
    quantity: int = Field(default=1, ge=1)


class CartItemUpdate(BaseModel):
    # Zero or less removes the line
    quantity: int


class CartItemOut(BaseModel):
    id: int
    product_id: int
    variant_id: Optional[int] = None
    product_name: str
    product_slug: Optional[str] = None
    variant_name: Optional[str] = None
    sku: Optional[str] = None
    image_url: Optional[str] = None
    unit_price: float
    compare_at_price: Optional[float] = None
    effective_price: float
    quantity: int
    max_quantity: int
    line_total: float
    available_stock: int
    is_available: bool


class CartOut(BaseModel):
    id: Optional[int] = None
    user_id: Optional[int] = None
    session_id: Optional[str] = None
    items: List[CartItemOut] = []
    item_count: int = 0
    subtotal: float = 0
    shipping: float = 0
    tax: float = 0
    total: float = 0
    currency: str
    updated_at: Optional[datetime] = None
