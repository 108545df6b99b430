import uuid
from datetime import date, datetime
from enum import Enum
from pydantic import BaseModel, EmailStr, Field, field_validator, model_validator
from typing import List, Literal, Optional

from schemas.cart import CartOut


class PaymentMethod(str, Enum):
    CARD = "card"
    PAYPAL = "paypal"
    BANK = "bank"


class ShippingMethod(str, Enum):
    STANDARD = "standard"
    EXPRESS = "express"
    OVERNIGHT = "overnight"


class AddressIn(BaseModel):
    first_name: str = Field(min_length=1, max_length=100)
    last_name: str = Field(min_length=1, max_length=100)
    address_line1: str = Field(min_length=1, max_length=255)
    address_line2: Optional[str] = Field(default=None, max_length=255)
    city: str = Field(min_length=1, max_length=100)
    state: Optional[str] = Field(default=None, max_length=100)
    postal_code: str = Field(min_length=1, max_length=20)
    country: str = Field(min_length=2, max_length=100)
    phone: Optional[str] = Field(default=None, max_length=50)

    @field_validator("first_name", "last_name", "address_line1", "city", "postal_code", "country")
    @classmethod
    def not_blank(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("must not be blank")
        return v.strip()


class AddressOut(BaseModel):
    first_name: str
    last_name: str
    address_line1: str
    address_line2: Optional[str] = None
    city: str
    state: Optional[str] = None
    postal_code: str
    country: str
    phone: Optional[str] = None


class OrderCreate(BaseModel):
    customer_email: EmailStr
    customer_phone: Optional[str] = Field(default=None, max_length=50)
    shipping_address: Optional[AddressIn] = None
    # A saved address of the customer, used when shipping_address is omitted
    shipping_address_id: Optional[int] = None
    billing_address: Optional[AddressIn] = None
    payment_method: PaymentMethod
    shipping_method: ShippingMethod = ShippingMethod.STANDARD
    notes: Optional[str] = Field(default=None, max_length=2000)

    @model_validator(mode="after")
    def shipping_address_given(self) -> "OrderCreate":
        if self.shipping_address is None and self.shipping_address_id is None:
            raise ValueError("shipping_address or shipping_address_id is required")
        return self


class OrderCancel(BaseModel):
    reason: Optional[str] = Field(default=None, max_length=500)


class OrderItemOut(BaseModel):
    id: uuid.UUID
    product_id: Optional[int] = None
    variant_id: Optional[int] = None
    product_name: str
    product_slug: str
    variant_name: Optional[str] = None
    sku: str
    image_url: Optional[str] = None
    quantity: int
    unit_price: float
    line_total: float

    class Config:
        from_attributes = True


class OrderEventOut(BaseModel):
    id: uuid.UUID
    order_id: uuid.UUID
    status: str
    description: Optional[str] = None
    notes: Optional[str] = None
    created_at: datetime

    class Config:
        from_attributes = True


class OrderOut(BaseModel):
    id: uuid.UUID
    order_number: str
    user_id: Optional[int] = None
    customer_email: EmailStr
    customer_phone: Optional[str] = None
    status: str
    subtotal: float
    shipping_cost: float
    tax_amount: float
    discount_amount: float
    total: float
    currency: str
    payment_method: Optional[str] = None
    shipping_method: Optional[str] = None
    shipping_address: Optional[AddressOut] = None
    billing_address: Optional[AddressOut] = None
    tracking_number: Optional[str] = None
    paid_at: Optional[datetime] = None
    shipped_at: Optional[datetime] = None
    delivered_at: Optional[datetime] = None
    cancelled_at: Optional[datetime] = None
    cancellation_reason: Optional[str] = None
    notes: Optional[str] = None
    can_cancel: bool
    items: List[OrderItemOut]
    events: List[OrderEventOut]
    created_at: datetime
    updated_at: datetime


class OrderItemPreview(BaseModel):
    id: uuid.UUID
    product_name: str
    image_url: Optional[str] = None
    quantity: int


class OrderBriefOut(BaseModel):
    id: uuid.UUID
    order_number: str
    customer_email: EmailStr
    status: str
    total: float
    currency: str
    item_count: int
    created_at: datetime
    items: List[OrderItemPreview]


class OrderPage(BaseModel):
    items: List[OrderBriefOut]
    page: int
    page_size: int
    total_count: int
    total_pages: int
    has_next_page: bool
    has_previous_page: bool


class OrderListParams(BaseModel):
    page: int = Field(default=1, ge=1)
    page_size: int = Field(default=10, ge=1, le=50)
    status: Optional[str] = None
    date_from: Optional[date] = None
    date_to: Optional[date] = None
    search: Optional[str] = None
    sort_by: Literal["date", "total", "status", "order_number"] = "date"
    sort_direction: Literal["asc", "desc"] = "desc"


class OrderStatusUpdate(BaseModel):
    status: str
    note: Optional[str] = Field(default=None, max_length=1000)
    notify_customer: bool = True


class ShippingInfoUpdate(BaseModel):
    tracking_number: Optional[str] = Field(default=None, max_length=100)
    shipping_method: Optional[ShippingMethod] = None
    mark_as_shipped: bool = False


class OrderNoteCreate(BaseModel):
    note: str = Field(min_length=1, max_length=1000)


class ShippingMethodOut(BaseModel):
    code: ShippingMethod
    label: str
    cost: float
    min_days: int
    max_days: int


class UnavailableLine(BaseModel):
    item_id: int
    product_id: Optional[int] = None
    message: str


class CheckoutSummary(BaseModel):
    shipping_method: ShippingMethod
    item_count: int
    subtotal: float
    shipping_cost: float
    tax_amount: float
    discount_amount: float
    total: float
    currency: str
    # Lines left out of the totals above; placing the order would reject them
    unavailable_items: List[UnavailableLine] = []


class ReorderResult(BaseModel):
    cart: CartOut
    items_added: int
    items_skipped: int
    skipped_reasons: List[str]
