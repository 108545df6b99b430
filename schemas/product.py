from decimal import Decimal
from pydantic import BaseModel, Field
from typing import List, Optional


class CategoryOut(BaseModel):
    id: int
    name: str
    slug: str
    description: Optional[str] = None
    parent_id: Optional[int] = None
    children: List["CategoryOut"] = []


class VariantCreate(BaseModel):
    sku: str = Field(min_length=1, max_length=64)
    name: str = Field(min_length=1, max_length=150)
    price_adjustment: Decimal = Field(default=Decimal("0.00"), decimal_places=2)
    stock_quantity: int = Field(default=0, ge=0)
    sort_order: int = 0


class VariantUpdate(BaseModel):
    name: Optional[str] = None
    price_adjustment: Optional[Decimal] = Field(default=None, decimal_places=2)
    stock_quantity: Optional[int] = Field(default=None, ge=0)
    is_active: Optional[bool] = None


class VariantOut(BaseModel):
    id: int
    sku: str
    name: str
    price_adjustment: float
    stock_quantity: int
    is_active: bool

    class Config:
        from_attributes = True


class ProductImageOut(BaseModel):
    id: int
    url: str
    alt_text: Optional[str] = None
    is_primary: bool

    class Config:
        from_attributes = True


class ProductCreate(BaseModel):
    sku: str = Field(min_length=1, max_length=64)
    name: str = Field(min_length=1, max_length=200)
    slug: str = Field(min_length=1, max_length=220)
    base_price: Decimal = Field(ge=0, decimal_places=2)
    compare_at_price: Optional[Decimal] = Field(default=None, ge=0, decimal_places=2)
    brand: Optional[str] = None
    category_id: Optional[int] = None
    short_description: Optional[str] = None
    description: Optional[str] = None
    requires_installation: bool = False
    warranty_months: int = Field(default=12, ge=0)
    variants: List[VariantCreate] = []


class ProductUpdate(BaseModel):
    name: Optional[str] = None
    base_price: Optional[Decimal] = Field(default=None, ge=0, decimal_places=2)
    compare_at_price: Optional[Decimal] = Field(default=None, ge=0, decimal_places=2)
    brand: Optional[str] = None
    category_id: Optional[int] = None
    short_description: Optional[str] = None
    description: Optional[str] = None
    is_active: Optional[bool] = None


class ProductBriefOut(BaseModel):
    id: int
    sku: str
    name: str
    slug: str
    brand: Optional[str] = None
    base_price: float
    compare_at_price: Optional[float] = None
    image_url: Optional[str] = None
    in_stock: bool


class ProductOut(BaseModel):
    id: int
    sku: str
    name: str
    slug: str
    brand: Optional[str] = None
    category_id: Optional[int] = None
    short_description: Optional[str] = None
    description: Optional[str] = None
    base_price: float
    compare_at_price: Optional[float] = None
    requires_installation: bool
    warranty_months: int
    is_active: bool
    variants: List[VariantOut] = []
    images: List[ProductImageOut] = []

    class Config:
        from_attributes = True


class ProductPage(BaseModel):
    items: List[ProductBriefOut]
    page: int
    page_size: int
    total_count: int
    total_pages: int
    has_next_page: bool
    has_previous_page: bool
