from typing import List, Literal, Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from core.db import get_db
from schemas.product import CategoryOut, ProductOut, ProductPage
from services import catalog

router = APIRouter(prefix="/api", tags=["catalog"])


@router.get("/categories", response_model=List[CategoryOut])
def list_categories(db: Session = Depends(get_db)):
    return catalog.category_tree(db)


@router.get("/products", response_model=ProductPage)
def list_products(
    page: int = Query(1, ge=1),
    page_size: int = Query(20, ge=1, le=100),
    category: Optional[str] = None,
    brand: Optional[str] = None,
    min_price: Optional[float] = Query(None, ge=0),
    max_price: Optional[float] = Query(None, ge=0),
    search: Optional[str] = None,
    sort: Literal["name", "price_asc", "price_desc", "newest"] = "newest",
    db: Session = Depends(get_db),
):
    return catalog.list_products(
        db,
        page=page,
        page_size=page_size,
        category=category,
        brand=brand,
        min_price=min_price,
        max_price=max_price,
        search=search,
        sort=sort,
    )


@router.get("/products/{slug}", response_model=ProductOut)
def get_product(slug: str, db: Session = Depends(get_db)):
    return catalog.get_product_by_slug(db, slug)
