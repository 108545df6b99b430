from typing import Optional

from fastapi import APIRouter, Depends, File, Form, HTTPException, UploadFile, status
from sqlalchemy.orm import Session

from core.db import get_db
from models.user import User
from routes.auth import require_admin
from schemas.product import (
    ProductCreate,
    ProductImageOut,
    ProductOut,
    ProductUpdate,
    VariantCreate,
    VariantOut,
    VariantUpdate,
)
from services import catalog

router = APIRouter(prefix="/api/admin/products", tags=["admin-products"])

MAX_IMAGE_BYTES = 5 * 1024 * 1024


@router.post("", response_model=ProductOut, status_code=201)
def create_product(data: ProductCreate, admin: User = Depends(require_admin), db: Session = Depends(get_db)):
    return catalog.create_product(db, data)


@router.patch("/{product_id}", response_model=ProductOut)
def update_product(
    product_id: int, data: ProductUpdate, admin: User = Depends(require_admin), db: Session = Depends(get_db)
):
    return catalog.update_product(db, product_id, data)


@router.post("/{product_id}/variants", response_model=VariantOut, status_code=201)
def add_variant(
    product_id: int, data: VariantCreate, admin: User = Depends(require_admin), db: Session = Depends(get_db)
):
    return catalog.add_variant(db, product_id, data)


@router.patch("/{product_id}/variants/{variant_id}", response_model=VariantOut)
def update_variant(
    product_id: int,
    variant_id: int,
    data: VariantUpdate,
    admin: User = Depends(require_admin),
    db: Session = Depends(get_db),
):
    return catalog.update_variant(db, product_id, variant_id, data)


@router.post("/{product_id}/images", response_model=ProductImageOut, status_code=201)
async def upload_image(
    product_id: int,
    file: UploadFile = File(...),
    alt_text: Optional[str] = Form(None),
    admin: User = Depends(require_admin),
    db: Session = Depends(get_db),
):
    """Upload a product image; the first image of a product becomes its primary image."""
    if not file.content_type or not file.content_type.startswith("image/"):
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="File must be an image")

    contents = await file.read()
    if len(contents) > MAX_IMAGE_BYTES:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="File size must be less than 5MB")
    return catalog.add_image(db, product_id, contents, alt_text)


@router.delete("/{product_id}/images/{image_id}", status_code=204)
def delete_image(product_id: int, image_id: int, admin: User = Depends(require_admin), db: Session = Depends(get_db)):
    catalog.delete_image(db, product_id, image_id)
    return None
