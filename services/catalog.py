import logging
import math
from typing import Any, Dict, Iterable, List, Optional

from sqlalchemy import or_
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, selectinload

from core.cache import cache
from core.db import LIKE_ESCAPE, atomic, like_contains
from core.exceptions import ConflictError, NotFoundError, ValidationFailed
from models.category import Category
from models.product import Product, ProductImage, ProductVariant
from schemas.product import (
    CategoryOut,
    ProductBriefOut,
    ProductCreate,
    ProductOut,
    ProductPage,
    ProductUpdate,
    VariantCreate,
    VariantUpdate,
)
from services.cloudinary import cloudinary_service

logger = logging.getLogger(__name__)

CATEGORY_TREE_KEY = "catalog:categories"
PRODUCT_KEY = "catalog:product:{slug}"

SORT_OPTIONS = {
    "name": Product.name.asc(),
    "price_asc": Product.base_price.asc(),
    "price_desc": Product.base_price.desc(),
    "newest": Product.created_at.desc(),
}


def _category_node(category: Category) -> Dict[str, Any]:
    return CategoryOut(
        id=category.id,
        name=category.name,
        slug=category.slug,
        description=category.description,
        parent_id=category.parent_id,
        children=[_category_node(c) for c in category.children if c.is_active],
    ).model_dump(mode="json")


def category_tree(db: Session) -> List[Dict[str, Any]]:
    def load():
        roots = (
            db.query(Category)
            .filter(Category.parent_id.is_(None), Category.is_active.is_(True))
            .order_by(Category.sort_order, Category.name)
            .all()
        )
        return [_category_node(c) for c in roots]

    return cache.get_or_set(CATEGORY_TREE_KEY, load)


def _category_ids(db: Session, slug: str) -> List[int]:
    category = db.query(Category).filter(Category.slug == slug, Category.is_active.is_(True)).one_or_none()
    if not category:
        raise NotFoundError("Category not found")
    ids, pending = [], [category]
    while pending:
        current = pending.pop()
        ids.append(current.id)
        pending.extend(c for c in current.children if c.is_active)
    return ids


def _brief(product: Product) -> ProductBriefOut:
    image = product.primary_image
    return ProductBriefOut(
        id=product.id,
        sku=product.sku,
        name=product.name,
        slug=product.slug,
        brand=product.brand,
        base_price=float(product.base_price),
        compare_at_price=float(product.compare_at_price) if product.compare_at_price is not None else None,
        image_url=image.url if image else None,
        in_stock=any(v.is_active and v.stock_quantity > 0 for v in product.variants),
    )


def list_products(
    db: Session,
    page: int = 1,
    page_size: int = 20,
    category: Optional[str] = None,
    brand: Optional[str] = None,
    min_price: Optional[float] = None,
    max_price: Optional[float] = None,
    search: Optional[str] = None,
    sort: str = "newest",
) -> ProductPage:
    query = db.query(Product).filter(Product.is_active.is_(True))
    if category:
        query = query.filter(Product.category_id.in_(_category_ids(db, category)))
    if brand:
        query = query.filter(Product.brand.ilike(brand))
    if min_price is not None:
        query = query.filter(Product.base_price >= min_price)
    if max_price is not None:
        query = query.filter(Product.base_price <= max_price)
    if search:
        term = like_contains(search.strip())
        query = query.filter(or_(Product.name.ilike(term, escape=LIKE_ESCAPE), Product.sku.ilike(term, escape=LIKE_ESCAPE)))

    total_count = query.count()
    products = (
        query.options(selectinload(Product.variants), selectinload(Product.images))
        .order_by(SORT_OPTIONS.get(sort, SORT_OPTIONS["newest"]), Product.id)
        .offset((page - 1) * page_size)
        .limit(page_size)
        .all()
    )
    total_pages = math.ceil(total_count / page_size) if total_count else 0
    return ProductPage(
        items=[_brief(p) for p in products],
        page=page,
        page_size=page_size,
        total_count=total_count,
        total_pages=total_pages,
        has_next_page=page < total_pages,
        has_previous_page=page > 1,
    )


def get_product_by_slug(db: Session, slug: str) -> Dict[str, Any]:
    def load():
        product = (
            db.query(Product)
            .options(selectinload(Product.variants), selectinload(Product.images))
            .filter(Product.slug == slug, Product.is_active.is_(True))
            .one_or_none()
        )
        if product is None:
            return None
        return ProductOut.model_validate(product).model_dump(mode="json")

    data = cache.get_or_set(PRODUCT_KEY.format(slug=slug), load)
    if data is None:
        raise NotFoundError("Product not found")
    return data


def get_product(db: Session, product_id: int) -> Product:
    product = db.query(Product).filter(Product.id == product_id).one_or_none()
    if not product:
        raise NotFoundError("Product not found")
    return product


def lock_variants(db: Session, variant_ids: Iterable[int]) -> Dict[int, ProductVariant]:
    """Re-read the given variants under a row lock, replacing stale stock in the session."""
    ids = sorted({i for i in variant_ids if i is not None})
    if not ids:
        return {}
    variants = (
        db.query(ProductVariant)
        .filter(ProductVariant.id.in_(ids))
        .order_by(ProductVariant.id)
        .with_for_update()
        .populate_existing()
        .all()
    )
    return {v.id: v for v in variants}


def invalidate_product(product: Product, *old_slugs: str) -> None:
    keys = [PRODUCT_KEY.format(slug=s) for s in {product.slug, *old_slugs} if s]
    cache.delete(*keys)


def _check_category(db: Session, category_id: Optional[int]) -> None:
    if category_id is not None and db.get(Category, category_id) is None:
        raise ValidationFailed(
            "Category not found",
            [{"field": "category_id", "message": f"No category with id {category_id}"}],
        )


def create_product(db: Session, data: ProductCreate) -> Product:
    if db.query(Product).filter(or_(Product.slug == data.slug, Product.sku == data.sku)).first():
        raise ConflictError("A product with this slug or SKU already exists")
    _check_category(db, data.category_id)

    product = Product(**data.model_dump(exclude={"variants"}), is_active=True)
    for v in data.variants:
        product.variants.append(ProductVariant(**v.model_dump()))

    try:
        with atomic(db):
            db.add(product)
    except IntegrityError as e:
        raise ConflictError("A product or variant with this SKU already exists") from e
    logger.info("Created product %s (%s)", product.sku, product.slug)
    return product


def update_product(db: Session, product_id: int, data: ProductUpdate) -> Product:
    product = get_product(db, product_id)
    changes = data.model_dump(exclude_unset=True)
    if "category_id" in changes:
        _check_category(db, changes["category_id"])

    with atomic(db):
        for field, value in changes.items():
            setattr(product, field, value)
    invalidate_product(product)
    return product


def add_variant(db: Session, product_id: int, data: VariantCreate) -> ProductVariant:
    product = get_product(db, product_id)
    variant = ProductVariant(**data.model_dump())
    try:
        with atomic(db):
            product.variants.append(variant)
    except IntegrityError as e:
        raise ConflictError("A variant with this SKU already exists") from e
    invalidate_product(product)
    return variant


def update_variant(db: Session, product_id: int, variant_id: int, data: VariantUpdate) -> ProductVariant:
    product = get_product(db, product_id)
    variant = product.get_variant(variant_id)
    if variant is None:
        raise NotFoundError("Variant not found")
    with atomic(db):
        for field, value in data.model_dump(exclude_unset=True).items():
            setattr(variant, field, value)
    invalidate_product(product)
    return variant


def add_image(db: Session, product_id: int, file_data: bytes, alt_text: Optional[str] = None) -> ProductImage:
    product = get_product(db, product_id)
    if not file_data:
        raise ValidationFailed("Image file is empty", [{"field": "file", "message": "File is empty"}])

    position = len(product.images)
    stored = cloudinary_service.upload_product_image(file_data, product.id, position)
    image = ProductImage(
        url=stored["url"],
        public_id=stored["public_id"],
        alt_text=alt_text or product.name,
        is_primary=not product.images,
        sort_order=position,
    )
    with atomic(db):
        product.images.append(image)
    invalidate_product(product)
    return image


def delete_image(db: Session, product_id: int, image_id: int) -> None:
    product = get_product(db, product_id)
    image = next((i for i in product.images if i.id == image_id), None)
    if image is None:
        raise NotFoundError("Image not found")

    if image.public_id:
        cloudinary_service.delete_image(image.public_id)
    with atomic(db):
        was_primary = image.is_primary
        product.images.remove(image)
        if was_primary and product.images:
            product.images[0].is_primary = True
    invalidate_product(product)
