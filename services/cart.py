"""Shopping cart operations.

Authenticated users own at most one cart (``carts.user_id``); guests are
identified by the ``X-Session-Id`` header (``carts.session_id``). Line
quantities are always clamped to ``min(variant stock, CART_MAX_LINE_QUANTITY)``.
"""
import logging
from decimal import Decimal
from typing import Optional, Tuple

from sqlalchemy.orm import Session, selectinload

from core.config import settings
from core.db import atomic
from core.exceptions import NotFoundError, ValidationFailed
from models.cart import Cart, CartItem
from models.order import money
from models.product import Product, ProductVariant
from models.user import User
from schemas.cart import CartItemAdd, CartItemOut, CartOut

logger = logging.getLogger(__name__)


def max_quantity(variant: Optional[ProductVariant]) -> int:
    if variant is None or not variant.is_active:
        return 0
    return max(0, min(variant.stock_quantity or 0, settings.CART_MAX_LINE_QUANTITY))


def price_totals(subtotal: Decimal, shipping_cost: Decimal = Decimal("0.00"),
                 discount: Decimal = Decimal("0.00")) -> dict:
    """VAT is charged on the goods subtotal only, rounded to cents."""
    subtotal = money(subtotal)
    tax = money(subtotal * settings.VAT_RATE)
    return {
        "subtotal": subtotal,
        "shipping_cost": money(shipping_cost),
        "tax_amount": tax,
        "discount_amount": money(discount),
        "total": money(subtotal + money(shipping_cost) + tax - money(discount)),
    }


def _cart_query(db: Session):
    return db.query(Cart).options(
        selectinload(Cart.items).selectinload(CartItem.product).selectinload(Product.images),
        selectinload(Cart.items).selectinload(CartItem.variant),
    )


def find_cart(db: Session, user: Optional[User], session_id: Optional[str]) -> Optional[Cart]:
    if user is not None:
        return _cart_query(db).filter(Cart.user_id == user.id).one_or_none()
    if session_id:
        return _cart_query(db).filter(Cart.session_id == session_id).one_or_none()
    return None


def _reset_if_expired(cart: Cart) -> None:
    if cart.is_guest and cart.is_expired:
        logger.info("Guest cart %s expired, discarding %d lines", cart.id, len(cart.items))
        cart.items.clear()
        cart.expires_at = Cart.expiry(settings.CART_TTL_DAYS)
        cart.touch()


def get_or_create_cart(db: Session, user: Optional[User], session_id: Optional[str]) -> Cart:
    if user is None and not session_id:
        raise ValidationFailed(
            "A cart session is required",
            [{"field": "X-Session-Id", "message": "Header is required for guest carts"}],
        )

    cart = find_cart(db, user, session_id)
    if cart is None:
        cart = Cart(
            user_id=user.id if user is not None else None,
            session_id=None if user is not None else session_id,
            expires_at=Cart.expiry(settings.CART_TTL_DAYS),
        )
        db.add(cart)
        db.flush()
    else:
        _reset_if_expired(cart)
    return cart


def _get_item(cart: Cart, item_id: int) -> CartItem:
    item = next((i for i in cart.items if i.id == item_id), None)
    if item is None:
        raise NotFoundError("Cart item not found")
    return item


def resolve_variant(product: Product, variant_id: Optional[int]) -> Optional[ProductVariant]:
    """Requested variant if active, else the first active variant when none was asked for."""
    if variant_id is None:
        return product.default_variant
    variant = product.get_variant(variant_id)
    if variant is None or not variant.is_active:
        return None
    return variant


def add_line(cart: Cart, product: Product, variant: ProductVariant, quantity: int) -> int:
    """
    Merge ``quantity`` into the cart line for product+variant.

    Returns the number of units actually added after clamping.
    """
    limit = max_quantity(variant)
    existing = cart.find_item(product.id, variant.id)
    current = existing.quantity if existing else 0
    new_quantity = min(current + quantity, limit)
    added = max(0, new_quantity - current)
    if added == 0:
        return 0

    price = product.current_price(variant)
    if existing:
        existing.quantity = new_quantity
        existing.unit_price = price
    else:
        cart.items.append(
            CartItem(product=product, variant=variant, quantity=new_quantity, unit_price=price)
        )
    cart.touch()
    return added


def add_item(db: Session, user: Optional[User], session_id: Optional[str], data: CartItemAdd) -> Cart:
    product = db.query(Product).filter(Product.id == data.product_id, Product.is_active.is_(True)).one_or_none()
    if not product:
        raise NotFoundError("Product not found or not available")

    variant = resolve_variant(product, data.variant_id)
    if variant is None:
        if data.variant_id is not None:
            raise NotFoundError("Product variant not found or not available")
        raise ValidationFailed(
            "No available variants for this product",
            [{"field": "variant_id", "message": "Product has no active variants"}],
        )
    if max_quantity(variant) == 0:
        raise ValidationFailed(
            f"{product.name} is out of stock",
            [{"field": "quantity", "message": "Out of stock"}],
        )

    with atomic(db):
        cart = get_or_create_cart(db, user, session_id)
        added = add_line(cart, product, variant, data.quantity)
        if added < data.quantity:
            logger.info(
                "Cart %s: clamped %s x%d to %d (stock %d)",
                cart.id, variant.sku, data.quantity, added, variant.stock_quantity,
            )
    return cart


def update_item(db: Session, user: Optional[User], session_id: Optional[str], item_id: int, quantity: int) -> Cart:
    cart = find_cart(db, user, session_id)
    if cart is None:
        raise NotFoundError("Cart item not found")

    with atomic(db):
        _reset_if_expired(cart)
        item = _get_item(cart, item_id)
        if quantity < 1:
            cart.items.remove(item)
        else:
            limit = max_quantity(item.variant)
            if limit == 0:
                raise ValidationFailed(
                    "This item is no longer available",
                    [{"field": "quantity", "message": "Out of stock"}],
                )
            item.quantity = min(quantity, limit)
        cart.touch()
    return cart


def remove_item(db: Session, user: Optional[User], session_id: Optional[str], item_id: int) -> Cart:
    cart = find_cart(db, user, session_id)
    if cart is None:
        raise NotFoundError("Cart item not found")

    with atomic(db):
        item = _get_item(cart, item_id)
        cart.items.remove(item)
        cart.touch()
    return cart


def clear_cart(db: Session, user: Optional[User], session_id: Optional[str]) -> Optional[Cart]:
    cart = find_cart(db, user, session_id)
    if cart is None:
        return None
    with atomic(db):
        cart.items.clear()
        cart.touch()
    return cart


def merge_guest_cart(db: Session, user: User, session_id: Optional[str]) -> Cart:
    """Fold the guest cart into the user's cart, then delete the guest cart."""
    if not session_id:
        raise ValidationFailed(
            "A guest session is required to merge carts",
            [{"field": "X-Session-Id", "message": "Header is required"}],
        )

    with atomic(db):
        user_cart = get_or_create_cart(db, user, None)
        guest_cart = _cart_query(db).filter(Cart.session_id == session_id).one_or_none()
        if guest_cart is None:
            return user_cart

        if not guest_cart.is_expired:
            for line in guest_cart.items:
                product = line.product
                variant = line.variant
                if product is None or not product.is_active or variant is None:
                    continue
                add_line(user_cart, product, variant, line.quantity)
        db.delete(guest_cart)
        user_cart.touch()
        logger.info("Merged guest cart %s into cart %s for user %s", guest_cart.id, user_cart.id, user.id)
    return user_cart


def _item_out(item: CartItem) -> Tuple[CartItemOut, Decimal]:
    product = item.product
    variant = item.variant
    current = product.current_price(variant)
    available = variant.stock_quantity if variant is not None else 0
    image = product.primary_image
    out = CartItemOut(
        id=item.id,
        product_id=item.product_id,
        variant_id=item.variant_id,
        product_name=product.name,
        product_slug=product.slug,
        variant_name=variant.name if variant else None,
        sku=variant.sku if variant else product.sku,
        image_url=image.url if image else None,
        unit_price=float(item.unit_price),
        compare_at_price=float(product.compare_at_price) if product.compare_at_price is not None else None,
        effective_price=float(current),
        quantity=item.quantity,
        max_quantity=max_quantity(variant),
        line_total=float(money(current * item.quantity)),
        available_stock=available,
        is_available=bool(
            product.is_active and variant is not None and variant.is_active and available >= item.quantity
        ),
    )
    return out, money(current * item.quantity)


def cart_to_out(cart: Optional[Cart], session_id: Optional[str] = None) -> CartOut:
    if cart is None or (cart.is_guest and cart.is_expired):
        return CartOut(session_id=session_id, currency=settings.STORE_CURRENCY)

    items = []
    subtotal = Decimal("0.00")
    for item in cart.items:
        out, line_total = _item_out(item)
        items.append(out)
        subtotal += line_total

    totals = price_totals(subtotal)
    return CartOut(
        id=cart.id,
        user_id=cart.user_id,
        session_id=cart.session_id,
        items=items,
        item_count=cart.item_count,
        subtotal=float(totals["subtotal"]),
        shipping=float(totals["shipping_cost"]),
        tax=float(totals["tax_amount"]),
        total=float(totals["total"]),
        currency=settings.STORE_CURRENCY,
        updated_at=cart.updated_at,
    )
