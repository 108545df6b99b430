"""Order placement from the current cart.

The multi-step checkout UI (shipping, payment, review) keeps its state on
the client; the server only quotes shipping methods and totals and, on
submission, re-validates the whole cart before writing anything.
"""
import logging
from dataclasses import dataclass
from decimal import Decimal
from typing import Any, Dict, List, Optional

from sqlalchemy import func
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from core.config import settings
from core.db import atomic, utcnow
from core.exceptions import ConflictError, ValidationFailed
from models.cart import Cart, CartItem
from models.order import Order, OrderStatus, money
from models.order_item import OrderItem
from models.user import User
from schemas.order import CheckoutSummary, OrderCreate, ShippingMethod, ShippingMethodOut, UnavailableLine
from services import addresses as address_service
from services import cart as cart_service
from services import catalog
from services import notifications

logger = logging.getLogger(__name__)

ORDER_NUMBER_ATTEMPTS = 3


@dataclass(frozen=True)
class ShippingQuote:
    code: ShippingMethod
    label: str
    cost: Decimal
    min_days: int
    max_days: int


def shipping_methods() -> Dict[ShippingMethod, ShippingQuote]:
    return {
        ShippingMethod.STANDARD: ShippingQuote(ShippingMethod.STANDARD, "Standard delivery", Decimal("0.00"), 5, 7),
        ShippingMethod.EXPRESS: ShippingQuote(
            ShippingMethod.EXPRESS, "Express delivery", money(settings.EXPRESS_SHIPPING_COST), 2, 3
        ),
        ShippingMethod.OVERNIGHT: ShippingQuote(
            ShippingMethod.OVERNIGHT, "Overnight delivery", money(settings.OVERNIGHT_SHIPPING_COST), 1, 1
        ),
    }


def shipping_quote(method: ShippingMethod | str) -> ShippingQuote:
    try:
        return shipping_methods()[ShippingMethod(method)]
    except ValueError:
        raise ValidationFailed(
            f"Unknown shipping method: {method}",
            [{"field": "shipping_method", "message": "Must be one of: standard, express, overnight"}],
        )


def list_shipping_methods() -> List[ShippingMethodOut]:
    return [
        ShippingMethodOut(code=q.code, label=q.label, cost=float(q.cost), min_days=q.min_days, max_days=q.max_days)
        for q in shipping_methods().values()
    ]


def _require_items(cart: Optional[Cart]) -> Cart:
    if cart is None or not cart.items or (cart.is_guest and cart.is_expired):
        raise ValidationFailed("Cart is empty", [{"field": "cart", "message": "Add at least one item"}])
    return cart


def _line_problem(item: CartItem) -> Optional[str]:
    product, variant = item.product, item.variant
    name = product.name if product else f"Product {item.product_id}"
    if product is None or not product.is_active:
        return f"{name} is no longer available"
    if variant is None or not variant.is_active:
        return f"The selected option of {name} is no longer available"
    if variant.stock_quantity < item.quantity:
        return f"Only {variant.stock_quantity} of {name} available, {item.quantity} requested"
    return None


def _line_errors(cart: Cart) -> List[Dict[str, Any]]:
    errors = []
    for item in cart.items:
        message = _line_problem(item)
        if message:
            errors.append({"item_id": item.id, "product_id": item.product_id, "message": message})
    return errors


def _validate_lines(cart: Cart) -> None:
    """Collect every failing line so the customer sees all problems at once."""
    errors = _line_errors(cart)
    if errors:
        raise ValidationFailed("Some items in your cart cannot be ordered", errors)


def summary(db: Session, user: Optional[User], session_id: Optional[str],
            method: ShippingMethod | str = ShippingMethod.STANDARD) -> CheckoutSummary:
    quote = shipping_quote(method)
    cart = _require_items(cart_service.find_cart(db, user, session_id))
    errors = _line_errors(cart)
    unavailable = {e["item_id"] for e in errors}
    lines = [item for item in cart.items if item.id not in unavailable]

    subtotal = sum(
        (item.product.current_price(item.variant) * item.quantity for item in lines),
        Decimal("0.00"),
    )
    totals = cart_service.price_totals(subtotal, quote.cost)
    return CheckoutSummary(
        shipping_method=quote.code,
        item_count=sum(item.quantity for item in lines),
        subtotal=float(totals["subtotal"]),
        shipping_cost=float(totals["shipping_cost"]),
        tax_amount=float(totals["tax_amount"]),
        discount_amount=float(totals["discount_amount"]),
        total=float(totals["total"]),
        currency=settings.STORE_CURRENCY,
        unavailable_items=[UnavailableLine(**e) for e in errors],
    )


def next_order_number(db: Session) -> str:
    """ORD-{year}-{sequence}, the sequence restarting every calendar year."""
    prefix = f"ORD-{utcnow().year}-"
    last = (
        db.query(func.max(Order.order_number))
        .filter(Order.order_number.like(f"{prefix}%"))
        .scalar()
    )
    seq = int(last[len(prefix):]) + 1 if last else 1
    return f"{prefix}{seq:06d}"


def _shipping_address(db: Session, user: User, data: OrderCreate) -> Dict[str, Any]:
    if data.shipping_address is not None:
        return data.shipping_address.model_dump()
    return address_service.get_address(db, user, data.shipping_address_id).snapshot()


def _write_order(db: Session, user: User, data: OrderCreate, quote: ShippingQuote,
                 shipping_address: Dict[str, Any]) -> Order:
    cart = _require_items(cart_service.find_cart(db, user, None))

    with atomic(db):
        # Stock is re-checked against locked rows, not whatever the session read earlier
        catalog.lock_variants(db, (item.variant_id for item in cart.items))
        _validate_lines(cart)

        order = Order(
            order_number=next_order_number(db),
            user_id=user.id,
            customer_email=data.customer_email.lower(),
            customer_phone=data.customer_phone,
            status=OrderStatus.PENDING.value,
            currency=settings.STORE_CURRENCY,
            payment_method=data.payment_method.value,
            shipping_method=quote.code.value,
            shipping_address=shipping_address,
            billing_address=data.billing_address.model_dump() if data.billing_address else None,
            notes=data.notes,
            shipping_cost=quote.cost,
            discount_amount=Decimal("0.00"),
        )
        for item in cart.items:
            product, variant = item.product, item.variant
            # Priced from the catalog at submission, never from the cached cart price
            unit_price = money(product.current_price(variant))
            image = product.primary_image
            order.add_item(
                OrderItem(
                    product_id=product.id,
                    variant_id=variant.id,
                    product_name=product.name,
                    product_slug=product.slug,
                    variant_name=variant.name,
                    sku=variant.sku,
                    image_url=image.url if image else None,
                    quantity=item.quantity,
                    unit_price=unit_price,
                    line_total=money(unit_price * item.quantity),
                )
            )
            variant.adjust_stock(-item.quantity)

        order.set_tax_amount(money(Decimal(order.subtotal) * settings.VAT_RATE))
        order.record_event(OrderStatus.PENDING, "Order placed")
        db.add(order)

        cart.items.clear()
        cart.touch()
    return order


def place_order(db: Session, user: User, data: OrderCreate) -> Order:
    quote = shipping_quote(data.shipping_method)
    shipping_address = _shipping_address(db, user, data)

    for attempt in range(1, ORDER_NUMBER_ATTEMPTS + 1):
        try:
            order = _write_order(db, user, data, quote, shipping_address)
            break
        except IntegrityError as e:
            # Another checkout took the same order number between our read and our commit
            if attempt == ORDER_NUMBER_ATTEMPTS:
                logger.error("Order for user %s failed after %d attempts: %s", user.id, attempt, e)
                raise ConflictError("Could not place the order, please retry") from e
            logger.warning("Order number collision for user %s, retrying (attempt %d)", user.id, attempt)

    logger.info(
        "Order %s placed by user %s: %d items, total %s %s",
        order.order_number, user.id, order.item_count, order.total, order.currency,
    )
    notifications.send_order_confirmation(order)
    return order
