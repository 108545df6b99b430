import logging
import math
import uuid
from datetime import datetime, time, timedelta
from typing import List, Optional

from sqlalchemy import or_
from sqlalchemy.orm import Session, selectinload

from core.db import LIKE_ESCAPE, atomic, like_contains
from core.exceptions import ConflictError, NotFoundError, ValidationFailed
from models.order import Order, OrderStatus
from models.product import Product
from models.user import User
from schemas.order import (
    OrderBriefOut,
    OrderEventOut,
    OrderItemOut,
    OrderItemPreview,
    OrderListParams,
    OrderOut,
    OrderPage,
    OrderStatusUpdate,
    ReorderResult,
    ShippingInfoUpdate,
)
from services import cart as cart_service
from services import catalog
from services import notifications

logger = logging.getLogger(__name__)

ORDER_NOT_FOUND = "Order not found"
PREVIEW_ITEMS = 3

SORT_COLUMNS = {
    "date": Order.created_at,
    "total": Order.total,
    "status": Order.status,
    "order_number": Order.order_number,
}


def _order_query(db: Session):
    return db.query(Order).options(selectinload(Order.items), selectinload(Order.events))


def _owned(order: Optional[Order], user: Optional[User]) -> Order:
    # Foreign orders get the same answer as missing ones
    if order is None or (user is not None and order.user_id != user.id):
        raise NotFoundError(ORDER_NOT_FOUND)
    return order


def get_order(db: Session, order_id: uuid.UUID, user: Optional[User] = None) -> Order:
    """Load an order; with ``user`` set, only that user's order is visible."""
    return _owned(_order_query(db).filter(Order.id == order_id).one_or_none(), user)


def get_order_by_number(db: Session, order_number: str, user: Optional[User] = None) -> Order:
    order = _order_query(db).filter(Order.order_number == order_number.strip().upper()).one_or_none()
    return _owned(order, user)


def list_statuses() -> List[str]:
    return [s.value for s in OrderStatus]


def list_orders(db: Session, params: OrderListParams, user: Optional[User] = None) -> OrderPage:
    query = db.query(Order)
    if user is not None:
        query = query.filter(Order.user_id == user.id)

    if params.status:
        query = query.filter(Order.status == OrderStatus.parse(params.status).value)
    if params.date_from:
        query = query.filter(Order.created_at >= datetime.combine(params.date_from, time.min))
    if params.date_to:
        query = query.filter(Order.created_at < datetime.combine(params.date_to + timedelta(days=1), time.min))
    if params.date_from and params.date_to and params.date_from > params.date_to:
        raise ValidationFailed(
            "date_from must not be after date_to",
            [{"field": "date_from", "message": "Must be on or before date_to"}],
        )
    if params.search:
        term = like_contains(params.search.strip())
        number_matches = Order.order_number.ilike(term, escape=LIKE_ESCAPE)
        if user is not None:
            query = query.filter(number_matches)
        else:
            query = query.filter(or_(number_matches, Order.customer_email.ilike(term, escape=LIKE_ESCAPE)))

    total_count = query.count()
    column = SORT_COLUMNS[params.sort_by]
    ordering = column.asc() if params.sort_direction == "asc" else column.desc()
    orders = (
        query.options(selectinload(Order.items))
        .order_by(ordering, Order.order_number.desc())
        .offset((params.page - 1) * params.page_size)
        .limit(params.page_size)
        .all()
    )

    total_pages = math.ceil(total_count / params.page_size) if total_count else 0
    return OrderPage(
        items=[order_to_brief(o) for o in orders],
        page=params.page,
        page_size=params.page_size,
        total_count=total_count,
        total_pages=total_pages,
        has_next_page=params.page < total_pages,
        has_previous_page=params.page > 1,
    )


def _restore_stock(db: Session, order: Order) -> None:
    variants = catalog.lock_variants(db, (item.variant_id for item in order.items))
    for item in order.items:
        variant = variants.get(item.variant_id)
        if variant is not None:
            variant.adjust_stock(item.quantity)


def cancel_order(db: Session, order_id: uuid.UUID, user: User, reason: Optional[str] = None) -> Order:
    with atomic(db):
        # Re-read under a row lock so the check runs against the latest status
        order = _owned(
            db.query(Order)
            .filter(Order.id == order_id)
            .with_for_update()
            .populate_existing()
            .one_or_none(),
            user,
        )
        if not order.can_be_cancelled:
            raise ConflictError(f"Order cannot be cancelled. Current status: {order.status}")
        order.cancel(reason.strip() if reason and reason.strip() else None)
        _restore_stock(db, order)

    logger.info("Order %s cancelled by user %s", order.order_number, user.id)
    notifications.send_order_cancelled(order)
    return order


def update_status(db: Session, order_id: uuid.UUID, data: OrderStatusUpdate) -> Order:
    target = OrderStatus.parse(data.status)
    note = data.note.strip() if data.note and data.note.strip() else None

    with atomic(db):
        order = get_order(db, order_id)
        previous = order.status
        if target is OrderStatus.CANCELLED:
            if not order.can_be_cancelled:
                raise ConflictError(f"Order cannot be cancelled. Current status: {order.status}")
            order.cancellation_reason = note
            order.transition_to(target, note or "Order cancelled by store", note)
            _restore_stock(db, order)
        else:
            order.transition_to(target, f"Status changed to {target.value}", note)

    logger.info("Order %s: %s -> %s", order.order_number, previous, order.status)

    if data.notify_customer:
        if target is OrderStatus.SHIPPED:
            notifications.send_order_shipped(order)
        elif target is OrderStatus.CANCELLED:
            notifications.send_order_cancelled(order)
    return order


def update_shipping(db: Session, order_id: uuid.UUID, data: ShippingInfoUpdate) -> Order:
    with atomic(db):
        order = get_order(db, order_id)
        tracking_changed = data.tracking_number is not None and data.tracking_number != order.tracking_number
        if data.tracking_number is not None:
            order.tracking_number = data.tracking_number.strip() or None
        if data.shipping_method is not None:
            order.shipping_method = data.shipping_method.value

        if data.mark_as_shipped:
            description = "Order shipped"
            if order.tracking_number:
                description = f"Order shipped with tracking number {order.tracking_number}"
            order.transition_to(OrderStatus.SHIPPED, description)
        elif tracking_changed:
            order.append_note(f"Tracking number set to {order.tracking_number}")

    if data.mark_as_shipped or (tracking_changed and order.order_status is OrderStatus.SHIPPED):
        logger.info("Order %s shipped, tracking %s", order.order_number, order.tracking_number)
        notifications.send_order_shipped(order)
    return order


def add_note(db: Session, order_id: uuid.UUID, note: str) -> Order:
    if not note.strip():
        raise ValidationFailed("Note must not be empty", [{"field": "note", "message": "Must not be blank"}])
    with atomic(db):
        order = get_order(db, order_id)
        order.append_note(note)
    return order


def reorder(db: Session, user: User, order_id: uuid.UUID) -> ReorderResult:
    order = get_order(db, order_id, user)
    added, skipped, reasons = 0, 0, []

    with atomic(db):
        cart = cart_service.get_or_create_cart(db, user, None)
        for item in order.items:
            product = db.get(Product, item.product_id) if item.product_id is not None else None
            if product is None or not product.is_active:
                skipped += 1
                reasons.append(f"{item.product_name} is no longer available")
                continue

            variant = cart_service.resolve_variant(product, item.variant_id)
            if variant is None and item.variant_id is not None:
                variant = product.default_variant
            if variant is None or cart_service.max_quantity(variant) == 0:
                skipped += 1
                reasons.append(f"{item.product_name} is out of stock")
                continue

            count = cart_service.add_line(cart, product, variant, item.quantity)
            if count == 0:
                skipped += 1
                reasons.append(f"{item.product_name} is already in your cart at the maximum quantity")
                continue
            added += 1
            if count < item.quantity:
                reasons.append(f"Only {count} of {item.product_name} could be added")

    logger.info("Reorder of %s for user %s: %d added, %d skipped", order.order_number, user.id, added, skipped)
    return ReorderResult(
        cart=cart_service.cart_to_out(cart),
        items_added=added,
        items_skipped=skipped,
        skipped_reasons=reasons,
    )


def order_to_brief(order: Order) -> OrderBriefOut:
    return OrderBriefOut(
        id=order.id,
        order_number=order.order_number,
        customer_email=order.customer_email,
        status=order.status,
        total=float(order.total),
        currency=order.currency,
        item_count=order.item_count,
        created_at=order.created_at,
        items=[
            OrderItemPreview(id=i.id, product_name=i.product_name, image_url=i.image_url, quantity=i.quantity)
            for i in order.items[:PREVIEW_ITEMS]
        ],
    )


def order_to_out(order: Order) -> OrderOut:
    return OrderOut(
        id=order.id,
        order_number=order.order_number,
        user_id=order.user_id,
        customer_email=order.customer_email,
        customer_phone=order.customer_phone,
        status=order.status,
        subtotal=float(order.subtotal),
        shipping_cost=float(order.shipping_cost),
        tax_amount=float(order.tax_amount),
        discount_amount=float(order.discount_amount),
        total=float(order.total),
        currency=order.currency,
        payment_method=order.payment_method,
        shipping_method=order.shipping_method,
        shipping_address=order.shipping_address or None,
        billing_address=order.billing_address,
        tracking_number=order.tracking_number,
        paid_at=order.paid_at,
        shipped_at=order.shipped_at,
        delivered_at=order.delivered_at,
        cancelled_at=order.cancelled_at,
        cancellation_reason=order.cancellation_reason,
        notes=order.notes,
        can_cancel=order.can_be_cancelled,
        items=[OrderItemOut.model_validate(i) for i in order.items],
        events=[OrderEventOut.model_validate(e) for e in reversed(order.events)],
        created_at=order.created_at,
        updated_at=order.updated_at,
    )
