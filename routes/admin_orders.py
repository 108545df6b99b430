import uuid
from typing import Annotated

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from core.db import get_db
from models.user import User
from routes.auth import require_admin
from schemas.order import OrderListParams, OrderNoteCreate, OrderOut, OrderPage, OrderStatusUpdate, ShippingInfoUpdate
from services import orders as order_service

router = APIRouter(prefix="/api/admin/orders", tags=["admin-orders"])


@router.get("", response_model=OrderPage)
def list_orders(params: Annotated[OrderListParams, Query()], admin: User = Depends(require_admin), db: Session = Depends(get_db)):
    """All orders; ``search`` also matches the customer e-mail."""
    return order_service.list_orders(db, params)


@router.get("/{order_id}", response_model=OrderOut)
def get_order(order_id: uuid.UUID, admin: User = Depends(require_admin), db: Session = Depends(get_db)):
    return order_service.order_to_out(order_service.get_order(db, order_id))


@router.put("/{order_id}/status", response_model=OrderOut)
def update_status(
    order_id: uuid.UUID, data: OrderStatusUpdate, admin: User = Depends(require_admin), db: Session = Depends(get_db)
):
    order = order_service.update_status(db, order_id, data)
    return order_service.order_to_out(order)


@router.put("/{order_id}/shipping", response_model=OrderOut)
def update_shipping(
    order_id: uuid.UUID, data: ShippingInfoUpdate, admin: User = Depends(require_admin), db: Session = Depends(get_db)
):
    order = order_service.update_shipping(db, order_id, data)
    return order_service.order_to_out(order)


@router.post("/{order_id}/notes", response_model=OrderOut)
def add_note(
    order_id: uuid.UUID, data: OrderNoteCreate, admin: User = Depends(require_admin), db: Session = Depends(get_db)
):
    order = order_service.add_note(db, order_id, data.note)
    return order_service.order_to_out(order)
