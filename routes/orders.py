import uuid
from typing import Annotated, List

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from core.db import get_db
from models.user import User
from routes.auth import get_current_user
from schemas.order import OrderCancel, OrderCreate, OrderListParams, OrderOut, OrderPage, ReorderResult
from services import checkout
from services import orders as order_service

router = APIRouter(prefix="/api/orders", tags=["orders"])


@router.post("", response_model=OrderOut, status_code=201)
def create_order(data: OrderCreate, current_user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    order = checkout.place_order(db, current_user, data)
    return order_service.order_to_out(order)


@router.get("", response_model=OrderPage)
def list_orders(
    params: Annotated[OrderListParams, Query()],
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    return order_service.list_orders(db, params, current_user)


@router.get("/statuses", response_model=List[str])
def list_statuses():
    return order_service.list_statuses()


@router.get("/by-number/{order_number}", response_model=OrderOut)
def get_order_by_number(order_number: str, current_user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    order = order_service.get_order_by_number(db, order_number, current_user)
    return order_service.order_to_out(order)


@router.get("/{order_id}", response_model=OrderOut)
def get_order(order_id: uuid.UUID, current_user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    order = order_service.get_order(db, order_id, current_user)
    return order_service.order_to_out(order)


@router.post("/{order_id}/cancel", response_model=OrderOut)
def cancel_order(
    order_id: uuid.UUID,
    data: OrderCancel | None = None,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    reason = data.reason if data else None
    order = order_service.cancel_order(db, order_id, current_user, reason)
    return order_service.order_to_out(order)


@router.post("/{order_id}/reorder", response_model=ReorderResult)
def reorder(order_id: uuid.UUID, current_user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    return order_service.reorder(db, current_user, order_id)
