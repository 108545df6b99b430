from typing import Optional

from fastapi import APIRouter, Depends, Header
from sqlalchemy.orm import Session

from core.db import get_db
from models.user import User
from routes.auth import get_current_user, get_optional_user
from schemas.cart import CartItemAdd, CartItemUpdate, CartOut
from services import cart as cart_service

router = APIRouter(prefix="/api/cart", tags=["cart"])


def get_session_id(x_session_id: Optional[str] = Header(default=None, alias="X-Session-Id")) -> Optional[str]:
    return x_session_id.strip() if x_session_id and x_session_id.strip() else None


@router.get("", response_model=CartOut)
def get_cart(
    user: Optional[User] = Depends(get_optional_user),
    session_id: Optional[str] = Depends(get_session_id),
    db: Session = Depends(get_db),
):
    cart = cart_service.find_cart(db, user, session_id)
    return cart_service.cart_to_out(cart, session_id)


@router.post("/items", response_model=CartOut)
def add_item(
    data: CartItemAdd,
    user: Optional[User] = Depends(get_optional_user),
    session_id: Optional[str] = Depends(get_session_id),
    db: Session = Depends(get_db),
):
    cart = cart_service.add_item(db, user, session_id, data)
    return cart_service.cart_to_out(cart, session_id)


@router.put("/items/{item_id}", response_model=CartOut)
def update_item(
    item_id: int,
    data: CartItemUpdate,
    user: Optional[User] = Depends(get_optional_user),
    session_id: Optional[str] = Depends(get_session_id),
    db: Session = Depends(get_db),
):
    cart = cart_service.update_item(db, user, session_id, item_id, data.quantity)
    return cart_service.cart_to_out(cart, session_id)


@router.delete("/items/{item_id}", response_model=CartOut)
def remove_item(
    item_id: int,
    user: Optional[User] = Depends(get_optional_user),
    session_id: Optional[str] = Depends(get_session_id),
    db: Session = Depends(get_db),
):
    cart = cart_service.remove_item(db, user, session_id, item_id)
    return cart_service.cart_to_out(cart, session_id)


@router.delete("", response_model=CartOut)
def clear_cart(
    user: Optional[User] = Depends(get_optional_user),
    session_id: Optional[str] = Depends(get_session_id),
    db: Session = Depends(get_db),
):
    cart = cart_service.clear_cart(db, user, session_id)
    return cart_service.cart_to_out(cart, session_id)


@router.post("/merge", response_model=CartOut)
def merge_cart(
    current_user: User = Depends(get_current_user),
    session_id: Optional[str] = Depends(get_session_id),
    db: Session = Depends(get_db),
):
    """Fold the guest cart of this browser session into the signed-in user's cart."""
    cart = cart_service.merge_guest_cart(db, current_user, session_id)
    return cart_service.cart_to_out(cart)
