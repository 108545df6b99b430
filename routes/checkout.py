from typing import List, Optional

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from core.db import get_db
from models.user import User
from routes.auth import get_optional_user
from routes.cart import get_session_id
from schemas.order import CheckoutSummary, ShippingMethod, ShippingMethodOut
from services import checkout

router = APIRouter(prefix="/api/checkout", tags=["checkout"])


@router.get("/shipping-methods", response_model=List[ShippingMethodOut])
def shipping_methods():
    return checkout.list_shipping_methods()


@router.get("/summary", response_model=CheckoutSummary)
def checkout_summary(
    shipping_method: ShippingMethod = ShippingMethod.STANDARD,
    user: Optional[User] = Depends(get_optional_user),
    session_id: Optional[str] = Depends(get_session_id),
    db: Session = Depends(get_db),
):
    """Totals for the review step, priced at current catalog prices."""
    return checkout.summary(db, user, session_id, shipping_method)
