import logging
from typing import Optional

from fastapi import APIRouter, Depends, Header, Request
from sqlalchemy.orm import Session

from core.db import get_db
from models.user import User
from routes.auth import get_current_user
from schemas.payment import PaymentInitRequest, PaymentInitResponse, PaymentOut, PaymentVerifyRequest
from services import payments as payment_service
from services.paystack import PaystackClient, paystack_client

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/payments", tags=["payments"])
webhook_router = APIRouter(prefix="/api/webhooks", tags=["webhooks"])


def get_payment_client() -> PaystackClient:
    return paystack_client


@router.post("/init", response_model=PaymentInitResponse)
def init_payment(
    data: PaymentInitRequest,
    current_user: User = Depends(get_current_user),
    client: PaystackClient = Depends(get_payment_client),
    db: Session = Depends(get_db),
):
    return payment_service.init_payment(db, client, current_user, data.order_id, data.callback_url)


@router.post("/verify", response_model=PaymentOut)
def verify_payment(
    data: PaymentVerifyRequest,
    current_user: User = Depends(get_current_user),
    client: PaystackClient = Depends(get_payment_client),
    db: Session = Depends(get_db),
):
    payment = payment_service.verify_payment(db, client, current_user, data.reference)
    out = PaymentOut.model_validate(payment)
    out.order_status = payment.order.status
    return out


async def raw_body(request: Request) -> bytes:
    return await request.body()


@webhook_router.post("/paystack")
def paystack_webhook(
    body: bytes = Depends(raw_body),
    x_paystack_signature: Optional[str] = Header(default=None, alias="x-paystack-signature"),
    client: PaystackClient = Depends(get_payment_client),
    db: Session = Depends(get_db),
):
    payment_service.handle_webhook(db, client, body, x_paystack_signature)
    return {"status": "ok"}
