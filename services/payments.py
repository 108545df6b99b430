"""Payment initialization, verification and gateway webhooks.

An order only becomes Paid after the gateway itself confirms the charge,
either through a server-side verify call or a signed webhook.
"""
import json
import logging
import uuid
from typing import Any, Dict, Optional

from sqlalchemy.orm import Session

from core.db import atomic
from core.exceptions import ConflictError, NotFoundError, PaymentGatewayError, ValidationFailed
from models.order import Order, OrderStatus
from models.payment import Payment
from models.user import User
from services.paystack import PaystackClient

logger = logging.getLogger(__name__)

SUCCESS = "success"


def init_payment(
    db: Session, client: PaystackClient, user: User, order_id: uuid.UUID, callback_url: Optional[str] = None
) -> Dict[str, Any]:
    order = db.query(Order).filter(Order.id == order_id).one_or_none()
    if order is None or order.user_id != user.id:
        raise NotFoundError("Order not found")
    if order.order_status is not OrderStatus.PENDING:
        raise ConflictError(f"Order cannot be paid. Current status: {order.status}")
    if order.total is None or order.total <= 0:
        raise ValidationFailed(
            "Order total must be greater than 0",
            [{"field": "order_id", "message": "Nothing to pay"}],
        )

    resp = client.initialize_transaction(
        email=order.customer_email,
        amount=order.total,
        currency=order.currency,
        callback_url=callback_url,
        metadata={"order_id": str(order.id), "order_number": order.order_number},
    )
    if not resp.get("status"):
        raise ValidationFailed(resp.get("message") or "Unable to initialize payment")

    data = resp.get("data") or {}
    reference = data.get("reference")
    if not reference:
        raise PaymentGatewayError("Missing reference from payment gateway")

    with atomic(db):
        db.add(
            Payment(
                order_id=order.id,
                provider="paystack",
                reference=reference,
                amount=order.total,
                currency=order.currency,
                status="initialized",
                raw_response=resp,
            )
        )
        order.payment_reference = reference

    logger.info("Payment %s initialized for order %s", reference, order.order_number)
    return {
        "authorization_url": data.get("authorization_url"),
        "access_code": data.get("access_code"),
        "reference": reference,
    }


def _mark_paid(order: Order, reference: str) -> None:
    if order.order_status is not OrderStatus.PENDING:
        logger.info("Order %s already %s, ignoring payment %s", order.order_number, order.status, reference)
        return
    order.payment_reference = reference
    order.transition_to(OrderStatus.PAID, "Payment confirmed", f"Reference {reference}")
    logger.info("Order %s paid (reference %s)", order.order_number, reference)


def verify_payment(db: Session, client: PaystackClient, user: User, reference: str) -> Payment:
    payment = db.query(Payment).filter(Payment.reference == reference).one_or_none()
    if payment is None or payment.order is None or payment.order.user_id != user.id:
        raise NotFoundError("Payment not found")

    resp = client.verify_transaction(reference)
    data = resp.get("data") or {}
    with atomic(db):
        payment.raw_response = resp
        if resp.get("status") and data.get("status") == SUCCESS:
            payment.status = SUCCESS
            _mark_paid(payment.order, reference)
        else:
            payment.status = data.get("status") or "failed"
            logger.info("Payment %s for order %s not successful: %s",
                        reference, payment.order.order_number, payment.status)
    return payment


def handle_webhook(db: Session, client: PaystackClient, body: bytes, signature: Optional[str]) -> None:
    """
    Apply a Paystack webhook event.

    Invalid signatures are rejected; anything else is acknowledged, including
    unknown references and transitions the order no longer allows.
    """
    if not client.verify_webhook_signature(body, signature):
        logger.warning("Rejected Paystack webhook with invalid signature")
        raise ValidationFailed("Invalid signature")

    try:
        event = json.loads(body)
    except (ValueError, UnicodeDecodeError):
        raise ValidationFailed("Malformed webhook payload")

    kind = event.get("event")
    data = event.get("data") or {}
    reference = data.get("reference") or data.get("transaction_reference")
    if kind not in ("charge.success", "refund.processed"):
        logger.info("Ignoring Paystack event %s", kind)
        return

    payment = db.query(Payment).filter(Payment.reference == reference).one_or_none() if reference else None
    if payment is None or payment.order is None:
        logger.warning("Paystack event %s for unknown reference %s", kind, reference)
        return

    order = payment.order
    with atomic(db):
        payment.raw_response = event
        if kind == "charge.success":
            payment.status = SUCCESS
            _mark_paid(order, reference)
        elif order.can_transition_to(OrderStatus.REFUNDED):
            payment.status = "refunded"
            order.transition_to(OrderStatus.REFUNDED, "Payment refunded", f"Reference {reference}")
            logger.info("Order %s refunded (reference %s)", order.order_number, reference)
        else:
            logger.warning(
                "Refund for order %s ignored, status %s does not allow it", order.order_number, order.status
            )
