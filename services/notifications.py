"""Customer e-mails for order lifecycle events.

Every function here is best effort: a rendering or delivery failure is
logged and reported as a failed ``EmailResult``, never raised back into
the request that triggered it.
"""
import logging
from typing import Any, Dict

from jinja2 import TemplateError

from core.config import settings
from models.order import Order
from services.email import EmailResult, email_service

logger = logging.getLogger(__name__)


def _order_context(order: Order) -> Dict[str, Any]:
    address = order.shipping_address or {}
    return {
        "app_name": settings.APP_NAME,
        "order_number": order.order_number,
        "status": order.status,
        "customer_name": " ".join(p for p in (address.get("first_name"), address.get("last_name")) if p),
        "items": [
            {
                "name": item.product_name,
                "variant": item.variant_name,
                "quantity": item.quantity,
                "unit_price": f"{item.unit_price:.2f}",
                "line_total": f"{item.line_total:.2f}",
            }
            for item in order.items
        ],
        "subtotal": f"{order.subtotal:.2f}",
        "shipping_cost": f"{order.shipping_cost:.2f}",
        "tax_amount": f"{order.tax_amount:.2f}",
        "discount_amount": f"{order.discount_amount:.2f}",
        "total": f"{order.total:.2f}",
        "currency": order.currency,
        "shipping_address": address,
        "shipping_method": order.shipping_method,
        "tracking_number": order.tracking_number,
        "cancellation_reason": order.cancellation_reason,
        "order_url": f"{settings.FRONTEND_URL.rstrip('/')}/account/orders/{order.id}",
    }


def _dispatch(order: Order, subject: str, template: str) -> EmailResult:
    try:
        result = email_service.send_templated(
            order.customer_email,
            subject,
            template,
            _order_context(order),
        )
    except TemplateError as e:
        logger.error("Failed to render %s for order %s: %s", template, order.order_number, e, exc_info=True)
        return EmailResult("failed", str(e))
    except Exception as e:
        logger.error("Unexpected error sending %s for order %s: %s", template, order.order_number, e, exc_info=True)
        return EmailResult("failed", str(e))

    if not result.ok:
        logger.warning("Email %s for order %s not delivered: %s", template, order.order_number, result.detail)
    return result


def send_order_confirmation(order: Order) -> EmailResult:
    return _dispatch(order, f"Order confirmation {order.order_number}", "emails/order_confirmation.html")


def send_order_shipped(order: Order) -> EmailResult:
    return _dispatch(order, f"Your order {order.order_number} has shipped", "emails/order_shipped.html")


def send_order_cancelled(order: Order) -> EmailResult:
    return _dispatch(order, f"Order {order.order_number} cancelled", "emails/order_cancelled.html")
