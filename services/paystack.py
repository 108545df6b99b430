import hashlib
import hmac
import logging
import uuid
from decimal import Decimal
from typing import Any, Dict

import requests

from core.config import Settings, settings as default_settings
from core.exceptions import PaymentGatewayError

logger = logging.getLogger(__name__)

PAYSTACK_BASE_URL = "https://api.paystack.co"


def to_minor_units(amount: Decimal | float | int) -> int:
    """Paystack expects the smallest currency unit (cents, kobo, ...)."""
    return int((Decimal(str(amount)) * 100).quantize(Decimal("1")))


class PaystackClient:
    def __init__(self, settings: Settings, session: requests.Session | None = None):
        self.settings = settings
        self.session = session or requests.Session()

    def _headers(self) -> Dict[str, str]:
        return {
            "Authorization": f"Bearer {self.settings.PAYSTACK_SECRET_KEY}",
            "Content-Type": "application/json",
        }

    def _request(self, method: str, path: str, **kwargs) -> Dict[str, Any]:
        if not self.settings.paystack_configured:
            raise PaymentGatewayError("Payment gateway is not configured")

        url = f"{PAYSTACK_BASE_URL}{path}"
        try:
            resp = self.session.request(
                method,
                url,
                headers=self._headers(),
                timeout=self.settings.PAYMENT_GATEWAY_TIMEOUT_SECONDS,
                **kwargs,
            )
        except requests.Timeout as e:
            logger.error("Paystack %s %s timed out: %s", method, path, e)
            raise PaymentGatewayError("Payment gateway timed out") from e
        except requests.RequestException as e:
            logger.error("Paystack %s %s failed: %s", method, path, e)
            raise PaymentGatewayError("Payment gateway unavailable") from e

        if resp.status_code >= 500:
            logger.error("Paystack %s %s returned %s: %s", method, path, resp.status_code, resp.text[:500])
            raise PaymentGatewayError("Payment gateway unavailable")

        try:
            return resp.json()
        except ValueError as e:
            logger.error("Paystack %s %s returned a non-JSON body", method, path)
            raise PaymentGatewayError("Unexpected response from payment gateway") from e

    def initialize_transaction(
        self,
        email: str,
        amount: Decimal,
        currency: str,
        reference: str | None = None,
        callback_url: str | None = None,
        metadata: Dict[str, Any] | None = None,
    ) -> Dict[str, Any]:
        payload = {
            "email": email,
            "amount": to_minor_units(amount),
            "currency": currency,
            "reference": reference or str(uuid.uuid4()),
        }
        if callback_url or self.settings.PAYSTACK_CALLBACK_URL:
            payload["callback_url"] = callback_url or self.settings.PAYSTACK_CALLBACK_URL
        if metadata:
            payload["metadata"] = metadata
        return self._request("POST", "/transaction/initialize", json=payload)

    def verify_transaction(self, reference: str) -> Dict[str, Any]:
        return self._request("GET", f"/transaction/verify/{reference}")

    def verify_webhook_signature(self, body: bytes, signature: str | None) -> bool:
        if not signature or not self.settings.paystack_configured:
            return False
        expected = hmac.new(
            self.settings.PAYSTACK_SECRET_KEY.encode("utf-8"),
            body,
            hashlib.sha512,
        ).hexdigest()
        return hmac.compare_digest(expected, signature)


paystack_client = PaystackClient(default_settings)
