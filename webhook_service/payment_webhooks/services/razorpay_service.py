"""
Razorpay Service

Webhook signature verification and extraction of delivery metadata from
the inbound HTTP request.
"""

import hashlib
import hmac
from typing import Optional

from fastapi import Request
from pydantic import BaseModel

from payment_webhooks.utils.exceptions import WebhookConfigurationException
from payment_webhooks.utils.logging_config import get_logger

logger = get_logger(__name__)

PROVIDER_NAME = "razorpay"
SIGNATURE_HEADER = f"x-{PROVIDER_NAME}-signature"
EVENT_ID_HEADER = f"x-{PROVIDER_NAME}-event-id"


class WebhookDelivery(BaseModel):
    """One inbound webhook request, exactly as received"""

    raw_body: bytes
    signature: str = ""
    event_id: Optional[str] = None
    ip_address: str = "unknown"


def compute_signature(raw_body: bytes, secret: str) -> str:
    """Hex-encoded HMAC-SHA256 of the raw body"""
    return hmac.new(secret.encode("utf-8"), raw_body, hashlib.sha256).hexdigest()


def client_ip(request: Request) -> str:
    """First hop of X-Forwarded-For, else X-Real-IP, else 'unknown'"""
    forwarded_for = request.headers.get("x-forwarded-for")
    if forwarded_for:
        first_hop = forwarded_for.split(",")[0].strip()
        if first_hop:
            return first_hop
    return request.headers.get("x-real-ip") or "unknown"


class RazorpayService:
    """Razorpay webhook trust boundary"""

    def __init__(self, webhook_secret: Optional[str]):
        self.webhook_secret = webhook_secret

    @property
    def is_configured(self) -> bool:
        return bool(self.webhook_secret)

    def verify_webhook_signature(self, raw_body: bytes, signature: str) -> bool:
        """
        Verify a Razorpay webhook signature.

        The body must be the untouched request bytes: re-serialized JSON
        does not hash to the same value.

        Args:
            raw_body: Raw request body as received
            signature: Value of the x-razorpay-signature header

        Returns:
            True if the signature matches

        Raises:
            WebhookConfigurationException: If no webhook secret is configured
        """
        if not self.webhook_secret:
            raise WebhookConfigurationException(
                "Razorpay webhook secret is not configured",
                details={"setting": "razorpay_webhook_secret"},
            )

        if not signature:
            return False

        expected = compute_signature(raw_body, self.webhook_secret)
        return hmac.compare_digest(expected.encode("utf-8"), signature.encode("utf-8"))

    async def extract_webhook_data(self, request: Request) -> WebhookDelivery:
        """Read the raw body and the provider headers from the request"""
        raw_body = await request.body()
        return WebhookDelivery(
            raw_body=raw_body,
            signature=request.headers.get(SIGNATURE_HEADER, ""),
            event_id=request.headers.get(EVENT_ID_HEADER) or None,
            ip_address=client_ip(request),
        )
