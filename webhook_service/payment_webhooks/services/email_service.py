"""
Email Service

Sends transactional payment emails through the Resend HTTP API and renders
the two payment notifications.
"""

from dataclasses import dataclass
from typing import Any, Dict, Optional

import httpx

from payment_webhooks.config import Settings
from payment_webhooks.models.payments import PaymentType
from payment_webhooks.utils.exceptions import EmailDeliveryException, RetryableException
from payment_webhooks.utils.logging_config import get_logger
from payment_webhooks.utils.retry import retry_async

logger = get_logger(__name__)


@dataclass(frozen=True)
class EmailMessage:
    to: str
    subject: str
    html: str
    tag: Optional[str] = None


def format_amount(amount_minor: int, currency: str) -> str:
    """Minor units to a display amount, e.g. 1250000 INR -> 'INR 12500.00'"""
    return f"{currency.upper()} {amount_minor / 100:.2f}"


def render_payment_success_email(
    *,
    to: str,
    client_name: str,
    project_number: str,
    amount: str,
    payment_type: str,
    project_url: str,
) -> EmailMessage:
    label = "Advance" if payment_type == PaymentType.ADVANCE.value else "Balance"
    html = (
        f"<p>Hi {client_name},</p>"
        f"<p>We have received your {label.lower()} payment of <strong>{amount}</strong> "
        f"for project {project_number}.</p>"
        f'<p>You can follow progress in your <a href="{project_url}">client portal</a>.</p>'
        "<p>Thank you!</p>"
    )
    return EmailMessage(
        to=to,
        subject=f"{label} payment received - {project_number}",
        html=html,
        tag="payment_success",
    )


def render_payment_failure_alert(
    *,
    to: str,
    order_id: str,
    payment_id: Optional[str],
    error_code: Optional[str],
    error_description: Optional[str],
) -> EmailMessage:
    html = (
        "<p>A payment attempt failed.</p>"
        "<ul>"
        f"<li>Order: {order_id}</li>"
        f"<li>Payment record: {payment_id or 'unknown'}</li>"
        f"<li>Error code: {error_code or 'n/a'}</li>"
        f"<li>Description: {error_description or 'n/a'}</li>"
        "</ul>"
    )
    return EmailMessage(
        to=to,
        subject=f"Payment failed for order {order_id}",
        html=html,
        tag="payment_failed",
    )


class EmailService:
    """Resend email sender"""

    def __init__(
        self,
        api_key: Optional[str],
        from_email: str,
        api_url: str = "https://api.resend.com/emails",
        timeout: float = 10.0,
        max_attempts: int = 3,
        backoff_base: int = 2,
        backoff_max: int = 32,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.api_key = api_key
        self.from_email = from_email
        self.api_url = api_url
        self.timeout = timeout
        self.max_attempts = max_attempts
        self.backoff_base = backoff_base
        self.backoff_max = backoff_max
        self.transport = transport

    @classmethod
    def from_settings(cls, settings: Settings) -> "EmailService":
        return cls(
            api_key=settings.resend_api_key,
            from_email=settings.resend_from_email,
            api_url=settings.resend_api_url,
            timeout=settings.email_timeout_seconds,
            max_attempts=settings.max_retry_attempts,
            backoff_base=settings.retry_backoff_base,
            backoff_max=settings.retry_backoff_max,
        )

    async def send(self, message: EmailMessage) -> Dict[str, Any]:
        """
        Send one email, retrying transport errors and 5xx responses.

        Raises:
            EmailDeliveryException: If the provider rejects the message or
                all attempts fail
        """
        if not self.api_key:
            raise EmailDeliveryException("Resend API key is not configured")

        @retry_async(
            max_attempts=self.max_attempts,
            backoff_base=self.backoff_base,
            backoff_max=self.backoff_max,
            retryable_exceptions=(httpx.TransportError, RetryableException),
        )
        async def _post() -> Dict[str, Any]:
            payload: Dict[str, Any] = {
                "from": self.from_email,
                "to": [message.to],
                "subject": message.subject,
                "html": message.html,
            }
            if message.tag:
                payload["tags"] = [{"name": "category", "value": message.tag}]

            async with httpx.AsyncClient(timeout=self.timeout, transport=self.transport) as client:
                response = await client.post(
                    self.api_url,
                    json=payload,
                    headers={"Authorization": f"Bearer {self.api_key}"},
                )

            if response.status_code >= 500:
                raise RetryableException(
                    f"Resend error {response.status_code}",
                    details={"body": response.text},
                )
            if response.status_code < 200 or response.status_code >= 300:
                raise EmailDeliveryException(
                    f"Resend rejected email: {response.text}",
                    status_code=response.status_code,
                )
            return response.json()

        try:
            result = await _post()
        except (httpx.TransportError, RetryableException) as e:
            raise EmailDeliveryException(f"Email delivery failed: {e}") from e

        logger.info(
            "Email sent",
            extra={"email_tag": message.tag, "provider_id": result.get("id")},
        )
        return result
