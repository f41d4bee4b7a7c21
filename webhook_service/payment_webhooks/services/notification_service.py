"""
Notification Service

Publishes notification intents after a payment transaction commits. The
webhook response never waits on email delivery: the intent goes onto the
notification queue and the notification worker sends the email.
"""

from typing import Optional

from payment_webhooks.models.payments import HandlerOutcome, NotificationIntent
from payment_webhooks.models.razorpay_events import RazorpayWebhookPayload, WebhookEventKind
from payment_webhooks.services.sqs_service import SQSService
from payment_webhooks.utils.logging_config import get_correlation_id, get_logger

logger = get_logger(__name__)


def build_intent(
    payload: RazorpayWebhookPayload, outcome: HandlerOutcome
) -> Optional[NotificationIntent]:
    """
    Notification owed for an applied event, if any.

    Only deliveries that actually transitioned a payment produce one, so a
    duplicate or racing delivery never sends a second email.
    """
    if not outcome.success or not outcome.transitioned or not outcome.payment_id:
        return None

    kind = payload.kind
    payment = payload.payment_entity

    if kind in (WebhookEventKind.PAYMENT_CAPTURED, WebhookEventKind.ORDER_PAID):
        return NotificationIntent(
            kind="payment_completed",
            payment_id=outcome.payment_id,
            razorpay_order_id=payload.order_id,
            razorpay_payment_id=payload.razorpay_payment_id,
            correlation_id=get_correlation_id(),
        )

    if kind is WebhookEventKind.PAYMENT_FAILED:
        return NotificationIntent(
            kind="payment_failed",
            payment_id=outcome.payment_id,
            razorpay_order_id=payload.order_id,
            razorpay_payment_id=payload.razorpay_payment_id,
            error_code=payment.error_code if payment else None,
            error_description=payment.error_description if payment else None,
            correlation_id=get_correlation_id(),
        )

    return None


class NotificationPublisher:
    """Puts notification intents on the notification queue"""

    def __init__(self, sqs_service: Optional[SQSService]):
        self.sqs = sqs_service

    @property
    def enabled(self) -> bool:
        return self.sqs is not None and bool(self.sqs.queue_url)

    async def publish(self, intent: NotificationIntent) -> bool:
        """
        Publish one intent.

        Returns:
            True if the intent was queued. Failures are logged, never raised:
            the payment is already committed and must stay acknowledged.
        """
        if not self.enabled:
            logger.debug(
                "Notification queue not configured, skipping notification",
                extra={"notification_kind": intent.kind, "payment_id": intent.payment_id},
            )
            return False

        try:
            await self.sqs.send_message(
                message_body=intent.model_dump(mode="json"),
                message_attributes={
                    "notification_kind": intent.kind,
                    "payment_id": intent.payment_id,
                },
            )
        except Exception as e:
            logger.error(
                f"Failed to publish notification intent: {e}",
                extra={
                    "notification_kind": intent.kind,
                    "payment_id": intent.payment_id,
                    "error": str(e),
                },
            )
            return False

        logger.info(
            "Notification intent queued",
            extra={"notification_kind": intent.kind, "payment_id": intent.payment_id},
        )
        return True
