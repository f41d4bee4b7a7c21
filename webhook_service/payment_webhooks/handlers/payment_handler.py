"""
Payment Event Handlers

Apply Razorpay payment events to the payments table. Every mutation is a
single conditional UPDATE ... RETURNING; the WHERE clause on the current
status is the only concurrency control, so concurrent or out-of-order
deliveries for one order resolve to at most one transition.
"""

from typing import Optional

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncConnection

from payment_webhooks.models.payments import (
    TERMINAL_PAYMENT_STATUSES,
    HandlerOutcome,
    PaymentStatus,
    utcnow,
)
from payment_webhooks.models.razorpay_events import RazorpayWebhookPayload
from payment_webhooks.models.tables import payments
from payment_webhooks.utils.logging_config import get_logger

logger = get_logger(__name__)

DEFAULT_FAILURE_REASON = "Payment failed"


async def _find_payment_id(connection: AsyncConnection, order_id: str) -> Optional[str]:
    result = await connection.execute(
        select(payments.c.id).where(payments.c.razorpay_order_id == order_id)
    )
    return result.scalar_one_or_none()


class PaymentHandler:
    """Handlers for payment.captured / order.paid / payment.failed"""

    async def handle_payment_captured(
        self, connection: AsyncConnection, payload: RazorpayWebhookPayload
    ) -> HandlerOutcome:
        """
        Mark the order's payment completed.

        Also serves order.paid, which may carry only the order entity.
        """
        order_id = payload.order_id
        if not order_id:
            return HandlerOutcome.failure("No payment entity in payload")

        payment = payload.payment_entity
        method = payment.method.upper() if payment and payment.method else None
        now = utcnow()
        terminal = [status.value for status in TERMINAL_PAYMENT_STATUSES]

        values = {
            "status": PaymentStatus.COMPLETED.value,
            "completed_at": now,
            "updated_at": now,
        }
        if payment is not None:
            values["razorpay_payment_id"] = payment.id
            values["payment_method"] = method

        result = await connection.execute(
            update(payments)
            .where(payments.c.razorpay_order_id == order_id)
            .where(payments.c.status.not_in(terminal))
            .values(**values)
            .returning(payments.c.id)
        )
        updated_id = result.scalar_one_or_none()

        if updated_id is not None:
            logger.info(
                "Payment marked completed",
                extra={
                    "payment_id": updated_id,
                    "razorpay_order_id": order_id,
                    "razorpay_payment_id": values.get("razorpay_payment_id"),
                    "payment_method": method,
                },
            )
            return HandlerOutcome(success=True, payment_id=updated_id, transitioned=True)

        # Zero rows: the payment is already terminal or does not exist
        existing_id = await _find_payment_id(connection, order_id)
        if existing_id is None:
            logger.warning(
                "No payment matches captured order",
                extra={"razorpay_order_id": order_id},
            )
            return HandlerOutcome.failure(f"Payment not found for order {order_id}")

        logger.info(
            "Payment already terminal, capture is a no-op",
            extra={"payment_id": existing_id, "razorpay_order_id": order_id},
        )
        return HandlerOutcome(success=True, payment_id=existing_id)

    async def handle_payment_failed(
        self, connection: AsyncConnection, payload: RazorpayWebhookPayload
    ) -> HandlerOutcome:
        """
        Mark the order's payment failed unless it already succeeded.

        A failed event for an earlier attempt can arrive after a retry was
        captured; completed and refunded payments are never regressed.
        """
        payment = payload.payment_entity
        if payment is None or not payment.order_id:
            return HandlerOutcome.failure("No payment entity in payload")

        order_id = payment.order_id
        failure_reason = (
            payment.error_description or payment.error_code or DEFAULT_FAILURE_REASON
        )
        terminal = [status.value for status in TERMINAL_PAYMENT_STATUSES]

        result = await connection.execute(
            update(payments)
            .where(payments.c.razorpay_order_id == order_id)
            .where(payments.c.status.not_in(terminal))
            .values(
                status=PaymentStatus.FAILED.value,
                failure_reason=failure_reason,
                updated_at=utcnow(),
            )
            .returning(payments.c.id)
        )
        updated_id = result.scalar_one_or_none()

        if updated_id is not None:
            logger.warning(
                "Payment marked failed",
                extra={
                    "payment_id": updated_id,
                    "razorpay_order_id": order_id,
                    "error_code": payment.error_code,
                    "failure_reason": failure_reason,
                },
            )
            return HandlerOutcome(success=True, payment_id=updated_id, transitioned=True)

        # Already terminal or unknown order; neither is an error for a failure event
        existing_id = await _find_payment_id(connection, order_id)
        logger.info(
            "Failed event did not change payment",
            extra={"payment_id": existing_id, "razorpay_order_id": order_id},
        )
        return HandlerOutcome(success=True, payment_id=existing_id)

    async def handle_unrecognized(
        self, connection: AsyncConnection, payload: RazorpayWebhookPayload
    ) -> HandlerOutcome:
        """Acknowledge event types this service does not act on"""
        logger.info(
            f"Unhandled event type: {payload.event}",
            extra={"event_type": payload.event},
        )
        return HandlerOutcome(success=True)


# Global payment handler instance
payment_handler = PaymentHandler()
