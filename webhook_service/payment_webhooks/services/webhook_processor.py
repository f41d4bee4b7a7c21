"""
Webhook Processor

Orchestrates one Razorpay delivery end to end:

    verify signature -> parse -> idempotency check -> transaction
    (dispatch handler + audit entry) -> commit -> notification intent

Internal results stay precise (HandlerOutcome, exceptions). The mapping onto
the provider-facing HTTP contract happens only in ProcessingResult:
every accepted delivery is answered with 200 so Razorpay never retries a
delivery it cannot fix; 401 is reserved for signature failures, 400 for
malformed payloads and 500 for missing server configuration. The true
outcome of every delivery is recorded in payment_webhook_logs.
"""

import json
import time
from typing import Any, Dict, Optional

from pydantic import BaseModel, ValidationError

from payment_webhooks.handlers.event_router import EventRouter
from payment_webhooks.models.payments import HandlerOutcome, WebhookLogEntry, WebhookLogStatus
from payment_webhooks.models.razorpay_events import RazorpayWebhookPayload
from payment_webhooks.services.database import Database
from payment_webhooks.services.notification_service import NotificationPublisher, build_intent
from payment_webhooks.services.razorpay_service import RazorpayService, WebhookDelivery
from payment_webhooks.services.webhook_log_service import WebhookLogService
from payment_webhooks.utils.exceptions import (
    InvalidPayloadException,
    SignatureVerificationException,
    WebhookConfigurationException,
)
from payment_webhooks.utils.logging_config import get_logger

logger = get_logger(__name__)

SIGNATURE_FAILED_ERROR = "Signature verification failed"
DUPLICATE_DELIVERY_NOTE = "Duplicate delivery; event already processed"
UNKNOWN_EVENT = "unknown"


class ProcessingResult(BaseModel):
    """HTTP status and JSON body to return to the provider"""

    status_code: int = 200
    body: Dict[str, Any]

    @classmethod
    def acknowledged(cls, status: str, event: str, processed: bool) -> "ProcessingResult":
        return cls(body={"status": status, "event": event, "processed": processed})

    @classmethod
    def rejected(cls, status_code: int, error: str) -> "ProcessingResult":
        return cls(status_code=status_code, body={"error": error})


def _decode_body(raw_body: bytes) -> Any:
    """Parse the raw body as JSON; raises InvalidPayloadException"""
    try:
        return json.loads(raw_body)
    except (UnicodeDecodeError, ValueError, RecursionError) as e:
        raise InvalidPayloadException("Invalid JSON payload", details={"error": str(e)}) from e


def _best_effort_fields(raw_body: bytes) -> Dict[str, Any]:
    """
    Audit fields for a delivery that was rejected before validation.

    Pulls what it can out of the body without trusting it.
    """
    try:
        document = json.loads(raw_body)
    except (UnicodeDecodeError, ValueError, RecursionError):
        return {
            "event": UNKNOWN_EVENT,
            "payload": {"raw": raw_body.decode("utf-8", errors="replace")},
        }

    if not isinstance(document, dict):
        return {"event": UNKNOWN_EVENT, "payload": {"raw": document}}

    payment = document
    for key in ("payload", "payment", "entity"):
        payment = payment.get(key) if isinstance(payment, dict) else None
    if not isinstance(payment, dict):
        payment = {}
    event = document.get("event")
    return {
        "event": event if isinstance(event, str) and event else UNKNOWN_EVENT,
        "payload": document,
        "razorpay_order_id": payment.get("order_id") if isinstance(payment.get("order_id"), str) else None,
        "razorpay_payment_id": payment.get("id") if isinstance(payment.get("id"), str) else None,
    }


class WebhookProcessor:
    """Runs the verified, idempotent, transactional webhook pipeline"""

    def __init__(
        self,
        database: Database,
        razorpay: RazorpayService,
        log_service: WebhookLogService,
        publisher: NotificationPublisher,
        router: Optional[EventRouter] = None,
    ):
        self.database = database
        self.razorpay = razorpay
        self.log_service = log_service
        self.publisher = publisher
        self.router = router or EventRouter()

    async def process(self, delivery: WebhookDelivery) -> ProcessingResult:
        started = time.monotonic()

        # Trust boundary: nothing is read from the database before this passes
        try:
            verified = self.razorpay.verify_webhook_signature(
                delivery.raw_body, delivery.signature
            )
        except WebhookConfigurationException as e:
            logger.error(
                f"Webhook not configured: {e.message}",
                extra={"error": e.to_dict()},
            )
            return ProcessingResult.rejected(500, "Webhook not configured")

        if not verified:
            return await self._reject_signature(delivery)

        try:
            document = _decode_body(delivery.raw_body)
            payload = RazorpayWebhookPayload.model_validate(document)
        except (InvalidPayloadException, ValidationError) as e:
            return await self._reject_payload(delivery, e)

        logger.info(
            "Received Razorpay webhook",
            extra={
                "event_type": payload.event,
                "event_id": delivery.event_id,
                "razorpay_order_id": payload.order_id,
                "razorpay_payment_id": payload.razorpay_payment_id,
                "ip_address": delivery.ip_address,
            },
        )

        if delivery.event_id and await self._already_processed(delivery.event_id):
            await self.log_service.try_record_standalone(
                self._log_entry(
                    delivery,
                    payload,
                    document,
                    status=WebhookLogStatus.RECEIVED,
                    error=DUPLICATE_DELIVERY_NOTE,
                )
            )
            logger.info(
                "Event already processed",
                extra={"event_id": delivery.event_id, "event_type": payload.event},
            )
            return ProcessingResult.acknowledged("already_processed", payload.event, False)

        try:
            outcome = await self._apply(delivery, payload, document)
        except Exception as e:
            logger.error(
                f"Webhook processing error: {e}",
                exc_info=True,
                extra={"event_id": delivery.event_id, "event_type": payload.event},
            )
            await self.log_service.try_record_standalone(
                self._log_entry(
                    delivery,
                    payload,
                    document,
                    status=WebhookLogStatus.FAILED,
                    error=str(e) or type(e).__name__,
                )
            )
            return ProcessingResult.acknowledged("error", payload.event, False)

        intent = build_intent(payload, outcome)
        if intent is not None:
            await self.publisher.publish(intent)

        logger.info(
            "Webhook processed",
            extra={
                "event_id": delivery.event_id,
                "event_type": payload.event,
                "success": outcome.success,
                "payment_id": outcome.payment_id,
                "transitioned": outcome.transitioned,
                "duration_ms": round((time.monotonic() - started) * 1000, 2),
            },
        )
        return ProcessingResult.acknowledged("ok", payload.event, outcome.success)

    async def _already_processed(self, event_id: str) -> bool:
        """
        Idempotency lookup that never blocks processing.

        If the lookup itself fails the delivery is processed anyway: a
        duplicate attempt is neutralised by the conditional updates, a
        dropped payment confirmation is not recoverable.
        """
        try:
            return await self.log_service.is_event_processed(event_id)
        except Exception as e:
            logger.warning(
                f"Idempotency check failed, continuing: {e}",
                extra={"event_id": event_id, "error": str(e)},
            )
            return False

    async def _apply(
        self,
        delivery: WebhookDelivery,
        payload: RazorpayWebhookPayload,
        document: Dict[str, Any],
    ) -> HandlerOutcome:
        """Handler dispatch and audit entry in one transaction"""
        async with self.database.transaction() as connection:
            outcome = await self.router.route_event(connection, payload)
            await self.log_service.record(
                connection,
                self._log_entry(
                    delivery,
                    payload,
                    document,
                    status=WebhookLogStatus.PROCESSED if outcome.success else WebhookLogStatus.FAILED,
                    error=outcome.error,
                    payment_id=outcome.payment_id,
                ),
            )
        return outcome

    async def _reject_signature(self, delivery: WebhookDelivery) -> ProcessingResult:
        error = SignatureVerificationException(SIGNATURE_FAILED_ERROR)
        logger.error(
            error.message,
            extra={
                "error": error.to_dict(),
                "event_id": delivery.event_id,
                "ip_address": delivery.ip_address,
                "signature_present": bool(delivery.signature),
            },
        )
        await self.log_service.try_record_standalone(
            WebhookLogEntry(
                **_best_effort_fields(delivery.raw_body),
                razorpay_event_id=delivery.event_id,
                signature=delivery.signature,
                signature_verified=False,
                status=WebhookLogStatus.FAILED,
                error=SIGNATURE_FAILED_ERROR,
                ip_address=delivery.ip_address,
            )
        )
        return ProcessingResult.rejected(401, "Invalid signature")

    async def _reject_payload(self, delivery: WebhookDelivery, error: Exception) -> ProcessingResult:
        logger.error(
            "Failed to parse webhook payload",
            extra={"event_id": delivery.event_id, "error": str(error)},
        )
        await self.log_service.try_record_standalone(
            WebhookLogEntry(
                **_best_effort_fields(delivery.raw_body),
                razorpay_event_id=delivery.event_id,
                signature=delivery.signature,
                signature_verified=True,
                status=WebhookLogStatus.FAILED,
                error="Invalid JSON payload",
                ip_address=delivery.ip_address,
            )
        )
        return ProcessingResult.rejected(400, "Invalid JSON payload")

    @staticmethod
    def _log_entry(
        delivery: WebhookDelivery,
        payload: RazorpayWebhookPayload,
        document: Dict[str, Any],
        status: WebhookLogStatus,
        error: Optional[str] = None,
        payment_id: Optional[str] = None,
    ) -> WebhookLogEntry:
        return WebhookLogEntry(
            event=payload.event,
            razorpay_event_id=delivery.event_id,
            razorpay_order_id=payload.order_id,
            razorpay_payment_id=payload.razorpay_payment_id,
            payload=document,
            signature=delivery.signature,
            signature_verified=True,
            status=status,
            error=error,
            ip_address=delivery.ip_address,
            payment_id=payment_id,
        )
