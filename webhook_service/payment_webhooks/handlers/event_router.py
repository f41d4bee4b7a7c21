"""
Event Router

Dispatches a verified Razorpay event to its handler through an explicit
registry keyed by WebhookEventKind. Every kind, including UNRECOGNIZED,
has an entry, so dispatch never falls through silently.
"""

from typing import Awaitable, Callable, Dict, List

from sqlalchemy.ext.asyncio import AsyncConnection

from payment_webhooks.handlers.payment_handler import payment_handler
from payment_webhooks.models.payments import HandlerOutcome
from payment_webhooks.models.razorpay_events import RazorpayWebhookPayload, WebhookEventKind
from payment_webhooks.utils.logging_config import get_logger

logger = get_logger(__name__)

EventHandler = Callable[[AsyncConnection, RazorpayWebhookPayload], Awaitable[HandlerOutcome]]


EVENT_HANDLERS: Dict[WebhookEventKind, EventHandler] = {
    WebhookEventKind.PAYMENT_CAPTURED: payment_handler.handle_payment_captured,
    WebhookEventKind.ORDER_PAID: payment_handler.handle_payment_captured,
    WebhookEventKind.PAYMENT_FAILED: payment_handler.handle_payment_failed,
    WebhookEventKind.UNRECOGNIZED: payment_handler.handle_unrecognized,
}


class EventRouter:
    """Routes Razorpay events to handlers"""

    def __init__(self, handlers: Dict[WebhookEventKind, EventHandler] = EVENT_HANDLERS):
        missing = set(WebhookEventKind) - set(handlers)
        if missing:
            raise ValueError(
                f"No handler registered for event kinds: {sorted(k.value for k in missing)}"
            )
        self.handlers = handlers

    async def route_event(
        self, connection: AsyncConnection, payload: RazorpayWebhookPayload
    ) -> HandlerOutcome:
        """
        Run the handler for the payload's event kind on the given connection.

        Exceptions propagate so the enclosing transaction rolls back.
        """
        kind = payload.kind
        handler = self.handlers[kind]

        logger.info(
            f"Routing event: {payload.event}",
            extra={
                "event_type": payload.event,
                "event_kind": kind.value,
                "handler": handler.__name__,
                "razorpay_order_id": payload.order_id,
            },
        )

        outcome = await handler(connection, payload)

        if not outcome.success:
            logger.warning(
                f"Handler {handler.__name__} could not apply {payload.event}: {outcome.error}",
                extra={
                    "event_type": payload.event,
                    "handler": handler.__name__,
                    "error": outcome.error,
                },
            )
        return outcome


def get_supported_event_types() -> List[str]:
    """Provider event names with a dedicated handler"""
    return [kind.value for kind in EVENT_HANDLERS if kind is not WebhookEventKind.UNRECOGNIZED]
