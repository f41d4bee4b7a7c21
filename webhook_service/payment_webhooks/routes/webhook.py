"""
Payment Provider Webhook Endpoint

POST /webhooks/{provider}. The raw body is read untouched for signature
verification before anything parses it.
"""

from fastapi import APIRouter, HTTPException, Request
from fastapi.responses import JSONResponse

from payment_webhooks.services.razorpay_service import PROVIDER_NAME
from payment_webhooks.utils.logging_config import get_correlation_id, get_logger

logger = get_logger(__name__)

router = APIRouter(prefix="/webhooks", tags=["webhooks"])

SUPPORTED_PROVIDERS = {PROVIDER_NAME}


@router.post("/{provider}")
async def provider_webhook(provider: str, request: Request):
    """
    Payment provider webhook endpoint.

    Razorpay expects an acknowledgement within a few seconds. Every accepted
    delivery gets a 200 whatever its outcome, including processing errors,
    so the provider does not retry; operators read the real outcome from
    the webhook audit log. Only signature failures (401), malformed payloads
    (400) and missing server configuration (500) return other statuses.
    """
    if provider.lower() not in SUPPORTED_PROVIDERS:
        raise HTTPException(status_code=404, detail=f"Unknown webhook provider: {provider}")

    services = request.app.state.services
    delivery = await services.razorpay.extract_webhook_data(request)
    result = await services.processor.process(delivery)

    logger.info(
        "Webhook response",
        extra={
            "provider": provider,
            "status_code": result.status_code,
            "event_id": delivery.event_id,
            "correlation_id": get_correlation_id(),
        },
    )
    return JSONResponse(status_code=result.status_code, content=result.body)
