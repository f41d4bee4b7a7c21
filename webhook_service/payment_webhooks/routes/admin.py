"""
Admin Review Endpoints

Read-only access to the webhook audit log so operators can find deliveries
that were rejected, failed, or could not be matched to a payment.
"""

import hmac
from typing import List, Optional

from fastapi import APIRouter, Depends, Header, HTTPException, Query, Request

from payment_webhooks.models.payments import WebhookLogEntry, WebhookLogPage, WebhookLogStatus
from payment_webhooks.utils.logging_config import get_logger

logger = get_logger(__name__)


async def require_admin_key(
    request: Request,
    x_admin_api_key: Optional[str] = Header(default=None, alias="X-Admin-Api-Key"),
) -> None:
    expected = request.app.state.services.settings.admin_api_key
    if not expected:
        raise HTTPException(status_code=503, detail="Admin API is not configured")
    if not x_admin_api_key or not hmac.compare_digest(
        x_admin_api_key.encode("utf-8"), expected.encode("utf-8")
    ):
        logger.warning("Rejected admin request with invalid API key")
        raise HTTPException(status_code=401, detail="Invalid admin API key")


router = APIRouter(
    prefix="/admin",
    tags=["admin"],
    dependencies=[Depends(require_admin_key)],
)


@router.get("/webhook-logs", response_model=WebhookLogPage)
async def list_webhook_logs(
    request: Request,
    status: Optional[WebhookLogStatus] = Query(default=None),
    order_id: Optional[str] = Query(default=None),
    event_id: Optional[str] = Query(default=None),
    limit: int = Query(default=50, ge=1, le=200),
    offset: int = Query(default=0, ge=0),
):
    """Webhook deliveries, newest first"""
    entries = await request.app.state.services.log_service.list_entries(
        status=status,
        order_id=order_id,
        event_id=event_id,
        limit=limit,
        offset=offset,
    )
    return WebhookLogPage(items=entries, limit=limit, offset=offset)


@router.get("/payments/{payment_id}/webhook-logs", response_model=List[WebhookLogEntry])
async def list_payment_webhook_logs(payment_id: str, request: Request):
    """Every delivery resolved to one payment, oldest first"""
    return await request.app.state.services.log_service.list_for_payment(payment_id)
