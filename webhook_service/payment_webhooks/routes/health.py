"""
Health Check Endpoints

Liveness and readiness of the webhook service and its dependencies.
"""

from datetime import datetime, timezone
from typing import Any, Dict

from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse

from payment_webhooks.utils.logging_config import get_logger

logger = get_logger(__name__)

router = APIRouter(tags=["health"])


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


@router.get("/health")
async def health_check(request: Request):
    """Returns 200 if the application is running"""
    settings = request.app.state.services.settings
    return JSONResponse(
        status_code=200,
        content={
            "status": "healthy",
            "timestamp": _now(),
            "version": settings.app_version,
        },
    )


@router.get("/health/ready")
async def readiness_check(request: Request):
    """
    Readiness check.

    Verifies the database answers and, when notifications are enabled, that
    the notification queue is reachable. Also reports whether the webhook
    secret is configured, since the endpoint refuses every delivery without it.
    """
    services = request.app.state.services
    dependencies: Dict[str, Any] = {}
    overall_healthy = True

    try:
        await services.database.ping()
        dependencies["database"] = {
            "status": "healthy",
            "backend": services.database.engine.dialect.name,
        }
    except Exception as e:
        logger.error(f"Database readiness check failed: {e}")
        dependencies["database"] = {"status": "unhealthy", "error": str(e)}
        overall_healthy = False

    if services.publisher.enabled:
        try:
            attributes = await services.sqs.get_queue_attributes()
            dependencies["notification_queue"] = {
                "status": "healthy",
                "approximate_messages": attributes.get(
                    "ApproximateNumberOfMessages", "unknown"
                ),
            }
        except Exception as e:
            logger.error(f"Notification queue readiness check failed: {e}")
            dependencies["notification_queue"] = {"status": "unhealthy", "error": str(e)}
            overall_healthy = False
    else:
        dependencies["notification_queue"] = {"status": "disabled"}

    if services.razorpay.is_configured:
        dependencies["webhook_secret"] = {"status": "healthy"}
    else:
        dependencies["webhook_secret"] = {"status": "unhealthy", "error": "not configured"}
        overall_healthy = False

    return JSONResponse(
        status_code=200 if overall_healthy else 503,
        content={
            "status": "ready" if overall_healthy else "not_ready",
            "timestamp": _now(),
            "dependencies": dependencies,
        },
    )


@router.get("/health/live")
async def liveness_check():
    """Returns 200 if the application is alive"""
    return JSONResponse(
        status_code=200,
        content={"status": "alive", "timestamp": _now()},
    )
