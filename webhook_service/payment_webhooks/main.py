"""
FastAPI Application

Application factory for the client portal payment webhook service.
Provides the Razorpay webhook endpoint, the webhook audit review API and
health checks.
"""

from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from payment_webhooks.config import Settings, get_settings
from payment_webhooks.handlers.event_router import get_supported_event_types
from payment_webhooks.routes import admin, health, webhook
from payment_webhooks.services.database import Database
from payment_webhooks.services.notification_service import NotificationPublisher
from payment_webhooks.services.razorpay_service import RazorpayService
from payment_webhooks.services.sqs_service import SQSService
from payment_webhooks.services.webhook_log_service import WebhookLogService
from payment_webhooks.services.webhook_processor import WebhookProcessor
from payment_webhooks.utils.exceptions import WebhookServiceException
from payment_webhooks.utils.logging_config import (
    clear_correlation_id,
    get_logger,
    set_correlation_id,
    setup_logging,
)

logger = get_logger(__name__)


@dataclass
class ServiceContainer:
    """Services shared by the request handlers, stored on app.state"""

    settings: Settings
    database: Database
    razorpay: RazorpayService
    log_service: WebhookLogService
    sqs: Optional[SQSService]
    publisher: NotificationPublisher
    processor: WebhookProcessor


def build_services(
    settings: Settings,
    database: Optional[Database] = None,
    sqs_service: Optional[SQSService] = None,
) -> ServiceContainer:
    database = database or Database.from_settings(settings)
    if sqs_service is None and settings.notifications_enabled:
        sqs_service = SQSService(settings)

    razorpay = RazorpayService(settings.razorpay_webhook_secret)
    log_service = WebhookLogService(database)
    publisher = NotificationPublisher(sqs_service)

    return ServiceContainer(
        settings=settings,
        database=database,
        razorpay=razorpay,
        log_service=log_service,
        sqs=sqs_service,
        publisher=publisher,
        processor=WebhookProcessor(
            database=database,
            razorpay=razorpay,
            log_service=log_service,
            publisher=publisher,
        ),
    )


def create_app(
    settings: Optional[Settings] = None,
    database: Optional[Database] = None,
    sqs_service: Optional[SQSService] = None,
) -> FastAPI:
    """
    Build the FastAPI application.

    Args:
        settings: Settings to use; defaults to get_settings()
        database: Pre-built Database (tests pass one bound to a temp file)
        sqs_service: Pre-built notification queue client
    """
    settings = settings or get_settings()
    setup_logging(log_level=settings.log_level)
    services = build_services(settings, database=database, sqs_service=sqs_service)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        logger.info(
            f"Starting {settings.app_name} v{settings.app_version}",
            extra={"environment": settings.environment},
        )

        if not services.razorpay.is_configured:
            logger.error("RAZORPAY_WEBHOOK_SECRET is not set; webhooks will be refused")

        if settings.database_auto_create:
            await services.database.create_tables()

        logger.info("Application startup complete")

        yield

        logger.info("Shutting down application...")
        try:
            await services.database.dispose()
        except Exception as e:
            logger.warning(f"Error disposing database engine: {e}")
        logger.info("Application shutdown complete")

    app = FastAPI(
        title=settings.app_name,
        version=settings.app_version,
        description="Razorpay payment webhooks and reconciliation for the client portal",
        docs_url="/docs" if settings.is_development else None,
        redoc_url="/redoc" if settings.is_development else None,
        lifespan=lifespan,
    )
    app.state.services = services

    # CORS middleware
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=settings.cors_allow_credentials,
        allow_methods=settings.cors_allow_methods,
        allow_headers=settings.cors_allow_headers,
    )

    @app.middleware("http")
    async def correlation_id_middleware(request: Request, call_next):
        """Add correlation ID to all requests for tracing"""
        correlation_id = set_correlation_id(request.headers.get("X-Correlation-ID"))
        try:
            response = await call_next(request)
        finally:
            clear_correlation_id()

        response.headers["X-Correlation-ID"] = correlation_id
        return response

    @app.exception_handler(WebhookServiceException)
    async def service_exception_handler(request: Request, exc: WebhookServiceException):
        logger.error(
            f"Service exception: {exc.message}",
            extra={"error": exc.to_dict()},
        )
        return JSONResponse(
            status_code=500,
            content={
                "error": exc.error_code,
                "message": exc.message,
                "details": exc.details,
            },
        )

    @app.exception_handler(Exception)
    async def general_exception_handler(request: Request, exc: Exception):
        logger.error(
            f"Unexpected exception: {exc}",
            extra={"error": str(exc), "type": type(exc).__name__},
        )
        return JSONResponse(
            status_code=500,
            content={
                "error": "INTERNAL_ERROR",
                "message": "An unexpected error occurred",
            },
        )

    app.include_router(webhook.router)
    app.include_router(admin.router)
    app.include_router(health.router)

    @app.get("/")
    async def root():
        """Root endpoint with API information"""
        return {
            "name": settings.app_name,
            "version": settings.app_version,
            "environment": settings.environment,
            "supported_events": get_supported_event_types(),
            "docs_url": "/docs" if settings.is_development else None,
        }

    return app


if __name__ == "__main__":
    import uvicorn

    local_settings = get_settings()
    uvicorn.run(
        "payment_webhooks.main:create_app",
        factory=True,
        host=local_settings.host,
        port=local_settings.port,
        reload=local_settings.is_development,
        log_level=local_settings.log_level.lower(),
    )
