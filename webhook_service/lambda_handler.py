"""
AWS Lambda Handler for the Payment Webhook API

Lambda entry point using the Mangum adapter to translate API Gateway events
into ASGI requests for the FastAPI application.
"""

import os

from mangum import Mangum

from payment_webhooks.main import create_app
from payment_webhooks.utils.logging_config import get_logger

logger = get_logger(__name__)


app = create_app()

# api_gateway_base_path "/" lets Mangum strip stage prefixes
handler = Mangum(app, lifespan="off", api_gateway_base_path="/")


def lambda_handler(event, context):
    """
    AWS Lambda handler function with invocation logging.

    Args:
        event: API Gateway event containing HTTP request details
        context: Lambda context with runtime information

    Returns:
        API Gateway response format
    """
    # Role credentials start with ASIA; AKIA means long-term user keys
    aws_key = os.getenv("AWS_ACCESS_KEY_ID", "")
    if aws_key and (aws_key == "test" or aws_key.startswith("AKIA")):
        logger.warning(
            "Non-temporary AWS credentials detected in Lambda, "
            f"key prefix: {aws_key[:4]}..."
        )

    request_context = event.get("requestContext", {})
    logger.info(
        "Lambda invocation started",
        extra={
            "request_id": context.aws_request_id,
            "function_name": context.function_name,
            "remaining_time": context.get_remaining_time_in_millis(),
            "stage": request_context.get("stage"),
            "http_method": request_context.get("http", {}).get("method"),
            "raw_path": event.get("rawPath"),
        },
    )

    try:
        response = handler(event, context)
    except Exception as e:
        logger.error(
            f"Lambda invocation failed: {e}",
            extra={
                "request_id": context.aws_request_id,
                "error": str(e),
                "error_type": type(e).__name__,
            },
        )
        raise

    logger.info(
        "Lambda invocation completed",
        extra={
            "request_id": context.aws_request_id,
            "status_code": response.get("statusCode"),
        },
    )
    return response


__all__ = ["app", "handler", "lambda_handler"]
