"""
AWS Lambda Notification Worker

Consumes notification intents from the notification queue and sends the
corresponding payment emails.

Event Flow:
1. Razorpay webhook -> API Gateway -> Lambda (lambda_handler.py) -> payment
   transaction commits -> intent published to SQS
2. SQS triggers this worker Lambda
3. Worker loads the payment context -> renders the email -> Resend
"""

import asyncio
import json
import os
from typing import Any, Dict, List, Optional

from pydantic import ValidationError
from sqlalchemy import select

from payment_webhooks.config import Settings, get_settings
from payment_webhooks.models.payments import NotificationIntent
from payment_webhooks.models.tables import payments, projects, users
from payment_webhooks.services.database import Database
from payment_webhooks.services.email_service import (
    EmailService,
    format_amount,
    render_payment_failure_alert,
    render_payment_success_email,
)
from payment_webhooks.utils.logging_config import (
    clear_correlation_id,
    get_logger,
    set_correlation_id,
    setup_logging,
)

setup_logging(log_level=os.getenv("LOG_LEVEL", "INFO"))
logger = get_logger(__name__)


class PaymentNotFoundError(LookupError):
    """The payment named by an intent does not exist"""


def project_url(settings: Settings, project_id: Optional[str]) -> str:
    """Portal link for a project; the projects list when there is none"""
    base = f"{settings.portal_url.rstrip('/')}/projects"
    return f"{base}/{project_id}" if project_id else base


async def load_payment_context(database: Database, payment_id: str) -> Optional[Dict[str, Any]]:
    """
    Payment row joined with its project and client, if any.

    Returns:
        Mapping with payment fields plus project_number, client_email and
        client_name (None where the project or user is missing), or None if
        the payment does not exist
    """
    query = (
        select(
            payments.c.id,
            payments.c.amount,
            payments.c.currency,
            payments.c.payment_type,
            payments.c.status,
            payments.c.project_id,
            projects.c.project_number,
            users.c.email.label("client_email"),
            users.c.full_name.label("client_name"),
        )
        .select_from(
            payments.outerjoin(projects, payments.c.project_id == projects.c.id).outerjoin(
                users, projects.c.client_user_id == users.c.id
            )
        )
        .where(payments.c.id == payment_id)
    )
    async with database.connect() as connection:
        result = await connection.execute(query)
        row = result.first()
    return dict(row._mapping) if row is not None else None


async def deliver_notification(
    intent: NotificationIntent,
    database: Database,
    email_service: EmailService,
    settings: Settings,
) -> Dict[str, Any]:
    """
    Send the email owed for one intent.

    Raises:
        PaymentNotFoundError: If the payment no longer exists
        EmailDeliveryException: If the email provider cannot be reached
    """
    context = await load_payment_context(database, intent.payment_id)
    if context is None:
        raise PaymentNotFoundError(f"Payment {intent.payment_id} not found")

    if intent.kind == "payment_failed":
        message = render_payment_failure_alert(
            to=settings.admin_notification_email,
            order_id=intent.razorpay_order_id,
            payment_id=intent.payment_id,
            error_code=intent.error_code,
            error_description=intent.error_description,
        )
    else:
        if not context["client_email"]:
            logger.warning(
                "No client email for completed payment, skipping notification",
                extra={"payment_id": intent.payment_id, "project_id": context["project_id"]},
            )
            return {"status": "skipped", "payment_id": intent.payment_id}

        project_number = context["project_number"] or intent.razorpay_order_id
        message = render_payment_success_email(
            to=context["client_email"],
            client_name=context["client_name"] or "there",
            project_number=project_number,
            amount=format_amount(context["amount"], context["currency"]),
            payment_type=context["payment_type"],
            project_url=project_url(settings, context["project_id"]),
        )

    result = await email_service.send(message)
    return {
        "status": "sent",
        "payment_id": intent.payment_id,
        "kind": intent.kind,
        "provider_id": result.get("id"),
    }


async def process_sqs_records(
    records: List[Dict[str, Any]],
    database: Database,
    email_service: EmailService,
    settings: Settings,
) -> Dict[str, Any]:
    """
    Process a batch of SQS records.

    Returns:
        Batch results; failed records are listed by message id
    """
    results: Dict[str, Any] = {
        "successful": [],
        "failed": [],
        "total": len(records),
    }

    for record in records:
        message_id = record.get("messageId")
        try:
            intent = NotificationIntent.model_validate(json.loads(record["body"]))
            set_correlation_id(intent.correlation_id)
            result = await deliver_notification(intent, database, email_service, settings)
            results["successful"].append({"message_id": message_id, "result": result})

        except (ValueError, ValidationError, KeyError) as e:
            # Malformed messages never succeed on retry; drop them
            logger.error(
                f"Discarding malformed notification message: {e}",
                extra={"message_id": message_id, "error": str(e)},
            )
            results["successful"].append(
                {"message_id": message_id, "result": {"status": "discarded"}}
            )

        except Exception as e:
            logger.error(
                f"Failed to process notification: {e}",
                extra={
                    "message_id": message_id,
                    "error": str(e),
                    "error_type": type(e).__name__,
                },
            )
            results["failed"].append(
                {
                    "message_id": message_id,
                    "error": str(e),
                    "error_type": type(e).__name__,
                }
            )
        finally:
            clear_correlation_id()

    logger.info(
        "Batch processing complete",
        extra={
            "total": results["total"],
            "successful": len(results["successful"]),
            "failed": len(results["failed"]),
        },
    )
    return results


async def _run(records: List[Dict[str, Any]], settings: Settings) -> Dict[str, Any]:
    # The engine is bound to this invocation's event loop
    database = Database.from_settings(settings)
    try:
        return await process_sqs_records(
            records, database, EmailService.from_settings(settings), settings
        )
    finally:
        await database.dispose()


def lambda_handler(event: Dict[str, Any], context: Any) -> Dict[str, Any]:
    """
    AWS Lambda handler for SQS-triggered notification delivery.

    Failed records are reported in batchItemFailures so SQS retries only
    those; after the queue's max receives they move to the dead letter queue.
    """
    records = event.get("Records", [])
    logger.info(
        "Notification worker invoked",
        extra={
            "request_id": getattr(context, "aws_request_id", None),
            "record_count": len(records),
        },
    )

    if not records:
        logger.warning("No SQS records found in event")
        return {"batchItemFailures": []}

    try:
        results = asyncio.run(_run(records, get_settings()))
    except Exception as e:
        logger.error(
            f"Notification worker failed: {e}",
            extra={"error": str(e), "error_type": type(e).__name__},
        )
        return {
            "batchItemFailures": [
                {"itemIdentifier": record["messageId"]} for record in records
            ]
        }

    failed_ids = [failure["message_id"] for failure in results["failed"]]
    if failed_ids:
        logger.warning(
            "Partial batch failure",
            extra={"failed_count": len(failed_ids), "failed_message_ids": failed_ids},
        )

    return {"batchItemFailures": [{"itemIdentifier": message_id} for message_id in failed_ids]}
