"""
AWS SQS Service

Queue operations for the notification outbox: the webhook endpoint
publishes notification intents after commit and the notification worker
consumes them.
"""

import json
from typing import Any, Dict, Optional

import aioboto3
from botocore.config import Config
from botocore.exceptions import ClientError

from payment_webhooks.config import Settings
from payment_webhooks.utils.exceptions import QueueException
from payment_webhooks.utils.logging_config import get_logger

logger = get_logger(__name__)


class SQSService:
    """AWS SQS queue operations service"""

    def __init__(self, settings: Settings, queue_url: Optional[str] = None):
        self.session = aioboto3.Session(
            aws_access_key_id=settings.aws_access_key_id,
            aws_secret_access_key=settings.aws_secret_access_key,
            region_name=settings.aws_region,
        )
        self.endpoint_url = settings.aws_endpoint_url if not settings.is_lambda else None
        self.queue_url = queue_url or settings.notification_queue_url
        # Publishing runs inside the webhook request; keep it short
        self.client_config = Config(
            connect_timeout=settings.sqs_connect_timeout,
            read_timeout=settings.sqs_read_timeout,
            retries={"max_attempts": settings.sqs_max_attempts, "mode": "standard"},
        )

    async def send_message(
        self,
        message_body: Dict[str, Any],
        message_attributes: Optional[Dict[str, Any]] = None,
        delay_seconds: int = 0,
    ) -> Dict[str, Any]:
        """
        Send a message to the SQS queue.

        Args:
            message_body: Message body as dictionary (will be JSON serialized)
            message_attributes: Optional string message attributes
            delay_seconds: Delay before message becomes available (0-900)

        Returns:
            SQS response with MessageId

        Raises:
            QueueException: If the queue is not configured or the send fails
        """
        if not self.queue_url:
            raise QueueException("Queue URL is not configured")

        attributes = {
            key: {"StringValue": str(value), "DataType": "String"}
            for key, value in (message_attributes or {}).items()
        }

        try:
            async with self.session.client(
                "sqs", endpoint_url=self.endpoint_url, config=self.client_config
            ) as sqs:
                response = await sqs.send_message(
                    QueueUrl=self.queue_url,
                    MessageBody=json.dumps(message_body, default=str),
                    MessageAttributes=attributes,
                    DelaySeconds=delay_seconds,
                )
        except ClientError as e:
            error_code = e.response.get("Error", {}).get("Code", "Unknown")
            logger.error(
                f"Failed to send message to SQS: {error_code}",
                extra={"error": str(e), "queue_url": self.queue_url},
            )
            raise QueueException(
                f"Failed to send message to queue: {error_code}",
                details={"error": str(e)},
            ) from e
        except Exception as e:
            logger.error(f"Unexpected error sending message to SQS: {e}")
            raise QueueException(f"Unexpected error: {e}") from e

        logger.info(
            "Message sent to SQS successfully",
            extra={"message_id": response.get("MessageId"), "queue_url": self.queue_url},
        )
        return response

    async def get_queue_attributes(self) -> Dict[str, Any]:
        """
        Get queue attributes (e.g. approximate message count).

        Raises:
            QueueException: If the queue is not configured or the call fails
        """
        if not self.queue_url:
            raise QueueException("Queue URL is not configured")

        try:
            async with self.session.client(
                "sqs", endpoint_url=self.endpoint_url, config=self.client_config
            ) as sqs:
                response = await sqs.get_queue_attributes(
                    QueueUrl=self.queue_url,
                    AttributeNames=["ApproximateNumberOfMessages"],
                )
        except ClientError as e:
            error_code = e.response.get("Error", {}).get("Code", "Unknown")
            logger.error(f"Failed to get queue attributes: {error_code}")
            raise QueueException(
                f"Failed to get queue attributes: {error_code}",
                details={"error": str(e)},
            ) from e

        return response.get("Attributes", {})
