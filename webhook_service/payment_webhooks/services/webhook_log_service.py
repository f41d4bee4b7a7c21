"""
Webhook Log Service

Append-only audit trail of webhook deliveries (payment_webhook_logs) and
the idempotency lookups that read it.
"""

from typing import List, Optional

from sqlalchemy import insert, select
from sqlalchemy.ext.asyncio import AsyncConnection

from payment_webhooks.models.payments import WebhookLogEntry, WebhookLogStatus, utcnow
from payment_webhooks.models.tables import payment_webhook_logs
from payment_webhooks.services.database import Database
from payment_webhooks.utils.logging_config import get_logger

logger = get_logger(__name__)


class WebhookLogService:
    """Writes and reads webhook audit records"""

    def __init__(self, database: Database):
        self.database = database

    async def is_event_processed(self, event_id: str) -> bool:
        """
        Check whether a provider event has already been applied.

        Only signature-verified PROCESSED entries count: a forged request
        carrying a real event id must not be able to suppress the genuine
        delivery, and failed attempts remain eligible for redelivery.
        """
        query = (
            select(payment_webhook_logs.c.id)
            .where(payment_webhook_logs.c.razorpay_event_id == event_id)
            .where(payment_webhook_logs.c.signature_verified.is_(True))
            .where(payment_webhook_logs.c.status == WebhookLogStatus.PROCESSED.value)
            .limit(1)
        )
        async with self.database.connect() as connection:
            result = await connection.execute(query)
            return result.first() is not None

    async def record(self, connection: AsyncConnection, entry: WebhookLogEntry) -> str:
        """
        Insert an audit entry using the caller's connection.

        Inside a transaction the entry commits or rolls back together with
        the payment mutation it describes.
        """
        values = entry.model_dump()
        values["status"] = WebhookLogStatus(entry.status).value
        if values["status"] == WebhookLogStatus.PROCESSED.value and values["processed_at"] is None:
            values["processed_at"] = utcnow()

        await connection.execute(insert(payment_webhook_logs).values(**values))

        logger.info(
            "Webhook delivery logged",
            extra={
                "log_id": entry.id,
                "event_type": entry.event,
                "event_id": entry.razorpay_event_id,
                "log_status": values["status"],
                "payment_id": entry.payment_id,
            },
        )
        return entry.id

    async def record_standalone(self, entry: WebhookLogEntry) -> str:
        """Insert an audit entry in its own short transaction"""
        async with self.database.transaction() as connection:
            return await self.record(connection, entry)

    async def try_record_standalone(self, entry: WebhookLogEntry) -> Optional[str]:
        """
        Best-effort out-of-band write used after a rollback or a rejected
        delivery. A failure here is logged and reported as None.
        """
        try:
            return await self.record_standalone(entry)
        except Exception as e:
            logger.error(
                f"Failed to write webhook audit entry: {e}",
                exc_info=True,
                extra={
                    "event_type": entry.event,
                    "event_id": entry.razorpay_event_id,
                    "log_status": WebhookLogStatus(entry.status).value,
                },
            )
            return None

    async def list_entries(
        self,
        status: Optional[WebhookLogStatus] = None,
        order_id: Optional[str] = None,
        event_id: Optional[str] = None,
        limit: int = 50,
        offset: int = 0,
    ) -> List[WebhookLogEntry]:
        """Most recent audit entries first, optionally filtered"""
        query = select(payment_webhook_logs)
        if status is not None:
            query = query.where(payment_webhook_logs.c.status == WebhookLogStatus(status).value)
        if order_id:
            query = query.where(payment_webhook_logs.c.razorpay_order_id == order_id)
        if event_id:
            query = query.where(payment_webhook_logs.c.razorpay_event_id == event_id)
        query = (
            query.order_by(payment_webhook_logs.c.created_at.desc())
            .limit(limit)
            .offset(offset)
        )

        async with self.database.connect() as connection:
            result = await connection.execute(query)
            return [WebhookLogEntry.model_validate(dict(row._mapping)) for row in result]

    async def list_for_payment(self, payment_id: str) -> List[WebhookLogEntry]:
        """Every audit entry resolved to one payment, oldest first"""
        query = (
            select(payment_webhook_logs)
            .where(payment_webhook_logs.c.payment_id == payment_id)
            .order_by(payment_webhook_logs.c.created_at.asc())
        )
        async with self.database.connect() as connection:
            result = await connection.execute(query)
            return [WebhookLogEntry.model_validate(dict(row._mapping)) for row in result]
