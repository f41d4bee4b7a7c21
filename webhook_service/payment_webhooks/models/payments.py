"""
Payment Domain Models

Status enums, the audit log record and the internal result types shared by
handlers, the processor and the notification worker.
"""

import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class PaymentStatus(str, Enum):
    """Payment lifecycle states"""

    PENDING = "pending"
    COMPLETED = "completed"
    FAILED = "failed"
    REFUNDED = "refunded"


# No transition out of these states through the webhook pipeline
TERMINAL_PAYMENT_STATUSES = frozenset({PaymentStatus.COMPLETED, PaymentStatus.REFUNDED})


class PaymentType(str, Enum):
    ADVANCE = "advance"
    BALANCE = "balance"


class WebhookLogStatus(str, Enum):
    """Resolution of one webhook delivery attempt"""

    RECEIVED = "RECEIVED"
    PROCESSED = "PROCESSED"
    FAILED = "FAILED"


class HandlerOutcome(BaseModel):
    """
    Result of applying one event to the payments table.

    transitioned is True only when this delivery changed the payment row,
    which is what downstream notifications key off.
    """

    success: bool
    payment_id: Optional[str] = None
    error: Optional[str] = None
    transitioned: bool = False

    @classmethod
    def failure(cls, error: str, payment_id: Optional[str] = None) -> "HandlerOutcome":
        return cls(success=False, error=error, payment_id=payment_id)


class WebhookLogEntry(BaseModel):
    """Append-only audit record of one inbound webhook delivery"""

    model_config = ConfigDict(use_enum_values=True)

    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    event: str
    razorpay_event_id: Optional[str] = None
    razorpay_order_id: Optional[str] = None
    razorpay_payment_id: Optional[str] = None
    payload: Dict[str, Any] = Field(default_factory=dict)
    signature: str = ""
    signature_verified: bool = False
    status: WebhookLogStatus
    error: Optional[str] = None
    ip_address: Optional[str] = None
    payment_id: Optional[str] = Field(
        None, description="Resolved internal payment identifier"
    )
    processed_at: Optional[datetime] = None
    created_at: datetime = Field(default_factory=utcnow)


class WebhookLogPage(BaseModel):
    """Page of audit entries returned by the admin API"""

    items: List[WebhookLogEntry]
    limit: int
    offset: int


class NotificationIntent(BaseModel):
    """
    Post-commit notification request.

    Published to the notification queue after the payment transaction has
    committed; the notification worker turns it into an email.
    """

    kind: Literal["payment_completed", "payment_failed"]
    payment_id: str
    razorpay_order_id: str
    razorpay_payment_id: Optional[str] = None
    error_code: Optional[str] = None
    error_description: Optional[str] = None
    correlation_id: Optional[str] = None
    occurred_at: datetime = Field(default_factory=utcnow)
