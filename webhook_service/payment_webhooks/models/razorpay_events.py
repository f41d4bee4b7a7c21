"""
Razorpay Event Models

Pydantic models for Razorpay webhook payloads and the finite set of event
kinds this service acts on.
"""

from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field


class WebhookEventKind(str, Enum):
    """Event kinds the handler registry dispatches on"""

    PAYMENT_CAPTURED = "payment.captured"
    ORDER_PAID = "order.paid"
    PAYMENT_FAILED = "payment.failed"
    UNRECOGNIZED = "unrecognized"

    @classmethod
    def from_event_name(cls, event_name: Optional[str]) -> "WebhookEventKind":
        """Map a provider event name onto a kind, unknown names included"""
        for kind in cls:
            if kind is not cls.UNRECOGNIZED and kind.value == event_name:
                return kind
        return cls.UNRECOGNIZED


class RazorpayPaymentEntity(BaseModel):
    """Razorpay payment entity"""

    model_config = ConfigDict(extra="allow")

    id: str = Field(description="Razorpay payment ID (pay_...)")
    order_id: Optional[str] = Field(None, description="Razorpay order ID (order_...)")
    amount: Optional[int] = Field(None, description="Amount in smallest currency unit")
    currency: Optional[str] = Field(None, description="Three-letter ISO currency code")
    status: Optional[str] = Field(None, description="Payment status at the provider")
    method: Optional[str] = Field(None, description="Payment method (upi, card, ...)")
    captured: Optional[bool] = None
    error_code: Optional[str] = None
    error_description: Optional[str] = None


class RazorpayOrderEntity(BaseModel):
    """Razorpay order entity (present on order.paid)"""

    model_config = ConfigDict(extra="allow")

    id: str = Field(description="Razorpay order ID")
    amount: Optional[int] = None
    amount_paid: Optional[int] = None
    currency: Optional[str] = None
    status: Optional[str] = None


class RazorpayPaymentWrapper(BaseModel):
    entity: RazorpayPaymentEntity


class RazorpayOrderWrapper(BaseModel):
    entity: RazorpayOrderEntity


class RazorpayPayloadContainer(BaseModel):
    model_config = ConfigDict(extra="allow")

    payment: Optional[RazorpayPaymentWrapper] = None
    order: Optional[RazorpayOrderWrapper] = None


class RazorpayWebhookPayload(BaseModel):
    """
    Razorpay webhook body.

    Razorpay does not put the event identifier in the body; it arrives in
    the x-razorpay-event-id header instead.
    """

    model_config = ConfigDict(extra="allow")

    entity: str = Field(default="event")
    account_id: Optional[str] = None
    event: str = Field(description="Event name, e.g. payment.captured")
    contains: List[str] = Field(default_factory=list)
    payload: RazorpayPayloadContainer = Field(default_factory=RazorpayPayloadContainer)
    created_at: Optional[int] = Field(None, description="Unix timestamp")

    @property
    def kind(self) -> WebhookEventKind:
        return WebhookEventKind.from_event_name(self.event)

    @property
    def payment_entity(self) -> Optional[RazorpayPaymentEntity]:
        return self.payload.payment.entity if self.payload.payment else None

    @property
    def order_entity(self) -> Optional[RazorpayOrderEntity]:
        return self.payload.order.entity if self.payload.order else None

    @property
    def order_id(self) -> Optional[str]:
        """Order the event refers to; order.paid may only carry the order entity"""
        payment = self.payment_entity
        if payment and payment.order_id:
            return payment.order_id
        order = self.order_entity
        return order.id if order else None

    @property
    def razorpay_payment_id(self) -> Optional[str]:
        payment = self.payment_entity
        return payment.id if payment else None
