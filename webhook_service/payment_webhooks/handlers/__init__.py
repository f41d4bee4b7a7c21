"""Event handlers for Razorpay webhook event kinds"""

from payment_webhooks.handlers.payment_handler import payment_handler

__all__ = [
    "payment_handler",
]
