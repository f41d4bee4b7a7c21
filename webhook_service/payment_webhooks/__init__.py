"""
Client Portal Payment Webhooks

Receives Razorpay webhooks for the client portal, verifies them, applies
idempotent payment state transitions and keeps an audit trail of every
delivery.
"""

__version__ = "1.0.0"
