"""
Custom Exception Classes

Application-specific exceptions. Internal code raises these with precise
error codes; only the webhook endpoint decides how they map onto the HTTP
contract with the payment provider.
"""

from typing import Any, Dict, Optional


class WebhookServiceException(Exception):
    """Base exception for all webhook service errors"""

    def __init__(
        self,
        message: str,
        error_code: str = "WEBHOOK_SERVICE_ERROR",
        details: Optional[Dict[str, Any]] = None,
    ):
        self.message = message
        self.error_code = error_code
        self.details = details or {}
        super().__init__(self.message)

    def to_dict(self) -> Dict[str, Any]:
        """Convert exception to dictionary for logging/API responses"""
        return {
            "error_code": self.error_code,
            "message": self.message,
            "details": self.details,
        }


class WebhookConfigurationException(WebhookServiceException):
    """Server-side configuration is missing (e.g. no webhook secret)"""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message, error_code="CONFIG_ERROR", details=details)


class SignatureVerificationException(WebhookServiceException):
    """Webhook signature did not match the raw body"""

    def __init__(self, message: str = "Signature verification failed"):
        super().__init__(
            message,
            error_code="SIGNATURE_INVALID",
            details={"verification": "failed"},
        )


class InvalidPayloadException(WebhookServiceException):
    """Webhook body is not valid JSON or does not match the event schema"""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message, error_code="INVALID_PAYLOAD", details=details)


class DatabaseException(WebhookServiceException):
    """Relational store errors"""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message, error_code="DATABASE_ERROR", details=details)


class QueueException(WebhookServiceException):
    """SQS queue operation errors"""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message, error_code="QUEUE_ERROR", details=details)


class EmailDeliveryException(WebhookServiceException):
    """Outbound email provider errors"""

    def __init__(
        self,
        message: str,
        status_code: Optional[int] = None,
        details: Optional[Dict[str, Any]] = None,
    ):
        details = details or {}
        if status_code:
            details["status_code"] = status_code
        super().__init__(message, error_code="EMAIL_ERROR", details=details)


class RetryableException(WebhookServiceException):
    """Exception that can be retried"""

    def __init__(
        self,
        message: str,
        retry_count: int = 0,
        max_retries: int = 5,
        details: Optional[Dict[str, Any]] = None,
    ):
        details = details or {}
        details.update({"retry_count": retry_count, "max_retries": max_retries})
        super().__init__(message, error_code="RETRYABLE_ERROR", details=details)
