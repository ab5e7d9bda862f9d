"""
Webhook-specific exceptions.

Exception Hierarchy:
    WebhookError (base)
    ├── SignatureVerificationError - Inbound signature/timestamp rejected (401)
    ├── DeliveryCancelledError - A delivery chain was cancelled mid-flight
    └── WebhookConfigurationError - Signing secret or service token missing

Usage:
    from webhooks.exceptions import SignatureVerificationError
    from webhooks.signing import verify

    try:
        verify(body, signature, timestamp, secret)
    except SignatureVerificationError as e:
        return Response({"error": e.reason.value}, status=401)
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from core.exceptions import BaseApplicationError, ConfigurationError

if TYPE_CHECKING:
    from typing import Any

    from webhooks.signing import VerifyError


class WebhookError(BaseApplicationError):
    """Base exception for webhook operations."""

    default_error_code: str = "WEBHOOK_ERROR"


class SignatureVerificationError(WebhookError):
    """
    Raised when an inbound webhook fails verification.

    The ``reason`` is one of VerifyError and doubles as the error code
    returned to the sender. Never retried by the receiver.
    """

    default_error_code: str = "invalid_signature"

    def __init__(
        self,
        reason: VerifyError,
        message: str | None = None,
        details: dict[str, Any] | None = None,
    ):
        self.reason = reason
        super().__init__(
            message or f"Webhook verification failed: {reason.value}",
            error_code=reason.value,
            details=details,
        )


class DeliveryCancelledError(WebhookError):
    """
    Raised inside a delivery chain when cancellation was requested.

    The chain records the interrupted attempt as a retryable failure and
    dead-letters the delivery.
    """

    default_error_code: str = "DELIVERY_CANCELLED"


class WebhookConfigurationError(WebhookError, ConfigurationError):
    """Raised when a signing secret or service token is not configured."""

    default_error_code: str = "configuration_error"
