"""
Base exception classes for application-wide error handling.

Every domain error in the project derives from BaseApplicationError so that
views, Celery tasks and the billing loop can report failures the same way:
a human-readable message, a machine-readable error code and optional details.

Exception Hierarchy:
    BaseApplicationError (base)
    ├── NotFoundError - Resource not found
    ├── ConflictError - State conflicts (locks, stale versions, append-only rows)
    └── ConfigurationError - Missing or invalid deployment settings

Usage:
    from core.exceptions import ConfigurationError

    if not settings.WEBHOOK_SECRET:
        raise ConfigurationError(
            "Webhook secret is not configured",
            details={"setting": "WEBHOOK_SECRET"},
        )

    try:
        ...
    except BaseApplicationError as e:
        return Response(e.to_dict(), status=400)
"""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from typing import Any


class BaseApplicationError(Exception):
    """
    Base exception for all application-specific errors.

    Attributes:
        message: Human-readable error description
        error_code: Machine-readable code for client-side handling
        details: Additional error context (ids, counters, upstream codes)
    """

    default_error_code: str = "APPLICATION_ERROR"

    def __init__(
        self,
        message: str,
        error_code: str | None = None,
        details: dict[str, Any] | None = None,
    ):
        self.message = message
        self.error_code = error_code or self.default_error_code
        self.details = details or {}
        super().__init__(message)

    def to_dict(self) -> dict[str, Any]:
        """
        Convert exception to dictionary for API responses and task results.

        Example:
            {
                "error": "Lock 'lock:billing:run' is already held",
                "error_code": "LOCK_ACQUISITION_FAILED",
                "details": {"key": "lock:billing:run"}
            }
        """
        result: dict[str, Any] = {
            "error": self.message,
            "error_code": self.error_code,
        }
        if self.details:
            result["details"] = self.details
        return result

    def __str__(self) -> str:
        return f"[{self.error_code}] {self.message}"

    def __repr__(self) -> str:
        return (
            f"{self.__class__.__name__}("
            f"message={self.message!r}, "
            f"error_code={self.error_code!r}, "
            f"details={self.details!r})"
        )


class NotFoundError(BaseApplicationError):
    """Raised when a requested record does not exist."""

    default_error_code: str = "NOT_FOUND"


class ConflictError(BaseApplicationError):
    """
    Raised when an operation conflicts with the current state of a record.

    Covers lock contention, optimistic locking failures and attempts to
    modify append-only records. HTTP 409 is the matching status when
    surfaced through the API.
    """

    default_error_code: str = "CONFLICT"


class ConfigurationError(BaseApplicationError):
    """
    Raised when a required setting is missing or invalid.

    Surfaced as HTTP 500 with code ``configuration_error`` by the webhook
    send endpoint; never retried.
    """

    default_error_code: str = "CONFIGURATION_ERROR"
