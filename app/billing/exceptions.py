"""
Billing-specific exceptions.

Exception Hierarchy:
    BillingError (base)
    └── GatewayConfigurationError - Gateway credentials missing (also a ConfigurationError)

    LockAcquisitionError - Redis lock held by another run (inherits ConflictError)
    StaleRecordError - Optimistic locking conflict (inherits ConflictError)

Gateway declines, 5xx answers and network failures are not exceptions; the
gateway client returns them as failed ChargeResults so they land in the
ledger.

Usage:
    from billing.exceptions import LockAcquisitionError

    try:
        summary = BillingReconciler().run()
    except LockAcquisitionError:
        return {"status": "skipped", "reason": "already_running"}
"""

from core.exceptions import BaseApplicationError, ConfigurationError, ConflictError


class BillingError(BaseApplicationError):
    """Base exception for billing operations."""

    default_error_code: str = "BILLING_ERROR"


class GatewayConfigurationError(BillingError, ConfigurationError):
    """Raised when BILLING_GATEWAY_SECRET_KEY or the API URL is not set."""

    default_error_code: str = "GATEWAY_NOT_CONFIGURED"


class StaleRecordError(ConflictError):
    """
    Raised when a subscription was modified by another process.

    The caller's snapshot is outdated; reload and re-check before retrying.
    """

    default_error_code: str = "STALE_RECORD"


class LockAcquisitionError(ConflictError):
    """
    Raised when a distributed lock cannot be acquired.

    The reconciliation run and each subscription are guarded by a lock; a
    held lock means another worker is already doing the work.
    """

    default_error_code: str = "LOCK_ACQUISITION_FAILED"
