"""
Celery tasks for recurring billing.

process_due_subscriptions runs daily from celery-beat (see
CELERY_BEAT_SCHEDULE). Overlapping runs are harmless: the second one finds
the run lock held and returns ``skipped``.
"""

from __future__ import annotations

import logging

from celery import shared_task
from django.utils.dateparse import parse_date

from billing.exceptions import LockAcquisitionError
from billing.services import BillingReconciler, SubscriptionLedger

logger = logging.getLogger(__name__)


@shared_task(bind=True)
def process_due_subscriptions(self, run_date: str | None = None) -> dict:
    """
    Charge every due subscription and expire ended cancellations.

    Args:
        run_date: ISO date to bill for (defaults to today, local time)

    Returns:
        Dict with:
        - status: "completed", "skipped" (run lock held) or "failed"
        - the reconciliation summary when completed
    """
    today = parse_date(run_date) if run_date else None

    logger.info(
        "Starting billing reconciliation",
        extra={"task_id": self.request.id, "run_date": run_date},
    )

    try:
        summary = BillingReconciler().run(today=today)
    except LockAcquisitionError:
        logger.info(
            "Billing reconciliation skipped - another run in progress",
            extra={"task_id": self.request.id},
        )
        return {
            "status": "skipped",
            "reason": "Another billing run is in progress",
        }
    except Exception as e:
        logger.exception(
            f"Unexpected error during billing reconciliation: {e}",
            extra={"task_id": self.request.id},
        )
        return {
            "status": "failed",
            "error": str(e),
            "error_code": "UNEXPECTED_ERROR",
        }

    return {"status": "completed", **summary.to_dict()}


@shared_task(bind=True)
def resync_failure_counter(self, subscription_id: str) -> dict:
    """Recompute consecutive_failures for one subscription from its ledger."""
    count = SubscriptionLedger.resync_counter(subscription_id)
    return {"subscription_id": subscription_id, "consecutive_failures": count}
