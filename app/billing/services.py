"""
Billing services: the payment ledger and the daily reconciliation loop.

SubscriptionLedger:
    Appends SubscriptionPayment rows and keeps Subscription.consecutive_failures
    in step with them inside the same transaction.

BillingReconciler:
    Charges every due subscription once, applies the outcome to the
    subscription state machine, then expires scheduled cancellations.

    1. Acquire the global ``billing:reconciliation`` lock (held → LockAcquisitionError)
    2. For each due subscription, sequentially:
       - take ``billing:subscription:<id>`` and re-check due-ness under
         select_for_update
       - free plan → extend the period without a gateway call
       - otherwise commit a pending order id, charge, then record success
         or failure (an unrecorded charge is resent with the same order id)
       - any exception becomes an ``error`` item; the loop continues
       - extend the run lock; if it was lost, stop and leave the rest
    3. Expire subscriptions whose scheduled cancellation has ended
    4. Return a ReconciliationSummary

BillingEventNotifier:
    Turns billing outcomes into webhook events (payment.succeeded, ...)
    queued after the surrounding transaction commits.

Usage:
    from billing.services import BillingReconciler

    summary = BillingReconciler().run()
    print(summary.to_dict())
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import date
from typing import TYPE_CHECKING

from django.conf import settings
from django.db import transaction
from django.db.models import F
from django.utils import timezone
from django_fsm import can_proceed

from billing.exceptions import LockAcquisitionError, StaleRecordError
from billing.gateway import PaymentGatewayClient
from billing.locks import RUN_LOCK_KEY, DistributedLock, check_version, subscription_lock_key
from billing.models import ActivityLog, Subscription, SubscriptionPayment
from billing.periods import advance
from billing.state_machines import ActivityAction, BillingOutcome, PaymentStatus
from core.services import BaseService
from webhooks.events import EventType
from webhooks.tasks import deliver_event

if TYPE_CHECKING:
    from collections.abc import Iterable
    from typing import Any
    from uuid import UUID

    from billing.gateway import ChargeResult

logger = logging.getLogger(__name__)


# =============================================================================
# Outcome → Event Mapping
# =============================================================================

OUTCOME_EVENTS: dict[str, EventType | None] = {
    BillingOutcome.EXTENDED_FREE: EventType.SUBSCRIPTION_UPDATED,
    BillingOutcome.SUCCESS: EventType.PAYMENT_SUCCEEDED,
    BillingOutcome.FAILED: EventType.PAYMENT_FAILED,
    BillingOutcome.SKIPPED: None,
    BillingOutcome.ERROR: None,
}

_unmapped = set(BillingOutcome.values) - set(OUTCOME_EVENTS)
if _unmapped:
    raise ImportError(f"Billing outcomes without an event mapping: {sorted(_unmapped)}")


def build_order_id(subscription_id: UUID) -> str:
    """Gateway order id: ``sub_<first 8 hex of id>_<epoch ms>``."""
    epoch_ms = int(timezone.now().timestamp() * 1000)
    return f"sub_{subscription_id.hex[:8]}_{epoch_ms}"


def log_activity(
    subscription: Subscription,
    action: str,
    metadata: dict[str, Any] | None = None,
) -> ActivityLog:
    return ActivityLog.objects.create(
        user_id=subscription.user_id,
        action=action,
        entity_type="subscription",
        entity_id=subscription.id,
        metadata=metadata or {},
    )


# =============================================================================
# Result Types
# =============================================================================


@dataclass
class ReconciliationItem:
    subscription_id: str
    status: str
    order_id: str | None = None
    error: str | None = None
    suspended: bool = False

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "subscription_id": self.subscription_id,
            "status": self.status,
            "suspended": self.suspended,
        }
        if self.order_id:
            data["order_id"] = self.order_id
        if self.error:
            data["error"] = self.error
        return data


@dataclass
class ReconciliationSummary:
    run_date: date
    results: list[ReconciliationItem] = field(default_factory=list)
    expired: list[str] = field(default_factory=list)

    @property
    def processed(self) -> int:
        return len(self.results)

    def count(self, status: str) -> int:
        return sum(1 for item in self.results if item.status == status)

    def to_dict(self) -> dict[str, Any]:
        return {
            "run_date": self.run_date.isoformat(),
            "processed": self.processed,
            "results": [item.to_dict() for item in self.results],
            "expired": list(self.expired),
        }


# =============================================================================
# Ledger
# =============================================================================


class SubscriptionLedger(BaseService):
    """
    Append-only payment ledger with the consecutive-failure counter.

    The counter is the fast path; leading_failure_count() recomputes the
    same number from the ledger for audits and resync_counter() repairs it.
    """

    @classmethod
    def record_success(
        cls,
        subscription: Subscription,
        *,
        order_id: str,
        amount: int,
        payment_key: str = "",
        paid_at=None,
        metadata: dict[str, Any] | None = None,
    ) -> SubscriptionPayment:
        with cls.atomic():
            payment = SubscriptionPayment.objects.create(
                subscription=subscription,
                amount=amount,
                status=PaymentStatus.SUCCESS,
                order_id=order_id,
                payment_key=payment_key,
                paid_at=paid_at or timezone.now(),
                metadata=metadata or {},
            )
            subscription.consecutive_failures = 0
            subscription.last_payment_at = payment.paid_at
            subscription.pending_order_id = ""
            subscription.save(
                update_fields=["consecutive_failures", "last_payment_at", "pending_order_id", "updated_at"]
            )
        return payment

    @classmethod
    def record_failure(
        cls,
        subscription: Subscription,
        *,
        order_id: str,
        amount: int,
        error_code: str = "",
        error_message: str = "",
        metadata: dict[str, Any] | None = None,
    ) -> SubscriptionPayment:
        """
        Insert a failed payment row and increment the failure counter.

        ``subscription.consecutive_failures`` is refreshed from the database
        before returning.
        """
        with cls.atomic():
            payment = SubscriptionPayment.objects.create(
                subscription=subscription,
                amount=amount,
                status=PaymentStatus.FAILED,
                order_id=order_id,
                error_code=error_code or "UNKNOWN",
                error_message=error_message,
                metadata=metadata or {},
            )
            subscription.consecutive_failures = F("consecutive_failures") + 1
            subscription.pending_order_id = ""
            subscription.save(update_fields=["consecutive_failures", "pending_order_id", "updated_at"])
            subscription.refresh_from_db(fields=["consecutive_failures"])
        return payment

    @staticmethod
    def leading_failure_count(subscription_id: Any) -> int:
        """Failed rows before the most recent success, newest first."""
        statuses = (
            SubscriptionPayment.objects.filter(subscription_id=subscription_id)
            .order_by("-created_at")
            .values_list("status", flat=True)
            .iterator()
        )
        count = 0
        for status in statuses:
            if status != PaymentStatus.FAILED:
                break
            count += 1
        return count

    @classmethod
    def resync_counter(cls, subscription_id: Any) -> int:
        """Overwrite the counter with the ledger-derived value."""
        with cls.atomic():
            subscription = Subscription.objects.select_for_update().get(pk=subscription_id)
            expected = cls.leading_failure_count(subscription_id)
            if subscription.consecutive_failures != expected:
                cls.get_logger().warning(
                    "Consecutive failure counter drifted from ledger",
                    extra={
                        "subscription_id": str(subscription_id),
                        "counter": subscription.consecutive_failures,
                        "ledger": expected,
                    },
                )
                subscription.consecutive_failures = expected
                subscription.save(update_fields=["consecutive_failures", "updated_at"])
        return expected


# =============================================================================
# Notifications
# =============================================================================


class BillingEventNotifier:
    """
    Queue billing webhooks after commit.

    Does nothing unless BILLING_WEBHOOK_URLS is set.
    """

    def __init__(self, target_urls: Iterable[str] | None = None) -> None:
        if target_urls is None:
            target_urls = getattr(settings, "BILLING_WEBHOOK_URLS", [])
        self.target_urls = list(target_urls)

    def payload(self, subscription: Subscription, data: dict[str, Any] | None) -> dict[str, Any]:
        return {
            "subscription_id": str(subscription.id),
            "user_id": str(subscription.user_id),
            "plan_id": str(subscription.plan_id),
            "status": subscription.status,
            **(data or {}),
        }

    def notify(
        self,
        event_type: EventType,
        subscription: Subscription,
        data: dict[str, Any] | None = None,
    ) -> None:
        if not self.target_urls:
            return
        payload = self.payload(subscription, data)
        urls = list(self.target_urls)
        transaction.on_commit(
            lambda: deliver_event.delay(event_type.value, payload, urls)
        )

    def notify_outcome(
        self,
        outcome: str,
        subscription: Subscription,
        data: dict[str, Any] | None = None,
    ) -> None:
        event_type = OUTCOME_EVENTS[outcome]
        if event_type is not None:
            self.notify(event_type, subscription, data)


# =============================================================================
# Reconciliation Loop
# =============================================================================


class BillingReconciler(BaseService):
    """
    Daily billing pass.

    Args:
        gateway: PaymentGatewayClient (built from settings by default)
        notifier: BillingEventNotifier
        lock_factory: Callable(key, ttl=...) returning a lock context manager
        lock_ttl: Lock TTL in seconds (BILLING_LOCK_TTL_SECONDS by default)
    """

    def __init__(
        self,
        gateway: PaymentGatewayClient | None = None,
        notifier: BillingEventNotifier | None = None,
        lock_factory=DistributedLock,
        lock_ttl: int | None = None,
    ) -> None:
        self._gateway = gateway
        self.notifier = notifier or BillingEventNotifier()
        self.lock_factory = lock_factory
        self.lock_ttl = lock_ttl or settings.BILLING_LOCK_TTL_SECONDS

    @property
    def gateway(self) -> PaymentGatewayClient:
        # Built lazily so free-plan-only runs work without gateway settings
        if self._gateway is None:
            self._gateway = PaymentGatewayClient()
        return self._gateway

    def run(self, today: date | None = None) -> ReconciliationSummary:
        """
        Run one reconciliation pass.

        Raises:
            LockAcquisitionError: Another pass holds the run lock
        """
        today = today or timezone.localdate()
        with self.lock_factory(RUN_LOCK_KEY, ttl=self.lock_ttl) as run_lock:
            return self._run(today, run_lock)

    def _run(self, today: date, run_lock: DistributedLock) -> ReconciliationSummary:
        summary = ReconciliationSummary(run_date=today)
        due_ids = self.due_subscription_ids(today)

        self.get_logger().info(
            f"Processing {len(due_ids)} due subscriptions",
            extra={"run_date": today.isoformat(), "due": len(due_ids)},
        )

        for subscription_id in due_ids:
            summary.results.append(self.process_subscription(subscription_id, today))
            # Each charge can take minutes with gateway retries
            if not run_lock.extend():
                self.get_logger().error(
                    "Run lock lost; leaving the remaining subscriptions to the next run",
                    extra={"run_date": today.isoformat(), "processed": summary.processed},
                )
                return summary

        summary.expired = self.expire_cancelled(today, exclude=due_ids)

        self.get_logger().info(
            "Billing reconciliation completed",
            extra={
                "run_date": today.isoformat(),
                "processed": summary.processed,
                "success": summary.count(BillingOutcome.SUCCESS),
                "failed": summary.count(BillingOutcome.FAILED),
                "extended_free": summary.count(BillingOutcome.EXTENDED_FREE),
                "errors": summary.count(BillingOutcome.ERROR),
                "skipped": summary.count(BillingOutcome.SKIPPED),
                "expired": len(summary.expired),
            },
        )
        return summary

    def due_subscription_ids(self, today: date) -> list[UUID]:
        return list(
            Subscription.objects.due_for_billing(today)
            .order_by("next_billing_date", "created_at")
            .values_list("id", flat=True)
        )

    # =========================================================================
    # Per-subscription processing
    # =========================================================================

    def process_subscription(self, subscription_id: UUID, today: date) -> ReconciliationItem:
        """Process one subscription; never raises."""
        try:
            with self.lock_factory(subscription_lock_key(subscription_id), ttl=self.lock_ttl):
                return self._process_locked(subscription_id, today)
        except (LockAcquisitionError, StaleRecordError) as e:
            self.get_logger().info(
                f"Skipping subscription: {e.message}",
                extra={"subscription_id": str(subscription_id)},
            )
            return ReconciliationItem(
                subscription_id=str(subscription_id),
                status=BillingOutcome.SKIPPED,
                error=e.message,
            )
        except Exception as e:
            self.get_logger().exception(
                f"Error processing subscription: {e}",
                extra={"subscription_id": str(subscription_id)},
            )
            return ReconciliationItem(
                subscription_id=str(subscription_id),
                status=BillingOutcome.ERROR,
                error=str(e) or e.__class__.__name__,
            )

    def _process_locked(self, subscription_id: UUID, today: date) -> ReconciliationItem:
        with self.atomic():
            subscription = (
                Subscription.objects.select_for_update()
                .select_related("plan")
                .filter(pk=subscription_id)
                .first()
            )
            if subscription is None or not subscription.is_due(today):
                return ReconciliationItem(
                    subscription_id=str(subscription_id),
                    status=BillingOutcome.SKIPPED,
                    error="No longer due",
                )
            if subscription.plan.is_free:
                return self._extend_free(subscription)
            order_id = self._claim_order_id(subscription)

        # The gateway call runs outside any transaction
        result = self.gateway.charge(subscription, order_id)
        if result.success:
            return self._apply_success(subscription, order_id, result)
        return self._apply_failure(subscription, order_id, result)

    def _claim_order_id(self, subscription: Subscription) -> str:
        """
        Return the order id for this cycle's charge.

        The id is committed before the gateway is called. A charge whose
        outcome never reached the ledger keeps its id, so the next run sends
        the same order id and Idempotency-Key instead of a new charge.
        """
        if subscription.pending_order_id:
            self.get_logger().warning(
                "Resending charge with unrecorded outcome",
                extra={"subscription_id": str(subscription.id), "order_id": subscription.pending_order_id},
            )
            return subscription.pending_order_id

        subscription.pending_order_id = build_order_id(subscription.id)
        subscription.save(update_fields=["pending_order_id", "updated_at"])
        return subscription.pending_order_id

    def _extend_free(self, subscription: Subscription) -> ReconciliationItem:
        period_start = timezone.now()
        period_end = advance(period_start, subscription.plan.billing_cycle)
        subscription.renew(period_start, period_end)
        subscription.save()
        log_activity(
            subscription,
            ActivityAction.EXTENDED_FREE,
            {"next_billing_date": subscription.next_billing_date.isoformat()},
        )
        self.notifier.notify_outcome(BillingOutcome.EXTENDED_FREE, subscription)
        return ReconciliationItem(
            subscription_id=str(subscription.id),
            status=BillingOutcome.EXTENDED_FREE,
        )

    def _reload_for_update(self, snapshot: Subscription) -> Subscription:
        """Re-lock the row after the gateway call; a changed version is logged, not fatal."""
        try:
            subscription = check_version(Subscription, snapshot.pk, snapshot.version)
        except StaleRecordError as e:
            self.get_logger().warning(
                "Subscription changed during charge",
                extra={"subscription_id": str(snapshot.pk), **e.details},
            )
            subscription = Subscription.objects.select_for_update().get(pk=snapshot.pk)
        subscription.plan = snapshot.plan
        return subscription

    def _apply_success(
        self,
        snapshot: Subscription,
        order_id: str,
        result: ChargeResult,
    ) -> ReconciliationItem:
        with self.atomic():
            subscription = self._reload_for_update(snapshot)
            payment = SubscriptionLedger.record_success(
                subscription,
                order_id=order_id,
                amount=subscription.plan.price,
                payment_key=result.payment_key,
                paid_at=result.approved_at,
                metadata=result.raw,
            )
            if can_proceed(subscription.renew):
                period_start = timezone.now()
                subscription.renew(period_start, advance(period_start, subscription.plan.billing_cycle))
                subscription.save()
            else:
                self.get_logger().warning(
                    f"Charged subscription is no longer renewable ({subscription.status})",
                    extra={"subscription_id": str(subscription.id), "order_id": order_id},
                )
            log_activity(
                subscription,
                ActivityAction.PAYMENT_SUCCESS,
                {
                    "order_id": order_id,
                    "amount": payment.amount,
                    "payment_key": payment.payment_key,
                    "next_billing_date": subscription.next_billing_date.isoformat(),
                },
            )
            self.notifier.notify_outcome(
                BillingOutcome.SUCCESS,
                subscription,
                {"order_id": order_id, "amount": payment.amount},
            )

        self.get_logger().info(
            "Subscription charged",
            extra={"subscription_id": str(subscription.id), "order_id": order_id},
        )
        return ReconciliationItem(
            subscription_id=str(subscription.id),
            status=BillingOutcome.SUCCESS,
            order_id=order_id,
        )

    def _apply_failure(
        self,
        snapshot: Subscription,
        order_id: str,
        result: ChargeResult,
    ) -> ReconciliationItem:
        suspended = False
        with self.atomic():
            subscription = self._reload_for_update(snapshot)
            payment = SubscriptionLedger.record_failure(
                subscription,
                order_id=order_id,
                amount=subscription.plan.price,
                error_code=result.error_code,
                error_message=result.error_message,
                metadata=result.raw,
            )
            failure_data = {
                "order_id": order_id,
                "error_code": payment.error_code,
                "error_message": payment.error_message,
                "consecutive_failures": subscription.consecutive_failures,
            }
            log_activity(subscription, ActivityAction.PAYMENT_FAILED, failure_data)
            self.notifier.notify_outcome(BillingOutcome.FAILED, subscription, failure_data)

            if can_proceed(subscription.suspend):
                subscription.suspend()
                subscription.save()
                suspended = True
                log_activity(subscription, ActivityAction.SUSPENDED, failure_data)
                self.notifier.notify(EventType.SUBSCRIPTION_SUSPENDED, subscription, failure_data)

        self.get_logger().warning(
            f"Payment failed: {payment.error_message} "
            f"({subscription.consecutive_failures}/{settings.BILLING_MAX_CONSECUTIVE_FAILURES})",
            extra={
                "subscription_id": str(subscription.id),
                "order_id": order_id,
                "error_code": payment.error_code,
                "suspended": suspended,
            },
        )
        return ReconciliationItem(
            subscription_id=str(subscription.id),
            status=BillingOutcome.FAILED,
            order_id=order_id,
            error=payment.error_message,
            suspended=suspended,
        )

    # =========================================================================
    # Expiry sweep
    # =========================================================================

    def expire_cancelled(self, today: date, exclude: Iterable[Any] = ()) -> list[str]:
        """Expire scheduled cancellations whose period has ended."""
        candidates = list(
            Subscription.objects.ended_cancellations(today)
            .exclude(pk__in=list(exclude))
            .values_list("id", flat=True)
        )
        expired: list[str] = []
        for subscription_id in candidates:
            try:
                with self.atomic():
                    subscription = Subscription.objects.select_for_update().get(pk=subscription_id)
                    if not can_proceed(subscription.expire):
                        continue
                    subscription.expire()
                    subscription.save()
                    log_activity(
                        subscription,
                        ActivityAction.EXPIRED,
                        {"period_end": subscription.current_period_end.isoformat()},
                    )
                    self.notifier.notify(EventType.SUBSCRIPTION_EXPIRED, subscription)
                expired.append(str(subscription_id))
            except Exception as e:
                self.get_logger().exception(
                    f"Error expiring subscription: {e}",
                    extra={"subscription_id": str(subscription_id)},
                )
        if expired:
            self.get_logger().info(
                f"Expired {len(expired)} cancelled subscriptions",
                extra={"run_date": today.isoformat(), "expired": len(expired)},
            )
        return expired
