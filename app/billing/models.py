"""
Billing models.

Plan:
    Price and billing cycle shared by many subscriptions.

Subscription:
    One user's recurring relationship with a plan. Status is a django-fsm
    field; only the reconciliation loop (and user-initiated cancellation,
    handled elsewhere) moves it. ``consecutive_failures`` is maintained in
    the same transaction as every ledger insert.

SubscriptionPayment:
    Append-only ledger, one row per billing attempt.

ActivityLog:
    User-visible audit trail of billing events.

Usage:
    from billing.models import Subscription

    due = Subscription.objects.due_for_billing(today)
"""

from __future__ import annotations

from datetime import date
from typing import TYPE_CHECKING

from django.conf import settings
from django.db import models
from django.utils import timezone
from django_fsm import FSMField, transition

from billing.state_machines import (
    BILLABLE_STATES,
    ActivityAction,
    BillingCycle,
    PaymentStatus,
    SubscriptionState,
)
from core.model_mixins import AppendOnlyMixin, UUIDPrimaryKeyMixin, VersionedMixin
from core.models import BaseModel

if TYPE_CHECKING:
    from datetime import datetime


class Plan(UUIDPrimaryKeyMixin, BaseModel):
    """
    A purchasable plan.

    Fields:
        name: Display name, also used as the gateway order name
        price: Amount per cycle in the smallest currency unit (0 = free)
        currency: ISO 4217 currency code
        billing_cycle: monthly, quarterly or yearly
        is_active: Whether new subscriptions may use this plan
    """

    name = models.CharField(max_length=100)
    price = models.PositiveBigIntegerField(
        help_text="Amount per billing cycle in the smallest currency unit",
    )
    currency = models.CharField(max_length=3, default="krw")
    billing_cycle = models.CharField(
        max_length=16,
        choices=BillingCycle.choices,
        default=BillingCycle.MONTHLY,
    )
    is_active = models.BooleanField(default=True)

    class Meta:
        ordering = ["price"]

    def __str__(self) -> str:
        return f"Plan({self.name}, {self.price} {self.currency.upper()}/{self.billing_cycle})"

    @property
    def is_free(self) -> bool:
        return self.price == 0


class SubscriptionQuerySet(models.QuerySet):
    def due_for_billing(self, today: date) -> SubscriptionQuerySet:
        """Billable, not cancelling, and due on or before ``today``."""
        return self.filter(
            status__in=BILLABLE_STATES,
            next_billing_date__lte=today,
            cancel_at_period_end=False,
        )

    def ended_cancellations(self, today: date) -> SubscriptionQuerySet:
        """Scheduled cancellations whose period ended before ``today``."""
        return self.filter(
            cancel_at_period_end=True,
            current_period_end__date__lt=today,
        ).exclude(status=SubscriptionState.EXPIRED)


class Subscription(UUIDPrimaryKeyMixin, VersionedMixin, BaseModel):
    """
    A user's subscription to a plan.

    State Flow:
        TRIAL/ACTIVE → ACTIVE     renew() after a successful charge
        TRIAL/ACTIVE → SUSPENDED  suspend() once failures reach the threshold
        any but EXPIRED → EXPIRED expire() when a scheduled cancellation ends

    Invariant:
        next_billing_date >= current_period_start.date(), and it only moves
        forward on renewals.
    """

    user = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.PROTECT,
        related_name="subscriptions",
    )
    plan = models.ForeignKey(
        Plan,
        on_delete=models.PROTECT,
        related_name="subscriptions",
    )

    # ==========================================================================
    # State
    # ==========================================================================

    status = FSMField(
        default=SubscriptionState.TRIAL,
        choices=SubscriptionState.choices,
        db_index=True,
        help_text="Current state of the subscription (managed by FSM)",
    )
    cancel_at_period_end = models.BooleanField(
        default=False,
        help_text="Expire instead of renewing when the current period ends",
    )

    # ==========================================================================
    # Billing Period
    # ==========================================================================

    current_period_start = models.DateTimeField()
    current_period_end = models.DateTimeField()
    next_billing_date = models.DateField(db_index=True)

    # ==========================================================================
    # Gateway Credentials
    # ==========================================================================

    billing_key = models.CharField(
        max_length=255,
        blank=True,
        default="",
        help_text="Gateway billing key for recurring charges",
    )
    customer_key = models.CharField(
        max_length=255,
        blank=True,
        default="",
        help_text="Gateway customer key",
    )

    # ==========================================================================
    # Failure Tracking
    # ==========================================================================

    consecutive_failures = models.PositiveIntegerField(
        default=0,
        help_text="Failed charges since the last success; updated with each ledger insert",
    )
    last_payment_at = models.DateTimeField(null=True, blank=True)
    pending_order_id = models.CharField(
        max_length=64,
        blank=True,
        default="",
        help_text="Order id sent to the gateway whose outcome is not yet recorded; reused on retry",
    )
    suspended_at = models.DateTimeField(null=True, blank=True)
    expired_at = models.DateTimeField(null=True, blank=True)

    objects = SubscriptionQuerySet.as_manager()

    class Meta:
        ordering = ["-created_at"]
        indexes = [
            models.Index(
                fields=["status", "next_billing_date"],
                name="subscription_due_idx",
            ),
        ]

    def __str__(self) -> str:
        return f"Subscription({self.id}, {self.status}, next={self.next_billing_date})"

    def is_due(self, today: date) -> bool:
        return (
            self.status in BILLABLE_STATES
            and not self.cancel_at_period_end
            and self.next_billing_date <= today
        )

    def has_reached_failure_limit(self) -> bool:
        return self.consecutive_failures >= settings.BILLING_MAX_CONSECUTIVE_FAILURES

    # ==========================================================================
    # State Transitions (django-fsm)
    # ==========================================================================

    @transition(
        field=status,
        source=[SubscriptionState.TRIAL, SubscriptionState.ACTIVE],
        target=SubscriptionState.ACTIVE,
    )
    def renew(self, period_start: datetime, period_end: datetime) -> None:
        """Start a new paid (or free) period."""
        self.current_period_start = period_start
        self.current_period_end = period_end
        self.next_billing_date = timezone.localdate(period_end)
        self.consecutive_failures = 0

    @transition(
        field=status,
        source=[SubscriptionState.TRIAL, SubscriptionState.ACTIVE],
        target=SubscriptionState.SUSPENDED,
        conditions=[has_reached_failure_limit],
    )
    def suspend(self) -> None:
        self.suspended_at = timezone.now()

    @transition(
        field=status,
        source=[
            SubscriptionState.TRIAL,
            SubscriptionState.ACTIVE,
            SubscriptionState.SUSPENDED,
            SubscriptionState.CANCELLED,
        ],
        target=SubscriptionState.EXPIRED,
    )
    def expire(self) -> None:
        self.expired_at = timezone.now()


class SubscriptionPayment(UUIDPrimaryKeyMixin, AppendOnlyMixin, models.Model):
    """
    One billing attempt for a subscription.

    Rows are never updated or deleted; corrections are new rows. The
    ordering of rows per subscription (newest first) is what the
    consecutive-failure audit in SubscriptionLedger scans.

    Fields:
        subscription: Subscription being billed
        amount: Charged amount in the smallest currency unit
        status: success or failed
        order_id: Unique per attempt, sent to the gateway as orderId
        payment_key: Gateway payment key (success only)
        error_code / error_message: Gateway error (failure only)
        paid_at: Gateway approval time (success only)
        metadata: Raw gateway response
    """

    subscription = models.ForeignKey(
        Subscription,
        on_delete=models.PROTECT,
        related_name="payments",
    )
    amount = models.PositiveBigIntegerField()
    status = models.CharField(max_length=16, choices=PaymentStatus.choices)
    order_id = models.CharField(max_length=64, unique=True)
    payment_key = models.CharField(max_length=255, blank=True, default="")
    error_code = models.CharField(max_length=64, blank=True, default="")
    error_message = models.TextField(blank=True, default="")
    paid_at = models.DateTimeField(null=True, blank=True)
    metadata = models.JSONField(default=dict, blank=True)
    created_at = models.DateTimeField(default=timezone.now, db_index=True)

    class Meta:
        ordering = ["-created_at"]
        indexes = [
            models.Index(
                fields=["subscription", "-created_at"],
                name="sub_payment_recent_idx",
            ),
        ]

    def __str__(self) -> str:
        return f"SubscriptionPayment({self.order_id}, {self.status}, {self.amount})"


class ActivityLog(UUIDPrimaryKeyMixin, models.Model):
    """User-visible audit trail entry."""

    user = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.CASCADE,
        related_name="billing_activity",
    )
    action = models.CharField(max_length=64, choices=ActivityAction.choices, db_index=True)
    entity_type = models.CharField(max_length=32, default="subscription")
    entity_id = models.UUIDField()
    metadata = models.JSONField(default=dict, blank=True)
    created_at = models.DateTimeField(auto_now_add=True, db_index=True)

    class Meta:
        ordering = ["-created_at"]

    def __str__(self) -> str:
        return f"ActivityLog({self.action}, {self.entity_type}:{self.entity_id})"
