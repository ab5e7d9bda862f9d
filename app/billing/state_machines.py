"""
State and choice enums for billing models.

Subscription States:
    trial → active        (successful charge)
    active → active       (successful charge, period advanced)
    trial/active → suspended
                          (failed charge with consecutive_failures ≥ 3)
    trial/active/suspended/cancelled → expired
                          (cancel_at_period_end and period ended)

A failed charge below the threshold is recorded in the ledger but leaves the
status unchanged; the next scheduled run charges again.
"""

from django.db import models


class SubscriptionState(models.TextChoices):
    """
    States for the Subscription lifecycle.

    Billable states: TRIAL, ACTIVE
    Terminal state: EXPIRED
    """

    TRIAL = "trial", "Trial"
    ACTIVE = "active", "Active"
    SUSPENDED = "suspended", "Suspended"
    CANCELLED = "cancelled", "Cancelled"
    EXPIRED = "expired", "Expired"


BILLABLE_STATES = (SubscriptionState.TRIAL, SubscriptionState.ACTIVE)


class BillingCycle(models.TextChoices):
    MONTHLY = "monthly", "Monthly"
    QUARTERLY = "quarterly", "Quarterly"
    YEARLY = "yearly", "Yearly"


class PaymentStatus(models.TextChoices):
    SUCCESS = "success", "Success"
    FAILED = "failed", "Failed"


class ActivityAction(models.TextChoices):
    PAYMENT_SUCCESS = "subscription_payment_success", "Subscription payment succeeded"
    PAYMENT_FAILED = "subscription_payment_failed", "Subscription payment failed"
    SUSPENDED = "subscription_suspended", "Subscription suspended"
    EXPIRED = "subscription_expired", "Subscription expired"
    EXTENDED_FREE = "subscription_extended_free", "Free subscription extended"


class BillingOutcome(models.TextChoices):
    """Per-subscription result of one reconciliation pass."""

    EXTENDED_FREE = "extended_free", "Extended (free plan)"
    SUCCESS = "success", "Charged"
    FAILED = "failed", "Charge failed"
    SKIPPED = "skipped", "Skipped"
    ERROR = "error", "Error"
