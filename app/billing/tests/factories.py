"""
Factory Boy factories for billing test data.

Usage:
    from billing.tests.factories import SubscriptionFactory

    subscription = SubscriptionFactory(plan__price=0)
"""

import uuid
from datetime import timedelta

import factory
from django.utils import timezone

from billing.models import Plan, Subscription, SubscriptionPayment
from billing.state_machines import BillingCycle, PaymentStatus, SubscriptionState


class UserFactory(factory.django.DjangoModelFactory):
    class Meta:
        model = "auth.User"
        skip_postgeneration_save = True

    username = factory.Sequence(lambda n: f"subscriber{n}")
    email = factory.LazyAttribute(lambda o: f"{o.username}@example.com")
    password = factory.PostGenerationMethodCall("set_password", "testpass123")


class PlanFactory(factory.django.DjangoModelFactory):
    class Meta:
        model = Plan

    name = factory.Sequence(lambda n: f"Pro {n}")
    price = 9900
    currency = "krw"
    billing_cycle = BillingCycle.MONTHLY


class SubscriptionFactory(factory.django.DjangoModelFactory):
    """
    An active subscription whose period ends now, so it is due today.
    """

    class Meta:
        model = Subscription

    user = factory.SubFactory(UserFactory)
    plan = factory.SubFactory(PlanFactory)
    status = SubscriptionState.ACTIVE
    current_period_start = factory.LazyFunction(lambda: timezone.now() - timedelta(days=30))
    current_period_end = factory.LazyFunction(timezone.now)
    next_billing_date = factory.LazyFunction(timezone.localdate)
    billing_key = factory.LazyFunction(lambda: f"bk_{uuid.uuid4().hex[:12]}")
    customer_key = factory.LazyFunction(lambda: f"ck_{uuid.uuid4().hex[:12]}")


class SubscriptionPaymentFactory(factory.django.DjangoModelFactory):
    class Meta:
        model = SubscriptionPayment

    subscription = factory.SubFactory(SubscriptionFactory)
    amount = 9900
    status = PaymentStatus.SUCCESS
    order_id = factory.Sequence(lambda n: f"sub_test_{n}")
    payment_key = factory.Sequence(lambda n: f"pk_{n}")
    paid_at = factory.LazyFunction(timezone.now)

    class Params:
        failed = factory.Trait(
            status=PaymentStatus.FAILED,
            payment_key="",
            paid_at=None,
            error_code="REJECT_CARD_COMPANY",
            error_message="Card declined",
        )
