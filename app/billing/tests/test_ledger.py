"""
Tests for SubscriptionLedger.
"""

from datetime import timedelta

import pytest
from django.utils import timezone

from billing.models import SubscriptionPayment
from billing.services import SubscriptionLedger
from billing.state_machines import PaymentStatus
from billing.tests.factories import SubscriptionFactory, SubscriptionPaymentFactory


def seed_history(subscription, statuses):
    """Insert payments oldest first, one minute apart."""
    start = timezone.now() - timedelta(minutes=len(statuses))
    for offset, status in enumerate(statuses):
        SubscriptionPaymentFactory(
            subscription=subscription,
            failed=status == PaymentStatus.FAILED,
            created_at=start + timedelta(minutes=offset),
        )


@pytest.mark.django_db
class TestRecordFailure:
    """Tests for SubscriptionLedger.record_failure."""

    def test_inserts_row_and_increments_counter(self, subscription):
        payment = SubscriptionLedger.record_failure(
            subscription,
            order_id="sub_a_1",
            amount=9900,
            error_code="REJECT_CARD_COMPANY",
            error_message="Card declined",
        )

        assert payment.status == PaymentStatus.FAILED
        assert subscription.consecutive_failures == 1
        subscription.refresh_from_db()
        assert subscription.consecutive_failures == 1

    def test_counter_accumulates(self, subscription):
        for n in range(3):
            SubscriptionLedger.record_failure(subscription, order_id=f"sub_a_{n}", amount=9900)

        assert subscription.consecutive_failures == 3
        assert SubscriptionLedger.leading_failure_count(subscription.id) == 3

    def test_missing_error_code_defaults_to_unknown(self, subscription):
        payment = SubscriptionLedger.record_failure(subscription, order_id="sub_a_1", amount=9900)

        assert payment.error_code == "UNKNOWN"


@pytest.mark.django_db
class TestRecordSuccess:
    """Tests for SubscriptionLedger.record_success."""

    def test_resets_counter(self):
        subscription = SubscriptionFactory(consecutive_failures=2)

        payment = SubscriptionLedger.record_success(
            subscription, order_id="sub_a_1", amount=9900, payment_key="pay_1"
        )

        subscription.refresh_from_db()
        assert subscription.consecutive_failures == 0
        assert subscription.last_payment_at == payment.paid_at
        assert payment.paid_at is not None


@pytest.mark.django_db
class TestLeadingFailureCount:
    """Failures are counted newest first, up to the most recent success."""

    @pytest.mark.parametrize(
        "history, expected",
        [
            ([], 0),
            (["success"], 0),
            (["failed"], 1),
            (["success", "failed", "failed"], 2),
            (["failed", "success", "failed"], 1),
            (["failed", "failed", "success"], 0),
        ],
    )
    def test_counts(self, subscription, history, expected):
        seed_history(subscription, history)

        assert SubscriptionLedger.leading_failure_count(subscription.id) == expected

    def test_ignores_other_subscriptions(self, subscription):
        other = SubscriptionFactory()
        seed_history(other, ["failed", "failed"])

        assert SubscriptionLedger.leading_failure_count(subscription.id) == 0


@pytest.mark.django_db
class TestResyncCounter:
    """Tests for SubscriptionLedger.resync_counter."""

    def test_repairs_drift(self, mocker):
        get_logger = mocker.patch.object(SubscriptionLedger, "get_logger")
        subscription = SubscriptionFactory(consecutive_failures=5)
        seed_history(subscription, ["success", "failed"])

        assert SubscriptionLedger.resync_counter(subscription.id) == 1

        subscription.refresh_from_db()
        assert subscription.consecutive_failures == 1
        get_logger.return_value.warning.assert_called_once()

    def test_leaves_matching_counter(self):
        subscription = SubscriptionFactory(consecutive_failures=1)
        seed_history(subscription, ["failed"])
        version = subscription.version

        SubscriptionLedger.resync_counter(subscription.id)

        subscription.refresh_from_db()
        assert subscription.version == version
        assert SubscriptionPayment.objects.count() == 1
