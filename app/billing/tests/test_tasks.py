"""
Tests for billing Celery tasks.
"""

from datetime import date

import pytest
from django.utils import timezone

from billing.gateway import PaymentGatewayClient
from billing.models import Subscription
from billing.state_machines import SubscriptionState
from billing.tasks import process_due_subscriptions, resync_failure_counter
from billing.tests.conftest import approved
from billing.tests.factories import SubscriptionFactory, SubscriptionPaymentFactory


@pytest.fixture
def gateway_client(mocker):
    client = mocker.Mock(spec=PaymentGatewayClient)
    client.charge.return_value = approved()
    mocker.patch("billing.services.PaymentGatewayClient", return_value=client)
    return client


@pytest.mark.django_db
class TestProcessDueSubscriptions:
    """Tests for the process_due_subscriptions task."""

    def test_completed(self, mock_redis, gateway_client, subscription):
        mock_redis.set.return_value = True
        mock_redis.eval.return_value = 1

        result = process_due_subscriptions.delay().get()

        assert result["status"] == "completed"
        assert result["processed"] == 1
        assert result["results"][0]["status"] == "success"
        subscription.refresh_from_db()
        assert subscription.next_billing_date > timezone.localdate()

    def test_run_date_argument(self, mock_redis, gateway_client, plan):
        mock_redis.set.return_value = True
        SubscriptionFactory(plan=plan, next_billing_date=date(2030, 6, 1))

        result = process_due_subscriptions.delay(run_date="2030-06-01").get()

        assert result["run_date"] == "2030-06-01"
        assert result["processed"] == 1

    def test_skipped_when_run_lock_held(self, mock_redis, gateway_client, subscription):
        mock_redis.set.return_value = False

        result = process_due_subscriptions.delay().get()

        assert result["status"] == "skipped"
        gateway_client.charge.assert_not_called()
        assert Subscription.objects.get().status == SubscriptionState.ACTIVE

    def test_unexpected_error_reported(self, mocker):
        mocker.patch("billing.tasks.BillingReconciler.run", side_effect=RuntimeError("db gone"))

        result = process_due_subscriptions.delay().get()

        assert result == {"status": "failed", "error": "db gone", "error_code": "UNEXPECTED_ERROR"}


@pytest.mark.django_db
class TestResyncFailureCounter:
    def test_recomputes_from_ledger(self):
        subscription = SubscriptionFactory(consecutive_failures=7)
        SubscriptionPaymentFactory(subscription=subscription, failed=True)

        result = resync_failure_counter.delay(str(subscription.id)).get()

        assert result == {"subscription_id": str(subscription.id), "consecutive_failures": 1}
        subscription.refresh_from_db()
        assert subscription.consecutive_failures == 1
