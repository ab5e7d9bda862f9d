"""
Tests for the payment gateway client.

The HTTP session and the backoff sleep are mocked; no request leaves the
process.
"""

import base64

import pytest
import requests

from billing.exceptions import GatewayConfigurationError
from billing.gateway import NETWORK_ERROR, PaymentGatewayClient, is_retryable_status
from core.exceptions import ConfigurationError
from core.retry import RetryPolicy

API_URL = "https://gateway.test/v1/billing"


@pytest.fixture
def make_gateway_response(mocker):
    def _make(status_code: int, data=None):
        response = mocker.MagicMock()
        response.status_code = status_code
        response.ok = 200 <= status_code < 300
        if data is None:
            response.json.side_effect = ValueError("no json")
            response.text = "<html>oops</html>"
        else:
            response.json.return_value = data
        return response

    return _make


@pytest.fixture
def sleep(mocker):
    return mocker.Mock()


@pytest.fixture
def make_client(mocker, sleep, make_gateway_response):
    """Client whose session answers with the given items in order."""

    def _make(outcomes, **kwargs):
        session = mocker.MagicMock()
        session.post.side_effect = [
            item if isinstance(item, BaseException) else make_gateway_response(*item)
            for item in outcomes
        ]
        kwargs.setdefault("secret_key", "test_sk_billing")
        kwargs.setdefault("api_url", API_URL)
        return PaymentGatewayClient(session=session, sleep=sleep, **kwargs)

    return _make


APPROVED = (200, {"paymentKey": "pay_abc", "approvedAt": "2024-03-01T09:00:00+09:00", "status": "DONE"})


@pytest.mark.django_db
class TestCharge:
    """Tests for PaymentGatewayClient.charge."""

    def test_success(self, make_client, subscription):
        client = make_client([APPROVED])

        result = client.charge(subscription, "sub_1234abcd_1700000000000")

        assert result.success is True
        assert result.payment_key == "pay_abc"
        assert result.approved_at.isoformat() == "2024-03-01T09:00:00+09:00"
        assert result.raw["status"] == "DONE"
        assert result.attempts == 1

    def test_request_shape(self, make_client, subscription):
        """POSTs JSON to <api_url>/<billing_key> with Basic auth."""
        client = make_client([APPROVED])

        client.charge(subscription, "sub_1234abcd_1700000000000")

        call = client.session.post.call_args
        assert call.args[0] == f"{API_URL}/{subscription.billing_key}"
        assert call.kwargs["json"] == {
            "amount": 9900,
            "customerKey": subscription.customer_key,
            "orderId": "sub_1234abcd_1700000000000",
            "orderName": "Pro subscription",
            "taxFreeAmount": 0,
        }
        token = base64.b64encode(b"test_sk_billing:").decode()
        assert call.kwargs["headers"]["Authorization"] == f"Basic {token}"
        assert call.kwargs["timeout"] == 30

    def test_retries_reuse_order_id_as_idempotency_key(self, make_client, subscription, sleep):
        """Every attempt of one charge carries the same Idempotency-Key."""
        client = make_client([(500, None), APPROVED])

        client.charge(subscription, "sub_1234abcd_1700000000000")

        keys = [c.kwargs["headers"]["Idempotency-Key"] for c in client.session.post.call_args_list]
        assert keys == ["sub_1234abcd_1700000000000", "sub_1234abcd_1700000000000"]

    def test_customer_key_falls_back_to_user_id(self, make_client, subscription):
        subscription.customer_key = ""
        client = make_client([APPROVED])

        client.charge(subscription, "o1")

        assert client.session.post.call_args.kwargs["json"]["customerKey"] == str(subscription.user_id)

    def test_decline_is_not_retried(self, make_client, subscription, sleep):
        client = make_client([(400, {"code": "REJECT_CARD_COMPANY", "message": "Card declined"})])

        result = client.charge(subscription, "o1")

        assert result.success is False
        assert result.error_code == "REJECT_CARD_COMPANY"
        assert result.error_message == "Card declined"
        assert client.session.post.call_count == 1
        sleep.assert_not_called()

    def test_decline_without_body_code(self, make_client, subscription):
        client = make_client([(403, None)])

        result = client.charge(subscription, "o1")

        assert result.error_code == "UNKNOWN"
        assert result.error_message == "HTTP 403"

    def test_server_errors_retried_with_backoff(self, make_client, subscription, sleep):
        client = make_client([(500, None), (429, {}), APPROVED])

        result = client.charge(subscription, "o1")

        assert result.success is True
        assert result.attempts == 3
        assert [c.args[0] for c in sleep.call_args_list] == [1.0, 2.0]

    def test_server_errors_exhausted(self, make_client, subscription, sleep):
        client = make_client([(503, {"code": "PROVIDER_ERROR", "message": "down"})] * 4)

        result = client.charge(subscription, "o1")

        assert result.success is False
        assert result.error_code == "PROVIDER_ERROR"
        assert result.attempts == 4
        assert sleep.call_count == 3

    def test_network_errors_become_network_error(self, make_client, subscription, sleep):
        client = make_client([requests.ConnectionError("refused")] * 4)

        result = client.charge(subscription, "o1")

        assert result.success is False
        assert result.error_code == NETWORK_ERROR
        assert result.error_message == "refused"
        assert [c.args[0] for c in sleep.call_args_list] == [1.0, 2.0, 4.0]

    def test_network_error_then_success(self, make_client, subscription):
        client = make_client([requests.Timeout(), APPROVED])

        assert client.charge(subscription, "o1").success is True

    def test_custom_policy(self, make_client, subscription, sleep):
        client = make_client([(500, None)] * 2, policy=RetryPolicy(max_retries=1, base_delay_ms=250))

        result = client.charge(subscription, "o1")

        assert result.attempts == 2
        assert [c.args[0] for c in sleep.call_args_list] == [0.25]

    def test_not_configured(self, make_client, subscription):
        client = make_client([APPROVED], secret_key="")

        with pytest.raises(GatewayConfigurationError) as exc_info:
            client.charge(subscription, "o1")

        assert exc_info.value.details["missing"] == ["BILLING_GATEWAY_SECRET_KEY"]
        assert isinstance(exc_info.value, ConfigurationError)
        assert exc_info.value.error_code == "GATEWAY_NOT_CONFIGURED"
        client.session.post.assert_not_called()


class TestDefaults:
    def test_reads_settings(self):
        client = PaymentGatewayClient(session=object())

        assert client.secret_key == "test_sk_billing"
        assert client.api_url == API_URL
        assert client.policy.max_attempts == 4

    @pytest.mark.parametrize(
        "status_code, expected",
        [(500, True), (502, True), (429, True), (400, False), (404, False), (409, False)],
    )
    def test_is_retryable_status(self, status_code, expected):
        assert is_retryable_status(status_code) is expected
