"""
Pytest fixtures for webhook tests.

HTTP is never sent for real: executors get a mocked requests.Session whose
``post`` returns canned responses.

Usage:
    def test_retries(make_executor, event, fast_policy):
        executor = make_executor([500, 500, 200])
"""

import pytest

from core.retry import RetryPolicy
from webhooks.delivery import DeliveryExecutor
from webhooks.events import Event, EventType

TARGET_URL = "https://receiver.example.com/hooks"
SECRET = "whsec_test"


@pytest.fixture(autouse=True)
def clear_inbound_replay_cache():
    """The receive endpoint's replay cache lives for the whole process."""
    from webhooks.urls import inbound_replay_cache

    inbound_replay_cache.clear()
    yield
    inbound_replay_cache.clear()


@pytest.fixture
def event():
    return Event.create(
        EventType.PAYMENT_SUCCEEDED,
        {"subscription_id": "sub_123", "amount": 9900, "currency": "krw"},
    )


@pytest.fixture
def fast_policy():
    """Default retry count with no waiting."""
    return RetryPolicy(base_delay_ms=0, max_retries=3)


@pytest.fixture
def make_response(mocker):
    """Streamed response whose iter_content yields ``text`` in chunk_size pieces."""

    def _make(status_code: int, text: str = ""):
        body = text.encode()
        response = mocker.MagicMock()
        response.status_code = status_code
        response.encoding = "utf-8"
        response.iter_content.side_effect = lambda chunk_size=1: (
            body[i : i + chunk_size] for i in range(0, len(body), chunk_size)
        )
        return response

    return _make


@pytest.fixture
def make_session(mocker, make_response):
    """Session whose post() returns (or raises) the given items in order."""

    def _make(outcomes):
        session = mocker.MagicMock()
        session.post.side_effect = [
            outcome if isinstance(outcome, BaseException) else make_response(outcome)
            for outcome in outcomes
        ]
        return session

    return _make


@pytest.fixture
def make_executor(make_session):
    def _make(outcomes, **kwargs):
        return DeliveryExecutor(session=make_session(outcomes), clock=lambda: 1_700_000_000, **kwargs)

    return _make
