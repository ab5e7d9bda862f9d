"""
Pytest fixtures for billing tests.

Reconciler tests never talk to Redis or the gateway: they get an in-memory
lock factory and a mocked PaymentGatewayClient.

Usage:
    def test_charge(reconciler, gateway, subscription):
        gateway.charge.return_value = approved()
        reconciler.run()
"""

import pytest

from billing.exceptions import LockAcquisitionError
from billing.gateway import ChargeResult, PaymentGatewayClient
from billing.services import BillingEventNotifier, BillingReconciler
from billing.tests.factories import PlanFactory, SubscriptionFactory, UserFactory


class InMemoryLock:
    """DistributedLock stand-in backed by a shared set of held keys."""

    def __init__(self, held: set, key: str, ttl: int = 60, **kwargs):
        self.held = held
        self.key = key
        self.ttl = ttl
        self.extensions = 0

    def __enter__(self):
        if self.key in self.held:
            raise LockAcquisitionError(f"Lock 'lock:{self.key}' is already held", details={"key": self.key})
        self.held.add(self.key)
        return self

    def extend(self, ttl=None):
        if self.key not in self.held:
            return False
        self.extensions += 1
        return True

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.held.discard(self.key)
        return False


def approved(payment_key: str = "pay_123") -> ChargeResult:
    return ChargeResult(success=True, payment_key=payment_key, raw={"paymentKey": payment_key, "status": "DONE"})


def declined(code: str = "REJECT_CARD_COMPANY", message: str = "Card declined") -> ChargeResult:
    return ChargeResult.failure(code, message, raw={"code": code, "message": message})


@pytest.fixture
def mock_redis(mocker):
    """Mock Redis connection for lock unit tests."""
    redis_instance = mocker.MagicMock()
    mocker.patch("billing.locks.get_redis_connection", return_value=redis_instance)
    return redis_instance


@pytest.fixture
def held_locks():
    """Keys currently held by the in-memory lock factory."""
    return set()


@pytest.fixture
def lock_factory(held_locks):
    def _factory(key, ttl=60, **kwargs):
        lock = InMemoryLock(held_locks, key, ttl=ttl, **kwargs)
        _factory.locks.append(lock)
        return lock

    _factory.locks = []
    return _factory


@pytest.fixture
def gateway(mocker):
    client = mocker.Mock(spec=PaymentGatewayClient)
    client.charge.return_value = approved()
    return client


@pytest.fixture
def notifier():
    return BillingEventNotifier(target_urls=[])


@pytest.fixture
def reconciler(gateway, notifier, lock_factory):
    return BillingReconciler(gateway=gateway, notifier=notifier, lock_factory=lock_factory)


@pytest.fixture
def subscriber(db):
    return UserFactory()


@pytest.fixture
def plan(db):
    return PlanFactory(name="Pro", price=9900)


@pytest.fixture
def free_plan(db):
    return PlanFactory(name="Free", price=0)


@pytest.fixture
def subscription(db, subscriber, plan):
    """Active monthly subscription due today."""
    return SubscriptionFactory(user=subscriber, plan=plan)
