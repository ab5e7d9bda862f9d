"""
Concurrency control for the billing loop.

Two mechanisms keep overlapping reconciliation runs from double-charging or
losing updates:

1. **DistributedLock** - Redis SET NX EX with a random token
   - ``billing:reconciliation`` guards a whole run
   - ``billing:subscription:<id>`` guards one subscription's charge
   - TTL releases the lock if a worker dies mid-run

2. **check_version** - optimistic locking on Subscription.version inside
   ``select_for_update``, for callers that act on an earlier snapshot

Usage:
    from billing.locks import DistributedLock, subscription_lock_key

    with DistributedLock(subscription_lock_key(sub.id), ttl=120, blocking=False):
        charge(sub)
"""

from __future__ import annotations

import time
import uuid
from typing import TYPE_CHECKING, TypeVar

from django.db import models, transaction
from django_redis import get_redis_connection

from billing.exceptions import LockAcquisitionError, StaleRecordError
from core.exceptions import NotFoundError

if TYPE_CHECKING:
    from typing import Any

    from redis import Redis

T = TypeVar("T", bound=models.Model)

RUN_LOCK_KEY = "billing:reconciliation"


def subscription_lock_key(subscription_id: Any) -> str:
    return f"billing:subscription:{subscription_id}"


# =============================================================================
# Distributed Locks
# =============================================================================


class DistributedLock:
    """
    Redis-based mutual exclusion with TTL and owner token.

    Args:
        key: Lock identifier (stored as "lock:<key>")
        ttl: Seconds until Redis drops the lock on its own
        blocking: Wait for the lock instead of failing immediately
        timeout: Maximum wait in blocking mode

    Raises:
        LockAcquisitionError: From acquire() / __enter__ when not obtained
    """

    # Delete only if we still own the key
    RELEASE_SCRIPT = """
    if redis.call("get", KEYS[1]) == ARGV[1] then
        return redis.call("del", KEYS[1])
    else
        return 0
    end
    """

    # Refresh TTL only if we still own the key
    EXTEND_SCRIPT = """
    if redis.call("get", KEYS[1]) == ARGV[1] then
        return redis.call("expire", KEYS[1], ARGV[2])
    else
        return 0
    end
    """

    POLL_INTERVAL = 0.05

    def __init__(
        self,
        key: str,
        ttl: int = 60,
        blocking: bool = False,
        timeout: float = 10.0,
    ) -> None:
        self.key = f"lock:{key}"
        self.ttl = ttl
        self.blocking = blocking
        self.timeout = timeout
        self._token: str | None = None
        self._redis: Redis | None = None

    @property
    def redis(self) -> Redis:
        if self._redis is None:
            self._redis = get_redis_connection("default")
        return self._redis

    @property
    def is_held(self) -> bool:
        return self._token is not None

    def acquire(self) -> bool:
        token = uuid.uuid4().hex
        deadline = time.monotonic() + (self.timeout if self.blocking else 0)

        while True:
            if self.redis.set(self.key, token, nx=True, ex=self.ttl):
                self._token = token
                return True
            if time.monotonic() >= deadline:
                break
            time.sleep(self.POLL_INTERVAL)

        if self.blocking:
            message = f"Failed to acquire lock '{self.key}' within {self.timeout}s"
        else:
            message = f"Lock '{self.key}' is already held"
        raise LockAcquisitionError(
            message,
            details={"key": self.key, "timeout": self.timeout if self.blocking else 0},
        )

    def release(self) -> bool:
        """Release if owned; safe to call more than once."""
        if self._token is None:
            return False
        result = self.redis.eval(self.RELEASE_SCRIPT, 1, self.key, self._token)
        self._token = None
        return bool(result)

    def extend(self, ttl: int | None = None) -> bool:
        """Reset the TTL (to ``ttl`` or the original value) if still owned."""
        if self._token is None:
            return False
        result = self.redis.eval(self.EXTEND_SCRIPT, 1, self.key, self._token, ttl or self.ttl)
        return bool(result)

    def __enter__(self) -> DistributedLock:
        self.acquire()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> bool:
        self.release()
        return False


# =============================================================================
# Optimistic Locking
# =============================================================================


def check_version(model_class: type[T], pk: Any, expected_version: int) -> T:
    """
    Lock a row for update and verify it still has ``expected_version``.

    Must run inside ``transaction.atomic()`` for the row lock to outlive the
    call.

    Raises:
        NotFoundError: Row does not exist
        StaleRecordError: Row exists with a different version
    """
    with transaction.atomic():
        instance = (
            model_class.objects.select_for_update()
            .filter(pk=pk, version=expected_version)
            .first()
        )
        if instance is not None:
            return instance

        model_name = model_class.__name__
        current = model_class.objects.filter(pk=pk).values_list("version", flat=True).first()
        if current is None:
            raise NotFoundError(
                f"{model_name} {pk} not found",
                error_code=f"{model_name.upper()}_NOT_FOUND",
                details={"pk": str(pk)},
            )
        raise StaleRecordError(
            f"{model_name} {pk} has been modified "
            f"(expected version {expected_version}, current {current})",
            details={
                "pk": str(pk),
                "expected_version": expected_version,
                "current_version": current,
            },
        )
