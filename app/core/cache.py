"""
In-process TTL cache.

A small, thread-safe key/value cache with per-entry expiry and an explicit
invalidation API. It satisfies ``core.protocols.CacheBackend`` and is meant
to be owned by one process and injected where it is needed, e.g. the inbound
webhook receiver's replay guard:

    from core.cache import TTLCache
    from webhooks.views import ReceiveEventView

    ReceiveEventView.as_view(replay_cache=TTLCache(default_timeout=300))

Use Django's cache (Redis) instead when state must be shared between
processes.
"""

from __future__ import annotations

import threading
import time
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from collections.abc import Callable
    from typing import Any


class TTLCache:
    """
    Thread-safe in-memory cache with time-based expiry.

    Expired entries are dropped lazily on access and when the cache grows
    past ``max_entries``.

    Args:
        default_timeout: Expiry in seconds used when ``set`` gets no timeout
        max_entries: Soft size limit that triggers a purge of expired keys
        clock: Monotonic time source, injectable for tests
    """

    def __init__(
        self,
        default_timeout: int = 300,
        max_entries: int = 10_000,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.default_timeout = default_timeout
        self.max_entries = max_entries
        self._clock = clock
        self._data: dict[str, tuple[float, Any]] = {}
        self._lock = threading.Lock()

    def get(self, key: str, default: Any = None) -> Any:
        with self._lock:
            entry = self._data.get(key)
            if entry is None:
                return default
            expires_at, value = entry
            if expires_at <= self._clock():
                del self._data[key]
                return default
            return value

    def set(self, key: str, value: Any, timeout: int | None = None) -> None:
        ttl = self.default_timeout if timeout is None else timeout
        with self._lock:
            if len(self._data) >= self.max_entries:
                self._purge_expired()
            self._data[key] = (self._clock() + ttl, value)

    def add(self, key: str, value: Any, timeout: int | None = None) -> bool:
        """
        Store ``value`` only if ``key`` is absent or expired.

        Returns True if the value was stored. Check-and-set happens under one
        lock acquisition, so concurrent callers cannot both win.
        """
        ttl = self.default_timeout if timeout is None else timeout
        with self._lock:
            now = self._clock()
            entry = self._data.get(key)
            if entry is not None and entry[0] > now:
                return False
            if len(self._data) >= self.max_entries:
                self._purge_expired()
            self._data[key] = (now + ttl, value)
            return True

    def delete(self, key: str) -> bool:
        with self._lock:
            return self._data.pop(key, None) is not None

    def clear(self) -> None:
        with self._lock:
            self._data.clear()

    def __len__(self) -> int:
        with self._lock:
            self._purge_expired()
            return len(self._data)

    def _purge_expired(self) -> None:
        now = self._clock()
        expired = [key for key, (expires_at, _) in self._data.items() if expires_at <= now]
        for key in expired:
            del self._data[key]
