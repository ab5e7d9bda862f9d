"""
Protocol definitions for generic infrastructure services.

Protocols let services depend on an interface instead of a concrete backend,
so callers can inject Django's cache, the in-process ``core.cache.TTLCache``
or a test double.

Available Protocols:
    CacheBackend: Cache operations interface (compatible with Django's cache)

Usage:
    from core.protocols import CacheBackend

    def seen_before(cache: CacheBackend, key: str, ttl: int) -> bool:
        return not cache.add(key, True, timeout=ttl)
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Protocol, runtime_checkable

if TYPE_CHECKING:
    from typing import Any


@runtime_checkable
class CacheBackend(Protocol):
    """Interface for key/value caches with per-key expiry."""

    def get(self, key: str, default: Any = None) -> Any:
        """Return the cached value for ``key`` or ``default``."""
        ...

    def set(self, key: str, value: Any, timeout: int | None = None) -> None:
        """Store ``value`` under ``key`` for ``timeout`` seconds (None: backend default)."""
        ...

    def add(self, key: str, value: Any, timeout: int | None = None) -> bool:
        """Store ``value`` only if ``key`` is absent. Returns True if stored."""
        ...

    def delete(self, key: str) -> bool:
        """Invalidate ``key``. Returns True if it was present."""
        ...

    def clear(self) -> None:
        """Invalidate every key."""
        ...
