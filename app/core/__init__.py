"""
Core Application - Infrastructure & Base Classes

Generic building blocks shared by the webhooks and billing apps. Nothing in
here knows about events, subscriptions or payment gateways.

Models (import from core.models):
    - BaseModel: Abstract model with timestamps (created_at, updated_at)

Model Mixins (import from core.model_mixins):
    - UUIDPrimaryKeyMixin: UUID as primary key
    - VersionedMixin: Optimistic locking version counter
    - AppendOnlyMixin: Insert-only rows (ledgers, dead letters)

Services (import from core.services):
    - BaseService: Logger and transaction helpers for service classes

Exceptions (import from core.exceptions):
    - BaseApplicationError: Base exception with error codes
    - NotFoundError, ConflictError, ConfigurationError

Retry (import from core.retry):
    - RetryPolicy: Exponential or linear backoff schedule, configurable from settings

Caching (import from core.cache / core.protocols):
    - TTLCache: In-process cache with expiry and explicit invalidation
    - CacheBackend: Protocol satisfied by TTLCache and Django's cache
"""
