"""
Base service layer patterns for business logic encapsulation.

Services hold the logic that sits between Celery tasks / views and the
models: views handle HTTP, models handle data, services handle the rules.

Usage:
    from core.services import BaseService

    class SubscriptionLedger(BaseService):
        @classmethod
        def record_failure(cls, subscription_id, ...):
            with cls.atomic():
                ...
            cls.get_logger().warning("Charge failed", extra={...})
"""

from __future__ import annotations

import logging
from contextlib import contextmanager
from typing import TYPE_CHECKING

from django.db import transaction

if TYPE_CHECKING:
    from collections.abc import Generator


class BaseService:
    """
    Base class for service layer classes.

    Design Notes:
        - Prefer @classmethod / @staticmethod for stateless operations
        - Collaborators (HTTP clients, locks, notifiers) are passed to
          __init__ when a service needs them, so tests can inject fakes
        - Raise BaseApplicationError subclasses for failures callers handle
    """

    @classmethod
    def get_logger(cls) -> logging.Logger:
        """Logger named after the service class for easy filtering."""
        return logging.getLogger(f"{cls.__module__}.{cls.__name__}")

    @classmethod
    @contextmanager
    def atomic(cls) -> Generator[None, None, None]:
        """
        Execute the enclosed block in a database transaction.

        Thin wrapper around ``transaction.atomic()`` that keeps transaction
        boundaries explicit in service code.
        """
        with transaction.atomic():
            yield
