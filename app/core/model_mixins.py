"""
Model mixins providing reusable functionality for Django models.

Available Mixins:
    UUIDPrimaryKeyMixin: Use UUID as primary key
    VersionedMixin: Optimistic locking version counter, bumped on every update
    AppendOnlyMixin: Rows may be inserted but never updated or deleted

Usage:
    from core.models import BaseModel
    from core.model_mixins import AppendOnlyMixin, UUIDPrimaryKeyMixin

    class PaymentRecord(UUIDPrimaryKeyMixin, AppendOnlyMixin, BaseModel):
        amount = models.PositiveBigIntegerField()

Note:
    - Always list mixins before BaseModel in inheritance
    - Mixins are abstract and don't create database tables
"""

from __future__ import annotations

import uuid
from typing import TYPE_CHECKING

from django.db import models
from django.db.models import F

from core.exceptions import ConflictError

if TYPE_CHECKING:
    from typing import Any


class UUIDPrimaryKeyMixin(models.Model):
    """
    Use UUID as primary key instead of auto-increment integer.

    IDs are generated client-side, so ``pk`` is already set on unsaved
    instances. Use ``self._state.adding`` rather than ``self.pk`` to tell an
    insert from an update.
    """

    id = models.UUIDField(
        primary_key=True,
        default=uuid.uuid4,
        editable=False,
        help_text="Unique identifier for this record",
    )

    class Meta:
        abstract = True


class VersionedMixin(models.Model):
    """
    Optimistic locking support.

    The version is incremented in the database (``F("version") + 1``) on
    every update and reloaded afterwards, so two writers holding the same
    snapshot can detect each other via ``billing.locks.check_version``.
    """

    version = models.PositiveIntegerField(
        default=1,
        help_text="Version for optimistic locking - incremented on each save",
    )

    class Meta:
        abstract = True

    def save(self, *args: Any, **kwargs: Any) -> None:
        is_update = not self._state.adding and not kwargs.get("force_insert", False)
        if is_update:
            self.version = F("version") + 1
            update_fields = kwargs.get("update_fields")
            if update_fields is not None:
                kwargs["update_fields"] = {*update_fields, "version"}
        super().save(*args, **kwargs)
        if is_update:
            self.refresh_from_db(fields=["version"])


class AppendOnlyMixin(models.Model):
    """
    Append-only records: audit ledgers and dead-letter entries.

    Raises ConflictError on any attempt to update or delete a saved row.
    Bulk queryset updates bypass ``save()`` and are not guarded here; the
    services that own these tables never issue them.
    """

    class Meta:
        abstract = True

    def save(self, *args: Any, **kwargs: Any) -> None:
        if not self._state.adding:
            raise ConflictError(
                f"{self.__class__.__name__} records are append-only",
                error_code="IMMUTABLE_RECORD",
                details={"pk": str(self.pk)},
            )
        super().save(*args, **kwargs)

    def delete(self, *args: Any, **kwargs: Any) -> Any:
        raise ConflictError(
            f"{self.__class__.__name__} records cannot be deleted",
            error_code="IMMUTABLE_RECORD",
            details={"pk": str(self.pk)},
        )
