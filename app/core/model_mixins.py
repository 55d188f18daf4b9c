"""
Abstract mixins for the messaging models.

UUIDPrimaryKeyMixin gives threads, messages and attachments random UUID ids.
SoftDeleteMixin keeps deleted threads and messages in place with
is_deleted/deleted_at so that ordering and read pointers stay valid.

Usage:
    class Message(UUIDPrimaryKeyMixin, SoftDeleteMixin, BaseModel):
        content = models.TextField(null=True)

List mixins before BaseModel.
"""

from __future__ import annotations

import uuid

from django.db import models
from django.utils import timezone


class UUIDPrimaryKeyMixin(models.Model):
    """
    Random UUID primary key.

    Message and thread ids travel to clients, which also mint temporary ids
    for in-flight sends; random UUIDs keep the two namespaces apart and do
    not leak row counts.

    Fields:
        id: UUIDField as primary key (auto-generated)
    """

    id = models.UUIDField(
        primary_key=True,
        default=uuid.uuid4,
        editable=False,
        help_text="Unique identifier for this record",
    )

    class Meta:
        abstract = True


class SoftDeleteMixin(models.Model):
    """
    is_deleted/deleted_at flags in place of row deletion.

    Instead of removing rows, marks them as deleted so that sequences that
    reference them (message order, membership history) stay intact.

    Fields:
        is_deleted: Boolean flag indicating soft delete status
        deleted_at: Timestamp when the record was soft deleted

    Hooks:
        Subclasses may override on_soft_delete() to clear extra fields.
        Fields added to self.soft_delete_extra_fields are saved together
        with the delete flags.
    """

    is_deleted = models.BooleanField(
        default=False,
        db_index=True,
        help_text="Whether this record has been soft deleted",
    )
    deleted_at = models.DateTimeField(
        null=True,
        blank=True,
        help_text="Timestamp when this record was soft deleted",
    )

    soft_delete_extra_fields: tuple[str, ...] = ()

    class Meta:
        abstract = True

    def on_soft_delete(self) -> None:
        """Hook called before the delete flags are persisted."""

    def soft_delete(self) -> None:
        """
        Mark this record as deleted.

        Idempotent: calling it on an already deleted record keeps the
        original deleted_at.

        Example:
            message.soft_delete()
            assert message.is_deleted is True
        """
        if self.is_deleted:
            return

        self.is_deleted = True
        self.deleted_at = timezone.now()
        self.on_soft_delete()
        self.save(
            update_fields=[
                "is_deleted",
                "deleted_at",
                "updated_at",
                *self.soft_delete_extra_fields,
            ]
        )
