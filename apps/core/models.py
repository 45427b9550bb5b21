"""
Abstract model bases shared by every Nexus table.

TimestampedModel carries the UUID key and the created/updated columns.
BaseModel adds soft delete on top; roles, assignments, audit rows, users and
tenants use it. CRM records build on TimestampedModel through
apps.rbac.enforcement.ScopedModel and are deleted for real, so the storage
guard and the database delete policy see the same operation.
"""
import uuid
from django.db import models
from django.utils import timezone


class TimestampedModel(models.Model):
    """UUID primary key plus creation and modification timestamps."""

    id = models.UUIDField(
        primary_key=True,
        default=uuid.uuid4,
        editable=False,
        help_text="Unique identifier"
    )
    created_at = models.DateTimeField(
        auto_now_add=True,
        db_index=True,
        help_text="Timestamp when the record was created"
    )
    updated_at = models.DateTimeField(
        auto_now=True,
        db_index=True,
        help_text="Timestamp when the record was last updated"
    )

    class Meta:
        abstract = True
        ordering = ['-created_at']


class BaseModelManager(models.Manager):
    """Hides soft-deleted rows."""

    def get_queryset(self):
        return super().get_queryset().filter(deleted_at__isnull=True)


class BaseModelQuerySet(models.QuerySet):

    def delete(self):
        """Mark every row deleted instead of removing it."""
        return self.update(deleted_at=timezone.now())

    def hard_delete(self):
        return super().delete()


class BaseModel(TimestampedModel):
    """
    Timestamped model with soft delete.

    delete() stamps deleted_at; objects skips stamped rows and
    objects_with_deleted keeps them, which the role registry uses to revive
    a role that was removed and is defined again.
    """
    deleted_at = models.DateTimeField(
        null=True,
        blank=True,
        db_index=True,
        help_text="Timestamp when the record was soft deleted"
    )

    objects = BaseModelManager.from_queryset(BaseModelQuerySet)()
    objects_with_deleted = models.Manager.from_queryset(BaseModelQuerySet)()

    class Meta(TimestampedModel.Meta):
        abstract = True

    def delete(self, using=None, keep_parents=False):
        self.deleted_at = timezone.now()
        self.save(using=using, update_fields=['deleted_at', 'updated_at'])

    def hard_delete(self, using=None, keep_parents=False):
        super().delete(using=using, keep_parents=keep_parents)

    @property
    def is_deleted(self):
        return self.deleted_at is not None
