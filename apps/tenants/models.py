"""
Tenant models for multi-tenant isolation.

A tenant is one company account. Roles, assignments and every business
record are owned by exactly one tenant.
"""
from django.db import models
from apps.core.models import BaseModel


class TenantManager(models.Manager):
    """Manager for tenant-scoped queries."""

    def active(self):
        """Return only active tenants."""
        return self.filter(status='active', deleted_at__isnull=True)

    def by_slug(self, slug):
        return self.filter(slug=slug, deleted_at__isnull=True).first()


class Tenant(BaseModel):
    """
    Tenant model representing an isolated company account.

    System roles are seeded for every new tenant (see apps.rbac.signals).
    """

    STATUS_CHOICES = [
        ('active', 'Active'),
        ('suspended', 'Suspended'),
        ('canceled', 'Canceled'),
    ]

    # Basic Information
    name = models.CharField(
        max_length=255,
        help_text="Company name"
    )
    slug = models.SlugField(
        unique=True,
        max_length=100,
        help_text="URL-friendly identifier"
    )
    status = models.CharField(
        max_length=20,
        choices=STATUS_CHOICES,
        default='active',
        db_index=True,
        help_text="Current tenant status"
    )

    # Custom manager
    objects = TenantManager()

    class Meta:
        db_table = 'tenants'
        ordering = ['-created_at']
        indexes = [
            models.Index(fields=['status', 'created_at']),
        ]

    def __str__(self):
        return f"{self.name} ({self.slug})"

    def is_active(self):
        """Suspended and canceled tenants resolve every request to no access."""
        return self.status == 'active' and self.deleted_at is None
