"""
RBAC models for multi-tenant scoped access control.

Implements:
- Global User identity (can work across multiple tenants)
- Role (per-tenant role definitions carrying a permission document)
- TenantUserRole (the one active role binding of a user inside a tenant,
  with an optional per-user permission override)
- AuditLog (comprehensive audit trail)
"""
import logging
from django.db import models
from django.db.models import Q
from django.contrib.auth.hashers import make_password, check_password
from django.utils import timezone
from apps.core.models import BaseModel, BaseModelManager, BaseModelQuerySet
from apps.rbac.scopes import PermissionSet, parse_permissions

logger = logging.getLogger(__name__)


class UserManager(models.Manager):
    """
    Manager for User queries.

    Compatible with Django's authentication system and admin interface.
    """

    def active(self):
        """Return only active users."""
        return self.filter(is_active=True)

    def by_email(self, email):
        """Find user by email."""
        return self.filter(email=self.normalize_email(email)).first()

    def create_user(self, email, password=None, **extra_fields):
        """
        Create a new user with hashed password.

        Saving fires post_save, which places the user in the default tenant
        when one is configured.
        """
        if not email:
            raise ValueError('Email address is required')

        email = self.normalize_email(email)
        extra_fields.setdefault('is_active', True)
        extra_fields.setdefault('is_superuser', False)

        user = self.model(email=email, **extra_fields)
        if password:
            user.set_password(password)
        user.save(using=self._db)
        return user

    def create_superuser(self, email, password=None, **extra_fields):
        """Required for Django's createsuperuser command."""
        extra_fields.setdefault('is_superuser', True)
        if extra_fields.get('is_superuser') is not True:
            raise ValueError('Superuser must have is_superuser=True')
        return self.create_user(email, password, **extra_fields)

    @staticmethod
    def normalize_email(email):
        """Lowercase the domain part of the email address."""
        email = email or ''
        try:
            email_name, domain_part = email.strip().rsplit('@', 1)
        except ValueError:
            pass
        else:
            email = email_name + '@' + domain_part.lower()
        return email

    def get_by_natural_key(self, email):
        return self.get(**{self.model.USERNAME_FIELD: email})


class User(BaseModel):
    """
    Global user identity - can belong to multiple tenants.

    Authentication happens at the User level, authorization per tenant through
    the user's active TenantUserRole.
    """

    email = models.EmailField(
        unique=True,
        db_index=True,
        help_text="User email address (unique globally)"
    )
    password_hash = models.CharField(
        max_length=255,
        help_text="Hashed password",
        db_column='password_hash'
    )

    # Status
    is_active = models.BooleanField(
        default=True,
        db_index=True,
        help_text="Whether user account is active"
    )
    is_superuser = models.BooleanField(
        default=False,
        help_text="Platform administrator (Django admin only, grants no tenant data)"
    )

    USERNAME_FIELD = 'email'
    EMAIL_FIELD = 'email'
    REQUIRED_FIELDS = []

    last_login_at = models.DateTimeField(
        null=True,
        blank=True,
        help_text="Last login timestamp"
    )

    # Profile
    first_name = models.CharField(
        max_length=100,
        blank=True,
        help_text="User first name"
    )
    last_name = models.CharField(
        max_length=100,
        blank=True,
        help_text="User last name"
    )

    objects = UserManager()

    class Meta:
        db_table = 'users'
        ordering = ['-created_at']
        indexes = [
            models.Index(fields=['is_active', 'created_at']),
        ]

    def __str__(self):
        return self.email

    @property
    def password(self):
        """Alias for password_hash; Django admin expects a 'password' attribute."""
        return self.password_hash

    @password.setter
    def password(self, value):
        self.password_hash = value

    def check_password(self, raw_password):
        """Check if provided password matches stored hash."""
        return check_password(raw_password, self.password_hash)

    def set_password(self, raw_password):
        """Set user password (hashes automatically)."""
        self.password_hash = make_password(raw_password)

    def get_full_name(self):
        if self.first_name or self.last_name:
            return f"{self.first_name} {self.last_name}".strip()
        return self.email

    def update_last_login(self):
        self.last_login_at = timezone.now()
        self.save(update_fields=['last_login_at', 'updated_at'])

    @property
    def is_authenticated(self):
        return True

    @property
    def is_anonymous(self):
        return False

    @property
    def is_staff(self):
        """Superusers may use Django admin."""
        return self.is_superuser

    def has_perm(self, perm, obj=None):
        """Django admin permission hook; tenant data is governed by RBAC instead."""
        return self.is_superuser

    def has_perms(self, perm_list, obj=None):
        return self.is_superuser

    def has_module_perms(self, app_label):
        return self.is_superuser

    def natural_key(self):
        return (self.email,)


class RoleManager(BaseModelManager):
    """Manager for Role queries with tenant scoping."""

    def for_tenant(self, tenant):
        """Get all roles for a specific tenant, ordered by name."""
        return self.filter(tenant=tenant).order_by('name')

    def system_roles(self, tenant):
        """Get system-seeded roles for a tenant."""
        return self.filter(tenant=tenant, is_system=True)

    def by_name(self, tenant, name):
        """Find role by tenant and name."""
        return self.filter(tenant=tenant, name=name).first()


class Role(BaseModel):
    """
    Per-tenant role definitions.

    Each tenant has its own set of roles. System roles are seeded when the
    tenant is created; admins may add custom roles. The base permission
    document lives on the role itself:

        {"leads": {"read": "all", "update": "own"}, "dashboard": {"read": true}}
    """

    tenant = models.ForeignKey(
        'tenants.Tenant',
        on_delete=models.CASCADE,
        related_name='roles',
        db_index=True,
        help_text="Tenant this role belongs to"
    )
    name = models.CharField(
        max_length=100,
        help_text="Role name (e.g., 'Sales Rep', 'Finance')"
    )
    description = models.TextField(
        blank=True,
        help_text="Role description"
    )
    permissions = models.JSONField(
        default=dict,
        blank=True,
        help_text="Base permission document: module -> action -> scope token"
    )
    is_system = models.BooleanField(
        default=False,
        db_index=True,
        help_text="Whether this is a system-seeded role"
    )

    objects = RoleManager()

    class Meta:
        db_table = 'roles'
        unique_together = [('tenant', 'name')]
        ordering = ['tenant', 'name']
        indexes = [
            models.Index(fields=['tenant', 'is_system']),
        ]

    def __str__(self):
        return f"{self.tenant.name} - {self.name}"

    @property
    def permission_set(self) -> PermissionSet:
        return PermissionSet.from_document(self.permissions)

    def save(self, *args, **kwargs):
        """
        Validate the permission document before saving.

        Raises:
            InvalidConfiguration: If the document is malformed
        """
        self.permissions = parse_permissions(self.permissions).to_document()
        super().save(*args, **kwargs)


class TenantUserRoleQuerySet(BaseModelQuerySet):
    """Bulk deletes deactivate, like TenantUserRole.delete()."""

    def active(self):
        return self.filter(is_active=True)

    def delete(self):
        from apps.rbac.context import invalidate_permissions

        count = self.filter(is_active=True).update(is_active=False, deactivated_at=timezone.now())
        invalidate_permissions()
        return count


class TenantUserRoleManager(BaseModelManager.from_queryset(TenantUserRoleQuerySet)):
    """Manager for role bindings with tenant scoping."""

    def for_tenant(self, tenant):
        return self.filter(tenant=tenant)

    def for_user(self, user):
        return self.filter(user=user)

    def get_active(self, user, tenant):
        """The active binding for (user, tenant), or None."""
        return self.select_related('role').filter(user=user, tenant=tenant, is_active=True).first()


class TenantUserRole(BaseModel):
    """
    Binds one user to one tenant and one role.

    At most one binding per (user, tenant) is active; the partial unique
    constraint below enforces it. Revoking access deactivates the row, it is
    never removed.

    permission_overrides replaces whole modules of the role's document for
    this user only. has_all_access is the legacy full-access flag.
    """

    user = models.ForeignKey(
        User,
        on_delete=models.CASCADE,
        related_name='tenant_roles',
        db_index=True,
        help_text="User who holds this role"
    )
    tenant = models.ForeignKey(
        'tenants.Tenant',
        on_delete=models.CASCADE,
        related_name='user_roles',
        db_index=True,
        help_text="Tenant the binding applies to"
    )
    role = models.ForeignKey(
        Role,
        on_delete=models.PROTECT,
        related_name='user_roles',
        db_index=True,
        help_text="Role assigned to the user"
    )
    is_active = models.BooleanField(
        default=True,
        db_index=True,
        help_text="Only active bindings grant access"
    )
    permission_overrides = models.JSONField(
        null=True,
        blank=True,
        help_text="Per-user module replacements of the role's permission document"
    )
    has_all_access = models.BooleanField(
        default=False,
        help_text="Legacy flag granting every module at scope 'all'"
    )

    # Audit fields
    assigned_by = models.ForeignKey(
        User,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name='role_assignments_made',
        help_text="User who assigned this role"
    )
    assigned_at = models.DateTimeField(
        auto_now_add=True,
        help_text="When role was assigned"
    )
    deactivated_at = models.DateTimeField(
        null=True,
        blank=True,
        help_text="When the binding was deactivated"
    )

    objects = TenantUserRoleManager()

    class Meta:
        db_table = 'user_tenant_roles'
        ordering = ['tenant', '-assigned_at']
        constraints = [
            models.UniqueConstraint(
                fields=['user', 'tenant'],
                condition=Q(is_active=True),
                name='unique_active_user_tenant_role',
            ),
        ]
        indexes = [
            models.Index(fields=['tenant', 'is_active']),
            models.Index(fields=['user', 'tenant']),
        ]

    def __str__(self):
        state = 'active' if self.is_active else 'inactive'
        return f"{self.user.email} @ {self.tenant.name} -> {self.role.name} ({state})"

    def clean(self):
        """Validate that role and binding belong to the same tenant."""
        super().clean()
        if self.tenant_id and self.role_id:
            if self.role.tenant_id != self.tenant_id:
                from django.core.exceptions import ValidationError
                raise ValidationError(
                    "Role and assignment must belong to the same tenant"
                )

    def save(self, *args, **kwargs):
        """
        Validate before saving.

        Raises:
            InvalidConfiguration: If the override document is malformed
            ValidationError: If the role belongs to another tenant
        """
        if self.permission_overrides is not None:
            self.permission_overrides = parse_permissions(self.permission_overrides).to_document()
        self.full_clean(validate_unique=False, validate_constraints=False)
        super().save(*args, **kwargs)

    def delete(self, using=None, keep_parents=False):
        """Bindings are deactivated, never deleted."""
        self.deactivate()

    def deactivate(self):
        if not self.is_active:
            return
        self.is_active = False
        self.deactivated_at = timezone.now()
        super().save(update_fields=['is_active', 'deactivated_at', 'updated_at'])


class AuditLogManager(models.Manager):
    """Manager for AuditLog queries with tenant scoping."""

    def for_tenant(self, tenant):
        return self.filter(tenant=tenant)

    def by_action(self, action):
        return self.filter(action=action)

    def by_target(self, target_type, target_id=None):
        qs = self.filter(target_type=target_type)
        if target_id:
            qs = qs.filter(target_id=target_id)
        return qs


class AuditLog(BaseModel):
    """
    Audit trail for role and assignment changes.
    """

    tenant = models.ForeignKey(
        'tenants.Tenant',
        on_delete=models.CASCADE,
        null=True,
        blank=True,
        related_name='audit_logs',
        db_index=True,
        help_text="Tenant this action belongs to (null for platform-level)"
    )
    user = models.ForeignKey(
        User,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name='audit_logs',
        db_index=True,
        help_text="User who performed the action (null for system actions)"
    )

    action = models.CharField(
        max_length=100,
        db_index=True,
        help_text="Action performed (e.g., 'role_updated', 'assignment_deactivated')"
    )
    target_type = models.CharField(
        max_length=50,
        db_index=True,
        help_text="Type of target entity (e.g., 'Role', 'TenantUserRole')"
    )
    target_id = models.UUIDField(
        null=True,
        blank=True,
        db_index=True,
        help_text="ID of target entity"
    )
    diff = models.JSONField(
        default=dict,
        blank=True,
        help_text="Before/after changes in JSON format"
    )

    # Request Context
    ip_address = models.GenericIPAddressField(
        null=True,
        blank=True,
        help_text="IP address of the request"
    )
    user_agent = models.TextField(
        blank=True,
        help_text="User agent string"
    )
    request_id = models.CharField(
        max_length=100,
        blank=True,
        db_index=True,
        help_text="Request ID for tracing"
    )
    metadata = models.JSONField(
        default=dict,
        blank=True,
        help_text="Additional context metadata"
    )

    objects = AuditLogManager()

    class Meta:
        db_table = 'audit_logs'
        ordering = ['-created_at']
        indexes = [
            models.Index(fields=['tenant', 'created_at']),
            models.Index(fields=['action', 'created_at']),
            models.Index(fields=['target_type', 'target_id']),
        ]

    def __str__(self):
        user_str = self.user.email if self.user else 'System'
        tenant_str = self.tenant.name if self.tenant else 'Platform'
        return f"{tenant_str} - {user_str} - {self.action}"

    @classmethod
    def log_action(cls, action, user=None, tenant=None, target_type=None,
                   target_id=None, diff=None, metadata=None, request=None):
        """
        Convenience method to create audit log entry.

        Args:
            action: Action being performed
            user: User performing the action
            tenant: Tenant context
            target_type: Type of target entity
            target_id: ID of target entity
            diff: Before/after changes
            metadata: Additional context
            request: Django request object (for IP, user agent, request ID)

        Returns:
            AuditLog instance, or None if the row could not be written
        """
        if user is not None and not getattr(user, 'is_authenticated', False):
            user = None

        log_data = {
            'action': action,
            'user': user,
            'tenant': tenant,
            'target_type': target_type,
            'target_id': target_id,
            'diff': diff or {},
            'metadata': metadata or {},
        }

        if request is not None:
            log_data['ip_address'] = cls._get_client_ip(request)
            log_data['user_agent'] = request.META.get('HTTP_USER_AGENT', '')
            log_data['request_id'] = getattr(request, 'request_id', None) or ''

        try:
            return cls.objects.create(**log_data)
        except Exception as e:
            # Audit logging must not break the main operation
            logger.error(
                f"Failed to create audit log: {str(e)}",
                extra={'action': action, 'tenant_id': tenant.id if tenant else None},
                exc_info=True
            )
            return None

    @staticmethod
    def _get_client_ip(request):
        x_forwarded_for = request.META.get('HTTP_X_FORWARDED_FOR')
        if x_forwarded_for:
            return x_forwarded_for.split(',')[0].strip()
        return request.META.get('REMOTE_ADDR')
