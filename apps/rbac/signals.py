"""
RBAC signals for role seeding, default-tenant placement and memo invalidation.
"""
import logging

from django.db import transaction
from django.db.models.signals import post_save
from django.dispatch import receiver

from apps.rbac.context import invalidate_permissions

logger = logging.getLogger(__name__)


@receiver(post_save, sender='tenants.Tenant')
def seed_roles_on_tenant_creation(sender, instance, created, **kwargs):
    """
    Seed the system roles when a new tenant is created.
    """
    if not created:
        return

    # Import here to avoid circular imports
    from apps.rbac.models import AuditLog
    from apps.rbac.management.commands.seed_tenant_roles import Command

    with transaction.atomic():
        roles = Command.seed_tenant(instance)

        AuditLog.log_action(
            action='tenant_roles_seeded',
            user=None,  # System action
            tenant=instance,
            target_type='Tenant',
            target_id=instance.id,
            metadata={
                'roles': [role.name for role in roles],
                'trigger': 'post_save_signal',
            }
        )


@receiver(post_save, sender='rbac.User')
def assign_default_tenant_on_user_creation(sender, instance, created, **kwargs):
    """
    New users join the configured default tenant with the default role.
    """
    if not created or kwargs.get('raw'):
        return

    from apps.rbac.services import AssignmentStore

    AssignmentStore.assign_default_tenant(instance)


@receiver(post_save, sender='rbac.Role')
def invalidate_on_role_change(sender, instance, **kwargs):
    invalidate_permissions(tenant_id=instance.tenant_id)


@receiver(post_save, sender='rbac.TenantUserRole')
def invalidate_on_assignment_change(sender, instance, **kwargs):
    """Reassignment, override edits, flag changes and deactivation all land here."""
    invalidate_permissions(tenant_id=instance.tenant_id, user_id=instance.user_id)
