"""
Django admin configuration for RBAC app.
"""
from django.contrib import admin
from .models import User, Role, TenantUserRole, AuditLog


@admin.register(User)
class UserAdmin(admin.ModelAdmin):
    """
    Admin for the email-based User model.

    Passwords are set with `manage.py shell` or the API, never edited here.
    """
    list_display = ['email', 'first_name', 'last_name', 'is_active', 'is_superuser', 'created_at']
    list_filter = ['is_active', 'is_superuser']
    search_fields = ['email', 'first_name', 'last_name']
    ordering = ['-created_at']
    exclude = ['password_hash']
    readonly_fields = ['created_at', 'updated_at', 'last_login_at']


@admin.register(Role)
class RoleAdmin(admin.ModelAdmin):
    list_display = ['name', 'tenant', 'is_system', 'updated_at']
    list_filter = ['is_system', 'tenant']
    search_fields = ['name', 'tenant__name']


@admin.register(TenantUserRole)
class TenantUserRoleAdmin(admin.ModelAdmin):
    """Deleting an assignment here deactivates it."""
    list_display = ['user', 'tenant', 'role', 'is_active', 'has_all_access', 'assigned_at']
    list_filter = ['is_active', 'has_all_access', 'tenant']
    search_fields = ['user__email', 'tenant__name', 'role__name']
    raw_id_fields = ['user', 'assigned_by']


@admin.register(AuditLog)
class AuditLogAdmin(admin.ModelAdmin):
    list_display = ['action', 'tenant', 'user', 'target_type', 'created_at']
    list_filter = ['action', 'target_type']
    search_fields = ['action', 'user__email']
    readonly_fields = [field.name for field in AuditLog._meta.fields]
