"""
RBAC serializers for REST API endpoints.

Provides serialization for:
- Login
- Users
- Roles and their permission documents
- Role assignments and per-user overrides
- Audit logs
"""
from rest_framework import serializers

from apps.core.exceptions import InvalidConfiguration
from apps.rbac.models import User, Role, TenantUserRole, AuditLog
from apps.rbac.scopes import parse_permissions


def _validate_document(value):
    """Validate a permission document and return its normalised form."""
    try:
        return parse_permissions(value).to_document()
    except InvalidConfiguration as exc:
        raise serializers.ValidationError(exc.message)


# ===== AUTHENTICATION SERIALIZERS =====

class LoginSerializer(serializers.Serializer):
    """Serializer for user login."""

    email = serializers.EmailField(required=True)
    password = serializers.CharField(
        required=True,
        write_only=True,
        style={'input_type': 'password'}
    )

    def validate_email(self, value):
        """Normalize email to lowercase."""
        return value.lower()


# ===== USER SERIALIZERS =====

class UserSerializer(serializers.ModelSerializer):
    """Serializer for User model."""

    full_name = serializers.CharField(source='get_full_name', read_only=True)

    class Meta:
        model = User
        fields = [
            'id', 'email', 'first_name', 'last_name', 'full_name',
            'is_active', 'last_login_at', 'created_at',
        ]
        read_only_fields = fields


# ===== ROLE SERIALIZERS =====

class RoleSerializer(serializers.ModelSerializer):
    """Serializer for Role model, including its permission document."""

    class Meta:
        model = Role
        fields = [
            'id', 'name', 'description', 'is_system', 'permissions',
            'created_at', 'updated_at'
        ]
        read_only_fields = fields


class RoleUpsertSerializer(serializers.Serializer):
    """Create or overwrite a role by name."""

    name = serializers.CharField(max_length=100)
    description = serializers.CharField(required=False, allow_blank=True, default='')
    permissions = serializers.JSONField()

    def validate_name(self, value):
        if not value.strip():
            raise serializers.ValidationError("Role name cannot be empty.")
        return value.strip()

    def validate_permissions(self, value):
        return _validate_document(value)


# ===== ASSIGNMENT SERIALIZERS =====

class TenantUserRoleSerializer(serializers.ModelSerializer):
    """Serializer for TenantUserRole (role assignments)."""

    user = UserSerializer(read_only=True)
    role = RoleSerializer(read_only=True)
    assigned_by_email = serializers.EmailField(
        source='assigned_by.email',
        read_only=True,
        default=None,
    )

    class Meta:
        model = TenantUserRole
        fields = [
            'id', 'user', 'role', 'is_active', 'has_all_access',
            'permission_overrides', 'assigned_by_email', 'assigned_at',
            'deactivated_at',
        ]
        read_only_fields = fields


class AssignRoleSerializer(serializers.Serializer):
    """Bind a user to a role in the current tenant, naming the role by id or by name."""

    user_id = serializers.UUIDField()
    role_id = serializers.UUIDField(required=False)
    role = serializers.CharField(required=False, max_length=100)

    def validate(self, attrs):
        if not attrs.get('role_id') and not attrs.get('role'):
            raise serializers.ValidationError("Either role_id or role is required.")
        return attrs

    def validate_user_id(self, value):
        if not User.objects.filter(id=value, is_active=True).exists():
            raise serializers.ValidationError("User not found.")
        return value


class ChangeRoleSerializer(serializers.Serializer):
    role_id = serializers.UUIDField()


class OverrideSerializer(serializers.Serializer):
    """Per-user override document; null clears it."""

    permissions = serializers.JSONField(allow_null=True)

    def validate_permissions(self, value):
        if value is None:
            return None
        return _validate_document(value)


class FullAccessSerializer(serializers.Serializer):
    has_all_access = serializers.BooleanField()


class AuditLogSerializer(serializers.ModelSerializer):
    """Serializer for AuditLog model."""

    user_email = serializers.EmailField(source='user.email', read_only=True, default=None)

    class Meta:
        model = AuditLog
        fields = [
            'id', 'user_email', 'action',
            'target_type', 'target_id', 'diff', 'metadata',
            'ip_address', 'request_id', 'created_at'
        ]
        read_only_fields = fields
