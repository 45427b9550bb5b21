"""
RBAC and Authentication services.

Implements:
- RoleRegistry: per-tenant roles and their base permission documents
- AssignmentStore: the active (user, tenant) -> role binding and its override
- PermissionService: loads a binding and resolves effective permissions
- AuthService: JWT authentication
"""
import logging
from datetime import timedelta
from typing import Any, Dict, List, Optional, Tuple

import jwt
from django.conf import settings
from django.core.exceptions import ValidationError
from django.db import DatabaseError, IntegrityError, transaction
from django.utils import timezone

from apps.core.exceptions import Conflict, InvalidConfiguration, NotFound
from apps.core.logging import SecurityLogger
from apps.rbac.context import memoised_permissions, remember_permissions
from apps.rbac.models import AuditLog, Role, TenantUserRole, User
from apps.rbac.resolver import DENY_ALL, EffectivePermissionSet, resolve
from apps.rbac.rls import statement_timeout
from apps.rbac.scopes import parse_permissions

logger = logging.getLogger(__name__)


def _lookup_by_id(queryset, object_id):
    """Fetch by primary key, treating malformed ids like missing rows."""
    try:
        return queryset.filter(id=object_id).first()
    except (ValueError, ValidationError):
        return None


class RoleRegistry:
    """
    Service for per-tenant role definitions.
    """

    @classmethod
    def get_role(cls, tenant, name: str) -> Role:
        """
        Find a role by name within a tenant.

        Raises:
            NotFound: If the tenant has no role with that name
        """
        role = Role.objects.by_name(tenant, name)
        if role is None:
            raise NotFound(
                f"Role '{name}' not found",
                details={'tenant_id': str(tenant.id), 'role': name}
            )
        return role

    @classmethod
    def get_role_by_id(cls, tenant, role_id) -> Role:
        """
        Find a role by id within a tenant.

        Raises:
            NotFound: If the id is unknown or belongs to another tenant
        """
        role = _lookup_by_id(Role.objects.filter(tenant=tenant), role_id)
        if role is None:
            raise NotFound(
                "Role not found",
                details={'tenant_id': str(tenant.id), 'role_id': str(role_id)}
            )
        return role

    @classmethod
    def list_roles(cls, tenant) -> List[Role]:
        """All roles of a tenant, ordered by name."""
        return list(Role.objects.for_tenant(tenant))

    @classmethod
    @transaction.atomic
    def upsert_role(cls, tenant, name: str, permissions: Dict[str, Any], is_system: bool = False,
                    description: Optional[str] = None, actor: Optional[User] = None,
                    request=None) -> Role:
        """
        Create a role, or fully overwrite an existing one with the same name.

        There is no field-level merge: the stored permission document and
        is_system flag are replaced by the given values.

        Args:
            tenant: Tenant that owns the role
            name: Role name, unique per tenant
            permissions: Permission document
            is_system: Whether the role is system-seeded
            description: Optional description; kept as-is when None
            actor: User performing the change (for the audit trail)
            request: Django request (for the audit trail)

        Returns:
            Role instance

        Raises:
            InvalidConfiguration: If the permission document is invalid
        """
        document = parse_permissions(permissions).to_document()

        role = (
            Role.objects_with_deleted
            .select_for_update()
            .filter(tenant=tenant, name=name)
            .first()
        )

        if role is None:
            try:
                with transaction.atomic():
                    role = Role.objects.create(
                        tenant=tenant,
                        name=name,
                        description=description or '',
                        permissions=document,
                        is_system=is_system,
                    )
            except IntegrityError:
                # Lost a race with a concurrent create; overwrite theirs
                role = Role.objects_with_deleted.select_for_update().get(tenant=tenant, name=name)
            else:
                AuditLog.log_action(
                    action='role_created',
                    user=actor,
                    tenant=tenant,
                    target_type='Role',
                    target_id=role.id,
                    diff={'after': {'permissions': document, 'is_system': is_system}},
                    metadata={'role_name': name},
                    request=request,
                )
                logger.info(
                    f"Role created: {name}",
                    extra={'tenant_id': str(tenant.id), 'role_id': str(role.id)}
                )
                return role

        before = {'permissions': role.permissions, 'is_system': role.is_system}
        role.permissions = document
        role.is_system = is_system
        role.deleted_at = None
        if description is not None:
            role.description = description
        role.save()

        AuditLog.log_action(
            action='role_updated',
            user=actor,
            tenant=tenant,
            target_type='Role',
            target_id=role.id,
            diff={'before': before, 'after': {'permissions': document, 'is_system': is_system}},
            metadata={'role_name': name},
            request=request,
        )
        logger.info(
            f"Role updated: {name}",
            extra={'tenant_id': str(tenant.id), 'role_id': str(role.id)}
        )
        return role


class AssignmentStore:
    """
    Service for (user, tenant) role bindings.

    A tenant user has at most one active TenantUserRole. Losing access means
    the binding is deactivated; rows are never hard-deleted.
    """

    @classmethod
    def get_active_assignment(cls, user, tenant) -> TenantUserRole:
        """
        The active binding of a user in a tenant.

        Raises:
            NotFound: If there is none; resolution treats this as no access
        """
        assignment = TenantUserRole.objects.get_active(user, tenant)
        if assignment is None:
            raise NotFound(
                "No active role assignment",
                details={'user_id': str(user.id), 'tenant_id': str(tenant.id)}
            )
        return assignment

    @classmethod
    def get_assignment(cls, assignment_id, tenant=None) -> TenantUserRole:
        """
        Fetch a binding by id, optionally bounded to one tenant.

        Raises:
            NotFound: If the id is unknown (or belongs to another tenant)
        """
        queryset = TenantUserRole.objects.select_related('role', 'user', 'tenant')
        if tenant is not None:
            queryset = queryset.filter(tenant=tenant)
        assignment = _lookup_by_id(queryset, assignment_id)
        if assignment is None:
            raise NotFound(
                "Assignment not found",
                details={'assignment_id': str(assignment_id)}
            )
        return assignment

    @classmethod
    def list_assignments(cls, tenant, include_inactive: bool = False) -> List[TenantUserRole]:
        queryset = TenantUserRole.objects.for_tenant(tenant).select_related('user', 'role')
        if not include_inactive:
            queryset = queryset.filter(is_active=True)
        return list(queryset.order_by('user__email'))

    @classmethod
    def _check_role_tenant(cls, role: Role, tenant):
        if role.tenant_id != tenant.id:
            raise NotFound(
                "Role not found",
                details={'tenant_id': str(tenant.id), 'role_id': str(role.id)}
            )

    @classmethod
    def _create(cls, user, tenant, role, actor, request) -> TenantUserRole:
        with transaction.atomic():
            assignment = TenantUserRole.objects.create(
                user=user,
                tenant=tenant,
                role=role,
                assigned_by=actor,
            )
        AuditLog.log_action(
            action='role_assigned',
            user=actor,
            tenant=tenant,
            target_type='TenantUserRole',
            target_id=assignment.id,
            diff={'role': role.name, 'action': 'assigned'},
            metadata={'target_user_id': str(user.id), 'role_name': role.name},
            request=request,
        )
        return assignment

    @classmethod
    @transaction.atomic
    def assign(cls, user, tenant, role: Role, actor: Optional[User] = None, request=None) -> TenantUserRole:
        """
        Create the active binding for (user, tenant).

        Raises:
            Conflict: If the user already has an active binding in the tenant
            NotFound: If the role belongs to another tenant
        """
        cls._check_role_tenant(role, tenant)

        if TenantUserRole.objects.filter(user=user, tenant=tenant, is_active=True).exists():
            raise Conflict(
                "User already has an active role in this tenant",
                details={'user_id': str(user.id), 'tenant_id': str(tenant.id)}
            )
        try:
            return cls._create(user, tenant, role, actor, request)
        except IntegrityError:
            raise Conflict(
                "User already has an active role in this tenant",
                details={'user_id': str(user.id), 'tenant_id': str(tenant.id)}
            )

    @classmethod
    @transaction.atomic
    def ensure_assigned(cls, user, tenant, role: Role, actor: Optional[User] = None,
                        request=None) -> Tuple[TenantUserRole, bool]:
        """
        Idempotent form of assign().

        Returns:
            (assignment, created). An identical active binding is returned
            unchanged with created=False.

        Raises:
            Conflict: If the active binding points at a different role
            NotFound: If the role belongs to another tenant
        """
        cls._check_role_tenant(role, tenant)

        for _ in range(2):
            existing = (
                TenantUserRole.objects
                .select_for_update()
                .filter(user=user, tenant=tenant, is_active=True)
                .first()
            )
            if existing is not None:
                if existing.role_id == role.id:
                    return existing, False
                raise Conflict(
                    "User already has a different active role in this tenant",
                    details={
                        'user_id': str(user.id),
                        'tenant_id': str(tenant.id),
                        'current_role_id': str(existing.role_id),
                    }
                )
            try:
                return cls._create(user, tenant, role, actor, request), True
            except IntegrityError:
                # A concurrent insert won; look again
                continue

        raise Conflict(
            "Could not settle the active role for this user",
            details={'user_id': str(user.id), 'tenant_id': str(tenant.id)}
        )

    @classmethod
    @transaction.atomic
    def set_role(cls, assignment_id, new_role_id, tenant=None, actor: Optional[User] = None,
                 request=None) -> TenantUserRole:
        """
        Point a binding at another role of the same tenant.

        Only the role pointer changes; override and flags are kept.

        Raises:
            NotFound: If the assignment, or the role within its tenant, is missing
        """
        assignment = cls.get_assignment(assignment_id, tenant=tenant)
        role = RoleRegistry.get_role_by_id(assignment.tenant, new_role_id)

        previous = assignment.role
        assignment.role = role
        assignment.save(update_fields=['role', 'updated_at'])

        AuditLog.log_action(
            action='role_changed',
            user=actor,
            tenant=assignment.tenant,
            target_type='TenantUserRole',
            target_id=assignment.id,
            diff={'before': {'role': previous.name}, 'after': {'role': role.name}},
            metadata={'target_user_id': str(assignment.user_id)},
            request=request,
        )
        return assignment

    @classmethod
    @transaction.atomic
    def set_override(cls, assignment_id, override: Optional[Dict[str, Any]], tenant=None,
                     actor: Optional[User] = None, request=None) -> TenantUserRole:
        """
        Replace the per-user override document (None clears it).

        Raises:
            NotFound: If the assignment is missing
            InvalidConfiguration: If the document is invalid
        """
        assignment = cls.get_assignment(assignment_id, tenant=tenant)
        document = parse_permissions(override).to_document() if override is not None else None

        before = assignment.permission_overrides
        assignment.permission_overrides = document
        assignment.save(update_fields=['permission_overrides', 'updated_at'])

        AuditLog.log_action(
            action='override_updated',
            user=actor,
            tenant=assignment.tenant,
            target_type='TenantUserRole',
            target_id=assignment.id,
            diff={'before': before, 'after': document},
            metadata={'target_user_id': str(assignment.user_id)},
            request=request,
        )
        return assignment

    @classmethod
    @transaction.atomic
    def set_unrestricted(cls, assignment_id, flag: bool, tenant=None, actor: Optional[User] = None,
                         request=None) -> TenantUserRole:
        """Set or clear the legacy has_all_access flag."""
        assignment = cls.get_assignment(assignment_id, tenant=tenant)
        before = assignment.has_all_access
        assignment.has_all_access = bool(flag)
        assignment.save(update_fields=['has_all_access', 'updated_at'])

        AuditLog.log_action(
            action='full_access_changed',
            user=actor,
            tenant=assignment.tenant,
            target_type='TenantUserRole',
            target_id=assignment.id,
            diff={'before': before, 'after': bool(flag)},
            metadata={'target_user_id': str(assignment.user_id)},
            request=request,
        )
        return assignment

    @classmethod
    @transaction.atomic
    def deactivate(cls, assignment_id, tenant=None, actor: Optional[User] = None,
                   request=None) -> TenantUserRole:
        """
        Revoke a binding. The row is kept with is_active=False.

        Raises:
            NotFound: If the assignment is missing
        """
        assignment = cls.get_assignment(assignment_id, tenant=tenant)
        if not assignment.is_active:
            return assignment

        assignment.deactivate()

        AuditLog.log_action(
            action='assignment_deactivated',
            user=actor,
            tenant=assignment.tenant,
            target_type='TenantUserRole',
            target_id=assignment.id,
            diff={'before': {'is_active': True}, 'after': {'is_active': False}},
            metadata={'target_user_id': str(assignment.user_id), 'role_name': assignment.role.name},
            request=request,
        )
        return assignment

    @classmethod
    def assign_default_tenant(cls, user) -> Optional[TenantUserRole]:
        """
        Place a new user in the configured default tenant.

        Driven by RBAC_DEFAULT_TENANT_ID and RBAC_DEFAULT_ROLE_NAME; does
        nothing when either is unset, and is safe to call repeatedly.
        """
        from apps.tenants.models import Tenant

        tenant_id = getattr(settings, 'RBAC_DEFAULT_TENANT_ID', None)
        role_name = getattr(settings, 'RBAC_DEFAULT_ROLE_NAME', None)
        if not tenant_id or not role_name:
            return None

        tenant = _lookup_by_id(Tenant.objects.all(), tenant_id)
        if tenant is None:
            logger.warning(
                "Default tenant not found, skipping auto-assignment",
                extra={'tenant_id': str(tenant_id), 'user_id': str(user.id)}
            )
            return None

        role = Role.objects.by_name(tenant, role_name)
        if role is None:
            logger.warning(
                f"Default role '{role_name}' not found, skipping auto-assignment",
                extra={'tenant_id': str(tenant.id), 'user_id': str(user.id)}
            )
            return None

        try:
            assignment, created = cls.ensure_assigned(user, tenant, role)
        except Conflict:
            # Already placed with another role; leave it alone
            return None

        if created:
            logger.info(
                "User auto-assigned to default tenant",
                extra={'tenant_id': str(tenant.id), 'user_id': str(user.id), 'role': role_name}
            )
        return assignment


class PermissionService:
    """
    Loads a user's binding and resolves it.

    Failures to load (timeouts, database errors, unreadable documents) deny
    everything; they are logged as authorization faults and not memoised.
    """

    @classmethod
    def effective_permissions(cls, user, tenant) -> EffectivePermissionSet:
        """
        Effective permissions of a user in a tenant.

        Memoised for the current request; role and assignment changes clear
        the memo (see apps.rbac.signals).
        """
        if user is None or not getattr(user, 'is_authenticated', False) or tenant is None:
            return DENY_ALL

        cached = memoised_permissions(user.id, tenant.id)
        if cached is not None:
            return cached

        try:
            with statement_timeout(getattr(settings, 'RBAC_LOOKUP_TIMEOUT_MS', None)):
                assignment = TenantUserRole.objects.get_active(user, tenant)
                role = assignment.role if assignment is not None else None
            if role is not None and role.is_deleted:
                role = None
            effective = resolve(role, assignment)
        except DatabaseError as exc:
            SecurityLogger.log_authorization_fault(user.id, tenant.id, f"lookup failed: {exc.__class__.__name__}")
            logger.error(
                "Permission lookup failed, denying",
                extra={'user_id': str(user.id), 'tenant_id': str(tenant.id)},
                exc_info=True
            )
            return DENY_ALL
        except InvalidConfiguration as exc:
            SecurityLogger.log_authorization_fault(user.id, tenant.id, f"invalid permission document: {exc.message}")
            return DENY_ALL

        remember_permissions(user.id, tenant.id, effective)
        return effective


class AuthService:
    """
    Service for authentication operations: JWT issue and validation, login.
    """

    @classmethod
    def generate_jwt(cls, user: User) -> str:
        """
        Generate JWT token for a user.

        Args:
            user: User instance

        Returns:
            JWT token string
        """
        now = timezone.now()
        payload = {
            'user_id': str(user.id),
            'email': user.email,
            'exp': now + timedelta(hours=getattr(settings, 'JWT_EXPIRATION_HOURS', 24)),
            'iat': now,
        }

        return jwt.encode(
            payload,
            settings.JWT_SECRET_KEY,
            algorithm=getattr(settings, 'JWT_ALGORITHM', 'HS256')
        )

    @classmethod
    def validate_jwt(cls, token: str) -> Optional[Dict[str, Any]]:
        """
        Validate JWT token and return payload.

        Returns:
            Decoded payload dict or None if invalid or expired
        """
        try:
            return jwt.decode(
                token,
                settings.JWT_SECRET_KEY,
                algorithms=[getattr(settings, 'JWT_ALGORITHM', 'HS256')]
            )
        except jwt.ExpiredSignatureError:
            return None
        except jwt.InvalidTokenError:
            return None

    @classmethod
    def get_user_from_jwt(cls, token: str) -> Optional[User]:
        payload = cls.validate_jwt(token)
        if not payload:
            return None

        user_id = payload.get('user_id')
        if not user_id:
            return None

        return _lookup_by_id(User.objects.filter(is_active=True), user_id)

    @classmethod
    def login(cls, email: str, password: str) -> Optional[Dict[str, Any]]:
        """
        Authenticate user and return JWT token.

        Returns:
            Dict with user and token, or None if authentication failed
        """
        user = User.objects.filter(email=User.objects.normalize_email(email), is_active=True).first()
        if user is None or not user.check_password(password):
            return None

        user.update_last_login()
        token = cls.generate_jwt(user)

        AuditLog.log_action(
            action='user_login',
            user=user,
            target_type='User',
            target_id=user.id,
        )

        return {
            'user': user,
            'token': token,
        }
