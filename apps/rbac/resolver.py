"""
Effective permission resolution.

resolve() merges a role's base permissions with an assignment's override.
It is pure: callers load the Role and TenantUserRole rows, this module only
combines them.
"""
from dataclasses import dataclass

from apps.rbac.scopes import ALLOWED_SCOPES, PermissionSet, Scope

# The resolved set for one (user, tenant) at one instant. It is never
# persisted and never outlives the request that computed it.
EffectivePermissionSet = PermissionSet

DENY_ALL = PermissionSet.empty()


@dataclass(frozen=True)
class RoleGrant:
    """Minimal role shape resolve() needs; Role model instances also qualify."""
    name: str
    permissions: PermissionSet


def _unrestricted_permissions() -> PermissionSet:
    return PermissionSet({
        module: {action: Scope.ALL for action in actions}
        for module, actions in ALLOWED_SCOPES.items()
    })


# Stands in for the legacy has_all_access flag: All on every module and
# action, dashboard included.
UNRESTRICTED_ROLE = RoleGrant(name='unrestricted', permissions=_unrestricted_permissions())


def _as_permission_set(value) -> PermissionSet:
    if isinstance(value, PermissionSet):
        return value
    return PermissionSet.from_document(value)


def resolve(role, assignment) -> EffectivePermissionSet:
    """
    Compute the effective permissions of one assignment.

    Rules:
    1. No assignment, or an inactive one, grants nothing.
    2. has_all_access swaps the role for UNRESTRICTED_ROLE; the override is ignored.
    3. Otherwise start from the role's permissions (a missing role is an empty base).
    4. Every module named in the override replaces the base module wholesale.
       Actions the override leaves out of that module are denied, not inherited.

    Args:
        role: Role instance, RoleGrant, or None
        assignment: TenantUserRole instance or any object with is_active,
            has_all_access and permission_overrides; may be None

    Returns:
        PermissionSet: The effective permission set

    Raises:
        InvalidConfiguration: If a stored document cannot be parsed
    """
    if assignment is None or not getattr(assignment, 'is_active', False):
        return DENY_ALL

    if getattr(assignment, 'has_all_access', False):
        return UNRESTRICTED_ROLE.permissions

    base = _as_permission_set(role.permissions) if role is not None else DENY_ALL

    raw_override = getattr(assignment, 'permission_overrides', None)
    if raw_override is None:
        return base

    override = _as_permission_set(raw_override)
    merged = {module: base.actions_for(module) for module in base.modules()}
    for module in override.modules():
        merged[module] = override.actions_for(module)

    return PermissionSet(merged)

