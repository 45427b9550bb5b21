"""
Access context using contextvars for async-safety.

Holds who is acting, in which tenant, and with which effective permissions.
TenantContextMiddleware sets it for each request; ScopedQuerySet and the
write guard read it.

Usage:
    with access_context(user_id=user.id, tenant_id=tenant.id, permissions=eff):
        Lead.objects.all()  # only rows eff admits

No context means a system operation (migrations, management commands, seeding):
the storage guard does not filter. A context whose permissions are DENY_ALL
(no active assignment) admits nothing.
"""
from contextlib import contextmanager
from contextvars import ContextVar
from typing import Dict, NamedTuple, Optional, Tuple

from apps.rbac.scopes import PermissionSet


class AccessContext(NamedTuple):
    """Immutable access context for a request."""

    user_id: Optional[str]
    tenant_id: str
    permissions: PermissionSet


_current_access: ContextVar[Optional[AccessContext]] = ContextVar(
    "current_access",
    default=None,
)

# Per-request memo of resolved permissions, keyed by (user_id, tenant_id).
# None outside a request: nothing is memoised.
_permission_memo: ContextVar[Optional[Dict[Tuple[str, str], PermissionSet]]] = ContextVar(
    "permission_memo",
    default=None,
)


def get_access_context() -> Optional[AccessContext]:
    return _current_access.get()


def set_access_context(user_id, tenant_id, permissions: PermissionSet):
    """Set the context and return the token needed to reset it."""
    return _current_access.set(
        AccessContext(
            user_id=str(user_id) if user_id is not None else None,
            tenant_id=str(tenant_id),
            permissions=permissions,
        )
    )


def reset_access_context(token) -> None:
    _current_access.reset(token)


@contextmanager
def access_context(user_id, tenant_id, permissions: PermissionSet):
    """
    Context manager for acting as a user inside a tenant.

    Restores the previous context on exit, even on exception.
    """
    token = set_access_context(user_id, tenant_id, permissions)
    try:
        yield get_access_context()
    finally:
        reset_access_context(token)


@contextmanager
def system_context():
    """Run a block as a system operation, without row filtering."""
    token = _current_access.set(None)
    try:
        yield
    finally:
        _current_access.reset(token)


def begin_permission_memo():
    return _permission_memo.set({})


def end_permission_memo(token) -> None:
    _permission_memo.reset(token)


def memoised_permissions(user_id, tenant_id) -> Optional[PermissionSet]:
    memo = _permission_memo.get()
    if memo is None:
        return None
    return memo.get((str(user_id), str(tenant_id)))


def remember_permissions(user_id, tenant_id, permissions: PermissionSet) -> None:
    memo = _permission_memo.get()
    if memo is not None:
        memo[(str(user_id), str(tenant_id))] = permissions


def invalidate_permissions(tenant_id=None, user_id=None) -> None:
    """
    Drop memoised permissions.

    With no arguments the whole memo is cleared. Role edits pass only the
    tenant; assignment edits pass both.
    """
    memo = _permission_memo.get()
    if not memo:
        return
    for key in list(memo):
        memo_user, memo_tenant = key
        if tenant_id is not None and memo_tenant != str(tenant_id):
            continue
        if user_id is not None and memo_user != str(user_id):
            continue
        del memo[key]
