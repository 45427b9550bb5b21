"""
Request-tier authorization checks.

can() answers a single "may this user perform this action" question against an
already resolved permission set. It never touches the database.
"""
import logging

from apps.rbac.policy import TablePolicy, rule_for
from apps.rbac.scopes import Action, Module, PermissionSet, Scope

logger = logging.getLogger(__name__)


def scope_for(effective: PermissionSet, module, action) -> Scope:
    if effective is None:
        return Scope.DENIED
    return effective.lookup(module, action)


def can(effective: PermissionSet, module, action, record=None, user_id=None) -> bool:
    """
    Decide whether an action on a module is allowed.

    Args:
        effective: Resolved permission set (see resolver.resolve)
        module: Module or module name, e.g. 'leads'
        action: Action or action name, e.g. 'read'
        record: Target record as a dict or object; needed for own/ownDeals scopes
        user_id: Acting user id; needed for own/ownDeals scopes

    Returns:
        bool: True if allowed. Unknown modules or actions are denied.

    Example:
        >>> can(eff, 'leads', 'read', {'owner_id': 'U1'}, 'U1')
        True
    """
    scope = scope_for(effective, module, action)
    rule = rule_for(scope)

    if rule.needs_record and (record is None or user_id is None):
        logger.debug(
            f"Denied {module}.{action}: scope {scope.value} requires a record and a user",
            extra={'module_name': str(getattr(module, 'value', module)), 'action': str(getattr(action, 'value', action))}
        )
        return False

    return rule.matches(record, user_id)


def can_access_record(effective: PermissionSet, policy: TablePolicy, action, record, user_id=None) -> bool:
    """
    Decide whether an action on a stored record is allowed.

    The table policy lists every module that grants the action; any one of
    them admitting the record is enough.
    """
    return any(
        can(effective, module, action, record, user_id)
        for module in policy.modules_for(action)
    )


def can_any(effective: PermissionSet, module, action) -> bool:
    """True if the action is granted at any scope, i.e. some rows may be reachable."""
    return scope_for(effective, module, action) is not Scope.DENIED


def permission_summary(effective: PermissionSet):
    """Every (module, action) pair with its resolved scope token, for API responses."""
    summary = {}
    for module in Module:
        actions = (Action.READ,) if module is Module.DASHBOARD else tuple(Action)
        summary[module.value] = {
            action.value: scope_for(effective, module, action).to_token(module)
            for action in actions
        }
    return summary
