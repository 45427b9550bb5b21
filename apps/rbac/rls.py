"""
PostgreSQL Row-Level Security mirror of the scope rules.

The ORM guard in apps.rbac.enforcement is one line of defence; the policies
rendered here are the other. Both are generated from apps.rbac.policy.RULES
and each model's TablePolicy, so the SQL says exactly what can() says.

Session parameters used by the policies:
- app.current_user_id: the acting user, set by TenantContextMiddleware
- app.rls_bypass: only the value "on" lets a session through every policy.
  Unset, empty or "off" is filtered, so a connection that never went through
  TenantContextMiddleware (psql, another service, a pooled connection) sees
  nothing. Code that works on the record tables outside a request (a shell,
  a data migration, the Django admin) opts in with rls_bypass().

An update cannot move a row to another tenant: the UPDATE policy checks the
new row against the acting user's tenant, and a trigger refuses any change
of tenant_id outside the bypass.

Usage:
    python manage.py sync_rls_policies --dry-run
"""
from contextlib import contextmanager
from typing import Iterable, List, Optional

from django.apps import apps as django_apps
from django.db import connection as default_connection

from apps.rbac.policy import RULES, TablePolicy
from apps.rbac.scopes import Action, Scope, allowed_scopes

USER_SETTING = 'app.current_user_id'
BYPASS_SETTING = 'app.rls_bypass'

USER_EXPRESSION = f"nullif(current_setting('{USER_SETTING}', true), '')::uuid"
BYPASS_EXPRESSION = f"current_setting('{BYPASS_SETTING}', true) = 'on'"

POLICY_PREFIX = 'rbac'

# SQL command each action is enforced on, and which clauses it gets
COMMANDS = {
    Action.READ: 'SELECT',
    Action.CREATE: 'INSERT',
    Action.UPDATE: 'UPDATE',
    Action.DELETE: 'DELETE',
}

SCOPE_FUNCTION = """
CREATE OR REPLACE FUNCTION rbac_scope(p_module text, p_action text, p_tenant uuid)
RETURNS text
LANGUAGE sql
STABLE
SECURITY DEFINER
SET search_path = public
AS $$
    SELECT CASE raw.token
        WHEN 'all' THEN 'all'
        WHEN 'true' THEN 'all'
        WHEN 'own' THEN 'own'
        WHEN 'ownDeals' THEN 'ownDeals'
        ELSE 'false'
    END
    FROM (
        SELECT CASE
            WHEN a.id IS NULL THEN 'false'
            WHEN a.has_all_access THEN 'all'
            WHEN a.permission_overrides IS NOT NULL AND a.permission_overrides ? p_module
                THEN a.permission_overrides -> p_module ->> p_action
            ELSE r.permissions -> p_module ->> p_action
        END AS token
        FROM (SELECT 1) AS one
        LEFT JOIN user_tenant_roles a
            ON a.user_id = {user}
            AND a.tenant_id = p_tenant
            AND a.is_active
            AND a.deleted_at IS NULL
        LEFT JOIN roles r
            ON r.id = a.role_id
            AND r.deleted_at IS NULL
    ) AS raw
$$;
""".strip().format(user=USER_EXPRESSION)

DROP_SCOPE_FUNCTION = "DROP FUNCTION IF EXISTS rbac_scope(text, text, uuid);"

KEEP_TENANT_FUNCTION = """
CREATE OR REPLACE FUNCTION rbac_keep_tenant()
RETURNS trigger
LANGUAGE plpgsql
AS $$
BEGIN
    IF NEW.tenant_id IS DISTINCT FROM OLD.tenant_id AND NOT coalesce({bypass}, false) THEN
        RAISE EXCEPTION 'tenant_id of a % row cannot change', TG_TABLE_NAME
            USING ERRCODE = 'insufficient_privilege';
    END IF;
    RETURN NEW;
END
$$;
""".strip().format(bypass=BYPASS_EXPRESSION)

DROP_KEEP_TENANT_FUNCTION = "DROP FUNCTION IF EXISTS rbac_keep_tenant();"


def scope_case(module, action) -> str:
    """
    CASE expression for one (module, action) on the current row.

    Only arms for scopes the module may carry are rendered, so a table is
    never asked about a column it does not have.
    """
    arms = []
    for scope in (Scope.ALL, Scope.OWN, Scope.OWN_ASSIGNEE):
        if scope not in allowed_scopes(module, action):
            continue
        arms.append(f"WHEN '{scope.value}' THEN {RULES[scope].as_sql(USER_EXPRESSION)}")
    if not arms:
        return 'false'
    return (
        f"(CASE rbac_scope('{module.value}', '{action.value}', tenant_id) "
        + " ".join(arms)
        + " ELSE false END)"
    )


def table_condition(policy: TablePolicy, action) -> str:
    """OR of the scope cases for every module granting the action, plus the bypass."""
    cases = [scope_case(module, action) for module in policy.modules_for(action)]
    if not cases:
        cases = ['false']
    return f"{BYPASS_EXPRESSION} OR " + " OR ".join(cases)


def tenant_condition(policy: TablePolicy) -> str:
    """
    The new row of an update stays in a tenant where the user may update.

    Ownership is judged on the stored row (USING); this only pins the tenant.
    """
    grants = [
        f"rbac_scope('{module.value}', '{Action.UPDATE.value}', tenant_id) <> 'false'"
        for module in policy.modules_for(Action.UPDATE)
    ]
    if not grants:
        grants = ['false']
    return f"{BYPASS_EXPRESSION} OR " + " OR ".join(grants)


def policy_name(table: str, action) -> str:
    return f"{POLICY_PREFIX}_{table}_{Action(action).value}"


def trigger_name(table: str) -> str:
    return f"{POLICY_PREFIX}_{table}_keep_tenant"


def table_statements(policy: TablePolicy) -> List[str]:
    """
    ENABLE/FORCE, one policy per command, and the tenant_id trigger.

    Inserts are checked on the new row; updates on the stored row, with the
    new row held to the acting tenant; deletes on the stored row. This is
    what the ORM write guard checks.
    """
    table = policy.table
    statements = [
        f"ALTER TABLE {table} ENABLE ROW LEVEL SECURITY;",
        f"ALTER TABLE {table} FORCE ROW LEVEL SECURITY;",
    ]
    for action, command in COMMANDS.items():
        name = policy_name(table, action)
        condition = table_condition(policy, action)
        statements.append(f"DROP POLICY IF EXISTS {name} ON {table};")
        if action is Action.CREATE:
            clause = f"WITH CHECK ({condition})"
        elif action is Action.UPDATE:
            clause = f"USING ({condition}) WITH CHECK ({tenant_condition(policy)})"
        else:
            clause = f"USING ({condition})"
        statements.append(f"CREATE POLICY {name} ON {table} FOR {command} {clause};")

    trigger = trigger_name(table)
    statements.append(f"DROP TRIGGER IF EXISTS {trigger} ON {table};")
    statements.append(
        f"CREATE TRIGGER {trigger} BEFORE UPDATE OF tenant_id ON {table} "
        f"FOR EACH ROW EXECUTE FUNCTION rbac_keep_tenant();"
    )
    return statements


def table_reverse_statements(policy: TablePolicy) -> List[str]:
    table = policy.table
    statements = [f"DROP TRIGGER IF EXISTS {trigger_name(table)} ON {table};"]
    statements.extend(
        f"DROP POLICY IF EXISTS {policy_name(table, action)} ON {table};"
        for action in COMMANDS
    )
    statements.append(f"ALTER TABLE {table} NO FORCE ROW LEVEL SECURITY;")
    statements.append(f"ALTER TABLE {table} DISABLE ROW LEVEL SECURITY;")
    return statements


def guarded_policies() -> List[TablePolicy]:
    """TablePolicy of every installed model built on ScopedModel."""
    from apps.rbac.enforcement import ScopedModel

    return [
        model.access_policy
        for model in django_apps.get_models()
        if issubclass(model, ScopedModel) and model.access_policy is not None
    ]


def build_rls_sql(policies: Optional[Iterable[TablePolicy]] = None) -> str:
    if policies is None:
        policies = guarded_policies()
    statements = [SCOPE_FUNCTION, KEEP_TENANT_FUNCTION]
    for policy in policies:
        statements.extend(table_statements(policy))
    return "\n".join(statements)


def build_rls_reverse_sql(policies: Optional[Iterable[TablePolicy]] = None) -> str:
    if policies is None:
        policies = guarded_policies()
    statements = []
    for policy in policies:
        statements.extend(table_reverse_statements(policy))
    statements.append(DROP_KEEP_TENANT_FUNCTION)
    statements.append(DROP_SCOPE_FUNCTION)
    return "\n".join(statements)


def _set_config(name: str, value: Optional[str], *, conn=None) -> None:
    """
    Set a PostgreSQL session configuration parameter.

    No-op on other vendors (SQLite in tests).
    """
    conn = conn or default_connection
    if conn.vendor != 'postgresql':
        return

    with conn.cursor() as cursor:
        if value is None:
            cursor.execute(f"RESET {name}")
        else:
            cursor.execute("SELECT set_config(%s, %s, false)", [name, value])


def set_session_user(user_id, *, conn=None) -> None:
    """Publish the acting user to the policies and switch the bypass off."""
    _set_config(USER_SETTING, str(user_id) if user_id is not None else '', conn=conn)
    _set_config(BYPASS_SETTING, 'off', conn=conn)


def clear_session(*, conn=None) -> None:
    """Reset both parameters so a pooled connection starts clean."""
    _set_config(USER_SETTING, None, conn=conn)
    _set_config(BYPASS_SETTING, None, conn=conn)


def _get_config(name: str, *, conn=None) -> Optional[str]:
    conn = conn or default_connection
    if conn.vendor != 'postgresql':
        return None

    with conn.cursor() as cursor:
        cursor.execute("SELECT current_setting(%s, true)", [name])
        row = cursor.fetchone()
    return row[0] if row else None


@contextmanager
def rls_bypass(*, conn=None):
    """
    Let the block through every policy.

    For system operations on the record tables outside a request. The
    previous value is restored on exit.

    Usage:
        with rls_bypass():
            Lead.objects.filter(tenant=tenant).count()
    """
    previous = _get_config(BYPASS_SETTING, conn=conn)
    _set_config(BYPASS_SETTING, 'on', conn=conn)
    try:
        yield
    finally:
        _set_config(BYPASS_SETTING, previous or None, conn=conn)


@contextmanager
def statement_timeout(milliseconds: Optional[int], *, conn=None):
    """
    Bound the statements issued inside the block.

    Used around role and assignment lookups; a lookup that runs over raises
    OperationalError, which the caller turns into a denial.
    """
    conn = conn or default_connection
    if not milliseconds or conn.vendor != 'postgresql':
        yield
        return

    with conn.cursor() as cursor:
        cursor.execute("SELECT current_setting('statement_timeout')")
        previous = cursor.fetchone()[0]
        cursor.execute("SELECT set_config('statement_timeout', %s, false)", [f"{int(milliseconds)}ms"])
    try:
        yield
    finally:
        with conn.cursor() as cursor:
            cursor.execute("SELECT set_config('statement_timeout', %s, false)", [previous])
