"""
Scope rules shared by every enforcement tier.

Each Scope maps to exactly one ScopeRule. The same rule is evaluated three ways:

- matches(): against an in-memory record (dict or model instance), used by can()
- as_q(): compiled to a Django Q object, used by ScopedQuerySet filters
- as_sql(): rendered as a SQL boolean expression, used by the RLS policies

Keeping the three renderings on one object is what stops the request tier
and the storage tier from drifting apart.
"""
from dataclasses import dataclass, field
from typing import Dict, Iterable, Optional, Tuple

from django.core.exceptions import FieldDoesNotExist
from django.db.models import Q

from apps.rbac.scopes import Action, Module, Scope, allowed_scopes


def record_value(record, attribute: str):
    """
    Read an ownership attribute from a record.

    Mappings are read by key. Model instances are read through the field's
    attname so foreign keys never trigger a query.
    """
    if record is None:
        return None
    if isinstance(record, dict):
        return record.get(attribute)
    meta = getattr(record, '_meta', None)
    if meta is not None:
        try:
            return getattr(record, meta.get_field(attribute).attname)
        except FieldDoesNotExist:
            return getattr(record, attribute, None)
    return getattr(record, attribute, None)


def same_identity(left, right) -> bool:
    """Compare ids that may arrive as UUID objects or strings."""
    if left is None or right is None:
        return False
    return str(left) == str(right)


@dataclass(frozen=True)
class ScopeRule:
    """
    Predicate for one scope.

    A rule is either constant (ALL, DENIED) or compares one record column
    against the acting user (OWN, OWN_ASSIGNEE).
    """
    scope: Scope
    constant: Optional[bool] = None
    column: Optional[str] = None

    @property
    def needs_record(self) -> bool:
        return self.column is not None

    def matches(self, record=None, user_id=None) -> bool:
        if self.constant is not None:
            return self.constant
        if record is None or user_id is None:
            return False
        return same_identity(record_value(record, self.column), user_id)

    def as_q(self, user_id=None) -> Q:
        if self.constant is True:
            return Q(pk__isnull=False)
        if self.constant is False or user_id is None:
            return Q(pk__in=[])
        return Q(**{self.column: user_id})

    def as_sql(self, user_expression: str) -> str:
        if self.constant is not None:
            return 'true' if self.constant else 'false'
        return f"({self.column} = {user_expression})"


RULES: Dict[Scope, ScopeRule] = {
    Scope.ALL: ScopeRule(Scope.ALL, constant=True),
    Scope.OWN: ScopeRule(Scope.OWN, column='owner_id'),
    Scope.OWN_ASSIGNEE: ScopeRule(Scope.OWN_ASSIGNEE, column='assigned_to'),
    Scope.DENIED: ScopeRule(Scope.DENIED, constant=False),
}


def rule_for(scope: Scope) -> ScopeRule:
    return RULES.get(scope, RULES[Scope.DENIED])


@dataclass(frozen=True)
class TablePolicy:
    """
    Which modules grant each action on one table.

    Most tables are governed by a single module. The leads table is read and
    updated through either the leads module or the pipeline board, so a user
    with pipeline.read = "ownDeals" sees the leads assigned to them even when
    leads.read is denied.
    """
    table: str
    grants: Dict[Action, Tuple[Module, ...]] = field(default_factory=dict)

    @classmethod
    def single(cls, table: str, module: Module) -> 'TablePolicy':
        return cls(table=table, grants={action: (module,) for action in Action})

    def modules_for(self, action) -> Tuple[Module, ...]:
        action = Action.parse(action)
        if action is None:
            return ()
        return self.grants.get(action, ())

    def columns(self) -> Iterable[str]:
        """Ownership columns any granting module could compare against."""
        seen = []
        for action, modules in self.grants.items():
            for module in modules:
                for scope in allowed_scopes(module, action):
                    column = RULES[scope].column
                    if column and column not in seen:
                        seen.append(column)
        return seen
