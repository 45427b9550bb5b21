"""
Permission vocabulary and the PermissionSet value type.

A permission document is the JSON stored on Role.permissions and on
TenantUserRole.permission_overrides:

    {
        "dashboard": {"read": true},
        "leads": {"read": "all", "create": "all", "update": "own"},
        "pipeline": {"read": "ownDeals"},
        "settings": {}
    }

Top-level keys are modules, inner keys are actions, values are scope tokens.
Anything absent is denied. The dashboard only carries a boolean read flag.
"""
from enum import Enum
from typing import Any, Dict, Iterator, Mapping, Optional, Tuple

from apps.core.exceptions import InvalidConfiguration


class Module(str, Enum):
    DASHBOARD = 'dashboard'
    CUSTOMERS = 'customers'
    LEADS = 'leads'
    ACTIVITIES = 'activities'
    PRODUCTS = 'products'
    PIPELINE = 'pipeline'
    EVENT_TYPES = 'event_types'
    QUOTATIONS = 'quotations'
    PAYMENT_VERIFICATION = 'payment_verification'
    TEMPLATES = 'templates'
    SETTINGS = 'settings'

    @classmethod
    def parse(cls, value) -> Optional['Module']:
        """Return the Module for a string, or None when it is not in the vocabulary."""
        if isinstance(value, cls):
            return value
        try:
            return cls(value)
        except ValueError:
            return None


class Action(str, Enum):
    CREATE = 'create'
    READ = 'read'
    UPDATE = 'update'
    DELETE = 'delete'

    @classmethod
    def parse(cls, value) -> Optional['Action']:
        if isinstance(value, cls):
            return value
        try:
            return cls(value)
        except ValueError:
            return None


class Scope(str, Enum):
    """
    How much of a module's data an action reaches.

    ALL reaches every row of the tenant, OWN only rows whose owner_id is the
    acting user, OWN_ASSIGNEE only rows whose assigned_to is the acting user.
    DENIED is persisted as a JSON false (or simply omitted).
    """
    ALL = 'all'
    OWN = 'own'
    OWN_ASSIGNEE = 'ownDeals'
    DENIED = 'denied'

    @classmethod
    def from_token(cls, token, module: 'Module', action: 'Action') -> 'Scope':
        """
        Parse a persisted token.

        Raises:
            InvalidConfiguration: If the token is not part of the vocabulary
        """
        if module is Module.DASHBOARD:
            if not isinstance(token, bool):
                raise InvalidConfiguration(
                    f"dashboard.{action.value} must be a boolean",
                    details={'module': module.value, 'action': action.value, 'token': repr(token)}
                )
            return cls.ALL if token else cls.DENIED

        if token is False or token is None:
            return cls.DENIED
        # Documents written by the legacy settings screen store a bare true
        if token is True:
            return cls.ALL
        if isinstance(token, str):
            for scope in (cls.ALL, cls.OWN, cls.OWN_ASSIGNEE):
                if token == scope.value:
                    return scope

        raise InvalidConfiguration(
            f"Unknown scope token for {module.value}.{action.value}: {token!r}",
            details={'module': module.value, 'action': action.value, 'token': repr(token)}
        )

    def to_token(self, module: 'Module'):
        if module is Module.DASHBOARD:
            return self is Scope.ALL
        if self is Scope.DENIED:
            return False
        return self.value


# Scopes each module can carry. Ownable modules name the record attribute
# their narrower scopes compare against.
ALLOWED_SCOPES: Dict[Module, Dict[Action, frozenset]] = {}

_OWNED = frozenset({Scope.ALL, Scope.OWN, Scope.DENIED})
_ASSIGNABLE = frozenset({Scope.ALL, Scope.OWN, Scope.OWN_ASSIGNEE, Scope.DENIED})
_CATALOG = frozenset({Scope.ALL, Scope.DENIED})

for _module in (Module.CUSTOMERS, Module.ACTIVITIES, Module.QUOTATIONS, Module.TEMPLATES):
    ALLOWED_SCOPES[_module] = {action: _OWNED for action in Action}
for _module in (Module.LEADS, Module.PIPELINE):
    ALLOWED_SCOPES[_module] = {action: _ASSIGNABLE for action in Action}
for _module in (Module.PRODUCTS, Module.EVENT_TYPES, Module.PAYMENT_VERIFICATION, Module.SETTINGS):
    ALLOWED_SCOPES[_module] = {action: _CATALOG for action in Action}
ALLOWED_SCOPES[Module.DASHBOARD] = {Action.READ: _CATALOG}


def allowed_scopes(module: Module, action: Action) -> frozenset:
    """Scopes that may be granted for module/action; empty when the action does not exist there."""
    return ALLOWED_SCOPES.get(module, {}).get(action, frozenset())


class PermissionSet:
    """
    Immutable module -> action -> scope mapping.

    lookup() is total: any pair that is not explicitly granted is DENIED.
    Modules that are present with no actions are remembered, because an
    override that names a module with an empty map revokes that module.
    """

    __slots__ = ('_grants',)

    def __init__(self, grants: Optional[Mapping[Module, Mapping[Action, Scope]]] = None):
        cleaned = {}
        for module, actions in (grants or {}).items():
            cleaned[Module(module)] = {
                Action(action): Scope(scope)
                for action, scope in actions.items()
                if Scope(scope) is not Scope.DENIED
            }
        self._grants = cleaned

    @classmethod
    def empty(cls) -> 'PermissionSet':
        return cls({})

    @classmethod
    def from_document(cls, document: Optional[Mapping[str, Any]]) -> 'PermissionSet':
        """
        Build a PermissionSet from its persisted JSON form.

        Raises:
            InvalidConfiguration: On unknown modules, actions or tokens
        """
        if document is None:
            return cls.empty()
        if not isinstance(document, Mapping):
            raise InvalidConfiguration(
                "Permission document must be an object keyed by module",
                details={'type': type(document).__name__}
            )

        grants = {}
        for module_key, actions in document.items():
            module = Module.parse(module_key)
            if module is None:
                raise InvalidConfiguration(
                    f"Unknown module: {module_key!r}",
                    details={'module': str(module_key)}
                )
            if actions is None:
                actions = {}
            if not isinstance(actions, Mapping):
                raise InvalidConfiguration(
                    f"Permissions for {module.value} must be an object keyed by action",
                    details={'module': module.value}
                )

            grants[module] = {}
            for action_key, token in actions.items():
                action = Action.parse(action_key)
                if action is None:
                    raise InvalidConfiguration(
                        f"Unknown action: {module.value}.{action_key!r}",
                        details={'module': module.value, 'action': str(action_key)}
                    )
                grants[module][action] = Scope.from_token(token, module, action)

        return cls(grants)

    def to_document(self) -> Dict[str, Dict[str, Any]]:
        """Serialise back to JSON; denied actions are omitted."""
        return {
            module.value: {
                action.value: scope.to_token(module)
                for action, scope in sorted(actions.items(), key=lambda item: item[0].value)
            }
            for module, actions in sorted(self._grants.items(), key=lambda item: item[0].value)
        }

    def lookup(self, module, action) -> Scope:
        module = Module.parse(module)
        action = Action.parse(action)
        if module is None or action is None:
            return Scope.DENIED
        return self._grants.get(module, {}).get(action, Scope.DENIED)

    def actions_for(self, module: Module) -> Dict[Action, Scope]:
        return dict(self._grants.get(module, {}))

    def has_module(self, module: Module) -> bool:
        return module in self._grants

    def modules(self) -> Tuple[Module, ...]:
        return tuple(self._grants)

    def items(self) -> Iterator[Tuple[Module, Action, Scope]]:
        for module, actions in self._grants.items():
            for action, scope in actions.items():
                yield module, action, scope

    def validate(self) -> 'PermissionSet':
        """
        Check every granted scope against the module's vocabulary.

        Raises:
            InvalidConfiguration: If a module is granted a scope it cannot carry,
                e.g. "own" on products or any action other than read on dashboard
        """
        for module, action, scope in self.items():
            if scope not in allowed_scopes(module, action):
                raise InvalidConfiguration(
                    f"Scope {scope.value!r} is not allowed for {module.value}.{action.value}",
                    details={
                        'module': module.value,
                        'action': action.value,
                        'scope': scope.value,
                        'allowed': sorted(s.value for s in allowed_scopes(module, action)),
                    }
                )
        return self

    @property
    def dashboard(self) -> bool:
        return self.lookup(Module.DASHBOARD, Action.READ) is Scope.ALL

    def __eq__(self, other):
        if not isinstance(other, PermissionSet):
            return NotImplemented
        return self._grants == other._grants

    def __hash__(self):
        return hash(tuple(sorted(
            (module.value, tuple(sorted((a.value, s.value) for a, s in actions.items())))
            for module, actions in self._grants.items()
        )))

    def __repr__(self):
        return f"PermissionSet({self.to_document()!r})"


def parse_permissions(document) -> PermissionSet:
    """Parse and validate a document in one step; used at every write boundary."""
    return PermissionSet.from_document(document).validate()
