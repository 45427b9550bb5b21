"""
Property tests: the storage predicate admits exactly the rows can() allows.

The request tier (can / can_access_record) and the storage tier
(row_predicate / table_predicate) are rendered from the same rules; these
tests check they agree for arbitrary permission sets, records and users.
"""
from types import SimpleNamespace

from hypothesis import given, strategies as st, settings

from apps.rbac.authorizer import can, can_access_record
from apps.rbac.enforcement import row_predicate, table_predicate
from apps.rbac.policy import TablePolicy
from apps.rbac.resolver import RoleGrant, resolve
from apps.rbac.scopes import ALLOWED_SCOPES, Action, Module, PermissionSet

USERS = ['11111111-1111-4111-8111-111111111111', '22222222-2222-4222-8222-222222222222']
TENANTS = ['aaaaaaaa-aaaa-4aaa-8aaa-aaaaaaaaaaaa', 'bbbbbbbb-bbbb-4bbb-8bbb-bbbbbbbbbbbb']

LEADS_POLICY = TablePolicy(
    table='leads',
    grants={
        Action.CREATE: (Module.LEADS,),
        Action.READ: (Module.LEADS, Module.PIPELINE),
        Action.UPDATE: (Module.LEADS, Module.PIPELINE),
        Action.DELETE: (Module.LEADS,),
    },
)

PAIRS = [(module, action) for module, actions in ALLOWED_SCOPES.items() for action in actions]


@st.composite
def permission_sets(draw):
    """Any valid permission set: each (module, action) gets one of its allowed scopes."""
    grants = {}
    for module, action in PAIRS:
        scope = draw(st.sampled_from(sorted(ALLOWED_SCOPES[module][action], key=lambda s: s.value)))
        grants.setdefault(module, {})[action] = scope
    return PermissionSet(grants)


identities = st.sampled_from(USERS + [None])

records = st.fixed_dictionaries({
    'tenant_id': st.sampled_from(TENANTS),
    'owner_id': identities,
    'assigned_to': identities,
})


@settings(max_examples=200)
@given(
    effective=permission_sets(),
    pair=st.sampled_from(PAIRS),
    record=records,
    user_id=identities,
)
def test_row_predicate_matches_can(effective, pair, record, user_id):
    """Without a tenant bound, the predicate is exactly can()."""
    module, action = pair

    predicate = row_predicate(effective, module, action, user_id=user_id)

    assert predicate.matches(record) == can(effective, module, action, record, user_id)


@settings(max_examples=200)
@given(
    effective=permission_sets(),
    pair=st.sampled_from(PAIRS),
    record=records,
    user_id=st.sampled_from(USERS),
    tenant_id=st.sampled_from(TENANTS),
)
def test_tenant_bound_predicate_never_crosses_tenants(effective, pair, record, user_id, tenant_id):
    module, action = pair

    predicate = row_predicate(effective, module, action, user_id=user_id, tenant_id=tenant_id)

    expected = record['tenant_id'] == tenant_id and can(effective, module, action, record, user_id)
    assert predicate.matches(record) == expected


@settings(max_examples=200)
@given(
    effective=permission_sets(),
    action=st.sampled_from(list(Action)),
    record=records,
    user_id=identities,
)
def test_table_predicate_matches_can_access_record(effective, action, record, user_id):
    predicate = table_predicate(effective, LEADS_POLICY, action, user_id=user_id)

    assert predicate.matches(record) == can_access_record(effective, LEADS_POLICY, action, record, user_id)


@given(pair=st.sampled_from(PAIRS), record=records, user_id=identities)
def test_empty_permission_set_admits_nothing(pair, record, user_id):
    module, action = pair
    empty = PermissionSet.empty()

    assert row_predicate(empty, module, action, user_id=user_id).matches(record) is False
    assert can(empty, module, action, record, user_id) is False


@st.composite
def override_documents(draw):
    """Overrides naming a random subset of modules, each fully replaced."""
    modules = draw(st.sets(st.sampled_from(list(ALLOWED_SCOPES)), max_size=4))
    grants = draw(permission_sets())
    return {
        module.value: {
            action.value: scope.to_token(module)
            for action, scope in grants.actions_for(module).items()
        }
        for module in modules
    }


@settings(max_examples=150)
@given(
    role_permissions=permission_sets(),
    override=st.one_of(st.none(), override_documents()),
    has_all_access=st.booleans(),
    action=st.sampled_from(list(Action)),
    record=records,
    user_id=identities,
)
def test_resolved_permissions_agree_across_tiers(role_permissions, override, has_all_access,
                                                 action, record, user_id):
    """Whatever resolve() produces, the storage predicate still says what can() says."""
    role = RoleGrant(name='random', permissions=role_permissions)
    assignment = SimpleNamespace(
        is_active=True,
        has_all_access=has_all_access,
        permission_overrides=override,
    )

    effective = resolve(role, assignment)
    predicate = table_predicate(effective, LEADS_POLICY, action, user_id=user_id)

    assert predicate.matches(record) == can_access_record(effective, LEADS_POLICY, action, record, user_id)
    assert resolve(role, assignment) == effective
