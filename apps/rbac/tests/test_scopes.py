"""
Tests for the permission vocabulary and PermissionSet parsing.
"""
import pytest

from apps.core.exceptions import InvalidConfiguration
from apps.rbac.scopes import (
    Action, Module, PermissionSet, Scope, allowed_scopes, parse_permissions,
)


class TestScopeTokens:
    """Persisted tokens map onto the scope vocabulary."""

    @pytest.mark.parametrize('token,expected', [
        ('all', Scope.ALL),
        ('own', Scope.OWN),
        ('ownDeals', Scope.OWN_ASSIGNEE),
        (False, Scope.DENIED),
        (None, Scope.DENIED),
    ])
    def test_known_tokens(self, token, expected):
        assert Scope.from_token(token, Module.LEADS, Action.READ) is expected

    def test_legacy_true_means_all(self):
        assert Scope.from_token(True, Module.CUSTOMERS, Action.UPDATE) is Scope.ALL

    @pytest.mark.parametrize('token', ['ALL', 'everything', 1, 'own_deals', ''])
    def test_unknown_token_rejected(self, token):
        with pytest.raises(InvalidConfiguration) as exc_info:
            Scope.from_token(token, Module.LEADS, Action.READ)

        assert exc_info.value.details['module'] == 'leads'
        assert exc_info.value.details['action'] == 'read'

    def test_dashboard_takes_booleans_only(self):
        assert Scope.from_token(True, Module.DASHBOARD, Action.READ) is Scope.ALL
        assert Scope.from_token(False, Module.DASHBOARD, Action.READ) is Scope.DENIED

        with pytest.raises(InvalidConfiguration):
            Scope.from_token('all', Module.DASHBOARD, Action.READ)

    def test_to_token(self):
        assert Scope.ALL.to_token(Module.LEADS) == 'all'
        assert Scope.OWN_ASSIGNEE.to_token(Module.PIPELINE) == 'ownDeals'
        assert Scope.DENIED.to_token(Module.LEADS) is False
        assert Scope.ALL.to_token(Module.DASHBOARD) is True
        assert Scope.DENIED.to_token(Module.DASHBOARD) is False


class TestVocabulary:

    def test_module_parse(self):
        assert Module.parse('leads') is Module.LEADS
        assert Module.parse(Module.SETTINGS) is Module.SETTINGS
        assert Module.parse('invoices') is None
        assert Module.parse(None) is None

    def test_action_parse(self):
        assert Action.parse('delete') is Action.DELETE
        assert Action.parse('approve') is None

    def test_assignee_scope_only_on_leads_and_pipeline(self):
        assert Scope.OWN_ASSIGNEE in allowed_scopes(Module.LEADS, Action.READ)
        assert Scope.OWN_ASSIGNEE in allowed_scopes(Module.PIPELINE, Action.UPDATE)
        assert Scope.OWN_ASSIGNEE not in allowed_scopes(Module.CUSTOMERS, Action.READ)

    def test_catalog_modules_have_no_owner_scope(self):
        for module in (Module.PRODUCTS, Module.EVENT_TYPES, Module.PAYMENT_VERIFICATION, Module.SETTINGS):
            assert allowed_scopes(module, Action.READ) == frozenset({Scope.ALL, Scope.DENIED})

    def test_dashboard_has_read_only(self):
        assert allowed_scopes(Module.DASHBOARD, Action.READ)
        assert allowed_scopes(Module.DASHBOARD, Action.CREATE) == frozenset()


class TestPermissionSet:
    """Test PermissionSet parsing, lookup and serialisation."""

    def test_lookup_is_total(self):
        permissions = PermissionSet.from_document({'leads': {'read': 'own'}})

        assert permissions.lookup('leads', 'read') is Scope.OWN
        assert permissions.lookup('leads', 'delete') is Scope.DENIED
        assert permissions.lookup('customers', 'read') is Scope.DENIED
        assert permissions.lookup('unknown', 'read') is Scope.DENIED
        assert permissions.lookup('leads', 'unknown') is Scope.DENIED

    def test_none_document_is_empty(self):
        assert PermissionSet.from_document(None) == PermissionSet.empty()

    def test_empty_module_is_remembered(self):
        permissions = PermissionSet.from_document({'settings': {}})

        assert permissions.has_module(Module.SETTINGS)
        assert permissions.actions_for(Module.SETTINGS) == {}

    def test_denied_actions_are_dropped(self):
        permissions = PermissionSet.from_document({'leads': {'read': 'all', 'delete': False}})

        assert permissions.actions_for(Module.LEADS) == {Action.READ: Scope.ALL}
        assert permissions.to_document() == {'leads': {'read': 'all'}}

    def test_to_document_normalises_legacy_flags(self):
        document = {'customers': {'read': True}, 'dashboard': {'read': True}}

        assert PermissionSet.from_document(document).to_document() == {
            'customers': {'read': 'all'},
            'dashboard': {'read': True},
        }

    def test_dashboard_property(self):
        assert PermissionSet.from_document({'dashboard': {'read': True}}).dashboard is True
        assert PermissionSet.from_document({'dashboard': {'read': False}}).dashboard is False
        assert PermissionSet.empty().dashboard is False

    @pytest.mark.parametrize('document', [
        ['leads'],
        'leads',
        {'invoices': {'read': 'all'}},
        {'leads': {'approve': 'all'}},
        {'leads': ['read']},
        {'leads': {'read': 'sometimes'}},
    ])
    def test_malformed_documents_rejected(self, document):
        with pytest.raises(InvalidConfiguration):
            PermissionSet.from_document(document)

    def test_equality_and_hash(self):
        first = PermissionSet.from_document({'leads': {'read': 'all', 'update': 'own'}})
        second = PermissionSet.from_document({'leads': {'update': 'own', 'read': True}})

        assert first == second
        assert hash(first) == hash(second)
        assert first != PermissionSet.empty()


class TestParsePermissions:
    """parse_permissions() also checks each scope against its module."""

    def test_valid_document(self):
        permissions = parse_permissions({
            'leads': {'read': 'ownDeals'},
            'products': {'read': 'all'},
            'dashboard': {'read': True},
        })

        assert permissions.lookup(Module.LEADS, Action.READ) is Scope.OWN_ASSIGNEE

    def test_own_on_catalog_module_rejected(self):
        with pytest.raises(InvalidConfiguration) as exc_info:
            parse_permissions({'products': {'read': 'own'}})

        assert exc_info.value.details['allowed'] == ['all', 'denied']

    def test_assignee_scope_on_customers_rejected(self):
        with pytest.raises(InvalidConfiguration):
            parse_permissions({'customers': {'read': 'ownDeals'}})

    def test_dashboard_write_rejected(self):
        with pytest.raises(InvalidConfiguration):
            parse_permissions({'dashboard': {'create': True}})
