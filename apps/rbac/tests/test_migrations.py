"""
Tests for the schema migrations.
"""
from io import StringIO
from unittest.mock import MagicMock

import pytest
from django.core.management import call_command
from django.db import connection

from apps.rbac.rls import build_rls_reverse_sql, build_rls_sql


@pytest.mark.django_db
class TestMigrations:

    def test_models_match_migrations(self):
        out = StringIO()

        call_command('makemigrations', '--check', '--dry-run', stdout=out)

        assert 'No changes detected' in out.getvalue()

    def test_tables_created_by_migrate(self):
        tables = set(connection.introspection.table_names())

        assert {
            'tenants', 'users', 'roles', 'user_tenant_roles', 'audit_logs',
            'customers', 'leads', 'activities', 'products', 'event_types',
            'quotations', 'quotation_templates', 'payments',
        } <= tables


class TestRowLevelSecurityMigration:
    """The policy migration only runs on PostgreSQL."""

    def _migration(self):
        from importlib import import_module
        return import_module('apps.crm.migrations.0002_row_level_security')

    def _schema_editor(self, vendor):
        editor = MagicMock()
        editor.connection.vendor = vendor
        return editor

    def test_installs_policies_on_postgres(self):
        editor = self._schema_editor('postgresql')

        self._migration().install_policies(None, editor)

        editor.execute.assert_called_once_with(build_rls_sql(), params=None)

    def test_removes_policies_on_postgres(self):
        editor = self._schema_editor('postgresql')

        self._migration().remove_policies(None, editor)

        editor.execute.assert_called_once_with(build_rls_reverse_sql(), params=None)

    def test_skipped_on_sqlite(self):
        editor = self._schema_editor('sqlite')

        self._migration().install_policies(None, editor)
        self._migration().remove_policies(None, editor)

        editor.execute.assert_not_called()
