# Row-level security policies for the CRM tables (PostgreSQL only)

from django.db import migrations


def install_policies(apps, schema_editor):
    if schema_editor.connection.vendor != 'postgresql':
        return
    from apps.rbac.rls import build_rls_sql

    schema_editor.execute(build_rls_sql(), params=None)


def remove_policies(apps, schema_editor):
    if schema_editor.connection.vendor != 'postgresql':
        return
    from apps.rbac.rls import build_rls_reverse_sql

    schema_editor.execute(build_rls_reverse_sql(), params=None)


class Migration(migrations.Migration):

    dependencies = [
        ('crm', '0001_initial'),
        ('rbac', '0001_initial'),
    ]

    operations = [
        migrations.RunPython(install_policies, remove_policies),
    ]
