# Initial users, roles, role assignments and audit log

import uuid

import django.db.models.deletion
from django.conf import settings
from django.db import migrations, models


class Migration(migrations.Migration):

    initial = True

    dependencies = [
        ('tenants', '0001_initial'),
    ]

    operations = [
        migrations.CreateModel(
            name='User',
            fields=[
                ('id', models.UUIDField(default=uuid.uuid4, editable=False, help_text='Unique identifier', primary_key=True, serialize=False)),
                ('created_at', models.DateTimeField(auto_now_add=True, db_index=True, help_text='Timestamp when the record was created')),
                ('updated_at', models.DateTimeField(auto_now=True, db_index=True, help_text='Timestamp when the record was last updated')),
                ('deleted_at', models.DateTimeField(blank=True, db_index=True, help_text='Timestamp when the record was soft deleted', null=True)),
                ('email', models.EmailField(db_index=True, help_text='User email address (unique globally)', max_length=254, unique=True)),
                ('password_hash', models.CharField(db_column='password_hash', help_text='Hashed password', max_length=255)),
                ('is_active', models.BooleanField(db_index=True, default=True, help_text='Whether user account is active')),
                ('is_superuser', models.BooleanField(default=False, help_text='Platform administrator (Django admin only, grants no tenant data)')),
                ('last_login_at', models.DateTimeField(blank=True, help_text='Last login timestamp', null=True)),
                ('first_name', models.CharField(blank=True, help_text='User first name', max_length=100)),
                ('last_name', models.CharField(blank=True, help_text='User last name', max_length=100)),
            ],
            options={
                'db_table': 'users',
                'ordering': ['-created_at'],
                'indexes': [models.Index(fields=['is_active', 'created_at'], name='users_is_acti_e3fac2_idx')],
            },
        ),
        migrations.CreateModel(
            name='Role',
            fields=[
                ('id', models.UUIDField(default=uuid.uuid4, editable=False, help_text='Unique identifier', primary_key=True, serialize=False)),
                ('created_at', models.DateTimeField(auto_now_add=True, db_index=True, help_text='Timestamp when the record was created')),
                ('updated_at', models.DateTimeField(auto_now=True, db_index=True, help_text='Timestamp when the record was last updated')),
                ('deleted_at', models.DateTimeField(blank=True, db_index=True, help_text='Timestamp when the record was soft deleted', null=True)),
                ('name', models.CharField(help_text="Role name (e.g., 'Sales Rep', 'Finance')", max_length=100)),
                ('description', models.TextField(blank=True, help_text='Role description')),
                ('permissions', models.JSONField(blank=True, default=dict, help_text='Base permission document: module -> action -> scope token')),
                ('is_system', models.BooleanField(db_index=True, default=False, help_text='Whether this is a system-seeded role')),
                ('tenant', models.ForeignKey(help_text='Tenant this role belongs to', on_delete=django.db.models.deletion.CASCADE, related_name='roles', to='tenants.tenant')),
            ],
            options={
                'db_table': 'roles',
                'ordering': ['tenant', 'name'],
                'indexes': [models.Index(fields=['tenant', 'is_system'], name='roles_tenant__b7923f_idx')],
                'unique_together': {('tenant', 'name')},
            },
        ),
        migrations.CreateModel(
            name='TenantUserRole',
            fields=[
                ('id', models.UUIDField(default=uuid.uuid4, editable=False, help_text='Unique identifier', primary_key=True, serialize=False)),
                ('created_at', models.DateTimeField(auto_now_add=True, db_index=True, help_text='Timestamp when the record was created')),
                ('updated_at', models.DateTimeField(auto_now=True, db_index=True, help_text='Timestamp when the record was last updated')),
                ('deleted_at', models.DateTimeField(blank=True, db_index=True, help_text='Timestamp when the record was soft deleted', null=True)),
                ('is_active', models.BooleanField(db_index=True, default=True, help_text='Only active bindings grant access')),
                ('permission_overrides', models.JSONField(blank=True, help_text="Per-user module replacements of the role's permission document", null=True)),
                ('has_all_access', models.BooleanField(default=False, help_text="Legacy flag granting every module at scope 'all'")),
                ('assigned_at', models.DateTimeField(auto_now_add=True, help_text='When role was assigned')),
                ('deactivated_at', models.DateTimeField(blank=True, help_text='When the binding was deactivated', null=True)),
                ('assigned_by', models.ForeignKey(blank=True, help_text='User who assigned this role', null=True, on_delete=django.db.models.deletion.SET_NULL, related_name='role_assignments_made', to=settings.AUTH_USER_MODEL)),
                ('role', models.ForeignKey(help_text='Role assigned to the user', on_delete=django.db.models.deletion.PROTECT, related_name='user_roles', to='rbac.role')),
                ('tenant', models.ForeignKey(help_text='Tenant the binding applies to', on_delete=django.db.models.deletion.CASCADE, related_name='user_roles', to='tenants.tenant')),
                ('user', models.ForeignKey(help_text='User who holds this role', on_delete=django.db.models.deletion.CASCADE, related_name='tenant_roles', to=settings.AUTH_USER_MODEL)),
            ],
            options={
                'db_table': 'user_tenant_roles',
                'ordering': ['tenant', '-assigned_at'],
                'indexes': [
                    models.Index(fields=['tenant', 'is_active'], name='user_tenant_tenant__34b7c5_idx'),
                    models.Index(fields=['user', 'tenant'], name='user_tenant_user_id_90981a_idx'),
                ],
                'constraints': [
                    models.UniqueConstraint(condition=models.Q(('is_active', True)), fields=('user', 'tenant'), name='unique_active_user_tenant_role'),
                ],
            },
        ),
        migrations.CreateModel(
            name='AuditLog',
            fields=[
                ('id', models.UUIDField(default=uuid.uuid4, editable=False, help_text='Unique identifier', primary_key=True, serialize=False)),
                ('created_at', models.DateTimeField(auto_now_add=True, db_index=True, help_text='Timestamp when the record was created')),
                ('updated_at', models.DateTimeField(auto_now=True, db_index=True, help_text='Timestamp when the record was last updated')),
                ('deleted_at', models.DateTimeField(blank=True, db_index=True, help_text='Timestamp when the record was soft deleted', null=True)),
                ('action', models.CharField(db_index=True, help_text="Action performed (e.g., 'role_updated', 'assignment_deactivated')", max_length=100)),
                ('target_type', models.CharField(db_index=True, help_text="Type of target entity (e.g., 'Role', 'TenantUserRole')", max_length=50)),
                ('target_id', models.UUIDField(blank=True, db_index=True, help_text='ID of target entity', null=True)),
                ('diff', models.JSONField(blank=True, default=dict, help_text='Before/after changes in JSON format')),
                ('ip_address', models.GenericIPAddressField(blank=True, help_text='IP address of the request', null=True)),
                ('user_agent', models.TextField(blank=True, help_text='User agent string')),
                ('request_id', models.CharField(blank=True, db_index=True, help_text='Request ID for tracing', max_length=100)),
                ('metadata', models.JSONField(blank=True, default=dict, help_text='Additional context metadata')),
                ('tenant', models.ForeignKey(blank=True, help_text='Tenant this action belongs to (null for platform-level)', null=True, on_delete=django.db.models.deletion.CASCADE, related_name='audit_logs', to='tenants.tenant')),
                ('user', models.ForeignKey(blank=True, help_text='User who performed the action (null for system actions)', null=True, on_delete=django.db.models.deletion.SET_NULL, related_name='audit_logs', to=settings.AUTH_USER_MODEL)),
            ],
            options={
                'db_table': 'audit_logs',
                'ordering': ['-created_at'],
                'indexes': [
                    models.Index(fields=['tenant', 'created_at'], name='audit_logs_tenant__0b1a88_idx'),
                    models.Index(fields=['action', 'created_at'], name='audit_logs_action_391715_idx'),
                    models.Index(fields=['target_type', 'target_id'], name='audit_logs_target__9fc8de_idx'),
                ],
            },
        ),
    ]
