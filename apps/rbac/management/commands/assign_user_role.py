"""
Management command to bind a user to a role in a tenant.

Creates the user if asked to, then assigns the named role. Re-running with
the same role is a no-op; use --replace to move a user to a different role.
"""
from django.core.exceptions import ValidationError
from django.core.management.base import BaseCommand, CommandError

from apps.core.exceptions import Conflict
from apps.rbac.authorizer import permission_summary
from apps.rbac.models import User, Role, TenantUserRole
from apps.rbac.services import AssignmentStore, PermissionService
from apps.tenants.models import Tenant


class Command(BaseCommand):
    help = 'Assign a role to a user for a tenant'

    def add_arguments(self, parser):
        parser.add_argument(
            '--tenant',
            type=str,
            required=True,
            help='Tenant ID or slug',
        )
        parser.add_argument(
            '--email',
            type=str,
            required=True,
            help='User email address',
        )
        parser.add_argument(
            '--role',
            type=str,
            default='Super Admin',
            help='Role name (default: Super Admin)',
        )
        parser.add_argument(
            '--replace',
            action='store_true',
            help='Move the user to this role if they hold a different one',
        )
        parser.add_argument(
            '--full-access',
            action='store_true',
            help='Also set the unrestricted-access flag on the assignment',
        )
        parser.add_argument(
            '--create-user',
            action='store_true',
            help='Create user if they do not exist (requires --password)',
        )
        parser.add_argument(
            '--password',
            type=str,
            help='Password for new user (only used with --create-user)',
        )

    def handle(self, *args, **options):
        if options['create_user'] and not options.get('password'):
            raise CommandError('--password is required when using --create-user')

        tenant = self._get_tenant(options['tenant'])
        self.stdout.write(f'Tenant: {tenant.name} ({tenant.slug})')

        user = self._get_user(options['email'], options['create_user'], options.get('password'))

        role = Role.objects.by_name(tenant, options['role'])
        if role is None:
            raise CommandError(
                f"Role '{options['role']}' not found for tenant: {tenant.name}\n"
                f'Run: python manage.py seed_tenant_roles --tenant={tenant.slug}'
            )

        try:
            assignment, created = AssignmentStore.ensure_assigned(user, tenant, role)
        except Conflict:
            if not options['replace']:
                raise CommandError(
                    f'{user.email} already holds a different role in {tenant.name}; '
                    f'pass --replace to change it'
                )
            current = TenantUserRole.objects.get_active(user, tenant)
            assignment = AssignmentStore.set_role(current.id, role.id, tenant=tenant)
            self.stdout.write(self.style.WARNING(f'↻ Moved {user.email} to {role.name}'))
        else:
            if created:
                self.stdout.write(self.style.SUCCESS(f'✓ Assigned {role.name} to {user.email}'))
            else:
                self.stdout.write(self.style.WARNING(f'↻ {user.email} already holds {role.name}'))

        if options['full_access'] and not assignment.has_all_access:
            AssignmentStore.set_unrestricted(assignment.id, True, tenant=tenant)
            self.stdout.write(self.style.SUCCESS('✓ Unrestricted access enabled'))

        effective = PermissionService.effective_permissions(user, tenant)
        self.stdout.write('\nEffective permissions:')
        for module, actions in permission_summary(effective).items():
            granted = {action: token for action, token in actions.items() if token is not False}
            if granted:
                rendered = ', '.join(f'{action}={token}' for action, token in granted.items())
                self.stdout.write(f'  {module}: {rendered}')

    def _get_user(self, email, create_user, password):
        user = User.objects.by_email(email)
        if user is not None:
            self.stdout.write(f'User: {user.email}')
            return user

        if not create_user:
            raise CommandError(
                f'User not found: {email}\n'
                f'Use --create-user --password=<password> to create the user'
            )

        user = User.objects.create_user(email=email, password=password)
        self.stdout.write(self.style.SUCCESS(f'✓ Created user: {user.email}'))
        return user

    def _get_tenant(self, identifier):
        tenant = Tenant.objects.filter(slug=identifier).first()
        if tenant is None:
            try:
                tenant = Tenant.objects.filter(id=identifier).first()
            except ValidationError:
                tenant = None
        if tenant is None:
            raise CommandError(f'Tenant not found: {identifier}')
        return tenant
