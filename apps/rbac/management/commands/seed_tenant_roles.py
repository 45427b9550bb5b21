"""
Management command to seed default roles for tenants.

Creates the eight system roles (Super Admin, Admin, Sales Manager, Sales Rep,
Reservations Officer, Finance, Support, Viewer) with their permission
documents for one or all tenants. Existing system roles are overwritten
with the definitions below, so the command is idempotent and safe to re-run.
"""
from django.core.exceptions import ValidationError
from django.core.management.base import BaseCommand, CommandError
from django.db import transaction

from apps.rbac.services import RoleRegistry
from apps.tenants.models import Tenant

FULL = {'create': 'all', 'read': 'all', 'update': 'all', 'delete': 'all'}
READ_ALL = {'read': 'all'}
# Create anything, see and edit only what you own
OWN_RECORDS = {'create': 'all', 'read': 'own', 'update': 'own', 'delete': False}
NO_DELETE = {'create': 'all', 'read': 'all', 'update': 'all', 'delete': False}


def _read_only():
    return {
        'dashboard': {'read': True},
        'customers': READ_ALL,
        'leads': READ_ALL,
        'activities': READ_ALL,
        'products': READ_ALL,
        'pipeline': READ_ALL,
        'event_types': READ_ALL,
        'quotations': READ_ALL,
        'payment_verification': READ_ALL,
        'templates': READ_ALL,
    }


def _field_sales():
    return {
        'dashboard': {'read': True},
        'customers': OWN_RECORDS,
        'leads': OWN_RECORDS,
        'activities': OWN_RECORDS,
        'products': NO_DELETE,
        'pipeline': {'create': 'all', 'read': 'ownDeals', 'update': 'ownDeals', 'delete': False},
        'event_types': {'create': False, 'read': 'all', 'update': 'all', 'delete': False},
        'quotations': OWN_RECORDS,
        'payment_verification': {'read': True},
        'templates': NO_DELETE,
        'settings': {},
    }


class Command(BaseCommand):
    help = 'Seed default roles for tenant(s) (idempotent)'

    def add_arguments(self, parser):
        parser.add_argument(
            '--tenant',
            type=str,
            help='Tenant ID or slug to seed roles for',
        )
        parser.add_argument(
            '--all',
            action='store_true',
            help='Seed roles for all tenants',
        )

    # Default role definitions with their permission documents
    DEFAULT_ROLES = {
        'Super Admin': {
            'description': 'Full access to every module, including settings management',
            'permissions': {
                'dashboard': {'read': True},
                'customers': FULL,
                'leads': FULL,
                'activities': FULL,
                'products': FULL,
                'pipeline': FULL,
                'event_types': FULL,
                'quotations': FULL,
                'payment_verification': FULL,
                'templates': FULL,
                'settings': FULL,
            },
        },
        'Admin': {
            'description': 'Full access to business data; settings are read-only',
            'permissions': {
                'dashboard': {'read': True},
                'customers': FULL,
                'leads': FULL,
                'activities': FULL,
                'products': FULL,
                'pipeline': FULL,
                'event_types': FULL,
                'quotations': FULL,
                'payment_verification': FULL,
                'templates': FULL,
                'settings': {'read': True},
            },
        },
        'Sales Manager': {
            'description': 'Manages the whole pipeline and quotations; own customers and leads',
            'permissions': {
                'dashboard': {'read': True},
                'customers': OWN_RECORDS,
                'leads': OWN_RECORDS,
                'activities': OWN_RECORDS,
                'products': NO_DELETE,
                'pipeline': NO_DELETE,
                'event_types': NO_DELETE,
                'quotations': FULL,
                'payment_verification': {'read': True},
                'templates': NO_DELETE,
                'settings': {'read': True},
            },
        },
        'Sales Rep': {
            'description': 'Works own customers and leads; sees pipeline deals assigned to them',
            'permissions': _field_sales(),
        },
        'Reservations Officer': {
            'description': 'Same reach as a sales rep, for reservation desks',
            'permissions': _field_sales(),
        },
        'Finance': {
            'description': 'Reads everything, verifies payments',
            'permissions': {
                **_read_only(),
                'payment_verification': {'create': 'all', 'read': 'all', 'update': 'all', 'delete': False},
                'settings': {},
            },
        },
        'Support': {
            'description': 'Read-only access to business data',
            'permissions': {
                **_read_only(),
                'settings': {},
            },
        },
        'Viewer': {
            'description': 'Read-only access to business data and settings',
            'permissions': {
                **_read_only(),
                'settings': READ_ALL,
            },
        },
    }

    def handle(self, *args, **options):
        tenant_identifier = options.get('tenant')
        seed_all = options.get('all')

        if not tenant_identifier and not seed_all:
            raise CommandError('Must specify either --tenant or --all')

        if tenant_identifier and seed_all:
            raise CommandError('Cannot specify both --tenant and --all')

        if seed_all:
            tenants = list(Tenant.objects.all())
            if not tenants:
                self.stdout.write(self.style.WARNING('No tenants found'))
                return
        else:
            tenants = [self._get_tenant(tenant_identifier)]

        for tenant in tenants:
            self.stdout.write(f'Seeding roles for {tenant.name}...')
            seeded = self.seed_tenant(tenant)
            self.stdout.write(self.style.SUCCESS(f'  ✓ {len(seeded)} roles seeded'))

        self.stdout.write(self.style.SUCCESS(f'\n✓ Done: {len(tenants)} tenant(s)'))

    @classmethod
    @transaction.atomic
    def seed_tenant(cls, tenant):
        """Upsert every default role for one tenant; returns the Role instances."""
        return [
            RoleRegistry.upsert_role(
                tenant,
                name,
                config['permissions'],
                is_system=True,
                description=config['description'],
            )
            for name, config in cls.DEFAULT_ROLES.items()
        ]

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
