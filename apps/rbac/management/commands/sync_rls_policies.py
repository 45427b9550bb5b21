"""
Management command to install the PostgreSQL row-level security policies.

Renders the rbac_scope() function and one policy per command for every
table backed by a ScopedModel, then executes the script in one transaction.
Re-running replaces the policies in place, so it is safe after any change
to a table's access policy.
"""
from django.core.management.base import BaseCommand, CommandError
from django.db import connections, transaction, DEFAULT_DB_ALIAS

from apps.rbac import rls


class Command(BaseCommand):
    help = 'Install (or remove) row-level security policies for scoped tables'

    def add_arguments(self, parser):
        parser.add_argument(
            '--dry-run',
            action='store_true',
            help='Print the SQL without executing it',
        )
        parser.add_argument(
            '--reverse',
            action='store_true',
            help='Drop the policies and the scope function instead',
        )
        parser.add_argument(
            '--database',
            default=DEFAULT_DB_ALIAS,
            help='Database alias to apply the policies to',
        )

    def handle(self, *args, **options):
        policies = rls.guarded_policies()
        if not policies:
            self.stdout.write(self.style.WARNING('No scoped tables found'))
            return

        if options['reverse']:
            sql = rls.build_rls_reverse_sql(policies)
        else:
            sql = rls.build_rls_sql(policies)

        if options['dry_run']:
            self.stdout.write(sql)
            return

        connection = connections[options['database']]
        if connection.vendor != 'postgresql':
            raise CommandError(
                f'Row-level security needs PostgreSQL; {options["database"]} is {connection.vendor}. '
                f'Use --dry-run to inspect the SQL.'
            )

        with transaction.atomic(using=options['database']):
            with connection.cursor() as cursor:
                cursor.execute(sql)

        verb = 'Removed' if options['reverse'] else 'Installed'
        for policy in policies:
            self.stdout.write(f'  {policy.table}')
        self.stdout.write(self.style.SUCCESS(f'✓ {verb} policies on {len(policies)} table(s)'))
