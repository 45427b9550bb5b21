"""
Tests for storage-tier enforcement on CRM records.

Rows are seeded as a system operation (no access context), then read and
written while acting as a tenant user.
"""
from contextlib import contextmanager
from decimal import Decimal
from unittest.mock import patch

import pytest

from apps.core.exceptions import Forbidden
from apps.crm.models import Activity, Customer, Lead, Payment, Product
from apps.rbac.authorizer import can_access_record
from apps.rbac.context import access_context
from apps.rbac.models import Role, TenantUserRole
from apps.rbac.resolver import DENY_ALL
from apps.rbac.scopes import Action
from apps.rbac.services import AssignmentStore, PermissionService, RoleRegistry


@contextmanager
def acting_as(user, tenant):
    permissions = PermissionService.effective_permissions(user, tenant)
    with access_context(user_id=user.id, tenant_id=tenant.id, permissions=permissions):
        yield permissions


@pytest.fixture
def other_rep(make_user, tenant, assign):
    user = make_user(email='rep2@example.com')
    assign(user, tenant, 'Sales Rep')
    return user


@pytest.fixture
def leads(tenant, other_tenant, admin_user, sales_rep, other_rep):
    """Leads covering each ownership/assignment combination."""
    return {
        'rep_owned': Lead.objects.create(tenant=tenant, title='Rep owned', owner=sales_rep),
        'rep_assigned': Lead.objects.create(
            tenant=tenant, title='Assigned to rep', owner=admin_user, assigned_to=sales_rep
        ),
        'other_rep': Lead.objects.create(
            tenant=tenant, title='Other rep', owner=other_rep, assigned_to=other_rep
        ),
        'unassigned': Lead.objects.create(tenant=tenant, title='Unassigned', owner=admin_user),
        'foreign': Lead.objects.create(
            tenant=other_tenant, title='Other tenant', owner=sales_rep, assigned_to=sales_rep
        ),
    }


@pytest.mark.django_db
class TestScopedReads:
    """Reads through the default manager only return admitted rows."""

    def test_sales_rep_sees_owned_and_assigned_leads(self, tenant, sales_rep, leads):
        with acting_as(sales_rep, tenant):
            titles = set(Lead.objects.values_list('title', flat=True))

        assert titles == {'Rep owned', 'Assigned to rep'}

    def test_assignment_is_personal(self, tenant, other_rep, leads):
        """A lead assigned to one rep is not visible to another rep."""
        with acting_as(other_rep, tenant):
            assert not Lead.objects.filter(id=leads['rep_assigned'].id).exists()
            assert Lead.objects.filter(id=leads['other_rep'].id).exists()

    def test_admin_sees_whole_tenant_only(self, tenant, admin_user, leads):
        with acting_as(admin_user, tenant):
            ids = set(Lead.objects.values_list('id', flat=True))

        assert ids == {
            leads['rep_owned'].id, leads['rep_assigned'].id,
            leads['other_rep'].id, leads['unassigned'].id,
        }

    def test_orm_filter_agrees_with_can(self, tenant, admin_user, sales_rep, other_rep, leads):
        every_lead = list(Lead._base_manager.all())

        for user in (admin_user, sales_rep, other_rep):
            with acting_as(user, tenant) as permissions:
                visible = set(Lead.objects.values_list('id', flat=True))
                for lead in every_lead:
                    allowed = (
                        str(lead.tenant_id) == str(tenant.id)
                        and can_access_record(permissions, Lead.access_policy, Action.READ, lead, user.id)
                    )
                    assert (lead.id in visible) == allowed, (user.email, lead.title)

    def test_own_scope_on_customers(self, tenant, admin_user, sales_rep):
        Customer.objects.create(tenant=tenant, name='Mine', owner=sales_rep)
        Customer.objects.create(tenant=tenant, name='Theirs', owner=admin_user)
        Customer.objects.create(tenant=tenant, name='Nobody')

        with acting_as(sales_rep, tenant):
            assert list(Customer.objects.values_list('name', flat=True)) == ['Mine']

    def test_legacy_true_reads_all(self, tenant, admin_user, sales_rep):
        Customer.objects.create(tenant=tenant, name='Mine', owner=sales_rep)
        Customer.objects.create(tenant=tenant, name='Theirs', owner=admin_user)
        role = Role.objects.by_name(tenant, 'Sales Rep')
        # Written by an old client, bypassing normalisation
        Role.objects.filter(id=role.id).update(permissions={'customers': {'read': True}})

        with acting_as(sales_rep, tenant):
            assert Customer.objects.count() == 2

    def test_no_assignment_sees_nothing(self, tenant, make_user, leads):
        outsider = make_user()

        with acting_as(outsider, tenant) as permissions:
            assert permissions == DENY_ALL
            assert Lead.objects.count() == 0
            assert Product.objects.count() == 0

    def test_deactivated_user_sees_nothing(self, tenant, sales_rep, leads):
        AssignmentStore.deactivate(TenantUserRole.objects.get_active(sales_rep, tenant).id)

        with acting_as(sales_rep, tenant):
            assert Lead.objects.count() == 0

    def test_unrestricted_flag_sees_tenant(self, tenant, sales_rep, leads):
        AssignmentStore.set_unrestricted(TenantUserRole.objects.get_active(sales_rep, tenant).id, True)

        with acting_as(sales_rep, tenant):
            assert Lead.objects.count() == 4

    def test_override_widens_module(self, tenant, sales_rep, leads):
        assignment = TenantUserRole.objects.get_active(sales_rep, tenant)
        AssignmentStore.set_override(assignment.id, {'leads': {'read': 'all'}})

        with acting_as(sales_rep, tenant):
            assert Lead.objects.count() == 4

    def test_catalog_module(self, tenant, sales_rep, other_tenant):
        Product.objects.create(tenant=tenant, name='Gold', price=Decimal('10.00'))
        Product.objects.create(tenant=other_tenant, name='Silver')
        Payment.objects.create(tenant=tenant, amount=Decimal('5.00'))

        with acting_as(sales_rep, tenant):
            assert list(Product.objects.values_list('name', flat=True)) == ['Gold']
            assert Payment.objects.count() == 1

    def test_system_operations_are_unfiltered(self, leads):
        assert Lead.objects.count() == 5

    def test_base_manager_is_unfiltered(self, tenant, make_user, leads):
        with acting_as(make_user(), tenant):
            assert Lead._base_manager.count() == 5


@pytest.mark.django_db
class TestWriteGuard:
    """save() and delete() are checked against the write predicates."""

    def test_create_defaults_owner_and_tenant(self, tenant, sales_rep):
        with acting_as(sales_rep, tenant):
            lead = Lead.objects.create(title='Fresh')

        lead.refresh_from_db()
        assert lead.owner_id == sales_rep.id
        assert lead.tenant_id == tenant.id

    def test_create_in_other_tenant_forbidden(self, tenant, other_tenant, admin_user):
        with acting_as(admin_user, tenant):
            with pytest.raises(Forbidden):
                Lead.objects.create(tenant=other_tenant, title='Smuggled')

        assert not Lead._base_manager.filter(title='Smuggled').exists()

    def test_create_denied_module(self, tenant, make_user, assign):
        viewer = make_user()
        assign(viewer, tenant, 'Viewer')

        with acting_as(viewer, tenant):
            with pytest.raises(Forbidden):
                Customer.objects.create(name='Nope')

    def test_update_own_record(self, tenant, sales_rep, leads):
        with acting_as(sales_rep, tenant):
            lead = Lead.objects.get(id=leads['rep_owned'].id)
            lead.stage = 'qualified'
            lead.save()

        leads['rep_owned'].refresh_from_db()
        assert leads['rep_owned'].stage == 'qualified'

    def test_update_assigned_deal_through_pipeline(self, tenant, sales_rep, leads):
        with acting_as(sales_rep, tenant):
            lead = Lead.objects.get(id=leads['rep_assigned'].id)
            lead.stage = 'proposal'
            lead.save()

        leads['rep_assigned'].refresh_from_db()
        assert leads['rep_assigned'].stage == 'proposal'

    def test_update_checks_stored_row(self, tenant, sales_rep, leads):
        """Rewriting the owner column does not make a foreign row writable."""
        lead = leads['unassigned']
        lead.owner = sales_rep
        lead.title = 'Hijacked'

        with acting_as(sales_rep, tenant):
            with patch('apps.rbac.enforcement.SecurityLogger.log_forbidden_write') as logged:
                with pytest.raises(Forbidden):
                    lead.save()

        logged.assert_called_once()
        assert logged.call_args.kwargs['table'] == 'leads'
        lead.refresh_from_db()
        assert lead.title == 'Unassigned'

    def test_delete_denied(self, tenant, sales_rep, leads):
        with acting_as(sales_rep, tenant):
            lead = Lead.objects.get(id=leads['rep_owned'].id)
            with pytest.raises(Forbidden):
                lead.delete()

        assert Lead._base_manager.filter(id=leads['rep_owned'].id).exists()

    def test_delete_allowed(self, tenant, admin_user, leads):
        with acting_as(admin_user, tenant):
            Lead.objects.get(id=leads['unassigned'].id).delete()

        assert not Lead._base_manager.filter(id=leads['unassigned'].id).exists()

    def test_update_cannot_move_row_to_other_tenant(self, tenant, other_tenant, sales_rep, leads):
        with acting_as(sales_rep, tenant):
            lead = Lead.objects.get(id=leads['rep_owned'].id)
            lead.tenant_id = other_tenant.id
            with pytest.raises(Forbidden):
                lead.save()

        assert Lead._base_manager.get(id=leads['rep_owned'].id).tenant_id == tenant.id

    def test_no_assignment_cannot_write(self, tenant, make_user, leads):
        with acting_as(make_user(), tenant):
            with pytest.raises(Forbidden):
                Lead.objects.create(title='Nope')
            with pytest.raises(Forbidden):
                leads['rep_owned'].save()


@pytest.mark.django_db
class TestBulkWrites:
    """Queryset update() and delete() only touch admitted rows."""

    def test_bulk_update_limited_to_writable_rows(self, tenant, sales_rep, leads):
        with acting_as(sales_rep, tenant):
            updated = Lead.objects.update(stage='won')

        assert updated == 2
        assert set(Lead._base_manager.filter(stage='won').values_list('title', flat=True)) == {
            'Rep owned', 'Assigned to rep',
        }

    def test_bulk_delete_denied(self, tenant, sales_rep):
        Customer.objects.create(tenant=tenant, name='Mine', owner=sales_rep)

        with acting_as(sales_rep, tenant):
            deleted, _ = Customer.objects.all().delete()

        assert deleted == 0
        assert Customer.objects.count() == 1

    def test_bulk_update_cannot_move_rows_to_other_tenant(self, tenant, other_tenant, admin_user, leads):
        with acting_as(admin_user, tenant):
            with pytest.raises(Forbidden):
                Lead.objects.update(tenant=other_tenant)

        assert Lead._base_manager.filter(tenant=other_tenant).count() == 1

    def test_bulk_create_checked(self, tenant, other_tenant, admin_user):
        with acting_as(admin_user, tenant):
            with pytest.raises(Forbidden):
                Product.objects.bulk_create([
                    Product(tenant=tenant, name='Ok'),
                    Product(tenant=other_tenant, name='Smuggled'),
                ])

        assert Product.objects.count() == 0


@pytest.fixture
def lead_cleaner(make_user, tenant, assign):
    """May delete leads and customers, but has no access to activities."""
    RoleRegistry.upsert_role(tenant, 'Lead Cleaner', {
        'leads': {'read': 'all', 'update': 'all', 'delete': 'all'},
        'customers': {'read': 'all', 'delete': 'all'},
    })
    user = make_user(email='cleaner@example.com')
    assign(user, tenant, 'Lead Cleaner')
    return user


@pytest.mark.django_db
class TestCascadeGuard:
    """Rows a deletion removes or rewrites on the way are guarded too."""

    def test_cascade_to_forbidden_rows_refused(self, tenant, admin_user, lead_cleaner):
        lead = Lead.objects.create(tenant=tenant, title='Busy', owner=admin_user)
        activity = Activity.objects.create(tenant=tenant, subject='Call back', lead=lead, owner=admin_user)

        with acting_as(lead_cleaner, tenant):
            with patch('apps.rbac.enforcement.SecurityLogger.log_forbidden_write') as logged:
                with pytest.raises(Forbidden):
                    Lead.objects.get(id=lead.id).delete()

        assert logged.call_args.kwargs['table'] == 'activities'
        assert Lead._base_manager.filter(id=lead.id).exists()
        assert Activity._base_manager.filter(id=activity.id).exists()

    def test_queryset_delete_guards_cascade(self, tenant, admin_user, lead_cleaner):
        lead = Lead.objects.create(tenant=tenant, title='Busy', owner=admin_user)
        Activity.objects.create(tenant=tenant, subject='Call back', lead=lead, owner=admin_user)

        with acting_as(lead_cleaner, tenant):
            with pytest.raises(Forbidden):
                Lead.objects.filter(id=lead.id).delete()

        assert Lead._base_manager.filter(id=lead.id).exists()
        assert Activity._base_manager.filter(lead_id=lead.id).count() == 1

    def test_cascade_allowed_when_every_row_passes(self, tenant, admin_user):
        lead = Lead.objects.create(tenant=tenant, title='Done', owner=admin_user)
        activity = Activity.objects.create(tenant=tenant, subject='Wrap up', lead=lead, owner=admin_user)

        with acting_as(admin_user, tenant):
            Lead.objects.get(id=lead.id).delete()

        assert not Lead._base_manager.filter(id=lead.id).exists()
        assert not Activity._base_manager.filter(id=activity.id).exists()

    def test_nulling_links_needs_update_on_linked_rows(self, tenant, admin_user, lead_cleaner):
        customer = Customer.objects.create(tenant=tenant, name='Acme', owner=admin_user)
        lead = Lead.objects.create(tenant=tenant, title='Acme deal', owner=admin_user, customer=customer)
        assignment = TenantUserRole.objects.get_active(lead_cleaner, tenant)
        AssignmentStore.set_override(assignment.id, {'leads': {'read': 'all'}})

        with acting_as(lead_cleaner, tenant):
            with pytest.raises(Forbidden):
                Customer.objects.get(id=customer.id).delete()

        assert Customer._base_manager.filter(id=customer.id).exists()
        lead.refresh_from_db()
        assert lead.customer_id == customer.id

    def test_nulling_links_allowed_with_update(self, tenant, admin_user, lead_cleaner):
        customer = Customer.objects.create(tenant=tenant, name='Acme', owner=admin_user)
        lead = Lead.objects.create(tenant=tenant, title='Acme deal', owner=admin_user, customer=customer)

        with acting_as(lead_cleaner, tenant):
            Customer.objects.get(id=customer.id).delete()

        assert not Customer._base_manager.filter(id=customer.id).exists()
        lead.refresh_from_db()
        assert lead.customer_id is None

    def test_system_delete_cascades(self, tenant, admin_user):
        lead = Lead.objects.create(tenant=tenant, title='Old', owner=admin_user)
        Activity.objects.create(tenant=tenant, subject='Old call', lead=lead)

        lead.delete()

        assert Activity._base_manager.count() == 0


@pytest.mark.django_db
class TestLinkedRecordReads:
    """Following a link to another record obeys that record's read predicate."""

    def test_hidden_lead_not_reachable_through_activity(self, tenant, admin_user, sales_rep):
        lead = Lead.objects.create(tenant=tenant, title='Secret', owner=admin_user)
        mine = Activity.objects.create(tenant=tenant, subject='My note', lead=lead, owner=sales_rep)

        with acting_as(sales_rep, tenant):
            assert not Lead.objects.filter(id=lead.id).exists()
            activity = Activity.objects.get(id=mine.id)
            with pytest.raises(Lead.DoesNotExist):
                activity.lead

    def test_visible_lead_reachable_through_activity(self, tenant, sales_rep):
        lead = Lead.objects.create(tenant=tenant, title='Mine', owner=sales_rep)
        mine = Activity.objects.create(tenant=tenant, subject='My note', lead=lead, owner=sales_rep)

        with acting_as(sales_rep, tenant):
            assert Activity.objects.get(id=mine.id).lead.title == 'Mine'

    def test_system_reads_follow_links(self, tenant, admin_user, sales_rep):
        lead = Lead.objects.create(tenant=tenant, title='Secret', owner=admin_user)
        mine = Activity.objects.create(tenant=tenant, subject='My note', lead=lead, owner=sales_rep)

        assert Activity.objects.get(id=mine.id).lead.title == 'Secret'
