"""
Tests for the shared model bases.
"""
import pytest

from apps.core.models import BaseModel, TimestampedModel
from apps.crm.models import Customer
from apps.rbac.models import Role


@pytest.mark.django_db
class TestBaseModel:

    def test_soft_delete_hides_row(self, tenant):
        role = Role.objects.create(tenant=tenant, name='Temporary', permissions={})

        role.delete()

        assert role.is_deleted
        assert not Role.objects.filter(pk=role.pk).exists()
        assert Role.objects_with_deleted.filter(pk=role.pk).exists()

    def test_queryset_delete_is_soft(self, tenant):
        Role.objects.create(tenant=tenant, name='Temporary', permissions={})

        Role.objects_with_deleted.filter(tenant=tenant, name='Temporary').delete()

        assert Role.objects_with_deleted.get(tenant=tenant, name='Temporary').deleted_at is not None

    def test_hard_delete_removes_row(self, tenant):
        role = Role.objects.create(tenant=tenant, name='Temporary', permissions={})

        role.hard_delete()

        assert not Role.objects_with_deleted.filter(pk=role.pk).exists()


@pytest.mark.django_db
class TestTimestampedModel:

    def test_records_have_no_soft_delete(self):
        assert issubclass(Customer, TimestampedModel)
        assert not issubclass(Customer, BaseModel)
        assert 'deleted_at' not in {f.name for f in Customer._meta.get_fields()}

    def test_timestamps_set_on_create(self, tenant):
        customer = Customer.objects.create(tenant=tenant, name='Acme')

        assert customer.created_at is not None
        assert customer.updated_at >= customer.created_at

    def test_delete_removes_record(self, tenant):
        customer = Customer.objects.create(tenant=tenant, name='Acme')

        customer.delete()

        assert not Customer.objects.filter(pk=customer.pk).exists()
