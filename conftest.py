"""
Pytest configuration and fixtures.
"""
import pytest


@pytest.fixture(autouse=True)
def clean_access_context():
    """Make sure no test leaks an access context or memo into the next."""
    from apps.rbac.context import _current_access, _permission_memo

    access_token = _current_access.set(None)
    memo_token = _permission_memo.set(None)
    yield
    _permission_memo.reset(memo_token)
    _current_access.reset(access_token)


@pytest.fixture
def api_client():
    """Return DRF API client."""
    from rest_framework.test import APIClient
    return APIClient()


@pytest.fixture
def tenant(db):
    """Create a test tenant; its system roles are seeded by signal."""
    from apps.tenants.models import Tenant
    return Tenant.objects.create(
        name='Test Tenant',
        slug='test-tenant',
        status='active'
    )


@pytest.fixture
def other_tenant(db):
    """Create another test tenant for isolation tests."""
    from apps.tenants.models import Tenant
    return Tenant.objects.create(
        name='Other Tenant',
        slug='other-tenant',
        status='active'
    )


@pytest.fixture
def make_user(db):
    """Factory for users with unique emails."""
    from apps.rbac.models import User

    counter = {'n': 0}

    def _make(email=None, password='testpass123', **extra):
        counter['n'] += 1
        return User.objects.create_user(
            email=email or f'user{counter["n"]}@example.com',
            password=password,
            **extra
        )

    return _make


@pytest.fixture
def assign(db):
    """Bind a user to a role (by name) in a tenant."""
    from apps.rbac.models import Role
    from apps.rbac.services import AssignmentStore

    def _assign(user, tenant, role_name, **fields):
        role = Role.objects.by_name(tenant, role_name)
        assignment = AssignmentStore.assign(user, tenant, role)
        if fields:
            for name, value in fields.items():
                setattr(assignment, name, value)
            assignment.save()
        return assignment

    return _assign


@pytest.fixture
def auth_headers():
    """Authorization and tenant headers for a user acting in a tenant."""
    from apps.rbac.services import AuthService

    def _headers(user, tenant):
        return {
            'HTTP_AUTHORIZATION': f'Bearer {AuthService.generate_jwt(user)}',
            'HTTP_X_TENANT_ID': str(tenant.id),
        }

    return _headers


@pytest.fixture
def admin_user(make_user, tenant, assign):
    """A Super Admin of the test tenant."""
    user = make_user(email='admin@example.com')
    assign(user, tenant, 'Super Admin')
    return user


@pytest.fixture
def sales_rep(make_user, tenant, assign):
    """A Sales Rep of the test tenant."""
    user = make_user(email='rep@example.com')
    assign(user, tenant, 'Sales Rep')
    return user
