"""
Tests for the API exception handler.
"""
import pytest
from django.test import RequestFactory
from rest_framework.exceptions import ValidationError

from apps.core.exceptions import (
    AuthenticationError,
    Conflict,
    Forbidden,
    InvalidConfiguration,
    NexusException,
    NotFound,
    TenantInactive,
    TenantNotFound,
    TenantRequired,
    custom_exception_handler,
)


@pytest.fixture
def context():
    request = RequestFactory().get('/v1/roles')
    request.request_id = 'req-123'
    return {'request': request}


@pytest.mark.parametrize('exc_class,status_code,code', [
    (NotFound, 404, 'NOT_FOUND'),
    (Conflict, 409, 'CONFLICT'),
    (InvalidConfiguration, 400, 'INVALID_CONFIGURATION'),
    (Forbidden, 403, 'FORBIDDEN'),
    (TenantNotFound, 404, 'INVALID_TENANT'),
    (AuthenticationError, 401, 'UNAUTHENTICATED'),
    (TenantRequired, 400, 'MISSING_TENANT'),
    (TenantInactive, 403, 'TENANT_INACTIVE'),
])
def test_nexus_exceptions_rendered(context, exc_class, status_code, code):
    response = custom_exception_handler(exc_class('Nope', details={'role': 'Finance'}), context)

    assert response.status_code == status_code
    assert response.data == {
        'error': {'code': code, 'message': 'Nope', 'details': {'role': 'Finance'}},
        'request_id': 'req-123',
    }


def test_details_default_to_empty(context):
    response = custom_exception_handler(Conflict('Already assigned'), context)

    assert response.data['error']['details'] == {}


def test_base_exception_is_server_error(context):
    response = custom_exception_handler(NexusException('Broken'), context)

    assert response.status_code == 500
    assert response.data['error']['code'] == 'ERROR'


def test_drf_exception_gets_request_id(context):
    response = custom_exception_handler(ValidationError({'email': ['required']}), context)

    assert response.status_code == 400
    assert response.data['email'] == ['required']
    assert response.data['request_id'] == 'req-123'


def test_unhandled_exception_is_generic_500(context):
    try:
        raise RuntimeError('database password is hunter2')
    except RuntimeError as exc:
        response = custom_exception_handler(exc, context)

    assert response.status_code == 500
    assert response.data == {
        'error': {'code': 'INTERNAL_ERROR', 'message': 'An unexpected error occurred'},
        'request_id': 'req-123',
    }


def test_missing_request(context):
    response = custom_exception_handler(NotFound('Role not found'), {})

    assert response.status_code == 404
    assert response.data['request_id'] is None
