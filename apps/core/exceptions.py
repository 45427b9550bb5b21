"""
Exception types and the DRF exception handler.

Every access-control failure is a NexusException subclass carrying an HTTP
status code, so services can raise them and views get a consistent payload.
"""
import logging
from rest_framework.views import exception_handler
from rest_framework.response import Response
from rest_framework import status

logger = logging.getLogger(__name__)


class NexusException(Exception):
    """Base exception for Nexus-specific errors."""

    status_code = 500
    code = 'ERROR'

    def __init__(self, message, details=None):
        self.message = message
        self.details = details or {}
        super().__init__(self.message)


class NotFound(NexusException):
    """Raised when a role, assignment or tenant cannot be found."""
    status_code = 404
    code = 'NOT_FOUND'


class Conflict(NexusException):
    """Raised when a write would create a second active assignment."""
    status_code = 409
    code = 'CONFLICT'


class InvalidConfiguration(NexusException):
    """Raised when a permission document is malformed or grants a scope the module cannot carry."""
    status_code = 400
    code = 'INVALID_CONFIGURATION'


class AuthenticationError(NexusException):
    """Raised when authentication fails."""
    status_code = 401
    code = 'UNAUTHENTICATED'


class Forbidden(NexusException):
    """Raised when the storage guard or an API permission check rejects an operation."""
    status_code = 403
    code = 'FORBIDDEN'


class TenantRequired(NexusException):
    """Raised when a request names no tenant."""
    status_code = 400
    code = 'MISSING_TENANT'


class TenantNotFound(NotFound):
    """Raised when tenant cannot be resolved."""
    code = 'INVALID_TENANT'


class TenantInactive(Forbidden):
    """Raised when the tenant is suspended or canceled."""
    code = 'TENANT_INACTIVE'


def custom_exception_handler(exc, context):
    """
    Custom exception handler that logs errors and returns consistent format.
    """
    request = context.get('request')
    request_id = getattr(request, 'request_id', None) if request else None

    if isinstance(exc, NexusException):
        level = logging.WARNING if exc.status_code < 500 else logging.ERROR
        logger.log(
            level,
            f"API Exception: {exc.__class__.__name__}: {exc.message}",
            extra={
                'request_id': request_id,
                'path': request.path if request else None,
                'method': request.method if request else None,
                'details': exc.details,
            },
        )
        return Response(
            {
                'error': {
                    'code': exc.code,
                    'message': exc.message,
                    'details': exc.details,
                },
                'request_id': request_id,
            },
            status=exc.status_code,
        )

    # Call DRF's default exception handler first
    response = exception_handler(exc, context)

    logger.error(
        f"API Exception: {exc.__class__.__name__}",
        extra={
            'exception': str(exc),
            'request_id': request_id,
            'path': request.path if request else None,
            'method': request.method if request else None,
        },
        exc_info=response is None,
    )

    # If DRF didn't handle it, return a generic 500 error
    if response is None:
        return Response(
            {
                'error': {
                    'code': 'INTERNAL_ERROR',
                    'message': 'An unexpected error occurred',
                },
                'request_id': request_id,
            },
            status=status.HTTP_500_INTERNAL_SERVER_ERROR
        )

    # Add request_id to all error responses
    if request_id and isinstance(response.data, dict):
        response.data['request_id'] = request_id

    return response
