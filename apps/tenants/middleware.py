"""
Tenant context middleware for multi-tenant isolation.

Authenticates the JWT bearer token, resolves the X-TENANT-ID header and the
caller's effective permissions in that tenant, and publishes them to the
access context that the storage guard reads.
"""
import logging
import uuid

from django.conf import settings
from django.core.exceptions import ValidationError
from django.http import JsonResponse
from django.utils.deprecation import MiddlewareMixin

from apps.core.exceptions import (
    AuthenticationError,
    NexusException,
    TenantInactive,
    TenantNotFound,
    TenantRequired,
)
from apps.rbac import rls
from apps.rbac.context import (
    begin_permission_memo,
    end_permission_memo,
    reset_access_context,
    set_access_context,
)
from apps.rbac.resolver import DENY_ALL
from .models import Tenant

logger = logging.getLogger(__name__)


class TenantContextMiddleware:
    """
    Extract and validate tenant context for every API request.

    This middleware:
    1. Authenticates the Authorization: Bearer <jwt> header
    2. Resolves the tenant named by X-TENANT-ID
    3. Resolves the user's effective permissions in that tenant
    4. Attaches request.user, request.tenant, request.permissions
    5. Sets the access context (and the PostgreSQL session user) for the
       duration of the request, clearing both afterwards

    A user without an active role in the tenant is not rejected here; they get
    an empty permission set, so every permission check and every guarded
    query denies.

    The Django admin is staff-only and works across tenants, so its requests
    run with the row-level security bypass switched on.
    """

    # Paths that don't require tenant authentication
    PUBLIC_PATHS = [
        '/v1/auth/',
        '/v1/health',
        '/schema',
        '/admin/',
    ]
    ADMIN_PATH = '/admin/'

    def __init__(self, get_response):
        self.get_response = get_response

    def __call__(self, request):
        request.request_id = request.headers.get('X-Request-ID') or str(uuid.uuid4())
        request.tenant = None
        request.permissions = DENY_ALL

        if self._is_public_path(request.path):
            if request.path.startswith(self.ADMIN_PATH) and self._sets_db_session():
                with rls.rls_bypass():
                    return self.get_response(request)
            return self.get_response(request)

        memo_token = begin_permission_memo()
        try:
            try:
                self._authenticate(request)
            except NexusException as exc:
                return self._error_response(
                    exc.code,
                    exc.message,
                    status=exc.status_code,
                    details=exc.details,
                    request_id=request.request_id,
                )
            return self._call_with_context(request)
        finally:
            end_permission_memo(memo_token)

    def _authenticate(self, request):
        """
        Populate request.user / request.tenant / request.permissions.

        Raises:
            AuthenticationError: Missing, invalid or expired token
            TenantRequired: No X-TENANT-ID header
            TenantNotFound: Unknown or malformed tenant id
            TenantInactive: Suspended or canceled tenant
        """
        from apps.rbac.services import AuthService, PermissionService

        auth_header = request.headers.get('Authorization', '')
        if not auth_header.startswith('Bearer '):
            raise AuthenticationError('Authorization: Bearer <token> header is required')

        user = AuthService.get_user_from_jwt(auth_header[len('Bearer '):].strip())
        if user is None:
            logger.warning(
                "Invalid or expired token",
                extra={'request_id': request.request_id, 'path': request.path}
            )
            raise AuthenticationError('Invalid or expired token')
        request.user = user

        tenant_id = request.headers.get('X-TENANT-ID')
        if not tenant_id:
            raise TenantRequired('X-TENANT-ID header is required')

        tenant = self._get_tenant(tenant_id)
        if tenant is None:
            logger.warning(
                f"Invalid tenant ID: {tenant_id}",
                extra={'request_id': request.request_id}
            )
            raise TenantNotFound('Invalid tenant ID')

        if not tenant.is_active():
            logger.info(
                f"Inactive tenant attempted access: {tenant_id}",
                extra={'request_id': request.request_id}
            )
            raise TenantInactive('This tenant is not active', details={'status': tenant.status})

        request.tenant = tenant
        request.permissions = PermissionService.effective_permissions(user, tenant)

        logger.debug(
            f"Access context set: {user.id} @ {tenant.slug}",
            extra={'request_id': request.request_id, 'tenant_id': str(tenant.id)}
        )

    def _call_with_context(self, request):
        set_db_user = self._sets_db_session()
        token = set_access_context(request.user.id, request.tenant.id, request.permissions)
        try:
            if set_db_user:
                rls.set_session_user(request.user.id)
            return self.get_response(request)
        finally:
            if set_db_user:
                rls.clear_session()
            reset_access_context(token)

    @staticmethod
    def _sets_db_session():
        return getattr(settings, 'RBAC_SET_DB_SESSION_USER', True)

    def _get_tenant(self, tenant_id):
        try:
            return Tenant.objects.filter(id=tenant_id, deleted_at__isnull=True).first()
        except ValidationError:
            # Malformed UUID
            return None

    def _is_public_path(self, path):
        """Check if path is public and doesn't require authentication."""
        return any(path.startswith(public_path) for public_path in self.PUBLIC_PATHS)

    @staticmethod
    def _error_response(code, message, status=400, details=None, request_id=None):
        """Generate standardized error response."""
        error_data = {
            'error': {
                'code': code,
                'message': message,
            },
            'request_id': request_id,
        }

        if details:
            error_data['error']['details'] = details

        return JsonResponse(error_data, status=status)


class RequestIDMiddleware(MiddlewareMixin):
    """
    Inject unique request ID for tracing.

    Runs before TenantContextMiddleware so public paths get an id too, and
    echoes it back in the X-Request-ID response header.
    """

    def process_request(self, request):
        if not hasattr(request, 'request_id'):
            request.request_id = request.headers.get('X-Request-ID') or str(uuid.uuid4())
        return None

    def process_response(self, request, response):
        if hasattr(request, 'request_id'):
            response['X-Request-ID'] = request.request_id
        return response
