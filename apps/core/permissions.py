"""
DRF permission classes and decorators for module permission enforcement.

This module provides:
- HasModulePermission: DRF permission class that enforces (module, action) requirements
- @requires_permission: Decorator to declare the required permission on views
"""
import logging
from functools import wraps
from rest_framework.permissions import BasePermission

from apps.core.logging import SecurityLogger
from apps.rbac.authorizer import can_any, can_access_record

logger = logging.getLogger(__name__)

# Default action per HTTP method when a view declares only a module
METHOD_ACTIONS = {
    'GET': 'read',
    'HEAD': 'read',
    'OPTIONS': 'read',
    'POST': 'create',
    'PUT': 'update',
    'PATCH': 'update',
    'DELETE': 'delete',
}


class HasModulePermission(BasePermission):
    """
    DRF permission class that enforces module permissions on API endpoints.

    The view declares required_permission = (module, action) or
    required_module = 'leads' (action derived from the HTTP method). The
    request passes when the caller's resolved permissions grant that action
    at any scope; row-level narrowing (own, ownDeals) is applied later by
    the scoped managers and by has_object_permission.

    Usage in views:
        class LeadListView(APIView):
            permission_classes = [HasModulePermission]
            required_module = 'leads'

    Or use with decorator:
        @requires_permission('settings', 'read')
        class RoleListView(APIView):
            pass
    """

    def _required(self, request, view):
        required = getattr(view, 'required_permission', None)
        if required:
            return required
        module = getattr(view, 'required_module', None)
        if module:
            return module, METHOD_ACTIONS.get(request.method, 'read')
        return None

    def has_permission(self, request, view):
        required = self._required(request, view)

        # If nothing required, allow access
        if not required:
            return True

        module, action = required
        permissions = getattr(request, 'permissions', None)

        if can_any(permissions, module, action):
            return True

        user_id = getattr(getattr(request, 'user', None), 'id', None)
        tenant_id = getattr(getattr(request, 'tenant', None), 'id', None)
        SecurityLogger.log_permission_denied(
            user_id=user_id,
            tenant_id=tenant_id,
            module=str(module),
            action=str(action),
            path=request.path,
        )
        return False

    def has_object_permission(self, request, view, obj):
        """
        Verify the object belongs to the request's tenant and is within scope.
        """
        request_tenant = getattr(request, 'tenant', None)
        if not request_tenant:
            logger.warning(
                "Object permission check failed: No tenant in request",
                extra={
                    'view': view.__class__.__name__,
                    'object_type': obj.__class__.__name__,
                }
            )
            return False

        object_tenant_id = getattr(obj, 'tenant_id', None)
        if object_tenant_id is not None and str(object_tenant_id) != str(request_tenant.id):
            logger.warning(
                "Object permission denied: Object belongs to different tenant",
                extra={
                    'request_tenant_id': str(request_tenant.id),
                    'object_tenant_id': str(object_tenant_id),
                    'object_type': obj.__class__.__name__,
                    'request_id': getattr(request, 'request_id', None),
                }
            )
            return False

        policy = getattr(obj, 'access_policy', None)
        required = self._required(request, view)
        if policy is None or not required:
            return True

        return can_access_record(
            getattr(request, 'permissions', None),
            policy,
            required[1],
            obj,
            getattr(request.user, 'id', None),
        )


def requires_permission(module, action):
    """
    Decorator to declare the required permission on view classes or methods.

    Usage:
        @requires_permission('settings', 'read')
        class RoleListView(APIView):
            permission_classes = [HasModulePermission]

    Or on individual methods:
        class RoleListView(APIView):
            @requires_permission('settings', 'read')
            def get(self, request):
                pass

            @requires_permission('settings', 'update')
            def post(self, request):
                pass
    """
    required = (module, action)

    def decorator(view_or_method):
        if isinstance(view_or_method, type):
            view_or_method.required_permission = required
            return view_or_method

        @wraps(view_or_method)
        def wrapped(self, request, *args, **kwargs):
            self.required_permission = required
            # Re-run the check now that the method-level requirement is known
            self.check_permissions(request)
            return view_or_method(self, request, *args, **kwargs)

        wrapped.required_permission = required
        return wrapped

    return decorator
