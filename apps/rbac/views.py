"""
RBAC REST API views.

Implements endpoints for:
- The caller's own effective permissions
- Role management (list, upsert, detail)
- Role assignments (list, assign, change role, override, full access, revoke)
- Audit log viewing

Role and assignment management is gated by the settings module.
"""
import uuid

from rest_framework import status
from rest_framework.exceptions import ValidationError
from rest_framework.views import APIView
from rest_framework.response import Response
from rest_framework.pagination import PageNumberPagination
from drf_spectacular.utils import extend_schema, extend_schema_view, OpenApiParameter, OpenApiExample
from drf_spectacular.types import OpenApiTypes

from apps.core.exceptions import InvalidConfiguration
from apps.core.permissions import requires_permission, HasModulePermission
from apps.rbac.authorizer import permission_summary, scope_for
from apps.rbac.models import User, AuditLog, TenantUserRole
from apps.rbac.scopes import Action, Module, Scope
from apps.rbac.services import AssignmentStore, RoleRegistry
from apps.rbac.serializers import (
    RoleSerializer, RoleUpsertSerializer, TenantUserRoleSerializer,
    AssignRoleSerializer, ChangeRoleSerializer, OverrideSerializer,
    FullAccessSerializer, AuditLogSerializer,
)


class StandardResultsSetPagination(PageNumberPagination):
    """Standard pagination for list endpoints."""
    page_size = 50
    page_size_query_param = 'page_size'
    max_page_size = 100


@extend_schema_view(
    get=extend_schema(
        tags=['RBAC - Permissions'],
        summary='My effective permissions',
        description='''
Return the caller's resolved permissions in the current tenant, one scope
token per module and action.

**No permission required** - users can always see their own permissions.
        ''',
        responses={200: OpenApiTypes.OBJECT},
        examples=[
            OpenApiExample(
                'Sales Rep',
                value={
                    'tenant_id': '123e4567-e89b-12d3-a456-426614174001',
                    'role': 'Sales Rep',
                    'has_all_access': False,
                    'permissions': {
                        'dashboard': {'read': True},
                        'leads': {'create': 'all', 'read': 'own', 'update': 'own', 'delete': False},
                        'pipeline': {'create': 'all', 'read': 'ownDeals', 'update': 'ownDeals', 'delete': False},
                    },
                },
                response_only=True
            )
        ]
    )
)
class MyPermissionsView(APIView):
    """
    GET /v1/me/permissions
    """

    def get(self, request):
        assignment = TenantUserRole.objects.get_active(request.user, request.tenant)
        return Response({
            'tenant_id': str(request.tenant.id),
            'role': assignment.role.name if assignment else None,
            'has_all_access': bool(assignment and assignment.has_all_access),
            'permissions': permission_summary(request.permissions),
        })


@extend_schema_view(
    get=extend_schema(
        tags=['RBAC - Permissions'],
        summary='Check a permission',
        description='''
Answer whether the caller may perform `action` on `module`, and at which scope.
`allowed` is true when any rows can be reached; own-scoped grants still
filter rows per record.
        ''',
        parameters=[
            OpenApiParameter('module', OpenApiTypes.STR, required=True),
            OpenApiParameter('action', OpenApiTypes.STR, required=True),
        ],
        responses={200: OpenApiTypes.OBJECT, 400: OpenApiTypes.OBJECT},
    )
)
class PermissionCheckView(APIView):
    """
    GET /v1/check?module=leads&action=read
    """

    def get(self, request):
        module = Module.parse(request.query_params.get('module'))
        action = Action.parse(request.query_params.get('action'))
        if module is None or action is None:
            raise InvalidConfiguration(
                "module and action must name a known module and action",
                details={
                    'module': request.query_params.get('module'),
                    'action': request.query_params.get('action'),
                }
            )

        scope = scope_for(request.permissions, module, action)
        return Response({
            'module': module.value,
            'action': action.value,
            'scope': scope.to_token(module),
            'allowed': scope is not Scope.DENIED,
        })


@extend_schema_view(
    get=extend_schema(
        tags=['RBAC - Roles'],
        summary='List tenant roles',
        description='''
List all roles of the current tenant with their permission documents.

**Required permission:** `settings.read`
        ''',
        parameters=[
            OpenApiParameter('type', OpenApiTypes.STR, description='Filter by role type: system or custom'),
        ],
        responses={200: RoleSerializer(many=True)},
    ),
    post=extend_schema(
        tags=['RBAC - Roles'],
        summary='Create or overwrite a role',
        description='''
Create a role, or replace the description and permission document of the
role with the same name.

**Required permission:** `settings.update`
        ''',
        request=RoleUpsertSerializer,
        responses={200: RoleSerializer, 400: OpenApiTypes.OBJECT, 403: OpenApiTypes.OBJECT},
        examples=[
            OpenApiExample(
                'Upsert Request',
                value={
                    'name': 'Field Agent',
                    'description': 'Own leads only',
                    'permissions': {'leads': {'create': 'all', 'read': 'own', 'update': 'own'}},
                },
                request_only=True
            )
        ]
    )
)
class RoleListView(APIView):
    """
    GET  /v1/roles
    POST /v1/roles
    """

    permission_classes = [HasModulePermission]

    @requires_permission('settings', 'read')
    def get(self, request):
        roles = RoleRegistry.list_roles(request.tenant)

        role_type = request.query_params.get('type')
        if role_type == 'system':
            roles = [role for role in roles if role.is_system]
        elif role_type == 'custom':
            roles = [role for role in roles if not role.is_system]

        serializer = RoleSerializer(roles, many=True)
        return Response({
            'count': len(roles),
            'roles': serializer.data,
        })

    @requires_permission('settings', 'update')
    def post(self, request):
        serializer = RoleUpsertSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        role = RoleRegistry.upsert_role(
            request.tenant,
            serializer.validated_data['name'],
            serializer.validated_data['permissions'],
            description=serializer.validated_data.get('description'),
            actor=request.user,
            request=request,
        )
        return Response(RoleSerializer(role).data, status=status.HTTP_200_OK)


@extend_schema_view(
    get=extend_schema(
        tags=['RBAC - Roles'],
        summary='Get role details',
        responses={200: RoleSerializer, 404: OpenApiTypes.OBJECT},
    )
)
@requires_permission('settings', 'read')
class RoleDetailView(APIView):
    """
    GET /v1/roles/{name}

    Required permission: settings.read
    """

    permission_classes = [HasModulePermission]

    def get(self, request, name):
        role = RoleRegistry.get_role(request.tenant, name)
        return Response(RoleSerializer(role).data)


@extend_schema_view(
    get=extend_schema(
        tags=['RBAC - Assignments'],
        summary='List role assignments',
        parameters=[
            OpenApiParameter('include_inactive', OpenApiTypes.BOOL, description='Include revoked assignments'),
        ],
        responses={200: TenantUserRoleSerializer(many=True)},
    ),
    post=extend_schema(
        tags=['RBAC - Assignments'],
        summary='Assign a role',
        description='''
Bind a user to a role in the current tenant. Idempotent: repeating the same
assignment returns the existing binding with 200. A user who already holds a
different active role gets 409; change it with the role endpoint instead.

**Required permission:** `settings.update`
        ''',
        request=AssignRoleSerializer,
        responses={
            200: TenantUserRoleSerializer,
            201: TenantUserRoleSerializer,
            404: OpenApiTypes.OBJECT,
            409: OpenApiTypes.OBJECT,
        },
    )
)
@requires_permission('settings', 'update')
class AssignmentListView(APIView):
    """
    GET  /v1/assignments
    POST /v1/assignments

    Required permission: settings.update (listing included)
    """

    permission_classes = [HasModulePermission]

    def get(self, request):
        include_inactive = request.query_params.get('include_inactive', '').lower() == 'true'
        assignments = AssignmentStore.list_assignments(request.tenant, include_inactive=include_inactive)
        serializer = TenantUserRoleSerializer(assignments, many=True)
        return Response({
            'count': len(assignments),
            'assignments': serializer.data,
        })

    def post(self, request):
        serializer = AssignRoleSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        user = User.objects.get(id=serializer.validated_data['user_id'])
        if serializer.validated_data.get('role_id'):
            role = RoleRegistry.get_role_by_id(request.tenant, serializer.validated_data['role_id'])
        else:
            role = RoleRegistry.get_role(request.tenant, serializer.validated_data['role'])

        assignment, created = AssignmentStore.ensure_assigned(
            user, request.tenant, role, actor=request.user, request=request
        )
        return Response(
            TenantUserRoleSerializer(assignment).data,
            status=status.HTTP_201_CREATED if created else status.HTTP_200_OK,
        )


@requires_permission('settings', 'update')
class AssignmentDeactivateView(APIView):
    """
    POST /v1/assignments/{assignment_id}/deactivate

    Revokes the binding; the row is kept as inactive history.
    """

    permission_classes = [HasModulePermission]

    @extend_schema(
        tags=['RBAC - Assignments'],
        summary='Revoke an assignment',
        responses={200: TenantUserRoleSerializer, 404: OpenApiTypes.OBJECT},
    )
    def post(self, request, assignment_id):
        assignment = AssignmentStore.deactivate(
            assignment_id, tenant=request.tenant, actor=request.user, request=request
        )
        return Response(TenantUserRoleSerializer(assignment).data)


@requires_permission('settings', 'update')
class AssignmentRoleView(APIView):
    """
    PATCH /v1/assignments/{assignment_id}/role
    """

    permission_classes = [HasModulePermission]

    @extend_schema(
        tags=['RBAC - Assignments'],
        summary='Change the assigned role',
        request=ChangeRoleSerializer,
        responses={200: TenantUserRoleSerializer, 404: OpenApiTypes.OBJECT},
    )
    def patch(self, request, assignment_id):
        serializer = ChangeRoleSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        assignment = AssignmentStore.set_role(
            assignment_id,
            serializer.validated_data['role_id'],
            tenant=request.tenant,
            actor=request.user,
            request=request,
        )
        return Response(TenantUserRoleSerializer(assignment).data)


@requires_permission('settings', 'update')
class AssignmentOverrideView(APIView):
    """
    PUT /v1/assignments/{assignment_id}/override

    Modules present in the override replace the role's grants for that
    module wholesale; null removes the override.
    """

    permission_classes = [HasModulePermission]

    @extend_schema(
        tags=['RBAC - Assignments'],
        summary='Set the per-user override',
        request=OverrideSerializer,
        responses={200: TenantUserRoleSerializer, 400: OpenApiTypes.OBJECT, 404: OpenApiTypes.OBJECT},
    )
    def put(self, request, assignment_id):
        serializer = OverrideSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        assignment = AssignmentStore.set_override(
            assignment_id,
            serializer.validated_data['permissions'],
            tenant=request.tenant,
            actor=request.user,
            request=request,
        )
        return Response(TenantUserRoleSerializer(assignment).data)


@requires_permission('settings', 'update')
class AssignmentFullAccessView(APIView):
    """
    PUT /v1/assignments/{assignment_id}/full-access
    """

    permission_classes = [HasModulePermission]

    @extend_schema(
        tags=['RBAC - Assignments'],
        summary='Set or clear unrestricted access',
        request=FullAccessSerializer,
        responses={200: TenantUserRoleSerializer, 404: OpenApiTypes.OBJECT},
    )
    def put(self, request, assignment_id):
        serializer = FullAccessSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        assignment = AssignmentStore.set_unrestricted(
            assignment_id,
            serializer.validated_data['has_all_access'],
            tenant=request.tenant,
            actor=request.user,
            request=request,
        )
        return Response(TenantUserRoleSerializer(assignment).data)


@requires_permission('settings', 'read')
class AuditLogListView(APIView):
    """
    GET /v1/audit-logs

    List audit logs for the tenant, filterable by action, target_type and user.

    Required permission: settings.read
    """

    permission_classes = [HasModulePermission]
    pagination_class = StandardResultsSetPagination

    @extend_schema(
        tags=['RBAC - Audit'],
        summary='List audit logs',
        parameters=[
            OpenApiParameter('action', OpenApiTypes.STR),
            OpenApiParameter('target_type', OpenApiTypes.STR),
            OpenApiParameter('user_id', OpenApiTypes.UUID),
        ],
        responses={200: AuditLogSerializer(many=True)},
    )
    def get(self, request):
        logs = AuditLog.objects.for_tenant(request.tenant).select_related('user')

        action = request.query_params.get('action')
        if action:
            logs = logs.filter(action=action)

        target_type = request.query_params.get('target_type')
        if target_type:
            logs = logs.filter(target_type=target_type)

        user_id = request.query_params.get('user_id')
        if user_id:
            try:
                logs = logs.filter(user_id=uuid.UUID(user_id))
            except ValueError:
                raise ValidationError({'user_id': ['Must be a valid UUID.']})

        paginator = self.pagination_class()
        page = paginator.paginate_queryset(logs, request)

        serializer = AuditLogSerializer(page, many=True)
        return paginator.get_paginated_response(serializer.data)
