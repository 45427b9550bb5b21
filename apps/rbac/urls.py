"""
RBAC API URLs.

Provides endpoints for:
- The caller's effective permissions and permission checks
- Role management (list, upsert, detail)
- Role assignments (ensure-assign, change role, override, full access, deactivate)
- Audit log viewing
"""
from django.urls import path
from apps.rbac.views import (
    MyPermissionsView,
    PermissionCheckView,
    RoleListView,
    RoleDetailView,
    AssignmentListView,
    AssignmentDeactivateView,
    AssignmentRoleView,
    AssignmentOverrideView,
    AssignmentFullAccessView,
    AuditLogListView,
)

app_name = 'rbac'

urlpatterns = [
    # Caller's own permissions
    path('me/permissions', MyPermissionsView.as_view(), name='my-permissions'),
    path('check', PermissionCheckView.as_view(), name='permission-check'),

    # Role endpoints
    path('roles', RoleListView.as_view(), name='role-list'),
    path('roles/<str:name>', RoleDetailView.as_view(), name='role-detail'),

    # Assignment endpoints
    path('assignments', AssignmentListView.as_view(), name='assignment-list'),
    path('assignments/<uuid:assignment_id>/role', AssignmentRoleView.as_view(), name='assignment-role'),
    path('assignments/<uuid:assignment_id>/override', AssignmentOverrideView.as_view(), name='assignment-override'),
    path('assignments/<uuid:assignment_id>/full-access', AssignmentFullAccessView.as_view(), name='assignment-full-access'),
    path('assignments/<uuid:assignment_id>/deactivate', AssignmentDeactivateView.as_view(), name='assignment-deactivate'),

    # Audit log endpoint
    path('audit-logs', AuditLogListView.as_view(), name='audit-log-list'),
]
