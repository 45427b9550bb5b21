"""
RBAC (Role-Based Access Control) application.

Provides multi-tenant access control with:
- Global user identity and JWT login
- Per-tenant roles granting a scope (all, own, ownDeals) per module and action
- One active role assignment per user and tenant, with per-user overrides
- Storage-tier enforcement through scoped managers and PostgreSQL RLS policies
- Audit logging of role and assignment changes
"""
