"""
Storage-tier enforcement.

Record models inherit ScopedModel. While an access context is active:

- every read through the default managers is filtered by the read predicate
- save() checks the row being inserted, or the stored row being updated
- delete() checks the stored row against the delete predicate, and every row
  the deletion cascades to or nulls a foreign key on
- forward foreign keys between records (activity.lead) load through the
  read-filtered manager
- queryset update() and delete() only touch rows the matching predicate admits

The predicates come from apps.rbac.policy, the same rules can() evaluates,
so the storage tier never admits a row the request tier would refuse.
"""
from dataclasses import dataclass
from typing import Optional, Tuple

from django.db import models, router
from django.db.models import Q
from django.db.models.deletion import Collector
from django.db.models.fields.related_descriptors import ForwardManyToOneDescriptor

from apps.core.exceptions import Forbidden
from apps.core.logging import SecurityLogger
from apps.core.models import TimestampedModel
from apps.rbac.context import get_access_context, system_context
from apps.rbac.policy import ScopeRule, TablePolicy, record_value, rule_for, same_identity
from apps.rbac.scopes import Action, PermissionSet, Scope


@dataclass(frozen=True)
class RowPredicate:
    """
    A tenant-bound disjunction of scope rules for one acting user.

    tenant_id None leaves the tenant unconstrained, which only pure callers
    use; the storage guard always binds the tenant.
    """
    rules: Tuple[ScopeRule, ...]
    user_id: Optional[str] = None
    tenant_id: Optional[str] = None

    def matches(self, record) -> bool:
        if self.tenant_id is not None:
            if not same_identity(record_value(record, 'tenant_id'), self.tenant_id):
                return False
        return any(rule.matches(record, self.user_id) for rule in self.rules)

    def as_q(self) -> Q:
        condition = Q(pk__in=[])
        for rule in self.rules:
            condition |= rule.as_q(self.user_id)
        if self.tenant_id is not None:
            condition &= Q(tenant_id=self.tenant_id)
        return condition


def row_predicate(effective: PermissionSet, module, action, user_id=None, tenant_id=None) -> RowPredicate:
    """
    Row predicate for one (module, action).

    all -> true, own -> owner_id = user, ownDeals -> assigned_to = user,
    denied -> false; always AND-ed with tenant_id = tenant when one is given.
    """
    scope = effective.lookup(module, action) if effective is not None else Scope.DENIED
    return RowPredicate(
        rules=(rule_for(scope),),
        user_id=str(user_id) if user_id is not None else None,
        tenant_id=str(tenant_id) if tenant_id is not None else None,
    )


def table_predicate(effective: PermissionSet, policy: TablePolicy, action, user_id=None, tenant_id=None) -> RowPredicate:
    """Row predicate for a table: the OR of every module the policy lets grant the action."""
    rules = tuple(
        rule_for(effective.lookup(module, action) if effective is not None else Scope.DENIED)
        for module in policy.modules_for(action)
    )
    return RowPredicate(
        rules=rules,
        user_id=str(user_id) if user_id is not None else None,
        tenant_id=str(tenant_id) if tenant_id is not None else None,
    )


def current_predicate(model, action) -> Optional[RowPredicate]:
    """Predicate for the active access context, or None for system operations."""
    ctx = get_access_context()
    if ctx is None:
        return None
    return table_predicate(ctx.permissions, model.access_policy, action, ctx.user_id, ctx.tenant_id)


class ScopedQuerySet(models.QuerySet):
    """QuerySet whose bulk writes are limited to rows the acting user may touch."""

    def restrict(self, action):
        predicate = current_predicate(self.model, action)
        if predicate is None:
            return self
        return self.filter(predicate.as_q())

    def update(self, **kwargs):
        ctx = get_access_context()
        if ctx is not None:
            for name in ('tenant', 'tenant_id'):
                if name not in kwargs:
                    continue
                target = getattr(kwargs[name], 'pk', kwargs[name])
                if not same_identity(target, ctx.tenant_id):
                    SecurityLogger.log_forbidden_write(
                        user_id=ctx.user_id,
                        tenant_id=ctx.tenant_id,
                        table=self.model.access_policy.table,
                        action=Action.UPDATE.value,
                    )
                    raise Forbidden(
                        "Records cannot be moved to another tenant",
                        details={'table': self.model.access_policy.table, 'action': Action.UPDATE.value}
                    )
        return super(ScopedQuerySet, self.restrict(Action.UPDATE)).update(**kwargs)

    def delete(self):
        restricted = self.restrict(Action.DELETE)
        if get_access_context() is None:
            return super(ScopedQuerySet, restricted).delete()
        using = self._db or router.db_for_write(self.model)
        return delete_collected(collect_for_delete(list(restricted), using, origin=self))

    def bulk_create(self, objs, *args, **kwargs):
        objs = list(objs)
        for obj in objs:
            obj.guard_write(Action.CREATE)
        return super().bulk_create(objs, *args, **kwargs)


class ScopedManager(models.Manager.from_queryset(ScopedQuerySet)):
    """Excludes rows the acting user may not read."""

    def get_queryset(self):
        return super().get_queryset().restrict(Action.READ)


class ScopedForwardDescriptor(ForwardManyToOneDescriptor):
    """activity.lead loads through Lead.objects, so a hidden lead stays hidden."""

    def get_queryset(self, **hints):
        return self.field.remote_field.model._default_manager.db_manager(hints=hints).all()


class ScopedForeignKey(models.ForeignKey):
    """Foreign key between guarded records; forward access obeys the read predicate."""

    forward_related_accessor_class = ScopedForwardDescriptor


def collect_for_delete(objs, using, keep_parents=False, origin=None) -> Collector:
    """
    Collect objs with every row their deletion removes or rewrites, and guard
    all of them against the acting user's permissions.

    Cascaded rows need DELETE, rows whose foreign key is set to NULL need
    UPDATE. The first refusal raises Forbidden before anything is written.
    """
    collector = Collector(using=using, origin=origin)
    with system_context():
        collector.collect(objs, keep_parents=keep_parents)

    if get_access_context() is None:
        return collector

    for model, instances in collector.data.items():
        if issubclass(model, ScopedModel):
            for instance in instances:
                instance.guard_write(Action.DELETE)

    for queryset in collector.fast_deletes:
        if issubclass(queryset.model, ScopedModel):
            for instance in queryset:
                instance.guard_write(Action.DELETE)

    for (field, _value), batches in collector.field_updates.items():
        if not issubclass(field.model, ScopedModel):
            continue
        for batch in batches:
            for instance in batch:
                instance.guard_write(Action.UPDATE)

    return collector


def delete_collected(collector: Collector):
    # Every collected row passed the guard; the cascade itself runs unfiltered
    with system_context():
        return collector.delete()


class ScopedModel(TimestampedModel):
    """
    Abstract base for tenant-owned business records guarded by RBAC.

    Subclasses set access_policy and define whichever ownership columns
    (owner, assigned_to) their modules' scopes compare against. Records are
    deleted with a real DELETE so the database delete policy sees the same
    operation the guard checked. Links between records use ScopedForeignKey.
    """
    tenant = models.ForeignKey(
        'tenants.Tenant',
        on_delete=models.CASCADE,
        related_name='+',
        db_index=True,
        help_text="Tenant this record belongs to"
    )

    access_policy: TablePolicy = None

    objects = ScopedManager()

    class Meta(TimestampedModel.Meta):
        abstract = True

    def _stored_row(self):
        columns = ['tenant_id', *self.access_policy.columns()]
        return (
            type(self)._base_manager
            .using(self._state.db or 'default')
            .filter(pk=self.pk)
            .values(*columns)
            .first()
        )

    def guard_write(self, action: Action):
        """
        Reject a write the acting user's permissions do not admit.

        Inserts are checked against the new row; updates and deletes against
        the row as currently stored. An update must also leave the row in
        the acting tenant.

        Raises:
            Forbidden: If the predicate fails
        """
        ctx = get_access_context()
        if ctx is None:
            return

        if action is Action.CREATE and self.tenant_id is None:
            self.tenant_id = ctx.tenant_id

        row = self if action is Action.CREATE else self._stored_row()
        predicate = table_predicate(ctx.permissions, self.access_policy, action, ctx.user_id, ctx.tenant_id)

        allowed = row is not None and predicate.matches(row)
        if allowed and action is Action.UPDATE:
            allowed = same_identity(self.tenant_id, ctx.tenant_id)

        if not allowed:
            SecurityLogger.log_forbidden_write(
                user_id=ctx.user_id,
                tenant_id=ctx.tenant_id,
                table=self.access_policy.table,
                action=action.value,
                record_id=self.pk,
            )
            raise Forbidden(
                f"Not allowed to {action.value} this {self._meta.verbose_name}",
                details={'table': self.access_policy.table, 'action': action.value}
            )

    def save(self, *args, **kwargs):
        self.guard_write(Action.CREATE if self._state.adding else Action.UPDATE)
        super().save(*args, **kwargs)

    def delete(self, using=None, keep_parents=False):
        if self.pk is None:
            raise ValueError(
                f"{self._meta.object_name} object can't be deleted because its "
                f"{self._meta.pk.attname} attribute is set to None."
            )
        using = using or router.db_for_write(self.__class__, instance=self)
        return delete_collected(collect_for_delete([self], using, keep_parents=keep_parents, origin=self))
