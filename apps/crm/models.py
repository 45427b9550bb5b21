"""
Business records guarded by RBAC.

These models carry only the columns the access rules look at (tenant,
owner_id, assigned_to) plus enough descriptive data to be recognisable.
Every model declares its TablePolicy: which modules grant which action.
"""
from django.conf import settings
from django.db import models

from apps.rbac.context import get_access_context
from apps.rbac.enforcement import ScopedForeignKey, ScopedModel
from apps.rbac.policy import TablePolicy
from apps.rbac.scopes import Action, Module


class OwnedModel(ScopedModel):
    """
    A record that belongs to the user who created it.

    owner_id defaults to the acting user on insert, so "own" grants cover
    the records a user creates without the caller passing owner explicitly.
    """
    owner = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name='+',
        db_index=True,
        help_text="User who owns this record"
    )

    class Meta(ScopedModel.Meta):
        abstract = True

    def save(self, *args, **kwargs):
        if self._state.adding and self.owner_id is None:
            ctx = get_access_context()
            if ctx is not None:
                self.owner_id = ctx.user_id
        super().save(*args, **kwargs)


class Customer(OwnedModel):
    name = models.CharField(max_length=255)
    email = models.EmailField(blank=True)
    phone = models.CharField(max_length=50, blank=True)

    access_policy = TablePolicy.single('customers', Module.CUSTOMERS)

    class Meta(OwnedModel.Meta):
        db_table = 'customers'

    def __str__(self):
        return self.name


class Lead(OwnedModel):
    """
    A sales lead. The pipeline board is built on this table too: a lead's
    assignee reaches it through pipeline "ownDeals" grants.
    """

    STAGE_CHOICES = [
        ('new', 'New'),
        ('qualified', 'Qualified'),
        ('proposal', 'Proposal'),
        ('won', 'Won'),
        ('lost', 'Lost'),
    ]

    title = models.CharField(max_length=255)
    customer = ScopedForeignKey(
        Customer,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name='leads',
    )
    assigned_to = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name='+',
        db_column='assigned_to',
        db_index=True,
        help_text="Salesperson working the deal"
    )
    stage = models.CharField(max_length=20, choices=STAGE_CHOICES, default='new', db_index=True)
    value = models.DecimalField(max_digits=12, decimal_places=2, null=True, blank=True)

    access_policy = TablePolicy(
        table='leads',
        grants={
            Action.CREATE: (Module.LEADS,),
            Action.READ: (Module.LEADS, Module.PIPELINE),
            Action.UPDATE: (Module.LEADS, Module.PIPELINE),
            Action.DELETE: (Module.LEADS,),
        },
    )

    class Meta(OwnedModel.Meta):
        db_table = 'leads'

    def __str__(self):
        return self.title


class Activity(OwnedModel):
    KIND_CHOICES = [
        ('call', 'Call'),
        ('email', 'Email'),
        ('meeting', 'Meeting'),
        ('task', 'Task'),
    ]

    kind = models.CharField(max_length=20, choices=KIND_CHOICES, default='task')
    subject = models.CharField(max_length=255)
    lead = ScopedForeignKey(
        Lead,
        on_delete=models.CASCADE,
        null=True,
        blank=True,
        related_name='activities',
    )
    due_at = models.DateTimeField(null=True, blank=True)

    access_policy = TablePolicy.single('activities', Module.ACTIVITIES)

    class Meta(OwnedModel.Meta):
        db_table = 'activities'
        verbose_name_plural = 'activities'

    def __str__(self):
        return self.subject


class Product(ScopedModel):
    name = models.CharField(max_length=255)
    price = models.DecimalField(max_digits=12, decimal_places=2, default=0)
    is_active = models.BooleanField(default=True)

    access_policy = TablePolicy.single('products', Module.PRODUCTS)

    class Meta(ScopedModel.Meta):
        db_table = 'products'

    def __str__(self):
        return self.name


class EventType(ScopedModel):
    name = models.CharField(max_length=255)

    access_policy = TablePolicy.single('event_types', Module.EVENT_TYPES)

    class Meta(ScopedModel.Meta):
        db_table = 'event_types'

    def __str__(self):
        return self.name


class Quotation(OwnedModel):
    STATUS_CHOICES = [
        ('draft', 'Draft'),
        ('sent', 'Sent'),
        ('accepted', 'Accepted'),
        ('rejected', 'Rejected'),
    ]

    number = models.CharField(max_length=50)
    customer = ScopedForeignKey(
        Customer,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name='quotations',
    )
    status = models.CharField(max_length=20, choices=STATUS_CHOICES, default='draft')
    total = models.DecimalField(max_digits=12, decimal_places=2, default=0)

    access_policy = TablePolicy.single('quotations', Module.QUOTATIONS)

    class Meta(OwnedModel.Meta):
        db_table = 'quotations'

    def __str__(self):
        return self.number


class QuotationTemplate(OwnedModel):
    name = models.CharField(max_length=255)
    body = models.TextField(blank=True)

    access_policy = TablePolicy.single('quotation_templates', Module.TEMPLATES)

    class Meta(OwnedModel.Meta):
        db_table = 'quotation_templates'

    def __str__(self):
        return self.name


class Payment(ScopedModel):
    """Payment awaiting or past verification."""

    STATUS_CHOICES = [
        ('pending', 'Pending'),
        ('verified', 'Verified'),
        ('rejected', 'Rejected'),
    ]

    quotation = ScopedForeignKey(
        Quotation,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name='payments',
    )
    amount = models.DecimalField(max_digits=12, decimal_places=2)
    reference = models.CharField(max_length=100, blank=True)
    status = models.CharField(max_length=20, choices=STATUS_CHOICES, default='pending', db_index=True)

    access_policy = TablePolicy.single('payments', Module.PAYMENT_VERIFICATION)

    class Meta(ScopedModel.Meta):
        db_table = 'payments'

    def __str__(self):
        return f"{self.amount} ({self.status})"
