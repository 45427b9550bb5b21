"""
Django admin configuration for CRM records.

Admin requests carry no access context, so the scoped managers are unfiltered,
and TenantContextMiddleware switches the row-level security bypass on for
them. The admin is for superusers only.
"""
from django.contrib import admin
from .models import (
    Customer, Lead, Activity, Product, EventType,
    Quotation, QuotationTemplate, Payment,
)


@admin.register(Lead)
class LeadAdmin(admin.ModelAdmin):
    list_display = ['title', 'tenant', 'owner', 'assigned_to', 'stage', 'created_at']
    list_filter = ['stage', 'tenant']
    search_fields = ['title']
    raw_id_fields = ['owner', 'assigned_to', 'customer']


admin.site.register(Customer)
admin.site.register(Activity)
admin.site.register(Product)
admin.site.register(EventType)
admin.site.register(Quotation)
admin.site.register(QuotationTemplate)
admin.site.register(Payment)
