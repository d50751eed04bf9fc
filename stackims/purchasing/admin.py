from django.contrib import admin
from .models import PurchaseOrder, PurchaseOrderItem


class PurchaseOrderItemInline(admin.TabularInline):
    model = PurchaseOrderItem
    extra = 0
    raw_id_fields = ['product']


@admin.register(PurchaseOrder)
class PurchaseOrderAdmin(admin.ModelAdmin):
    list_display = ['order_number', 'vendor', 'status', 'total_amount', 'expected_date', 'received_at', 'created_at']
    list_filter = ['status', 'created_at']
    search_fields = ['order_number', 'vendor__name']
    ordering = ['-created_at']
    inlines = [PurchaseOrderItemInline]
