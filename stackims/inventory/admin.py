from django.contrib import admin
from .models import InventoryMovement


@admin.register(InventoryMovement)
class InventoryMovementAdmin(admin.ModelAdmin):
    list_display = ['product', 'type', 'quantity', 'reason', 'performed_by', 'created_at']
    list_filter = ['type', 'created_at']
    search_fields = ['product__name', 'product__sku', 'reference']
    ordering = ['-created_at']
    raw_id_fields = ['product', 'performed_by']
