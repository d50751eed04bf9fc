from django.contrib import admin
from .models import Category, Product, ProductUsage


@admin.register(Category)
class CategoryAdmin(admin.ModelAdmin):
    list_display = ['name', 'is_active', 'created_at']
    list_filter = ['is_active', 'created_at']
    search_fields = ['name', 'description']
    ordering = ['name']


class ProductUsageInline(admin.TabularInline):
    model = ProductUsage
    extra = 0
    ordering = ['-date']


@admin.register(Product)
class ProductAdmin(admin.ModelAdmin):
    list_display = ['name', 'sku', 'category', 'vendor', 'price', 'quantity', 'expiration_date', 'discontinued']
    list_filter = ['category', 'vendor', 'discontinued', 'created_at']
    search_fields = ['name', 'sku', 'barcode', 'supplier_product_code']
    ordering = ['name']
    readonly_fields = ['created_at', 'updated_at']
    inlines = [ProductUsageInline]
