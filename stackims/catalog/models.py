from django.db import models
from django.utils import timezone
from decimal import Decimal


class Category(models.Model):
    """Product categories"""
    name = models.CharField(max_length=200, db_index=True)
    description = models.TextField(blank=True)
    is_active = models.BooleanField(default=True)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    def __str__(self):
        return self.name

    class Meta:
        db_table = 'categories'
        verbose_name_plural = 'categories'
        ordering = ['name']


class Product(models.Model):
    """Product master with on-hand quantity"""
    name = models.CharField(max_length=200, db_index=True)
    sku = models.CharField(max_length=100, unique=True, blank=True, null=True, db_index=True)
    description = models.TextField(blank=True)
    category = models.ForeignKey(Category, on_delete=models.SET_NULL, null=True, blank=True, related_name='products')
    vendor = models.ForeignKey('parties.Vendor', on_delete=models.SET_NULL, null=True, blank=True, related_name='products')
    price = models.DecimalField(max_digits=10, decimal_places=2, default=Decimal('0.00'))
    quantity = models.IntegerField(default=0, db_index=True)
    minimum_order_quantity = models.IntegerField(default=1)
    lead_time = models.IntegerField(null=True, blank=True, help_text='Vendor lead time in days')
    unit_of_measure = models.CharField(max_length=20, default='EACH')
    location = models.CharField(max_length=100, blank=True)
    barcode = models.CharField(max_length=100, blank=True)
    supplier_product_code = models.CharField(max_length=100, blank=True)
    expiration_date = models.DateTimeField(null=True, blank=True, db_index=True)
    last_restock_date = models.DateTimeField(null=True, blank=True)
    discontinued = models.BooleanField(default=False)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    def __str__(self):
        return f"{self.name} ({self.sku or 'NO-SKU'})"

    def get_stock_value(self):
        """Value of the on-hand quantity at list price"""
        return self.price * self.quantity

    class Meta:
        db_table = 'products'


class ProductUsage(models.Model):
    """Daily usage records for a product"""
    product = models.ForeignKey(Product, on_delete=models.CASCADE, related_name='usage_history')
    quantity = models.IntegerField()
    date = models.DateTimeField(default=timezone.now, db_index=True)

    class Meta:
        db_table = 'product_usage_history'
        ordering = ['-date']
