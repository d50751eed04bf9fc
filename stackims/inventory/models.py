from django.db import models
from django.utils import timezone
from stackims.catalog.models import Product
from stackims.core.models import User


class InventoryMovement(models.Model):
    """Signed stock movement for a product (positive in, negative out)"""
    TYPE_CHOICES = [
        ('PURCHASE', 'Purchase'),
        ('SALE', 'Sale'),
        ('ADJUSTMENT', 'Adjustment'),
        ('RETURN', 'Return'),
        ('LOSS', 'Loss'),
        ('TRANSFER', 'Transfer'),
    ]

    product = models.ForeignKey(Product, on_delete=models.CASCADE, related_name='inventory_movements')
    type = models.CharField(max_length=20, choices=TYPE_CHOICES, db_index=True)
    quantity = models.IntegerField()
    reason = models.TextField(null=True, blank=True)
    reference = models.CharField(max_length=100, blank=True)
    performed_by = models.ForeignKey(User, on_delete=models.SET_NULL, null=True, blank=True, related_name='inventory_movements')
    created_at = models.DateTimeField(default=timezone.now, db_index=True)

    def __str__(self):
        return f"{self.type} {self.quantity:+d} {self.product.name}"

    def get_value(self):
        """Absolute value of the movement at the product's list price"""
        return abs(self.quantity) * self.product.price

    class Meta:
        db_table = 'inventory_movements'
        ordering = ['-created_at']
        indexes = [
            models.Index(fields=['product', '-created_at'], name='idx_movement_product_created'),
        ]
