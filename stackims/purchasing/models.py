from django.db import models
from django.utils import timezone
from decimal import Decimal
from stackims.catalog.models import Product
from stackims.parties.models import Vendor
from stackims.core.models import User


class PurchaseOrder(models.Model):
    """Purchase order placed with a vendor"""
    STATUS_CHOICES = [
        ('DRAFT', 'Draft'),
        ('PENDING_APPROVAL', 'Pending Approval'),
        ('APPROVED', 'Approved'),
        ('ORDERED', 'Ordered'),
        ('RECEIVED', 'Received'),
        ('CANCELLED', 'Cancelled'),
    ]

    order_number = models.CharField(max_length=100, unique=True, blank=True, null=True)
    vendor = models.ForeignKey(Vendor, on_delete=models.CASCADE, related_name='purchase_orders')
    status = models.CharField(max_length=20, choices=STATUS_CHOICES, default='DRAFT')
    total_amount = models.DecimalField(max_digits=12, decimal_places=2, default=Decimal('0.00'))
    expected_date = models.DateTimeField(null=True, blank=True)
    received_at = models.DateTimeField(null=True, blank=True)
    notes = models.TextField(blank=True)
    requested_by = models.ForeignKey(User, on_delete=models.SET_NULL, null=True, blank=True, related_name='purchase_orders')
    created_at = models.DateTimeField(default=timezone.now, db_index=True)
    updated_at = models.DateTimeField(auto_now=True)

    def __str__(self):
        return self.order_number or f"PO-{self.id}"

    def get_subtotal(self):
        """Calculate subtotal from all items"""
        return sum((item.get_line_total() for item in self.items.all()), Decimal('0.00'))

    def get_total(self):
        """Get total order amount"""
        return self.get_subtotal()

    def is_delivered_on_time(self):
        """True when the order was received no later than its expected date"""
        return (
            self.status == 'RECEIVED'
            and self.expected_date is not None
            and self.received_at is not None
            and self.received_at <= self.expected_date
        )

    def mark_received(self, when=None):
        self.status = 'RECEIVED'
        self.received_at = when or timezone.now()
        self.save(update_fields=['status', 'received_at', 'updated_at'])

    class Meta:
        db_table = 'purchase_orders'
        ordering = ['-created_at']
        indexes = [
            models.Index(fields=['status'], name='idx_po_status'),
            models.Index(fields=['vendor', 'status'], name='idx_po_vendor_status'),
        ]


class PurchaseOrderItem(models.Model):
    """Purchase order line items"""
    order = models.ForeignKey(PurchaseOrder, on_delete=models.CASCADE, related_name='items')
    product = models.ForeignKey(Product, on_delete=models.CASCADE, related_name='purchase_order_items')
    quantity = models.IntegerField()
    unit_price = models.DecimalField(max_digits=10, decimal_places=2)

    def get_line_total(self):
        """Calculate line total"""
        return self.quantity * self.unit_price

    class Meta:
        db_table = 'purchase_order_items'
        ordering = ['id']
