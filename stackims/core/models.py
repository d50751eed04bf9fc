from django.contrib.auth.models import AbstractUser
from django.db import models


class User(AbstractUser):
    """Extended user model with a role used for AI capability scoping"""
    ROLE_CHOICES = [
        ('SUPER_ADMIN', 'Super Admin'),
        ('ADMIN', 'Admin'),
        ('MODERATOR', 'Moderator'),
        ('VENDOR', 'Vendor'),
        ('USER', 'User'),
    ]

    phone = models.CharField(max_length=20, blank=True, null=True)
    role = models.CharField(max_length=20, choices=ROLE_CHOICES, default='USER', db_index=True)
    is_active = models.BooleanField(default=True)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        db_table = 'users'


class Setting(models.Model):
    """System settings, grouped by category (inventory, email, backup, ...)"""
    key = models.CharField(max_length=100, unique=True)
    value = models.TextField()
    category = models.CharField(max_length=50, default='general', db_index=True)
    description = models.TextField(blank=True)
    updated_at = models.DateTimeField(auto_now=True)

    def __str__(self):
        return self.key

    class Meta:
        db_table = 'settings'


class ActivityLog(models.Model):
    """Activity log for user operations"""
    ACTION_CHOICES = [
        ('USER_LOGIN', 'User Login'),
        ('PRODUCT_CREATED', 'Product Created'),
        ('PRODUCT_UPDATED', 'Product Updated'),
        ('INVENTORY_ADJUSTMENT', 'Inventory Adjustment'),
        ('ORDER_CREATED', 'Order Created'),
        ('ORDER_APPROVED', 'Order Approved'),
        ('REPORT_GENERATED', 'Report Generated'),
        ('INSIGHT_SAVED', 'Insight Saved'),
        ('FORECAST_GENERATED', 'Forecast Generated'),
        ('CACHE_INVALIDATED', 'Cache Invalidated'),
    ]

    user = models.ForeignKey(User, on_delete=models.SET_NULL, null=True, related_name='activity_logs')
    action = models.CharField(max_length=50, choices=ACTION_CHOICES)
    model_name = models.CharField(max_length=100, blank=True)
    object_id = models.CharField(max_length=100, blank=True)
    object_name = models.CharField(max_length=255, blank=True, null=True)
    changes = models.JSONField(default=dict, blank=True)
    ip_address = models.GenericIPAddressField(null=True, blank=True)
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        db_table = 'activity_logs'
        ordering = ['-created_at']
        indexes = [
            models.Index(fields=['-created_at'], name='idx_activity_created'),
            models.Index(fields=['action'], name='idx_activity_action'),
        ]
