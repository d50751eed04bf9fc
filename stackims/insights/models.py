from django.db import models
from stackims.catalog.models import Product
from stackims.core.models import User


class AIInsight(models.Model):
    """Insight text generated for an entity and saved for later review"""
    ENTITY_TYPE_CHOICES = [
        ('PRODUCT', 'Product'),
        ('CATEGORY', 'Category'),
        ('VENDOR', 'Vendor'),
        ('SYSTEM', 'System'),
    ]
    INSIGHT_TYPE_CHOICES = [
        ('RECOMMENDATION', 'Recommendation'),
        ('TREND', 'Trend'),
        ('ALERT', 'Alert'),
        ('FORECAST', 'Forecast'),
    ]

    entity_type = models.CharField(max_length=20, choices=ENTITY_TYPE_CHOICES)
    entity_id = models.CharField(max_length=100)
    insight_type = models.CharField(max_length=20, choices=INSIGHT_TYPE_CHOICES)
    content = models.TextField()
    confidence = models.FloatField(default=0.85)
    applied = models.BooleanField(default=False)
    created_by = models.ForeignKey(User, on_delete=models.SET_NULL, null=True, blank=True, related_name='ai_insights')
    created_at = models.DateTimeField(auto_now_add=True)

    def __str__(self):
        return f"{self.insight_type} for {self.entity_type} {self.entity_id}"

    class Meta:
        db_table = 'ai_insights'
        ordering = ['-created_at']
        indexes = [
            models.Index(fields=['entity_type', 'entity_id'], name='idx_insight_entity'),
        ]


class ProductForecast(models.Model):
    """Forecasted stock-out date for a product"""
    product = models.ForeignKey(Product, on_delete=models.CASCADE, related_name='forecasts')
    forecast_date = models.DateTimeField(db_index=True)
    predicted_usage = models.FloatField(null=True, blank=True)
    horizon_days = models.IntegerField(default=30)
    confidence = models.FloatField(default=0)
    created_at = models.DateTimeField(auto_now_add=True)

    def __str__(self):
        return f"{self.product.name} @ {self.forecast_date:%Y-%m-%d} ({self.confidence:.0%})"

    class Meta:
        db_table = 'product_forecasts'
        ordering = ['-confidence']
