from django.contrib import admin
from .models import AIInsight, ProductForecast


@admin.register(AIInsight)
class AIInsightAdmin(admin.ModelAdmin):
    list_display = ['entity_type', 'entity_id', 'insight_type', 'confidence', 'applied', 'created_at']
    list_filter = ['entity_type', 'insight_type', 'applied', 'created_at']
    search_fields = ['content', 'entity_id']
    ordering = ['-created_at']


@admin.register(ProductForecast)
class ProductForecastAdmin(admin.ModelAdmin):
    list_display = ['product', 'forecast_date', 'predicted_usage', 'confidence', 'created_at']
    list_filter = ['forecast_date']
    search_fields = ['product__name', 'product__sku']
    ordering = ['forecast_date']
    raw_id_fields = ['product']
