from django.urls import path
from . import views

urlpatterns = [
    path('insights/', views.insight_list_create, name='insight-list'),
    path('insights/context/', views.inventory_context, name='insight-inventory-context'),
    path('insights/external-context/', views.external_context, name='insight-external-context'),
    path('insights/prompt/', views.ai_prompt, name='insight-prompt'),
    path('insights/cache/stats/', views.cache_stats, name='insight-cache-stats'),
    path('insights/cache/invalidate/', views.cache_invalidate, name='insight-cache-invalidate'),
    path('insights/forecasts/generate/', views.forecast_generate, name='insight-forecast-generate'),
]
