"""
URL configuration for the Stack IMS project.

All API routes live under /api/v1/; each app contributes its own urlpatterns.
"""
from django.contrib import admin
from django.urls import path, include

admin.site.site_header = "Stack IMS Admin Panel"
admin.site.site_title = "Stack IMS Admin Portal"
admin.site.index_title = "Welcome to the Stack Inventory Management Admin Portal"

urlpatterns = [
    path('admin/', admin.site.urls),
    path('api/v1/', include('stackims.core.urls')),
    path('api/v1/', include('stackims.insights.urls')),
]
