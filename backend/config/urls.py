"""
URL configuration for the inventory backend.

Every API app is mounted under ``/api/v1/``.
"""
from django.contrib import admin
from django.urls import path, include

admin.site.site_header = "Inventory Admin Panel"
admin.site.site_title = "Inventory Admin Portal"
admin.site.index_title = "Inventory administration"

urlpatterns = [
    path('admin/', admin.site.urls),
    path('api/v1/', include('backend.core.urls')),
    path('api/v1/', include('backend.catalog.urls')),
    path('api/v1/', include('backend.orders.urls')),
    path('api/v1/', include('backend.reports.urls')),
]
