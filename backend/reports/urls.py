from django.urls import path
from . import views

urlpatterns = [
    path('reports/low-stock/', views.low_stock_report, name='low-stock-report'),
    path('reports/low-stock-count/', views.low_stock_count, name='low-stock-count'),
    path('reports/low-stock/alert/<int:product_id>/', views.send_low_stock_alert, name='low-stock-alert'),
    path('reports/send-all-low-stock-alerts/', views.send_all_low_stock_alerts, name='send-all-low-stock-alerts'),
]
