from django.urls import path
from .views import (
    order_place, order_list, order_detail,
    orders_today_count, revenue_today, pending_orders_count,
)

urlpatterns = [
    path('orders/', order_list, name='order-list'),
    path('orders/place/', order_place, name='order-place'),
    path('orders/today-count/', orders_today_count, name='orders-today-count'),
    path('orders/today-revenue/', revenue_today, name='orders-today-revenue'),
    path('orders/pending-count/', pending_orders_count, name='orders-pending-count'),
    path('orders/<int:pk>/', order_detail, name='order-detail'),
]
