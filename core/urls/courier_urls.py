"""Courier API URL configuration. All routes require a courier token."""
from django.urls import path
from core.views.courier_views import (
    available_order_list,
    available_order_count,
    accept_order,
    my_order_list,
    delivery_history,
    verify_delivery,
)

urlpatterns = [
    path('orders/available/', available_order_list),
    path('orders/available/count/', available_order_count),
    path('orders/mine/', my_order_list),
    path('orders/history/', delivery_history),
    path('orders/<int:pk>/accept/', accept_order),
    path('orders/<int:pk>/deliver/', verify_delivery),
]
