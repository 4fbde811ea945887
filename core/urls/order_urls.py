"""Order API: customer placement and reads, pricing, restaurant transitions, admin listing."""
from django.urls import path
from core.views.order_views import (
    place_order,
    customer_order_list,
    customer_order_detail,
    delivery_fee_estimate,
    service_fee_list,
    restaurant_order_list,
    update_order_status,
    verify_pickup,
    admin_order_list,
)

urlpatterns = [
    path('', customer_order_list),
    path('place/', place_order),
    path('<int:pk>/', customer_order_detail),
    path('delivery-fee/', delivery_fee_estimate),
    path('service-fees/', service_fee_list),
    path('restaurant/', restaurant_order_list),
    path('<int:pk>/status/', update_order_status),
    path('<int:pk>/pickup/', verify_pickup),
    path('admin/', admin_order_list),
]
