# URL packages - include order_urls, courier_urls, etc.
from django.urls import path, include

urlpatterns = [
    path('orders/', include('core.urls.order_urls')),
    path('courier/', include('core.urls.courier_urls')),
    path('balance/', include('core.urls.balance_urls')),
    path('webhooks/', include('core.urls.webhook_urls')),
]
