from django.urls import path

from core.delivery.consumers import RealtimeConsumer

websocket_urlpatterns = [
    path('ws/realtime/', RealtimeConsumer.as_asgi()),
]
