"""
ASGI config for the gebeta project.

HTTP goes to Django; websockets go to the real-time consumer, which does its
own token authentication.
"""

import os

os.environ.setdefault('DJANGO_SETTINGS_MODULE', 'gebeta.settings')

from django.core.asgi import get_asgi_application

django_asgi_app = get_asgi_application()

from channels.routing import ProtocolTypeRouter, URLRouter
from channels.security.websocket import AllowedHostsOriginValidator
from core.delivery.routing import websocket_urlpatterns

application = ProtocolTypeRouter({
    'http': django_asgi_app,
    'websocket': AllowedHostsOriginValidator(URLRouter(websocket_urlpatterns)),
})
