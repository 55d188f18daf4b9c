"""
ASGI entry point for the care messaging service.

Serves two protocols from one process:
    http      - Django (the messaging GET/POST surface, admin, docs)
    websocket - Channels, one ThreadConsumer per connected thread

WebSocket connections pass the origin check against ALLOWED_HOSTS, then
JWTAuthMiddleware, which resolves ?token= or the "jwt" subprotocol into
scope["user"].

Run with:
    uvicorn config.asgi:application

For more information on this file, see:
https://docs.djangoproject.com/en/5.2/howto/deployment/asgi/
"""

import os

from django.core.asgi import get_asgi_application

os.environ.setdefault("DJANGO_SETTINGS_MODULE", "config.settings")

# Settings and the app registry must be ready before consumers import models
django_asgi_app = get_asgi_application()

from channels.routing import ProtocolTypeRouter, URLRouter  # noqa: E402
from channels.security.websocket import AllowedHostsOriginValidator  # noqa: E402

from chat.middleware import JWTAuthMiddleware  # noqa: E402
from chat.routing import websocket_urlpatterns  # noqa: E402

application = ProtocolTypeRouter(
    {
        "http": django_asgi_app,
        "websocket": AllowedHostsOriginValidator(
            JWTAuthMiddleware(URLRouter(websocket_urlpatterns))
        ),
    }
)
