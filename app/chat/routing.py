"""
WebSocket URL routing for the messaging core.

URL Patterns:
    ws/threads/<thread_id>/ - Subscribe to a thread's real-time events

Authentication:
    The JWT access token is passed as ?token=<jwt> or as the
    "jwt, <token>" subprotocol. JWTAuthMiddleware validates it and attaches
    the user to the consumer's scope.
"""

from django.urls import path

from chat import consumers

websocket_urlpatterns = [
    path(
        "ws/threads/<uuid:thread_id>/",
        consumers.ThreadConsumer.as_asgi(),
    ),
]
