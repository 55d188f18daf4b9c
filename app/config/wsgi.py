"""
WSGI entry point for the care messaging service.

Only the HTTP surface is available through WSGI. WebSocket subscriptions
need the ASGI application in config/asgi.py.

For more information on this file, see:
https://docs.djangoproject.com/en/5.2/howto/deployment/wsgi/
"""

import os

from django.core.wsgi import get_wsgi_application

os.environ.setdefault("DJANGO_SETTINGS_MODULE", "config.settings")

application = get_wsgi_application()
