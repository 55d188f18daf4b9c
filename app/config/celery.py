"""
Celery application for the care messaging service.

Background work run here:
- Reconciling attachments whose uploads never completed
- Expiring timed thread mutes
- Marking users offline when their heartbeat goes stale

The periodic schedule lives in settings.CELERY_BEAT_SCHEDULE. Redis is both
the broker and the result backend. Tasks are auto-discovered from installed
apps (see chat/tasks.py).

Usage:
    celery -A config worker -l info
    celery -A config beat -l info

For more information, see:
https://docs.celeryq.dev/en/stable/django/first-steps-with-django.html
"""

import os

from celery import Celery

# Set the default Django settings module for the Celery worker
os.environ.setdefault("DJANGO_SETTINGS_MODULE", "config.settings")

app = Celery("config")

# All Celery settings are prefixed with CELERY_ in settings.py
app.config_from_object("django.conf:settings", namespace="CELERY")

app.autodiscover_tasks()
