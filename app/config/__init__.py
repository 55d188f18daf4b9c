# Load the Celery app with Django so shared_task decorators in chat/tasks.py
# bind to it and beat picks up CELERY_BEAT_SCHEDULE.

from config.celery import app as celery_app

__all__ = ("celery_app",)
