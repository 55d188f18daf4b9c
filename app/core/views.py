"""
Core views providing infrastructure endpoints.
"""

import logging

from django.core.cache import cache
from django.db import DatabaseError, connection
from django.http import JsonResponse

logger = logging.getLogger(__name__)


def health_check(request):
    """
    Health check endpoint for load balancers and orchestration.

    Returns:
        200 with {"status": "healthy", ...} when the database answers,
        503 otherwise. Cache failures are reported but do not fail the
        check: presence and directory lookups degrade gracefully without it.
    """
    health_status = {
        "status": "healthy",
        "database": "unknown",
        "cache": "unknown",
    }
    is_healthy = True

    try:
        with connection.cursor() as cursor:
            cursor.execute("SELECT 1")
            cursor.fetchone()
        health_status["database"] = "connected"
    except DatabaseError:
        logger.exception("Health check database probe failed")
        health_status["database"] = "disconnected"
        health_status["status"] = "unhealthy"
        is_healthy = False

    cache.set("health_check", "ok", timeout=1)
    if cache.get("health_check") == "ok":
        health_status["cache"] = "connected"
    else:
        # django-redis runs with IGNORE_EXCEPTIONS, so a dead Redis reads as a miss
        health_status["cache"] = "disconnected"

    return JsonResponse(health_status, status=200 if is_healthy else 503)
