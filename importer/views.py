"""
Importer views.

Health check endpoint for monitoring and load balancer checks.
"""

from django.core.cache import cache
from django.db import connection
from django.http import JsonResponse

from importer.models import ImportedSite, SiteStatus


def get_cache_status() -> str:
    """
    Round-trip a key through the configured cache (Redis in production).

    Returns:
        "connected" or "error"
    """
    try:
        cache.set("importer:health_check", "ok", 5)
        return "connected" if cache.get("importer:health_check") == "ok" else "error"
    except Exception:
        return "error"


def get_celery_worker_count():
    """
    Get the count of active Celery workers.

    Returns:
        int: Number of active workers, 0 if Celery not available.
    """
    try:
        from config.celery import app as celery_app

        inspect = celery_app.control.inspect(timeout=1.0)
        active = inspect.active()
        if active:
            return len(active)
        return 0
    except Exception:
        return 0


def health_check(request):
    """
    Health check endpoint for the import service.

    Endpoint: GET /api/health/
    No authentication required (for load balancer checks).

    Response fields:
        - status: "healthy" or "unhealthy"
        - database: "connected" or "error"
        - cache: "connected" or "error"
        - celery_workers: integer count of active workers
        - active_sites: sites currently crawling or generating rules

    Returns:
        JsonResponse: HTTP 200 for healthy, HTTP 503 for unhealthy
    """
    status = "healthy"
    http_status = 200

    database_status = "connected"
    active_sites = None
    try:
        connection.ensure_connection()
        active_sites = ImportedSite.objects.filter(
            status__in=[SiteStatus.CRAWLING, SiteStatus.GENERATING_RULES]
        ).count()
    except Exception:
        database_status = "error"
        status = "unhealthy"
        http_status = 503

    return JsonResponse(
        {
            "status": status,
            "database": database_status,
            "cache": get_cache_status(),
            "celery_workers": get_celery_worker_count(),
            "active_sites": active_sites,
        },
        status=http_status,
    )
