"""Liveness/readiness endpoint: database reachability plus circuit breaker states."""

import logging

from django.db import DatabaseError, connection
from django.http import JsonResponse

from apps.orders.http_adapters import breaker_states

logger = logging.getLogger(__name__)


def health_view(_request):
    db_ok = False
    try:
        with connection.cursor() as cur:
            cur.execute("SELECT 1;")
        db_ok = True
    except DatabaseError:
        logger.exception("health check: database unreachable")

    breakers = breaker_states()
    ok = db_ok
    code = 200 if ok else 503
    return JsonResponse(
        {
            "ok": ok,
            "components": {
                "db": {"ok": db_ok},
                "breakers": breakers,
            },
        },
        status=code,
    )


def liveness_view(_request):
    """Process is up; no dependency checks."""
    return JsonResponse({"ok": True})
