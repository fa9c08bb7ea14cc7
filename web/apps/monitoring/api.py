"""Liveness/readiness probe for the web service."""

import logging

from django.conf import settings
from django.db import DatabaseError, connection
from django.http import JsonResponse

from apps.orders.http_adapters import payments_breaker

logger = logging.getLogger("monitoring")


def health_view(_request):
    """Report database reachability and the payments circuit state.

    Returns 503 only when the database is down; an open payments circuit
    degrades payment confirmation but not the rest of the API.
    """
    try:
        with connection.cursor() as cur:
            cur.execute("SELECT 1;")
        db_ok = True
    except DatabaseError:
        logger.exception("health check: database unreachable")
        db_ok = False

    components = {"db": {"ok": db_ok}}
    if getattr(settings, "USE_HTTP_ADAPTERS", False):
        state = payments_breaker.state
        components["payments"] = {"ok": state != "OPEN", "circuit": state}

    return JsonResponse({"ok": db_ok, "components": components}, status=200 if db_ok else 503)
