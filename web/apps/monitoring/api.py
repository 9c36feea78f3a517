from django.conf import settings
from django.db import DatabaseError, connection
from django.http import JsonResponse

from apps.orders.http_adapters import HttpProductRepository, inventory_breaker


def health_view(_request):
    """Report database reachability and, when enabled, the inventory service."""
    db_ok = True
    try:
        with connection.cursor() as cur:
            cur.execute("SELECT 1;")
    except DatabaseError:
        db_ok = False

    components = {"db": {"ok": db_ok}}
    ok = db_ok
    if getattr(settings, "USE_HTTP_INVENTORY", False):
        inv_ok = HttpProductRepository().ping()
        components["inventory"] = {"ok": inv_ok, "circuit": inventory_breaker.state}
        ok = ok and inv_ok

    return JsonResponse({"ok": ok, "components": components}, status=200 if ok else 503)
