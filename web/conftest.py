import pytest
from django.core.cache import cache


@pytest.fixture(autouse=True)
def use_local_catalog(settings):
    settings.USE_HTTP_INVENTORY = False


@pytest.fixture(autouse=True)
def reset_shared_state():
    # throttle counters live in the cache; the breaker is module-level
    from apps.orders.http_adapters import inventory_breaker

    cache.clear()
    inventory_breaker.reset()
    yield
    inventory_breaker.reset()
