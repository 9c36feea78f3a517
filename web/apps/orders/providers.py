"""Service provider for wiring ``OrderService`` with its ports.

``get_order_service`` returns an ``OrderService`` backed by the local
catalog tables (default). When ``settings.USE_HTTP_INVENTORY`` is truthy the
products are read and decremented through the inventory service instead.
"""

from django.conf import settings
from django.db import transaction

from apps.catalog.repository import DjangoProductRepository
from .domain import OrderService
from .http_adapters import HttpProductRepository
from .repository import DjangoOrderRepository


def get_order_service() -> OrderService:
    """Return a configured OrderService instance.

    With the local catalog, order insert and stock decrements share one
    database transaction (``transaction.atomic``). The inventory service
    lives in another database, so no shared transaction is possible there
    and the service falls back to flagging partial sales for reconciliation.

    Returns:
        OrderService: A service instance with appropriate ports.
    """
    orders = DjangoOrderRepository()
    if getattr(settings, "USE_HTTP_INVENTORY", False):
        return OrderService(products=HttpProductRepository(), orders=orders)
    return OrderService(products=DjangoProductRepository(), orders=orders, atomic=transaction.atomic)
