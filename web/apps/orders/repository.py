"""Repository layer for persisting orders.

This module maps domain ``Order`` objects to the ``orders`` and
``order_items`` tables. It keeps a thin interface so the domain layer is not
coupled to Django ORM details: callers get domain objects back, never model
instances.
"""

import logging
from datetime import datetime, time, timedelta, timezone as dt_timezone

from django.core.paginator import Paginator
from django.db import DatabaseError, IntegrityError, transaction
from django.utils import timezone

from .domain import (
    Order,
    OrderLine,
    OrderNotFound,
    OrderRepository,
    OrderStatus,
    PaymentMethod,
    PaymentStatus,
    PersistenceFailure,
    generate_order_number,
)
from .models import OrderLineModel, OrderModel

logger = logging.getLogger("pos.orders")

ORDER_NUMBER_ATTEMPTS = 5


def to_domain(obj: OrderModel) -> Order:
    return Order(
        id=str(obj.id),
        order_number=obj.order_number,
        items=[OrderLine(it.product_id, it.name, it.price, it.quantity) for it in obj.items.all()],
        payment_method=PaymentMethod(obj.payment_method),
        customer_id=(str(obj.customer_id) if obj.customer_id else None),
        customer_name=obj.customer_name,
        subtotal=obj.subtotal,
        tax=obj.tax,
        discount=obj.discount,
        total=obj.total,
        status=OrderStatus(obj.status),
        payment_status=PaymentStatus(obj.payment_status),
        notes=obj.notes,
        needs_reconciliation=obj.needs_reconciliation,
        created_at=obj.created_at,
    )


def day_bounds(day):
    """Return the ``[start, end)`` UTC datetimes covering ``day``."""
    start = datetime.combine(day, time.min, tzinfo=dt_timezone.utc)
    return start, start + timedelta(days=1)


class DjangoOrderRepository(OrderRepository):
    """Repository that persists Order domain objects using Django ORM."""

    def create(self, order: Order) -> Order:
        """Persist a new order and its lines.

        The insert runs in a savepoint so a unique-index collision on
        ``order_number`` only rolls back this attempt; the number is then
        regenerated from the order's creation date, up to
        ``ORDER_NUMBER_ATTEMPTS`` times.

        Raises:
            PersistenceFailure: When the database rejects the write or no
                free order number was found.
        """
        number = order.order_number
        created_at = order.created_at or timezone.now()
        for attempt in range(1, ORDER_NUMBER_ATTEMPTS + 1):
            try:
                # Nested savepoint: IntegrityError only rolls back this block.
                with transaction.atomic():
                    obj = self._insert(order, number, created_at)
            except IntegrityError:
                logger.warning("order number collision", extra={"order_number": number, "attempt": attempt})
                number = generate_order_number(created_at)
                continue
            except DatabaseError as exc:
                raise PersistenceFailure(f"Could not save order: {exc}") from exc
            return to_domain(obj)
        raise PersistenceFailure("Could not allocate a unique order number")

    def _insert(self, order: Order, number: str, created_at) -> OrderModel:
        obj = OrderModel.objects.create(
            order_number=number,
            customer_id=order.customer_id,
            customer_name=order.customer_name,
            subtotal=order.subtotal,
            tax=order.tax,
            discount=order.discount,
            total=order.total,
            status=order.status.value,
            payment_method=order.payment_method.value,
            payment_status=order.payment_status.value,
            notes=order.notes,
            created_at=created_at,
        )
        OrderLineModel.objects.bulk_create(
            [
                OrderLineModel(
                    order=obj,
                    product_id=line.product_id,
                    name=line.name,
                    price=line.price,
                    quantity=line.quantity,
                    subtotal=line.subtotal,
                    position=pos,
                )
                for pos, line in enumerate(order.items)
            ]
        )
        return obj

    def get(self, order_id) -> Order:
        try:
            obj = OrderModel.objects.prefetch_related("items").get(pk=order_id)
        except OrderModel.DoesNotExist:
            raise OrderNotFound(str(order_id))
        return to_domain(obj)

    def list(self, status=None, start_date=None, end_date=None, customer_id=None, page=1, page_size=20):
        """Return one page of orders, newest first.

        Dates are inclusive whole UTC days.

        Returns:
            dict: ``count``, ``page``, ``page_size`` and ``results`` (a list
            of domain orders).
        """
        qs = OrderModel.objects.prefetch_related("items").order_by("-created_at")
        if status:
            qs = qs.filter(status=status)
        if start_date:
            qs = qs.filter(created_at__gte=day_bounds(start_date)[0])
        if end_date:
            qs = qs.filter(created_at__lt=day_bounds(end_date)[1])
        if customer_id:
            qs = qs.filter(customer_id=customer_id)

        p = Paginator(qs, page_size)
        page_obj = p.get_page(page)
        return {
            "count": p.count,
            "page": page_obj.number,
            "page_size": page_size,
            "results": [to_domain(o) for o in page_obj.object_list],
        }

    def update_status(self, order_id, status=None, payment_status=None) -> Order:
        """Change the state fields of an order; totals are never touched."""
        fields = {}
        if status is not None:
            fields["status"] = OrderStatus(status).value
        if payment_status is not None:
            fields["payment_status"] = PaymentStatus(payment_status).value
        try:
            obj = OrderModel.objects.get(pk=order_id)
        except OrderModel.DoesNotExist:
            raise OrderNotFound(str(order_id))
        for name, value in fields.items():
            setattr(obj, name, value)
        obj.save(update_fields=[*fields, "updated_at"])
        return self.get(obj.pk)

    def flag_for_reconciliation(self, order_id, reason: str) -> None:
        updated = OrderModel.objects.filter(pk=order_id).update(
            needs_reconciliation=True,
            reconciliation_reason=reason[:500],
            updated_at=timezone.now(),
        )
        if not updated:
            raise OrderNotFound(str(order_id))
