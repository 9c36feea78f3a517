"""Daily sales summary for the back office."""

from decimal import Decimal

from django.db.models import Count, Q, Sum

from .domain import CENT, OrderStatus, PaymentMethod
from .models import OrderModel
from .repository import day_bounds

REPORTED_STATUSES = (OrderStatus.PENDING, OrderStatus.PROCESSING, OrderStatus.COMPLETED)


def daily_sales_report(day) -> dict:
    """Summarize the non-cancelled orders created during one UTC day.

    Args:
        day: ``datetime.date`` to report on.

    Returns:
        dict: ``date``, ``total_orders``, ``total_revenue``,
        ``average_order_value`` and per payment-method / per status counts.
    """
    start, end = day_bounds(day)
    qs = OrderModel.objects.filter(created_at__gte=start, created_at__lt=end).exclude(
        status=OrderStatus.CANCELLED.value
    )

    aggregates = {
        "total_orders": Count("id"),
        "total_revenue": Sum("total"),
    }
    for method in PaymentMethod:
        aggregates[f"pm_{method.value}"] = Count("id", filter=Q(payment_method=method.value))
    for st in REPORTED_STATUSES:
        aggregates[f"st_{st.value}"] = Count("id", filter=Q(status=st.value))
    row = qs.aggregate(**aggregates)

    count = row["total_orders"]
    revenue = (row["total_revenue"] or Decimal("0")).quantize(CENT)
    average = (revenue / count).quantize(CENT) if count else Decimal("0.00")
    return {
        "date": day,
        "total_orders": count,
        "total_revenue": revenue,
        "average_order_value": average,
        "payment_methods": {m.value: row[f"pm_{m.value}"] for m in PaymentMethod},
        "order_status": {s.value: row[f"st_{s.value}"] for s in REPORTED_STATUSES},
    }
