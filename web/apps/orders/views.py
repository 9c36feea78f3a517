"""HTTP views for the orders app.

Views are kept small: they validate requests (via Pydantic), map them to
domain DTOs, delegate to the domain service or repository, and render the
result. Domain errors are mapped to status codes by ``error_response``:

- ``ValidationError`` -> 400
- ``NotFound`` (unknown product or order) -> 404
- ``StaleProduct`` -> 409
- ``InsufficientStock`` -> 422
- ``PersistenceFailure`` and unreachable upstreams -> 503

Error bodies are ``{"detail": <code>, "message": <text>}``; the message is
written for the cashier (for example which product is short and by how
much) and can be displayed as-is.

The create endpoint obtains its ``OrderService`` from
``providers.get_order_service()`` so tests and deployments can swap the
product store without touching the view. It also honors an optional
``Idempotency-Key`` header: the first request is processed and its response
stored; a retry with the same payload replays it (``Idempotent-Replay:
true``). A retry that arrives while the first request is still running, or a
reused key with a different payload, gets 409.
"""

import logging
from datetime import datetime, timezone

import httpx
from pydantic import ValidationError as PydanticValidationError
from rest_framework import status
from rest_framework.response import Response
from rest_framework.throttling import ScopedRateThrottle
from rest_framework.views import APIView

from . import providers
from .domain import (
    InsufficientStock,
    LineRequest,
    NotFound,
    OrderError,
    OrderRequest,
    PersistenceFailure,
    StaleProduct,
    ValidationError,
)
from .http_adapters import CircuitOpenError
from .idempotency import IdempotencyConflict, claim_key, in_progress, release_key, store_response
from .reports import daily_sales_report
from .repository import DjangoOrderRepository
from .schemas import (
    CreateOrderDTO,
    DailySalesReportDTO,
    OrderFilterDTO,
    OrderReadDTO,
    UpdateOrderStatusDTO,
)

logger = logging.getLogger("pos.orders")

ERROR_STATUS = (
    (ValidationError, status.HTTP_400_BAD_REQUEST),
    (NotFound, status.HTTP_404_NOT_FOUND),
    (StaleProduct, status.HTTP_409_CONFLICT),
    (InsufficientStock, status.HTTP_422_UNPROCESSABLE_ENTITY),
    (PersistenceFailure, status.HTTP_503_SERVICE_UNAVAILABLE),
)


def error_body(exc: OrderError) -> tuple[int, dict]:
    for cls, code in ERROR_STATUS:
        if isinstance(exc, cls):
            return code, {"detail": exc.code, "message": exc.message}
    return status.HTTP_400_BAD_REQUEST, {"detail": exc.code, "message": exc.message}


def error_response(exc: OrderError) -> Response:
    code, body = error_body(exc)
    return Response(body, status=code)


def invalid_payload(e: PydanticValidationError) -> Response:
    return Response(
        {"detail": "VALIDATION_ERROR", "errors": e.errors(include_url=False, include_context=False)},
        status=status.HTTP_400_BAD_REQUEST,
    )


class OrdersCollectionView(APIView):
    """List orders (GET) and check out a cart (POST)."""

    throttle_classes = [ScopedRateThrottle]

    def get_throttles(self):
        # DRF evaluates throttles in initial(), before get/post
        self.throttle_scope = "orders_list" if self.request.method == "GET" else "orders_create"
        return [throttle() for throttle in self.throttle_classes]

    def get(self, request):
        """Return a page of orders filtered by status, date range or customer."""
        try:
            filters = OrderFilterDTO.model_validate(request.query_params.dict())
        except PydanticValidationError as e:
            return invalid_payload(e)

        page = DjangoOrderRepository().list(
            status=(filters.status.value if filters.status else None),
            start_date=filters.start_date,
            end_date=filters.end_date,
            customer_id=filters.customer_id,
            page=filters.page,
            page_size=filters.page_size,
        )
        page["results"] = [OrderReadDTO.from_domain(o).model_dump(mode="json") for o in page["results"]]
        return Response(page, status=status.HTTP_200_OK)

    def post(self, request):
        """Create a new order.

        Returns:
            Response: One of the following responses.
            - 201 with the created order.
            - replayed status and body when the same idempotency key and
              payload are retried.
            - 409 ``IDEMPOTENCY_CONFLICT`` when the key is reused with a
              different payload.
            - 409 ``IDEMPOTENCY_IN_PROGRESS`` while the first request with
              the key is still running.
            - 400 for payload validation errors.
            - 404 ``PRODUCT_NOT_FOUND`` when a line references an unknown
              product.
            - 422 ``INSUFFICIENT_STOCK`` when a line exceeds stock.
            - 503 ``PERSISTENCE_FAILURE``, ``UPSTREAM_UNAVAILABLE`` or
              ``INTERNAL_ERROR``. The key is released when nothing was
              saved, so a retry is processed again.
        """
        idem_key = request.headers.get("Idempotency-Key")

        # 1) Pydantic validation
        try:
            dto = CreateOrderDTO.model_validate(request.data)
        except PydanticValidationError as e:
            return invalid_payload(e)

        # 2) Idempotency get-or-create
        rec = None
        if idem_key:
            try:
                replay, rec = claim_key(idem_key, request.data)
            except IdempotencyConflict:
                return Response({"detail": "IDEMPOTENCY_CONFLICT"}, status=status.HTTP_409_CONFLICT)
            if replay:
                if in_progress(rec):
                    return Response({"detail": "IDEMPOTENCY_IN_PROGRESS"}, status=status.HTTP_409_CONFLICT)
                resp = Response(rec.response_body, status=rec.response_status)
                resp["Idempotent-Replay"] = "true"
                return resp

        # 3) Domain
        order_request = OrderRequest(
            items=[LineRequest(product_id=i.product_id, quantity=i.quantity) for i in dto.items],
            payment_method=dto.payment_method,
            customer_id=(str(dto.customer_id) if dto.customer_id else None),
            customer_name=dto.customer_name,
            payment_status=dto.payment_status,
            tax=dto.tax,
            discount=dto.discount,
            notes=dto.notes,
        )
        try:
            order = providers.get_order_service().create_order(order_request)
        except OrderError as e:
            status_code, body = error_body(e)
            if rec:
                order_id = getattr(e, "order_id", None)
                if isinstance(e, PersistenceFailure) and order_id is None:
                    # nothing was saved
                    release_key(rec)
                else:
                    store_response(rec, status_code, body, order_id=order_id)
            return Response(body, status=status_code)
        except (httpx.HTTPError, CircuitOpenError):
            # raised before any write; the till may retry with the same key
            logger.exception("inventory service unavailable during checkout")
            if rec:
                release_key(rec)
            return Response(
                {"detail": "UPSTREAM_UNAVAILABLE", "message": "Inventory service unavailable"},
                status=status.HTTP_503_SERVICE_UNAVAILABLE,
            )
        except Exception:
            logger.exception("checkout failed unexpectedly")
            if rec:
                release_key(rec)
            return Response(
                {"detail": "INTERNAL_ERROR", "message": "Order could not be processed"},
                status=status.HTTP_503_SERVICE_UNAVAILABLE,
            )

        # 4) Response
        body = OrderReadDTO.from_domain(order).model_dump(mode="json")
        if rec:
            store_response(rec, status.HTTP_201_CREATED, body, order_id=order.id)
        return Response(body, status=status.HTTP_201_CREATED)


class RetrieveOrderView(APIView):
    throttle_classes = [ScopedRateThrottle]
    throttle_scope = "orders_detail"

    def get(self, request, oid):
        try:
            order = DjangoOrderRepository().get(oid)
        except NotFound:
            return Response({"detail": "NOT_FOUND"}, status=status.HTTP_404_NOT_FOUND)
        return Response(OrderReadDTO.from_domain(order).model_dump(mode="json"), status=status.HTTP_200_OK)


class OrderStatusView(APIView):
    """Change an order's status and/or payment status.

    Monetary fields are frozen at creation and never recomputed here.
    """

    throttle_classes = [ScopedRateThrottle]
    throttle_scope = "orders_detail"

    def patch(self, request, oid):
        try:
            dto = UpdateOrderStatusDTO.model_validate(request.data)
        except PydanticValidationError as e:
            return invalid_payload(e)
        try:
            order = DjangoOrderRepository().update_status(oid, status=dto.status, payment_status=dto.payment_status)
        except NotFound:
            return Response({"detail": "NOT_FOUND"}, status=status.HTTP_404_NOT_FOUND)
        logger.info(
            "order status updated",
            extra={"order_number": order.order_number, "status": order.status.value,
                   "payment_status": order.payment_status.value},
        )
        return Response(OrderReadDTO.from_domain(order).model_dump(mode="json"), status=status.HTTP_200_OK)


class DailySalesReportView(APIView):
    throttle_classes = [ScopedRateThrottle]
    throttle_scope = "orders_list"

    def get(self, request):
        raw = request.query_params.get("date")
        if raw:
            try:
                day = datetime.strptime(raw, "%Y-%m-%d").date()
            except ValueError:
                return Response({"detail": "INVALID_DATE"}, status=status.HTTP_400_BAD_REQUEST)
        else:
            day = datetime.now(timezone.utc).date()
        report = DailySalesReportDTO.model_validate(daily_sales_report(day))
        return Response(report.model_dump(mode="json"), status=status.HTTP_200_OK)
