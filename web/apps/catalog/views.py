"""HTTP views for the product catalog.

Products are listed and read by the till. The back office creates them,
edits or withdraws them, and adjusts stock manually through
``ProductStockView``. Checkout itself never goes through these views: it
decrements stock through the ``ProductRepository`` port.
"""

import logging

from django.conf import settings
from django.core.paginator import Paginator
from django.db.models import Q
from django.utils import timezone
from pydantic import ValidationError as PydanticValidationError
from rest_framework import status
from rest_framework.response import Response
from rest_framework.throttling import ScopedRateThrottle
from rest_framework.views import APIView

from apps.orders.domain import NotFound, OrderError
from apps.orders.views import error_response, invalid_payload
from .models import ProductModel
from .repository import DjangoProductRepository
from .schemas import ProductFilterDTO, ProductIn, ProductOut, ProductUpdateDTO, StockAdjustDTO

logger = logging.getLogger("pos.catalog")


def _product_body(obj) -> dict:
    return ProductOut.from_model(obj).model_dump(mode="json")


class ProductCollectionView(APIView):
    throttle_classes = [ScopedRateThrottle]
    throttle_scope = "catalog"

    def get(self, request):
        """List products with optional name search, category and active filters."""
        try:
            filters = ProductFilterDTO.model_validate(request.query_params.dict())
        except PydanticValidationError as e:
            return invalid_payload(e)

        qs = ProductModel.objects.all()
        if filters.q:
            qs = qs.filter(Q(name__icontains=filters.q) | Q(barcode=filters.q))
        if filters.category:
            qs = qs.filter(category=filters.category)
        if filters.active is not None:
            qs = qs.filter(is_active=filters.active)

        p = Paginator(qs, filters.page_size)
        page_obj = p.get_page(filters.page)
        return Response(
            {
                "count": p.count,
                "page": page_obj.number,
                "page_size": filters.page_size,
                "results": [_product_body(o) for o in page_obj.object_list],
            },
            status=status.HTTP_200_OK,
        )

    def post(self, request):
        try:
            dto = ProductIn.model_validate(request.data)
        except PydanticValidationError as e:
            return invalid_payload(e)
        obj = ProductModel.objects.create(
            name=dto.name,
            description=dto.description,
            price=dto.price,
            stock=dto.stock,
            category=dto.category,
            barcode=dto.barcode or "",
            image=(str(dto.image) if dto.image else ""),
            is_active=dto.is_active,
        )
        logger.info("product created", extra={"product_id": str(obj.id), "stock": obj.stock})
        return Response(_product_body(obj), status=status.HTTP_201_CREATED)


class ProductDetailView(APIView):
    throttle_classes = [ScopedRateThrottle]
    throttle_scope = "catalog"

    def get(self, request, pid):
        try:
            obj = ProductModel.objects.get(pk=pid)
        except ProductModel.DoesNotExist:
            return Response({"detail": "NOT_FOUND"}, status=status.HTTP_404_NOT_FOUND)
        return Response(_product_body(obj), status=status.HTTP_200_OK)

    def patch(self, request, pid):
        """Update name, price, category and the other product details."""
        try:
            dto = ProductUpdateDTO.model_validate(request.data)
        except PydanticValidationError as e:
            return invalid_payload(e)
        try:
            obj = ProductModel.objects.get(pk=pid)
        except ProductModel.DoesNotExist:
            return Response({"detail": "NOT_FOUND"}, status=status.HTTP_404_NOT_FOUND)

        changes = {k: v for k, v in dto.model_dump(exclude_unset=True).items() if v is not None}
        if "image" in changes:
            changes["image"] = str(changes["image"])
        for name, value in changes.items():
            setattr(obj, name, value)
        obj.updated_at = timezone.now()
        obj.save(update_fields=[*changes, "updated_at"])
        logger.info("product updated", extra={"product_id": str(obj.id), "fields": sorted(changes)})
        return Response(_product_body(obj), status=status.HTTP_200_OK)

    def put(self, request, pid):
        # the back-office form sends its fields with PUT
        return self.patch(request, pid)

    def delete(self, request, pid):
        """Withdraw a product from sale.

        The row is kept (``is_active=False``) so stock history and order
        lines that reference it stay resolvable.
        """
        updated = ProductModel.objects.filter(pk=pid).update(is_active=False, updated_at=timezone.now())
        if not updated:
            return Response({"detail": "NOT_FOUND"}, status=status.HTTP_404_NOT_FOUND)
        logger.info("product deactivated", extra={"product_id": str(pid)})
        return Response(status=status.HTTP_204_NO_CONTENT)


class ProductStockView(APIView):
    """Manual stock adjustment (``set`` / ``add`` / ``subtract``)."""

    throttle_classes = [ScopedRateThrottle]
    throttle_scope = "catalog"

    def patch(self, request, pid):
        try:
            dto = StockAdjustDTO.model_validate(request.data)
        except PydanticValidationError as e:
            return invalid_payload(e)

        repo = DjangoProductRepository()
        try:
            before = repo.get(str(pid))
            after = repo.adjust_stock(str(pid), dto.operation, dto.stock, dto.expected_version)
        except NotFound:
            return Response({"detail": "NOT_FOUND"}, status=status.HTTP_404_NOT_FOUND)
        except OrderError as e:
            return error_response(e)

        logger.info(
            "stock adjusted",
            extra={
                "product_id": after.id,
                "operation": dto.operation,
                "from": before.stock,
                "to": after.stock,
                "reason": dto.reason,
            },
        )
        return Response(_product_body(ProductModel.objects.get(pk=pid)), status=status.HTTP_200_OK)


class LowStockView(APIView):
    throttle_classes = [ScopedRateThrottle]
    throttle_scope = "catalog"

    def get(self, request):
        """Active products at or below the low-stock threshold, emptiest first."""
        raw = request.query_params.get("threshold")
        try:
            threshold = int(raw) if raw is not None else settings.LOW_STOCK_THRESHOLD
        except ValueError:
            return Response({"detail": "INVALID_THRESHOLD"}, status=status.HTTP_400_BAD_REQUEST)
        if threshold < 0:
            return Response({"detail": "INVALID_THRESHOLD"}, status=status.HTTP_400_BAD_REQUEST)
        qs = ProductModel.objects.filter(is_active=True, stock__lte=threshold).order_by("stock", "name")
        return Response(
            {"threshold": threshold, "count": qs.count(), "results": [_product_body(o) for o in qs]},
            status=status.HTTP_200_OK,
        )
