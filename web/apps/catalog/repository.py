"""Repository layer for the product catalog.

``DjangoProductRepository`` implements the orders domain ``ProductRepository``
port on top of the Django ORM. Stock writes are single ``UPDATE`` statements
guarded in their ``WHERE`` clause (``stock >= quantity`` for decrements,
``version = expected`` for optimistic overwrites), so concurrent checkouts
cannot push stock below zero.
"""

from django.core.exceptions import ValidationError as DjangoValidationError
from django.db.models import F
from django.utils import timezone

from apps.orders.domain import (
    InsufficientStock,
    Product,
    ProductNotFound,
    ProductRepository,
    StaleProduct,
    ValidationError,
)
from .models import ProductModel

STOCK_OPERATIONS = ("set", "add", "subtract")


def to_domain(obj: ProductModel) -> Product:
    return Product(
        id=str(obj.id),
        name=obj.name,
        price=obj.price,
        stock=obj.stock,
        version=obj.version,
        active=obj.is_active,
    )


class DjangoProductRepository(ProductRepository):
    """Product store backed by the ``products`` table."""

    def _get_model(self, product_id: str) -> ProductModel:
        try:
            return ProductModel.objects.get(pk=product_id)
        except (ProductModel.DoesNotExist, DjangoValidationError, ValueError):
            # malformed ids are reported the same way as unknown ones
            raise ProductNotFound(product_id)

    def get(self, product_id: str) -> Product:
        return to_domain(self._get_model(product_id))

    def update_stock(self, product_id, new_stock, expected_version=None) -> Product:
        """Overwrite stock with ``new_stock``, optionally checking the version.

        Raises:
            ValidationError: ``NEGATIVE_STOCK`` when ``new_stock`` < 0.
            ProductNotFound: When the product does not exist.
            StaleProduct: When ``expected_version`` no longer matches.
        """
        if new_stock < 0:
            raise ValidationError("NEGATIVE_STOCK", "Stock cannot be negative")
        current = self._get_model(product_id)
        qs = ProductModel.objects.filter(pk=current.pk)
        if expected_version is not None:
            qs = qs.filter(version=expected_version)
        updated = qs.update(stock=new_stock, version=F("version") + 1, updated_at=timezone.now())
        if not updated:
            raise StaleProduct(product_id, expected_version, self.get(product_id).version)
        return self.get(product_id)

    def decrement_stock(self, product_id, quantity) -> Product:
        current = self._get_model(product_id)
        updated = ProductModel.objects.filter(pk=current.pk, stock__gte=quantity).update(
            stock=F("stock") - quantity,
            version=F("version") + 1,
            updated_at=timezone.now(),
        )
        if not updated:
            fresh = self.get(product_id)
            raise InsufficientStock(fresh.name, fresh.stock, quantity, product_id=fresh.id)
        return self.get(product_id)

    def increment_stock(self, product_id, quantity) -> Product:
        current = self._get_model(product_id)
        ProductModel.objects.filter(pk=current.pk).update(
            stock=F("stock") + quantity,
            version=F("version") + 1,
            updated_at=timezone.now(),
        )
        return self.get(product_id)

    def adjust_stock(self, product_id, operation: str, amount: int, expected_version=None) -> Product:
        """Apply a manual stock adjustment from the back office.

        Args:
            product_id: Product to adjust.
            operation: ``set`` (absolute), ``add`` or ``subtract``.
            amount: Non-negative number of units.
            expected_version: Optional version the caller last saw.

        Raises:
            ValidationError: Unknown operation or negative amount.
            StaleProduct: ``expected_version`` is out of date.
            InsufficientStock: ``subtract`` would go below zero.
        """
        if operation not in STOCK_OPERATIONS:
            raise ValidationError("INVALID_OPERATION", f"Unknown stock operation: {operation}")
        if amount < 0:
            raise ValidationError("NEGATIVE_AMOUNT", "Stock amount must not be negative")

        if operation == "set":
            return self.update_stock(product_id, amount, expected_version)
        if expected_version is None:
            if operation == "add":
                return self.increment_stock(product_id, amount)
            return self.decrement_stock(product_id, amount)

        # version and stock guards go in the same UPDATE
        current = self._get_model(product_id)
        qs = ProductModel.objects.filter(pk=current.pk, version=expected_version)
        delta = amount
        if operation == "subtract":
            qs = qs.filter(stock__gte=amount)
            delta = -amount
        updated = qs.update(stock=F("stock") + delta, version=F("version") + 1, updated_at=timezone.now())
        if not updated:
            fresh = self.get(product_id)
            if fresh.version != expected_version:
                raise StaleProduct(product_id, expected_version, fresh.version)
            raise InsufficientStock(fresh.name, fresh.stock, amount, product_id=fresh.id)
        return self.get(product_id)
