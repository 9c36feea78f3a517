"""In-process adapters for the orders domain ports.

These adapters implement ``ProductRepository`` and ``OrderRepository`` with
plain dictionaries. They are intended for unit tests and local experiments
where deterministic behavior is useful and no database is required.
"""

import uuid
from dataclasses import replace
from typing import Dict, Iterable, List, Optional

from .domain import (
    InsufficientStock,
    Order,
    OrderNotFound,
    OrderRepository,
    Product,
    ProductNotFound,
    ProductRepository,
    StaleProduct,
    ValidationError,
    generate_order_number,
)


class InMemoryProductRepository(ProductRepository):
    """Dictionary-backed ``ProductRepository``.

    Products are stored as frozen snapshots; every stock write replaces the
    snapshot and bumps its version.
    """

    def __init__(self, products: Iterable[Product] = ()):
        self._products: Dict[str, Product] = {p.id: p for p in products}

    def add(self, product: Product) -> Product:
        self._products[product.id] = product
        return product

    def get(self, product_id: str) -> Product:
        try:
            return self._products[product_id]
        except KeyError:
            raise ProductNotFound(product_id)

    def update_stock(self, product_id: str, new_stock: int, expected_version: Optional[int] = None) -> Product:
        current = self.get(product_id)
        if new_stock < 0:
            raise ValidationError("NEGATIVE_STOCK")
        if expected_version is not None and expected_version != current.version:
            raise StaleProduct(product_id, expected_version, current.version)
        return self.add(replace(current, stock=new_stock, version=current.version + 1))

    def decrement_stock(self, product_id: str, quantity: int) -> Product:
        current = self.get(product_id)
        if current.stock < quantity:
            raise InsufficientStock(current.name, current.stock, quantity, product_id=product_id)
        return self.add(replace(current, stock=current.stock - quantity, version=current.version + 1))


class InMemoryOrderRepository(OrderRepository):
    """Dictionary-backed ``OrderRepository``.

    Assigns a UUID string id on create and regenerates the order number when
    it collides with one already stored.
    """

    def __init__(self):
        self.orders: Dict[str, Order] = {}

    def create(self, order: Order) -> Order:
        taken = {o.order_number for o in self.orders.values()}
        number = order.order_number
        while number in taken:
            number = generate_order_number(order.created_at)
        saved = replace(order, id=str(uuid.uuid4()), order_number=number, items=list(order.items))
        self.orders[saved.id] = saved
        return saved

    def get(self, order_id: str) -> Order:
        try:
            return self.orders[order_id]
        except KeyError:
            raise OrderNotFound(order_id)

    def all(self) -> List[Order]:
        return list(self.orders.values())

    def flag_for_reconciliation(self, order_id: str, reason: str) -> None:
        self.orders[order_id] = replace(self.get(order_id), needs_reconciliation=True)
