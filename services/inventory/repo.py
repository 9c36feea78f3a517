"""SQLAlchemy repository for product stock.

This module persists products and their stock for the inventory service. It
supports creating products, reading them, overwriting stock with an optional
optimistic version check, and decrementing stock under a row lock so that
concurrent checkouts can never oversell.

The connection URL comes from ``DATABASE_URL`` or, when unset, is built from
the ``DB_*`` variables. SQLite URLs (local runs, tests) share one connection.
"""

import os
import uuid
from contextlib import contextmanager
from decimal import Decimal
from typing import Optional

from sqlalchemy import Integer, Numeric, String, create_engine, select
from sqlalchemy.orm import DeclarativeBase, Session, mapped_column
from sqlalchemy.pool import StaticPool

DB_HOST = os.getenv("DB_HOST", "inventory-db")
DB_PORT = os.getenv("DB_PORT", "5432")
DB_NAME = os.getenv("DB_NAME", "inventory")
DB_USER = os.getenv("DB_USER", "inventory_user")
DB_PASSWORD = os.getenv("DB_PASSWORD", "inventory-pass")

DATABASE_URL = os.getenv(
    "DATABASE_URL",
    f"postgresql+psycopg://{DB_USER}:{DB_PASSWORD}@{DB_HOST}:{DB_PORT}/{DB_NAME}",
)


def _engine_options(url: str) -> dict:
    if url.startswith("sqlite"):
        return {"connect_args": {"check_same_thread": False}, "poolclass": StaticPool}
    return {"pool_pre_ping": True}


engine = create_engine(DATABASE_URL, **_engine_options(DATABASE_URL))


class Base(DeclarativeBase):
    pass


class Product(Base):
    """SQLAlchemy model for a sellable product and its stock.

    Attributes:
        id: UUID string primary key shared with the POS web app.
        name: Display name.
        price: Unit price, two decimals.
        stock: Units on hand, never negative.
        version: Incremented on every stock write.
    """

    __tablename__ = "products"
    id = mapped_column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    name = mapped_column(String(100), nullable=False)
    price = mapped_column(Numeric(10, 2), nullable=False)
    stock = mapped_column(Integer, nullable=False, default=0)
    version = mapped_column(Integer, nullable=False, default=0)


class ProductNotFoundError(LookupError):
    pass


class OutOfStockError(Exception):
    def __init__(self, product_id: str, name: str, available: int, requested: int):
        super().__init__(f"{name}: available {available}, requested {requested}")
        self.product_id = product_id
        self.name = name
        self.available = available
        self.requested = requested


class VersionConflictError(Exception):
    def __init__(self, product_id: str, expected: int, current: int):
        super().__init__(f"{product_id}: expected version {expected}, current {current}")
        self.product_id = product_id
        self.expected = expected
        self.current = current


def init_db() -> None:
    Base.metadata.create_all(engine)


@contextmanager
def get_session():
    """Yield a session whose objects stay readable after commit.

    The session is automatically closed when exiting the context.
    """
    with Session(engine, expire_on_commit=False) as s:
        yield s


class InventoryRepo:
    """Repository class for product stock operations."""

    def create(self, name: str, price: Decimal, stock: int, product_id: Optional[str] = None) -> Product:
        with get_session() as s:
            obj = Product(id=product_id or str(uuid.uuid4()), name=name, price=price, stock=stock, version=0)
            s.add(obj)
            s.commit()
            return obj

    def get(self, product_id: str) -> Product:
        """Return the product.

        Raises:
            ProductNotFoundError: When no product has this id.
        """
        with get_session() as s:
            obj = s.get(Product, product_id)
            if obj is None:
                raise ProductNotFoundError(product_id)
            return obj

    def set_stock(self, product_id: str, stock: int, expected_version: Optional[int] = None) -> Product:
        """Overwrite the stock level under a row lock.

        Raises:
            ProductNotFoundError: Unknown product.
            VersionConflictError: ``expected_version`` is not the stored one.
        """
        with get_session() as s:
            obj = self._locked(s, product_id)
            if expected_version is not None and obj.version != expected_version:
                conflict = VersionConflictError(obj.id, expected_version, obj.version)
                s.rollback()
                raise conflict
            obj.stock = stock
            obj.version += 1
            s.commit()
            return obj

    def decrement(self, product_id: str, quantity: int) -> Product:
        """Subtract ``quantity`` units unless that would go below zero.

        Uses SELECT FOR UPDATE so two concurrent decrements of the same
        product are serialized.

        Raises:
            ProductNotFoundError: Unknown product.
            OutOfStockError: Fewer than ``quantity`` units remain (no change).
        """
        with get_session() as s:
            obj = self._locked(s, product_id)
            if obj.stock < quantity:
                short = OutOfStockError(obj.id, obj.name, obj.stock, quantity)
                s.rollback()
                raise short
            obj.stock -= quantity
            obj.version += 1
            s.commit()
            return obj

    def _locked(self, s: Session, product_id: str) -> Product:
        obj = s.execute(select(Product).where(Product.id == product_id).with_for_update()).scalars().first()
        if obj is None:
            raise ProductNotFoundError(product_id)
        return obj
