"""Domain models, ports and the checkout service for POS orders.

This module holds the dataclasses used as DTOs for products and orders, the
protocol definitions (ports) for the product and order stores, the error
taxonomy raised during checkout, and ``OrderService``: the domain service that
turns a cart into a persisted order while decrementing stock.

Nothing here imports Django. Persistence is reached only through the ports,
so the same service runs against the ORM repositories, the HTTP inventory
client, or the in-memory adapters used in tests.
"""

import logging
import random
from dataclasses import dataclass
from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Callable, ContextManager, Dict, List, Optional, Protocol

logger = logging.getLogger("pos.orders")

WALK_IN_CUSTOMER = "Walk-in Customer"
ZERO = Decimal("0")
CENT = Decimal("0.01")


# ---- Enums ----
class OrderStatus(str, Enum):
    """Lifecycle of an order. New orders always start as PENDING."""

    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


class PaymentMethod(str, Enum):
    CASH = "cash"
    CARD = "card"
    MOBILE = "mobile"


class PaymentStatus(str, Enum):
    PENDING = "pending"
    PAID = "paid"
    REFUNDED = "refunded"


# ---- Errors ----
class OrderError(ValueError):
    """Base class for checkout errors.

    Every error carries a short machine-readable ``code`` (used by the HTTP
    layer as ``detail``) and a message meant to be shown to the cashier.
    """

    code = "ORDER_ERROR"

    def __init__(self, message: Optional[str] = None):
        self.message = message or self.code
        super().__init__(self.message)


class ValidationError(OrderError):
    """The request is malformed; raised before any side effect."""

    code = "VALIDATION_ERROR"

    def __init__(self, code: str, message: Optional[str] = None):
        self.code = code
        super().__init__(message or code)


class NotFound(OrderError):
    code = "NOT_FOUND"


class ProductNotFound(NotFound):
    code = "PRODUCT_NOT_FOUND"

    def __init__(self, product_id: str):
        self.product_id = product_id
        super().__init__(f"Product not found: {product_id}")


class OrderNotFound(NotFound):
    code = "NOT_FOUND"

    def __init__(self, order_id: str):
        self.order_id = order_id
        super().__init__(f"Order not found: {order_id}")


class InsufficientStock(OrderError):
    """Requested quantity exceeds what the product has on hand."""

    code = "INSUFFICIENT_STOCK"

    def __init__(self, product_name: str, available: int, requested: int, product_id: Optional[str] = None):
        self.product_name = product_name
        self.available = available
        self.requested = requested
        self.product_id = product_id
        super().__init__(
            f"Insufficient stock for {product_name}. Available: {available}, Requested: {requested}"
        )


class StaleProduct(OrderError):
    """A stock write was based on a product version that is no longer current."""

    code = "STALE_PRODUCT"

    def __init__(self, product_id: str, expected_version: Optional[int], current_version: Optional[int]):
        self.product_id = product_id
        self.expected_version = expected_version
        self.current_version = current_version
        super().__init__(
            f"Product {product_id} changed: expected version {expected_version}, current {current_version}"
        )


class PersistenceFailure(OrderError):
    """A write to the order or product store failed. Never retried here."""

    code = "PERSISTENCE_FAILURE"

    def __init__(self, message: Optional[str] = None, order_id: Optional[str] = None):
        self.order_id = order_id
        super().__init__(message)


# ---- Entities / DTOs ----
@dataclass(frozen=True)
class Product:
    """Snapshot of a sellable product as read from the product store.

    Attributes:
        id: Opaque product identifier.
        name: Display name, copied into order lines at sale time.
        price: Unit price.
        stock: Units currently on hand.
        version: Incremented on every stock write; used for optimistic checks.
        active: False once the product is withdrawn from sale.
    """

    id: str
    name: str
    price: Decimal
    stock: int
    version: int = 0
    active: bool = True


@dataclass(frozen=True)
class LineRequest:
    product_id: str
    quantity: int


@dataclass
class OrderRequest:
    """Cart contents and payment metadata submitted at checkout."""

    items: List[LineRequest]
    payment_method: Optional[PaymentMethod]
    customer_id: Optional[str] = None
    customer_name: Optional[str] = None
    payment_status: PaymentStatus = PaymentStatus.PENDING
    tax: Decimal = ZERO
    discount: Decimal = ZERO
    notes: Optional[str] = None


@dataclass(frozen=True)
class OrderLine:
    """A sold line. Name and price are frozen at the moment of sale."""

    product_id: str
    name: str
    price: Decimal
    quantity: int

    @property
    def subtotal(self) -> Decimal:
        return self.price * self.quantity


@dataclass
class Order:
    """An order as created by ``OrderService`` and returned by the stores.

    Attributes:
        id: Persistent identifier, or None for a draft not yet saved.
        order_number: Human-readable number ``ORD-YYYYMMDD-NNNN``.
        items: Sold lines, at least one.
        subtotal: Sum of line subtotals.
        tax: Tax amount passed by the caller.
        discount: Discount actually applied (never more than the subtotal).
        total: ``subtotal + tax - discount``.
        needs_reconciliation: Set when the order was saved but stock could
            not be fully decremented.
    """

    id: Optional[str]
    order_number: str
    items: List[OrderLine]
    payment_method: PaymentMethod
    customer_name: str = WALK_IN_CUSTOMER
    customer_id: Optional[str] = None
    subtotal: Decimal = ZERO
    tax: Decimal = ZERO
    discount: Decimal = ZERO
    total: Decimal = ZERO
    status: OrderStatus = OrderStatus.PENDING
    payment_status: PaymentStatus = PaymentStatus.PENDING
    notes: Optional[str] = None
    needs_reconciliation: bool = False
    created_at: Optional[datetime] = None


# ---- Totals / numbering ----
def compute_totals(lines: List[OrderLine], tax: Decimal, discount: Decimal) -> tuple[Decimal, Decimal, Decimal]:
    """Return ``(subtotal, applied_discount, total)`` for the given lines.

    The discount is clamped to the subtotal so a sale never ends with a
    negative total because of it.
    """
    subtotal = sum((line.subtotal for line in lines), ZERO).quantize(CENT)
    # amounts are rounded to cents before use so the stored parts add up
    tax = Decimal(tax).quantize(CENT)
    applied = min(Decimal(discount).quantize(CENT), subtotal)
    total = subtotal + tax - applied
    return subtotal, applied, total


def generate_order_number(created_at: datetime, rng: Optional[random.Random] = None) -> str:
    """Build ``ORD-<YYYYMMDD>-<NNNN>`` with NNNN drawn from [1000, 9999]."""
    rng = rng or random
    return f"ORD-{created_at:%Y%m%d}-{rng.randint(1000, 9999)}"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


# ---- Ports (DIP) ----
class ProductRepository(Protocol):
    """Port for reading products and writing their stock."""

    def get(self, product_id: str) -> Product:
        """Return the current product.

        Raises:
            ProductNotFound: When the id does not resolve to a product.
        """
        raise NotImplementedError()

    def update_stock(self, product_id: str, new_stock: int, expected_version: Optional[int] = None) -> Product:
        """Overwrite the stock with an absolute value.

        Raises:
            ProductNotFound: When the product does not exist.
            StaleProduct: When ``expected_version`` is given and no longer
                matches the stored version.
        """
        raise NotImplementedError()

    def decrement_stock(self, product_id: str, quantity: int) -> Product:
        """Atomically subtract ``quantity`` unless that would go below zero.

        Raises:
            ProductNotFound: When the product does not exist.
            InsufficientStock: When fewer than ``quantity`` units remain.
        """
        raise NotImplementedError()


class OrderRepository(Protocol):
    """Port for persisting orders."""

    def create(self, order: Order) -> Order:
        """Persist a draft order and return it with identity assigned.

        Implementations enforce order-number uniqueness and may replace the
        draft's number when it collides with an existing one.
        """
        raise NotImplementedError()

    def flag_for_reconciliation(self, order_id: str, reason: str) -> None:
        raise NotImplementedError()


# ---- Domain service ----
class OrderService:
    """Domain service that performs checkout.

    ``create_order`` validates every cart line against live stock before
    writing anything, persists the order, then decrements stock with the
    repository's conditional decrement.

    When an ``atomic`` context manager factory is supplied (a transactional
    store such as the Django ORM) the order insert and all decrements run
    inside it, so a failure leaves no trace. Without it (a remote inventory)
    a decrement failure after the order was saved flags the order for
    manual reconciliation and surfaces as ``PersistenceFailure``.
    """

    def __init__(
        self,
        products: ProductRepository,
        orders: OrderRepository,
        atomic: Optional[Callable[[], ContextManager]] = None,
        clock: Callable[[], datetime] = _utcnow,
        rng: Optional[random.Random] = None,
    ):
        """Initialize the service with required dependencies.

        Args:
            products: ProductRepository used to read and decrement stock.
            orders: OrderRepository used to persist orders.
            atomic: Optional factory returning a transaction context manager.
            clock: Returns the creation timestamp (UTC).
            rng: Random source for order numbers.
        """
        self.products = products
        self.orders = orders
        self.atomic = atomic
        self.clock = clock
        self.rng = rng

    def create_order(self, request: OrderRequest) -> Order:
        """Create an order from a cart and decrement stock.

        Args:
            request: Cart lines and payment metadata.

        Returns:
            The persisted Order, including its order number and totals.

        Raises:
            ValidationError: Malformed request (``EMPTY_ORDER``,
                ``INVALID_QUANTITY``, ``PAYMENT_METHOD_REQUIRED``,
                ``INVALID_PAYMENT_METHOD``, ``INVALID_PAYMENT_STATUS``,
                ``NEGATIVE_AMOUNT``), or a line names a withdrawn product
                (``PRODUCT_INACTIVE``).
            ProductNotFound: A line references an unknown product.
            InsufficientStock: A product cannot cover the requested quantity.
            PersistenceFailure: The order or a stock write failed.
        """
        payment_method, payment_status = self._validate(request)

        # 1) Check every line against live stock before any write
        lines = self._build_lines(request.items)

        # 2) Totals
        tax = Decimal(request.tax).quantize(CENT)
        subtotal, discount, total = compute_totals(lines, tax, Decimal(request.discount))

        created_at = self.clock()
        draft = Order(
            id=None,
            order_number=generate_order_number(created_at, self.rng),
            items=lines,
            payment_method=payment_method,
            customer_id=request.customer_id,
            customer_name=(request.customer_name or "").strip() or WALK_IN_CUSTOMER,
            subtotal=subtotal,
            tax=tax,
            discount=discount,
            total=total,
            status=OrderStatus.PENDING,
            payment_status=payment_status,
            notes=request.notes,
            created_at=created_at,
        )

        # 3) Persist + decrement
        if self.atomic is not None:
            with self.atomic():
                order = self.orders.create(draft)
                self._decrement_stock(lines)
        else:
            order = self.orders.create(draft)
            try:
                self._decrement_stock(lines)
            except Exception as exc:
                self._flag_partial_sale(order, exc)
                raise PersistenceFailure(
                    f"Order {order.order_number} saved but stock was not fully decremented",
                    order_id=order.id,
                ) from exc

        logger.info(
            "order created",
            extra={
                "order_id": order.id,
                "order_number": order.order_number,
                "lines": len(order.items),
                "total": str(order.total),
            },
        )
        return order

    def _validate(self, request: OrderRequest) -> tuple[PaymentMethod, PaymentStatus]:
        if not request.items:
            raise ValidationError("EMPTY_ORDER")
        for item in request.items:
            if isinstance(item.quantity, bool) or not isinstance(item.quantity, int) or item.quantity <= 0:
                raise ValidationError("INVALID_QUANTITY", f"Quantity must be a positive integer: {item.quantity!r}")
        if request.payment_method is None or request.payment_method == "":
            raise ValidationError("PAYMENT_METHOD_REQUIRED")
        try:
            payment_method = PaymentMethod(request.payment_method)
        except ValueError:
            raise ValidationError("INVALID_PAYMENT_METHOD", f"Unknown payment method: {request.payment_method}")
        try:
            payment_status = PaymentStatus(request.payment_status)
        except ValueError:
            raise ValidationError("INVALID_PAYMENT_STATUS", f"Unknown payment status: {request.payment_status}")
        if payment_status is PaymentStatus.REFUNDED:
            raise ValidationError("INVALID_PAYMENT_STATUS", "A new order cannot start as refunded")
        if Decimal(request.tax) < 0 or Decimal(request.discount) < 0:
            raise ValidationError("NEGATIVE_AMOUNT", "Tax and discount must not be negative")
        return payment_method, payment_status

    def _build_lines(self, items: List[LineRequest]) -> List[OrderLine]:
        # quantities already claimed by earlier lines of the same cart
        claimed: Dict[str, int] = {}
        lines: List[OrderLine] = []
        for item in items:
            product = self.products.get(item.product_id)
            if not product.active:
                raise ValidationError("PRODUCT_INACTIVE", f"{product.name} is no longer for sale")
            wanted = claimed.get(product.id, 0) + item.quantity
            if product.stock < wanted:
                raise InsufficientStock(product.name, product.stock, wanted, product_id=product.id)
            claimed[product.id] = wanted
            lines.append(OrderLine(product.id, product.name, product.price, item.quantity))
        return lines

    def _decrement_stock(self, lines: List[OrderLine]) -> None:
        for line in lines:
            self.products.decrement_stock(line.product_id, line.quantity)

    def _flag_partial_sale(self, order: Order, exc: Exception) -> None:
        reason = f"{type(exc).__name__}: {exc}"
        logger.error(
            "stock decrement failed after order was saved; needs reconciliation",
            extra={"order_id": order.id, "order_number": order.order_number, "reason": reason},
        )
        try:
            self.orders.flag_for_reconciliation(order.id, reason)
        except Exception:
            logger.exception("could not flag order %s for reconciliation", order.order_number)
            return
        order.needs_reconciliation = True
