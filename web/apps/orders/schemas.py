"""Pydantic schemas for orders.

This module exposes the request/validation schemas used by the orders API
and the read models used to render orders back to clients. Money values are
``Decimal`` in and out; on the wire they are rendered as strings with two
decimals so clients never see float rounding.
"""

from datetime import date, datetime
from decimal import Decimal
from typing import Annotated, Optional
from uuid import UUID

from pydantic import BaseModel, Field, PlainSerializer, model_validator

from .domain import OrderStatus, PaymentMethod, PaymentStatus


Money = Annotated[Decimal, PlainSerializer(lambda v: f"{v:.2f}", return_type=str, when_used="json")]


class OrderLineIn(BaseModel):
    """Input schema for a single cart line.

    Attributes:
        product_id: Identifier of the product being sold.
        quantity: Positive integer indicating units requested.
    """

    product_id: str = Field(min_length=1, max_length=64)
    quantity: int = Field(gt=0, le=100_000)


class CreateOrderDTO(BaseModel):
    """Schema for creating an order at checkout.

    Attributes:
        items: Cart lines, at least one.
        customer_id: Optional reference to a known customer.
        customer_name: Free text name; "Walk-in Customer" when omitted.
        payment_method: One of cash, card, mobile.
        payment_status: ``pending`` (default) or ``paid`` when the payment
            was already captured at the till.
        tax: Tax amount computed by the till, two decimals at most.
        discount: Discount amount, two decimals at most. Clamped to the
            subtotal by the domain service.
        notes: Optional free text, up to 500 characters.
    """

    items: list[OrderLineIn] = Field(min_length=1)
    customer_id: Optional[UUID] = None
    customer_name: Optional[str] = Field(default=None, max_length=120)
    payment_method: PaymentMethod
    payment_status: PaymentStatus = PaymentStatus.PENDING
    tax: Decimal = Field(default=Decimal("0"), ge=0, max_digits=12, decimal_places=2)
    discount: Decimal = Field(default=Decimal("0"), ge=0, max_digits=12, decimal_places=2)
    notes: Optional[str] = Field(default=None, max_length=500)


class UpdateOrderStatusDTO(BaseModel):
    """Schema for changing the state of an existing order.

    Only state fields can change; totals are frozen at creation.
    """

    status: Optional[OrderStatus] = None
    payment_status: Optional[PaymentStatus] = None

    @model_validator(mode="after")
    def require_one_field(self):
        if self.status is None and self.payment_status is None:
            raise ValueError("Provide status and/or payment_status")
        return self


class OrderFilterDTO(BaseModel):
    """Query-string filters for the order list."""

    status: Optional[OrderStatus] = None
    start_date: Optional[date] = None
    end_date: Optional[date] = None
    customer_id: Optional[UUID] = None
    page: int = Field(default=1, ge=1)
    page_size: int = Field(default=20, ge=1, le=100)


class OrderLineOut(BaseModel):
    product_id: str
    name: str
    price: Money
    quantity: int
    subtotal: Money


class OrderReadDTO(BaseModel):
    """Read model returned by the create, detail, list and status endpoints."""

    id: str
    order_number: str
    customer_id: Optional[str] = None
    customer_name: str
    items: list[OrderLineOut]
    subtotal: Money
    tax: Money
    discount: Money
    total: Money
    status: OrderStatus
    payment_method: PaymentMethod
    payment_status: PaymentStatus
    notes: Optional[str] = None
    needs_reconciliation: bool = False
    created_at: Optional[datetime] = None

    @classmethod
    def from_domain(cls, order) -> "OrderReadDTO":
        return cls(
            id=str(order.id),
            order_number=order.order_number,
            customer_id=(str(order.customer_id) if order.customer_id else None),
            customer_name=order.customer_name,
            items=[
                OrderLineOut(
                    product_id=line.product_id,
                    name=line.name,
                    price=line.price,
                    quantity=line.quantity,
                    subtotal=line.subtotal,
                )
                for line in order.items
            ],
            subtotal=order.subtotal,
            tax=order.tax,
            discount=order.discount,
            total=order.total,
            status=order.status,
            payment_method=order.payment_method,
            payment_status=order.payment_status,
            notes=order.notes,
            needs_reconciliation=order.needs_reconciliation,
            created_at=order.created_at,
        )


class DailySalesReportDTO(BaseModel):
    date: date
    total_orders: int
    total_revenue: Money
    average_order_value: Money
    payment_methods: dict[str, int]
    order_status: dict[str, int]
