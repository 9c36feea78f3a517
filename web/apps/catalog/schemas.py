"""Pydantic schemas for the product catalog API."""

from datetime import datetime
from decimal import Decimal
from typing import Literal, Optional

from pydantic import BaseModel, Field, HttpUrl, field_validator, model_validator

from apps.orders.schemas import Money


class ProductIn(BaseModel):
    """Input schema for creating a product.

    Attributes:
        name: 2-100 characters, surrounding whitespace stripped.
        price: Non-negative unit price with at most two decimals.
        stock: Initial units on hand.
        barcode: Optional, 8-20 characters when given.
    """

    name: str = Field(min_length=2, max_length=100)
    description: str = Field(default="", max_length=1000)
    price: Decimal = Field(ge=0, max_digits=10, decimal_places=2)
    stock: int = Field(ge=0, le=999_999)
    category: str = Field(default="", max_length=64)
    barcode: Optional[str] = Field(default=None, min_length=8, max_length=20)
    image: Optional[HttpUrl] = None
    is_active: bool = True

    @field_validator("name")
    @classmethod
    def strip_name(cls, v: str) -> str:
        v2 = v.strip()
        if len(v2) < 2:
            raise ValueError("Product name must be at least 2 characters")
        return v2


class ProductUpdateDTO(BaseModel):
    """Partial update of product details.

    Stock is not part of it; stock moves through ``StockAdjustDTO`` so every
    change is versioned. Past order lines keep the name and price they were
    sold with.
    """

    name: Optional[str] = Field(default=None, min_length=2, max_length=100)
    description: Optional[str] = Field(default=None, max_length=1000)
    price: Optional[Decimal] = Field(default=None, ge=0, max_digits=10, decimal_places=2)
    category: Optional[str] = Field(default=None, max_length=64)
    barcode: Optional[str] = Field(default=None, max_length=20)
    image: Optional[HttpUrl] = None
    is_active: Optional[bool] = None

    @field_validator("name")
    @classmethod
    def strip_name(cls, v: Optional[str]) -> Optional[str]:
        if v is None:
            return v
        v2 = v.strip()
        if len(v2) < 2:
            raise ValueError("Product name must be at least 2 characters")
        return v2

    @model_validator(mode="after")
    def require_one_field(self):
        if not self.model_fields_set:
            raise ValueError("Provide at least one field to update")
        return self


class StockAdjustDTO(BaseModel):
    """Manual stock adjustment.

    ``set`` writes ``stock`` as the new level; ``add`` and ``subtract``
    move the level by ``stock`` units. ``expected_version`` makes the write
    fail with 409 when someone else changed the product first.
    """

    operation: Literal["set", "add", "subtract"] = "set"
    stock: int = Field(ge=0, le=999_999)
    expected_version: Optional[int] = Field(default=None, ge=0)
    reason: Optional[str] = Field(default=None, max_length=200)


class ProductFilterDTO(BaseModel):
    q: Optional[str] = Field(default=None, max_length=100)
    category: Optional[str] = None
    active: Optional[bool] = None
    page: int = Field(default=1, ge=1)
    page_size: int = Field(default=50, ge=1, le=200)


class ProductOut(BaseModel):
    id: str
    name: str
    description: str = ""
    price: Money
    stock: int
    category: str = ""
    barcode: str = ""
    image: str = ""
    is_active: bool = True
    version: int = 0
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @classmethod
    def from_model(cls, obj) -> "ProductOut":
        return cls(
            id=str(obj.id),
            name=obj.name,
            description=obj.description,
            price=obj.price,
            stock=obj.stock,
            category=obj.category,
            barcode=obj.barcode,
            image=obj.image,
            is_active=obj.is_active,
            version=obj.version,
            created_at=obj.created_at,
            updated_at=obj.updated_at,
        )
