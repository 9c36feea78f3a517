"""Inventory service API built with FastAPI.

This service owns product stock when the POS web app runs with
``USE_HTTP_INVENTORY``. It exposes product creation and lookup, absolute
stock writes with an optional version check, and a conditional decrement
used at checkout. Validation is performed with Pydantic models; persistence
and locking live in ``repo.InventoryRepo``.
"""

import logging
import time
import uuid
from decimal import Decimal
from typing import Optional

from fastapi import FastAPI, HTTPException, Request
from pydantic import BaseModel, ConfigDict, Field
from pythonjsonlogger.json import JsonFormatter
from sqlalchemy import text

from repo import (
    InventoryRepo,
    OutOfStockError,
    ProductNotFoundError,
    VersionConflictError,
    engine,
    init_db,
)

app = FastAPI(title="Inventory Service")

# logger JSON
logger = logging.getLogger("inventory")
if not logger.handlers:
    h = logging.StreamHandler()
    h.setFormatter(JsonFormatter("%(asctime)s %(levelname)s %(name)s %(message)s %(request_id)s"))
    logger.addHandler(h)
    logger.setLevel(logging.INFO)


@app.on_event("startup")
def _startup_db():
    # wait briefly until the database accepts connections
    deadline = time.time() + 30
    while True:
        try:
            with engine.connect() as conn:
                conn.execute(text("select 1"))
            break
        except Exception:
            if time.time() > deadline:
                raise
            time.sleep(1)
    init_db()


class ProductIn(BaseModel):
    """Request body for creating a product.

    Attributes:
        id: Optional id, so the POS catalog and this service can share ids.
        name: Display name.
        price: Non-negative unit price.
        stock: Initial units on hand.
    """

    id: Optional[uuid.UUID] = None
    name: str = Field(min_length=2, max_length=100)
    price: Decimal = Field(ge=0, max_digits=10, decimal_places=2)
    stock: int = Field(ge=0)


class ProductOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    name: str
    price: Decimal
    stock: int
    version: int


class StockWrite(BaseModel):
    """Absolute stock write; ``expected_version`` enables the optimistic check."""

    stock: int = Field(ge=0)
    expected_version: Optional[int] = Field(default=None, ge=0)


class DecrementIn(BaseModel):
    quantity: int = Field(gt=0)


def _not_found(product_id: str) -> HTTPException:
    return HTTPException(status_code=404, detail={"detail": "NOT_FOUND", "id": product_id})


@app.get("/health")
def health():
    """Liveness/health probe endpoint."""
    return {"ok": True}


@app.post("/products", response_model=ProductOut, status_code=201)
def create_product(req: ProductIn):
    obj = InventoryRepo().create(
        name=req.name, price=req.price, stock=req.stock, product_id=(str(req.id) if req.id else None)
    )
    logger.info("product created", extra={"product_id": obj.id, "stock": obj.stock})
    return ProductOut.model_validate(obj)


@app.get("/products/{product_id}", response_model=ProductOut)
def get_product(product_id: str):
    try:
        return ProductOut.model_validate(InventoryRepo().get(product_id))
    except ProductNotFoundError:
        raise _not_found(product_id)


@app.put("/products/{product_id}/stock", response_model=ProductOut)
def set_stock(product_id: str, req: StockWrite):
    """Overwrite the stock level.

    Raises:
        HTTPException: 404 for an unknown product; 409 with the current
            ``version`` when ``expected_version`` is stale.
    """
    try:
        obj = InventoryRepo().set_stock(product_id, req.stock, req.expected_version)
    except ProductNotFoundError:
        raise _not_found(product_id)
    except VersionConflictError as e:
        raise HTTPException(status_code=409, detail={"detail": "STALE_PRODUCT", "version": e.current})
    return ProductOut.model_validate(obj)


@app.post("/products/{product_id}/decrement", response_model=ProductOut)
def decrement(product_id: str, req: DecrementIn):
    """Decrement stock for one product if enough units remain.

    Raises:
        HTTPException: 404 for an unknown product; 422 with ``name`` and
            ``available`` when stock is insufficient (nothing changes).
    """
    try:
        obj = InventoryRepo().decrement(product_id, req.quantity)
    except ProductNotFoundError:
        raise _not_found(product_id)
    except OutOfStockError as e:
        logger.info(
            "decrement rejected",
            extra={"product_id": product_id, "available": e.available, "requested": e.requested},
        )
        raise HTTPException(
            status_code=422,
            detail={"detail": "INSUFFICIENT_STOCK", "name": e.name, "available": e.available},
        )
    return ProductOut.model_validate(obj)


@app.middleware("http")
async def add_request_id(request: Request, call_next):
    rid = request.headers.get("X-Request-ID") or str(uuid.uuid4())
    request.state.request_id = rid
    try:
        response = await call_next(request)
    finally:
        logger.info("request handled", extra={"request_id": rid, "path": request.url.path, "method": request.method})
    response.headers["X-Request-ID"] = rid
    return response
