"""API tests for the create-order (checkout) endpoint.

These tests exercise the orders HTTP API against the local catalog tables:
successful checkout, totals, stock decrements, insufficient stock, unknown
products, payload validation, and the all-or-nothing transaction.
"""

import re
import uuid
from decimal import Decimal

import pytest
from django.db import connection

from apps.catalog.models import ProductModel
from apps.catalog.repository import DjangoProductRepository
from apps.orders import providers
from apps.orders.domain import InsufficientStock, OrderService
from apps.orders.models import OrderLineModel, OrderModel
from apps.orders.repository import DjangoOrderRepository

CREATE_URL = "/api/orders/"


@pytest.fixture
def beans(db):
    return ProductModel.objects.create(name="Espresso Beans", price=Decimal("10.00"), stock=5)


@pytest.fixture
def cups(db):
    return ProductModel.objects.create(name="Paper Cups", price=Decimal("5.00"), stock=20)


def _post(client, payload, **headers):
    return client.post(CREATE_URL, data=payload, content_type="application/json", **headers)


@pytest.mark.django_db
def test_create_order_returns_201_with_totals_and_decrements_stock(client, beans):
    payload = {"items": [{"product_id": str(beans.id), "quantity": 2}], "payment_method": "cash", "tax": "1.00"}
    r = _post(client, payload)

    assert r.status_code == 201
    body = r.json()
    assert body["subtotal"] == "20.00"
    assert body["tax"] == "1.00"
    assert body["discount"] == "0.00"
    assert body["total"] == "21.00"
    assert body["status"] == "pending"
    assert body["payment_status"] == "pending"
    assert body["customer_name"] == "Walk-in Customer"
    assert re.fullmatch(r"ORD-\d{8}-\d{4}", body["order_number"])
    assert body["items"] == [
        {"product_id": str(beans.id), "name": "Espresso Beans", "price": "10.00", "quantity": 2, "subtotal": "20.00"}
    ]

    beans.refresh_from_db()
    assert beans.stock == 3
    assert beans.version == 1


@pytest.mark.django_db
def test_create_order_persists_order_row(client, beans, cups):
    """Two lines with tax and discount are stored with the computed totals."""
    payload = {
        "items": [
            {"product_id": str(beans.id), "quantity": 1},
            {"product_id": str(cups.id), "quantity": 3},
        ],
        "payment_method": "card",
        "tax": 1.5,
        "discount": 2,
        "customer_name": "Grace",
        "notes": "table 4",
    }
    r = _post(client, payload)
    assert r.status_code == 201
    number = r.json()["order_number"]

    with connection.cursor() as cur:
        cur.execute(
            "select subtotal, tax, discount, total, payment_method, customer_name from orders where order_number = %s",
            [number],
        )
        row = cur.fetchone()
    assert row is not None
    subtotal, tax, discount, total, method, name = row
    assert Decimal(str(subtotal)) == Decimal("25.00")
    assert Decimal(str(tax)) == Decimal("1.50")
    assert Decimal(str(discount)) == Decimal("2.00")
    assert Decimal(str(total)) == Decimal("24.50")
    assert (method, name) == ("card", "Grace")

    order = OrderModel.objects.get(order_number=number)
    assert order.items.count() == 2
    beans.refresh_from_db()
    cups.refresh_from_db()
    assert (beans.stock, cups.stock) == (4, 17)


@pytest.mark.django_db
def test_create_order_insufficient_stock(client, beans, cups):
    """Returns 422 naming the product and both counts; nothing is written."""
    payload = {
        "items": [
            {"product_id": str(cups.id), "quantity": 1},
            {"product_id": str(beans.id), "quantity": 10},
        ],
        "payment_method": "cash",
    }
    r = _post(client, payload)
    assert r.status_code == 422
    assert r.json() == {
        "detail": "INSUFFICIENT_STOCK",
        "message": "Insufficient stock for Espresso Beans. Available: 5, Requested: 10",
    }
    beans.refresh_from_db()
    cups.refresh_from_db()
    assert (beans.stock, cups.stock) == (5, 20)
    assert OrderModel.objects.count() == 0


@pytest.mark.django_db
def test_create_order_unknown_product(client, beans):
    missing = str(uuid.uuid4())
    payload = {
        "items": [{"product_id": str(beans.id), "quantity": 1}, {"product_id": missing, "quantity": 1}],
        "payment_method": "cash",
    }
    r = _post(client, payload)
    assert r.status_code == 404
    assert r.json()["detail"] == "PRODUCT_NOT_FOUND"
    assert missing in r.json()["message"]
    beans.refresh_from_db()
    assert beans.stock == 5
    assert OrderModel.objects.count() == 0


@pytest.mark.django_db
def test_create_order_malformed_product_id_is_not_found(client):
    r = _post(client, {"items": [{"product_id": "P99", "quantity": 1}], "payment_method": "cash"})
    assert r.status_code == 404
    assert r.json()["detail"] == "PRODUCT_NOT_FOUND"


@pytest.mark.django_db
def test_discount_above_subtotal_is_clamped(client, cups):
    payload = {"items": [{"product_id": str(cups.id), "quantity": 1}], "payment_method": "mobile", "discount": "10.00"}
    r = _post(client, payload)
    assert r.status_code == 201
    body = r.json()
    assert (body["subtotal"], body["discount"], body["total"]) == ("5.00", "5.00", "0.00")


@pytest.mark.django_db
@pytest.mark.parametrize(
    "payload",
    [
        {"items": [], "payment_method": "cash"},
        {"items": [{"product_id": "x", "quantity": 0}], "payment_method": "cash"},
        {"items": [{"product_id": "x", "quantity": 1}]},
        {"items": [{"product_id": "x", "quantity": 1}], "payment_method": "cheque"},
        {"items": [{"product_id": "x", "quantity": 1}], "payment_method": "cash", "tax": "-1"},
        {"items": [{"product_id": "x", "quantity": 1}], "payment_method": "cash", "discount": "0.001"},
        {"items": [{"product_id": "x", "quantity": 1}], "payment_method": "cash", "payment_status": "bogus"},
    ],
)
def test_create_order_validation_error(client, payload):
    """Returns 400 when the payload fails DTO validation."""
    r = _post(client, payload)
    assert r.status_code == 400
    assert r.json()["detail"] == "VALIDATION_ERROR"


@pytest.mark.django_db
def test_refunded_is_not_a_valid_initial_payment_status(client, beans):
    payload = {"items": [{"product_id": str(beans.id), "quantity": 1}], "payment_method": "cash",
               "payment_status": "refunded"}
    r = _post(client, payload)
    assert r.status_code == 400
    assert r.json()["detail"] == "INVALID_PAYMENT_STATUS"


@pytest.mark.django_db
def test_same_request_twice_creates_two_orders(client, beans):
    payload = {"items": [{"product_id": str(beans.id), "quantity": 2}], "payment_method": "cash"}
    r1 = _post(client, payload)
    r2 = _post(client, payload)
    assert r1.status_code == r2.status_code == 201
    assert r1.json()["id"] != r2.json()["id"]
    beans.refresh_from_db()
    assert beans.stock == 1


@pytest.mark.django_db
def test_failed_decrement_rolls_back_the_whole_sale(client, monkeypatch, beans, cups):
    """A decrement failing inside the transaction leaves no order and no stock change."""

    class LosesRace(DjangoProductRepository):
        def decrement_stock(self, product_id, quantity):
            if product_id == str(cups.id):
                raise InsufficientStock("Paper Cups", 0, quantity, product_id=product_id)
            return super().decrement_stock(product_id, quantity)

    from django.db import transaction

    monkeypatch.setattr(
        providers,
        "get_order_service",
        lambda: OrderService(LosesRace(), DjangoOrderRepository(), atomic=transaction.atomic),
    )
    payload = {
        "items": [{"product_id": str(beans.id), "quantity": 1}, {"product_id": str(cups.id), "quantity": 1}],
        "payment_method": "cash",
    }
    r = _post(client, payload)
    assert r.status_code == 422
    beans.refresh_from_db()
    assert beans.stock == 5
    assert OrderModel.objects.count() == 0
    assert OrderLineModel.objects.count() == 0


@pytest.mark.django_db
def test_response_carries_request_id(client, beans):
    payload = {"items": [{"product_id": str(beans.id), "quantity": 1}], "payment_method": "cash"}
    r = _post(client, payload, HTTP_X_REQUEST_ID="till-7-req-1")
    assert r.status_code == 201
    assert r.headers["X-Request-ID"] == "till-7-req-1"


@pytest.mark.django_db
def test_price_change_does_not_touch_existing_orders(client, beans):
    payload = {"items": [{"product_id": str(beans.id), "quantity": 2}], "payment_method": "cash"}
    created = _post(client, payload).json()

    r = client.patch(f"/api/products/{beans.id}/", data={"price": "12.50", "name": "House Blend"},
                     content_type="application/json")
    assert r.status_code == 200

    order = client.get(f"/api/orders/{created['id']}/").json()
    assert order["items"][0]["name"] == "Espresso Beans"
    assert order["items"][0]["price"] == "10.00"
    assert order["total"] == "20.00"

    later = _post(client, {**payload, "items": [{"product_id": str(beans.id), "quantity": 1}]}).json()
    assert later["items"][0]["price"] == "12.50"
    assert later["items"][0]["name"] == "House Blend"


@pytest.mark.django_db
def test_withdrawn_product_cannot_be_sold(client, beans):
    client.delete(f"/api/products/{beans.id}/")
    r = _post(client, {"items": [{"product_id": str(beans.id), "quantity": 1}], "payment_method": "cash"})
    assert r.status_code == 400
    assert r.json()["detail"] == "PRODUCT_INACTIVE"
    beans.refresh_from_db()
    assert beans.stock == 5
    assert OrderModel.objects.count() == 0
