"""API tests for the product catalog: create, list, detail, stock and low-stock."""

import uuid
from decimal import Decimal

import pytest

from apps.catalog.models import ProductModel


def _create(client, **fields):
    payload = {"name": "Espresso Beans", "price": "10.00", "stock": 5, **fields}
    return client.post("/api/products/", data=payload, content_type="application/json")


@pytest.mark.django_db
def test_create_product(client):
    r = _create(client, name="  Paper Cups  ", price=0.5, stock=200, category="supplies", barcode="40123455")
    assert r.status_code == 201
    body = r.json()
    assert body["name"] == "Paper Cups"
    assert body["price"] == "0.50"
    assert (body["stock"], body["version"], body["is_active"]) == (200, 0, True)
    assert ProductModel.objects.filter(pk=body["id"], category="supplies").exists()


@pytest.mark.django_db
@pytest.mark.parametrize(
    "fields",
    [{"name": " x "}, {"price": "-1"}, {"price": "1.001"}, {"stock": -3}, {"barcode": "123"}],
)
def test_create_product_validation(client, fields):
    r = _create(client, **fields)
    assert r.status_code == 400
    assert r.json()["detail"] == "VALIDATION_ERROR"


@pytest.mark.django_db
def test_list_products_search_and_filters(client):
    ProductModel.objects.create(name="Espresso Beans", price=Decimal("10"), stock=5, category="coffee")
    ProductModel.objects.create(name="Decaf Beans", price=Decimal("9"), stock=5, category="coffee", is_active=False)
    ProductModel.objects.create(name="Paper Cups", price=Decimal("5"), stock=20, barcode="40123455")

    r = client.get("/api/products/")
    assert r.status_code == 200
    assert [p["name"] for p in r.json()["results"]] == ["Decaf Beans", "Espresso Beans", "Paper Cups"]

    r = client.get("/api/products/", {"q": "beans", "active": "true"})
    assert [p["name"] for p in r.json()["results"]] == ["Espresso Beans"]

    r = client.get("/api/products/", {"q": "40123455"})
    assert [p["name"] for p in r.json()["results"]] == ["Paper Cups"]

    r = client.get("/api/products/", {"category": "coffee", "page_size": 1})
    assert r.json()["count"] == 2
    assert len(r.json()["results"]) == 1


@pytest.mark.django_db
def test_product_detail(client):
    p = ProductModel.objects.create(name="Oat Milk", price=Decimal("3.20"), stock=4)
    r = client.get(f"/api/products/{p.id}/")
    assert r.status_code == 200
    assert (r.json()["name"], r.json()["price"]) == ("Oat Milk", "3.20")

    r = client.get(f"/api/products/{uuid.uuid4()}/")
    assert r.status_code == 404


@pytest.mark.django_db
def test_stock_adjustments(client):
    p = ProductModel.objects.create(name="Oat Milk", price=Decimal("3.20"), stock=4)
    url = f"/api/products/{p.id}/stock/"

    r = client.patch(url, data={"operation": "add", "stock": 6, "reason": "delivery"},
                     content_type="application/json")
    assert r.status_code == 200
    assert (r.json()["stock"], r.json()["version"]) == (10, 1)

    r = client.patch(url, data={"operation": "set", "stock": 3, "expected_version": 1},
                     content_type="application/json")
    assert (r.status_code, r.json()["stock"]) == (200, 3)

    r = client.patch(url, data={"operation": "subtract", "stock": 1}, content_type="application/json")
    assert (r.status_code, r.json()["stock"]) == (200, 2)


@pytest.mark.django_db
def test_stock_adjustment_stale_version(client):
    p = ProductModel.objects.create(name="Oat Milk", price=Decimal("3.20"), stock=4, version=2)
    r = client.patch(f"/api/products/{p.id}/stock/", data={"stock": 9, "expected_version": 1},
                     content_type="application/json")
    assert r.status_code == 409
    assert r.json()["detail"] == "STALE_PRODUCT"
    p.refresh_from_db()
    assert p.stock == 4


@pytest.mark.django_db
def test_stock_subtract_below_zero(client):
    p = ProductModel.objects.create(name="Oat Milk", price=Decimal("3.20"), stock=4)
    r = client.patch(f"/api/products/{p.id}/stock/", data={"operation": "subtract", "stock": 5},
                     content_type="application/json")
    assert r.status_code == 422
    assert r.json()["message"] == "Insufficient stock for Oat Milk. Available: 4, Requested: 5"


@pytest.mark.django_db
def test_stock_adjustment_validation_and_not_found(client):
    p = ProductModel.objects.create(name="Oat Milk", price=Decimal("3.20"), stock=4)
    r = client.patch(f"/api/products/{p.id}/stock/", data={"stock": -1}, content_type="application/json")
    assert r.status_code == 400
    r = client.patch(f"/api/products/{uuid.uuid4()}/stock/", data={"stock": 1}, content_type="application/json")
    assert r.status_code == 404


@pytest.mark.django_db
def test_low_stock(client, settings):
    settings.LOW_STOCK_THRESHOLD = 5
    ProductModel.objects.create(name="Oat Milk", price=Decimal("3"), stock=4)
    ProductModel.objects.create(name="Almond Milk", price=Decimal("3"), stock=4)
    ProductModel.objects.create(name="Sugar", price=Decimal("1"), stock=0)
    ProductModel.objects.create(name="Old Syrup", price=Decimal("1"), stock=0, is_active=False)
    ProductModel.objects.create(name="Cups", price=Decimal("1"), stock=50)

    r = client.get("/api/products/low-stock/")
    assert r.status_code == 200
    assert r.json()["threshold"] == 5
    assert [p["name"] for p in r.json()["results"]] == ["Sugar", "Almond Milk", "Oat Milk"]

    r = client.get("/api/products/low-stock/", {"threshold": 0})
    assert [p["name"] for p in r.json()["results"]] == ["Sugar"]

    r = client.get("/api/products/low-stock/", {"threshold": "many"})
    assert r.status_code == 400


@pytest.mark.django_db
def test_update_product_details(client):
    p = ProductModel.objects.create(name="Oat Milk", price=Decimal("3.20"), stock=4, category="dairy")
    r = client.patch(f"/api/products/{p.id}/", data={"price": "3.60", "name": " Oat Drink "},
                     content_type="application/json")
    assert r.status_code == 200
    body = r.json()
    assert (body["name"], body["price"], body["category"]) == ("Oat Drink", "3.60", "dairy")
    assert (body["stock"], body["version"]) == (4, 0)

    r = client.put(f"/api/products/{p.id}/", data={"category": "plant", "is_active": False},
                   content_type="application/json")
    assert r.status_code == 200
    p.refresh_from_db()
    assert (p.category, p.is_active) == ("plant", False)


@pytest.mark.django_db
@pytest.mark.parametrize("payload", [{}, {"price": "-1"}, {"name": " x "}, {"price": "1.999"}])
def test_update_product_validation(client, payload):
    p = ProductModel.objects.create(name="Oat Milk", price=Decimal("3.20"), stock=4)
    r = client.patch(f"/api/products/{p.id}/", data=payload, content_type="application/json")
    assert r.status_code == 400
    p.refresh_from_db()
    assert (p.name, p.price) == ("Oat Milk", Decimal("3.20"))


@pytest.mark.django_db
def test_update_unknown_product(client):
    r = client.patch(f"/api/products/{uuid.uuid4()}/", data={"price": "1.00"}, content_type="application/json")
    assert r.status_code == 404


@pytest.mark.django_db
def test_delete_withdraws_product(client):
    p = ProductModel.objects.create(name="Old Syrup", price=Decimal("1"), stock=3)
    r = client.delete(f"/api/products/{p.id}/")
    assert r.status_code == 204
    p.refresh_from_db()
    assert p.is_active is False

    r = client.get("/api/products/", {"active": "true"})
    assert r.json()["count"] == 0
    assert client.delete(f"/api/products/{uuid.uuid4()}/").status_code == 404
