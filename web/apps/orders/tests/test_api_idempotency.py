from decimal import Decimal

import pytest
from django.db import OperationalError

from apps.catalog.models import ProductModel
from apps.orders import providers
from apps.orders.idempotency import request_hash
from apps.orders.models import IdempotencyKey, OrderModel


@pytest.fixture
def beans(db):
    return ProductModel.objects.create(name="Espresso Beans", price=Decimal("10.00"), stock=5)


def _checkout(client, payload, key):
    return client.post(
        "/api/orders/", data=payload, content_type="application/json", HTTP_IDEMPOTENCY_KEY=key
    )


@pytest.mark.django_db
def test_idempotency_replay_same_payload(client, beans):
    """A retried checkout replays the first response and sells only once."""
    payload = {"items": [{"product_id": str(beans.id), "quantity": 2}], "payment_method": "cash"}

    r1 = _checkout(client, payload, "till-1-sale-42")
    assert r1.status_code == 201
    r2 = _checkout(client, payload, "till-1-sale-42")
    assert r2.status_code == 201
    assert r2.headers.get("Idempotent-Replay") == "true"
    assert r1.json() == r2.json()

    assert OrderModel.objects.count() == 1
    beans.refresh_from_db()
    assert beans.stock == 3
    rec = IdempotencyKey.objects.get(key="till-1-sale-42")
    assert str(rec.order_id) == r1.json()["id"]


@pytest.mark.django_db
def test_idempotency_conflict_different_payload(client, beans):
    """Reusing the key with another cart returns 409 IDEMPOTENCY_CONFLICT."""
    _checkout(client, {"items": [{"product_id": str(beans.id), "quantity": 1}], "payment_method": "cash"}, "k-1")
    r = _checkout(client, {"items": [{"product_id": str(beans.id), "quantity": 2}], "payment_method": "cash"}, "k-1")
    assert r.status_code == 409
    assert r.json()["detail"] == "IDEMPOTENCY_CONFLICT"
    beans.refresh_from_db()
    assert beans.stock == 4


@pytest.mark.django_db
def test_idempotency_replays_business_errors(client, beans):
    """A rejected sale is replayed as rejected even after stock is added."""
    payload = {"items": [{"product_id": str(beans.id), "quantity": 9}], "payment_method": "card"}
    r1 = _checkout(client, payload, "k-short")
    assert r1.status_code == 422

    ProductModel.objects.filter(pk=beans.pk).update(stock=50)
    r2 = _checkout(client, payload, "k-short")
    assert r2.status_code == 422
    assert r2.headers.get("Idempotent-Replay") == "true"
    assert r2.json() == r1.json()
    assert OrderModel.objects.count() == 0


@pytest.mark.django_db
def test_requests_without_key_are_not_deduplicated(client, beans):
    payload = {"items": [{"product_id": str(beans.id), "quantity": 1}], "payment_method": "cash"}
    client.post("/api/orders/", data=payload, content_type="application/json")
    client.post("/api/orders/", data=payload, content_type="application/json")
    assert OrderModel.objects.count() == 2
    assert IdempotencyKey.objects.count() == 0


def test_request_hash_ignores_key_order():
    a = {"payment_method": "cash", "items": [{"product_id": "p", "quantity": 1}]}
    b = {"items": [{"quantity": 1, "product_id": "p"}], "payment_method": "cash"}
    assert request_hash(a) == request_hash(b)
    assert request_hash(a) != request_hash({**a, "tax": "1.00"})


@pytest.mark.django_db
def test_unexpected_failure_releases_the_key(client, beans, monkeypatch):
    """A crash mid-checkout is not replayed as a sale; the retry is processed."""
    real = providers.get_order_service

    class BrokenService:
        def create_order(self, request):
            raise OperationalError("connection lost")

    monkeypatch.setattr(providers, "get_order_service", lambda: BrokenService())
    payload = {"items": [{"product_id": str(beans.id), "quantity": 1}], "payment_method": "cash"}

    r1 = _checkout(client, payload, "k-crash")
    assert r1.status_code == 503
    assert r1.json()["detail"] == "INTERNAL_ERROR"
    assert not IdempotencyKey.objects.filter(key="k-crash").exists()

    monkeypatch.setattr(providers, "get_order_service", real)
    r2 = _checkout(client, payload, "k-crash")
    assert r2.status_code == 201
    assert "Idempotent-Replay" not in r2.headers
    assert OrderModel.objects.count() == 1


@pytest.mark.django_db
def test_retry_while_first_request_runs_is_rejected(client, beans):
    payload = {"items": [{"product_id": str(beans.id), "quantity": 1}], "payment_method": "cash"}
    IdempotencyKey.objects.create(key="k-busy", request_hash=request_hash(payload))

    r = _checkout(client, payload, "k-busy")
    assert r.status_code == 409
    assert r.json() == {"detail": "IDEMPOTENCY_IN_PROGRESS"}
    assert OrderModel.objects.count() == 0
    beans.refresh_from_db()
    assert beans.stock == 5
