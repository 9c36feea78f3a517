import os

# must be set before ``repo`` creates its engine
os.environ["DATABASE_URL"] = "sqlite+pysqlite:///:memory:"

import pytest  # noqa: E402
from fastapi.testclient import TestClient  # noqa: E402

import repo  # noqa: E402
from main import app  # noqa: E402


@pytest.fixture(autouse=True)
def fresh_db():
    repo.init_db()
    yield
    repo.Base.metadata.drop_all(repo.engine)


@pytest.fixture
def api():
    return TestClient(app)


@pytest.fixture
def product(api):
    r = api.post("/products", json={"name": "Espresso Beans", "price": "10.00", "stock": 5})
    assert r.status_code == 201
    return r.json()
