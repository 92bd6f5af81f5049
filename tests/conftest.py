"""Shared fixtures: in-memory stand-ins for the collections and the image bucket."""

import itertools
from datetime import datetime, timezone

import pytest
from fastapi.testclient import TestClient

import auth
import main
from checkout import CheckoutSessionStore
from payments import PaymentCapability
from repositories import PENDING_ORDER_LIMIT


class FakeProductRepository:
    def __init__(self):
        self.docs = {}
        self._ids = itertools.count(1)

    def add(self, name, price, description=None, images=None):
        product_id = f"p{next(self._ids)}"
        self.docs[product_id] = {
            "id": product_id,
            "name": name,
            "price": price,
            "description": description,
            "images": list(images or []),
            "created_at": datetime.now(timezone.utc).isoformat(),
        }
        return self.docs[product_id]

    def list(self, order_by="created_at", limit=None):
        if order_by == "name":
            docs = sorted(self.docs.values(), key=lambda d: d["name"])
        else:
            docs = sorted(self.docs.values(), key=lambda d: d["created_at"], reverse=True)
        return docs[:limit] if limit else docs

    def get(self, product_id):
        doc = self.docs.get(product_id)
        return dict(doc, images=list(doc["images"])) if doc else None

    def create(self, product):
        return self.add(product.name, product.price, product.description, product.images)

    def set_images(self, product_id, images, expected):
        doc = self.docs.get(product_id)
        if doc is None or doc["images"] != list(expected):
            return False
        doc["images"] = list(images)
        return True

    def delete(self, product_id):
        return self.docs.pop(product_id, None) is not None


class FakeOrderRepository:
    def __init__(self):
        self.docs = {}
        self.fail_for = set()
        self._ids = itertools.count(1)

    def create(self, order):
        if order.product_id in self.fail_for:
            raise RuntimeError("insert failed")
        order_id = f"o{next(self._ids)}"
        self.docs[order_id] = {
            **order.model_dump(),
            "id": order_id,
            "created_at": datetime.now(timezone.utc).isoformat(),
        }
        return order_id

    def list_pending(self, limit=PENDING_ORDER_LIMIT):
        pending = [d for d in self.docs.values() if not d["is_completed"]]
        pending.sort(key=lambda d: d["created_at"], reverse=True)
        return pending[:limit]

    def mark_completed(self, order_id):
        if order_id not in self.docs:
            return False
        self.docs[order_id]["is_completed"] = True
        return True


class FakeImageStorage:
    base = "http://testserver/api/images/"

    def __init__(self):
        self.files = {}
        self.deleted = []
        self._ids = itertools.count(1)

    def upload(self, product_id, upload):
        path = f"products/{product_id}/{next(self._ids)}.png"
        self.files[path] = upload
        return self.base + path

    def delete_url(self, url):
        path = url[len(self.base):]
        self.deleted.append(path)
        self.files.pop(path, None)


@pytest.fixture
def products():
    return FakeProductRepository()


@pytest.fixture
def orders():
    return FakeOrderRepository()


@pytest.fixture
def storage():
    return FakeImageStorage()


@pytest.fixture
def ready_payments():
    return PaymentCapability(client_id="test-client")


@pytest.fixture
def store(ready_payments):
    return CheckoutSessionStore(ready_payments)


@pytest.fixture
def client(products, orders, storage, store):
    main.app.dependency_overrides[main.get_product_repo] = lambda: products
    main.app.dependency_overrides[main.get_order_repo] = lambda: orders
    main.app.dependency_overrides[main.get_optional_order_repo] = lambda: orders
    main.app.dependency_overrides[main.get_image_storage] = lambda: storage
    main.app.dependency_overrides[main.get_sessions] = lambda: store
    with TestClient(main.app) as test_client:
        yield test_client
    main.app.dependency_overrides.clear()


@pytest.fixture
def admin_password(monkeypatch):
    monkeypatch.setattr(auth, "ADMIN_USERNAME", "admin")
    monkeypatch.setattr(auth, "ADMIN_PASSWORD_HASH", auth.pwd_context.hash("doughsido"))
    return "doughsido"


@pytest.fixture
def admin_headers(client, admin_password):
    response = client.post("/api/admin/login", json={"username": "admin", "password": admin_password})
    assert response.status_code == 200
    return {"Authorization": f"Bearer {response.json()['token']}"}
