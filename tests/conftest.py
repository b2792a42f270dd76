# tests/conftest.py
"""
Fixtures for the payment service tests.

- env is set before the package is imported (settings are read at import)
- SQLite in-memory engine with StaticPool stands in for Postgres
- the payment gateway is an httpx.MockTransport backed by FakeGateway
- Kafka publication is replaced by a list recorder
"""
from __future__ import annotations

import os

os.environ["POSTGRES_DSN"] = "sqlite://"
os.environ["KAFKA_BOOTSTRAP"] = ""
os.environ["PROVIDER_BASE_URL"] = "https://gateway.test"
os.environ["PROVIDER_SECRET_KEY"] = "sk_test_123"
os.environ["PROVIDER_WEBHOOK_SECRET"] = "whsec_test_123"
os.environ["JWT_SECRET"] = "test-jwt-secret"
os.environ["BASE_URL"] = "https://shop.test"

import json
import re
from decimal import Decimal
from typing import Optional

import httpx
import jwt
import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from storefront_payments.api.deps import get_db, get_provider, get_publisher
from storefront_payments.core import signature
from storefront_payments.db.models import Product
from storefront_payments.db.session import Base
from storefront_payments.db.store import DocumentStore
from storefront_payments.main import app
from storefront_payments.services.provider import OperatorCache, ProviderClient
from storefront_payments.services.reconciliation import Reconciler

WEBHOOK_SECRET = os.environ["PROVIDER_WEBHOOK_SECRET"]
TNM_REF = "20be6c20-adeb-4b5b-a7ba-0769820df4fb"
AIRTEL_REF = "27494cb5-ba9e-437f-a114-4e7a7686bcca"

OPERATORS = [
    {"id": 1, "name": "TNM Mpamba", "short_code": "tnm", "ref_id": TNM_REF},
    {"id": 2, "name": "Airtel Money", "short_code": "airtel", "ref_id": AIRTEL_REF},
]

VERIFY_PATH = re.compile(r"^/mobile-money/payments/(?P<charge_id>[^/]+)/verify$")


def charge_data(charge_id: str, reference: Optional[str] = None, status: str = "success",
                amount=5000, currency: str = "MWK", **extra) -> dict:
    """A verify ``data`` object shaped like the gateway's."""
    data = {
        "charge_id": charge_id,
        "ref_id": f"ref_{charge_id}",
        "status": status,
        "amount": amount,
        "currency": currency,
        "mobile": "0991234567",
        "mobile_money": {"name": "Airtel Money", "ref_id": AIRTEL_REF},
        "completed_at": "2026-10-19T10:00:00Z",
    }
    if reference:
        data["tx_ref"] = reference
    data.update(extra)
    return data


class FakeGateway:
    """Programmable stand-in for the mobile-money gateway."""

    def __init__(self):
        self.charges: dict[str, dict] = {}
        self.next_charge_id = "chg_1"
        self.init_error = None      # int status or "timeout"
        self.verify_error = None    # int status or "timeout"
        self.on_initialize = None   # called before the initialize response is returned
        self.requests: list[httpx.Request] = []

    def calls(self, method: str, path: str) -> list[httpx.Request]:
        return [r for r in self.requests if r.method == method and r.url.path == path]

    def last_json(self, method: str, path: str) -> dict:
        return json.loads(self.calls(method, path)[-1].content)

    @staticmethod
    def _fail(error, request):
        if error == "timeout":
            raise httpx.ReadTimeout("timed out", request=request)
        return httpx.Response(error, json={"status": "failed", "message": "rejected"})

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        path = request.url.path
        if request.method == "GET" and path == "/mobile-money":
            return httpx.Response(200, json={"status": "success", "data": OPERATORS})
        if request.method == "POST" and path == "/mobile-money/payments/initialize":
            if self.init_error is not None:
                return self._fail(self.init_error, request)
            if self.on_initialize is not None:
                self.on_initialize(self.next_charge_id)
            return httpx.Response(200, json={
                "status": "success",
                "message": "Payment initiated",
                "data": {"charge_id": self.next_charge_id, "status": "pending"},
            })
        m = VERIFY_PATH.match(path)
        if request.method == "GET" and m:
            if self.verify_error is not None:
                return self._fail(self.verify_error, request)
            data = self.charges.get(m.group("charge_id"))
            if data is None:
                return httpx.Response(404, json={"status": "failed", "message": "Charge not found"})
            return httpx.Response(200, json={"status": "success", "message": "Verified", "data": data})
        return httpx.Response(404, json={"message": f"no route {request.method} {path}"})


# =========================
# Database
# =========================
@pytest.fixture()
def engine():
    eng = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(eng)
    yield eng
    Base.metadata.drop_all(eng)
    eng.dispose()


@pytest.fixture()
def db(engine):
    session = sessionmaker(bind=engine, autoflush=False, autocommit=False)()
    yield session
    session.close()


@pytest.fixture()
def store(db):
    return DocumentStore(db)


@pytest.fixture()
def add_product(db):
    def _add(product_id: str, stock: Optional[int], price: str = "2500.00") -> Product:
        product = Product(id=product_id, name=product_id, price=Decimal(price), currency="MWK", stock=stock)
        db.add(product)
        db.commit()
        return product
    return _add


@pytest.fixture()
def stock_of(db):
    def _stock(product_id: str) -> Optional[int]:
        db.expire_all()
        return db.get(Product, product_id).stock
    return _stock


# =========================
# Gateway / provider
# =========================
@pytest.fixture()
def gateway():
    return FakeGateway()


@pytest.fixture()
def provider(gateway):
    return ProviderClient(
        base_url="https://gateway.test",
        secret_key="sk_test_123",
        timeout=5,
        cache=OperatorCache(ttl_seconds=60),
        transport=httpx.MockTransport(gateway.handler),
    )


@pytest.fixture()
def events():
    return []


@pytest.fixture()
def reconciler(store, events):
    return Reconciler(store, publish=events.append)


# =========================
# HTTP client
# =========================
@pytest.fixture()
def client(db, provider, events):
    def _get_db():
        yield db

    app.dependency_overrides[get_db] = _get_db
    app.dependency_overrides[get_provider] = lambda: provider
    app.dependency_overrides[get_publisher] = lambda: events.append
    try:
        yield TestClient(app)
    finally:
        app.dependency_overrides.clear()


@pytest.fixture()
def auth_headers():
    def _headers(user_id: str = "user_1") -> dict:
        token = jwt.encode({"sub": user_id, "type": "access"}, os.environ["JWT_SECRET"], algorithm="HS256")
        return {"Authorization": f"Bearer {token}"}
    return _headers


@pytest.fixture()
def signed():
    """Build (body, headers) for a webhook delivery signed with the test secret."""
    def _signed(payload: dict, secret: str = WEBHOOK_SECRET):
        body = json.dumps(payload).encode("utf-8")
        return body, {"Signature": signature.compute_signature(body, secret), "Content-Type": "application/json"}
    return _signed
