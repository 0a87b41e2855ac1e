"""
Shared test fixtures.

Provides:
- In-memory SQLite database (StaticPool) built from Base.metadata
- Fake provider HTTP API served through httpx.MockTransport
- Provider registry, token vault and connection service wired to both
- FastAPI TestClient with dependency overrides
- Webhook signing helpers for each provider
"""

import base64
import hashlib
import hmac
import json
import os
from datetime import datetime, timedelta
from typing import Any, Dict, Optional

import httpx
import pytest
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

# Set test environment before importing app modules
TEST_ENCRYPTION_KEY = "0123456789abcdef" * 4
SQUARE_SIGNATURE_KEY = "square-signature-key"
SHOPIFY_WEBHOOK_SECRET = "shopify-webhook-secret"
LIGHTSPEED_WEBHOOK_SECRET = "lightspeed-webhook-secret"
APP_BASE_URL = "https://pos.test"

os.environ["ENVIRONMENT"] = "test"
os.environ["DATABASE_URL"] = "sqlite://"
os.environ["APP_BASE_URL"] = APP_BASE_URL
os.environ["ENCRYPTION_KEY"] = TEST_ENCRYPTION_KEY
os.environ["SQUARE_APP_ID"] = "sq0idp-test-app"
os.environ["SQUARE_APP_SECRET"] = "sq0csp-test-secret"
os.environ["SQUARE_WEBHOOK_SIGNATURE_KEY"] = SQUARE_SIGNATURE_KEY
os.environ["SHOPIFY_CLIENT_ID"] = "shopify-client-id"
os.environ["SHOPIFY_CLIENT_SECRET"] = "shopify-client-secret"
os.environ["SHOPIFY_WEBHOOK_SECRET"] = SHOPIFY_WEBHOOK_SECRET
os.environ["LIGHTSPEED_CLIENT_ID"] = "lightspeed-client-id"
os.environ["LIGHTSPEED_CLIENT_SECRET"] = "lightspeed-client-secret"
os.environ["LIGHTSPEED_WEBHOOK_SECRET"] = LIGHTSPEED_WEBHOOK_SECRET
os.environ["WEBHOOK_MONITOR_ENABLED"] = "false"

from database import Base, build_engine, get_db  # noqa: E402
import db_models  # noqa: E402,F401
from db_models import Store  # noqa: E402
from services.connection_service import ConnectionService  # noqa: E402
from services.integrations.registry import build_registry  # noqa: E402
from services.integrations.types import POSProvider  # noqa: E402
from services.token_vault import TokenVault  # noqa: E402
from settings import get_settings  # noqa: E402

DEMO_STORE_ID = "store_demo123456"


# =============================================================================
# Fake provider API
# =============================================================================

class FakeProviderAPI:
    """
    Canned responses keyed on (method, path), host-agnostic.

    A route body may be an exception instance, which is raised from the
    transport to simulate network failures.
    """

    def __init__(self):
        self.routes: Dict[tuple, tuple] = {}
        self.requests = []

    def add(self, method: str, path: str, body: Any = None, status_code: int = 200) -> None:
        self.routes[(method.upper(), path)] = (status_code, body)

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        route = self.routes.get((request.method, request.url.path))
        if route is None:
            return httpx.Response(404, json={"errors": [{"code": "NOT_FOUND"}]})
        status_code, body = route
        if isinstance(body, Exception):
            raise body
        return httpx.Response(status_code, json=body if body is not None else {})

    @property
    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handler)

    def calls(self, method: str, path: str):
        return [r for r in self.requests if r.method == method.upper() and r.url.path == path]


# =============================================================================
# Signing helpers
# =============================================================================

def sign_square(notification_url: str, body: bytes, key: str = SQUARE_SIGNATURE_KEY) -> str:
    digest = hmac.new(key.encode(), notification_url.encode() + body, hashlib.sha256).digest()
    return base64.b64encode(digest).decode()


def sign_shopify(body: bytes, secret: str = SHOPIFY_WEBHOOK_SECRET) -> str:
    digest = hmac.new(secret.encode(), body, hashlib.sha256).digest()
    return base64.b64encode(digest).decode()


def sign_lightspeed(body: bytes, secret: str = LIGHTSPEED_WEBHOOK_SECRET) -> str:
    return hmac.new(secret.encode(), body, hashlib.sha256).hexdigest()


def to_body(payload: Dict[str, Any]) -> bytes:
    return json.dumps(payload).encode("utf-8")


# =============================================================================
# Payload factories
# =============================================================================

def square_payment_event(
    event_id: str = "evt_square_001",
    status: str = "COMPLETED",
    order_id: Optional[str] = "ORDER_001",
    location_id: Optional[str] = "LOC_001",
    merchant_id: str = "MERCHANT_001",
    event_type: str = "payment.updated"
) -> Dict[str, Any]:
    payment = {
        "id": "PAYMENT_001",
        "status": status,
        "location_id": location_id,
        "amount_money": {"amount": 2599, "currency": "USD"},
    }
    if order_id:
        payment["order_id"] = order_id
    return {
        "merchant_id": merchant_id,
        "type": event_type,
        "event_id": event_id,
        "created_at": "2026-10-01T12:00:00Z",
        "data": {"type": "payment", "id": "PAYMENT_001", "object": {"payment": payment}},
    }


def square_order_response(order_id: str = "ORDER_001") -> Dict[str, Any]:
    return {
        "order": {
            "id": order_id,
            "location_id": "LOC_001",
            "created_at": "2026-10-01T11:59:00Z",
            "total_money": {"amount": 2599, "currency": "USD"},
            "line_items": [
                {"name": "Silk Scarf", "quantity": "1", "total_money": {"amount": 1999, "currency": "USD"}},
                {"name": "Gift Wrap", "quantity": "2", "total_money": {"amount": 600, "currency": "USD"}},
            ],
        }
    }


# =============================================================================
# Database Fixtures
# =============================================================================

@pytest.fixture
def db_session():
    engine = build_engine("sqlite://", poolclass=StaticPool)
    Base.metadata.create_all(bind=engine)
    TestingSession = sessionmaker(autocommit=False, autoflush=False, bind=engine)
    session = TestingSession()
    try:
        yield session
    finally:
        session.close()
        Base.metadata.drop_all(bind=engine)
        engine.dispose()


def create_store(db, name: str, public_id: Optional[str] = None) -> Store:
    """Seed a store row; public ids are generated when not given"""
    store = Store(public_id=public_id, name=name) if public_id else Store(name=name)
    db.add(store)
    db.commit()
    db.refresh(store)
    return store


@pytest.fixture
def store(db_session):
    return create_store(db_session, "Demo Boutique", public_id=DEMO_STORE_ID)


# =============================================================================
# Service Fixtures
# =============================================================================

@pytest.fixture
def settings():
    return get_settings()


@pytest.fixture
def fake_api():
    return FakeProviderAPI()


@pytest.fixture
def vault():
    return TokenVault.from_hex(TEST_ENCRYPTION_KEY)


@pytest.fixture
def registry(settings, fake_api):
    return build_registry(settings, transport=fake_api.transport)


@pytest.fixture
def connections(db_session, registry, vault):
    return ConnectionService(db_session, registry, vault)


@pytest.fixture
def square_connection(connections, store):
    return connections.upsert(
        store.id,
        POSProvider.SQUARE,
        "sq-access-token",
        merchant_id="MERCHANT_001",
        location_id="LOC_001",
        refresh_token="sq-refresh-token",
        token_expires_at=datetime.utcnow() + timedelta(days=20),
        metadata={"businessName": "Demo Boutique"}
    )


# =============================================================================
# App Fixtures
# =============================================================================

@pytest.fixture
def client(db_session, registry, vault):
    """TestClient without startup events; state and DB are injected."""
    from fastapi.testclient import TestClient
    from main import app

    def override_get_db():
        yield db_session

    app.state.provider_registry = registry
    app.state.token_vault = vault
    app.dependency_overrides[get_db] = override_get_db
    try:
        yield TestClient(app, raise_server_exceptions=False)
    finally:
        app.dependency_overrides.clear()
