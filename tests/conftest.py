"""Shared fixtures: in-memory database, gateway config, fake Redis and app client."""

import os

os.environ.setdefault("POSTGRES_DSN", "sqlite://")
os.environ.setdefault("API_KEY", "test-api-key")
os.environ.setdefault("WFP_MERCHANT_ACCOUNT", "test_merchant")
os.environ.setdefault("WFP_SECRET_KEY", "test-secret")
os.environ.setdefault("WFP_MERCHANT_DOMAIN", "shop.example")
os.environ.setdefault("APP_BASE_URL", "https://pay.example")
os.environ.setdefault("REDIS_URL", "redis://localhost:6399/0")
os.environ.setdefault("OTEL_EXPORTER_OTLP_ENDPOINT", "")

import httpx
import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from checkoutflow.common.config import GatewayConfig
from checkoutflow.common.db import Base
from checkoutflow.common.signature import WEBHOOK_FIELDS, ordered_values, sign
from checkoutflow.services.orders import models  # noqa: F401  (registers tables)
from checkoutflow.services.orders.store import OrderStore

PAY_URL = "https://secure.wayforpay.com/invoice/i4b1c2d3"


class FakeRedis:
    """Dict-backed stand-in for the hash commands the token bucket uses."""

    def __init__(self):
        self.hashes: dict[str, dict[str, str]] = {}
        self.ttls: dict[str, int] = {}

    def hmget(self, key, *fields):
        stored = self.hashes.get(key, {})
        return [stored.get(field) for field in fields]

    def hset(self, key, mapping):
        self.hashes.setdefault(key, {}).update({k: str(v) for k, v in mapping.items()})

    def expire(self, key, seconds):
        self.ttls[key] = seconds


@pytest.fixture
def fake_redis():
    return FakeRedis()


@pytest.fixture
def engine():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(bind=engine, autoflush=False, autocommit=False, expire_on_commit=False)


@pytest.fixture
def store(session_factory):
    return OrderStore(session_factory)


@pytest.fixture
def gateway():
    return GatewayConfig(
        merchant_account="test_merchant",
        secret_key="test-secret",
        merchant_domain="shop.example",
        app_base_url="https://pay.example",
        api_url="https://gateway.test/api",
        timeout_seconds=2.0,
    )


@pytest.fixture
def make_webhook(gateway):
    """Build a signed gateway notification for `order_ref`."""

    def build(order_ref, status="Approved", amount=1, currency="UAH", **extra):
        payload = {
            "merchantAccount": gateway.merchant_account,
            "orderReference": order_ref,
            "amount": amount,
            "currency": currency,
            "authCode": "541963",
            "cardPan": "41****8217",
            "transactionStatus": status,
            "reasonCode": 1100,
        }
        payload.update(extra)
        payload["merchantSignature"] = sign(gateway.secret_key, ordered_values(payload, WEBHOOK_FIELDS))
        return payload

    return build


@pytest.fixture
def gateway_calls():
    return []


@pytest.fixture
def gateway_transport(gateway_calls):
    def handler(request: httpx.Request) -> httpx.Response:
        gateway_calls.append(request)
        return httpx.Response(200, json={"invoiceUrl": PAY_URL, "reasonCode": 1100})

    return httpx.MockTransport(handler)


@pytest.fixture
def client(monkeypatch, store, session_factory, gateway, gateway_transport, fake_redis):
    """App client wired to the in-memory database and a mocked gateway."""

    from fastapi.testclient import TestClient

    from checkoutflow.common.ratelimit import TokenBucket
    from checkoutflow.services.access.service import AccessTokenService
    from checkoutflow.services.invoice.service import InvoiceService
    from checkoutflow.services.returns.service import ReturnResolver
    from checkoutflow.services.web import main
    from checkoutflow.services.webhook.service import WebhookReconciler

    monkeypatch.setattr(main, "store", store)
    monkeypatch.setattr(main, "gateway", gateway)
    monkeypatch.setattr(main, "invoices", InvoiceService(store, gateway, transport=gateway_transport))
    monkeypatch.setattr(main, "webhooks", WebhookReconciler(store, gateway, backoff_seconds=0))
    monkeypatch.setattr(main, "returns", ReturnResolver(store, refresh_seconds=3))
    monkeypatch.setattr(main, "tokens", AccessTokenService(session_factory))
    monkeypatch.setattr(main, "limiter", TokenBucket(fake_redis, 100))
    with TestClient(main.app) as test_client:
        yield test_client
