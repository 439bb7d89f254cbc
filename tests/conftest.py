import os

os.environ.setdefault("LOG_LEVEL", "WARNING")
os.environ["RATE_LIMIT"] = "5/minute"

import httpx
import pytest
import pytest_asyncio
from mongomock_motor import AsyncMongoMockClient

from trackmate.main import app, get_database
from trackmate.payments_gateway import PaymentGateway, get_payment_gateway
from trackmate.security_config import limiter
from trackmate.utils import UpstreamException

# Only test_rate_limit.py turns the limiter on
limiter.enabled = False


class FakePaymentGateway(PaymentGateway):
    def __init__(self, client_secret="pi_test_secret_123", error=None):
        self.client_secret = client_secret
        self.error = error
        self.calls = []

    async def create_payment_intent(self, amount, currency="usd", methods=("card",)):
        self.calls.append({"amount": amount, "currency": currency, "methods": list(methods)})
        if self.error:
            raise UpstreamException(self.error)
        return self.client_secret


@pytest.fixture
def db():
    return AsyncMongoMockClient()["parcelDB_test"]


@pytest.fixture
def gateway():
    return FakePaymentGateway()


@pytest_asyncio.fixture
async def client(db, gateway):
    app.dependency_overrides[get_database] = lambda: db
    app.dependency_overrides[get_payment_gateway] = lambda: gateway
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac
    app.dependency_overrides.clear()


@pytest_asyncio.fixture
async def make_client():
    """Client factory for tests that need a hand-built store."""
    clients = []

    async def _make(database):
        app.dependency_overrides[get_database] = lambda: database
        ac = httpx.AsyncClient(transport=httpx.ASGITransport(app=app), base_url="http://test")
        clients.append(ac)
        return ac

    yield _make
    for ac in clients:
        await ac.aclose()
    app.dependency_overrides.clear()


@pytest_asyncio.fixture
async def parcel(client):
    resp = await client.post("/parcels", json={
        "title": "Books",
        "destination": "Dhaka",
        "createdBy": "a@b.com",
        "cost": 120,
    })
    assert resp.status_code == 201
    return resp.json()["data"]
