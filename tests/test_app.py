import json
import logging
from unittest.mock import AsyncMock, MagicMock

import pytest
from fastapi import FastAPI
from pymongo.errors import ServerSelectionTimeoutError

from trackmate.logging_config import JSONFormatter, RequestContextFilter, request_id_var
from trackmate.main import app
from trackmate.utils import Settings, ensure_unique_routes


@pytest.mark.asyncio
async def test_health_reports_connected_store(make_client):
    store = MagicMock()
    store.client.admin.command = AsyncMock(return_value={"ok": 1.0})
    client = await make_client(store)

    resp = await client.get("/health")
    assert resp.status_code == 200
    body = resp.json()
    assert body["status"] == "healthy"
    assert body["database"] == "connected"
    store.client.admin.command.assert_awaited_once_with("ping")


@pytest.mark.asyncio
async def test_health_unreachable_store(make_client):
    store = MagicMock()
    store.client.admin.command = AsyncMock(side_effect=ServerSelectionTimeoutError("timed out"))
    client = await make_client(store)

    resp = await client.get("/health")
    assert resp.status_code == 503
    assert resp.json()["error"] == "Service Unhealthy"


@pytest.mark.asyncio
async def test_responses_carry_request_id_and_security_headers(client):
    resp = await client.get("/", headers={"X-Request-ID": "req-42"})
    assert resp.headers["X-Request-ID"] == "req-42"
    assert resp.headers["X-Frame-Options"] == "DENY"
    assert resp.headers["X-Content-Type-Options"] == "nosniff"


def test_app_routes_are_unique():
    registry = ensure_unique_routes(app)
    assert ("POST", "/confirm-payment") in registry
    assert ("GET", "/parcels") in registry


def test_duplicate_route_registration_fails():
    dup = FastAPI()

    @dup.get("/parcels")
    async def first():
        return []

    @dup.get("/parcels")
    async def second():
        return {"data": []}

    with pytest.raises(RuntimeError, match="GET /parcels declared twice"):
        ensure_unique_routes(dup)


def test_settings_builds_atlas_uri():
    settings = Settings(DB_USER="user", DB_PASSWORD="pw", MONGO_CLUSTER="cluster0.example.mongodb.net")
    assert settings.mongo_uri == (
        "mongodb+srv://user:pw@cluster0.example.mongodb.net/?retryWrites=true&w=majority"
    )


def test_settings_falls_back_to_plain_url():
    settings = Settings(MONGO_URL="mongodb://db:27017", DB_USER=None, DB_PASSWORD=None, MONGO_CLUSTER=None)
    assert settings.mongo_uri == "mongodb://db:27017"


def test_json_formatter_includes_request_fields():
    record = logging.LogRecord("trackmate", logging.INFO, __file__, 10, "Parcel created", None, None)
    record.request_id = "req-1"
    record.parcel_id = "abc"

    payload = json.loads(JSONFormatter("trackmate").format(record))

    assert payload["service"] == "trackmate"
    assert payload["level"] == "INFO"
    assert payload["message"] == "Parcel created"
    assert payload["request_id"] == "req-1"
    assert payload["parcel_id"] == "abc"
    assert "method" not in payload


def test_request_context_filter_stamps_current_request_id():
    record = logging.LogRecord("trackmate", logging.INFO, __file__, 10, "Payment confirmed", None, None)
    token = request_id_var.set("req-7")
    try:
        RequestContextFilter().filter(record)
    finally:
        request_id_var.reset(token)

    assert record.request_id == "req-7"


def test_request_context_filter_keeps_explicit_request_id():
    record = logging.LogRecord("trackmate", logging.INFO, __file__, 10, "Request processed", None, None)
    record.request_id = "explicit"
    token = request_id_var.set("from-context")
    try:
        RequestContextFilter().filter(record)
    finally:
        request_id_var.reset(token)

    assert record.request_id == "explicit"
