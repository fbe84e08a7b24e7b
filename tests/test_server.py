"""
HTTP surface tests: routes, status codes and JSON bodies.
"""

import pytest
from aiohttp.test_utils import TestClient, TestServer

from conftest import HOUR_MS, NOW
from nazar_gateway.database import SqliteEventStore
from nazar_gateway.server import create_app
from nazar_gateway.tasks import default_settings

UNREACHABLE_PATH = "/nonexistent-dir/nested/events.db"


def _settings(**overrides):
    settings = default_settings()
    settings.update({"store_backend": "memory", "broker_url": "", "enable_reset": False,
                     "heartbeat_interval": 3600})
    settings.update(overrides)
    return settings


@pytest.fixture
async def make_client():
    clients = []

    async def _make(**overrides):
        client = TestClient(TestServer(create_app(_settings(**overrides))))
        await client.start_server()
        clients.append(client)
        return client

    yield _make
    for client in clients:
        await client.close()


@pytest.fixture
async def client(make_client):
    return await make_client()


def _break_store(app, monkeypatch):
    broken = SqliteEventStore(UNREACHABLE_PATH)
    monkeypatch.setattr(app["store"], "ping", broken.ping)
    monkeypatch.setattr(app["engine"], "store", broken)
    monkeypatch.setattr(app["gateway"], "store", broken)


@pytest.mark.asyncio
async def test_index_lists_endpoints(client):
    resp = await client.get("/")
    assert resp.status == 200
    body = await resp.json()
    assert body["name"] == "Nazar Gateway"
    assert "POST /api/messages/publish" in body["endpoints"]


@pytest.mark.asyncio
async def test_publish_and_read_back(client, sample_payload):
    resp = await client.post("/api/messages/publish", json=sample_payload)
    assert resp.status == 200
    body = await resp.json()
    assert body["success"] is True
    assert body["messageId"] == f"/home/user/docs/report.PDF-{NOW - HOUR_MS}"

    resp = await client.get("/api/dashboard/analytics")
    assert resp.status == 200
    dashboard = (await resp.json())["dashboard"]
    assert dashboard["stats"]["basic"]["total_events"] == 1
    assert dashboard["stats"]["basic"]["total_size"] == 2048
    assert dashboard["stats"]["topExtensions"] == [{"extension": ".pdf", "count": 1}]
    assert dashboard["clients"][0]["clientMacAddress"] == "AA:BB:CC:DD:EE:FF"


@pytest.mark.asyncio
async def test_publish_invalid_payload(client):
    resp = await client.post("/api/messages/publish", json={"filePath": "/a.txt", "changeType": "x"})
    assert resp.status == 400
    body = await resp.json()
    assert body["error"] == "Invalid message format"
    assert body["fields"] == ["changeType", "clientMacAddress"]
    assert body["required"] == ["filePath", "changeType", "clientMacAddress"]


@pytest.mark.asyncio
async def test_publish_malformed_json(client):
    resp = await client.post("/api/messages/publish", data="{not json",
                             headers={"Content-Type": "application/json"})
    assert resp.status == 400
    assert (await resp.json())["fields"] == ["body"]


@pytest.mark.asyncio
async def test_publish_invalid_utf8_body(client):
    resp = await client.post("/api/messages/publish", data=b'{"filePath": "\xff"}',
                             headers={"Content-Type": "application/json"})
    assert resp.status == 400
    assert (await resp.json())["fields"] == ["body"]


@pytest.mark.asyncio
async def test_publish_non_finite_size(client):
    body = '{"filePath": "/a/b.txt", "changeType": "add", "clientMacAddress": "AA", "size": NaN}'
    resp = await client.post("/api/messages/publish", data=body,
                             headers={"Content-Type": "application/json"})
    assert resp.status == 400
    assert (await resp.json())["fields"] == ["size"]


@pytest.mark.parametrize("backend", ["memory", "sqlite"])
@pytest.mark.asyncio
async def test_far_future_timestamp_keeps_dashboard_up(make_client, temp_db, sample_payload, backend):
    client = await make_client(store_backend=backend, db_path=temp_db)
    await client.post("/api/messages/publish", json=sample_payload)

    resp = await client.post("/api/messages/publish", json=dict(sample_payload, timestamp=10 ** 17))
    assert resp.status == 400
    assert (await resp.json())["fields"] == ["timestamp"]

    resp = await client.get("/api/dashboard/analytics")
    assert resp.status == 200
    assert (await resp.json())["dashboard"]["stats"]["basic"]["total_events"] == 1
    resp = await client.get("/api/dashboard/clients")
    assert resp.status == 200


@pytest.mark.asyncio
async def test_analytics_client_filter(client, sample_payload):
    await client.post("/api/messages/publish", json=sample_payload)
    other = dict(sample_payload, clientMacAddress="11:22:33:44:55:66", filePath="/srv/app.py")
    await client.post("/api/messages/publish", json=other)

    resp = await client.get("/api/dashboard/analytics", params={"clientMacAddress": "11:22:33:44:55:66"})
    dashboard = (await resp.json())["dashboard"]
    assert dashboard["stats"]["basic"]["total_events"] == 1
    assert dashboard["stats"]["categories"][0]["category"] == "code"
    assert len(dashboard["clients"]) == 2


@pytest.mark.asyncio
async def test_clients_endpoints(client, sample_payload):
    await client.post("/api/messages/publish", json=sample_payload)

    resp = await client.get("/api/dashboard/clients")
    body = await resp.json()
    assert body["count"] == 1
    assert body["clients"][0]["total_events"] == 1

    resp = await client.get("/api/dashboard/clients/AA:BB:CC:DD:EE:FF")
    assert resp.status == 200
    summary = await resp.json()
    assert summary["event_count"] == 1
    assert summary["files_created"] == 1

    resp = await client.get("/api/dashboard/clients/00:00:00:00:00:00")
    assert resp.status == 404
    assert (await resp.json())["error"] == "Client not found"


@pytest.mark.asyncio
async def test_health_healthy(client):
    resp = await client.get("/api/dashboard/health")
    assert resp.status == 200
    body = await resp.json()
    assert body["status"] == "healthy"
    assert body["service"] == "nazar-gateway"
    assert body["database"]["details"]["backend"] == "memory"
    assert body["broker"] == {"status": "disabled"}


@pytest.mark.asyncio
async def test_store_outage_maps_to_503(client, sample_payload, monkeypatch):
    _break_store(client.server.app, monkeypatch)

    resp = await client.get("/api/dashboard/health")
    assert resp.status == 503
    assert (await resp.json())["database"]["status"] == "unhealthy"

    resp = await client.get("/api/dashboard/analytics")
    assert resp.status == 503
    body = await resp.json()
    assert body["error"] == "Event store unavailable"
    assert "dashboard" not in body

    resp = await client.post("/api/messages/publish", json=sample_payload)
    assert resp.status == 503


@pytest.mark.asyncio
async def test_unknown_route_is_json_404(client):
    resp = await client.get("/api/nope")
    assert resp.status == 404
    assert (await resp.json())["error"] == "Not found"


@pytest.mark.asyncio
async def test_reset_disabled_by_default(client):
    resp = await client.post("/api/dashboard/reset")
    assert resp.status == 404


@pytest.mark.asyncio
async def test_reset_enabled(make_client, sample_payload):
    client = await make_client(enable_reset=True)
    await client.post("/api/messages/publish", json=sample_payload)

    resp = await client.post("/api/dashboard/reset")
    assert resp.status == 200
    assert await resp.json() == {"success": True, "removed": 1}

    resp = await client.get("/api/dashboard/clients")
    assert (await resp.json())["count"] == 0


@pytest.mark.asyncio
async def test_sqlite_backend_persists_across_apps(make_client, temp_db, sample_payload):
    first = await make_client(store_backend="sqlite", db_path=temp_db)
    await first.post("/api/messages/publish", json=sample_payload)

    second = await make_client(store_backend="sqlite", db_path=temp_db)
    resp = await second.get("/api/dashboard/analytics")
    assert (await resp.json())["dashboard"]["stats"]["basic"]["total_events"] == 1
