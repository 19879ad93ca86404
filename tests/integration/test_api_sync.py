"""
HTTP surface of the sync status API.
"""
import httpx
import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient

from contasync.api.sync_routes import router
from contasync.sync.services import build_services


@pytest.fixture(name="services")
def services_fixture(session_factory, server):
    return build_services(
        session_factory=session_factory,
        actor_provider=lambda: "maria",
        token_provider=lambda: "secret-token",
        transport=server.transport,
    )


@pytest.fixture(name="api")
def api_fixture(services):
    app = FastAPI()
    app.include_router(router)
    app.state.sync_services = services
    with TestClient(app) as client:
        yield client


def test_status_reports_pending_changes(api, services):
    services.entities.create("transaction", {"amount": 10}, entity_id="t1")

    resp = api.get("/api/sync/status")

    assert resp.status_code == 200
    body = resp.json()
    assert body["pending_count"] == 1
    assert body["is_online"] is True
    assert body["phase"] == "idle"
    assert body["sync_in_progress"] is False
    assert body["last_sync_watermark"] is None
    assert body["device_id"] == services.device.get()
    assert body["auto_sync_running"] is False


def test_manual_sync(api, services, server):
    services.entities.create("transaction", {"amount": 10}, entity_id="t1")

    resp = api.post("/api/sync")

    assert resp.status_code == 200
    assert resp.json()["outcome"] == "completed"
    assert resp.json()["uploaded"] == 1
    assert server.uploads[0]["headers"]["authorization"] == "Bearer secret-token"

    status = api.get("/api/sync/status").json()
    assert status["pending_count"] == 0
    assert status["last_sync_watermark"].endswith("Z")
    assert status["last_result"]["outcome"] == "completed"


def test_failed_sync_is_reported_not_raised(api, server):
    server.download_response = lambda request: httpx.Response(500)
    resp = api.post("/api/sync")

    assert resp.status_code == 200
    assert resp.json()["outcome"] == "failed"
    assert api.get("/api/sync/status").json()["last_error"]


def test_offline_then_reconnect(api, server):
    resp = api.post("/api/sync/online", json={"online": False})
    assert resp.status_code == 200
    assert resp.json() is None
    assert api.post("/api/sync").json()["outcome"] == "not_attempted"
    assert server.downloads == []

    resp = api.post("/api/sync/online", json={"online": True})
    assert resp.json()["outcome"] == "completed"
    assert len(server.downloads) == 1


def test_changelog_listing_and_filters(api, services):
    services.entities.create("transaction", {"amount": 10}, entity_id="t1")
    services.entities.update("transaction", "t1", {"amount": 11})
    services.entities.create("provider", {"name": "ACME"}, entity_id="p1")

    entries = api.get("/api/sync/changelog").json()
    assert [e["action"] for e in entries] == ["CREATE", "UPDATE", "CREATE"]
    assert entries[0]["entity_type"] == "provider"

    updates = api.get("/api/sync/changelog", params={"action": "UPDATE"}).json()
    assert len(updates) == 1
    assert updates[0]["old_value"]["amount"] == 10

    providers = api.get("/api/sync/changelog", params={"entity_type": "provider"}).json()
    assert [e["entity_id"] for e in providers] == ["p1"]

    assert len(api.get("/api/sync/changelog", params={"limit": 1}).json()) == 1


def test_changelog_rejects_unknown_action(api):
    resp = api.get("/api/sync/changelog", params={"action": "EXPLODE"})
    assert resp.status_code == 422


def test_summary(api, services):
    services.entities.create("transaction", {"amount": 10}, entity_id="t1")
    services.entities.create("transaction", {"amount": 20}, entity_id="t2")

    body = api.get("/api/sync/summary").json()
    assert body["total_actions"] == 2
    assert body["actions_by_type"] == {"CREATE": 2}
    assert body["top_actors"] == [{"actor_name": "maria", "action_count": 2}]
    assert "recent_activity" not in body


def test_routes_without_services_return_400():
    app = FastAPI()
    app.include_router(router)
    with TestClient(app) as client:
        assert client.get("/api/sync/status").status_code == 400
