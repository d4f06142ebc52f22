from fastapi.testclient import TestClient

from relay.app.core.config import settings
from relay.app.main import app, create_app


def test_health():
    client = TestClient(app)
    resp = client.get("/health")
    assert resp.status_code == 200
    data = resp.json()
    assert data["status"] == "ok"
    assert isinstance(data["timestamp"], int)
    assert data["timestamp"] > 1_600_000_000_000
    assert resp.headers["access-control-allow-origin"] == "*"


def test_ping_alias():
    client = TestClient(app)
    resp = client.get("/ping")
    assert resp.status_code == 200
    assert resp.json()["status"] == "ok"


def test_health_with_lifespan():
    with TestClient(app) as client:
        resp = client.get("/health")
    assert resp.status_code == 200


def test_unhandled_error_detail_not_echoed(monkeypatch):
    monkeypatch.setattr(settings, "debug", True)
    debug_app = create_app()

    @debug_app.get("/explode")
    async def explode():
        raise RuntimeError("secret connection string")

    client = TestClient(debug_app, raise_server_exceptions=False)
    resp = client.get("/explode")

    assert resp.status_code == 500
    body = resp.json()
    assert body["error"] == "internal_server_error"
    assert "secret" not in resp.text
    assert "RuntimeError" not in body["message"]
    assert resp.headers["access-control-allow-origin"] == "*"
