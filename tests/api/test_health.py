from __future__ import annotations

from fastapi.testclient import TestClient

from proctorsync.services.sync_engine import sync_engine


def test_health_reports_in_memory_fallbacks(client: TestClient) -> None:
    resp = client.get("/health")
    assert resp.status_code == 200
    assert resp.json() == {
        "status": "ok",
        "checks": {
            "remote_store": "not_configured",
            "local_storage": "in_memory",
            "sync_outbox": 0,
        },
    }


def test_health_reports_outbox_depth(client: TestClient) -> None:
    sync_engine.outbox.enqueue("u1", "c1", "v1")
    assert client.get("/health").json()["checks"]["sync_outbox"] == 1


def test_ready(client: TestClient) -> None:
    assert client.get("/ready").status_code == 200
