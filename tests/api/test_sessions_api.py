"""Session endpoints start background sync jobs on the event loop, so these
tests keep one TestClient (and one loop) open for the whole scenario."""

from __future__ import annotations

import dataclasses
import json

from fastapi.testclient import TestClient

import proctorsync.api.sessions as sessions_api
from proctorsync.core.config import SETTINGS
from proctorsync.main import app
from proctorsync.proctoring.capabilities import ScriptedFaceCapability
from proctorsync.repos.local_storage import local_storage
from proctorsync.services.sync_engine import sync_engine


def test_start_and_end_session() -> None:
    local_storage.set_item(
        "course_progress_web-development",
        json.dumps({"completedVideos": 1, "totalVideos": 3}),
    )
    with TestClient(app) as client:
        resp = client.post("/v1/sessions/u1", json={"courseIds": ["web-development"]})
        assert resp.status_code == 201
        started = resp.json()
        assert started["active"] is True
        assert started["migration"]["success"] is True
        assert started["pulledRecords"] == 3
        assert sync_engine.is_running("u1")

        # Starting again returns the running session
        again = client.post("/v1/sessions/u1")
        assert again.status_code == 200
        assert again.json()["migration"] == started["migration"]

        client.put(
            "/v1/progress/u1/videos/web-development/video-3",
            json={"lastPosition": 90, "validWatchTime": 90},
        )
        ended = client.delete("/v1/sessions/u1")
        assert ended.status_code == 200
        assert ended.json()["active"] is False
        assert ended.json()["sync"]["synced"] == 1
        assert not sync_engine.is_running("u1")

    assert local_storage.get_item("course_progress_web-development") is None


def test_start_without_legacy_data() -> None:
    with TestClient(app) as client:
        resp = client.post("/v1/sessions/u2")
        assert resp.status_code == 201
        assert resp.json()["migration"] is None
        assert resp.json()["pulledRecords"] == 0


def test_end_unknown_session_is_404() -> None:
    with TestClient(app) as client:
        resp = client.delete("/v1/sessions/nobody")
        assert resp.status_code == 404
        assert resp.json()["detail"] == "No active session"


def test_shutdown_ends_open_sessions() -> None:
    with TestClient(app) as client:
        client.post("/v1/sessions/u3")
        assert sync_engine.is_running("u3")
    assert not sync_engine.is_running("u3")


def test_signals_are_recorded_as_alerts_and_counters() -> None:
    with TestClient(app) as client:
        client.post("/v1/sessions/u4")
        client.put("/v1/progress/u4/videos/c1/v1", json={"totalDuration": 100})

        hidden = client.post(
            "/v1/sessions/u4/signals",
            json={"signal": "tab_hidden", "courseId": "c1", "videoId": "v1"},
        )
        assert hidden.status_code == 200
        assert hidden.json()["events"] == [
            {"type": "tab_switch_detected", "message": "Tab switched - Warning 1/3"}
        ]
        copied = client.post(
            "/v1/sessions/u4/signals",
            json={"signal": "copy", "courseId": "c1", "videoId": "v1"},
        )
        assert [e["type"] for e in copied.json()["events"]] == ["copy_attempted"]

        client.delete("/v1/sessions/u4")

        alerts = client.get("/v1/alerts/u4").json()
        assert sorted(a["type"] for a in alerts) == ["copy_attempted", "tab_switch_detected"]
        video = client.get("/v1/progress/u4/videos/c1/v1").json()
        assert video["violations"]["tabSwitches"] == 1


def test_signal_without_session_is_404() -> None:
    with TestClient(app) as client:
        resp = client.post(
            "/v1/sessions/nobody/signals",
            json={"signal": "paste", "courseId": "c1", "videoId": "v1"},
        )
        assert resp.status_code == 404


def test_unknown_signal_is_422() -> None:
    with TestClient(app) as client:
        client.post("/v1/sessions/u5")
        resp = client.post(
            "/v1/sessions/u5/signals",
            json={"signal": "mouse_left", "courseId": "c1", "videoId": "v1"},
        )
        assert resp.status_code == 422


def test_session_reports_face_monitoring_off_by_default() -> None:
    with TestClient(app) as client:
        assert client.post("/v1/sessions/u6").json()["faceMonitoring"] is None


def test_unavailable_camera_leaves_session_running(monkeypatch) -> None:
    monkeypatch.setattr(
        sessions_api, "SETTINGS", dataclasses.replace(SETTINGS, face_monitoring=True)
    )
    monkeypatch.setattr(
        sessions_api,
        "OpenCVFaceCapability",
        lambda index: ScriptedFaceCapability(fail_acquire=f"camera {index} could not be opened"),
    )
    with TestClient(app) as client:
        resp = client.post("/v1/sessions/u7")
        assert resp.status_code == 201
        assert resp.json()["active"] is True
        assert resp.json()["faceMonitoring"] == "error"
