"""
Integration tests for the HTTP API.
Runs the full app lifespan against a temporary database, with the face
models and camera replaced by fakes.
"""
import time

import pytest
from fastapi.testclient import TestClient

import main
from conftest import FakeAnalyzer, FakeCamera, face_at_distance, make_descriptor

pytestmark = pytest.mark.integration


@pytest.fixture
def analyzer():
    return FakeAnalyzer([face_at_distance(1.0)])


@pytest.fixture
def client(tmp_path, monkeypatch, analyzer):
    monkeypatch.setattr(main, "DATABASE_URL", f"sqlite:///{tmp_path / 'api.db'}")
    monkeypatch.setattr(main, "LOG_FILE", str(tmp_path / "api.log"))
    monkeypatch.setattr(main, "load_analyzer", lambda: analyzer)
    monkeypatch.setattr(main, "open_camera", lambda source=None, camera_type=None: FakeCamera())
    with TestClient(main.app) as c:
        yield c


def _run_detection(client, seconds: float = 0.3):
    assert client.post("/detection/start").status_code == 200
    time.sleep(seconds)
    assert client.post("/detection/stop").status_code == 200


class TestHealthAndSettings:
    """Tests for /health and /settings"""

    def test_health(self, client):
        response = client.get("/health")
        assert response.status_code == 200
        body = response.json()
        assert body["models_loaded"] is True
        assert body["stored_detections"] == 0
        assert "X-Process-Time" in response.headers

    def test_default_settings(self, client):
        body = client.get("/settings").json()
        assert body["detection_range_meters"] == 5
        assert body["min_confidence"] == 0.3
        assert body["scan_frequency"] == "high"

    def test_update_settings(self, client):
        response = client.put("/settings", json={"detection_range_meters": 2.5, "scan_frequency": "low"})
        assert response.status_code == 200
        assert response.json()["detection_range_meters"] == 2.5
        assert client.get("/settings").json()["scan_frequency"] == "low"

    def test_update_settings_out_of_range(self, client):
        response = client.put("/settings", json={"min_confidence": 0.95})
        assert response.status_code == 400


class TestKnownFaces:
    """Tests for /known-faces"""

    def test_add_list_delete(self, client):
        response = client.post("/known-faces", json={
            "name": "Alice", "role": "Guard", "access_level": "security",
            "face_descriptor": make_descriptor(1),
        })
        assert response.status_code == 200
        face_id = response.json()["known_face"]["id"]

        faces = client.get("/known-faces").json()
        assert faces["count"] == 1
        assert faces["known_faces"][0]["name"] == "Alice"

        assert client.delete(f"/known-faces/{face_id}").status_code == 200
        assert client.delete(f"/known-faces/{face_id}").status_code == 404

    def test_add_without_descriptor(self, client):
        response = client.post("/known-faces", json={"name": "Alice"})
        assert response.status_code == 400

    def test_reset(self, client):
        client.post("/known-faces", json={"name": "A", "face_descriptor": make_descriptor(1)})
        client.post("/known-faces", json={"name": "B", "face_descriptor": make_descriptor(2)})
        assert client.delete("/known-faces").status_code == 200
        assert client.get("/known-faces").json()["count"] == 0


class TestDetection:
    """Tests for the detection lifecycle endpoints"""

    def test_start_stop_records_detection(self, client):
        _run_detection(client)

        status = client.get("/detection/status").json()
        assert status["running"] is False
        assert status["state"] == "stopped"

        detections = client.get("/detections").json()
        assert detections["count"] >= 1
        detection = detections["detections"][0]
        assert detection["person_name"] == "unknown"

        assert client.get(f"/detections/{detection['id']}").json()["id"] == detection["id"]
        history = client.get("/detections/history").json()
        assert history["total"] == detections["count"]

        frame = client.get("/detection/frame")
        assert frame.status_code == 200
        assert frame.headers["content-type"] == "image/jpeg"

    def test_notifications_flow(self, client):
        _run_detection(client)

        body = client.get("/notifications").json()
        assert body["unread"] >= 1
        notification = body["notifications"][0]
        assert notification["type"] == "warning"

        assert client.post(f"/notifications/{notification['id']}/read").status_code == 200
        assert client.get("/notifications").json()["unread"] == body["unread"] - 1
        assert client.post("/notifications/notification-missing/read").status_code == 404

        assert client.delete("/notifications").status_code == 200
        assert client.get("/notifications").json()["notifications"] == []

    def test_add_known_face_from_detection(self, client):
        _run_detection(client)
        detection_id = client.get("/detections").json()["detections"][0]["id"]

        response = client.post("/known-faces/from-detection", json={
            "detection_id": detection_id, "name": "Visitor", "role": "Guest",
        })
        assert response.status_code == 200
        assert response.json()["known_face"]["name"] == "Visitor"

        missing = client.post("/known-faces/from-detection", json={"detection_id": "face-x", "name": "X"})
        assert missing.status_code == 400

    def test_missing_detection(self, client):
        assert client.get("/detections/face-missing").status_code == 404

    def test_frame_before_detection(self, client):
        assert client.get("/detection/frame").status_code == 404


class TestModelFailure:
    """Start is refused when the face models failed to load"""

    def test_start_rejected(self, tmp_path, monkeypatch):
        def broken_models():
            raise RuntimeError("model files missing")

        monkeypatch.setattr(main, "DATABASE_URL", f"sqlite:///{tmp_path / 'api.db'}")
        monkeypatch.setattr(main, "LOG_FILE", str(tmp_path / "api.log"))
        monkeypatch.setattr(main, "load_analyzer", broken_models)
        with TestClient(main.app) as client:
            assert client.get("/health").json()["models_loaded"] is False
            response = client.post("/detection/start")
            assert response.status_code == 503
            assert "model files missing" in response.json()["detail"]
