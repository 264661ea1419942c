import pytest
from fastapi.testclient import TestClient

from app.core.config import settings
from app.db.session import get_session
from app.main import app

AUTH = (settings.ADMIN_USER, settings.ADMIN_PASS)


@pytest.fixture
def client(session, runtime):
    def override_session():
        yield session

    app.dependency_overrides[get_session] = override_session
    app.state.ota_runtime = runtime
    # No context manager: the test runtime replaces the lifespan one
    client = TestClient(app)
    yield client
    app.dependency_overrides.clear()
    del app.state.ota_runtime


def create_release(client, version="1.0.0", data=b"firmware-image"):
    response = client.post(
        "/api/ota/releases",
        data={"template_id": "esp32-sensor", "version": version, "channel": "stable"},
        files={"binary": ("firmware.bin", data, "application/octet-stream")},
        auth=AUTH,
    )
    assert response.status_code == 201, response.text
    return response.json()


def test_health(client):
    response = client.get("/api/ota/health")
    assert response.status_code == 200
    assert response.json()["status"] == "healthy"


def test_operator_endpoints_require_auth(client):
    assert client.get("/api/ota/releases").status_code == 401
    assert client.get("/api/ota/releases", auth=("admin", "wrong-password")).status_code == 401


def test_release_lifecycle(client):
    release = create_release(client)
    release_id = release["release_id"]

    listed = client.get("/api/ota/releases", params={"template_id": "esp32-sensor"}, auth=AUTH).json()
    assert listed["count"] == 1

    verify = client.post(f"/api/ota/releases/{release_id}/verify", auth=AUTH)
    assert verify.status_code == 200
    assert verify.json()["verified"] is True

    assert client.delete(f"/api/ota/releases/{release_id}", auth=AUTH).status_code == 200
    missing = client.get(f"/api/ota/releases/{release_id}", auth=AUTH)
    assert missing.status_code == 404
    assert missing.json()["code"] == "NOT_FOUND"


def test_tampered_binary_verifies_false(client, storage_backend):
    release = create_release(client)
    release_id = release["release_id"]
    with open(storage_backend.resolve_path(release["binary_path"]), "wb") as f:
        f.write(b"patched-image")

    response = client.post(f"/api/ota/releases/{release_id}/verify", auth=AUTH)
    assert response.status_code == 200
    body = response.json()
    assert body["verified"] is False
    assert "hash mismatch" in body["message"]

    missing = client.post("/api/ota/releases/no-such-release/verify", auth=AUTH)
    assert missing.status_code == 404


def test_duplicate_release_is_bad_request(client):
    create_release(client)
    response = client.post(
        "/api/ota/releases",
        data={"template_id": "esp32-sensor", "version": "1.0.0", "channel": "stable"},
        files={"binary": ("firmware.bin", b"other", "application/octet-stream")},
        auth=AUTH,
    )
    assert response.status_code == 400
    assert response.json()["code"] == "VALIDATION_ERROR"


def test_device_update_flow(client):
    release = create_release(client, data=b"device-image")

    response = client.post(
        "/api/ota/deployments",
        json={"release_id": release["release_id"],
              "config": {"strategy": "immediate", "target_devices": ["dev-1"]}},
        auth=AUTH,
    )
    assert response.status_code == 201, response.text
    deployment = response.json()
    assert deployment["status"] == "active"

    update = client.get("/api/ota/updates/dev-1")
    assert update.status_code == 200
    body = update.json()
    assert body["version"] == "1.0.0"

    binary = client.get(body["binary_url"])
    assert binary.status_code == 200
    assert binary.content == b"device-image"

    status = client.post("/api/ota/updates/status", json={
        "device_id": "dev-1", "release_id": release["release_id"], "status": "completed", "progress": 100,
    })
    assert status.status_code == 200

    report = client.get(
        f"/api/ota/deployments/{deployment['deployment_id']}", params={"status": "true"}, auth=AUTH
    ).json()
    assert report["completed_count"] == 1
    assert report["progress_percentage"] == 100
    assert report["status"] == "completed"

    devices = client.get(f"/api/ota/deployments/{deployment['deployment_id']}/devices", auth=AUTH).json()
    assert devices["count"] == 1
    assert devices["updates"][0]["status"] == "completed"


def test_no_pending_update(client):
    response = client.get("/api/ota/updates/unknown-device")
    assert response.status_code == 404
    assert response.json()["code"] == "NO_PENDING_UPDATE"


def test_tampered_download_link_rejected(client):
    release = create_release(client)
    client.post(
        "/api/ota/deployments",
        json={"release_id": release["release_id"], "config": {"strategy": "immediate", "target_devices": ["d"]}},
        auth=AUTH,
    )
    url = client.get("/api/ota/updates/d").json()["binary_url"]

    response = client.get(url.replace("signature=", "signature=0"))
    assert response.status_code == 403


def test_status_report_validation(client):
    response = client.post("/api/ota/updates/status", json={
        "device_id": "dev-1", "release_id": "r", "status": "downloading", "progress": 150,
    })
    assert response.status_code == 422


def test_deployment_controls(client):
    release = create_release(client)
    created = client.post(
        "/api/ota/deployments",
        json={"release_id": release["release_id"],
              "config": {"strategy": "staged", "rollout_percentage": 50, "target_devices": ["a", "b"]}},
        auth=AUTH,
    ).json()
    deployment_id = created["deployment_id"]
    assert created["status"] == "pending"
    assert len(created["target_devices"]) == 1

    # Paused only applies to active deployments
    assert client.put(f"/api/ota/deployments/{deployment_id}/pause", auth=AUTH).status_code == 400

    assert client.put(f"/api/ota/deployments/{deployment_id}/activate", auth=AUTH).status_code == 200
    assert client.put(f"/api/ota/deployments/{deployment_id}/pause", auth=AUTH).status_code == 200
    assert client.put(f"/api/ota/deployments/{deployment_id}/resume", auth=AUTH).status_code == 200

    active = client.get("/api/ota/deployments", params={"active": "true"}, auth=AUTH).json()
    assert [d["deployment_id"] for d in active["deployments"]] == [deployment_id]


def test_empty_fleet_deployment_rejected(client):
    release = create_release(client)
    response = client.post(
        "/api/ota/deployments",
        json={"release_id": release["release_id"], "config": {"strategy": "immediate"}},
        auth=AUTH,
    )
    assert response.status_code == 400
    assert "No target devices" in response.json()["message"]
