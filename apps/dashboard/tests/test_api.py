from fastapi.testclient import TestClient

from config import settings
from main import create_app
from services.demo_cache import demo_cache
from services.telemetry import TelemetryService


def test_meta_health(client: TestClient) -> None:
    response = client.get("/health")
    assert response.status_code == 200
    assert response.json() == {"status": "ok", "version": settings.app_version}


def test_v1_health_reports_store(client: TestClient) -> None:
    response = client.get("/api/v1/health")
    assert response.status_code == 200
    payload = response.json()
    assert payload["status"] == "ok"
    assert payload["store"] == {"status": "ok", "backend": "memory"}


def test_v1_health_without_store(settings_override) -> None:
    settings_override(telemetry_backend="none")
    with TestClient(create_app()) as client:
        payload = client.get("/api/v1/health").json()
    assert payload["store"]["status"] == "disabled"


def test_v1_info(client: TestClient) -> None:
    response = client.get("/api/v1/info")
    assert response.status_code == 200
    payload = response.json()
    assert payload["name"] == settings.app_name
    assert payload["version"] == settings.app_version
    assert payload["debug"] == settings.debug
    assert payload["cors_origins"] == settings.cors_origins
    assert payload["telemetry_backend"] == "memory"
    assert payload["ingest_configured"] is True
    assert payload["rate_limit"]["max_requests"] == settings.rate_limit_max_requests


def test_empty_store_has_no_latest_reading(client: TestClient) -> None:
    response = client.get("/api/v1/telemetry/latest")
    assert response.status_code == 404
    body = response.json()
    assert body["error"] == "No telemetry data"
    assert "seed demo data" in body["message"]

    filtered = client.get("/api/v1/telemetry/latest", params={"deviceId": "esp32-solar-01"})
    assert filtered.status_code == 404
    assert "esp32-solar-01" in filtered.json()["message"]


def test_seed_then_read_dashboard(client: TestClient) -> None:
    seeded = client.post("/api/v1/seed")
    assert seeded.status_code == 200
    assert seeded.json() == {"ok": True, "inserted": 1491, "source": "stored"}

    live = client.get("/api/v1/telemetry/live").json()
    assert live["source"] == "stored"
    assert live["deviceId"] is None
    assert live["count"] == len(live["points"]) > 0
    timestamps = [point["ts"] for point in live["points"]]
    assert timestamps == sorted(timestamps)
    assert set(live["points"][0]) == {"ts", "voltage", "current", "power", "deviceId", "source"}

    latest = client.get("/api/v1/telemetry/latest").json()
    assert latest["deviceId"] == settings.demo_device_id
    assert latest["ts"] == timestamps[-1]

    hourly = client.get("/api/v1/telemetry/hourly").json()
    assert hourly["source"] == "stored"
    assert hourly["count"] == len(hourly["points"]) >= 24

    devices = client.get("/api/v1/telemetry/devices").json()
    assert devices["count"] == 1
    assert devices["devices"][0]["deviceId"] == settings.demo_device_id
    assert devices["devices"][0]["dataPoints"] == 1491


def test_live_filter_by_device(client: TestClient) -> None:
    client.post("/api/v1/seed")
    response = client.get("/api/v1/telemetry/live", params={"deviceId": "esp32-solar-01"})
    assert response.status_code == 200
    body = response.json()
    assert body == {"points": [], "source": "stored", "count": 0, "deviceId": "esp32-solar-01"}


def test_dashboard_falls_back_to_demo_data(client: TestClient) -> None:
    client.app.state.telemetry_service = TelemetryService(None, demo_cache)

    live = client.get("/api/v1/telemetry/live").json()
    assert live["source"] == "demo"
    assert live["count"] > 0

    hourly = client.get("/api/v1/telemetry/hourly").json()
    assert hourly["source"] == "demo"

    devices = client.get("/api/v1/telemetry/devices").json()
    assert devices["devices"][0]["source"] == "demo"

    seeded = client.post("/api/v1/seed").json()
    assert seeded["source"] == "demo"
    assert seeded["ok"] is True
