"""HTTP surface tests using FastAPI's TestClient (no running server needed)."""

from __future__ import annotations

import os
import sys
import threading
from datetime import datetime
from types import SimpleNamespace

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient

sys.path.insert(0, os.path.join(os.path.dirname(__file__), "..", "backend"))
import app as app_module  # noqa: E402
from routers.forecast import build_forecast_router  # noqa: E402
from services.forecast_service import ForecastRequest  # noqa: E402
from sites import SiteMetadata  # noqa: E402

from conftest import build_payload, hourly_times  # noqa: E402

TIMES = hourly_times(datetime(2026, 6, 14, 0, 0), 48)
SITE = {
    "id": "kings",
    "name": "Kings Peak",
    "siteType": "Soaring",
    "latitude": 40.77,
    "longitude": -110.37,
    "windDirection": {"S": "good", "SW": "good"},
}


@pytest.fixture
def client(calibration):
    previous = app_module.lift_store.get()
    app_module.lift_store.set(calibration)
    yield TestClient(app_module.app)
    app_module.lift_store.set(previous)


def _forecast_body(**overrides):
    body = {"site": SITE, "forecast": build_payload(TIMES), "now": "2026-06-14T10:30"}
    body.update(overrides)
    return body


def test_health(client):
    r = client.get("/api/health")
    assert r.status_code == 200
    assert r.json()["status"] == "ok"
    assert "X-Request-Id" in r.headers


def test_lift_parameters(client, calibration):
    r = client.get("/api/lift_parameters")
    assert r.status_code == 200
    data = r.json()
    assert data["epoch"] == calibration.epoch
    assert data["parameters"]["thermalLapseRate"] == 9.8


def test_forecast(client):
    r = client.post("/api/forecast", json=_forecast_body())
    assert r.status_code == 200
    data = r.json()
    assert data["site"]["id"] == "kings"
    assert data["surfaceAltitude"] == 4603.0
    assert data["hours"][0]["time"] == "2026-06-14T10:00"
    assert data["hours"][0]["formattedTopOfLift"] == "rocket"


def test_forecast_is_cached(client):
    client.post("/api/forecast", json=_forecast_body())
    client.post("/api/forecast", json=_forecast_body())

    stats = client.get("/api/cache_stats").json()["forecastCache"]
    assert stats["items"] == 1
    assert stats["metrics"]["hits"] == 1


def test_forecast_rejects_bad_payload_with_422(client):
    payload = build_payload(TIMES)
    del payload["hourly"]["dewpoint_500hPa"]

    r = client.post("/api/forecast", json=_forecast_body(forecast=payload), headers={"X-Request-Id": "abc123"})

    assert r.status_code == 422
    assert r.json()["requestId"] == "abc123"
    assert "dewpoint_500hPa" in r.json()["detail"]


def test_forecast_requires_site_id(client):
    r = client.post("/api/forecast", json=_forecast_body(site={"name": "nameless"}))
    assert r.status_code == 400


def test_forecast_invalid_json(client):
    r = client.post("/api/forecast", content=b"{nope", headers={"Content-Type": "application/json"})
    assert r.status_code == 400


def test_forecast_without_calibration_is_503(client):
    app_module.lift_store.set(None)

    r = client.post("/api/forecast", json=_forecast_body())

    assert r.status_code == 503
    assert client.get("/api/health").json()["status"] == "degraded"


def test_flying_potential_batch(client):
    bad = build_payload(TIMES)
    del bad["hourly"]["cape"]
    body = {
        "now": "2026-06-14T10:30",
        "sites": [
            {"site": SITE, "forecast": build_payload(TIMES)},
            {"site": dict(SITE, id="broken"), "forecast": bad},
        ],
    }

    r = client.post("/api/flying_potential", json=body)

    assert r.status_code == 200
    data = r.json()
    assert data["count"] == 2
    assert data["errors"] == 1
    ok, broken = data["sites"]
    assert ok["status"] == "ok"
    assert all(0 <= h["combinedColorValue"] <= 5 for h in ok["hours"])
    assert broken["status"] == "error"


def test_flying_potential_requires_sites(client):
    r = client.post("/api/flying_potential", json={"sites": []})
    assert r.status_code == 400


def test_cache_clear(client):
    client.post("/api/forecast", json=_forecast_body())

    r = client.post("/api/cache/clear")

    assert r.json() == {"status": "ok", "cleared": 1}
    assert client.get("/api/cache_stats").json()["forecastCache"]["items"] == 0


def test_status(client):
    r = client.get("/api/status")
    assert r.status_code == 200
    data = r.json()
    assert data["calibration"]["loaded"] is True
    assert "forecast" in data["cache"]


def test_startup_with_malformed_config_serves_degraded(tmp_path, monkeypatch):
    path = tmp_path / "broken.yaml"
    path.write_text("lift_parameters: {thermalLapseRate: [\n")
    monkeypatch.setattr(app_module, "LIFT_CONFIG_PATH", str(path))
    previous = app_module.lift_store.get()
    app_module.lift_store.set(None)
    try:
        with TestClient(app_module.app) as client:
            assert client.get("/api/health").json()["status"] == "degraded"
            assert client.post("/api/forecast", json=_forecast_body()).status_code == 503
    finally:
        app_module.lift_store.set(previous)


def test_batch_work_does_not_block_other_requests():
    entered = threading.Event()
    released = threading.Event()
    outcome = {}

    def slow_forecast_sites(requests, *, store, now):
        entered.set()
        outcome["released"] = released.wait(timeout=5)
        return []

    app = FastAPI()
    app.include_router(build_forecast_router(
        store=SimpleNamespace(epoch=1),
        site_from_dict=SiteMetadata.from_dict,
        ForecastRequest=ForecastRequest,
        get_site_forecast=None,
        forecast_sites=slow_forecast_sites,
        local_now=datetime.now,
    ))

    @app.get("/release")
    async def release():
        released.set()
        return {"ok": True}

    body = {"now": "2026-06-14T10:30", "sites": [{"site": SITE, "forecast": build_payload(TIMES[:2])}]}
    with TestClient(app) as client:
        batch = threading.Thread(target=lambda: outcome.update(response=client.post("/api/flying_potential", json=body)))
        batch.start()
        assert entered.wait(timeout=5)
        assert client.get("/release").status_code == 200
        batch.join(timeout=10)

    # The release request was served while the batch was still waiting
    assert outcome["released"] is True
    assert outcome["response"].status_code == 200
    assert outcome["response"].json()["count"] == 0
