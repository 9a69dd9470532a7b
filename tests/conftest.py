"""Shared pytest fixtures for Cloudbase Lift tests."""

from __future__ import annotations

import os
import sys
from datetime import datetime, timedelta

import pytest
import requests

BACKEND_DIR = os.path.join(os.path.dirname(__file__), "..", "backend")
sys.path.insert(0, BACKEND_DIR)

from cache_state import reset_cache_state  # noqa: E402
from lift_params import calibration_from_dict  # noqa: E402

CLOUDBASE_BASE = os.environ.get("CLOUDBASE_BASE", "http://127.0.0.1:8502")

LIFT_PARAMETERS = {
    "thermalLapseRate": 9.8,
    "thermalVelocityConstant": 6.0,
    "initialTriggerTempDiff": 5.0,
    "ongoingTriggerTempDiff": 3.0,
    "thermalRampDistance": 2000.0,
    "thermalRampStartPct": 50.0,
    "cloudbaseLapseRatesDiff": 4.4,
    "thermalGliderSinkRate": 0.8,
}

# pressure -> (height ft, temp °C, dewpoint °C, wind speed, wind direction)
# 1400 m elevation puts the surface at 4603 ft, so 900 hPa sits inside the surface buffer.
DRY_COLUMN = {
    900: (3300.0, 28.0, 4.0, 6.0, 200.0),
    850: (4900.0, 24.0, 2.0, 8.0, 210.0),
    800: (6500.0, 20.0, 0.0, 10.0, 220.0),
    750: (8100.0, 16.0, -2.0, 12.0, 230.0),
    700: (9900.0, 12.0, -5.0, 14.0, 240.0),
    650: (11800.0, 8.0, -9.0, 16.0, 250.0),
    600: (13800.0, 4.0, -14.0, 20.0, 260.0),
    550: (16000.0, -1.0, -20.0, 24.0, 270.0),
    500: (18300.0, -7.0, -26.0, 30.0, 280.0),
}
ELEVATION_M = 1400.0


def _reachable(url: str, timeout: float = 3.0) -> bool:
    try:
        r = requests.get(url + "/api/health", timeout=timeout)
        return r.status_code == 200
    except Exception:
        return False


def build_payload(times, surface_temps=None, column=None, elevation=ELEVATION_M, **surface):
    """Provider-shaped payload with one value per time; level values constant across hours."""
    column = column or DRY_COLUMN
    n = len(times)
    temps = surface_temps if surface_temps is not None else [30.0] * n
    hourly = {
        "time": [t.strftime("%Y-%m-%dT%H:%M") for t in times],
        "temperature_2m": list(temps),
        "windspeed_10m": [surface.get("windspeed", 8.0)] * n,
        "windgusts_10m": [surface.get("windgusts", 12.0)] * n,
        "winddirection_10m": [surface.get("winddirection", 180.0)] * n,
        "cloudcover": [surface.get("cloudcover", 0.0)] * n,
        "precipitation_probability": [surface.get("precip", 0.0)] * n,
        "cape": [surface.get("cape", 0.0)] * n,
        "weathercode": [surface.get("weathercode", 0)] * n,
    }
    for p, (height, temp, dewpoint, speed, direction) in column.items():
        hourly[f"geopotential_height_{p}hPa"] = [height] * n
        hourly[f"temperature_{p}hPa"] = [temp] * n
        hourly[f"dewpoint_{p}hPa"] = [dewpoint] * n
        hourly[f"windspeed_{p}hPa"] = [speed] * n
        hourly[f"winddirection_{p}hPa"] = [direction] * n
    return {"elevation": elevation, "hourly": hourly}


def hourly_times(start: datetime, hours: int):
    return [start + timedelta(hours=i) for i in range(hours)]


@pytest.fixture
def calibration():
    return calibration_from_dict({"lift_parameters": dict(LIFT_PARAMETERS)})


@pytest.fixture
def params(calibration):
    return calibration.params


@pytest.fixture
def two_day_times():
    return hourly_times(datetime(2026, 6, 14, 0, 0), 48)


@pytest.fixture(autouse=True)
def _clean_forecast_cache():
    reset_cache_state()
    yield
    reset_cache_state()


@pytest.fixture(scope="session")
def cloudbase_base():
    """URL of a running Cloudbase Lift backend. Skip session if not reachable."""
    if not _reachable(CLOUDBASE_BASE):
        pytest.skip(f"Cloudbase server not reachable at {CLOUDBASE_BASE}: set CLOUDBASE_BASE or start backend.")
    return CLOUDBASE_BASE
