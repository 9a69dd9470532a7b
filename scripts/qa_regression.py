#!/usr/bin/env python3
"""Cloudbase Lift regression checks for fragile thermal/classification behaviors.

Usage:
  python3 scripts/qa_regression.py [--base http://127.0.0.1:8502]
"""

from __future__ import annotations

import argparse
import os
import sys
from datetime import datetime, timedelta

import numpy as np
import requests

LEVELS = [900, 850, 800, 750, 700, 650, 600, 550, 500]


def fail(msg: str):
    raise AssertionError(msg)


def _backend_path():
    backend_dir = os.path.abspath(os.path.join(os.path.dirname(__file__), "..", "backend"))
    if backend_dir not in sys.path:
        sys.path.insert(0, backend_dir)


def _params():
    _backend_path()
    from lift_params import LiftParameters  # local import to keep API-only path lightweight

    return LiftParameters(
        thermal_lapse_rate=9.8,
        thermal_velocity_constant=6.0,
        initial_trigger_temp_diff=5.0,
        ongoing_trigger_temp_diff=3.0,
        thermal_ramp_distance=2000.0,
        thermal_ramp_start_pct=50.0,
        cloudbase_lapse_rates_diff=4.4,
        thermal_glider_sink_rate=0.8,
    )


def synthetic_payload(start: datetime, hours: int = 48, surface_temp: float = 30.0, elevation: float = 1400.0):
    """Dry summer column: heights 3300..18300 ft, temps 28..-7 °C, dewpoints 4..-26 °C."""
    heights = np.array([3300, 4900, 6500, 8100, 9900, 11800, 13800, 16000, 18300], dtype=float)
    temps = np.linspace(28.0, -7.0, len(LEVELS))
    dewpoints = np.linspace(4.0, -26.0, len(LEVELS))
    winds = np.linspace(6.0, 30.0, len(LEVELS))
    times = [start + timedelta(hours=i) for i in range(hours)]
    hourly = {
        "time": [t.strftime("%Y-%m-%dT%H:%M") for t in times],
        "temperature_2m": [surface_temp] * hours,
        "windspeed_10m": [8.0] * hours,
        "windgusts_10m": [12.0] * hours,
        "winddirection_10m": [180.0] * hours,
        "cloudcover": [10.0] * hours,
        "precipitation_probability": [0.0] * hours,
        "cape": [100.0] * hours,
        "weathercode": [1] * hours,
    }
    for i, p in enumerate(LEVELS):
        hourly[f"geopotential_height_{p}hPa"] = [float(heights[i])] * hours
        hourly[f"temperature_{p}hPa"] = [float(temps[i])] * hours
        hourly[f"dewpoint_{p}hPa"] = [float(dewpoints[i])] * hours
        hourly[f"windspeed_{p}hPa"] = [float(winds[i])] * hours
        hourly[f"winddirection_{p}hPa"] = [200.0] * hours
    return {"elevation": elevation, "hourly": hourly}


def check_surface_buffer_exclusion_logic():
    """Regression guard: levels within 200 ft of the surface never produce lift or change state."""
    _backend_path()
    from sounding import LevelData
    from thermal import BaseData, ThermalState, step

    params = _params()
    base = BaseData(surface_altitude=5000.0, surface_temp=35.0)
    state = ThermalState(thermal_dewpoint=35.0)
    for altitude in (4000.0, 5000.0, 5199.0):
        new_state, velocity = step(state, LevelData(900, altitude, 5.0, -10.0), None, base, params)
        if velocity != 0.0 or new_state != state:
            fail(f"surface buffer regression at {altitude} ft: velocity={velocity}, state={new_state}")


def check_top_of_lift_clamped_to_cloudbase():
    """Regression guard: top of lift never ends above a positive cloudbase, including the no-trigger path."""
    _backend_path()
    from sounding import LevelData
    from thermal import BaseData, ThermalState, step

    params = _params()
    base = BaseData(surface_altitude=1000.0, surface_temp=20.0)
    state = ThermalState(thermal_dewpoint=15.0, cloudbase_altitude=3000.0, trigger_reached_for_day=True)
    prior = LevelData(800, 4000.0, 10.0, 5.0)
    # Surface too cool for this level: top of lift would be set to the prior altitude (above cloudbase)
    new_state, _ = step(state, LevelData(750, 5000.0, 18.0, 0.0), prior, base, params)
    if new_state.top_of_lift_altitude > new_state.cloudbase_altitude:
        fail(f"top of lift above cloudbase: {new_state.top_of_lift_altitude} > {new_state.cloudbase_altitude}")


def check_soaring_override_logic():
    """Regression guard: soaring override downgrades calm sites but never masks a hazard."""
    _backend_path()
    from potential import PotentialInputs, classify_hour

    dirs = {"S": "good"}
    calm = PotentialInputs(10.0, 0.0, 50.0, 4.0, 6.0, 180.0, 2.0, 5.0, 2.0)
    fp = classify_hour(calm, "Soaring", dirs)
    if fp.combined != max(fp.surface_wind, fp.surface_gust):
        fail(f"soaring override not applied: combined={fp.combined}")

    stormy = PotentialInputs(10.0, 0.0, 900.0, 4.0, 6.0, 180.0, 2.0, 5.0, 2.0)
    fp = classify_hour(stormy, "Soaring", dirs)
    if fp.combined != 5:
        fail(f"soaring override masked CAPE hazard: combined={fp.combined}")


def check_wind_direction_wraparound():
    """Regression guard: bearings just west of north fall in the N sector."""
    _backend_path()
    from potential import bearing_in_sector, wind_direction_color

    for bearing in (338, 350, 355, 359, 0, 23):
        if not bearing_in_sector(bearing, "N"):
            fail(f"bearing {bearing} not in N sector")
    if wind_direction_color({"N": "good"}, 355, 15, 20) != 2:
        fail("355° on a north-facing site should be green")


def check_no_trigger_round_trip():
    """Regression guard: a surface too cool to trigger yields no lift and top of lift at the surface."""
    _backend_path()
    from aggregate import process_forecast
    from lift_params import Calibration
    from sites import SiteMetadata
    from sounding import ingest_forecast

    start = datetime(2026, 6, 14, 0, 0)
    forecast = ingest_forecast(synthetic_payload(start, surface_temp=5.0))
    result = process_forecast(
        forecast, Calibration(params=_params()), SiteMetadata(site_id="qa"), now=start + timedelta(hours=9),
    )
    if not result.hours:
        fail("no hours retained for round-trip check")
    for hour in result.hours:
        if any(lvl.thermal_velocity != 0 for lvl in hour.levels):
            fail(f"unexpected lift at {hour.time}")
        if hour.top_of_lift_altitude != result.surface_altitude:
            fail(f"top of lift {hour.top_of_lift_altitude} != surface {result.surface_altitude} at {hour.time}")


def _now_str(dt: datetime) -> str:
    return dt.strftime("%Y-%m-%dT%H:%M")


def check_health(base: str):
    r = requests.get(base + "/api/health", timeout=10)
    if r.status_code != 200:
        fail(f"/api/health failed: {r.status_code}")
    if r.json().get("status") != "ok":
        fail(f"backend degraded: {r.json()}")


def check_forecast_endpoint(base: str):
    start = datetime(2026, 6, 14, 0, 0)
    body = {
        "site": {"id": "qa-forecast", "siteType": "Mountain", "windDirection": {"S": "good"}},
        "forecast": synthetic_payload(start),
        "now": _now_str(start + timedelta(hours=10)),
    }
    r = requests.post(base + "/api/forecast", json=body, timeout=30)
    if r.status_code != 200:
        fail(f"/api/forecast failed: {r.status_code} {r.text[:200]}")
    hours = r.json().get("hours", [])
    if not hours:
        fail("/api/forecast returned no hours")
    for h in hours:
        for lvl in h["levels"]:
            if lvl["thermalVelocity"] < 0:
                fail(f"negative thermal velocity at {h['time']} {lvl['pressure']} hPa")


def check_flying_potential_scale(base: str):
    start = datetime(2026, 6, 14, 0, 0)
    sites = [
        {"site": {"id": f"qa-{t or 'none'}", "siteType": t}, "forecast": synthetic_payload(start)}
        for t in ("Soaring", "Mountain", "Airport", "Aloft", "")
    ]
    r = requests.post(
        base + "/api/flying_potential",
        json={"sites": sites, "now": _now_str(start + timedelta(hours=10))},
        timeout=60,
    )
    if r.status_code != 200:
        fail(f"/api/flying_potential failed: {r.status_code}")
    for s in r.json().get("sites", []):
        if s["status"] != "ok":
            fail(f"site {s['siteId']} failed: {s.get('error')}")
        bad = [h for h in s["hours"] if not 0 <= h["combinedColorValue"] <= 5]
        if bad:
            fail(f"combined rating out of scale for {s['siteId']}: {bad[:2]}")


def check_bad_payload_rejected(base: str):
    payload = synthetic_payload(datetime(2026, 6, 14, 0, 0))
    del payload["hourly"]["cape"]
    r = requests.post(base + "/api/forecast", json={"site": {"id": "qa-bad"}, "forecast": payload}, timeout=30)
    if r.status_code != 422:
        fail(f"bad payload should be 422, got {r.status_code}")
    if not r.headers.get("X-Request-Id"):
        fail("error response missing X-Request-Id")


def main():
    ap = argparse.ArgumentParser()
    ap.add_argument("--base", default="http://127.0.0.1:8502")
    args = ap.parse_args()
    base = args.base.rstrip("/")

    # Logic-only checks run without a server
    check_surface_buffer_exclusion_logic()
    check_top_of_lift_clamped_to_cloudbase()
    check_soaring_override_logic()
    check_wind_direction_wraparound()
    check_no_trigger_round_trip()

    try:
        check_health(base)
    except requests.RequestException:
        print("SKIP: backend not reachable; skipping HTTP regression checks")
        print("PASS: Cloudbase regression checks passed (logic only)")
        return

    check_forecast_endpoint(base)
    check_flying_potential_scale(base)
    check_bad_payload_rejected(base)

    print("PASS: Cloudbase regression checks passed")


if __name__ == "__main__":
    main()
