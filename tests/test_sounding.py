"""Tests for backend/sounding.py: payload validation and indexing."""

from __future__ import annotations

import json
import os
import sys
from datetime import datetime

import pytest

sys.path.insert(0, os.path.join(os.path.dirname(__file__), "..", "backend"))
from sounding import SoundingError, ingest_forecast, ingest_forecast_json, level_key, required_keys  # noqa: E402

from conftest import build_payload, hourly_times  # noqa: E402

TIMES = hourly_times(datetime(2026, 6, 14, 6, 0), 4)


def test_required_keys_cover_every_level():
    keys = required_keys()
    assert "temperature_2m" in keys
    assert level_key("dewpoint", 500) in keys
    assert level_key("geopotential_height", 900) in keys
    assert len(keys) == 8 + 9 * 5


def test_ingest_indexes_hours_and_levels():
    forecast = ingest_forecast(build_payload(TIMES))

    assert len(forecast) == 4
    hour = forecast.hour(2)
    assert hour.time == datetime(2026, 6, 14, 8, 0)
    assert hour.surface_temp == 30.0
    assert [lvl.pressure_hpa for lvl in hour.levels] == [900, 850, 800, 750, 700, 650, 600, 550, 500]
    assert hour.level(700).altitude == 9900.0
    assert hour.level(700).dewpoint == -5.0


def test_surface_altitude_from_elevation():
    forecast = ingest_forecast(build_payload(TIMES, elevation=1400.0))
    # 1400 m -> 4593 ft, plus 10 ft
    assert forecast.surface_altitude == 4603.0


def test_max_pressure_reading_skips_levels_below_surface_buffer():
    forecast = ingest_forecast(build_payload(TIMES))
    assert forecast.max_pressure_reading() == 850


def test_max_pressure_reading_defaults_to_sea_level():
    forecast = ingest_forecast(build_payload(TIMES, elevation=0.0))
    assert forecast.max_pressure_reading() == 1000


def test_nulls_repaired_to_zero():
    payload = build_payload(TIMES)
    payload["hourly"]["weathercode"][1] = None
    payload["hourly"]["cape"] = [None] * 4

    forecast = ingest_forecast(payload)

    assert forecast.hour(1).weather_code == 0
    assert forecast.hour(3).cape == 0.0


def test_out_of_range_numbers_repaired_to_zero():
    # JSON 1e400 parses as inf
    payload = json.loads(json.dumps(build_payload(TIMES)).replace("\"weathercode\": [0", "\"weathercode\": [1e400"))
    payload["hourly"]["temperature_2m"][2] = float("-inf")
    payload["elevation"] = float("inf")

    forecast = ingest_forecast(payload)

    assert forecast.hour(0).weather_code == 0
    assert forecast.hour(2).surface_temp == 0.0
    assert forecast.surface_altitude == 10.0


def test_missing_variable_rejects_payload():
    payload = build_payload(TIMES)
    del payload["hourly"]["dewpoint_650hPa"]

    with pytest.raises(SoundingError, match="dewpoint_650hPa"):
        ingest_forecast(payload)


def test_length_mismatch_rejects_payload():
    payload = build_payload(TIMES)
    payload["hourly"]["windspeed_10m"] = payload["hourly"]["windspeed_10m"][:2]

    with pytest.raises(SoundingError, match="windspeed_10m"):
        ingest_forecast(payload)


@pytest.mark.parametrize("payload", [
    None,
    {},
    {"elevation": 1400.0},
    {"elevation": "high", "hourly": {}},
    {"elevation": 1400.0, "hourly": {"time": []}},
    {"elevation": 1400.0, "hourly": {"time": ["yesterday"]}},
])
def test_malformed_payloads_raise(payload):
    with pytest.raises(SoundingError):
        ingest_forecast(payload)


def test_non_numeric_values_raise():
    payload = build_payload(TIMES)
    payload["hourly"]["temperature_2m"][0] = "warm"

    with pytest.raises(SoundingError):
        ingest_forecast(payload)


def test_ingest_json_text():
    forecast = ingest_forecast_json(json.dumps(build_payload(TIMES)), site_id="kings")
    assert len(forecast) == 4

    with pytest.raises(SoundingError):
        ingest_forecast_json("{not json", site_id="kings")


def test_sounding_error_is_value_error():
    assert issubclass(SoundingError, ValueError)
