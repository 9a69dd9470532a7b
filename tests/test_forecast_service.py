"""Tests for backend/services/forecast_service.py: caching and batch fan-out."""

from __future__ import annotations

import os
import sys
from datetime import datetime

import pytest

sys.path.insert(0, os.path.join(os.path.dirname(__file__), "..", "backend"))
import cache_state  # noqa: E402
from lift_params import LiftParametersError, LiftParameterStore, calibration_from_dict  # noqa: E402
from services.forecast_service import ForecastRequest, forecast_sites, get_site_forecast, local_now  # noqa: E402
from sites import SiteMetadata  # noqa: E402
from sounding import SoundingError  # noqa: E402

from conftest import LIFT_PARAMETERS, build_payload  # noqa: E402

NOW = datetime(2026, 6, 14, 10, 30)


def _request(site_id, payload, calls=None, site_type="Soaring"):
    def fetch():
        if calls is not None:
            calls.append(site_id)
        return payload

    return ForecastRequest(site=SiteMetadata(site_id=site_id, site_type=site_type), fetch=fetch)


@pytest.fixture
def store(calibration):
    return LiftParameterStore(calibration)


def test_cached_forecast_fetches_once(store, two_day_times):
    calls = []
    req = _request("kings", build_payload(two_day_times), calls)

    first = get_site_forecast(req, store=store, now=NOW)
    second = get_site_forecast(req, store=store, now=NOW)

    assert first is second
    assert calls == ["kings"]


def test_new_calibration_epoch_recomputes(store, two_day_times):
    calls = []
    req = _request("kings", build_payload(two_day_times), calls)

    get_site_forecast(req, store=store, now=NOW)
    store.set(calibration_from_dict({"lift_parameters": LIFT_PARAMETERS}))
    result = get_site_forecast(req, store=store, now=NOW)

    assert calls == ["kings", "kings"]
    assert result.calibration_epoch == store.epoch


def test_bad_payload_propagates_and_is_not_cached(store, two_day_times):
    payload = build_payload(two_day_times)
    del payload["hourly"]["cape"]

    with pytest.raises(SoundingError):
        get_site_forecast(_request("kings", payload), store=store, now=NOW)
    assert len(cache_state.forecast_cache) == 0


def test_missing_calibration_aborts_batch(two_day_times):
    calls = []
    requests = [_request("a", build_payload(two_day_times), calls)]

    with pytest.raises(LiftParametersError):
        forecast_sites(requests, store=LiftParameterStore(), now=NOW)
    assert calls == []


def test_batch_returns_results_in_request_order(store, two_day_times):
    good = build_payload(two_day_times)
    bad = build_payload(two_day_times)
    bad["hourly"]["time"] = bad["hourly"]["time"][:3]
    requests = [_request("a", good), _request("b", bad), _request("c", good, site_type="Mountain")]

    results = forecast_sites(requests, store=store, now=NOW, workers=3)

    assert [r.site_id for r in results] == ["a", "b", "c"]
    assert [r.ok for r in results] == [True, False, True]
    assert "expected 3" in results[1].error
    assert results[2].forecast.site.site_type == "Mountain"


def test_local_now_is_naive():
    assert local_now("America/Denver").tzinfo is None


def test_requested_dates_do_not_rotate_the_cache(store, two_day_times):
    calls = []
    req = _request("kings", build_payload(two_day_times), calls)

    get_site_forecast(req, store=store, now=NOW)
    get_site_forecast(req, store=store, now=datetime(2026, 6, 15, 9, 0))
    get_site_forecast(req, store=store, now=NOW)

    # Both dates stay cached; only the server clock rotates
    assert calls == ["kings", "kings"]
    assert len(cache_state.forecast_cache) == 2
    assert cache_state.cache_context_stats_payload()["rotations"] == 1
