"""Tests for backend/cache_state.py: TTL/LRU, singleflight and date rotation."""

from __future__ import annotations

import os
import sys
import threading
import time

import pytest

sys.path.insert(0, os.path.join(os.path.dirname(__file__), "..", "backend"))
import cache_state  # noqa: E402


def _key(site_id="kings", epoch=1, hour=10):
    return cache_state.forecast_cache_key(
        site_id=site_id, latitude=40.7, longitude=-110.3, site_type="Mountain",
        local_date="2026-06-14", local_hour=hour, epoch=epoch,
    )


def test_key_changes_with_epoch_and_hour():
    assert _key(epoch=1) != _key(epoch=2)
    assert _key(hour=10) != _key(hour=11)
    assert _key() == _key()


def test_get_set_hit_and_miss():
    assert cache_state.forecast_cache_get(_key()) is None
    cache_state.forecast_cache_set(_key(), "result")

    assert cache_state.forecast_cache_get(_key()) == "result"
    metrics = cache_state.forecast_cache_stats_payload()["metrics"]
    assert metrics["hits"] == 1
    assert metrics["misses"] == 1


def test_expired_entries_are_dropped(monkeypatch):
    cache_state.forecast_cache_set(_key(), "result")
    monkeypatch.setattr(cache_state, "FORECAST_CACHE_TTL_SECONDS", -1)

    assert cache_state.forecast_cache_get(_key()) is None
    assert cache_state.forecast_cache_metrics["expired"] == 1


def test_lru_eviction(monkeypatch):
    monkeypatch.setattr(cache_state, "FORECAST_CACHE_MAX_ITEMS", 2)
    cache_state.forecast_cache_set(_key("a"), 1)
    cache_state.forecast_cache_set(_key("b"), 2)
    cache_state.forecast_cache_get(_key("a"))
    cache_state.forecast_cache_set(_key("c"), 3)

    assert cache_state.forecast_cache_get(_key("b")) is None
    assert cache_state.forecast_cache_get(_key("a")) == 1
    assert cache_state.forecast_cache_metrics["evictions"] == 1


def test_failed_compute_is_not_cached():
    def boom():
        raise ValueError("bad payload")

    with pytest.raises(ValueError):
        cache_state.forecast_cache_get_or_compute(_key(), boom)
    assert _key() not in cache_state.forecast_cache


def test_singleflight_computes_once():
    calls = []
    gate = threading.Event()

    def slow():
        calls.append(1)
        gate.wait(timeout=5.0)
        return "done"

    results = []
    threads = [
        threading.Thread(target=lambda: results.append(cache_state.forecast_cache_get_or_compute(_key(), slow)))
        for _ in range(4)
    ]
    for t in threads:
        t.start()
    time.sleep(0.2)
    gate.set()
    for t in threads:
        t.join(timeout=5.0)

    assert results == ["done"] * 4
    assert len(calls) == 1


def test_rotation_on_new_local_date():
    assert cache_state.rotate_caches_for_context("2026-06-14") is True
    cache_state.forecast_cache_set(_key(), "result")

    assert cache_state.rotate_caches_for_context("2026-06-14") is False
    assert len(cache_state.forecast_cache) == 1

    assert cache_state.rotate_caches_for_context("2026-06-15") is True
    assert len(cache_state.forecast_cache) == 0
    assert cache_state.cache_context_stats_payload() == {"current": "2026-06-15", "rotations": 2}


def test_clear():
    cache_state.forecast_cache_set(_key("a"), 1)
    cache_state.forecast_cache_set(_key("b"), 2)

    assert cache_state.forecast_cache_clear() == 2
    assert cache_state.forecast_cache_stats_payload()["items"] == 0
