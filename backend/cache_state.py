"""Forecast result cache state and helpers."""

from __future__ import annotations

import threading
import time
from collections import OrderedDict
from typing import Any, Callable, Optional

from constants import FORECAST_CACHE_MAX_ITEMS, FORECAST_CACHE_TTL_SECONDS
from logging_config import setup_logging

logger = setup_logging(__name__, level="INFO")

# Completed site forecasts (LRU + TTL)
forecast_cache = OrderedDict()  # key -> (SiteForecast, ts)
forecast_cache_metrics = {
    "hits": 0,
    "misses": 0,
    "evictions": 0,
    "expired": 0,
    "singleflightWaits": 0,
    "clears": 0,
}
_cache_lock = threading.RLock()

# Singleflight coordination for forecast misses
_forecast_inflight = {}  # key -> threading.Event
_forecast_inflight_lock = threading.Lock()

# Local-date-aware invalidation state
cache_context = {"key": None, "rotations": 0}


def forecast_cache_key(
    *,
    site_id: str,
    latitude: Optional[float],
    longitude: Optional[float],
    site_type: str,
    local_date: str,
    local_hour: int,
    epoch: int,
    sunrise: Optional[str] = None,
    sunset: Optional[str] = None,
    source: str = "",
) -> str:
    """Cache key for one site's forecast.

    Includes the calibration epoch, so a reload never serves results computed with
    the old parameters, and the local hour, since retention depends on now.
    """
    return "|".join(
        str(p) for p in (
            site_id, latitude, longitude, site_type, local_date, local_hour,
            sunrise or "", sunset or "", f"e{epoch}", source,
        )
    )


def forecast_cache_get(key: str):
    now = time.time()
    with _cache_lock:
        item = forecast_cache.get(key)
        if item is None:
            forecast_cache_metrics["misses"] += 1
            return None
        result, ts = item
        if now - ts > FORECAST_CACHE_TTL_SECONDS:
            del forecast_cache[key]
            forecast_cache_metrics["expired"] += 1
            forecast_cache_metrics["misses"] += 1
            return None
        forecast_cache.move_to_end(key)
        forecast_cache_metrics["hits"] += 1
        return result


def forecast_cache_set(key: str, result) -> None:
    with _cache_lock:
        forecast_cache[key] = (result, time.time())
        forecast_cache.move_to_end(key)
        while len(forecast_cache) > FORECAST_CACHE_MAX_ITEMS:
            evicted_key, _ = forecast_cache.popitem(last=False)
            forecast_cache_metrics["evictions"] += 1
            logger.debug(f"Forecast cache eviction: {evicted_key}")


def forecast_cache_get_or_compute(key: str, compute_fn: Callable[[], Any]):
    """Singleflight wrapper for site forecasts.

    Only one caller computes a given key at a time; concurrent callers wait and reuse
    the cached result. Nothing is stored when compute_fn raises.
    """
    result = forecast_cache_get(key)
    if result is not None:
        return result

    owner = False
    evt = None
    with _forecast_inflight_lock:
        evt = _forecast_inflight.get(key)
        if evt is None:
            evt = threading.Event()
            _forecast_inflight[key] = evt
            owner = True

    if owner:
        try:
            result = compute_fn()
            forecast_cache_set(key, result)
            return result
        finally:
            with _forecast_inflight_lock:
                done_evt = _forecast_inflight.pop(key, None)
                if done_evt is not None:
                    done_evt.set()

    with _cache_lock:
        forecast_cache_metrics["singleflightWaits"] += 1
    evt.wait(timeout=30.0)
    result = forecast_cache_get(key)
    if result is not None:
        return result

    # Owner failed before filling cache
    logger.warning(f"Singleflight fallback: {key}")
    result = compute_fn()
    forecast_cache_set(key, result)
    return result


def forecast_cache_clear() -> int:
    with _cache_lock:
        n = len(forecast_cache)
        forecast_cache.clear()
        forecast_cache_metrics["clears"] += 1
    logger.info(f"Forecast cache cleared ({n} items)")
    return n


def rotate_caches_for_context(context_key: str) -> bool:
    """Invalidate the forecast cache when the local calendar date changes."""
    with _cache_lock:
        if cache_context["key"] == context_key:
            return False
        previous = cache_context["key"]
        cache_context["key"] = context_key
        cache_context["rotations"] += 1
        forecast_cache.clear()
    logger.info(f"Forecast cache rotated: {previous} -> {context_key}")
    return True


def reset_cache_state() -> None:
    """Drop all entries, metrics and context (tests and admin reloads)."""
    with _cache_lock:
        forecast_cache.clear()
        for k in forecast_cache_metrics:
            forecast_cache_metrics[k] = 0
        cache_context["key"] = None
        cache_context["rotations"] = 0


def forecast_cache_stats_payload():
    with _cache_lock:
        total = forecast_cache_metrics["hits"] + forecast_cache_metrics["misses"]
        hit_rate = (forecast_cache_metrics["hits"] / total) if total else None
        return {
            "items": len(forecast_cache),
            "maxItems": FORECAST_CACHE_MAX_ITEMS,
            "ttlSeconds": FORECAST_CACHE_TTL_SECONDS,
            "fillRatio": (len(forecast_cache) / FORECAST_CACHE_MAX_ITEMS) if FORECAST_CACHE_MAX_ITEMS else 0.0,
            "metrics": dict(forecast_cache_metrics),
            "hitRate": hit_rate,
        }


def cache_context_stats_payload():
    with _cache_lock:
        return {
            "current": cache_context["key"],
            "rotations": cache_context["rotations"],
        }
