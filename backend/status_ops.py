"""Status/cache payload assembly helpers."""

from __future__ import annotations

from datetime import datetime, timezone


def build_calibration_payload(calibration):
    if calibration is None:
        return {"loaded": False, "epoch": 0, "loadedAt": None, "parameters": None, "colorMappings": {}}
    loaded_at = datetime.fromtimestamp(calibration.loaded_at, tz=timezone.utc) if calibration.loaded_at else None
    return {
        "loaded": True,
        "epoch": calibration.epoch,
        "loadedAt": loaded_at.isoformat().replace("+00:00", "Z") if loaded_at else None,
        "parameters": calibration.params.to_dict(),
        "colorMappings": {
            name: [[r.min_value, r.max_value, r.color] for r in ranges]
            for name, ranges in calibration.color_mappings.items()
        },
    }


def build_status_payload(
    *,
    calibration,
    forecast_cache_stats,
    cache_context_stats,
    api_error_counters,
    started_at,
    timezone_name,
    site_workers,
):
    now = datetime.now(timezone.utc)
    return {
        "calibration": {
            "loaded": calibration is not None,
            "epoch": calibration.epoch if calibration else 0,
            "ageMinutes": round((now.timestamp() - calibration.loaded_at) / 60.0, 1) if calibration and calibration.loaded_at else None,
        },
        "cache": {
            "forecast": forecast_cache_stats,
            "context": cache_context_stats,
        },
        "errors": {
            "http4xx": api_error_counters["4xx"],
            "http5xx": api_error_counters["5xx"],
        },
        "config": {
            "timezone": timezone_name,
            "siteWorkers": site_workers,
        },
        "uptimeSeconds": round(now.timestamp() - started_at, 1) if started_at else None,
        "serverTime": now.isoformat().replace("+00:00", "Z"),
    }
