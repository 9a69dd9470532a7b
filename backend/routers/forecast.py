from __future__ import annotations

import hashlib
import json
from datetime import datetime
from typing import Any, Dict, Optional

from fastapi import APIRouter, HTTPException, Request
from starlette.concurrency import run_in_threadpool


def _payload_digest(payload: Any) -> str:
    raw = json.dumps(payload, sort_keys=True, separators=(",", ":"), default=str)
    return hashlib.sha1(raw.encode("utf-8")).hexdigest()[:16]


def _parse_now(raw: Optional[str]) -> Optional[datetime]:
    if not raw:
        return None
    try:
        return datetime.fromisoformat(str(raw)).replace(tzinfo=None)
    except ValueError:
        raise HTTPException(400, f"Invalid now: {raw!r}")


def _hour_summary(hour) -> Dict[str, Any]:
    potential = hour.potential
    return {
        "time": hour.time.strftime("%Y-%m-%dT%H:%M"),
        "formattedTime": hour.formatted_time,
        "newDateFlag": hour.new_date_flag,
        "combinedColorValue": potential.combined,
        "combinedColor": potential.to_dict()["combinedColor"],
        "thermalVelocityMax": potential.thermal_velocity_max,
        "windsAloftMax": potential.winds_aloft_max,
        "formattedTopOfLift": hour.formatted_top_of_lift,
        "formattedCloudbase": hour.formatted_cloudbase,
    }


def build_forecast_router(
    *,
    store,
    site_from_dict,
    ForecastRequest,
    get_site_forecast,
    forecast_sites,
    local_now,
):
    router = APIRouter()

    def _forecast_request(item: Dict[str, Any]):
        if not isinstance(item, dict):
            raise HTTPException(400, "Site entry must be an object")
        payload = item.get("forecast")
        if not isinstance(payload, dict):
            raise HTTPException(400, "forecast payload is required")
        try:
            site = site_from_dict(item.get("site") or {})
        except ValueError as e:
            raise HTTPException(400, str(e))
        return ForecastRequest(
            site=site,
            fetch=lambda: payload,
            sunrise=item.get("sunrise"),
            sunset=item.get("sunset"),
            source=_payload_digest(payload),
        )

    @router.post("/api/forecast")
    async def api_forecast(request: Request):
        """Full per-hour forecast for one site from a provider payload."""
        try:
            body = await request.json()
        except Exception:
            raise HTTPException(400, "Invalid JSON")

        req = _forecast_request(body)
        now = _parse_now(body.get("now")) or local_now()
        result = await run_in_threadpool(get_site_forecast, req, store=store, now=now)
        return await run_in_threadpool(result.to_dict)

    @router.post("/api/flying_potential")
    async def api_flying_potential(request: Request):
        """Combined flying potential per hour for many sites."""
        try:
            body = await request.json()
        except Exception:
            raise HTTPException(400, "Invalid JSON")

        items = body.get("sites") if isinstance(body, dict) else None
        if not isinstance(items, list) or not items:
            raise HTTPException(400, "sites must be a non-empty array")

        requests = [_forecast_request(item) for item in items]
        now = _parse_now(body.get("now")) or local_now()
        # Batch work blocks on the pool and singleflight waits; keep it off the event loop
        results = await run_in_threadpool(forecast_sites, requests, store=store, now=now)

        sites = []
        for r in results:
            if r.ok:
                sites.append({
                    "siteId": r.site_id,
                    "status": "ok",
                    "surfaceAltitude": r.forecast.surface_altitude,
                    "hours": [_hour_summary(h) for h in r.forecast.hours],
                })
            else:
                sites.append({"siteId": r.site_id, "status": "error", "error": r.error})
        return {
            "sites": sites,
            "count": len(sites),
            "errors": sum(1 for r in results if not r.ok),
            "calibrationEpoch": store.epoch,
        }

    return router
