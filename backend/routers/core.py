from __future__ import annotations

from fastapi import APIRouter, HTTPException

from status_ops import build_calibration_payload


def build_core_router(
    *,
    store,
    forecast_cache,
):
    router = APIRouter()

    @router.get("/api/health")
    async def health():
        calibration = store.get()
        return {
            "status": "ok" if calibration is not None else "degraded",
            "calibrationEpoch": store.epoch,
            "cache": len(forecast_cache),
        }

    @router.get("/api/lift_parameters")
    async def api_lift_parameters():
        calibration = store.get()
        if calibration is None:
            raise HTTPException(503, "Thermal lift parameters not available")
        return build_calibration_payload(calibration)

    return router
