#!/usr/bin/env python3
"""Cloudbase Lift FastAPI backend: thermal lift forecasts and flying potential per site."""

import os
import sys
import time
import atexit
import uuid

from fastapi import FastAPI, HTTPException, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

# Add backend dir to path for flat module imports
sys.path.insert(0, os.path.dirname(__file__))
from logging_config import setup_logging
from constants import DEFAULT_TIMEZONE, LIFT_CONFIG_PATH, SITE_WORKERS
from lift_params import LiftParameterStore, LiftParametersError
from sounding import SoundingError
from sites import SiteMetadata
from status_ops import build_status_payload, build_calibration_payload
from cache_state import (
    forecast_cache, forecast_cache_clear, forecast_cache_stats_payload, cache_context_stats_payload,
)
from services.forecast_service import ForecastRequest, get_site_forecast, forecast_sites, local_now
from routers.core import build_core_router
from routers.admin import build_admin_router
from routers.forecast import build_forecast_router

logger = setup_logging(__name__, level="INFO")

app = FastAPI(title="Cloudbase Lift API")

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_methods=["*"],
    allow_headers=["*"],
)

api_error_counters = {"4xx": 0, "5xx": 0}
lift_store = LiftParameterStore()
STARTED_AT = time.time()

SCRIPT_DIR = os.path.dirname(os.path.abspath(__file__))
PID_FILE = os.path.join(SCRIPT_DIR, "logs", "cloudbase.pid")


def _request_id(request: Request) -> str:
    return getattr(request.state, "request_id", None) or uuid.uuid4().hex[:12]


def _error_response(request: Request, status_code: int, detail) -> JSONResponse:
    rid = _request_id(request)
    return JSONResponse(status_code=status_code, content={"detail": detail, "requestId": rid}, headers={"X-Request-Id": rid})


@app.exception_handler(HTTPException)
async def http_exception_handler(request: Request, exc: HTTPException):
    return _error_response(request, exc.status_code, exc.detail)


@app.exception_handler(SoundingError)
async def sounding_error_handler(request: Request, exc: SoundingError):
    return _error_response(request, 422, f"Invalid forecast payload: {exc}")


@app.exception_handler(LiftParametersError)
async def lift_parameters_error_handler(request: Request, exc: LiftParametersError):
    return _error_response(request, 503, str(exc))


@app.exception_handler(Exception)
async def unhandled_exception_handler(request: Request, exc: Exception):
    rid = _request_id(request)
    logger.exception(f"Unhandled error rid={rid}: {exc}")
    return JSONResponse(status_code=500, content={"detail": "Internal server error", "requestId": rid}, headers={"X-Request-Id": rid})


@app.middleware("http")
async def log_requests(request: Request, call_next):
    """Log API requests with method, path, and response time."""
    start_time = time.time()
    request_id = request.headers.get("X-Request-Id") or uuid.uuid4().hex[:12]
    request.state.request_id = request_id

    response = await call_next(request)

    duration_ms = (time.time() - start_time) * 1000
    response.headers["X-Request-Id"] = request_id

    if 400 <= response.status_code < 500:
        api_error_counters["4xx"] += 1
    elif response.status_code >= 500:
        api_error_counters["5xx"] += 1

    # Skip logging routine polling endpoints to reduce noise
    skip_paths = ['/api/health', '/api/cache_stats']
    if request.url.path not in skip_paths or response.status_code >= 400:
        logger.info(
            f"{request.method} {request.url.path} - {response.status_code} - {duration_ms:.2f}ms - rid={request_id}"
        )

    return response


@app.on_event("startup")
async def startup_event():
    """Load lift calibration and log server startup information."""
    logger.info("Cloudbase Lift API server starting")
    logger.info(f"Lift config: {LIFT_CONFIG_PATH}")
    logger.info(f"Timezone: {DEFAULT_TIMEZONE}, site workers: {SITE_WORKERS}")
    if lift_store.get() is not None:
        return
    try:
        lift_store.load(LIFT_CONFIG_PATH)
    except (LiftParametersError, OSError) as e:
        # Serve degraded; forecast endpoints answer 503 until a reload succeeds
        logger.critical(f"Lift calibration failed to load: {e}")


def _acquire_single_instance_or_exit(pid_file: str):
    """Simple PID-file guard to prevent accidental multi-process launches."""
    os.makedirs(os.path.dirname(pid_file), exist_ok=True)

    if os.path.exists(pid_file):
        try:
            with open(pid_file, "r") as f:
                old_pid = int(f.read().strip())
            if old_pid > 0:
                os.kill(old_pid, 0)  # check process exists
                raise SystemExit(f"Cloudbase backend already running with pid {old_pid} (pid file: {pid_file})")
        except ProcessLookupError:
            # stale pid file -> continue and overwrite
            pass
        except ValueError:
            # malformed pid file -> overwrite
            pass

    with open(pid_file, "w") as f:
        f.write(str(os.getpid()))

    def _cleanup_pid_file():
        try:
            if os.path.exists(pid_file):
                with open(pid_file, "r") as pf:
                    cur = pf.read().strip()
                if cur == str(os.getpid()):
                    os.remove(pid_file)
        except OSError:
            pass

    atexit.register(_cleanup_pid_file)


# ─── Admin endpoints ───

async def api_status():
    """Calibration state, cache metrics and error counters."""
    return build_status_payload(
        calibration=lift_store.get(),
        forecast_cache_stats=forecast_cache_stats_payload(),
        cache_context_stats=cache_context_stats_payload(),
        api_error_counters=api_error_counters,
        started_at=STARTED_AT,
        timezone_name=DEFAULT_TIMEZONE,
        site_workers=SITE_WORKERS,
    )


async def api_cache_stats():
    return {
        "forecastCache": forecast_cache_stats_payload(),
        "context": cache_context_stats_payload(),
    }


async def api_cache_clear():
    cleared = forecast_cache_clear()
    return {"status": "ok", "cleared": cleared}


async def api_reload_calibration():
    """Reload lift calibration from YAML; later forecasts use the new epoch."""
    calibration = lift_store.load(LIFT_CONFIG_PATH)
    return {"status": "ok", "calibration": build_calibration_payload(calibration)}


app.include_router(build_core_router(store=lift_store, forecast_cache=forecast_cache))
app.include_router(build_admin_router(
    api_status=api_status,
    api_cache_stats=api_cache_stats,
    api_cache_clear=api_cache_clear,
    api_reload_calibration=api_reload_calibration,
))
app.include_router(build_forecast_router(
    store=lift_store,
    site_from_dict=SiteMetadata.from_dict,
    ForecastRequest=ForecastRequest,
    get_site_forecast=get_site_forecast,
    forecast_sites=forecast_sites,
    local_now=lambda: local_now(DEFAULT_TIMEZONE),
))


if __name__ == "__main__":
    _acquire_single_instance_or_exit(PID_FILE)
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8502)
