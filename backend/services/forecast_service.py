from __future__ import annotations

from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional
from zoneinfo import ZoneInfo

from aggregate import SiteForecast, process_forecast
from cache_state import forecast_cache_get_or_compute, forecast_cache_key, rotate_caches_for_context
from constants import DEFAULT_TIMEZONE, SITE_WORKERS
from lift_params import Calibration, LiftParameterStore
from logging_config import setup_logging
from sites import SiteMetadata
from sounding import SoundingError, ingest_forecast

logger = setup_logging(__name__, level="INFO")


@dataclass(frozen=True)
class ForecastRequest:
    site: SiteMetadata
    fetch: Callable[[], Dict[str, Any]]
    sunrise: Optional[str] = None
    sunset: Optional[str] = None
    # Distinguishes payload sources sharing a site (e.g. a request body digest)
    source: str = ""


@dataclass(frozen=True)
class SiteResult:
    site_id: str
    forecast: Optional[SiteForecast] = None
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.forecast is not None


def local_now(tz_name: str = DEFAULT_TIMEZONE) -> datetime:
    """Current wall-clock time in the region timezone, as a naive datetime."""
    return datetime.now(ZoneInfo(tz_name)).replace(tzinfo=None)


def build_site_forecast(
    payload: Dict[str, Any],
    site: SiteMetadata,
    calibration: Calibration,
    *,
    now: datetime,
    sunrise: Optional[str] = None,
    sunset: Optional[str] = None,
) -> SiteForecast:
    """Ingest one payload and aggregate it. Raises SoundingError for bad payloads."""
    try:
        forecast = ingest_forecast(payload)
    except SoundingError as e:
        logger.error(f"Rejected forecast payload for {site.site_id}: {e}")
        raise
    return process_forecast(forecast, calibration, site, now=now, sunrise=sunrise, sunset=sunset)


def get_site_forecast(
    request: ForecastRequest,
    *,
    store: LiftParameterStore,
    now: Optional[datetime] = None,
    calibration: Optional[Calibration] = None,
) -> SiteForecast:
    """Cached forecast for one site.

    The cache rotates when the server's local date changes; a caller-supplied now
    only selects the cache key. Only complete results are stored; a fetch or ingest
    failure propagates and leaves the cache untouched.
    """
    calibration = calibration or store.require()
    rotate_caches_for_context(local_now().strftime("%Y-%m-%d"))
    now = now or local_now()

    site = request.site
    key = forecast_cache_key(
        site_id=site.site_id,
        latitude=site.latitude,
        longitude=site.longitude,
        site_type=site.site_type,
        local_date=now.strftime("%Y-%m-%d"),
        local_hour=now.hour,
        epoch=calibration.epoch,
        sunrise=request.sunrise,
        sunset=request.sunset,
        source=request.source,
    )

    def _compute() -> SiteForecast:
        return build_site_forecast(
            request.fetch(), site, calibration, now=now, sunrise=request.sunrise, sunset=request.sunset,
        )

    return forecast_cache_get_or_compute(key, _compute)


def forecast_sites(
    requests: List[ForecastRequest],
    *,
    store: LiftParameterStore,
    now: Optional[datetime] = None,
    workers: int = SITE_WORKERS,
) -> List[SiteResult]:
    """Forecast many sites on a bounded worker pool.

    Missing calibration aborts the whole batch before any site is processed.
    Per-site failures are returned as errors; results keep request order.
    """
    calibration = store.require()
    now = now or local_now()
    results: Dict[int, SiteResult] = {}

    def _one(req: ForecastRequest) -> SiteForecast:
        return get_site_forecast(req, store=store, now=now, calibration=calibration)

    with ThreadPoolExecutor(max_workers=max(1, workers)) as executor:
        future_to_index = {executor.submit(_one, req): i for i, req in enumerate(requests)}
        for future in as_completed(future_to_index):
            i = future_to_index[future]
            site_id = requests[i].site.site_id
            try:
                results[i] = SiteResult(site_id=site_id, forecast=future.result())
            except Exception as exc:
                logger.warning(f"Forecast failed for {site_id}: {exc}")
                results[i] = SiteResult(site_id=site_id, error=str(exc))

    ok = sum(1 for r in results.values() if r.ok)
    logger.info(f"Forecast batch: {ok}/{len(requests)} sites ok")
    return [results[i] for i in range(len(requests))]
