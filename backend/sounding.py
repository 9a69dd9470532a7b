"""Sounding ingestion for Cloudbase Lift.

Validates one hourly point-forecast payload (Open-Meteo style parallel arrays),
repairs nulls to 0 and indexes it into per-hour, per-level records.

Heights are geopotential heights in feet, temperatures and dewpoints in °C,
wind speeds in the unit requested from the provider (mph for display tables).
"""

from __future__ import annotations

import json
import math
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, List, Optional, Tuple

import numpy as np

from constants import PRESSURE_LEVELS_HPA, SURFACE_ALTITUDE_OFFSET_FT, SURFACE_BUFFER_FT, DEFAULT_MAX_PRESSURE_READING
from logging_config import setup_logging
from units import meters_to_feet, round_half_away

logger = setup_logging(__name__, level="INFO")

TIME_FORMAT = "%Y-%m-%dT%H:%M"

SURFACE_KEYS = (
    "temperature_2m",
    "windspeed_10m",
    "windgusts_10m",
    "winddirection_10m",
    "cloudcover",
    "precipitation_probability",
    "cape",
    "weathercode",
)
LEVEL_VARIABLES = ("geopotential_height", "temperature", "dewpoint", "windspeed", "winddirection")


class SoundingError(ValueError):
    """Raised when a forecast payload cannot be ingested."""


def level_key(variable: str, pressure_hpa: int) -> str:
    return f"{variable}_{pressure_hpa}hPa"


def required_keys() -> List[str]:
    keys = list(SURFACE_KEYS)
    for p in PRESSURE_LEVELS_HPA:
        keys.extend(level_key(v, p) for v in LEVEL_VARIABLES)
    return keys


@dataclass(frozen=True)
class LevelData:
    pressure_hpa: int
    altitude: float
    temp: float
    dewpoint: float
    wind_speed: float = 0.0
    wind_direction: float = 0.0


@dataclass(frozen=True)
class HourSounding:
    time: datetime
    surface_temp: float
    surface_wind_speed: float
    surface_wind_gust: float
    surface_wind_direction: float
    cloud_cover: float
    precip_probability: float
    cape: float
    weather_code: int
    levels: Tuple[LevelData, ...]

    def level(self, pressure_hpa: int) -> LevelData:
        for lvl in self.levels:
            if lvl.pressure_hpa == pressure_hpa:
                return lvl
        raise KeyError(pressure_hpa)


@dataclass(frozen=True)
class Forecast:
    """One site's ingested forecast: time axis plus float arrays per variable."""

    elevation_m: float
    times: Tuple[datetime, ...]
    arrays: Dict[str, np.ndarray]

    @property
    def surface_altitude(self) -> float:
        return float(meters_to_feet(self.elevation_m) + SURFACE_ALTITUDE_OFFSET_FT)

    def __len__(self) -> int:
        return len(self.times)

    def hour(self, index: int) -> HourSounding:
        a = self.arrays
        levels = tuple(
            LevelData(
                pressure_hpa=p,
                altitude=float(a[level_key("geopotential_height", p)][index]),
                temp=float(a[level_key("temperature", p)][index]),
                dewpoint=float(a[level_key("dewpoint", p)][index]),
                wind_speed=float(a[level_key("windspeed", p)][index]),
                wind_direction=float(a[level_key("winddirection", p)][index]),
            )
            for p in PRESSURE_LEVELS_HPA
        )
        return HourSounding(
            time=self.times[index],
            surface_temp=float(a["temperature_2m"][index]),
            surface_wind_speed=float(a["windspeed_10m"][index]),
            surface_wind_gust=float(a["windgusts_10m"][index]),
            surface_wind_direction=float(a["winddirection_10m"][index]),
            cloud_cover=float(a["cloudcover"][index]),
            precip_probability=float(a["precipitation_probability"][index]),
            cape=float(a["cape"][index]),
            weather_code=int(a["weathercode"][index]),
            levels=levels,
        )

    def max_pressure_reading(self, surface_buffer: float = SURFACE_BUFFER_FT) -> int:
        """Highest pressure (lowest level) clear of the surface buffer, from the first hour.

        Walks upward from 900 hPa; a level whose height is within the buffer pushes the
        floor to the next level up (500 hPa pushes it to 450, i.e. no usable level).
        """
        reading = DEFAULT_MAX_PRESSURE_READING
        if not self.times:
            return reading
        floor_alt = self.surface_altitude + surface_buffer
        for i, p in enumerate(PRESSURE_LEVELS_HPA):
            height = float(self.arrays[level_key("geopotential_height", p)][0])
            if round_half_away(height) < floor_alt:
                reading = PRESSURE_LEVELS_HPA[i + 1] if i + 1 < len(PRESSURE_LEVELS_HPA) else p - 50
        return reading


def _to_array(key: str, values: Any, expected_len: int) -> np.ndarray:
    if not isinstance(values, (list, tuple)):
        raise SoundingError(f"hourly.{key} must be an array")
    if len(values) != expected_len:
        raise SoundingError(f"hourly.{key} has {len(values)} values, expected {expected_len}")
    try:
        arr = np.array([0.0 if v is None else v for v in values], dtype=float)
    except (TypeError, ValueError) as e:
        raise SoundingError(f"hourly.{key} contains non-numeric values: {e}")
    # Out-of-range numbers (JSON 1e400 reads as inf) are repaired like nulls
    return np.nan_to_num(arr, nan=0.0, posinf=0.0, neginf=0.0)


def _parse_times(raw: Any) -> Tuple[datetime, ...]:
    if not isinstance(raw, (list, tuple)) or not raw:
        raise SoundingError("hourly.time must be a non-empty array")
    times = []
    for t in raw:
        try:
            times.append(datetime.strptime(str(t), TIME_FORMAT))
        except ValueError:
            raise SoundingError(f"Invalid forecast time: {t!r}")
    return tuple(times)


def ingest_forecast(payload: Dict[str, Any]) -> Forecast:
    """Validate and index a raw forecast payload.

    Missing variables or mismatched array lengths fail the whole payload; null values
    inside arrays are repaired to 0 (providers occasionally send null weather codes).
    """
    if not isinstance(payload, dict):
        raise SoundingError("Forecast payload must be an object")
    elevation = payload.get("elevation")
    if elevation is None:
        raise SoundingError("Forecast payload has no elevation")
    try:
        elevation_m = float(elevation)
    except (TypeError, ValueError):
        raise SoundingError(f"Invalid elevation: {elevation!r}")
    if not math.isfinite(elevation_m):
        logger.warning(f"Non-finite elevation {elevation!r}, using 0")
        elevation_m = 0.0

    hourly = payload.get("hourly")
    if not isinstance(hourly, dict):
        raise SoundingError("Forecast payload has no hourly block")

    times = _parse_times(hourly.get("time"))
    missing = [k for k in required_keys() if k not in hourly]
    if missing:
        raise SoundingError(f"Forecast payload missing variables: {missing}")

    arrays = {k: _to_array(k, hourly[k], len(times)) for k in required_keys()}
    logger.debug(f"Ingested forecast: {len(times)} hours, elevation {elevation_m} m")
    return Forecast(elevation_m=elevation_m, times=times, arrays=arrays)


def ingest_forecast_json(text: str, site_id: Optional[str] = None) -> Forecast:
    """Parse raw provider JSON text and ingest it."""
    try:
        payload = json.loads(text)
    except json.JSONDecodeError as e:
        logger.error(f"Forecast JSON decode failed{f' for {site_id}' if site_id else ''}: {e}")
        raise SoundingError(f"Invalid forecast JSON: {e}")
    return ingest_forecast(payload)
