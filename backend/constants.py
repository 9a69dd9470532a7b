"""Shared constants for the Cloudbase Lift backend.

Keep sounding layout, thermal model constants and frequently reused config in one place.
"""

from __future__ import annotations
import os

# Pressure levels in ascending-altitude order (surface -> top of column)
PRESSURE_LEVELS_HPA: list[int] = [900, 850, 800, 750, 700, 650, 600, 550, 500]

# Levels used for winds aloft / thermal maxima in flying potential
POTENTIAL_LEVELS_HPA: list[int] = [900, 850, 800]
POTENTIAL_LEVELS_MOUNTAIN_HPA: list[int] = [900, 850, 800, 750, 700, 650]

# No thermal activity or winds aloft are modeled within this distance above the surface (ft)
SURFACE_BUFFER_FT: float = 200.0

# Added to converted site elevation to get the surface altitude (ft)
SURFACE_ALTITUDE_OFFSET_FT: float = 10.0

# Used when the thermal never reaches top of lift within the queried column (ft)
DEFAULT_TOP_OF_LIFT_ALTITUDE: float = 18000.0
TOP_OF_LIFT_ROCKET: str = "rocket"

# Cloudbase values at or above this are treated as not formatted (ft)
CLOUDBASE_DISPLAY_MAX_FT: float = 100000.0

# Pressure to start displaying winds aloft (1000 hPa is sea level)
DEFAULT_MAX_PRESSURE_READING: int = 1000

# Local hours displayed when sunrise/sunset are not available
DEFAULT_FORECAST_START_HOUR: int = 6
DEFAULT_FORECAST_END_HOUR: int = 21
SUNSET_HOUR_OFFSET: int = 13

# Hours before "now" retained in output
RETAIN_HOURS_BEFORE_NOW: int = 1

SITE_TYPES: tuple[str, ...] = ("Soaring", "Mountain", "Airport", "Aloft", "")

# Forecast result cache
FORECAST_CACHE_TTL_SECONDS: int = int(os.environ.get('CLOUDBASE_FORECAST_CACHE_TTL_SECONDS', '1800'))
FORECAST_CACHE_MAX_ITEMS: int = int(os.environ.get('CLOUDBASE_FORECAST_CACHE_MAX_ITEMS', '256'))

# Concurrent site computations when fanning out over many sites
SITE_WORKERS: int = int(os.environ.get('CLOUDBASE_SITE_WORKERS', '3'))

# Region timezone used for local calendar days
DEFAULT_TIMEZONE: str = os.environ.get('CLOUDBASE_TIMEZONE', 'America/Denver')

LIFT_CONFIG_PATH: str = os.environ.get(
    'CLOUDBASE_LIFT_CONFIG',
    os.path.join(os.path.dirname(os.path.abspath(__file__)), 'lift_config.yaml'),
)

LOG_THERMAL_CALCS: bool = os.environ.get('CLOUDBASE_LOG_THERMAL_CALCS', '0') == '1'
