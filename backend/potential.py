"""Flying-potential classification for Cloudbase Lift.

Each hourly factor maps through an ascending range table to an ordinal color
(white=0 .. red=5, larger is worse). The combined rating is the max over the eight
hazard factors; for Soaring sites with no active warning it is re-derived from
surface wind and gust alone, so a calm soaring site is downgraded.

Range tables are data: the built-in defaults below can be replaced per parameter by
the calibration's color_mappings.
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from enum import IntEnum
from typing import Any, Dict, Mapping, Optional, Sequence, Tuple

from constants import POTENTIAL_LEVELS_HPA, POTENTIAL_LEVELS_MOUNTAIN_HPA
from lift_params import ColorRange
from sites import SITE_DIRECTIONS

INF = float("inf")

# Value returned when a sample falls outside every range
UNKNOWN = -1


class FlyingPotentialColor(IntEnum):
    WHITE = 0
    LIME = 1
    GREEN = 2
    YELLOW = 3
    ORANGE = 4
    RED = 5


def color_value(name: str) -> int:
    """Ordinal for a color name; accepts 'green', 'Green' or 'displayValueGreen'."""
    key = (name or "").strip().lower()
    if key.startswith("displayvalue"):
        key = key[len("displayvalue"):]
    try:
        return int(FlyingPotentialColor[key.upper()])
    except KeyError:
        return UNKNOWN


def color_name(value: int) -> str:
    try:
        return FlyingPotentialColor(value).name.lower()
    except ValueError:
        return "clear"


def _table(*rows) -> Tuple[ColorRange, ...]:
    return tuple(ColorRange(lo, hi, color) for lo, hi, color in rows)


DEFAULT_COLOR_TABLES: Dict[str, Tuple[ColorRange, ...]] = {
    "cloudCover": _table((-INF, 39, "green"), (40, 59, "yellow"), (60, 79, "orange"), (80, INF, "red")),
    "precipProbability": _table((-INF, 19, "green"), (20, 39, "yellow"), (40, 59, "orange"), (60, INF, "red")),
    "CAPE": _table((0, 299, "green"), (300, 599, "yellow"), (600, 799, "orange"), (800, INF, "red")),
    "windSpeed": _table((0, 11, "green"), (12, 17, "yellow"), (18, 23, "orange"), (24, INF, "red")),
    "windSpeedSoaring": _table(
        (0, 8, "lime"), (9, 19, "green"), (20, 24, "yellow"), (25, 29, "orange"), (30, INF, "red"),
    ),
    "gustFactor": _table((-INF, 5, "green"), (6, 9, "yellow"), (10, 14, "orange"), (15, INF, "red")),
    "thermalVelocity": _table(
        (-INF, 0.9, "white"), (1.0, 1.9, "lime"), (2.0, 3.9, "green"),
        (4.0, 4.9, "yellow"), (5.0, 5.9, "orange"), (6.0, INF, "red"),
    ),
}

# Wind direction factor
CALM_WIND_SPEED = 5
LIGHT_CROSSWIND_SPEED = 12
MARGINAL_RATINGS = {"ok", "marginal"}

COMPASS_POINTS: Dict[str, int] = {
    "N": 0, "NNE": 22, "NE": 45, "ENE": 67,
    "E": 90, "ESE": 112, "SE": 135, "SSE": 157,
    "S": 180, "SSW": 202, "SW": 225, "WSW": 247,
    "W": 270, "WNW": 292, "NW": 315, "NNW": 337,
}
SECTOR_NEGATIVE_RANGE = 22
SECTOR_POSITIVE_RANGE = 23


def classify(value: Optional[float], ranges: Sequence[ColorRange]) -> int:
    """Ordinal of the first range containing value; UNKNOWN when none does."""
    if value is None:
        return UNKNOWN
    for r in ranges:
        if r.contains(value):
            return color_value(r.color)
    return UNKNOWN


def table_for(parameter: str, color_mappings: Optional[Mapping[str, Sequence[ColorRange]]] = None) -> Sequence[ColorRange]:
    if color_mappings and color_mappings.get(parameter):
        return color_mappings[parameter]
    return DEFAULT_COLOR_TABLES[parameter]


def _truncate(value: float) -> float:
    """Whole-number value for the range tables; non-finite values are compared as-is."""
    return int(value) if math.isfinite(value) else value


def wind_speed_table_name(site_type: str) -> str:
    return "windSpeedSoaring" if site_type == "Soaring" else "windSpeed"


def direction_to_degree_range(direction: str) -> Optional[Tuple[int, int]]:
    """(min, max) bearing of a compass point's sector, -22/+23 around its center.

    Wraps at 0/360, so N is (338, 23).
    """
    center = COMPASS_POINTS.get((direction or "").strip().upper())
    if center is None:
        return None
    lo = center - SECTOR_NEGATIVE_RANGE
    hi = center + SECTOR_POSITIVE_RANGE
    if lo < 0:
        lo += 360
    if hi >= 360:
        hi -= 360
    return lo, hi


def bearing_in_sector(bearing: float, direction: str) -> bool:
    rng = direction_to_degree_range(direction)
    if rng is None:
        return False
    b = int(bearing) % 360
    lo, hi = rng
    if lo <= hi:
        return lo <= b <= hi
    return b >= lo or b <= hi


def _angular_distance(a: float, b: float) -> float:
    d = abs(a - b) % 360
    return min(d, 360 - d)


def site_sector(bearing: float) -> str:
    """The site direction (8-point) whose sector holds the bearing; nearest center on shared edges."""
    candidates = [d for d in SITE_DIRECTIONS if bearing_in_sector(bearing, d)]
    if not candidates:
        candidates = list(SITE_DIRECTIONS)
    return min(candidates, key=lambda d: _angular_distance(int(bearing) % 360, COMPASS_POINTS[d]))


def wind_direction_color(
    site_directions: Mapping[str, str],
    wind_direction: float,
    wind_speed: float,
    wind_gust: float,
) -> int:
    """Color for surface wind direction against the site's favorable sectors.

    Calm air is fine from any direction. A favorable sector is green, a marginal one
    yellow; off-sector wind is orange while light and red once stronger.
    """
    if not any((v or "").strip() for v in site_directions.values()):
        return int(FlyingPotentialColor.GREEN)
    strongest = max(_truncate(wind_speed), _truncate(wind_gust))
    if strongest < CALM_WIND_SPEED:
        return int(FlyingPotentialColor.GREEN)

    rating = (site_directions.get(site_sector(wind_direction)) or "").strip().lower()
    if rating:
        if rating in MARGINAL_RATINGS:
            return int(FlyingPotentialColor.YELLOW)
        return int(FlyingPotentialColor.GREEN)
    if strongest < LIGHT_CROSSWIND_SPEED:
        return int(FlyingPotentialColor.ORANGE)
    return int(FlyingPotentialColor.RED)


@dataclass(frozen=True)
class PotentialInputs:
    cloud_cover: float
    precip_probability: float
    cape: float
    wind_speed: float
    wind_gust: float
    wind_direction: float
    gust_factor: float
    winds_aloft_max: float
    thermal_velocity_max: float


@dataclass(frozen=True)
class FlyingPotential:
    cloud_cover: int
    precip: int
    cape: int
    wind_direction: int
    surface_wind: int
    surface_gust: int
    gust_factor: int
    winds_aloft: int
    thermal_velocity: int
    combined: int
    winds_aloft_max: float
    thermal_velocity_max: float

    def hazard_values(self) -> Tuple[int, ...]:
        return (
            self.cloud_cover, self.precip, self.cape, self.winds_aloft,
            self.surface_wind, self.surface_gust, self.gust_factor, self.wind_direction,
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "combinedColorValue": self.combined,
            "cloudCoverColorValue": self.cloud_cover,
            "precipColorValue": self.precip,
            "CAPEColorValue": self.cape,
            "windDirectionColorValue": self.wind_direction,
            "surfaceWindColorValue": self.surface_wind,
            "surfaceGustColorValue": self.surface_gust,
            "gustFactorColorValue": self.gust_factor,
            "windsAloftColorValue": self.winds_aloft,
            "thermalVelocityColorValue": self.thermal_velocity,
            "windsAloftMax": self.winds_aloft_max,
            "thermalVelocityMax": self.thermal_velocity_max,
            "combinedColor": color_name(self.combined),
        }


def potential_levels(site_type: str) -> Sequence[int]:
    """Levels considered for winds aloft and thermal maxima (higher for mountain sites)."""
    return POTENTIAL_LEVELS_MOUNTAIN_HPA if site_type == "Mountain" else POTENTIAL_LEVELS_HPA


def combine_colors(
    hazards: Sequence[int],
    surface_wind: int,
    surface_gust: int,
    site_type: str,
) -> int:
    combined = max(hazards)
    # Soaring sites without warnings are rated on wind alone (too little wind to soar)
    if site_type == "Soaring" and combined <= FlyingPotentialColor.GREEN:
        combined = max(surface_wind, surface_gust)
    # Unknown factors never drag the rating below white
    return max(combined, int(FlyingPotentialColor.WHITE))


def classify_hour(
    inputs: PotentialInputs,
    site_type: str,
    site_directions: Mapping[str, str],
    color_mappings: Optional[Mapping[str, Sequence[ColorRange]]] = None,
) -> FlyingPotential:
    wind_table = table_for(wind_speed_table_name(site_type), color_mappings)

    cloud_cover = classify(_truncate(inputs.cloud_cover), table_for("cloudCover", color_mappings))
    precip = classify(_truncate(inputs.precip_probability), table_for("precipProbability", color_mappings))
    cape = classify(_truncate(inputs.cape), table_for("CAPE", color_mappings))
    surface_wind = classify(_truncate(inputs.wind_speed), wind_table)
    surface_gust = classify(_truncate(inputs.wind_gust), wind_table)
    gust_factor = classify(_truncate(inputs.gust_factor), table_for("gustFactor", color_mappings))
    winds_aloft = classify(_truncate(inputs.winds_aloft_max), wind_table)
    thermal = classify(inputs.thermal_velocity_max, table_for("thermalVelocity", color_mappings))
    direction = wind_direction_color(site_directions, inputs.wind_direction, inputs.wind_speed, inputs.wind_gust)

    hazards = (cloud_cover, precip, cape, winds_aloft, surface_wind, surface_gust, gust_factor, direction)
    return FlyingPotential(
        cloud_cover=cloud_cover,
        precip=precip,
        cape=cape,
        wind_direction=direction,
        surface_wind=surface_wind,
        surface_gust=surface_gust,
        gust_factor=gust_factor,
        winds_aloft=winds_aloft,
        thermal_velocity=thermal,
        combined=combine_colors(hazards, surface_wind, surface_gust, site_type),
        winds_aloft_max=inputs.winds_aloft_max,
        thermal_velocity_max=inputs.thermal_velocity_max,
    )
