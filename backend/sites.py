"""Site metadata consumed by flying-potential classification."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, Mapping, Optional, Sequence

from constants import SITE_TYPES
from logging_config import setup_logging

logger = setup_logging(__name__, level="INFO")

SITE_DIRECTIONS = ("N", "NE", "E", "SE", "S", "SW", "W", "NW")

# Column layout of the Sites sheet
SHEET_COL_AREA = 1
SHEET_COL_NAME = 2
SHEET_COL_TYPE = 5
SHEET_COL_LAT = 6
SHEET_COL_LON = 7
SHEET_COL_FIRST_DIRECTION = 12


@dataclass(frozen=True)
class SiteMetadata:
    site_id: str
    name: str = ""
    site_type: str = ""
    latitude: Optional[float] = None
    longitude: Optional[float] = None
    area: str = ""
    # direction -> rating ("" when the direction does not work for the site)
    wind_directions: Dict[str, str] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, d: Mapping[str, Any]) -> "SiteMetadata":
        site_id = str(d.get("id") or d.get("siteId") or "").strip()
        if not site_id:
            raise ValueError("Site id is required")
        site_type = str(d.get("siteType") or d.get("type") or "").strip()
        if site_type not in SITE_TYPES:
            logger.warning(f"Unknown site type {site_type!r} for site {site_id}; using default tables")
        raw_dirs = d.get("windDirection") or d.get("windDirections") or {}
        return cls(
            site_id=site_id,
            name=str(d.get("name") or d.get("siteName") or ""),
            site_type=site_type,
            latitude=_opt_float(d.get("latitude")),
            longitude=_opt_float(d.get("longitude")),
            area=str(d.get("area") or ""),
            wind_directions={k: str(raw_dirs.get(k) or "").strip() for k in SITE_DIRECTIONS},
        )

    @classmethod
    def from_sheet_row(cls, row: Sequence[str]) -> "SiteMetadata":
        def col(i):
            return str(row[i]).strip() if len(row) > i else ""

        return cls(
            site_id=col(0),
            area=col(SHEET_COL_AREA),
            name=col(SHEET_COL_NAME),
            site_type=col(SHEET_COL_TYPE),
            latitude=_opt_float(col(SHEET_COL_LAT)),
            longitude=_opt_float(col(SHEET_COL_LON)),
            wind_directions={d: col(SHEET_COL_FIRST_DIRECTION + i) for i, d in enumerate(SITE_DIRECTIONS)},
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.site_id,
            "name": self.name,
            "siteType": self.site_type,
            "latitude": self.latitude,
            "longitude": self.longitude,
            "area": self.area,
            "windDirection": dict(self.wind_directions),
        }


def _opt_float(v) -> Optional[float]:
    if v is None or v == "":
        return None
    try:
        return float(v)
    except (TypeError, ValueError):
        return None
