"""Thermal lift calibration: eight scalar parameters plus value->color range tables.

Calibration is loaded from YAML (see lift_config.yaml) or from the spreadsheet-shaped
response of the calibration sheet, and is read-only for the duration of a batch.
Each load gets a new epoch, which forecast cache keys include.
"""

from __future__ import annotations

import itertools
import math
import threading
import time
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence, Tuple

import yaml

from constants import LIFT_CONFIG_PATH
from logging_config import setup_logging

logger = setup_logging(__name__, level="INFO")

_epoch_counter = itertools.count(1)


class LiftParametersError(RuntimeError):
    """Calibration is missing or incomplete; no calculation may proceed."""


@dataclass(frozen=True)
class LiftParameters:
    thermal_lapse_rate: float
    thermal_velocity_constant: float
    initial_trigger_temp_diff: float
    ongoing_trigger_temp_diff: float
    thermal_ramp_distance: float
    thermal_ramp_start_pct: float
    cloudbase_lapse_rates_diff: float
    thermal_glider_sink_rate: float

    # Sheet/YAML names for each field
    SOURCE_NAMES = {
        "thermalLapseRate": "thermal_lapse_rate",
        "thermalVelocityConstant": "thermal_velocity_constant",
        "initialTriggerTempDiff": "initial_trigger_temp_diff",
        "ongoingTriggerTempDiff": "ongoing_trigger_temp_diff",
        "thermalRampDistance": "thermal_ramp_distance",
        "thermalRampStartPct": "thermal_ramp_start_pct",
        "cloudbaseLapseRatesDiff": "cloudbase_lapse_rates_diff",
        "thermalGliderSinkRate": "thermal_glider_sink_rate",
    }

    @classmethod
    def from_mapping(cls, values: Mapping[str, Any]) -> "LiftParameters":
        """Build from a mapping keyed by sheet names (camelCase) or field names."""
        kwargs: Dict[str, float] = {}
        for source_name, field_name in cls.SOURCE_NAMES.items():
            raw = values.get(source_name, values.get(field_name))
            if raw is None:
                continue
            try:
                value = float(raw)
            except (TypeError, ValueError):
                raise LiftParametersError(f"Lift parameter {source_name} is not numeric: {raw!r}")
            if not math.isfinite(value):
                raise LiftParametersError(f"Lift parameter {source_name} is not finite: {raw!r}")
            kwargs[field_name] = value
        missing = [s for s, f in cls.SOURCE_NAMES.items() if f not in kwargs]
        if missing:
            raise LiftParametersError(f"Missing lift parameters: {missing}")
        return cls(**kwargs)

    def to_dict(self) -> Dict[str, float]:
        return {s: getattr(self, f) for s, f in self.SOURCE_NAMES.items()}


@dataclass(frozen=True)
class ColorRange:
    min_value: float
    max_value: float
    color: str

    def contains(self, value: float) -> bool:
        return self.min_value <= value <= self.max_value


def sort_ranges(ranges: Iterable[ColorRange]) -> Tuple[ColorRange, ...]:
    return tuple(sorted(ranges, key=lambda r: r.min_value))


@dataclass(frozen=True)
class Calibration:
    params: LiftParameters
    color_mappings: Dict[str, Tuple[ColorRange, ...]] = field(default_factory=dict)
    weather_code_images: Dict[int, str] = field(default_factory=dict)
    epoch: int = 0
    loaded_at: float = 0.0

    def color_for(self, parameter: str, value: Optional[float]) -> str:
        """Color name of the first range containing value; 'clear' when none matches."""
        if value is None:
            return "clear"
        for r in self.color_mappings.get(parameter, ()):
            if r.contains(value):
                return r.color
        return "clear"


def parse_sheet_values(values: Sequence[Sequence[str]]) -> Tuple[Dict[str, float], Dict[str, Tuple[ColorRange, ...]]]:
    """Split calibration sheet rows into scalar parameters and color ranges.

    The first row is a header. A row with an empty third column is a scalar
    (name, value); any other row is a range (name, min, max, color).
    """
    scalars: Dict[str, float] = {}
    mappings: Dict[str, List[ColorRange]] = {}
    for row in list(values)[1:]:
        if not row:
            continue
        parameter = str(row[0]).strip()
        has_third = len(row) > 2 and str(row[2]).strip() != ""
        if not has_third:
            if len(row) > 1:
                try:
                    scalars[parameter] = float(str(row[1]).strip())
                except ValueError:
                    logger.warning(f"Invalid lift parameter row: {row}")
            continue
        try:
            if len(row) <= 3:
                raise ValueError("missing color")
            rng = ColorRange(float(str(row[1]).strip()), float(str(row[2]).strip()), str(row[3]).strip())
        except ValueError:
            logger.warning(f"Invalid range row: {row}")
            continue
        mappings.setdefault(parameter, []).append(rng)
    return scalars, {k: sort_ranges(v) for k, v in mappings.items()}


def _parse_yaml_mappings(raw: Mapping[str, Any]) -> Dict[str, Tuple[ColorRange, ...]]:
    out: Dict[str, Tuple[ColorRange, ...]] = {}
    for parameter, rows in (raw or {}).items():
        ranges = []
        for row in rows or []:
            try:
                lo, hi, color = row
                ranges.append(ColorRange(float(lo), float(hi), str(color)))
            except (TypeError, ValueError):
                logger.warning(f"Invalid range row for {parameter}: {row}")
        out[str(parameter)] = sort_ranges(ranges)
    return out


def _new_calibration(params: LiftParameters, mappings, weather_code_images=None) -> Calibration:
    return Calibration(
        params=params,
        color_mappings=dict(mappings),
        weather_code_images=dict(weather_code_images or {}),
        epoch=next(_epoch_counter),
        loaded_at=time.time(),
    )


def calibration_from_sheet(values: Sequence[Sequence[str]]) -> Calibration:
    scalars, mappings = parse_sheet_values(values)
    return _new_calibration(LiftParameters.from_mapping(scalars), mappings)


def calibration_from_dict(config: Mapping[str, Any]) -> Calibration:
    params = LiftParameters.from_mapping(config.get("lift_parameters") or {})
    mappings = _parse_yaml_mappings(config.get("color_mappings") or {})
    images = {int(k): str(v) for k, v in (config.get("weather_code_images") or {}).items()}
    return _new_calibration(params, mappings, images)


def load_calibration(path: str = LIFT_CONFIG_PATH) -> Calibration:
    """Load calibration from YAML."""
    try:
        with open(path, "r") as f:
            config = yaml.safe_load(f) or {}
    except FileNotFoundError:
        raise LiftParametersError(f"Lift config not found: {path}")
    except yaml.YAMLError as e:
        raise LiftParametersError(f"Lift config {path} is not valid YAML: {e}")
    if not isinstance(config, dict):
        raise LiftParametersError(f"Lift config {path} must be a mapping")
    calibration = calibration_from_dict(config)
    logger.info(f"Lift calibration loaded from {path} (epoch {calibration.epoch})")
    return calibration


class LiftParameterStore:
    """Holds the active calibration; swapped atomically on reload."""

    def __init__(self, calibration: Optional[Calibration] = None):
        self._lock = threading.Lock()
        self._calibration = calibration

    def load(self, path: str = LIFT_CONFIG_PATH) -> Calibration:
        calibration = load_calibration(path)
        self.set(calibration)
        return calibration

    def set(self, calibration: Optional[Calibration]) -> None:
        with self._lock:
            self._calibration = calibration

    def get(self) -> Optional[Calibration]:
        with self._lock:
            return self._calibration

    def require(self) -> Calibration:
        calibration = self.get()
        if calibration is None:
            logger.critical("Thermal lift parameters not available; aborting calculation")
            raise LiftParametersError("Thermal lift parameters not available")
        return calibration

    @property
    def epoch(self) -> int:
        calibration = self.get()
        return calibration.epoch if calibration else 0
