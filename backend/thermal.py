"""Thermal profile calculations for Cloudbase Lift.

Implements:
- Per-level thermal state transition (parcel dewpoint, cloudbase, top of lift)
- Thermal velocity from parcel/ambient dewpoint spreads
- Near-surface ramp and glider sink-rate adjustment
- A fold of the transition across the nine pressure levels of one hour

The parcel is started at the surface temperature and lifted level by level
(900 -> 500 hPa). Each level depends on the state left by the level below, so one
hour's column is strictly sequential; separate hours and sites are independent
apart from the day-scoped trigger flag.
"""

from __future__ import annotations

import math
from dataclasses import dataclass, replace
from typing import Iterable, Optional, Tuple

from constants import LOG_THERMAL_CALCS, SURFACE_BUFFER_FT
from lift_params import LiftParameters
from logging_config import setup_logging
from sounding import LevelData
from units import feet_to_meters, round_to_one_decimal

logger = setup_logging(__name__, level="DEBUG" if LOG_THERMAL_CALCS else "INFO")

# Base of the exponential used in the velocity formula
VELOCITY_BASE = 1.1


@dataclass(frozen=True)
class BaseData:
    """Values common to every level of one hour."""

    surface_altitude: float
    surface_temp: float
    site_name: str = ""
    date: str = ""
    time: str = ""


@dataclass(frozen=True)
class ThermalState:
    """Parcel state carried from one level to the next.

    Altitudes of 0 mean "not reached yet".
    """

    thermal_dewpoint: float
    cloudbase_altitude: float = 0.0
    top_of_lift_altitude: float = 0.0
    top_of_lift_temp: float = 0.0
    trigger_reached_for_day: bool = False


@dataclass(frozen=True)
class LevelStep:
    pressure_hpa: int
    state: ThermalState
    velocity: float


@dataclass(frozen=True)
class ThermalProfile:
    steps: Tuple[LevelStep, ...]
    initial: ThermalState

    @property
    def final(self) -> ThermalState:
        return self.steps[-1].state if self.steps else self.initial

    def velocity(self, pressure_hpa: int) -> float:
        for s in self.steps:
            if s.pressure_hpa == pressure_hpa:
                return s.velocity
        return 0.0

    def velocities(self) -> dict[int, float]:
        return {s.pressure_hpa: s.velocity for s in self.steps}


def _safe_ratio(numerator: float, denominator: float) -> float:
    """numerator / denominator, with 0 for zero denominators and non-finite results."""
    if denominator == 0:
        return 0.0
    ratio = numerator / denominator
    return ratio if math.isfinite(ratio) else 0.0


def _clamp_to_cloudbase(top_of_lift: float, cloudbase: float) -> float:
    """Usable lift stops at cloudbase."""
    if cloudbase > 0 and top_of_lift > 0 and cloudbase < top_of_lift:
        return cloudbase
    return top_of_lift


def calc_thermal_velocity(velocity_constant: float, thermal_spread: float, ambient_spread: float) -> float:
    """w = C * sqrt[(1.1^thermal_spread - 1) / (1.1^ambient_spread - 1)].

    Increases with a warmer or drier parcel compared to ambient air and
    decreases with drier ambient air.

    Args:
        velocity_constant: Calibrated thermal velocity constant
        thermal_spread: Parcel dewpoint minus ambient dewpoint, floored at 0
        ambient_spread: Ambient temp minus ambient dewpoint, floored at 0

    Returns:
        Unadjusted thermal velocity, 0 when the ambient spread is 0
    """
    try:
        denominator = math.pow(VELOCITY_BASE, ambient_spread) - 1
        quotient = _safe_ratio(math.pow(VELOCITY_BASE, thermal_spread) - 1, denominator)
    except OverflowError:
        return 0.0
    if quotient <= 0:
        return 0.0
    velocity = velocity_constant * math.sqrt(quotient)
    return velocity if math.isfinite(velocity) else 0.0


def apply_thermal_ramp(velocity: float, altitude: float, prior_altitude: float,
                       surface_altitude: float, params: LiftParameters) -> float:
    """Attenuate velocity for the part of this layer inside the near-surface ramp zone."""
    ramp_top = surface_altitude + params.thermal_ramp_distance
    if ramp_top <= prior_altitude:
        return velocity
    impact_altitude = min(altitude, ramp_top) - prior_altitude
    impact_portion = _safe_ratio(impact_altitude, altitude - prior_altitude)
    reduction = params.thermal_ramp_start_pct / 100 * impact_portion
    return velocity * (1 - reduction)


def step(
    state: ThermalState,
    level: LevelData,
    prior_level: Optional[LevelData],
    base: BaseData,
    params: LiftParameters,
) -> Tuple[ThermalState, float]:
    """Advance the parcel from the prior level to this level.

    Args:
        state: State left by the prior level (or the surface seed)
        level: Sounding values at this level
        prior_level: Sounding values at the level below; None for the first level,
            which starts from the surface altitude and a prior ambient dewpoint of 0
        base: Surface values for the hour
        params: Lift calibration

    Returns:
        (new state, velocity at this level rounded to one decimal). Never raises
        for degenerate inputs; zero denominators yield 0.
    """
    surface_altitude = base.surface_altitude
    altitude = level.altitude

    # No thermal activity modeled inside the surface buffer
    if altitude < surface_altitude + SURFACE_BUFFER_FT:
        return state, 0.0

    # Top of lift already reached lower in the column
    if state.top_of_lift_altitude > 0:
        return state, 0.0

    prior_altitude = max(prior_level.altitude if prior_level else surface_altitude, surface_altitude)
    prior_ambient_dewpoint = prior_level.dewpoint if prior_level else 0.0
    prior_thermal_dewpoint = state.thermal_dewpoint

    trigger_diff = (
        params.ongoing_trigger_temp_diff if state.trigger_reached_for_day else params.initial_trigger_temp_diff
    )
    if base.surface_temp < level.temp + trigger_diff:
        # Thermals not triggering; lift tops out at the bottom of this layer
        top = _clamp_to_cloudbase(prior_altitude, state.cloudbase_altitude)
        new_state = replace(state, top_of_lift_altitude=top)
        _trace(base, level, new_state, 0.0, prior_altitude, params)
        return new_state, 0.0

    altitude_change = altitude - prior_altitude
    altitude_change_km = (feet_to_meters(altitude) - feet_to_meters(prior_altitude)) / 1000
    thermal_dewpoint = prior_thermal_dewpoint - params.thermal_lapse_rate * altitude_change_km

    thermal_to_ambient_dp = max(thermal_dewpoint - level.dewpoint, 0.0)
    ambient_temp_to_dp = max(level.temp - level.dewpoint, 0.0)
    ambient_dp_drop = max(prior_ambient_dewpoint - level.dewpoint, 0.0)
    prior_dp_to_ambient_temp = max(prior_ambient_dewpoint - level.temp, 0.0)
    prior_dp_to_thermal_dp = max(prior_ambient_dewpoint - thermal_dewpoint, 0.0)
    prior_thermal_to_prior_dp = max(prior_thermal_dewpoint - prior_ambient_dewpoint, 0.0)

    cloudbase = state.cloudbase_altitude
    top = state.top_of_lift_altitude
    top_temp = state.top_of_lift_temp

    # Cloudbase: ambient air saturated at this level
    if level.temp <= level.dewpoint:
        if ambient_dp_drop == 0 or prior_dp_to_thermal_dp == 0:
            cloudbase = prior_altitude
        else:
            cloudbase = prior_altitude + altitude_change * _safe_ratio(prior_dp_to_ambient_temp, prior_dp_to_thermal_dp)

    # Top of lift: parcel dewpoint no longer exceeds ambient dewpoint.
    # Prior ambient temp is not carried, so this level's ambient temp stands in.
    if thermal_dewpoint <= level.dewpoint:
        if prior_thermal_to_prior_dp == 0 or prior_dp_to_thermal_dp == 0:
            top = prior_altitude
        else:
            top = prior_altitude + altitude_change * _safe_ratio(prior_dp_to_ambient_temp, prior_dp_to_thermal_dp)
        top_temp = level.temp

    top = _clamp_to_cloudbase(top, cloudbase)

    velocity = 0.0
    if cloudbase == 0 and top == 0:
        velocity = calc_thermal_velocity(params.thermal_velocity_constant, thermal_to_ambient_dp, ambient_temp_to_dp)
        velocity = apply_thermal_ramp(velocity, altitude, prior_altitude, surface_altitude, params)
        velocity = max(velocity - params.thermal_glider_sink_rate, 0.0)

        # Lift weaker than glider sink: top of usable lift is no higher than this layer
        if velocity <= 0:
            top = min(altitude, top) if top > 0 else prior_altitude
            top_temp = level.temp

    new_state = ThermalState(
        thermal_dewpoint=thermal_dewpoint,
        cloudbase_altitude=cloudbase,
        top_of_lift_altitude=top,
        top_of_lift_temp=top_temp,
        trigger_reached_for_day=True,
    )
    velocity = round_to_one_decimal(velocity)
    _trace(base, level, new_state, velocity, prior_altitude, params)
    return new_state, velocity


def thermal_profile(
    levels: Iterable[LevelData],
    base: BaseData,
    params: LiftParameters,
    trigger_reached_for_day: bool = False,
) -> ThermalProfile:
    """Fold step() over levels in ascending altitude order.

    The parcel is seeded with the surface temperature as its dewpoint.
    """
    initial = ThermalState(thermal_dewpoint=base.surface_temp, trigger_reached_for_day=trigger_reached_for_day)
    steps = []
    state = initial
    prior: Optional[LevelData] = None
    for level in levels:
        state, velocity = step(state, level, prior, base, params)
        steps.append(LevelStep(level.pressure_hpa, state, velocity))
        prior = level
    return ThermalProfile(steps=tuple(steps), initial=initial)


def _trace(base: BaseData, level: LevelData, state: ThermalState, velocity: float,
           prior_altitude: float, params: LiftParameters) -> None:
    if not LOG_THERMAL_CALCS:
        return
    logger.debug(
        f"{base.site_name},{base.date},{base.time},{base.surface_altitude},{base.surface_temp},"
        f"{level.pressure_hpa},{level.altitude},{level.temp},{level.dewpoint},{velocity},"
        f"{state.trigger_reached_for_day},{state.top_of_lift_altitude},{state.cloudbase_altitude},"
        f"{prior_altitude},{state.thermal_dewpoint},"
        f"{','.join(str(v) for v in params.to_dict().values())}"
    )
