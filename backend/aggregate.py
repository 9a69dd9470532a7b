"""Hourly aggregation for Cloudbase Lift.

Drives the thermal profile across the pressure levels of every displayed hour,
threads the day-scoped trigger flag in chronological order and derives the display
and flying-potential fields for each retained hour.

Pure: the result depends only on (forecast, calibration, site, now, sunrise, sunset).
"""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional, Tuple

from constants import (
    CLOUDBASE_DISPLAY_MAX_FT,
    DEFAULT_FORECAST_END_HOUR,
    DEFAULT_FORECAST_START_HOUR,
    DEFAULT_TOP_OF_LIFT_ALTITUDE,
    RETAIN_HOURS_BEFORE_NOW,
    SUNSET_HOUR_OFFSET,
    TOP_OF_LIFT_ROCKET,
)
from lift_params import Calibration
from logging_config import setup_logging
from potential import (
    FlyingPotential,
    PotentialInputs,
    classify,
    classify_hour,
    color_name,
    potential_levels,
    table_for,
)
from sites import SiteMetadata
from sounding import Forecast, HourSounding
from thermal import BaseData, ThermalProfile, thermal_profile
from units import celsius_to_fahrenheit, round_half_away
from weather_codes import weather_code_image

logger = setup_logging(__name__, level="INFO")


@dataclass(frozen=True)
class LevelOutput:
    pressure_hpa: int
    altitude: float
    height_k: int
    temp: float
    dewpoint: float
    wind_speed: int
    wind_direction: float
    thermal_velocity: float
    thermal_velocity_color: str

    def to_dict(self) -> Dict[str, Any]:
        return {
            "pressure": self.pressure_hpa,
            "altitude": self.altitude,
            "height": self.height_k,
            "temp": self.temp,
            "dewpoint": self.dewpoint,
            "windSpeed": self.wind_speed,
            "windDirection": self.wind_direction,
            "thermalVelocity": self.thermal_velocity,
            "thermalVelocityColor": self.thermal_velocity_color,
        }


@dataclass(frozen=True)
class HourlyResult:
    time: datetime
    formatted_day: str
    formatted_date: str
    formatted_time: str
    new_date_flag: bool
    trigger_reached_for_day: bool
    surface_temp_f: int
    surface_temp_color: str
    cloud_cover: float
    formatted_cloud_cover: str
    precip_probability: float
    formatted_precip_probability: str
    cape: float
    formatted_cape: str
    weather_code: int
    weather_code_image: str
    wind_speed: int
    wind_gust: int
    wind_direction: float
    gust_factor: int
    cloudbase_altitude: float
    formatted_cloudbase: str
    top_of_lift_altitude: float
    top_of_lift_display_altitude: float
    formatted_top_of_lift: str
    top_of_lift_temp_f: int
    levels: Tuple[LevelOutput, ...]
    potential: FlyingPotential

    def to_dict(self) -> Dict[str, Any]:
        return {
            "time": self.time.strftime("%Y-%m-%dT%H:%M"),
            "formattedDay": self.formatted_day,
            "formattedDate": self.formatted_date,
            "formattedTime": self.formatted_time,
            "newDateFlag": self.new_date_flag,
            "triggerReachedForDay": self.trigger_reached_for_day,
            "surfaceTemp": self.surface_temp_f,
            "surfaceTempColor": self.surface_temp_color,
            "cloudCover": self.cloud_cover,
            "formattedCloudCover": self.formatted_cloud_cover,
            "precipProbability": self.precip_probability,
            "formattedPrecipProbability": self.formatted_precip_probability,
            "cape": self.cape,
            "formattedCAPE": self.formatted_cape,
            "weatherCode": self.weather_code,
            "weatherCodeImage": self.weather_code_image,
            "windSpeed": self.wind_speed,
            "windGust": self.wind_gust,
            "windDirection": self.wind_direction,
            "gustFactor": self.gust_factor,
            "cloudbaseAltitude": self.cloudbase_altitude,
            "formattedCloudbase": self.formatted_cloudbase,
            "topOfLiftAltitude": self.top_of_lift_altitude,
            "topOfLiftDisplayAltitude": self.top_of_lift_display_altitude,
            "formattedTopOfLift": self.formatted_top_of_lift,
            "topOfLiftTemp": self.top_of_lift_temp_f,
            "levels": [lvl.to_dict() for lvl in self.levels],
            "flyingPotential": self.potential.to_dict(),
        }


@dataclass(frozen=True)
class SiteForecast:
    site: SiteMetadata
    surface_altitude: float
    max_pressure_reading: int
    calibration_epoch: int
    start_hour: int
    end_hour: int
    hours: Tuple[HourlyResult, ...] = field(default_factory=tuple)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "site": self.site.to_dict(),
            "surfaceAltitude": self.surface_altitude,
            "maxPressureReading": self.max_pressure_reading,
            "calibrationEpoch": self.calibration_epoch,
            "forecastStartHour": self.start_hour,
            "forecastEndHour": self.end_hour,
            "hours": [h.to_dict() for h in self.hours],
        }


def _hour_of(clock: Optional[str]) -> Optional[int]:
    """Hour from an 'h:mm' clock string; None when missing or unparseable."""
    if not clock:
        return None
    try:
        return int(str(clock).strip().split(":")[0])
    except ValueError:
        logger.warning(f"Unparseable sunrise/sunset time {clock!r}; using default forecast window")
        return None


def forecast_window(sunrise: Optional[str] = None, sunset: Optional[str] = None) -> Tuple[int, int]:
    """(start_hour, end_hour) of displayed local hours, inclusive.

    Sunset is a 12-hour clock reading, so the end hour is sunset hour + 13
    (afternoon offset plus one trailing hour).
    """
    start = _hour_of(sunrise)
    end = _hour_of(sunset)
    if start is None or end is None:
        return DEFAULT_FORECAST_START_HOUR, DEFAULT_FORECAST_END_HOUR
    return start, end + SUNSET_HOUR_OFFSET


def format_day(t: datetime) -> str:
    return t.strftime("%a")


def format_date(t: datetime) -> str:
    return f"{t.month}/{t.day}"


def format_time(t: datetime) -> str:
    hour12 = t.hour % 12 or 12
    return f"{hour12} {'am' if t.hour < 12 else 'pm'}"


def format_thousands(altitude: float) -> str:
    return f"{int(round_half_away(altitude / 1000))}k"


def format_cloudbase(cloudbase: float) -> str:
    if 0 < cloudbase < CLOUDBASE_DISPLAY_MAX_FT:
        return format_thousands(cloudbase)
    return ""


def _blank_if_zero(value: float) -> str:
    return "" if value == 0 else str(int(value))


def _nan_to_zero(value: float) -> float:
    return 0.0 if math.isnan(value) else value


def resolve_top_of_lift(profile: ThermalProfile, hour: HourSounding, surface_altitude: float) -> Tuple[float, str, float]:
    """(altitude, formatted, temp °C) for the hour's top of lift.

    A parcel still drier than ambient air at the top level never topped out: the
    result is the default ceiling with the top-level temperature.
    """
    final = profile.final
    top = final.top_of_lift_altitude
    if top > 0:
        if top > surface_altitude:
            return top, format_thousands(top), final.top_of_lift_temp
        return top, "", hour.surface_temp
    top_level = hour.levels[-1]
    if final.thermal_dewpoint > top_level.dewpoint:
        return DEFAULT_TOP_OF_LIFT_ALTITUDE, TOP_OF_LIFT_ROCKET, top_level.temp
    return top, "", 0.0


def _hour_potential(
    hour: HourSounding,
    profile: ThermalProfile,
    site: SiteMetadata,
    calibration: Calibration,
    max_pressure_reading: int,
    gust_factor: int,
) -> FlyingPotential:
    levels = set(potential_levels(site.site_type))
    winds_aloft = [
        lvl.wind_speed for lvl in hour.levels
        if lvl.pressure_hpa in levels and lvl.pressure_hpa <= max_pressure_reading
    ]
    thermals = [v for p, v in profile.velocities().items() if p in levels]
    inputs = PotentialInputs(
        cloud_cover=hour.cloud_cover,
        precip_probability=hour.precip_probability,
        cape=hour.cape,
        wind_speed=hour.surface_wind_speed,
        wind_gust=hour.surface_wind_gust,
        wind_direction=hour.surface_wind_direction,
        gust_factor=gust_factor,
        winds_aloft_max=max(winds_aloft, default=0.0),
        thermal_velocity_max=max(thermals, default=0.0),
    )
    return classify_hour(inputs, site.site_type, site.wind_directions, calibration.color_mappings)


def build_hour(
    hour: HourSounding,
    profile: ThermalProfile,
    site: SiteMetadata,
    calibration: Calibration,
    surface_altitude: float,
    max_pressure_reading: int,
    new_date_flag: bool,
) -> HourlyResult:
    surface_temp_f = celsius_to_fahrenheit(int(hour.surface_temp))
    gust_factor = int(hour.surface_wind_gust) - int(hour.surface_wind_speed)
    cloudbase = profile.final.cloudbase_altitude
    top, formatted_top, top_temp = resolve_top_of_lift(profile, hour, surface_altitude)

    velocity_table = table_for("thermalVelocity", calibration.color_mappings)
    levels = tuple(
        LevelOutput(
            pressure_hpa=lvl.pressure_hpa,
            altitude=lvl.altitude,
            height_k=int(round_half_away(lvl.altitude / 1000)),
            temp=lvl.temp,
            dewpoint=lvl.dewpoint,
            wind_speed=int(round_half_away(lvl.wind_speed)),
            wind_direction=lvl.wind_direction,
            thermal_velocity=profile.velocity(lvl.pressure_hpa),
            thermal_velocity_color=color_name(classify(profile.velocity(lvl.pressure_hpa), velocity_table)),
        )
        for lvl in hour.levels
    )

    return HourlyResult(
        time=hour.time,
        formatted_day=format_day(hour.time),
        formatted_date=format_date(hour.time),
        formatted_time=format_time(hour.time),
        new_date_flag=new_date_flag,
        trigger_reached_for_day=profile.final.trigger_reached_for_day,
        surface_temp_f=surface_temp_f,
        surface_temp_color=calibration.color_for("surfaceTemp", surface_temp_f),
        cloud_cover=hour.cloud_cover,
        formatted_cloud_cover=_blank_if_zero(hour.cloud_cover),
        precip_probability=hour.precip_probability,
        formatted_precip_probability=_blank_if_zero(hour.precip_probability),
        cape=hour.cape,
        formatted_cape=_blank_if_zero(hour.cape),
        weather_code=hour.weather_code,
        weather_code_image=weather_code_image(
            hour.weather_code, hour.cloud_cover, hour.precip_probability, surface_temp_f,
            calibration.weather_code_images,
        ),
        wind_speed=int(round_half_away(hour.surface_wind_speed)),
        wind_gust=int(round_half_away(hour.surface_wind_gust)),
        wind_direction=hour.surface_wind_direction,
        gust_factor=gust_factor,
        cloudbase_altitude=cloudbase,
        formatted_cloudbase=format_cloudbase(cloudbase),
        top_of_lift_altitude=top,
        top_of_lift_display_altitude=_nan_to_zero(max(top, surface_altitude)),
        formatted_top_of_lift=formatted_top,
        top_of_lift_temp_f=celsius_to_fahrenheit(int(top_temp)),
        levels=levels,
        potential=_hour_potential(hour, profile, site, calibration, max_pressure_reading, gust_factor),
    )


def process_forecast(
    forecast: Forecast,
    calibration: Calibration,
    site: SiteMetadata,
    *,
    now: datetime,
    sunrise: Optional[str] = None,
    sunset: Optional[str] = None,
) -> SiteForecast:
    """Compute the display forecast for one site.

    Args:
        forecast: Ingested forecast; times are local to the site
        calibration: Lift parameters and color tables, fixed for the call
        site: Site type and wind direction ratings
        now: Current local time (naive, same clock as forecast times)
        sunrise: Optional 'h:mm' sunrise; narrows the displayed hours
        sunset: Optional 'h:mm' sunset (12-hour clock)

    Returns:
        SiteForecast with one HourlyResult per displayed hour from one hour before
        now onward. Hours earlier today are still processed so the trigger flag
        reflects whether thermals already started this morning.

        new_date_flag is set on the first *retained* hour of each date, so the first
        hour shown today is flagged even when earlier hours of today were processed
        and dropped. A flag over processed hours would leave today's first row
        unmarked whenever now is past the window start.
    """
    surface_altitude = forecast.surface_altitude
    max_pressure_reading = forecast.max_pressure_reading()
    start_hour, end_hour = forecast_window(sunrise, sunset)
    start_of_day = now.replace(hour=0, minute=0, second=0, microsecond=0)
    retain_from = now - timedelta(hours=RETAIN_HOURS_BEFORE_NOW)

    hours: List[HourlyResult] = []
    trigger_reached = False
    processed_date: Optional[str] = None
    retained_date: Optional[str] = None

    for i, t in enumerate(forecast.times):
        if t < start_of_day or not (start_hour <= t.hour <= end_hour):
            continue
        date = format_date(t)
        if date != processed_date:
            trigger_reached = False
            processed_date = date

        hour = forecast.hour(i)
        base = BaseData(
            surface_altitude=surface_altitude,
            surface_temp=hour.surface_temp,
            site_name=site.name or site.site_id,
            date=date,
            time=format_time(t),
        )
        profile = thermal_profile(hour.levels, base, calibration.params, trigger_reached)
        trigger_reached = profile.final.trigger_reached_for_day

        if t < retain_from:
            continue
        new_date_flag = date != retained_date
        retained_date = date
        hours.append(
            build_hour(hour, profile, site, calibration, surface_altitude, max_pressure_reading, new_date_flag)
        )

    logger.debug(f"Processed forecast for {site.site_id}: {len(hours)} hours retained")
    return SiteForecast(
        site=site,
        surface_altitude=surface_altitude,
        max_pressure_reading=max_pressure_reading,
        calibration_epoch=calibration.epoch,
        start_hour=start_hour,
        end_hour=end_hour,
        hours=tuple(hours),
    )
