"""WMO weather code -> forecast icon mapping."""

from __future__ import annotations

from typing import Mapping, Optional

SKY_IMAGES = ("cloud.sun.fill", "sun.max.fill", "cloud.fill")


def weather_code_to_image(code: int) -> Optional[str]:
    """Built-in icon for a WMO weather code (used when calibration carries no table)."""
    if code in (95, 96, 99): return "cloud.bolt.rain.fill"
    if code in (85, 86): return "cloud.snow.fill"
    if code == 82: return "cloud.heavyrain.fill"
    if code == 81: return "cloud.rain.fill"
    if code == 80: return "cloud.sun.rain.fill"
    if 71 <= code <= 77: return "cloud.snow.fill"
    if code in (66, 67): return "cloud.sleet.fill"
    if code == 65: return "cloud.heavyrain.fill"
    if code in (61, 63): return "cloud.rain.fill"
    if code in (56, 57): return "cloud.sleet.fill"
    if 51 <= code <= 55: return "cloud.drizzle.fill"
    if code in (45, 48): return "cloud.fog.fill"
    if code == 3: return "cloud.fill"
    if code == 2: return "cloud.sun.fill"
    if code in (0, 1): return "sun.max.fill"
    return None


def weather_code_image(
    weather_code: int,
    cloud_cover: float,
    precip_probability: float,
    temp_f: float,
    images: Optional[Mapping[int, str]] = None,
) -> str:
    """Icon name for an hour, re-picked from precip/cloud cover for plain sky codes.

    Sun/cloud icons become rain (snow below freezing) above 50% precip probability,
    otherwise cloud > 70%, partly cloudy > 30%, else sun.
    """
    if images:
        image = images.get(int(weather_code), "")
    else:
        image = weather_code_to_image(int(weather_code)) or ""

    if image in SKY_IMAGES:
        if precip_probability > 50.0:
            image = "cloud.snow.fill" if temp_f < 32.0 else "cloud.rain.fill"
        elif cloud_cover > 70.0:
            image = "cloud.fill"
        elif cloud_cover > 30.0:
            image = "cloud.sun.fill"
        else:
            image = "sun.max.fill"
    return image
