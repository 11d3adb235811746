from __future__ import annotations

import math
from typing import Any, Tuple

from pinintel.core.errors import CoordinatesOutOfRange, InvalidCoordinates


def haversine_m(a_lat: float, a_lon: float, b_lat: float, b_lon: float) -> float:
    R = 6371000.0
    lat1, lon1 = math.radians(a_lat), math.radians(a_lon)
    lat2, lon2 = math.radians(b_lat), math.radians(b_lon)
    dlat = lat2 - lat1
    dlon = lon2 - lon1
    x = math.sin(dlat / 2) ** 2 + math.cos(lat1) * math.cos(lat2) * math.sin(dlon / 2) ** 2
    return 2 * R * math.asin(math.sqrt(x))


def in_range(lat: float, lon: float) -> bool:
    return -90.0 <= lat <= 90.0 and -180.0 <= lon <= 180.0


def _to_float(raw: Any) -> float:
    if raw is None or isinstance(raw, bool):
        return math.nan
    if isinstance(raw, str):
        raw = raw.strip()
        if not raw:
            return math.nan
    try:
        return float(raw)
    except (TypeError, ValueError):
        return math.nan


def parse_coordinates(lat_raw: Any, lon_raw: Any) -> Tuple[float, float]:
    """
    Validate raw request coordinates.

    Missing / non-numeric / non-finite -> InvalidCoordinates.
    Finite but outside lat [-90, 90] or lon [-180, 180] -> CoordinatesOutOfRange.
    """
    lat = _to_float(lat_raw)
    lon = _to_float(lon_raw)
    if not (math.isfinite(lat) and math.isfinite(lon)):
        raise InvalidCoordinates("Missing/invalid lat/lon")
    if not in_range(lat, lon):
        raise CoordinatesOutOfRange("Coordinates out of range")
    return lat, lon


def coordinate_label(lat: float, lon: float) -> str:
    return f"{lat:.5f}, {lon:.5f}"
