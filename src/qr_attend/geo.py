"""Great-circle distance and coordinate bound checks."""

from __future__ import annotations

import math

from .errors import CoordinateError

EARTH_RADIUS_M = 6_371_000


def distance_meters(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    """Calculate the Haversine distance between two points in meters.

    Args:
        lat1: Latitude of the first point in degrees
        lon1: Longitude of the first point in degrees
        lat2: Latitude of the second point in degrees
        lon2: Longitude of the second point in degrees

    Returns:
        Distance between the two points in meters
    """
    phi1 = math.radians(lat1)
    phi2 = math.radians(lat2)
    delta_phi = math.radians(lat2 - lat1)
    delta_lambda = math.radians(lon2 - lon1)

    a = (
        math.sin(delta_phi / 2) ** 2
        + math.cos(phi1) * math.cos(phi2) * math.sin(delta_lambda / 2) ** 2
    )
    # Rounding can push ``a`` marginally past 1 for antipodal points.
    a = min(1.0, max(0.0, a))
    c = 2 * math.atan2(math.sqrt(a), math.sqrt(1 - a))

    return EARTH_RADIUS_M * c


def within_radius(
    user_lat: float,
    user_lon: float,
    center_lat: float,
    center_lon: float,
    radius_m: float,
) -> bool:
    """Client-side estimate of whether a point lies inside a radius.

    Display only: the server's ``verified`` flag is authoritative.
    """
    return distance_meters(user_lat, user_lon, center_lat, center_lon) <= radius_m


def _is_number(value: object) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool) and math.isfinite(value)


def is_valid_latitude(lat: object) -> bool:
    return _is_number(lat) and -90 <= lat <= 90  # type: ignore[operator]


def is_valid_longitude(lon: object) -> bool:
    return _is_number(lon) and -180 <= lon <= 180  # type: ignore[operator]


def validate_coordinates(lat: object, lon: object) -> None:
    """Raise :class:`CoordinateError` unless both values are in bounds."""
    if not is_valid_latitude(lat):
        raise CoordinateError(f"Invalid latitude: {lat!r}", details={"latitude": lat})
    if not is_valid_longitude(lon):
        raise CoordinateError(f"Invalid longitude: {lon!r}", details={"longitude": lon})
