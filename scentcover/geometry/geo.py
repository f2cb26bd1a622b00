"""
Local equirectangular helpers.

All coverage geometry lives in WGS84 lon/lat degrees. Distances and areas
are converted with a flat-earth approximation around a reference latitude,
which is exact enough for the sub-kilometre shapes produced here.
"""

import math
from typing import Tuple

WGS84_SRID = 4326

# Metres per degree of latitude (and of longitude at the equator)
METERS_PER_DEG_LAT = 111_320.0


def meters_per_degree(latitude_deg: float) -> Tuple[float, float]:
    """Return (metres per degree latitude, metres per degree longitude)."""
    m_per_deg_lon = METERS_PER_DEG_LAT * math.cos(math.radians(latitude_deg))
    return METERS_PER_DEG_LAT, m_per_deg_lon


def meters_to_degrees(meters: float) -> float:
    """
    Convert a distance in metres to degrees using the latitude scale.

    The latitude scale is the smaller of the two angular sizes, so the
    result is a conservative simplification tolerance at any latitude.
    """
    return meters / METERS_PER_DEG_LAT


def area_m2(geometry, latitude_deg: float) -> float:
    """Area of a lon/lat geometry in square metres at the given latitude."""
    m_lat, m_lon = meters_per_degree(latitude_deg)
    return geometry.area * m_lat * m_lon


def offset_position(
    latitude: float,
    longitude: float,
    distance_m: float,
    bearing_rad: float,
) -> Tuple[float, float]:
    """
    Move a point by distance_m along a bearing (clockwise from north).

    Returns:
        (longitude, latitude) of the displaced point
    """
    m_lat, m_lon = meters_per_degree(latitude)
    d_lat = distance_m * math.cos(bearing_rad) / m_lat
    d_lon = distance_m * math.sin(bearing_rad) / m_lon
    return longitude + d_lon, latitude + d_lat
