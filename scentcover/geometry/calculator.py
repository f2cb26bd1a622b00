"""
Coverage polygon calculator.

Turns one measurement (position + wind) into the area a scent-detecting
source is considered to have covered:

    - an upwind fan whose reach and width depend on wind speed, and
    - a short omnidirectional circle around the source.

The calculator is a pure function. It never raises for any input: when
geometry construction fails it walks a fallback chain

    fan ∪ circle  ->  buffer(0) repair  ->  circle only  ->  minimal box

so every measurement yields exactly one polygon.
"""

import logging
import math
from dataclasses import dataclass
from typing import Optional, Tuple, Union

from shapely import affinity
from shapely.geometry import GeometryCollection, MultiPolygon, Point, Polygon, box
from shapely.geometry.base import BaseGeometry

from ..metrics import metrics
from ..models import (
    CoveragePolygon,
    GlobalCoverage,
    Measurement,
    PolygonKind,
    SourceCoverage,
)
from .geo import area_m2, meters_per_degree, offset_position

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PolygonConfig:
    """Shape parameters for a single coverage polygon."""
    omnidirectional_radius_m: float = 30.0
    fan_polygon_points: int = 15
    minimum_distance_multiplier: float = 0.4   # keeps fan tips from collapsing
    fallback_box_size_deg: float = 0.001
    circle_quad_segs: int = 16


DEFAULT_POLYGON_CONFIG = PolygonConfig()


# ---------------------------------------------------------------------------
# Wind model
# ---------------------------------------------------------------------------

def max_scent_distance(wind_speed_mps: float) -> float:
    """
    Maximum upwind detection distance in metres for a wind speed.

    Light wind carries scent poorly, moderate-to-strong wind transports it
    furthest, and very strong wind dilutes it again.
    """
    if wind_speed_mps < 0.5:
        return 60.0
    elif wind_speed_mps < 2.0:
        return 100.0 + (wind_speed_mps - 0.5) * 20.0
    elif wind_speed_mps < 5.0:
        return 160.0 + (wind_speed_mps - 2.0) * 15.0
    elif wind_speed_mps < 8.0:
        return 250.0 + (wind_speed_mps - 5.0) * 10.0
    else:
        return max(60.0, 155.0 - (wind_speed_mps - 8.0) * 5.0)


def fan_half_angle(wind_speed_mps: float) -> float:
    """Half-angle of the upwind fan in degrees; stronger wind narrows it."""
    if wind_speed_mps < 1.0:
        return 30.0
    elif wind_speed_mps < 3.0:
        return 30.0 - (wind_speed_mps - 1.0) * 7.5
    elif wind_speed_mps < 6.0:
        return 15.0 - (wind_speed_mps - 3.0) * 2.0
    else:
        return max(5.0, 9.0 - (wind_speed_mps - 6.0) * 0.5)


def _sanitize_wind(wind_direction_deg: float, wind_speed_mps: float) -> Tuple[float, float]:
    """Normalize direction to [0, 360) and clamp speed to a finite value >= 0."""
    if not math.isfinite(wind_speed_mps) or wind_speed_mps < 0:
        wind_speed_mps = 0.0
    if not math.isfinite(wind_direction_deg):
        wind_direction_deg = 0.0
    return wind_direction_deg % 360.0, wind_speed_mps


def _sanitize_position(latitude: float, longitude: float) -> Tuple[float, float]:
    """Replace non-finite coordinates with 0 so a box can always be built."""
    return (
        latitude if math.isfinite(latitude) else 0.0,
        longitude if math.isfinite(longitude) else 0.0,
    )


# ---------------------------------------------------------------------------
# Shape builders
# ---------------------------------------------------------------------------

def build_fan(
    latitude: float,
    longitude: float,
    wind_direction_deg: float,
    wind_speed_mps: float,
    config: PolygonConfig = DEFAULT_POLYGON_CONFIG,
) -> Polygon:
    """
    Upwind fan with its apex at the source.

    Wind direction is where the wind comes FROM, so the fan opens along
    that bearing: scent travels from upwind sources to the detector.
    """
    max_distance = max_scent_distance(wind_speed_mps)
    half_angle = math.radians(fan_half_angle(wind_speed_mps))
    centre = math.radians(wind_direction_deg)
    n = max(1, config.fan_polygon_points)

    coords = [(longitude, latitude)]
    for i in range(n + 1):
        angle = centre - half_angle + (2 * half_angle * i / n)
        multiplier = max(config.minimum_distance_multiplier, math.cos(abs(angle - centre)))
        coords.append(offset_position(latitude, longitude, max_distance * multiplier, angle))
    coords.append((longitude, latitude))

    return Polygon(coords)


def build_circle(
    latitude: float,
    longitude: float,
    radius_m: float,
    quad_segs: int = 16,
) -> Polygon:
    """Ground circle of radius_m metres around the source."""
    m_lat, m_lon = meters_per_degree(latitude)
    centre = Point(longitude, latitude)
    circle = centre.buffer(radius_m / m_lat, quad_segs=quad_segs)
    # Stretch east-west so the circle is round on the ground, not in degrees
    return affinity.scale(circle, xfact=m_lat / m_lon, yfact=1.0, origin=centre)


def build_box(latitude: float, longitude: float, size_deg: float) -> Polygon:
    """Minimal square centred on the source; the last fallback."""
    half = size_deg / 2.0
    return box(longitude - half, latitude - half, longitude + half, latitude + half)


def _largest_polygon(geometry: Optional[BaseGeometry]) -> Optional[Polygon]:
    """Reduce a union result to one polygon, keeping the largest piece."""
    if geometry is None or geometry.is_empty:
        return None
    if isinstance(geometry, Polygon):
        return geometry
    if isinstance(geometry, (MultiPolygon, GeometryCollection)):
        parts = [g for g in geometry.geoms if isinstance(g, Polygon) and not g.is_empty]
        if parts:
            return max(parts, key=lambda p: p.area)
    return None


def _usable(geometry: Optional[Polygon]) -> bool:
    return geometry is not None and not geometry.is_empty and geometry.is_valid


def build_coverage_geometry(
    latitude: float,
    longitude: float,
    wind_direction_deg: float,
    wind_speed_mps: float,
    config: PolygonConfig = DEFAULT_POLYGON_CONFIG,
) -> Tuple[Polygon, PolygonKind]:
    """
    Build the fan ∪ circle geometry, degrading through the fallback chain.

    Returns:
        (polygon, kind) where kind records which fallback stage was used
    """
    wind_direction_deg, wind_speed_mps = _sanitize_wind(wind_direction_deg, wind_speed_mps)

    if not (math.isfinite(latitude) and math.isfinite(longitude)):
        logger.warning(f"Non-finite position ({latitude}, {longitude}), using fallback box")
        metrics.increment("polygon_fallbacks")
        safe_lat, safe_lon = _sanitize_position(latitude, longitude)
        return build_box(safe_lat, safe_lon, config.fallback_box_size_deg), PolygonKind.BOX

    circle = None
    combined = None
    try:
        circle = build_circle(latitude, longitude, config.omnidirectional_radius_m,
                              config.circle_quad_segs)
        fan = build_fan(latitude, longitude, wind_direction_deg, wind_speed_mps, config)
        try:
            combined = _largest_polygon(fan.union(circle))
        except Exception as e:
            logger.debug(f"Fan/circle union failed, repairing: {e}")
        if _usable(combined):
            return combined, PolygonKind.COMBINED

        candidate = combined if combined is not None else fan.buffer(0).union(circle)
        repaired = _largest_polygon(candidate.buffer(0))
        if _usable(repaired):
            logger.debug(f"Repaired invalid coverage polygon at {latitude:.6f}, {longitude:.6f}")
            return repaired, PolygonKind.REPAIRED
    except Exception as e:
        logger.warning(
            f"Coverage polygon construction failed at {latitude:.6f}, {longitude:.6f}: {e}"
        )

    metrics.increment("polygon_fallbacks")

    try:
        if circle is None:
            circle = build_circle(latitude, longitude, config.omnidirectional_radius_m,
                                  config.circle_quad_segs)
        if _usable(circle):
            return circle, PolygonKind.CIRCLE
    except Exception as e:
        logger.warning(f"Circle fallback failed at {latitude:.6f}, {longitude:.6f}: {e}")

    try:
        return build_box(latitude, longitude, config.fallback_box_size_deg), PolygonKind.BOX
    except Exception as e:
        logger.warning(f"Box fallback failed at {latitude}, {longitude}: {e}")
        safe_lat, safe_lon = _sanitize_position(latitude, longitude)
        return build_box(safe_lat, safe_lon, config.fallback_box_size_deg), PolygonKind.BOX


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------

def compute_polygon(
    latitude: float,
    longitude: float,
    wind_direction_deg: float,
    wind_speed_mps: float,
    config: Optional[PolygonConfig] = None,
) -> CoveragePolygon:
    """
    Compute the coverage polygon for one position and wind vector.

    Args:
        latitude: Source latitude (degrees)
        longitude: Source longitude (degrees)
        wind_direction_deg: Direction the wind blows from (degrees)
        wind_speed_mps: Wind speed (m/s)
        config: Shape parameters (defaults if None)

    Returns:
        CoveragePolygon without source metadata; wind values are the
        sanitized ones the geometry was built from
    """
    config = config or DEFAULT_POLYGON_CONFIG
    wind_direction_deg, wind_speed_mps = _sanitize_wind(wind_direction_deg, wind_speed_mps)
    with metrics.timer("polygon_compute"):
        geometry, kind = build_coverage_geometry(
            latitude, longitude, wind_direction_deg, wind_speed_mps, config
        )
    metrics.increment("polygons_computed")

    area_latitude, _ = _sanitize_position(latitude, longitude)
    try:
        area = area_m2(geometry, area_latitude)
    except Exception as e:
        logger.warning(f"Area computation failed at {latitude}, {longitude}: {e}")
        area = 0.0

    return CoveragePolygon(
        geometry=geometry,
        area_m2=area,
        latitude=latitude,
        longitude=longitude,
        wind_direction_deg=wind_direction_deg,
        wind_speed_mps=wind_speed_mps,
        kind=kind,
    )


def polygon_for_measurement(
    measurement: Measurement,
    config: Optional[PolygonConfig] = None,
) -> CoveragePolygon:
    """Compute the coverage polygon for a measurement, carrying its metadata."""
    base = compute_polygon(
        measurement.latitude,
        measurement.longitude,
        measurement.wind_direction_deg,
        measurement.wind_speed_mps,
        config,
    )
    return CoveragePolygon(
        geometry=base.geometry,
        area_m2=base.area_m2,
        source_id=measurement.source_id,
        source_name=measurement.source_name,
        session_id=measurement.session_id,
        sequence=measurement.sequence,
        timestamp=measurement.timestamp,
        latitude=measurement.latitude,
        longitude=measurement.longitude,
        wind_direction_deg=base.wind_direction_deg,
        wind_speed_mps=base.wind_speed_mps,
        kind=base.kind,
    )


def polygon_to_text(geometry: Optional[BaseGeometry], max_points: int = 10) -> str:
    """Short text form of a polygon for logs and the CLI."""
    if geometry is None or geometry.is_empty:
        return "EMPTY"
    if not geometry.is_valid:
        return "INVALID POLYGON"

    if isinstance(geometry, MultiPolygon):
        parts = list(geometry.geoms)
        return f"MULTIPOLYGON[{len(parts)}]({polygon_to_text(parts[0], max_points)} ...)"

    coords = list(geometry.exterior.coords)
    shown = " ".join(f"({x:.6f},{y:.6f})" for x, y in coords[:max_points])
    text = f"POLYGON({shown}"
    if len(coords) > max_points:
        text += f" ... and {len(coords) - max_points} more points"
    return text + ")"


def describe_coverage(coverage: Union[SourceCoverage, GlobalCoverage]) -> str:
    """Multi-line human summary of an accumulated coverage snapshot."""
    if isinstance(coverage, SourceCoverage):
        header = f"SOURCE COVERAGE {coverage.source_name} ({coverage.source_id}):"
        span = coverage.latest_timestamp - coverage.earliest_timestamp
        sessions = len(coverage.session_ids)
        wind = (
            f"{coverage.average_wind_speed_mps:.1f} m/s avg "
            f"(range: {coverage.min_wind_speed_mps:.1f}-{coverage.max_wind_speed_mps:.1f})"
        )
    else:
        header = f"GLOBAL COVERAGE ({coverage.source_count} sources):"
        if coverage.earliest_timestamp and coverage.latest_timestamp:
            span = coverage.latest_timestamp - coverage.earliest_timestamp
        else:
            span = None
        sessions = len(coverage.session_ids)
        wind = None

    lines = [
        header,
        f"  Combines: {coverage.polygon_count} individual polygons",
        f"  Total Area: {coverage.total_area_m2:.0f} m² "
        f"({coverage.total_area_m2 / 10000:.2f} hectares)",
        f"  Coverage Efficiency: {coverage.coverage_efficiency * 100:.1f}% (lower = more overlap)",
    ]
    if span is not None:
        lines.append(f"  Time Range: {span.total_seconds() / 60:.1f} minutes")
    if wind:
        lines.append(f"  Wind Speed: {wind}")
    lines.extend([
        f"  Sessions: {sessions}",
        f"  Vertices: {coverage.vertex_count}",
        f"  Version: {coverage.version}",
        f"  Geometry: {polygon_to_text(coverage.geometry)}",
    ])
    return "\n".join(lines)
