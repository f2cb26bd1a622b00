"""Coverage polygon geometry."""

from .calculator import (
    PolygonConfig,
    compute_polygon,
    describe_coverage,
    fan_half_angle,
    max_scent_distance,
    polygon_for_measurement,
    polygon_to_text,
)

__all__ = [
    "PolygonConfig",
    "compute_polygon",
    "describe_coverage",
    "fan_half_angle",
    "max_scent_distance",
    "polygon_for_measurement",
    "polygon_to_text",
]
