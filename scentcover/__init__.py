"""
Scent coverage engine.

Turns a stream of geolocated wind measurements into detection-coverage
polygons and keeps an always-readable union per source and globally.
"""

from .models import (
    CoveragePolygon,
    CoverageStatus,
    GlobalCoverage,
    Measurement,
    PolygonKind,
    PolygonsUpdatedEvent,
    SourceActivity,
    SourceCoverage,
    UnifierState,
)
from .geometry.calculator import PolygonConfig, compute_polygon, polygon_for_measurement
from .processing.unifier import SourceUnifier, UnifierConfig
from .processing.registry import SourceRegistry
from .processing.aggregator import GlobalAggregator
from .service import CoverageService

__version__ = "0.1.0"

__all__ = [
    "CoveragePolygon",
    "CoverageStatus",
    "GlobalCoverage",
    "Measurement",
    "PolygonKind",
    "PolygonsUpdatedEvent",
    "SourceActivity",
    "SourceCoverage",
    "UnifierState",
    "PolygonConfig",
    "compute_polygon",
    "polygon_for_measurement",
    "SourceUnifier",
    "UnifierConfig",
    "SourceRegistry",
    "GlobalAggregator",
    "CoverageService",
]
