"""
Value types shared across the coverage engine.

Everything handed to readers is a frozen dataclass wrapping immutable
shapely geometry, so snapshots can be shared between threads without
copying.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import FrozenSet, List, Optional, Tuple

import shapely
from shapely.geometry import MultiPolygon, Polygon
from shapely.geometry.base import BaseGeometry


Ring = List[Tuple[float, float]]


def geometry_rings(geometry: Optional[BaseGeometry]) -> List[Ring]:
    """Exterior rings of a (multi)polygon as ordered (lon, lat) lists."""
    if geometry is None or geometry.is_empty:
        return []
    if isinstance(geometry, Polygon):
        return [[(x, y) for x, y in geometry.exterior.coords]]
    if isinstance(geometry, MultiPolygon):
        return [[(x, y) for x, y in part.exterior.coords] for part in geometry.geoms]
    return []


def geometry_holes(geometry: Optional[BaseGeometry]) -> List[Ring]:
    """Interior rings (holes) of a (multi)polygon, across all parts."""
    if geometry is None or geometry.is_empty:
        return []
    if isinstance(geometry, Polygon):
        parts = [geometry]
    elif isinstance(geometry, MultiPolygon):
        parts = list(geometry.geoms)
    else:
        return []
    return [[(x, y) for x, y in ring.coords] for part in parts for ring in part.interiors]


def as_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Treat naive datetimes as UTC; aware ones are converted to UTC."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def vertex_count(geometry: Optional[BaseGeometry]) -> int:
    """Number of coordinates in a geometry (0 for None)."""
    if geometry is None:
        return 0
    return int(shapely.get_num_coordinates(geometry))


class PolygonKind(Enum):
    """Which stage of the calculator's fallback chain produced a polygon."""
    COMBINED = "combined"   # fan ∪ circle, valid as built
    REPAIRED = "repaired"   # fan ∪ circle after buffer(0) repair
    CIRCLE = "circle"       # omnidirectional buffer only
    BOX = "box"             # minimal fixed-size box


class UnifierState(Enum):
    """Lifecycle of a per-source unifier."""
    CREATED = "created"
    ACTIVE = "active"
    DRAINING = "draining"
    STOPPED = "stopped"


@dataclass(frozen=True)
class Measurement:
    """
    One geolocated reading from an emitting source.

    wind_direction_deg is the direction the wind blows FROM, in degrees
    clockwise from true north.
    """
    source_id: str
    source_name: str
    session_id: str
    sequence: int
    timestamp: datetime
    latitude: float
    longitude: float
    wind_direction_deg: float
    wind_speed_mps: float

    def to_dict(self) -> dict:
        return {
            "source_id": self.source_id,
            "source_name": self.source_name,
            "session_id": self.session_id,
            "sequence": self.sequence,
            "timestamp": self.timestamp.isoformat(),
            "latitude": self.latitude,
            "longitude": self.longitude,
            "wind_direction_deg": self.wind_direction_deg,
            "wind_speed_mps": self.wind_speed_mps,
        }


@dataclass(frozen=True)
class CoveragePolygon:
    """Coverage polygon derived from exactly one measurement."""
    geometry: Polygon
    area_m2: float
    source_id: str = ""
    source_name: str = ""
    session_id: str = ""
    sequence: int = 0
    timestamp: Optional[datetime] = None
    latitude: float = 0.0
    longitude: float = 0.0
    wind_direction_deg: float = 0.0
    wind_speed_mps: float = 0.0
    kind: PolygonKind = PolygonKind.COMBINED

    @property
    def is_valid(self) -> bool:
        return bool(self.geometry.is_valid) and not self.geometry.is_empty

    @property
    def exterior_coordinates(self) -> Ring:
        return [(x, y) for x, y in self.geometry.exterior.coords]

    @property
    def vertex_count(self) -> int:
        return vertex_count(self.geometry)

    def to_dict(self) -> dict:
        return {
            "source_id": self.source_id,
            "source_name": self.source_name,
            "session_id": self.session_id,
            "sequence": self.sequence,
            "timestamp": self.timestamp.isoformat() if self.timestamp else None,
            "latitude": self.latitude,
            "longitude": self.longitude,
            "wind_direction_deg": self.wind_direction_deg,
            "wind_speed_mps": self.wind_speed_mps,
            "area_m2": self.area_m2,
            "kind": self.kind.value,
            "is_valid": self.is_valid,
            "ring": self.exterior_coordinates,
        }


@dataclass(frozen=True)
class SourceCoverage:
    """
    Published snapshot of one source's accumulated coverage.

    The geometry may be a MultiPolygon when the source has covered
    disjoint areas; pieces are never discarded.
    """
    source_id: str
    source_name: str
    geometry: BaseGeometry
    polygon_count: int
    total_area_m2: float
    individual_areas_sum_m2: float
    earliest_timestamp: datetime
    latest_timestamp: datetime
    latest_sequence: int
    average_latitude: float
    average_wind_speed_mps: float
    min_wind_speed_mps: float
    max_wind_speed_mps: float
    session_ids: FrozenSet[str] = frozenset()
    version: int = 1

    @property
    def vertex_count(self) -> int:
        return vertex_count(self.geometry)

    @property
    def coverage_efficiency(self) -> float:
        """Unified area / sum of individual areas (lower = more overlap)."""
        if self.individual_areas_sum_m2 <= 0:
            return 0.0
        return self.total_area_m2 / self.individual_areas_sum_m2

    @property
    def is_valid(self) -> bool:
        return bool(self.geometry.is_valid)

    @property
    def rings(self) -> List[Ring]:
        return geometry_rings(self.geometry)

    @property
    def holes(self) -> List[Ring]:
        return geometry_holes(self.geometry)

    def overlaps_range(
        self,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
    ) -> bool:
        """True if [earliest, latest] intersects [start, end]."""
        start, end = as_utc(start), as_utc(end)
        if start is not None and self.latest_timestamp < start:
            return False
        if end is not None and self.earliest_timestamp > end:
            return False
        return True

    def to_dict(self, include_geometry: bool = True) -> dict:
        data = {
            "source_id": self.source_id,
            "source_name": self.source_name,
            "polygon_count": self.polygon_count,
            "total_area_m2": self.total_area_m2,
            "individual_areas_sum_m2": self.individual_areas_sum_m2,
            "coverage_efficiency": self.coverage_efficiency,
            "earliest_timestamp": self.earliest_timestamp.isoformat(),
            "latest_timestamp": self.latest_timestamp.isoformat(),
            "latest_sequence": self.latest_sequence,
            "average_latitude": self.average_latitude,
            "wind_speed_mps": {
                "average": self.average_wind_speed_mps,
                "min": self.min_wind_speed_mps,
                "max": self.max_wind_speed_mps,
            },
            "session_ids": sorted(self.session_ids),
            "vertex_count": self.vertex_count,
            "version": self.version,
        }
        if include_geometry:
            data["rings"] = self.rings
            data["holes"] = self.holes
        return data


@dataclass(frozen=True)
class GlobalCoverage:
    """Combined coverage over every source, as of one recomputation."""
    geometry: Optional[BaseGeometry]
    total_area_m2: float
    source_count: int
    polygon_count: int
    individual_areas_sum_m2: float
    version: int
    computed_at: datetime
    source_ids: Tuple[str, ...] = ()
    source_names: Tuple[str, ...] = ()
    session_ids: FrozenSet[str] = frozenset()
    earliest_timestamp: Optional[datetime] = None
    latest_timestamp: Optional[datetime] = None

    @classmethod
    def empty(cls, computed_at: datetime, version: int = 0) -> "GlobalCoverage":
        return cls(
            geometry=None,
            total_area_m2=0.0,
            source_count=0,
            polygon_count=0,
            individual_areas_sum_m2=0.0,
            version=version,
            computed_at=computed_at,
        )

    @property
    def is_empty(self) -> bool:
        return self.geometry is None or self.geometry.is_empty

    @property
    def coverage_efficiency(self) -> float:
        if self.individual_areas_sum_m2 <= 0:
            return 0.0
        return self.total_area_m2 / self.individual_areas_sum_m2

    @property
    def vertex_count(self) -> int:
        return vertex_count(self.geometry)

    @property
    def rings(self) -> List[Ring]:
        return geometry_rings(self.geometry)

    @property
    def holes(self) -> List[Ring]:
        return geometry_holes(self.geometry)

    def to_dict(self, include_geometry: bool = True) -> dict:
        data = {
            "version": self.version,
            "computed_at": self.computed_at.isoformat(),
            "total_area_m2": self.total_area_m2,
            "total_area_ha": self.total_area_m2 / 10_000,
            "source_count": self.source_count,
            "polygon_count": self.polygon_count,
            "individual_areas_sum_m2": self.individual_areas_sum_m2,
            "coverage_efficiency": self.coverage_efficiency,
            "source_ids": list(self.source_ids),
            "source_names": list(self.source_names),
            "session_ids": sorted(self.session_ids),
            "earliest_timestamp": (
                self.earliest_timestamp.isoformat() if self.earliest_timestamp else None
            ),
            "latest_timestamp": (
                self.latest_timestamp.isoformat() if self.latest_timestamp else None
            ),
            "vertex_count": self.vertex_count,
        }
        if include_geometry:
            data["rings"] = self.rings
            data["holes"] = self.holes
        return data


@dataclass(frozen=True)
class SourceActivity:
    """Per-source line in a status report."""
    source_id: str
    source_name: str
    state: UnifierState
    queued: int
    dropped: int
    union_failures: int
    polygon_count: int
    version: int
    latest_timestamp: Optional[datetime] = None

    def to_dict(self) -> dict:
        return {
            "source_id": self.source_id,
            "source_name": self.source_name,
            "state": self.state.value,
            "queued": self.queued,
            "dropped": self.dropped,
            "union_failures": self.union_failures,
            "polygon_count": self.polygon_count,
            "version": self.version,
            "latest_timestamp": (
                self.latest_timestamp.isoformat() if self.latest_timestamp else None
            ),
        }


@dataclass(frozen=True)
class PolygonsUpdatedEvent:
    """Fired after an ingestion tick that produced new polygons."""
    new_polygons: Tuple[CoveragePolygon, ...]
    affected_source_ids: Tuple[str, ...]
    total_polygon_count: int
    latest_polygon: Optional[CoveragePolygon] = None


@dataclass(frozen=True)
class CoverageStatus:
    """Periodic lightweight status report."""
    timestamp: datetime
    total_polygon_count: int
    data_source: str
    source_count: int
    active_source_count: int
    dropped_total: int
    latest_polygon: Optional[CoveragePolygon] = None
    watermark: Optional[datetime] = None
    sources: Tuple[SourceActivity, ...] = field(default_factory=tuple)

    def to_dict(self) -> dict:
        return {
            "timestamp": self.timestamp.isoformat(),
            "total_polygon_count": self.total_polygon_count,
            "data_source": self.data_source,
            "source_count": self.source_count,
            "active_source_count": self.active_source_count,
            "dropped_total": self.dropped_total,
            "latest_sequence": self.latest_polygon.sequence if self.latest_polygon else None,
            "watermark": self.watermark.isoformat() if self.watermark else None,
            "sources": [s.to_dict() for s in self.sources],
        }
