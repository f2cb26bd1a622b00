"""
Global aggregator.

Combines the latest per-source snapshots into one GlobalCoverage. The
result is cached behind a dirty flag: reads between two applied batches
return the same object without locking, and the first read after a batch
recomputes once under the lock (double-checked).

Cost of a recompute is one union over N source geometries, independent of
how many individual polygons those sources have seen.
"""

import logging
import threading
from datetime import datetime, timezone
from typing import Iterable, List, Optional

from shapely.ops import unary_union

from ..cache import VersionedQueryCache
from ..geometry.geo import area_m2
from ..metrics import metrics
from ..models import GlobalCoverage, SourceCoverage, as_utc
from .registry import SourceRegistry
from .unifier import polygonal_part

logger = logging.getLogger(__name__)


def combine_snapshots(snapshots: Iterable[SourceCoverage]) -> GlobalCoverage:
    """
    Union a set of source snapshots into a GlobalCoverage.

    Version is the sum of the contributing snapshot versions, so it
    strictly increases whenever any contributing source applies a batch.
    Never raises: if the collection union fails, geometries are folded
    pairwise and failing sources are skipped.
    """
    snapshots = sorted(snapshots, key=lambda s: s.source_id)
    now = datetime.now(timezone.utc)
    if not snapshots:
        return GlobalCoverage.empty(now)

    geometries = [s.geometry for s in snapshots]
    try:
        with metrics.timer("aggregator_union"):
            merged = unary_union(geometries)
    except Exception as e:
        logger.warning(f"Global union failed, folding {len(geometries)} sources pairwise: {e}")
        merged = None
        for snapshot in snapshots:
            try:
                merged = snapshot.geometry if merged is None else merged.union(snapshot.geometry)
            except Exception as fold_error:
                metrics.increment("union_failures")
                logger.warning(f"Skipping source {snapshot.source_id} in global union: {fold_error}")

    merged = polygonal_part(merged)
    if merged is not None and not merged.is_valid:
        try:
            merged = polygonal_part(merged.buffer(0)) or merged
        except Exception as e:
            logger.warning(f"Global coverage repair failed, keeping invalid geometry: {e}")

    polygon_count = sum(s.polygon_count for s in snapshots)
    if polygon_count > 0:
        latitude = sum(s.average_latitude * s.polygon_count for s in snapshots) / polygon_count
    else:
        latitude = 0.0

    sessions = set()
    for s in snapshots:
        sessions.update(s.session_ids)

    return GlobalCoverage(
        geometry=merged,
        total_area_m2=area_m2(merged, latitude) if merged is not None else 0.0,
        source_count=len(snapshots),
        polygon_count=polygon_count,
        individual_areas_sum_m2=sum(s.individual_areas_sum_m2 for s in snapshots),
        version=sum(s.version for s in snapshots),
        computed_at=now,
        source_ids=tuple(s.source_id for s in snapshots),
        source_names=tuple(s.source_name for s in snapshots),
        session_ids=frozenset(sessions),
        earliest_timestamp=min(s.earliest_timestamp for s in snapshots),
        latest_timestamp=max(s.latest_timestamp for s in snapshots),
    )


class GlobalAggregator:
    """Lazily recomputed union of all sources' coverage."""

    def __init__(self, registry: SourceRegistry, query_cache_size: int = 64):
        self._registry = registry
        self._lock = threading.Lock()
        self._dirty = True
        self._cached = GlobalCoverage.empty(datetime.now(timezone.utc))
        self._recompute_count = 0
        self._query_cache = VersionedQueryCache(max_size=query_cache_size, name="coverage_queries")

        registry.add_listener(self.invalidate)

    def invalidate(self, snapshot: Optional[SourceCoverage] = None) -> None:
        """Mark the cached global coverage stale. Safe from any thread."""
        self._dirty = True

    @property
    def recompute_count(self) -> int:
        return self._recompute_count

    @property
    def is_dirty(self) -> bool:
        return self._dirty

    def get_global_coverage(self) -> GlobalCoverage:
        """Current global coverage; recomputes at most once per change."""
        if not self._dirty:
            return self._cached

        with self._lock:
            if self._dirty:
                # Cleared before gathering; a batch landing mid-recompute re-marks it
                self._dirty = False
                try:
                    result = combine_snapshots(self._registry.snapshots())
                except Exception as e:
                    self._dirty = True
                    metrics.increment("aggregator_failures")
                    logger.error(f"Global coverage recompute failed, serving v{self._cached.version}: {e}")
                    return self._cached
                self._cached = result
                self._recompute_count += 1
                metrics.increment("aggregator_recomputes")
                metrics.set_gauge("global_version", result.version)
                logger.debug(
                    f"Global coverage v{result.version}: {result.source_count} sources, "
                    f"{result.total_area_m2:.0f} m²"
                )
            return self._cached

    def get_source_coverage(self, source_id: str) -> Optional[SourceCoverage]:
        unifier = self._registry.get(source_id)
        return unifier.snapshot if unifier is not None else None

    def get_coverage_between(
        self,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
    ) -> GlobalCoverage:
        """Union of sources whose [earliest, latest] overlaps [start, end]."""
        start, end = as_utc(start), as_utc(end)
        snapshots = self._registry.snapshots()
        return self._filtered(
            snapshots,
            ("range", start, end),
            [s for s in snapshots if s.overlaps_range(start, end)],
        )

    def get_session_coverage(self, session_id: str) -> GlobalCoverage:
        """Union of sources that reported measurements in session_id."""
        snapshots = self._registry.snapshots()
        return self._filtered(
            snapshots,
            ("session", session_id),
            [s for s in snapshots if session_id in s.session_ids],
        )

    def _filtered(
        self,
        all_snapshots: List[SourceCoverage],
        key: tuple,
        selected: List[SourceCoverage],
    ) -> GlobalCoverage:
        version = sum(s.version for s in all_snapshots)
        return self._query_cache.get_or_compute(version, key, lambda: combine_snapshots(selected))

    def cache_stats(self) -> dict:
        return self._query_cache.get_stats()
