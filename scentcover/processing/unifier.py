"""
Per-source incremental unifier.

Each emitting source owns one SourceUnifier: a bounded queue of incoming
coverage polygons and a single background thread that folds them, a batch
at a time, into the source's accumulated geometry.

    try_add() --> [ bounded deque, drop-oldest ] --> worker thread
                                                      |  pre-simplify each item
                                                      |  one unary_union per batch
                                                      |  re-simplify when too detailed
                                                      v
                                          immutable SourceCoverage snapshot
                                          (version += 1, callbacks fired)

Readers never block on the worker: the published snapshot is replaced by a
single reference assignment and is itself immutable.
"""

import logging
import threading
import time
from collections import deque
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Callable, Deque, List, Optional, Set, Tuple

from shapely.geometry import GeometryCollection, MultiPolygon, Polygon
from shapely.geometry.base import BaseGeometry
from shapely.ops import unary_union

from ..geometry.geo import area_m2, meters_to_degrees
from ..metrics import metrics
from ..models import (
    CoveragePolygon,
    SourceActivity,
    SourceCoverage,
    UnifierState,
    vertex_count,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class UnifierConfig:
    """Queueing and simplification parameters for one source."""
    queue_capacity: int = 512
    batch_size: int = 10
    simplify_tolerance_m: float = 1.5
    max_vertices_before_simplify: int = 6000
    idle_flush_seconds: Optional[float] = 2.0   # None = wait for a full batch


def polygonal_part(geometry: Optional[BaseGeometry]) -> Optional[BaseGeometry]:
    """Strip points/lines that a union or simplify may leave behind."""
    if geometry is None or geometry.is_empty:
        return None
    if isinstance(geometry, (Polygon, MultiPolygon)):
        return geometry
    if isinstance(geometry, GeometryCollection):
        polys: List[Polygon] = []
        for part in geometry.geoms:
            if isinstance(part, Polygon) and not part.is_empty:
                polys.append(part)
            elif isinstance(part, MultiPolygon):
                polys.extend(p for p in part.geoms if not p.is_empty)
        if not polys:
            return None
        return polys[0] if len(polys) == 1 else MultiPolygon(polys)
    return None


class SourceUnifier:
    """
    Accumulates one source's coverage on a dedicated worker thread.

    Lifecycle: CREATED -> ACTIVE -> DRAINING -> STOPPED. Polygons may be
    queued while CREATED; they are processed once start() is called.
    """

    def __init__(
        self,
        source_id: str,
        source_name: str,
        config: Optional[UnifierConfig] = None,
    ):
        self.source_id = source_id
        self.source_name = source_name
        self.config = config or UnifierConfig()

        self._queue: Deque[CoveragePolygon] = deque()
        self._cond = threading.Condition()
        self._state = UnifierState.CREATED
        self._force = False
        self._thread: Optional[threading.Thread] = None
        self._callbacks: List[Callable[[SourceCoverage], None]] = []

        self._dropped = 0
        self._union_failures = 0

        # Accumulated state, touched only by the worker thread
        self._geometry: Optional[BaseGeometry] = None
        self._count = 0
        self._latitude_sum = 0.0
        self._individual_area_sum = 0.0
        self._wind_sum = 0.0
        self._wind_min = float('inf')
        self._wind_max = 0.0
        self._sessions: Set[str] = set()
        self._earliest: Optional[datetime] = None
        self._latest: Optional[datetime] = None
        self._latest_sequence = 0
        self._version = 0

        self._snapshot: Optional[SourceCoverage] = None

        self._tolerance_deg = meters_to_degrees(self.config.simplify_tolerance_m)

    # ------------------------------------------------------------------
    # Producer side
    # ------------------------------------------------------------------

    def try_add(self, polygon: CoveragePolygon) -> bool:
        """
        Queue a polygon for unification. Never blocks.

        When the queue is full the oldest queued item is dropped and
        counted. Returns False if the unifier is draining or stopped, or
        the polygon belongs to another source.
        """
        if polygon.source_id != self.source_id:
            logger.warning(
                f"Rejected polygon for source {polygon.source_id} on unifier {self.source_id}"
            )
            return False

        with self._cond:
            if self._state in (UnifierState.DRAINING, UnifierState.STOPPED):
                return False
            if len(self._queue) >= self.config.queue_capacity:
                self._queue.popleft()
                self._dropped += 1
                metrics.increment("polygons_dropped")
                if self._dropped == 1 or self._dropped % 100 == 0:
                    logger.warning(
                        f"Unifier {self.source_id} queue full, dropped {self._dropped} so far"
                    )
            self._queue.append(polygon)
            self._cond.notify()

        metrics.increment("polygons_enqueued")
        return True

    def add_update_callback(self, callback: Callable[[SourceCoverage], None]) -> None:
        """Call `callback(snapshot)` on the worker thread after every applied batch."""
        self._callbacks.append(callback)

    def remove_update_callback(self, callback: Callable[[SourceCoverage], None]) -> None:
        if callback in self._callbacks:
            self._callbacks.remove(callback)

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def start(self) -> None:
        """Start the worker thread. Calling it twice is a no-op."""
        with self._cond:
            if self._state != UnifierState.CREATED:
                return
            self._state = UnifierState.ACTIVE
            self._launch()
        logger.debug(f"Unifier {self.source_id} started")

    def request_stop(self, force: bool = False) -> None:
        """
        Stop accepting polygons and tell the worker to finish.

        Graceful (force=False): the queue is drained and the partial batch
        applied. Forced: everything still queued is discarded and counted
        as dropped right away; the batch already in hand is still applied.
        """
        with self._cond:
            if self._state == UnifierState.STOPPED:
                return
            if force:
                self._force = True
                self._discard_queued()
            never_started = self._state == UnifierState.CREATED
            self._state = UnifierState.DRAINING
            if never_started:
                self._launch()
            self._cond.notify_all()

    def join(self, timeout: Optional[float] = None) -> bool:
        """Wait for the worker to exit. Returns True if it has stopped."""
        thread = self._thread
        if thread is not None:
            thread.join(timeout=timeout)
        return self.state == UnifierState.STOPPED

    def stop(self, timeout: Optional[float] = 5.0, force: bool = False) -> bool:
        """request_stop() followed by join(timeout)."""
        self.request_stop(force=force)
        stopped = self.join(timeout)
        if not stopped:
            logger.warning(f"Unifier {self.source_id} did not stop within {timeout}s")
        return stopped

    def _discard_queued(self) -> None:
        # Caller holds self._cond
        if not self._queue:
            return
        discarded = len(self._queue)
        self._queue.clear()
        self._dropped += discarded
        metrics.increment("polygons_dropped", discarded)
        logger.info(f"Unifier {self.source_id} discarded {discarded} queued polygons")

    def _launch(self) -> None:
        # Caller holds self._cond
        self._thread = threading.Thread(
            target=self._run,
            daemon=True,
            name=f"Unifier-{self.source_id}",
        )
        self._thread.start()

    # ------------------------------------------------------------------
    # Worker
    # ------------------------------------------------------------------

    def _run(self) -> None:
        """Worker loop (runs in its own thread)."""
        batch: List[CoveragePolygon] = []
        last_arrival = time.monotonic()
        idle = self.config.idle_flush_seconds

        while True:
            with self._cond:
                while not self._queue and self._state == UnifierState.ACTIVE:
                    if batch and idle is not None:
                        remaining = idle - (time.monotonic() - last_arrival)
                        if remaining <= 0:
                            break
                        self._cond.wait(remaining)
                    else:
                        self._cond.wait()

                if self._force:
                    self._discard_queued()

                item = self._queue.popleft() if self._queue else None
                finished = item is None and self._state != UnifierState.ACTIVE

            if item is not None:
                batch.append(item)
                last_arrival = time.monotonic()
                if len(batch) >= self.config.batch_size:
                    self._apply_safely(batch)
                    batch = []
                continue

            # Idle timeout or shutdown: flush what we have
            if batch:
                self._apply_safely(batch)
                batch = []
            if finished:
                break

        with self._cond:
            self._state = UnifierState.STOPPED
        logger.debug(f"Unifier {self.source_id} stopped after {self._count} polygons")

    def _apply_safely(self, batch: List[CoveragePolygon]) -> None:
        try:
            self._apply_batch(batch)
        except Exception as e:
            with self._cond:
                self._union_failures += len(batch)
            metrics.increment("union_failures", len(batch))
            logger.error(f"Unifier {self.source_id} failed to apply batch of {len(batch)}: {e}")

    def _prepare(self, polygon: CoveragePolygon) -> Optional[BaseGeometry]:
        """Repair and pre-simplify one incoming geometry; None if unusable."""
        geometry = polygon.geometry
        if geometry is None or geometry.is_empty:
            return None
        if not geometry.is_valid:
            geometry = polygonal_part(geometry.buffer(0))
            if geometry is None or not geometry.is_valid:
                return None
        if self._tolerance_deg > 0:
            simplified = polygonal_part(
                geometry.simplify(self._tolerance_deg, preserve_topology=True)
            )
            if simplified is not None and simplified.is_valid:
                geometry = simplified
        return geometry

    def _fold_one_by_one(
        self,
        prepared: List[Tuple[CoveragePolygon, BaseGeometry]],
    ) -> Tuple[Optional[BaseGeometry], List[CoveragePolygon]]:
        """Union items individually, skipping any that fail."""
        current = self._geometry
        accepted: List[CoveragePolygon] = []
        for polygon, geometry in prepared:
            try:
                current = geometry if current is None else current.union(geometry)
                accepted.append(polygon)
            except Exception as e:
                self._count_union_failure()
                logger.warning(
                    f"Unifier {self.source_id} skipped polygon seq={polygon.sequence}: {e}"
                )
        return current, accepted

    def _count_union_failure(self) -> None:
        with self._cond:
            self._union_failures += 1
        metrics.increment("union_failures")

    def _apply_batch(self, batch: List[CoveragePolygon]) -> None:
        prepared: List[Tuple[CoveragePolygon, BaseGeometry]] = []
        for polygon in batch:
            geometry = self._prepare(polygon)
            if geometry is None:
                self._count_union_failure()
                logger.warning(
                    f"Unifier {self.source_id} skipped unusable polygon seq={polygon.sequence}"
                )
                continue
            prepared.append((polygon, geometry))

        if not prepared:
            return

        geometries = [g for _, g in prepared]
        if self._geometry is not None:
            geometries.append(self._geometry)

        try:
            with metrics.timer("unifier_batch_union"):
                merged = unary_union(geometries)
            accepted = [p for p, _ in prepared]
        except Exception as e:
            logger.warning(f"Unifier {self.source_id} batch union failed, folding items: {e}")
            merged, accepted = self._fold_one_by_one(prepared)

        if not accepted:
            return

        merged = polygonal_part(merged)
        if merged is None:
            logger.warning(f"Unifier {self.source_id} batch produced no polygonal geometry")
            return
        if not merged.is_valid:
            repaired = polygonal_part(merged.buffer(0))
            if repaired is not None:
                merged = repaired

        if vertex_count(merged) > self.config.max_vertices_before_simplify:
            before = vertex_count(merged)
            simplified = polygonal_part(
                merged.simplify(self._tolerance_deg, preserve_topology=True)
            )
            if simplified is not None and simplified.is_valid:
                merged = simplified
                logger.debug(
                    f"Unifier {self.source_id} simplified {before} -> {vertex_count(merged)} vertices"
                )

        self._geometry = merged
        self._accumulate(accepted)
        self._version += 1
        self._publish()
        metrics.increment("batches_applied")

    def _accumulate(self, accepted: List[CoveragePolygon]) -> None:
        now = datetime.now(timezone.utc)
        for polygon in accepted:
            self._count += 1
            self._latitude_sum += polygon.latitude
            self._individual_area_sum += polygon.area_m2
            self._wind_sum += polygon.wind_speed_mps
            self._wind_min = min(self._wind_min, polygon.wind_speed_mps)
            self._wind_max = max(self._wind_max, polygon.wind_speed_mps)
            if polygon.session_id:
                self._sessions.add(polygon.session_id)
            ts = polygon.timestamp or now
            if self._earliest is None or ts < self._earliest:
                self._earliest = ts
            if self._latest is None or ts > self._latest:
                self._latest = ts
            self._latest_sequence = max(self._latest_sequence, polygon.sequence)

    def _publish(self) -> None:
        average_latitude = self._latitude_sum / self._count
        snapshot = SourceCoverage(
            source_id=self.source_id,
            source_name=self.source_name,
            geometry=self._geometry,
            polygon_count=self._count,
            total_area_m2=area_m2(self._geometry, average_latitude),
            individual_areas_sum_m2=self._individual_area_sum,
            earliest_timestamp=self._earliest,
            latest_timestamp=self._latest,
            latest_sequence=self._latest_sequence,
            average_latitude=average_latitude,
            average_wind_speed_mps=self._wind_sum / self._count,
            min_wind_speed_mps=self._wind_min,
            max_wind_speed_mps=self._wind_max,
            session_ids=frozenset(self._sessions),
            version=self._version,
        )
        self._snapshot = snapshot

        for callback in list(self._callbacks):
            try:
                callback(snapshot)
            except Exception as e:
                logger.warning(f"Callback error: {e}")

    # ------------------------------------------------------------------
    # Readers
    # ------------------------------------------------------------------

    @property
    def snapshot(self) -> Optional[SourceCoverage]:
        """Latest published coverage, or None before the first batch."""
        return self._snapshot

    @property
    def state(self) -> UnifierState:
        with self._cond:
            return self._state

    @property
    def version(self) -> int:
        snapshot = self._snapshot
        return snapshot.version if snapshot else 0

    @property
    def queued(self) -> int:
        with self._cond:
            return len(self._queue)

    @property
    def dropped(self) -> int:
        with self._cond:
            return self._dropped

    @property
    def union_failures(self) -> int:
        with self._cond:
            return self._union_failures

    def activity(self) -> SourceActivity:
        snapshot = self._snapshot
        with self._cond:
            return SourceActivity(
                source_id=self.source_id,
                source_name=self.source_name,
                state=self._state,
                queued=len(self._queue),
                dropped=self._dropped,
                union_failures=self._union_failures,
                polygon_count=snapshot.polygon_count if snapshot else 0,
                version=snapshot.version if snapshot else 0,
                latest_timestamp=snapshot.latest_timestamp if snapshot else None,
            )
