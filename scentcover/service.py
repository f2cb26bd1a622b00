"""
Coverage service.

Ties the engine together and is the only object callers need:

    MeasurementFeed (1 Hz poll) ──> Polygon Calculator ──> SourceRegistry
                                                             │
                          per-source SourceUnifier threads <─┘
                                                             │ version bump
                                    GlobalAggregator <───────┘ (lazy, on read)

Ingestion keeps a timestamp watermark: every tick fetches measurements
strictly newer than the newest one already seen, turns each into exactly
one polygon and routes it to its source's unifier. Feed failures are
logged and retried on the next tick; nothing here terminates the process.
"""

import logging
import threading
import time
from datetime import datetime, timezone
from typing import Callable, List, Optional

from .config import Settings, get_settings
from .feeds.base import MeasurementFeed
from .geometry.calculator import PolygonConfig, polygon_for_measurement
from .metrics import metrics
from .models import (
    CoveragePolygon,
    CoverageStatus,
    GlobalCoverage,
    Measurement,
    PolygonsUpdatedEvent,
    SourceCoverage,
    UnifierState,
)
from .processing.aggregator import GlobalAggregator
from .processing.registry import SourceRegistry
from .processing.unifier import UnifierConfig
from .resilience import FeedUnavailableError, call_with_retry

logger = logging.getLogger(__name__)


class CoverageService:
    """
    Ingestion coordinator and read facade for coverage polygons.

    Thread-safe: queries may be issued from any thread while the
    ingestion thread and the per-source unifier threads run.
    """

    def __init__(
        self,
        feed: MeasurementFeed,
        settings: Optional[Settings] = None,
        polygon_config: Optional[PolygonConfig] = None,
        unifier_config: Optional[UnifierConfig] = None,
    ):
        """
        Initialize the service.

        Args:
            feed: Source of measurements
            settings: Engine settings (cached environment settings if None)
            polygon_config: Overrides the polygon shape from settings
            unifier_config: Overrides queueing/simplification from settings
        """
        self.settings = settings or get_settings()
        self.feed = feed
        self.polygon_config = polygon_config or self.settings.polygon_config()

        self.registry = SourceRegistry(unifier_config or self.settings.unifier_config())
        self.aggregator = GlobalAggregator(self.registry, self.settings.query_cache_size)

        # Serializes ticks; the bootstrap load and the timer thread never overlap
        self._poll_lock = threading.Lock()
        self._watermark: Optional[datetime] = None
        self._total_polygons = 0
        self._latest_polygon: Optional[CoveragePolygon] = None
        self._feed_errors = 0
        self._feed_ready = False

        self._update_callbacks: List[Callable[[PolygonsUpdatedEvent], None]] = []
        self._status_callbacks: List[Callable[[CoverageStatus], None]] = []

        self._stop_event = threading.Event()
        self._thread: Optional[threading.Thread] = None
        self._running = False

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def start(self) -> bool:
        """
        Initialize the feed, load existing measurements and start polling.

        A feed initialization or bootstrap load that still fails after
        retries is logged; the poll loop starts anyway and tries again on
        its first tick.
        """
        if self._running:
            logger.warning("Coverage service already running")
            return True

        try:
            call_with_retry(
                self.feed.initialize,
                max_attempts=self.settings.bootstrap_retry_attempts,
                description=f"Initialize feed '{self.feed.name}'",
            )
            self._feed_ready = True
            measurements = call_with_retry(
                self._fetch,
                max_attempts=self.settings.bootstrap_retry_attempts,
                description=f"Initial load from feed '{self.feed.name}'",
            )
            with self._poll_lock:
                loaded = self._ingest(measurements)
            logger.info(f"Bootstrapped {loaded} polygons from feed '{self.feed.name}'")
        except FeedUnavailableError as e:
            self._feed_errors += 1
            metrics.increment("feed_errors")
            logger.error(f"Starting without initial data: {e}")

        self._stop_event.clear()
        self._running = True
        self._thread = threading.Thread(
            target=self._run,
            daemon=True,
            name="Coverage-Ingest",
        )
        self._thread.start()

        logger.info(
            f"Coverage service started (feed '{self.feed.name}', "
            f"poll every {self.settings.poll_interval_seconds}s)"
        )
        return True

    def stop(self, timeout: Optional[float] = None, force: bool = False) -> bool:
        """
        Stop polling, then drain (or force-stop) every unifier.

        Args:
            timeout: Overall shutdown budget in seconds (settings default if None)
            force: Discard still-queued polygons instead of draining them

        Returns:
            True if every worker thread exited within the budget
        """
        if timeout is None:
            timeout = self.settings.shutdown_timeout_seconds
        deadline = time.monotonic() + timeout

        self._stop_event.set()
        if self._thread is not None:
            self._thread.join(timeout=max(0.0, deadline - time.monotonic()))
            self._thread = None
        self._running = False

        clean = self.registry.stop_all(timeout=max(0.0, deadline - time.monotonic()), force=force)

        try:
            self.feed.close()
        except Exception as e:
            logger.warning(f"Error closing feed '{self.feed.name}': {e}")

        metrics.log_summary()
        logger.info(f"Coverage service stopped (force={force}, clean={clean})")
        return clean

    @property
    def is_running(self) -> bool:
        return self._running

    def _run(self) -> None:
        """Poll loop (runs in separate thread)."""
        next_status = time.monotonic() + self.settings.status_interval_seconds

        while not self._stop_event.wait(self.settings.poll_interval_seconds):
            try:
                self.poll_once()
            except Exception as e:
                logger.error(f"Ingestion tick failed: {e}")

            if time.monotonic() >= next_status:
                next_status = time.monotonic() + self.settings.status_interval_seconds
                self._emit_status()

    # ------------------------------------------------------------------
    # Ingestion
    # ------------------------------------------------------------------

    def _fetch(self) -> List[Measurement]:
        if self._watermark is None:
            return self.feed.get_all_measurements()
        return self.feed.get_measurements_since(self._watermark)

    def poll_once(self) -> int:
        """
        Run one ingestion tick synchronously.

        Returns:
            Number of polygons routed to unifiers
        """
        with self._poll_lock:
            try:
                if not self._feed_ready:
                    self.feed.initialize()
                    self._feed_ready = True
                    logger.info(f"Feed '{self.feed.name}' initialized")
                measurements = self._fetch()
            except Exception as e:
                self._feed_errors += 1
                metrics.increment("feed_errors")
                logger.error(f"Feed '{self.feed.name}' poll failed, retrying next tick: {e}")
                return 0
            return self._ingest(measurements)

    def _ingest(self, measurements: List[Measurement]) -> int:
        # Caller holds self._poll_lock
        watermark = self._watermark
        fresh = [m for m in measurements if watermark is None or m.timestamp > watermark]
        if not fresh:
            return 0

        new_polygons: List[CoveragePolygon] = []
        affected: List[str] = []
        for measurement in fresh:
            try:
                polygon = polygon_for_measurement(measurement, self.polygon_config)
            except Exception as e:
                logger.error(f"Polygon failed for {measurement.source_id} "
                             f"seq={measurement.sequence}: {e}")
                continue

            unifier = self.registry.get_or_create(measurement.source_id, measurement.source_name)
            if unifier is None:
                logger.debug("Registry closed, ignoring remaining measurements")
                break
            unifier.try_add(polygon)

            new_polygons.append(polygon)
            if measurement.source_id not in affected:
                affected.append(measurement.source_id)

        self._watermark = max(m.timestamp for m in fresh)

        if not new_polygons:
            return 0

        self._total_polygons += len(new_polygons)
        self._latest_polygon = new_polygons[-1]
        metrics.increment("measurements_processed", len(new_polygons))
        logger.debug(
            f"Ingested {len(new_polygons)} polygons from {len(affected)} sources, "
            f"watermark {self._watermark.isoformat()}"
        )

        self._notify_update(PolygonsUpdatedEvent(
            new_polygons=tuple(new_polygons),
            affected_source_ids=tuple(affected),
            total_polygon_count=self._total_polygons,
            latest_polygon=self._latest_polygon,
        ))
        return len(new_polygons)

    # ------------------------------------------------------------------
    # Notifications
    # ------------------------------------------------------------------

    def add_update_callback(self, callback: Callable[[PolygonsUpdatedEvent], None]) -> None:
        """Called after every ingestion tick that produced polygons."""
        self._update_callbacks.append(callback)

    def add_status_callback(self, callback: Callable[[CoverageStatus], None]) -> None:
        """Called every status_interval_seconds with a CoverageStatus."""
        self._status_callbacks.append(callback)

    def _notify_update(self, event: PolygonsUpdatedEvent) -> None:
        for callback in list(self._update_callbacks):
            try:
                callback(event)
            except Exception as e:
                logger.warning(f"Callback error: {e}")

    def _emit_status(self) -> None:
        status = self.get_status()
        logger.info(
            f"Status: {status.total_polygon_count} polygons, "
            f"{status.active_source_count}/{status.source_count} sources active, "
            f"{status.dropped_total} dropped"
        )
        for callback in list(self._status_callbacks):
            try:
                callback(status)
            except Exception as e:
                logger.warning(f"Callback error: {e}")

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def get_global_coverage(self) -> GlobalCoverage:
        return self.aggregator.get_global_coverage()

    def get_source_coverage(self, source_id: str) -> Optional[SourceCoverage]:
        return self.aggregator.get_source_coverage(source_id)

    def get_coverage_between(
        self,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
    ) -> GlobalCoverage:
        return self.aggregator.get_coverage_between(start, end)

    def get_session_coverage(self, session_id: str) -> GlobalCoverage:
        return self.aggregator.get_session_coverage(session_id)

    def compute_polygon_for_measurement(self, measurement: Measurement) -> CoveragePolygon:
        """Polygon for an arbitrary measurement; does not ingest it."""
        return polygon_for_measurement(measurement, self.polygon_config)

    @property
    def watermark(self) -> Optional[datetime]:
        return self._watermark

    @property
    def total_polygon_count(self) -> int:
        return self._total_polygons

    @property
    def feed_errors(self) -> int:
        return self._feed_errors

    def get_status(self) -> CoverageStatus:
        sources = tuple(self.registry.activity())
        return CoverageStatus(
            timestamp=datetime.now(timezone.utc),
            total_polygon_count=self._total_polygons,
            data_source=self.feed.name,
            source_count=len(sources),
            active_source_count=sum(1 for s in sources if s.state == UnifierState.ACTIVE),
            dropped_total=sum(s.dropped for s in sources),
            latest_polygon=self._latest_polygon,
            watermark=self._watermark,
            sources=sources,
        )
