"""
Integration tests for the coverage service: feed -> calculator ->
unifiers -> aggregator, with real threads and short timers.
"""

from datetime import timedelta

import pytest

from scentcover.feeds import InMemoryFeed, SimulatedRoverFeed
from scentcover.models import UnifierState
from scentcover.service import CoverageService

from conftest import T0, make_measurement, make_walk, wait_for


class FlakyFeed(InMemoryFeed):
    """In-memory feed whose next `failures` reads (and `init_failures` initializations) raise."""

    def __init__(self, measurements=None, failures=0, init_failures=0):
        super().__init__(measurements, name="flaky")
        self.failures = failures
        self.init_failures = init_failures

    def initialize(self):
        if self.init_failures > 0:
            self.init_failures -= 1
            raise ConnectionError("database refused connection")
        super().initialize()

    def _maybe_fail(self):
        if self.failures > 0:
            self.failures -= 1
            raise ConnectionError("database unreachable")

    def get_all_measurements(self):
        self._maybe_fail()
        return super().get_all_measurements()

    def get_measurements_since(self, timestamp):
        self._maybe_fail()
        return super().get_measurements_since(timestamp)


@pytest.fixture
def make_service(test_settings):
    """Build services that are always stopped at teardown."""
    created = []

    def _make(feed, **kwargs):
        service = CoverageService(feed, settings=test_settings, **kwargs)
        created.append(service)
        return service

    yield _make
    for service in created:
        service.stop(timeout=5.0)


class TestIngestion:

    def test_bootstrap_loads_existing_measurements(self, make_service):
        feed = InMemoryFeed(make_walk(8))
        service = make_service(feed)
        service.start()

        assert feed.initialized
        assert service.total_polygon_count == 8
        assert wait_for(lambda: service.get_global_coverage().polygon_count == 8)
        assert service.watermark == make_walk(8)[-1].timestamp

    def test_live_measurements_are_picked_up(self, make_service):
        feed = InMemoryFeed(make_walk(3))
        service = make_service(feed)
        service.start()

        feed.extend([make_measurement(seq=i) for i in range(3, 6)])
        assert wait_for(lambda: service.get_global_coverage().polygon_count == 6)

    def test_watermark_is_strict(self, make_service):
        walk = make_walk(4)
        feed = InMemoryFeed(walk)
        service = make_service(feed)

        assert service.poll_once() == 4
        assert service.poll_once() == 0

        # Same timestamp as the newest one seen: never ingested
        feed.add(make_measurement(seq=3, source_id="rover-2"))
        assert service.poll_once() == 0

        feed.add(make_measurement(seq=4))
        assert service.poll_once() == 1
        assert service.total_polygon_count == 5

    def test_multiple_sources_get_their_own_unifier(self, make_service):
        feed = InMemoryFeed(make_walk(5, source_id="rover-a") +
                            make_walk(5, source_id="rover-b", bearing_deg=90.0))
        service = make_service(feed)
        service.poll_once()

        assert len(service.registry) == 2
        assert wait_for(lambda: service.get_global_coverage().polygon_count == 10)
        coverage = service.get_global_coverage()
        assert coverage.source_ids == ("rover-a", "rover-b")
        assert service.get_source_coverage("rover-a").polygon_count == 5

    def test_simulated_feed_end_to_end(self, make_service):
        feed = SimulatedRoverFeed(rover_count=2, seed=7, start_time=T0)
        feed.generate(20)
        service = make_service(feed)
        service.start()

        assert wait_for(lambda: service.get_global_coverage().polygon_count == 40)
        coverage = service.get_global_coverage()
        assert coverage.source_count == 2
        assert coverage.total_area_m2 > 0
        assert 0.0 < coverage.coverage_efficiency <= 1.0 + 1e-9


class TestFeedFailures:

    def test_failed_poll_is_counted_and_retried(self, make_service):
        feed = FlakyFeed(make_walk(3), failures=1)
        service = make_service(feed)

        assert service.poll_once() == 0
        assert service.feed_errors == 1
        assert service.poll_once() == 3

    def test_bootstrap_failure_does_not_block_start(self, make_service):
        # Both bootstrap attempts fail; the first loop tick succeeds
        feed = FlakyFeed(make_walk(3), failures=2)
        service = make_service(feed)

        assert service.start() is True
        assert service.is_running
        assert service.feed_errors == 1
        assert wait_for(lambda: service.total_polygon_count == 3)

    def test_bootstrap_retry_recovers(self, make_service):
        feed = FlakyFeed(make_walk(3), failures=1)
        service = make_service(feed)
        service.start()

        assert service.feed_errors == 0
        assert service.total_polygon_count == 3

    def test_initialize_failure_does_not_block_start(self, make_service):
        feed = FlakyFeed(make_walk(3), init_failures=2)
        service = make_service(feed)

        assert service.start() is True
        assert service.is_running
        assert service.feed_errors == 1
        assert wait_for(lambda: service.total_polygon_count == 3)
        assert feed.initialized

    def test_initialize_retry_recovers(self, make_service):
        feed = FlakyFeed(make_walk(3), init_failures=1)
        service = make_service(feed)
        service.start()

        assert feed.initialized
        assert service.feed_errors == 0
        assert service.total_polygon_count == 3

    def test_poll_retries_initialize(self, make_service):
        feed = FlakyFeed(make_walk(3), init_failures=2)
        service = make_service(feed)

        assert service.poll_once() == 0
        assert service.poll_once() == 0
        assert service.poll_once() == 3
        assert service.feed_errors == 2


class TestNotifications:

    def test_update_event(self, make_service):
        service = make_service(InMemoryFeed(make_walk(4)))
        events = []
        service.add_update_callback(events.append)

        service.poll_once()

        assert len(events) == 1
        event = events[0]
        assert len(event.new_polygons) == 4
        assert event.affected_source_ids == ("rover-1",)
        assert event.total_polygon_count == 4
        assert event.latest_polygon.sequence == 3

    def test_failing_callback_does_not_stop_ingestion(self, make_service):
        feed = InMemoryFeed(make_walk(2))
        service = make_service(feed)
        seen = []

        def broken(event):
            raise RuntimeError("ui gone")

        service.add_update_callback(broken)
        service.add_update_callback(seen.append)

        assert service.poll_once() == 2
        feed.add(make_measurement(seq=2))
        assert service.poll_once() == 1
        assert len(seen) == 2

    def test_status_callback(self, make_service):
        service = make_service(InMemoryFeed(make_walk(3)))
        statuses = []
        service.add_status_callback(statuses.append)
        service.start()

        assert wait_for(lambda: len(statuses) >= 1, timeout=3.0)
        status = statuses[-1]
        assert status.data_source == "memory"
        assert status.total_polygon_count == 3
        assert status.source_count == 1
        assert status.to_dict()["latest_sequence"] == 2


class TestQueries:

    def test_adhoc_polygon_is_not_ingested(self, make_service):
        service = make_service(InMemoryFeed())
        polygon = service.compute_polygon_for_measurement(make_measurement())

        assert polygon.area_m2 > 0
        assert service.total_polygon_count == 0
        assert len(service.registry) == 0

    def test_session_and_range(self, make_service):
        feed = InMemoryFeed(
            make_walk(4, source_id="rover-a", session_id="morning")
            + make_walk(4, source_id="rover-b", session_id="evening",
                        start=T0 + timedelta(hours=8))
        )
        service = make_service(feed)
        service.poll_once()
        assert wait_for(lambda: service.get_global_coverage().polygon_count == 8)

        assert service.get_session_coverage("evening").source_ids == ("rover-b",)
        morning = service.get_coverage_between(T0, T0 + timedelta(hours=1))
        assert morning.source_ids == ("rover-a",)


class TestShutdown:

    def test_graceful_stop_drains(self, make_service):
        feed = InMemoryFeed(make_walk(30))
        service = make_service(feed)
        service.poll_once()

        assert service.stop(timeout=10.0) is True
        assert not service.is_running
        assert feed.closed
        assert service.get_global_coverage().polygon_count == 30
        assert all(s.state == UnifierState.STOPPED for s in service.registry.activity())

    def test_forced_stop(self, make_service):
        service = make_service(InMemoryFeed(make_walk(30)))
        service.start()

        assert service.stop(timeout=5.0, force=True) is True
        assert service.registry.get_or_create("rover-9") is None
        coverage = service.get_global_coverage()
        assert coverage.polygon_count <= 30
