"""
Unit tests for the in-memory and simulated measurement feeds.
"""

from scentcover.feeds import Bounds, InMemoryFeed, MeasurementFeed, SimulatedRoverFeed

from conftest import T0, make_measurement, make_walk, wait_for


class TestInMemoryFeed:

    def test_is_a_measurement_feed(self):
        assert isinstance(InMemoryFeed(), MeasurementFeed)

    def test_since_is_strictly_greater(self):
        walk = make_walk(5)
        feed = InMemoryFeed(walk)

        since = feed.get_measurements_since(walk[2].timestamp)
        assert [m.sequence for m in since] == [3, 4]

    def test_kept_in_timestamp_order(self):
        walk = make_walk(4)
        feed = InMemoryFeed()
        feed.extend(reversed(walk))
        feed.add(make_measurement(seq=10))

        timestamps = [m.timestamp for m in feed.get_all_measurements()]
        assert timestamps == sorted(timestamps)
        assert len(feed) == 5

    def test_lifecycle_flags(self):
        feed = InMemoryFeed(name="test")
        feed.initialize()
        feed.close()

        assert feed.name == "test"
        assert feed.initialized and feed.closed


class TestSimulatedRoverFeed:

    def test_generates_one_measurement_per_rover_per_step(self):
        feed = SimulatedRoverFeed(rover_count=3, seed=1, start_time=T0)
        produced = feed.generate(10)

        assert len(produced) == 30
        assert len(feed.get_all_measurements()) == 30
        assert {m.source_id for m in produced} == {"rover-1", "rover-2", "rover-3"}

    def test_seed_is_reproducible(self):
        a = SimulatedRoverFeed(rover_count=2, seed=42, start_time=T0).generate(20)
        b = SimulatedRoverFeed(rover_count=2, seed=42, start_time=T0).generate(20)

        assert [(m.latitude, m.longitude, m.wind_speed_mps) for m in a] == \
               [(m.latitude, m.longitude, m.wind_speed_mps) for m in b]

    def test_measurements_are_well_formed(self):
        bounds = Bounds(min_latitude=-36.751, max_latitude=-36.749,
                        min_longitude=174.624, max_longitude=174.626)
        feed = SimulatedRoverFeed(rover_count=1, bounds=bounds, seed=3, start_time=T0,
                                  walk_speed_mps=5.0)
        produced = feed.generate(200)

        for m in produced:
            assert bounds.contains(m.latitude, m.longitude)
            assert 0.0 <= m.wind_speed_mps <= SimulatedRoverFeed.MAX_WIND_MPS
            assert 0 <= m.wind_direction_deg < 360

        assert [m.sequence for m in produced] == list(range(200))
        timestamps = [m.timestamp for m in produced]
        assert all(a < b for a, b in zip(timestamps, timestamps[1:]))

    def test_since_watermark(self):
        feed = SimulatedRoverFeed(rover_count=2, seed=5, start_time=T0)
        first = feed.generate(3)
        watermark = max(m.timestamp for m in first)
        second = feed.generate(2)

        assert feed.get_measurements_since(watermark) == second

    def test_session_per_rover(self):
        feed = SimulatedRoverFeed(rover_count=2, seed=9)
        sessions = {r.session_id for r in feed.rovers}
        assert len(sessions) == 2

    def test_background_generation(self):
        feed = SimulatedRoverFeed(rover_count=1, seed=2)
        feed.start(interval_seconds=0.01)
        try:
            assert wait_for(lambda: len(feed.get_all_measurements()) >= 3, timeout=3.0)
        finally:
            feed.stop()
