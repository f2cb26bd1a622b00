"""
Unit tests for the source registry.
"""

import threading

from scentcover.geometry.calculator import polygon_for_measurement
from scentcover.metrics import metrics
from scentcover.models import UnifierState
from scentcover.processing.registry import SourceRegistry
from scentcover.processing import unifier as unifier_module
from scentcover.processing.unifier import UnifierConfig

from conftest import make_polygons, make_walk, wait_for


class TestSourceRegistry:
    """Creation, lookup, notification and shutdown."""

    def test_get_or_create_returns_same_unifier(self, unifier_config):
        registry = SourceRegistry(unifier_config)
        try:
            first = registry.get_or_create("rover-1", "Rover 1")
            second = registry.get_or_create("rover-1", "Rover 1")

            assert first is second
            assert len(registry) == 1
            assert "rover-1" in registry
            assert first.state == UnifierState.ACTIVE
        finally:
            registry.stop_all()

    def test_concurrent_creation_yields_one_unifier(self, unifier_config):
        registry = SourceRegistry(unifier_config)
        results = []
        barrier = threading.Barrier(8)

        def worker():
            barrier.wait()
            results.append(registry.get_or_create("rover-1", "Rover 1"))

        threads = [threading.Thread(target=worker) for _ in range(8)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        try:
            assert len(registry) == 1
            assert all(r is results[0] for r in results)
        finally:
            registry.stop_all()

    def test_source_name_defaults_to_id(self, unifier_config):
        registry = SourceRegistry(unifier_config)
        try:
            assert registry.get_or_create("rover-7").source_name == "rover-7"
        finally:
            registry.stop_all()

    def test_get_unknown_returns_none(self):
        assert SourceRegistry().get("nobody") is None

    def test_listeners_receive_snapshots(self, unifier_config):
        received = []
        registry = SourceRegistry(unifier_config)
        registry.add_listener(received.append)

        unifier = registry.get_or_create("rover-1", "Rover 1")
        for m in make_walk(3):
            unifier.try_add(polygon_for_measurement(m))

        assert wait_for(lambda: len(received) >= 1)
        registry.stop_all()
        assert received[-1].source_id == "rover-1"
        assert received[-1].polygon_count == 3

    def test_snapshots_only_for_sources_with_data(self, unifier_config):
        registry = SourceRegistry(unifier_config)
        registry.get_or_create("idle", "Idle")
        busy = registry.get_or_create("rover-1", "Rover 1")
        for m in make_walk(2):
            busy.try_add(polygon_for_measurement(m))
        registry.stop_all()

        snapshots = registry.snapshots()
        assert [s.source_id for s in snapshots] == ["rover-1"]
        assert len(registry.activity()) == 2

    def test_stop_all_stops_every_unifier(self, unifier_config):
        registry = SourceRegistry(unifier_config)
        for source_id in ("a", "b", "c"):
            unifier = registry.get_or_create(source_id)
            for m in make_walk(15, source_id=source_id):
                unifier.try_add(polygon_for_measurement(m))

        assert registry.stop_all(timeout=10.0)
        for unifier in registry.unifiers():
            assert unifier.state == UnifierState.STOPPED
            assert unifier.snapshot.polygon_count == 15

    def test_no_new_sources_after_stop(self):
        registry = SourceRegistry(UnifierConfig())
        registry.stop_all()
        assert registry.get_or_create("late") is None
        assert len(registry) == 0

    def test_deadline_force_stops_laggards(self, monkeypatch):
        entered = threading.Event()
        release = threading.Event()
        real_union = unifier_module.unary_union

        def slow_union(geometries):
            entered.set()
            release.wait(10.0)
            return real_union(geometries)

        monkeypatch.setattr(unifier_module, "unary_union", slow_union)
        polygons = make_polygons(500)
        registry = SourceRegistry(UnifierConfig(idle_flush_seconds=None))
        unifier = registry.get_or_create("rover-1")
        for polygon in polygons:
            unifier.try_add(polygon)

        # Worker holds the first batch of 10 inside the union
        assert entered.wait(5.0)
        try:
            assert registry.stop_all(timeout=0.0) is False
            assert unifier.queued == 0
            assert unifier.dropped == 490
            assert metrics.get_counter("polygons_dropped") == 490
        finally:
            release.set()

        assert wait_for(lambda: unifier.state == UnifierState.STOPPED)
        assert unifier.snapshot.polygon_count == 10
