"""
Unit tests for settings loading.
"""

import pytest
from pydantic import ValidationError

from scentcover.config import Settings, get_settings
from scentcover.geometry.calculator import PolygonConfig
from scentcover.processing.unifier import UnifierConfig


class TestSettings:

    def test_defaults(self, monkeypatch):
        monkeypatch.delenv("SCENTCOVER_BATCH_SIZE", raising=False)
        s = Settings(_env_file=None)

        assert s.omnidirectional_radius_m == 30.0
        assert s.fan_polygon_points == 15
        assert s.minimum_distance_multiplier == 0.4
        assert s.fallback_box_size_deg == 0.001
        assert s.queue_capacity == 512
        assert s.batch_size == 10
        assert s.simplify_tolerance_m == 1.5
        assert s.max_vertices_before_simplify == 6000
        assert s.idle_flush_seconds == 2.0
        assert s.poll_interval_seconds == 1.0
        assert s.status_interval_seconds == 10.0

    def test_environment_override(self, monkeypatch):
        monkeypatch.setenv("SCENTCOVER_BATCH_SIZE", "25")
        monkeypatch.setenv("SCENTCOVER_OMNIDIRECTIONAL_RADIUS_M", "45.5")

        s = Settings(_env_file=None)
        assert s.batch_size == 25
        assert s.omnidirectional_radius_m == 45.5

    def test_invalid_values_rejected(self):
        with pytest.raises(ValidationError):
            Settings(_env_file=None, batch_size=0)
        with pytest.raises(ValidationError):
            Settings(_env_file=None, minimum_distance_multiplier=1.5)

    def test_core_configs(self):
        s = Settings(_env_file=None, fan_polygon_points=40, queue_capacity=64,
                     idle_flush_seconds=None)

        polygon = s.polygon_config()
        unifier = s.unifier_config()

        assert isinstance(polygon, PolygonConfig)
        assert polygon.fan_polygon_points == 40
        assert isinstance(unifier, UnifierConfig)
        assert unifier.queue_capacity == 64
        assert unifier.idle_flush_seconds is None

    def test_get_settings_is_cached(self):
        assert get_settings() is get_settings()
