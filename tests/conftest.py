"""
Shared pytest fixtures for scentcover tests.

Timing-sensitive settings (idle flush, poll interval, status interval)
are shortened so threaded tests finish quickly.
"""

import sys
import time
from datetime import datetime, timedelta, timezone
from pathlib import Path

import pytest

sys.path.insert(0, str(Path(__file__).parent.parent))

from scentcover.config import Settings  # noqa: E402
from scentcover.geometry.calculator import polygon_for_measurement  # noqa: E402
from scentcover.geometry.geo import offset_position  # noqa: E402
from scentcover.metrics import metrics  # noqa: E402
from scentcover.models import Measurement  # noqa: E402
from scentcover.processing.unifier import UnifierConfig  # noqa: E402

# Auckland, as used by the field deployments
BASE_LAT = -36.85
BASE_LON = 174.76
T0 = datetime(2025, 3, 1, 9, 0, 0, tzinfo=timezone.utc)


def wait_for(predicate, timeout: float = 5.0, interval: float = 0.01) -> bool:
    """Poll predicate until it is truthy or timeout elapses."""
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(interval)
    return bool(predicate())


def make_measurement(
    seq: int = 0,
    source_id: str = "rover-1",
    source_name: str = None,
    session_id: str = "session-a",
    step_m: float = 5.0,
    bearing_deg: float = 0.0,
    wind_direction_deg: float = 270.0,
    wind_speed_mps: float = 3.0,
    start: datetime = T0,
    lat: float = BASE_LAT,
    lon: float = BASE_LON,
) -> Measurement:
    """A measurement `seq` steps along a straight walk from (lat, lon)."""
    import math

    p_lon, p_lat = offset_position(lat, lon, step_m * seq, math.radians(bearing_deg))
    return Measurement(
        source_id=source_id,
        source_name=source_name or source_id.title(),
        session_id=session_id,
        sequence=seq,
        timestamp=start + timedelta(seconds=2 * seq),
        latitude=p_lat,
        longitude=p_lon,
        wind_direction_deg=wind_direction_deg,
        wind_speed_mps=wind_speed_mps,
    )


def make_walk(count: int, **kwargs):
    """`count` consecutive measurements of one source."""
    return [make_measurement(seq=i, **kwargs) for i in range(count)]


def make_polygons(count: int, **kwargs):
    return [polygon_for_measurement(m) for m in make_walk(count, **kwargs)]


@pytest.fixture(autouse=True)
def reset_metrics():
    """Each test starts with empty counters."""
    metrics.reset()
    yield


@pytest.fixture
def unifier_config():
    """Unifier config with a short idle flush."""
    return UnifierConfig(idle_flush_seconds=0.05)


@pytest.fixture
def test_settings():
    """Settings with fast timers for threaded service tests."""
    return Settings(
        poll_interval_seconds=0.05,
        status_interval_seconds=0.1,
        idle_flush_seconds=0.05,
        shutdown_timeout_seconds=5.0,
        bootstrap_retry_attempts=2,
    )
