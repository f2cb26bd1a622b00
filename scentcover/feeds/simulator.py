"""
Simulated rover feed.

Generates plausible walking-rover measurements without any hardware or
database: each rover follows a random walk inside a bounding box and
reports a wind vector that drifts smoothly over time.

Usage:
    feed = SimulatedRoverFeed(rover_count=2, seed=42)
    feed.generate(100)              # deterministic, simulated clock
    # or
    feed.start(interval_seconds=2)  # background thread, wall clock
"""

import logging
import math
import threading
import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import List, Optional, Tuple

import numpy as np

from ..geometry.geo import offset_position
from ..models import Measurement
from .base import MeasurementFeed
from .memory import InMemoryFeed

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Bounds:
    """Lat/lon box the rovers are kept inside."""
    min_latitude: float = -36.78
    max_latitude: float = -36.70
    min_longitude: float = 174.55
    max_longitude: float = 174.70

    def contains(self, latitude: float, longitude: float) -> bool:
        return (self.min_latitude <= latitude <= self.max_latitude
                and self.min_longitude <= longitude <= self.max_longitude)

    def clamp(self, latitude: float, longitude: float) -> Tuple[float, float]:
        return (
            min(max(latitude, self.min_latitude), self.max_latitude),
            min(max(longitude, self.min_longitude), self.max_longitude),
        )

    @property
    def centre(self) -> Tuple[float, float]:
        return (
            (self.min_latitude + self.max_latitude) / 2,
            (self.min_longitude + self.max_longitude) / 2,
        )


@dataclass
class RoverState:
    """Mutable walk state of one simulated rover."""
    source_id: str
    source_name: str
    session_id: str
    latitude: float
    longitude: float
    bearing_deg: float
    wind_direction_deg: float
    wind_speed_mps: float
    sequence: int = 0


class SimulatedRoverFeed(MeasurementFeed):
    """Random-walk rovers with smoothly drifting wind."""

    MAX_WIND_MPS = 15.0

    def __init__(
        self,
        rover_count: int = 1,
        bounds: Optional[Bounds] = None,
        walk_speed_mps: float = 1.4,
        interval_seconds: float = 2.0,
        bearing_std_deg: float = 3.0,
        wind_direction_std_deg: float = 10.0,
        wind_speed_std_mps: float = 0.5,
        seed: Optional[int] = None,
        start_time: Optional[datetime] = None,
    ):
        """
        Initialize simulator.

        Args:
            rover_count: Number of independent rovers (one source each)
            bounds: Box the rovers are reflected back into
            walk_speed_mps: Rover speed over ground (m/s)
            interval_seconds: Time between measurements per rover
            bearing_std_deg: Per-step heading noise
            wind_direction_std_deg: Per-step wind direction drift
            wind_speed_std_mps: Per-step wind speed drift
            seed: RNG seed for reproducible runs
            start_time: Simulated clock origin (defaults to now, UTC)
        """
        self.bounds = bounds or Bounds()
        self.walk_speed_mps = walk_speed_mps
        self.interval_seconds = interval_seconds
        self.bearing_std_deg = bearing_std_deg
        self.wind_direction_std_deg = wind_direction_std_deg
        self.wind_speed_std_mps = wind_speed_std_mps

        self._rng = np.random.default_rng(seed)
        self._clock = start_time or datetime.now(timezone.utc)
        self._store = InMemoryFeed(name="simulator")
        self._step_lock = threading.Lock()
        self._stop_event = threading.Event()
        self._thread: Optional[threading.Thread] = None

        lat0, lon0 = self.bounds.centre
        self.rovers: List[RoverState] = []
        for i in range(rover_count):
            # Rovers start spread around the centre so their coverage differs
            lon, lat = offset_position(lat0, lon0, 200.0 * i, self._rng.uniform(0, 2 * math.pi))
            self.rovers.append(RoverState(
                source_id=f"rover-{i + 1}",
                source_name=f"Rover {i + 1}",
                session_id=str(uuid.UUID(bytes=self._rng.bytes(16))),
                latitude=lat,
                longitude=lon,
                bearing_deg=float(self._rng.uniform(0, 360)),
                wind_direction_deg=float(self._rng.integers(0, 360)),
                wind_speed_mps=float(1.0 + self._rng.uniform(0, 5.0)),
            ))

    @property
    def name(self) -> str:
        return f"simulator ({len(self.rovers)} rovers)"

    def initialize(self) -> None:
        logger.info(f"Simulated rover feed ready: {len(self.rovers)} rovers in {self.bounds}")

    def get_all_measurements(self) -> List[Measurement]:
        return self._store.get_all_measurements()

    def get_measurements_since(self, timestamp: datetime) -> List[Measurement]:
        return self._store.get_measurements_since(timestamp)

    def close(self) -> None:
        self.stop()

    # ------------------------------------------------------------------
    # Generation
    # ------------------------------------------------------------------

    def _advance(self, rover: RoverState, timestamp: datetime) -> Measurement:
        step_m = self.walk_speed_mps * self.interval_seconds

        rover.bearing_deg = (rover.bearing_deg + self._rng.normal(0, self.bearing_std_deg)) % 360
        lon, lat = offset_position(rover.latitude, rover.longitude, step_m,
                                   math.radians(rover.bearing_deg))

        if not self.bounds.contains(lat, lon):
            # Reflect and step back inside
            rover.bearing_deg = (rover.bearing_deg + 180.0) % 360
            lon, lat = offset_position(rover.latitude, rover.longitude, step_m,
                                       math.radians(rover.bearing_deg))
            lat, lon = self.bounds.clamp(lat, lon)

        rover.latitude, rover.longitude = lat, lon
        rover.wind_direction_deg = (
            rover.wind_direction_deg + self._rng.normal(0, self.wind_direction_std_deg)
        ) % 360
        rover.wind_speed_mps = float(np.clip(
            rover.wind_speed_mps + self._rng.normal(0, self.wind_speed_std_mps),
            0.0, self.MAX_WIND_MPS,
        ))

        measurement = Measurement(
            source_id=rover.source_id,
            source_name=rover.source_name,
            session_id=rover.session_id,
            sequence=rover.sequence,
            timestamp=timestamp,
            latitude=rover.latitude,
            longitude=rover.longitude,
            wind_direction_deg=round(float(rover.wind_direction_deg)) % 360,
            wind_speed_mps=rover.wind_speed_mps,
        )
        rover.sequence += 1
        return measurement

    def step(self, timestamp: Optional[datetime] = None) -> List[Measurement]:
        """
        Advance every rover once and publish the new measurements.

        Rovers report in the same tick with timestamps a microsecond apart
        so the feed stays strictly ordered.
        """
        with self._step_lock:
            if timestamp is None:
                self._clock += timedelta(seconds=self.interval_seconds)
                timestamp = self._clock
            batch = [
                self._advance(rover, timestamp + timedelta(microseconds=i))
                for i, rover in enumerate(self.rovers)
            ]
        self._store.extend(batch)
        return batch

    def generate(self, steps: int) -> List[Measurement]:
        """Run `steps` ticks on the simulated clock; returns all new measurements."""
        produced: List[Measurement] = []
        for _ in range(steps):
            produced.extend(self.step())
        return produced

    def start(self, interval_seconds: Optional[float] = None) -> None:
        """Generate measurements in real time on a background thread."""
        if self._thread is not None:
            logger.warning("Simulator already running")
            return
        interval = interval_seconds if interval_seconds is not None else self.interval_seconds
        self._stop_event.clear()
        self._thread = threading.Thread(
            target=self._generate_loop,
            args=(interval,),
            daemon=True,
            name="Rover-Simulator",
        )
        self._thread.start()
        logger.info(f"Started rover simulator every {interval:.1f}s")

    def stop(self) -> None:
        if self._thread is None:
            return
        self._stop_event.set()
        self._thread.join(timeout=2.0)
        self._thread = None
        logger.info("Stopped rover simulator")

    def _generate_loop(self, interval: float) -> None:
        while not self._stop_event.is_set():
            try:
                self.step(datetime.now(timezone.utc))
            except Exception as e:
                logger.warning(f"Simulator step failed: {e}")
            self._stop_event.wait(interval)
