"""In-memory measurement feed, used by tests and embedding applications."""

import logging
import threading
from datetime import datetime
from typing import Iterable, List, Optional

from ..models import Measurement
from .base import MeasurementFeed

logger = logging.getLogger(__name__)


class InMemoryFeed(MeasurementFeed):
    """
    Thread-safe list of measurements.

    Producers call add()/extend() from any thread; the coordinator reads
    through the MeasurementFeed interface. Measurements are kept sorted by
    timestamp (stable for equal timestamps).
    """

    def __init__(self, measurements: Optional[Iterable[Measurement]] = None, name: str = "memory"):
        self._name = name
        self._lock = threading.Lock()
        self._measurements: List[Measurement] = []
        self.initialized = False
        self.closed = False
        if measurements:
            self.extend(measurements)

    @property
    def name(self) -> str:
        return self._name

    def initialize(self) -> None:
        self.initialized = True
        logger.debug(f"Feed '{self._name}' initialized with {len(self)} measurements")

    def add(self, measurement: Measurement) -> None:
        self.extend([measurement])

    def extend(self, measurements: Iterable[Measurement]) -> None:
        with self._lock:
            self._measurements.extend(measurements)
            self._measurements.sort(key=lambda m: m.timestamp)

    def get_all_measurements(self) -> List[Measurement]:
        with self._lock:
            return list(self._measurements)

    def get_measurements_since(self, timestamp: datetime) -> List[Measurement]:
        with self._lock:
            return [m for m in self._measurements if m.timestamp > timestamp]

    def close(self) -> None:
        self.closed = True

    def __len__(self) -> int:
        with self._lock:
            return len(self._measurements)
