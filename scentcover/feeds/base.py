"""
Measurement feed interface.

A feed is the engine's only view of the raw-measurement store. The
coordinator loads everything once at startup, then repeatedly asks for
measurements strictly newer than the last timestamp it has seen.
"""

from abc import ABC, abstractmethod
from datetime import datetime
from typing import List

from ..models import Measurement


class MeasurementFeed(ABC):
    """Abstract source of geolocated measurements."""

    @property
    @abstractmethod
    def name(self) -> str:
        """Human-readable feed name, shown in status reports."""
        pass

    @abstractmethod
    def initialize(self) -> None:
        """Open connections or prepare resources. Called once before use."""
        pass

    @abstractmethod
    def get_all_measurements(self) -> List[Measurement]:
        """Every measurement currently available, ordered by timestamp."""
        pass

    @abstractmethod
    def get_measurements_since(self, timestamp: datetime) -> List[Measurement]:
        """Measurements with timestamp strictly greater than `timestamp`, ordered."""
        pass

    def close(self) -> None:
        """Release resources. Default: nothing to release."""
        pass
