"""Measurement feeds consumed by the coverage service."""

from .base import MeasurementFeed
from .memory import InMemoryFeed
from .simulator import Bounds, SimulatedRoverFeed

__all__ = ["MeasurementFeed", "InMemoryFeed", "SimulatedRoverFeed", "Bounds"]
