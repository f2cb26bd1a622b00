"""Incremental unification: per-source unifiers, registry and global aggregator."""

from .unifier import SourceUnifier, UnifierConfig
from .registry import SourceRegistry
from .aggregator import GlobalAggregator, combine_snapshots

__all__ = [
    "SourceUnifier",
    "UnifierConfig",
    "SourceRegistry",
    "GlobalAggregator",
    "combine_snapshots",
]
