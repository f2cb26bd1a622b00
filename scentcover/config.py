"""
Configuration management for the coverage engine.

Loads environment variables (prefix SCENTCOVER_) and an optional .env file
into typed settings. The core components take small frozen configs built
from these settings, so they can also be constructed directly in tests.

Usage:
    from scentcover.config import settings

    settings.configure_logging()
    service = CoverageService(feed, settings=settings)
"""

import logging
from functools import lru_cache
from typing import Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from .geometry.calculator import PolygonConfig
from .processing.unifier import UnifierConfig


class Settings(BaseSettings):
    """Engine settings loaded from environment variables."""

    # ========================================================================
    # Polygon shape
    # ========================================================================
    omnidirectional_radius_m: float = Field(default=30.0, gt=0)
    fan_polygon_points: int = Field(default=15, ge=1)
    minimum_distance_multiplier: float = Field(default=0.4, ge=0, le=1)
    fallback_box_size_deg: float = Field(default=0.001, gt=0)

    # ========================================================================
    # Per-source unification
    # ========================================================================
    queue_capacity: int = Field(default=512, ge=1)
    batch_size: int = Field(default=10, ge=1)
    simplify_tolerance_m: float = Field(default=1.5, ge=0)
    max_vertices_before_simplify: int = Field(default=6000, ge=4)
    idle_flush_seconds: Optional[float] = 2.0

    # ========================================================================
    # Ingestion
    # ========================================================================
    poll_interval_seconds: float = Field(default=1.0, gt=0)
    status_interval_seconds: float = Field(default=10.0, gt=0)
    shutdown_timeout_seconds: float = Field(default=5.0, ge=0)
    bootstrap_retry_attempts: int = Field(default=3, ge=1)

    # ========================================================================
    # Queries
    # ========================================================================
    query_cache_size: int = Field(default=64, ge=1)

    # ========================================================================
    # API / logging
    # ========================================================================
    api_host: str = "0.0.0.0"
    api_port: int = 8000
    log_level: str = "INFO"
    log_format: str = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"

    model_config = SettingsConfigDict(
        env_prefix="SCENTCOVER_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    def polygon_config(self) -> PolygonConfig:
        return PolygonConfig(
            omnidirectional_radius_m=self.omnidirectional_radius_m,
            fan_polygon_points=self.fan_polygon_points,
            minimum_distance_multiplier=self.minimum_distance_multiplier,
            fallback_box_size_deg=self.fallback_box_size_deg,
        )

    def unifier_config(self) -> UnifierConfig:
        return UnifierConfig(
            queue_capacity=self.queue_capacity,
            batch_size=self.batch_size,
            simplify_tolerance_m=self.simplify_tolerance_m,
            max_vertices_before_simplify=self.max_vertices_before_simplify,
            idle_flush_seconds=self.idle_flush_seconds,
        )

    def configure_logging(self):
        """Configure root logging from log_level and log_format."""
        level = getattr(logging, self.log_level.upper(), logging.INFO)
        logging.basicConfig(level=level, format=self.log_format)


@lru_cache()
def get_settings() -> Settings:
    """
    Get cached settings instance.

    Returns:
        Settings: Engine settings
    """
    return Settings()


# Convenience export
settings = get_settings()
