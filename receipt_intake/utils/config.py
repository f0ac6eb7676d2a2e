"""Configuration management for the receipt intake pipeline.

Loads and validates YAML configuration with sensible defaults for image
normalization, location resolution, text recognition, and stage timeouts.
"""

import logging
from pathlib import Path

import yaml
from pydantic import BaseModel, Field

logger = logging.getLogger(__name__)


class CompressionPass(BaseModel):
    """One rung of the compression ladder."""

    quality: float = Field(default=0.85, gt=0.0, le=1.0)
    max_dimension: int = Field(default=1920, gt=0)
    size_budget_bytes: int = Field(default=400 * 1024, gt=0)


def _default_passes() -> list[CompressionPass]:
    return [
        CompressionPass(quality=0.85, max_dimension=1920, size_budget_bytes=400 * 1024),
        CompressionPass(quality=0.75, max_dimension=1600, size_budget_bytes=300 * 1024),
    ]


class NormalizerConfig(BaseModel):
    """Configuration for the image normalizer.

    ``passes`` are tried in order; a later pass runs only while the
    previous output is still above ``size_budget_bytes``. The raster
    fallback is used when the primary codec raises.
    """

    size_budget_bytes: int = Field(default=400 * 1024, gt=0)
    passes: list[CompressionPass] = Field(default_factory=_default_passes)
    fallback_quality: float = Field(default=0.85, gt=0.0, le=1.0)
    fallback_max_dimension: int = Field(default=1600, gt=0)
    min_quality: float = Field(default=0.4, gt=0.0, le=1.0)
    quality_step: float = Field(default=0.05, gt=0.0, lt=1.0)


class LocationConfig(BaseModel):
    """Configuration for reverse geocoding and live location lookups."""

    geocode_url: str = "https://nominatim.openstreetmap.org/reverse"
    user_agent: str = "receipt-intake/1.0"
    geocode_timeout: float = 8.0
    live_timeout: float = 5.0
    live_high_accuracy: bool = False
    live_max_age: float = 60.0
    resolve_timeout: float = 15.0
    static_latitude: float | None = None
    static_longitude: float | None = None


class OCRConfig(BaseModel):
    """Configuration for the Tesseract recognition worker."""

    tesseract_cmd: str | None = None
    default_lang: str = "eng"
    psm: int = 3
    timeout: float = 60.0
    start_method: str = "spawn"


class AppConfig(BaseModel):
    """Top-level application configuration."""

    normalizer: NormalizerConfig = Field(default_factory=NormalizerConfig)
    location: LocationConfig = Field(default_factory=LocationConfig)
    ocr: OCRConfig = Field(default_factory=OCRConfig)
    log_level: str = "INFO"


def load_config(path: Path | None = None) -> AppConfig:
    """Load configuration from a YAML file.

    Args:
        path: Path to the YAML configuration file.
            Defaults to configs/config.yaml.

    Returns:
        Validated application configuration.
    """
    if path is None:
        path = Path("configs/config.yaml")

    if path.exists():
        logger.info("Loading configuration from %s", path)
        with open(path) as f:
            raw = yaml.safe_load(f) or {}
        return AppConfig(**raw)

    logger.info("No config file found at %s, using defaults", path)
    return AppConfig()
