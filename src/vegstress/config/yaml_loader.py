"""YAML configuration file loading for vegstress.

This module provides a function to load a PipelineConfig from a YAML file,
with validation and sensible error messages.
"""

from __future__ import annotations

from datetime import date
from pathlib import Path
from typing import Any, Dict, Union

import yaml

from .models import (
    ConfigurationError,
    HarmonicConfig,
    PipelineConfig,
    QualityMaskConfig,
    SceneSourceConfig,
)

REQUIRED_FIELDS = (
    "band_renames",
    "quality",
    "ndvi_threshold",
    "start_date",
    "end_date",
    "end_year",
    "harmonic",
)


def _require(data: Dict[str, Any], key: str, section: str) -> Any:
    if key not in data:
        raise ConfigurationError(f"Missing required field: {section}{key}")
    return data[key]


def _parse_date(value: Any, name: str) -> date:
    """Coerce a YAML scalar into a date.

    PyYAML already turns unquoted ISO dates into ``date`` objects; quoted
    strings are parsed here.
    """
    if isinstance(value, date):
        return value
    try:
        return date.fromisoformat(str(value))
    except ValueError:
        raise ConfigurationError(f"{name} must be an ISO date (YYYY-MM-DD), got {value!r}")


def _parse_quality_config(data: Dict[str, Any]) -> QualityMaskConfig:
    """Parse quality mask configuration from a dict."""
    quality = data["quality"]
    if not isinstance(quality, dict):
        raise ConfigurationError("quality must be a mapping")
    bits = _require(quality, "bits", "quality.")
    if not isinstance(bits, (list, tuple, set)):
        raise ConfigurationError(f"quality.bits must be a list of bit positions, got {bits!r}")
    return QualityMaskConfig(
        band=str(_require(quality, "band", "quality.")),
        bits=frozenset(int(bit) for bit in bits),
        dilation=int(quality.get("dilation", 0)),
    )


def _parse_harmonic_config(data: Dict[str, Any]) -> HarmonicConfig:
    """Parse harmonic configuration from a dict."""
    harmonic = data["harmonic"]
    if not isinstance(harmonic, dict):
        raise ConfigurationError("harmonic must be a mapping")
    return HarmonicConfig(
        dependent_band=str(_require(harmonic, "dependent_band", "harmonic.")),
        detrend_order=int(_require(harmonic, "detrend_order", "harmonic.")),
        harmonic_order=int(_require(harmonic, "harmonic_order", "harmonic.")),
        fit_series=str(_require(harmonic, "fit_series", "harmonic.")),
    )


def _parse_source_config(data: Dict[str, Any]) -> SceneSourceConfig:
    """Parse scene source configuration from a dict."""
    source = data.get("source", {}) or {}
    return SceneSourceConfig(
        stac_url=source.get("stac_url", SceneSourceConfig.stac_url),
        collection=source.get("collection", SceneSourceConfig.collection),
        cloud_cover=float(source.get("cloud_cover", SceneSourceConfig.cloud_cover)),
        max_scenes=source.get("max_scenes", SceneSourceConfig.max_scenes),
        resolution=float(source.get("resolution", SceneSourceConfig.resolution)),
        epsg=source.get("epsg", SceneSourceConfig.epsg),
        chunk_size=source.get("chunk_size", SceneSourceConfig.chunk_size),
    )


def load_pipeline_config(
    config_path: Union[str, Path],
    validate: bool = True,
) -> PipelineConfig:
    """Load a PipelineConfig from a YAML file.

    Args:
        config_path: Path to the YAML configuration file.
        validate: Whether to validate the configuration (default: True).

    Returns:
        A PipelineConfig instance.

    Raises:
        ConfigurationError: If the file cannot be parsed, a required field is
            missing, or validate=True and the configuration is invalid.
        FileNotFoundError: If config_path doesn't exist.

    Example YAML structure:
        ```yaml
        band_renames:
          blue: B
          green: G
          red: R
          nir08: NIR1
          swir16: SWIR1
          swir22: SWIR2
        quality:
          band: qa_pixel
          bits: [1, 3, 4, 12, 13, 14, 15]
        ndvi_threshold: 0.2
        start_date: 2013-04-01
        end_date: 2019-12-31
        end_year: 2019
        harmonic:
          dependent_band: NDVI
          detrend_order: 0
          harmonic_order: 2
          fit_series: detrended

        # Optional
        aoi: "-120.1,38.9,-119.9,39.1"
        source:
          collection: landsat-c2-l2
          cloud_cover: 50
        ```
    """
    config_path = Path(config_path)
    if not config_path.exists():
        raise FileNotFoundError(f"Configuration file not found: {config_path}")

    try:
        with open(config_path, "r", encoding="utf-8") as f:
            data = yaml.safe_load(f)
    except yaml.YAMLError as e:
        raise ConfigurationError(f"Failed to parse YAML: {e}")

    if data is None:
        raise ConfigurationError("Configuration file is empty")

    if not isinstance(data, dict):
        raise ConfigurationError("Configuration must be a YAML mapping (dict)")

    for key in REQUIRED_FIELDS:
        _require(data, key, "")

    renames = data["band_renames"]
    if not isinstance(renames, dict):
        raise ConfigurationError("band_renames must be a mapping of source -> semantic name")

    aoi = data.get("aoi")
    if aoi is not None:
        aoi_path = config_path.parent / str(aoi)
        if not Path(str(aoi)).is_absolute() and aoi_path.exists():
            aoi = str(aoi_path)

    config = PipelineConfig(
        band_renames={str(k): str(v) for k, v in renames.items()},
        quality=_parse_quality_config(data),
        ndvi_threshold=float(data["ndvi_threshold"]),
        start_date=_parse_date(data["start_date"], "start_date"),
        end_date=_parse_date(data["end_date"], "end_date"),
        end_year=int(data["end_year"]),
        harmonic=_parse_harmonic_config(data),
        aoi=aoi,
        source=_parse_source_config(data),
    )

    if validate:
        config.validate()

    return config


__all__ = [
    "ConfigurationError",
    "load_pipeline_config",
]
