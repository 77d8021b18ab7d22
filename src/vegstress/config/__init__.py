"""Configuration management for vegstress.

This module provides dataclass-based configuration objects for pipeline runs,
with support for validation and YAML-based configuration files.
"""

from .models import (
    ConfigurationError,
    HarmonicConfig,
    PipelineConfig,
    QualityMaskConfig,
    SceneSourceConfig,
    INDEX_BANDS,
    LANDSAT_BAND_RENAMES,
    LANDSAT_QA_BAND,
    LANDSAT_QA_MASK_BITS,
    NDVI_MASK_THRESHOLD,
    SEMANTIC_BANDS,
)
from .yaml_loader import load_pipeline_config

__all__ = [
    # Dataclasses
    "QualityMaskConfig",
    "HarmonicConfig",
    "SceneSourceConfig",
    "PipelineConfig",
    # Reference values
    "SEMANTIC_BANDS",
    "INDEX_BANDS",
    "LANDSAT_BAND_RENAMES",
    "LANDSAT_QA_BAND",
    "LANDSAT_QA_MASK_BITS",
    "NDVI_MASK_THRESHOLD",
    # YAML loading
    "ConfigurationError",
    "load_pipeline_config",
]
