"""Configuration dataclasses for vegstress runs.

These dataclasses carry every input a pipeline run needs. None of the
pipeline-level fields have defaults: a run is parameterized purely by its
configuration, and ``validate()`` rejects bad values before any per-pixel
work starts.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date
from typing import Dict, FrozenSet, Mapping, Optional, Tuple


class ConfigurationError(ValueError):
    """Raised when configuration loading or validation fails."""
    pass


# =============================================================================
# Reference Values
# =============================================================================

# Semantic band names every scene is renamed to
SEMANTIC_BANDS: Tuple[str, ...] = ("B", "G", "R", "NIR1", "NIR2", "SWIR1", "SWIR2")

# Bands the index formulas read
REQUIRED_SEMANTIC_BANDS: FrozenSet[str] = frozenset({"R", "NIR1", "SWIR1", "SWIR2"})

# Derived index bands appended to every masked scene
INDEX_BANDS: Tuple[str, ...] = ("NDVI", "NBR", "NDMI")

# Landsat Collection 2 Level-2 assets (earth-search naming)
LANDSAT_BAND_RENAMES: Dict[str, str] = {
    "blue": "B",
    "green": "G",
    "red": "R",
    "nir08": "NIR1",
    "swir16": "SWIR1",
    "swir22": "SWIR2",
}

# Landsat Collection 2 QA_PIXEL bits: dilated (adjacent) cloud 1, cloud 3,
# cloud shadow 4, snow confidence 12-13, cirrus confidence 14-15
LANDSAT_QA_BAND = "qa_pixel"
LANDSAT_QA_MASK_BITS: FrozenSet[int] = frozenset({1, 3, 4, 12, 13, 14, 15})

NDVI_MASK_THRESHOLD = 0.2

FIT_SERIES_CHOICES: Tuple[str, ...] = ("detrended", "raw")

DEFAULT_STAC_URL = "https://earth-search.aws.element84.com/v1"
DEFAULT_COLLECTION = "landsat-c2-l2"


# =============================================================================
# Component Configurations
# =============================================================================

@dataclass
class QualityMaskConfig:
    """Configuration for quality bitmask decoding.

    Attributes:
        band: Name of the quality bitmask band in the source scenes.
        bits: Bit positions whose disjunction must be zero for a valid pixel.
        dilation: Pixels to grow the invalid region by (0 disables).
    """
    band: str
    bits: FrozenSet[int]
    dilation: int = 0

    def validate(self) -> None:
        """Validate quality mask configuration.

        Raises:
            ConfigurationError: If configuration is invalid.
        """
        if not self.band:
            raise ConfigurationError("quality band must be specified")
        if not self.bits:
            raise ConfigurationError("quality bits must not be empty")
        for bit in self.bits:
            if not 0 <= bit < 64:
                raise ConfigurationError(f"quality bit must be in [0, 64), got {bit}")
        if self.dilation < 0:
            raise ConfigurationError(f"dilation must be non-negative, got {self.dilation}")


@dataclass
class HarmonicConfig:
    """Configuration for detrending and harmonic fitting.

    Attributes:
        dependent_band: Index band the regression is fit against (e.g., 'NDVI').
        detrend_order: Harmonic pairs used when detrending (0 = linear only).
        harmonic_order: Harmonic pairs used for the harmonic-fit product.
        fit_series: Series the harmonic product is fit to ('detrended' or 'raw').
    """
    dependent_band: str
    detrend_order: int
    harmonic_order: int
    fit_series: str

    def validate(self) -> None:
        """Validate harmonic configuration.

        Raises:
            ConfigurationError: If configuration is invalid.
        """
        known = set(SEMANTIC_BANDS) | set(INDEX_BANDS)
        if self.dependent_band not in known:
            raise ConfigurationError(
                f"dependent_band must be one of {sorted(known)}, got '{self.dependent_band}'"
            )
        if self.detrend_order < 0:
            raise ConfigurationError(
                f"detrend_order must be non-negative, got {self.detrend_order}"
            )
        if self.harmonic_order <= 0:
            raise ConfigurationError(
                f"harmonic_order must be positive, got {self.harmonic_order}"
            )
        if self.fit_series not in FIT_SERIES_CHOICES:
            raise ConfigurationError(
                f"fit_series must be one of {FIT_SERIES_CHOICES}, got '{self.fit_series}'"
            )


@dataclass
class SceneSourceConfig:
    """Configuration for the STAC scene source.

    Attributes:
        stac_url: STAC API endpoint.
        collection: STAC collection identifier.
        cloud_cover: Maximum eo:cloud_cover percentage for scenes.
        max_scenes: Optional cap on the number of scenes (clearest first).
        resolution: Output pixel size in CRS units.
        epsg: Optional output EPSG code (defaults to the first scene's).
        chunk_size: Dask chunk size for x/y (None disables chunking).
    """
    stac_url: str = DEFAULT_STAC_URL
    collection: str = DEFAULT_COLLECTION
    cloud_cover: float = 60.0
    max_scenes: Optional[int] = None
    resolution: float = 30.0
    epsg: Optional[int] = None
    chunk_size: Optional[int] = 1024

    def validate(self) -> None:
        """Validate scene source configuration.

        Raises:
            ConfigurationError: If configuration is invalid.
        """
        if not self.stac_url:
            raise ConfigurationError("stac_url must be specified")
        if not self.collection:
            raise ConfigurationError("collection must be specified")
        if not 0 <= self.cloud_cover <= 100:
            raise ConfigurationError(f"cloud_cover must be in [0, 100], got {self.cloud_cover}")
        if self.max_scenes is not None and self.max_scenes <= 0:
            raise ConfigurationError(f"max_scenes must be positive, got {self.max_scenes}")
        if self.resolution <= 0:
            raise ConfigurationError(f"resolution must be positive, got {self.resolution}")
        if self.chunk_size is not None and self.chunk_size <= 0:
            raise ConfigurationError(f"chunk_size must be positive, got {self.chunk_size}")


# =============================================================================
# Run Configuration
# =============================================================================

@dataclass
class PipelineConfig:
    """Complete configuration for a pipeline run.

    Attributes:
        band_renames: Source band name -> semantic band name.
        quality: Quality bitmask configuration.
        ndvi_threshold: Pixels with NDVI at or below this value are invalidated.
        start_date: First acquisition date to request (inclusive).
        end_date: Last acquisition date to request (inclusive).
        end_year: Last calendar year of the monthly composite grid.
        harmonic: Detrending and harmonic fit configuration.
        aoi: Optional AOI specification (bbox, WKT, GeoJSON or vector file).
        source: Scene source configuration, required only when fetching.
    """
    band_renames: Mapping[str, str]
    quality: QualityMaskConfig
    ndvi_threshold: float
    start_date: date
    end_date: date
    end_year: int
    harmonic: HarmonicConfig
    aoi: Optional[str] = None
    source: SceneSourceConfig = field(default_factory=SceneSourceConfig)

    def validate(self) -> None:
        """Validate run configuration.

        Raises:
            ConfigurationError: If configuration is invalid.
        """
        if not self.band_renames:
            raise ConfigurationError("band_renames must not be empty")
        targets = list(self.band_renames.values())
        unknown = sorted(set(targets) - set(SEMANTIC_BANDS))
        if unknown:
            raise ConfigurationError(
                f"Unknown semantic band name(s) {unknown}; expected a subset of {list(SEMANTIC_BANDS)}"
            )
        if len(set(targets)) != len(targets):
            raise ConfigurationError("band_renames maps two source bands to the same name")
        missing = sorted(REQUIRED_SEMANTIC_BANDS - set(targets))
        if missing:
            raise ConfigurationError(f"band_renames is missing required band(s) {missing}")
        if self.quality.band in self.band_renames:
            raise ConfigurationError(
                f"quality band '{self.quality.band}' cannot also be a renamed spectral band"
            )

        if not -1.0 <= self.ndvi_threshold <= 1.0:
            raise ConfigurationError(
                f"ndvi_threshold must be in [-1, 1], got {self.ndvi_threshold}"
            )
        if self.end_date < self.start_date:
            raise ConfigurationError(
                f"Empty date range: end_date ({self.end_date}) precedes start_date ({self.start_date})"
            )
        if self.end_year < self.start_date.year:
            raise ConfigurationError(
                f"end_year ({self.end_year}) precedes start_date year ({self.start_date.year})"
            )

        self.quality.validate()
        self.harmonic.validate()
        self.source.validate()

        produced = set(targets) | set(INDEX_BANDS)
        if self.harmonic.dependent_band not in produced:
            raise ConfigurationError(
                f"dependent_band '{self.harmonic.dependent_band}' is not produced by "
                f"band_renames; available: {sorted(produced)}"
            )


__all__ = [
    "ConfigurationError",
    "QualityMaskConfig",
    "HarmonicConfig",
    "SceneSourceConfig",
    "PipelineConfig",
    # Reference values
    "SEMANTIC_BANDS",
    "REQUIRED_SEMANTIC_BANDS",
    "INDEX_BANDS",
    "LANDSAT_BAND_RENAMES",
    "LANDSAT_QA_BAND",
    "LANDSAT_QA_MASK_BITS",
    "NDVI_MASK_THRESHOLD",
    "FIT_SERIES_CHOICES",
    "DEFAULT_STAC_URL",
    "DEFAULT_COLLECTION",
]
