"""Pipeline orchestration for vegetation-stress products.

Two interchangeable products share the same front end:

    scenes -> ScenePreprocessor -> monthly composites -> stack of real composites

- ``zscore``: detrend the dependent band (order ``detrend_order``), build
  the per-month climatology and score every composite against it.
- ``harmonic``: detrend (order ``detrend_order``), then fit an order
  ``harmonic_order`` model to the detrended or raw series and report fitted
  values and the fitted-minus-observed difference.

Every run is parameterized purely by its PipelineConfig; nothing is shared
between invocations.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Callable, Dict, List, Optional, Union

import xarray as xr

from .config.models import PipelineConfig
from .scenes.aoi import clip_stack, parse_aoi
from .scenes.preprocessing import ScenePreprocessor
from .scenes.stac_client import StacSceneSource
from .timeseries.climatology import ClimatologyNormalizer
from .timeseries.harmonic import HarmonicDetrender, HarmonicModel
from .timeseries.monthly import Composite, monthly_composites, stack_composites

LOGGER = logging.getLogger(__name__)


@dataclass(frozen=True)
class HarmonicFitResult:
    """Output of the harmonic-fit product.

    Attributes:
        composites: Full monthly composite grid, empty buckets included.
        trend: Model used for detrending.
        model: Harmonic model fit to the selected series.
        series: Dataset over (time, y, x) with ``observed``, ``detrended``,
            ``fitted`` and ``difference`` (fitted - fit target).
    """
    composites: List[Composite]
    trend: HarmonicModel
    model: HarmonicModel
    series: xr.Dataset


@dataclass(frozen=True)
class AnomalyResult:
    """Output of the z-score product.

    Attributes:
        composites: Full monthly composite grid, empty buckets included.
        trend: Model used for detrending.
        climatology: Dataset with ``median`` and ``std`` over (month, y, x).
        series: Dataset over (time, y, x) with ``observed``, ``detrended``,
            ``climatology_median``, ``climatology_std`` and ``zscore``.
    """
    composites: List[Composite]
    trend: HarmonicModel
    climatology: xr.Dataset
    series: xr.Dataset


PipelineResult = Union[HarmonicFitResult, AnomalyResult]


def composite_scenes(stack: xr.DataArray, config: PipelineConfig) -> List[Composite]:
    """Mask a raw scene stack and build the dense monthly composite grid."""
    preprocessor = ScenePreprocessor.from_config(config)
    masked = preprocessor(stack)
    return monthly_composites(masked, end_year=config.end_year)


def _dependent_series(composites: List[Composite], band: str) -> xr.DataArray:
    stack = stack_composites(composites)
    return stack.sel(band=band)


def run_zscore(stack: xr.DataArray, config: PipelineConfig) -> AnomalyResult:
    """Compute per-calendar-month z-score anomalies from a raw scene stack.

    Raises:
        ConfigurationError: If the configuration is invalid.
        ValueError: If no scene or composite carries data.
    """
    config.validate()
    harmonic = config.harmonic

    composites = composite_scenes(stack, config)
    observed = _dependent_series(composites, harmonic.dependent_band)

    trend, detrended = HarmonicDetrender(harmonic.detrend_order).fit_transform(observed)

    normalizer = ClimatologyNormalizer()
    anomalies = normalizer.fit_normalize(detrended)
    anomalies["observed"] = observed

    return AnomalyResult(
        composites=composites,
        trend=trend,
        climatology=normalizer.climatology,
        series=anomalies,
    )


def run_harmonic_fit(stack: xr.DataArray, config: PipelineConfig) -> HarmonicFitResult:
    """Fit a harmonic model to the detrended (or raw) dependent series.

    Raises:
        ConfigurationError: If the configuration is invalid.
        ValueError: If no scene or composite carries data.
    """
    config.validate()
    harmonic = config.harmonic

    composites = composite_scenes(stack, config)
    observed = _dependent_series(composites, harmonic.dependent_band)

    trend, detrended = HarmonicDetrender(harmonic.detrend_order).fit_transform(observed)
    target = detrended if harmonic.fit_series == "detrended" else observed
    LOGGER.info(
        "Fitting order-%d harmonics to the %s %s series",
        harmonic.harmonic_order,
        harmonic.fit_series,
        harmonic.dependent_band,
    )

    model = HarmonicDetrender(harmonic.harmonic_order).fit(target)
    fitted = model.fitted(target.coords["time"].values).assign_coords(time=target.coords["time"])

    series = xr.Dataset(
        {
            "observed": observed,
            "detrended": detrended,
            "fitted": fitted,
            "difference": fitted - target,
        }
    )
    return HarmonicFitResult(
        composites=composites,
        trend=trend,
        model=model,
        series=series,
    )


PRODUCTS: Dict[str, Callable[[xr.DataArray, PipelineConfig], PipelineResult]] = {
    "zscore": run_zscore,
    "harmonic": run_harmonic_fit,
}


def run_pipeline(
    config: PipelineConfig,
    product: str,
    source: Optional[StacSceneSource] = None,
) -> PipelineResult:
    """Fetch scenes, clip them to the AOI and compute the requested product.

    Args:
        config: Validated or unvalidated run configuration.
        product: One of ``PRODUCTS`` ('zscore' or 'harmonic').
        source: Scene source; defaults to a STAC source built from config.

    Raises:
        ValueError: If the product is unknown, or the AOI is missing when a
            default source must be built.
    """
    if product not in PRODUCTS:
        raise ValueError(f"Unknown product '{product}'. Supported: {sorted(PRODUCTS)}")
    config.validate()

    geometry = parse_aoi(config.aoi) if config.aoi else None
    if source is None:
        if geometry is None:
            raise ValueError("An AOI is required to fetch scenes from the STAC source.")
        source = StacSceneSource.from_config(config, geometry=geometry)

    LOGGER.info("=" * 60)
    LOGGER.info("Product %s :: %s to %s", product, config.start_date, config.end_date)
    LOGGER.info("=" * 60)

    stack = source.fetch(config.start_date, config.end_date)
    if geometry is not None:
        stack = clip_stack(stack, geometry)
    LOGGER.info("Scene stack: %s", dict(stack.sizes))

    return PRODUCTS[product](stack, config)


__all__ = [
    "HarmonicFitResult",
    "AnomalyResult",
    "PipelineResult",
    "PRODUCTS",
    "composite_scenes",
    "run_zscore",
    "run_harmonic_fit",
    "run_pipeline",
]
