"""Shared test fixtures for vegstress tests."""

from datetime import date
from pathlib import Path
from typing import Callable, Optional, Sequence

import numpy as np
import pandas as pd
import pytest
import rioxarray  # noqa: F401
import xarray as xr
import yaml

from vegstress.config import (
    HarmonicConfig,
    LANDSAT_BAND_RENAMES,
    LANDSAT_QA_BAND,
    LANDSAT_QA_MASK_BITS,
    PipelineConfig,
    QualityMaskConfig,
)

SOURCE_BANDS = list(LANDSAT_BAND_RENAMES) + [LANDSAT_QA_BAND]

# 30 m pixels in UTM Zone 16N
GRID_ORIGIN_X = 500000.0
GRID_ORIGIN_Y = 4500000.0
PIXEL_SIZE = 30.0
GRID_CRS = "EPSG:32616"


def monthly_times(start_year: int, end_year: int, day: int = 15) -> pd.DatetimeIndex:
    """One acquisition per month on ``day`` for every year in range."""
    starts = pd.date_range(f"{start_year}-01-01", f"{end_year}-12-01", freq="MS")
    return starts + pd.Timedelta(days=day - 1)


def _grid_coords(height: int, width: int):
    y = GRID_ORIGIN_Y - PIXEL_SIZE * (np.arange(height) + 0.5)
    x = GRID_ORIGIN_X + PIXEL_SIZE * (np.arange(width) + 0.5)
    return y, x


def build_scene_stack(
    times: Sequence,
    ndvi: np.ndarray,
    qa: Optional[np.ndarray] = None,
    red: float = 0.1,
) -> xr.DataArray:
    """Build a raw (time, band, y, x) scene stack with a prescribed NDVI.

    Red reflectance is constant; NIR is solved from the target NDVI so the
    NDVI computed from the stack reproduces ``ndvi`` exactly.

    Args:
        times: Acquisition timestamps.
        ndvi: Target NDVI with shape (time, y, x).
        qa: Optional quality band values with shape (time, y, x).
        red: Red reflectance for every pixel.
    """
    ndvi = np.asarray(ndvi, dtype="float64")
    n_times, height, width = ndvi.shape
    red_band = np.full_like(ndvi, red)
    nir = red_band * (1.0 + ndvi) / (1.0 - ndvi)
    if qa is None:
        qa = np.zeros_like(ndvi)

    layers = {
        "blue": np.full_like(ndvi, 0.05),
        "green": np.full_like(ndvi, 0.08),
        "red": red_band,
        "nir08": nir,
        "swir16": np.full_like(ndvi, 0.2),
        "swir22": np.full_like(ndvi, 0.12),
        LANDSAT_QA_BAND: np.asarray(qa, dtype="float64"),
    }
    data = np.stack([layers[name] for name in SOURCE_BANDS], axis=1)
    y, x = _grid_coords(height, width)
    stack = xr.DataArray(
        data,
        dims=["time", "band", "y", "x"],
        coords={
            "time": pd.DatetimeIndex(times),
            "band": SOURCE_BANDS,
            "y": y,
            "x": x,
        },
    )
    return stack.rio.write_crs(GRID_CRS)


def seasonal_ndvi(
    times: Sequence,
    shape=(4, 4),
    noise: float = 0.02,
    seed: int = 42,
) -> np.ndarray:
    """Trend + annual cycle + noise NDVI, always well above the mask threshold."""
    index = pd.DatetimeIndex(times)
    t = np.asarray((index - pd.Timestamp("1970-01-01")) / pd.Timedelta(days=365.25), dtype="float64")
    base = 0.55 + 0.005 * (t - t[0]) + 0.15 * np.cos(2 * np.pi * t)
    rng = np.random.RandomState(seed)
    values = base[:, None, None] + rng.normal(0.0, noise, size=(len(index),) + tuple(shape))
    return np.clip(values, 0.3, 0.9)


@pytest.fixture
def scene_stack_factory() -> Callable[..., xr.DataArray]:
    """Factory for synthetic raw scene stacks (see build_scene_stack)."""
    return build_scene_stack


@pytest.fixture
def seasonal_stack() -> xr.DataArray:
    """Five years (2015-2019) of clear monthly scenes over a 4x4 grid."""
    times = monthly_times(2015, 2019)
    return build_scene_stack(times, seasonal_ndvi(times))


@pytest.fixture
def pipeline_config() -> PipelineConfig:
    """Landsat-style configuration covering 2015-2019."""
    return PipelineConfig(
        band_renames=dict(LANDSAT_BAND_RENAMES),
        quality=QualityMaskConfig(band=LANDSAT_QA_BAND, bits=LANDSAT_QA_MASK_BITS),
        ndvi_threshold=0.2,
        start_date=date(2015, 1, 1),
        end_date=date(2019, 12, 31),
        end_year=2019,
        harmonic=HarmonicConfig(
            dependent_band="NDVI",
            detrend_order=0,
            harmonic_order=2,
            fit_series="detrended",
        ),
    )


@pytest.fixture
def config_dict() -> dict:
    """Raw YAML mapping of a valid configuration."""
    return {
        "band_renames": dict(LANDSAT_BAND_RENAMES),
        "quality": {"band": LANDSAT_QA_BAND, "bits": sorted(LANDSAT_QA_MASK_BITS)},
        "ndvi_threshold": 0.2,
        "start_date": "2015-01-01",
        "end_date": "2019-12-31",
        "end_year": 2019,
        "harmonic": {
            "dependent_band": "NDVI",
            "detrend_order": 0,
            "harmonic_order": 2,
            "fit_series": "detrended",
        },
    }


@pytest.fixture
def config_path(tmp_path: Path, config_dict: dict) -> Path:
    """Write ``config_dict`` to a YAML file and return its path."""
    path = tmp_path / "config.yaml"
    path.write_text(yaml.safe_dump(config_dict), encoding="utf-8")
    return path
