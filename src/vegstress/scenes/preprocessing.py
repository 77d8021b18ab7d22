"""Scene preprocessing: quality masking, band renaming and vegetation indices.

Preprocessing Pipeline
----------------------
1. Decode the quality bitmask and drop flagged pixels (set to NaN)
2. Select the configured source bands and rename them to semantic names
3. Compute NDVI, NBR and NDMI as normalized differences
4. Invalidate low-vegetation pixels (NDVI at or below the threshold)

Every step broadcasts over any leading ``time`` dimension, so a whole scene
stack is processed in one pass with no per-pixel loops.
"""

from __future__ import annotations

import logging
from typing import Iterable, Mapping

import numpy as np
import xarray as xr

from ..config.models import ConfigurationError, PipelineConfig
from .quality import build_quality_mask

LOGGER = logging.getLogger(__name__)


def normalized_difference(a: xr.DataArray, b: xr.DataArray) -> xr.DataArray:
    """Compute (a - b) / (a + b), yielding NaN where the sum is zero."""
    total = a + b
    with np.errstate(divide="ignore", invalid="ignore"):
        return (a - b) / total.where(total != 0)


def select_bands(stack: xr.DataArray, renames: Mapping[str, str]) -> xr.DataArray:
    """Select source bands and relabel them with semantic names.

    Raises:
        ConfigurationError: If a source band is missing from the stack.
    """
    available = [str(b) for b in stack.coords["band"].values]
    unknown = [name for name in renames if name not in available]
    if unknown:
        raise ConfigurationError(
            f"Unknown source band name(s) {unknown}; scene provides {available}"
        )
    selected = stack.sel(band=list(renames))
    return selected.assign_coords(band=[renames[name] for name in renames])


def add_indices(bands: xr.DataArray) -> xr.DataArray:
    """Append NDVI, NBR and NDMI bands to a semantic-band array."""
    def band(name: str) -> xr.DataArray:
        return bands.sel(band=name, drop=True)

    nir = band("NIR1")
    indices = [
        normalized_difference(nir, band("R")).expand_dims(band=["NDVI"]),
        normalized_difference(nir, band("SWIR2")).expand_dims(band=["NBR"]),
        normalized_difference(nir, band("SWIR1")).expand_dims(band=["NDMI"]),
    ]
    indices = [index.transpose(*bands.dims) for index in indices]
    return xr.concat([bands] + indices, dim="band")


class ScenePreprocessor:
    """Turn raw scenes into masked scenes with derived index bands.

    Args:
        band_renames: Source band name -> semantic band name.
        quality_band: Name of the quality bitmask band.
        quality_bits: Bit positions that flag an invalid pixel.
        ndvi_threshold: Pixels with NDVI at or below this value are dropped.
        dilation: Pixels to grow the quality mask by.

    Example:
        >>> pre = ScenePreprocessor.from_config(config)
        >>> masked = pre(stack)  # (time, band, y, x) with NDVI/NBR/NDMI
    """

    def __init__(
        self,
        band_renames: Mapping[str, str],
        quality_band: str,
        quality_bits: Iterable[int],
        ndvi_threshold: float,
        dilation: int = 0,
    ) -> None:
        self.band_renames = dict(band_renames)
        self.quality_band = quality_band
        self.quality_bits = frozenset(quality_bits)
        self.ndvi_threshold = ndvi_threshold
        self.dilation = dilation

    @classmethod
    def from_config(cls, config: PipelineConfig) -> "ScenePreprocessor":
        return cls(
            band_renames=config.band_renames,
            quality_band=config.quality.band,
            quality_bits=config.quality.bits,
            ndvi_threshold=config.ndvi_threshold,
            dilation=config.quality.dilation,
        )

    def __call__(self, stack: xr.DataArray) -> xr.DataArray:
        return self.apply(stack)

    def apply(self, stack: xr.DataArray) -> xr.DataArray:
        """Mask, rename and augment a scene or scene stack.

        Args:
            stack: DataArray with a ``band`` dimension holding the source
                bands and the quality band, plus ``y``/``x`` (and optionally
                ``time``).

        Returns:
            Float DataArray with semantic bands followed by NDVI, NBR and
            NDMI. Invalid pixels are NaN across every band.

        Raises:
            ConfigurationError: If the quality band or a source band is absent.
        """
        available = [str(b) for b in stack.coords["band"].values]
        if self.quality_band not in available:
            raise ConfigurationError(
                f"Quality band '{self.quality_band}' not found; scene provides {available}"
            )

        bands = select_bands(stack, self.band_renames).astype("float64")

        LOGGER.debug(
            "Masking quality bits %s on band '%s' (NDVI threshold %.2f)",
            sorted(self.quality_bits),
            self.quality_band,
            self.ndvi_threshold,
        )
        clear = build_quality_mask(
            stack.sel(band=self.quality_band, drop=True),
            self.quality_bits,
            dilation=self.dilation,
        )
        bands = bands.where(clear)

        augmented = add_indices(bands)
        vegetated = augmented.sel(band="NDVI", drop=True) > self.ndvi_threshold
        masked = augmented.where(vegetated)

        # Keep the canonical dimension order regardless of mask broadcasting
        order = [d for d in ("time", "band", "y", "x") if d in masked.dims]
        return masked.transpose(*order, ...)


__all__ = [
    "normalized_difference",
    "select_bands",
    "add_indices",
    "ScenePreprocessor",
]
