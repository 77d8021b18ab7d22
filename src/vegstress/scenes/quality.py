"""Quality bitmask decoding for optical scenes.

Each pixel of a quality band is an integer whose bits flag cloud, cloud
shadow, cirrus and snow/ice conditions. A pixel is clear only when none of
the configured bits are set.

Landsat Collection 2 QA_PIXEL Reference
---------------------------------------
| Bit   | Flag                          | Masked by default? |
|-------|-------------------------------|--------------------|
| 0     | Fill                          | No (NaN handled)   |
| 1     | Dilated cloud (adjacent)      | Yes                |
| 2     | Cirrus                        | No                 |
| 3     | Cloud                         | Yes                |
| 4     | Cloud shadow                  | Yes                |
| 5     | Snow                          | No                 |
| 6     | Clear                         | No                 |
| 7     | Water                         | No                 |
| 12-13 | Snow/ice confidence           | Yes                |
| 14-15 | Cirrus confidence             | Yes                |
"""

from __future__ import annotations

import logging
from typing import Iterable

import numpy as np
import xarray as xr
from skimage.morphology import binary_dilation, disk

LOGGER = logging.getLogger(__name__)


def bits_to_bitmask(bits: Iterable[int]) -> int:
    """Combine bit positions into a single integer bitmask.

    Example:
        >>> bits_to_bitmask({1, 3, 4})
        26
    """
    mask = 0
    for bit in bits:
        mask |= 1 << int(bit)
    return mask


def build_quality_mask(
    qa: xr.DataArray,
    bits: Iterable[int],
    dilation: int = 0,
) -> xr.DataArray:
    """Build a boolean clear-sky mask from a quality bitmask band.

    Args:
        qa: Quality band with dimensions (..., y, x). NaN marks fill pixels.
        bits: Bit positions whose disjunction must be zero for a valid pixel.
        dilation: Number of pixels to grow the invalid region by. Helps
            eliminate cloud edges the quality flags miss. Default 0.

    Returns:
        Boolean DataArray where True = clear pixel, False = masked pixel.
        Same dimensions as the input band.
    """
    bitmask = bits_to_bitmask(bits)

    present = qa.notnull()
    flags = qa.fillna(0).astype("int64")
    mask = present & ((flags & bitmask) == 0)

    if dilation > 0:
        footprint = disk(dilation)

        def _dilate(arr: np.ndarray) -> np.ndarray:
            return binary_dilation(arr, footprint=footprint)

        invalid = ~mask
        if invalid.chunks is not None:
            # Dilation works on whole scenes; y and x must each be one chunk
            invalid = invalid.chunk({"y": -1, "x": -1})

        dilated = xr.apply_ufunc(
            _dilate,
            invalid,
            input_core_dims=[["y", "x"]],
            output_core_dims=[["y", "x"]],
            vectorize=True,
            dask="parallelized",
            output_dtypes=[bool],
        )
        mask = mask & ~dilated

    return mask


__all__ = [
    "bits_to_bitmask",
    "build_quality_mask",
]
