"""Monthly median compositing on a dense (year, month) grid.

Masked scenes are bucketed by the calendar year and month of their
acquisition timestamp. Every bucket between the first year with valid data
and the configured end year yields exactly one composite:

- ``RealComposite``: per-band, per-pixel median of the bucket's scenes
  (median rather than mean to resist residual cloud contamination)
- ``EmptyComposite``: the bucket had no scenes; it carries ``images == 0``
  and no band data at all

Consumers must drop empty composites before any statistics. Use
``stack_composites()`` to get the (time, band, y, x) stack of real ones.
"""

from __future__ import annotations

import logging
import warnings
from dataclasses import dataclass
from datetime import datetime
from typing import List, Optional, Sequence, Union

import numpy as np
import pandas as pd
import xarray as xr

LOGGER = logging.getLogger(__name__)

MONTHS = tuple(range(1, 13))


@dataclass(frozen=True)
class CompositeInfo:
    """Fixed metadata carried by every monthly composite.

    Attributes:
        year: Calendar year of the bucket.
        month: Calendar month of the bucket (1-12).
        images: Number of scenes that fell in the bucket.
        acquired: Timestamp of the bucket's first scene (None when empty).
    """
    year: int
    month: int
    images: int
    acquired: Optional[datetime] = None

    @property
    def date(self) -> str:
        """Year-month label, e.g. '2005-07'."""
        return f"{self.year:04d}-{self.month:02d}"


@dataclass(frozen=True)
class RealComposite:
    """Composite built from at least one scene."""
    info: CompositeInfo
    bands: xr.DataArray

    @property
    def images(self) -> int:
        return self.info.images


@dataclass(frozen=True)
class EmptyComposite:
    """Placeholder for a bucket with no scenes."""
    info: CompositeInfo

    @property
    def images(self) -> int:
        return 0

    def as_dataarray(self, like: xr.DataArray) -> xr.DataArray:
        """Materialize as an all-missing array shaped like ``like``."""
        return xr.full_like(like, np.nan, dtype="float64")


Composite = Union[RealComposite, EmptyComposite]


def _valid_scene_flags(stack: xr.DataArray) -> np.ndarray:
    """True for each time step that has at least one unmasked value."""
    other_dims = [d for d in stack.dims if d != "time"]
    return np.asarray(stack.notnull().any(dim=other_dims).values, dtype=bool)


def _bucket_median(scenes: xr.DataArray) -> xr.DataArray:
    with warnings.catch_warnings():
        # Pixels masked in every scene of the bucket stay NaN
        warnings.simplefilter("ignore", category=RuntimeWarning)
        return scenes.median(dim="time", skipna=True)


def monthly_composites(
    masked: xr.DataArray,
    end_year: int,
    start_year: Optional[int] = None,
) -> List[Composite]:
    """Build one composite per (year, month) from start_year to end_year.

    Args:
        masked: Masked scene stack with dimensions (time, band, y, x).
        end_year: Last calendar year of the grid (inclusive).
        start_year: First calendar year of the grid. If None, derived as
            the year of the earliest scene with any valid pixel.

    Returns:
        List of exactly 12 * (end_year - start_year + 1) composites in
        chronological order.

    Raises:
        ValueError: If the stack holds no valid scene, or the derived start
            year is after end_year.
    """
    if "time" not in masked.dims or masked.sizes["time"] == 0:
        raise ValueError("No scenes available for monthly compositing.")

    masked = masked.sortby("time")
    times = pd.DatetimeIndex(masked.coords["time"].values)

    if start_year is None:
        valid = _valid_scene_flags(masked)
        if not valid.any():
            raise ValueError("No scene has a valid pixel after masking.")
        start_year = int(times[valid][0].year)

    if start_year > end_year:
        raise ValueError(
            f"First year with data ({start_year}) is after end_year ({end_year})."
        )

    in_range = (times.year >= start_year) & (times.year <= end_year)
    if not in_range.all():
        LOGGER.info(
            "Dropping %d scene(s) outside %d-%d",
            int((~in_range).sum()),
            start_year,
            end_year,
        )

    composites: List[Composite] = []
    for year in range(start_year, end_year + 1):
        for month in MONTHS:
            positions = np.flatnonzero(in_range & (times.year == year) & (times.month == month))
            if positions.size == 0:
                composites.append(EmptyComposite(CompositeInfo(year, month, images=0)))
                continue
            info = CompositeInfo(
                year,
                month,
                images=int(positions.size),
                acquired=times[positions[0]].to_pydatetime(),
            )
            bands = _bucket_median(masked.isel(time=positions))
            composites.append(RealComposite(info, bands))

    n_real = sum(1 for c in composites if isinstance(c, RealComposite))
    LOGGER.info(
        "Built %d monthly composites for %d-%d (%d with data, %d empty)",
        len(composites),
        start_year,
        end_year,
        n_real,
        len(composites) - n_real,
    )
    return composites


def real_composites(composites: Sequence[Composite]) -> List[RealComposite]:
    """Keep only composites that carry data (``images > 0``)."""
    kept: List[RealComposite] = []
    for composite in composites:
        if isinstance(composite, RealComposite):
            kept.append(composite)
        elif isinstance(composite, EmptyComposite):
            continue
        else:
            raise TypeError(f"Unexpected composite type: {type(composite).__name__}")
    return kept


def stack_composites(composites: Sequence[Composite]) -> xr.DataArray:
    """Stack real composites into a (time, band, y, x) DataArray.

    The time axis holds each composite's representative acquisition
    timestamp; ``year``, ``month``, ``date`` and ``images`` ride along as
    time coordinates.

    Raises:
        ValueError: If no composite carries data.
    """
    kept = real_composites(composites)
    if not kept:
        raise ValueError("No monthly composite carries data; nothing to fit.")

    stack = xr.concat([c.bands for c in kept], dim="time")
    stack = stack.assign_coords(
        time=pd.DatetimeIndex([c.info.acquired for c in kept]),
        year=("time", [c.info.year for c in kept]),
        month=("time", [c.info.month for c in kept]),
        date=("time", [c.info.date for c in kept]),
        images=("time", [c.info.images for c in kept]),
    )
    return stack.transpose("time", ...)


def dense_stack(composites: Sequence[Composite]) -> xr.DataArray:
    """Stack every composite on the full (year, month) grid.

    Empty buckets are all-NaN layers. The leading dimension is ``date``
    (year-month labels) since empty buckets have no acquisition time.

    Raises:
        ValueError: If no composite carries data to take the grid shape from.
    """
    kept = real_composites(composites)
    if not kept:
        raise ValueError("No monthly composite carries data; grid shape unknown.")
    template = kept[0].bands

    layers = []
    for composite in composites:
        if isinstance(composite, RealComposite):
            layers.append(composite.bands)
        else:
            layers.append(composite.as_dataarray(template))
    stack = xr.concat(layers, dim="date")
    return stack.assign_coords(
        date=[c.info.date for c in composites],
        images=("date", [c.images for c in composites]),
    )


__all__ = [
    "MONTHS",
    "CompositeInfo",
    "RealComposite",
    "EmptyComposite",
    "Composite",
    "monthly_composites",
    "real_composites",
    "stack_composites",
    "dense_stack",
]
