"""Per-calendar-month climatology and z-score anomalies.

The detrended series still carries seasonal baseline differences. Grouping
it by calendar month across all years gives, per pixel, a climatological
median and standard deviation for each month. Each composite is then scored
against its own month:

    z = (detrended - median[month]) / std[month]

Months whose spread is zero (e.g. a single year of data) score NaN.
"""

from __future__ import annotations

import logging
import warnings
from dataclasses import dataclass
from datetime import datetime
from typing import Iterator, Optional

import numpy as np
import pandas as pd
import xarray as xr

LOGGER = logging.getLogger(__name__)

# Spreads at or below this are treated as zero
STD_EPSILON = 1e-12


def _month_coord(series: xr.DataArray) -> xr.DataArray:
    if "month" in series.coords:
        return series.coords["month"]
    return series["time"].dt.month.rename("month")


def _by_month(statistic: xr.DataArray, series: xr.DataArray) -> xr.DataArray:
    """Broadcast a (month, ...) statistic onto the time axis of ``series``."""
    indexer = xr.DataArray(
        _month_coord(series).values,
        dims="time",
        coords={"time": series["time"].values},
    )
    return statistic.sel(month=indexer).drop_vars("month")


def monthly_climatology(detrended: xr.DataArray) -> xr.Dataset:
    """Per-pixel median and standard deviation for each calendar month.

    Args:
        detrended: Series with dimensions (time, y, x).

    Returns:
        Dataset with ``median`` and ``std`` over (month, y, x). Only months
        present in the series appear. ``std`` is the population standard
        deviation (ddof=0).
    """
    series = detrended.assign_coords(month=_month_coord(detrended))
    grouped = series.groupby("month")
    with warnings.catch_warnings():
        # Pixels with no valid value in a month stay NaN
        warnings.simplefilter("ignore", category=RuntimeWarning)
        median = grouped.median(dim="time", skipna=True)
        std = grouped.std(dim="time", skipna=True, ddof=0)
    return xr.Dataset({"median": median, "std": std})


def zscores(detrended: xr.DataArray, climatology: xr.Dataset) -> xr.DataArray:
    """Score every composite against its calendar month's climatology.

    Raises:
        ValueError: If a month in the series is missing from the climatology.
    """
    months = _month_coord(detrended)
    missing = sorted(set(np.unique(months.values).tolist()) - set(climatology["month"].values.tolist()))
    if missing:
        raise ValueError(f"Climatology has no statistics for month(s) {missing}")

    median = _by_month(climatology["median"], detrended)
    std = _by_month(climatology["std"], detrended)
    spread = std.where(std > STD_EPSILON)
    with np.errstate(divide="ignore", invalid="ignore"):
        return (detrended - median) / spread


@dataclass(frozen=True)
class AnomalyRecord:
    """One composite annotated with its climatology and z-score."""
    year: int
    month: int
    images: int
    acquired: datetime
    detrended: xr.DataArray
    climatology_median: xr.DataArray
    climatology_std: xr.DataArray
    zscore: xr.DataArray

    @property
    def date(self) -> str:
        return f"{self.year:04d}-{self.month:02d}"


class ClimatologyNormalizer:
    """Normalize a detrended series into per-calendar-month z-scores.

    The climatology is computed once over the full series and reused for
    every year sharing a calendar month.
    """

    def __init__(self) -> None:
        self.climatology: Optional[xr.Dataset] = None

    def fit(self, detrended: xr.DataArray) -> xr.Dataset:
        self.climatology = monthly_climatology(detrended)
        zero_spread = (self.climatology["std"] <= STD_EPSILON) & self.climatology["std"].notnull()
        n_zero = int(zero_spread.sum())
        if n_zero:
            LOGGER.warning(
                "%d month/pixel combination(s) have zero spread; their z-scores are NaN",
                n_zero,
            )
        LOGGER.info(
            "Computed climatology for %d calendar month(s)",
            self.climatology.sizes["month"],
        )
        return self.climatology

    def normalize(self, detrended: xr.DataArray) -> xr.Dataset:
        """Return detrended values, matching climatology and z-scores.

        Raises:
            RuntimeError: If called before ``fit``.
        """
        if self.climatology is None:
            raise RuntimeError("ClimatologyNormalizer.normalize() called before fit().")
        anomalies = xr.Dataset(
            {
                "detrended": detrended,
                "climatology_median": _by_month(self.climatology["median"], detrended),
                "climatology_std": _by_month(self.climatology["std"], detrended),
                "zscore": zscores(detrended, self.climatology),
            }
        )
        return anomalies

    def fit_normalize(self, detrended: xr.DataArray) -> xr.Dataset:
        self.fit(detrended)
        return self.normalize(detrended)


def iter_anomaly_records(anomalies: xr.Dataset) -> Iterator[AnomalyRecord]:
    """Yield one AnomalyRecord per time step of an anomaly dataset."""
    months = _month_coord(anomalies["detrended"]).values
    years = (
        anomalies.coords["year"].values
        if "year" in anomalies.coords
        else anomalies["time"].dt.year.values
    )
    images = (
        anomalies.coords["images"].values
        if "images" in anomalies.coords
        else np.ones(anomalies.sizes["time"], dtype=int)
    )
    for index in range(anomalies.sizes["time"]):
        step = anomalies.isel(time=index)
        yield AnomalyRecord(
            year=int(years[index]),
            month=int(months[index]),
            images=int(images[index]),
            acquired=pd.Timestamp(step["time"].values).to_pydatetime(),
            detrended=step["detrended"],
            climatology_median=step["climatology_median"],
            climatology_std=step["climatology_std"],
            zscore=step["zscore"],
        )


__all__ = [
    "STD_EPSILON",
    "monthly_climatology",
    "zscores",
    "AnomalyRecord",
    "ClimatologyNormalizer",
    "iter_anomaly_records",
]
