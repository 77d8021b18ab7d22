"""Per-pixel harmonic OLS regression and detrending.

The model for every pixel is

    y(t) = b0 + b1*t + sum_i [ c_i*cos(2*pi*i*t) + d_i*sin(2*pi*i*t) ]

with ``t`` in fractional years since a fixed epoch and ``i = 1..H``. Order
H = 0 reduces to a linear trend. Every pixel shares the same independents;
only the dependent values (and which of them are missing) differ.

Fitting is a batched normal-equation solve over all pixels at once. A pixel
with fewer valid observations than coefficients, or a rank-deficient normal
matrix, gets NaN coefficients; other pixels are unaffected.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import List, Tuple

import numpy as np
import pandas as pd
import xarray as xr

LOGGER = logging.getLogger(__name__)

HARMONIC_EPOCH = datetime(1970, 1, 1)
DAYS_PER_YEAR = 365.25


def fractional_years(times, epoch: datetime = HARMONIC_EPOCH) -> np.ndarray:
    """Convert timestamps to fractional years elapsed since ``epoch``."""
    index = pd.DatetimeIndex(np.atleast_1d(np.asarray(times)))
    days = (index - pd.Timestamp(epoch)) / pd.Timedelta(days=1)
    return np.asarray(days, dtype="float64") / DAYS_PER_YEAR


def coefficient_names(order: int) -> List[str]:
    """Names of the independents, in column order.

    Example:
        >>> coefficient_names(2)
        ['constant', 't', 'cos_1', 'cos_2', 'sin_1', 'sin_2']
    """
    names = ["constant", "t"]
    names += [f"cos_{i}" for i in range(1, order + 1)]
    names += [f"sin_{i}" for i in range(1, order + 1)]
    return names


def design_matrix(t: np.ndarray, order: int) -> np.ndarray:
    """Build the (n_times, 2 + 2*order) matrix of independents."""
    t = np.asarray(t, dtype="float64")
    frequencies = 2.0 * np.pi * np.arange(1, order + 1)
    phases = t[:, None] * frequencies[None, :]
    return np.column_stack([np.ones_like(t), t, np.cos(phases), np.sin(phases)])


def fit_ols(X: np.ndarray, Y: np.ndarray) -> Tuple[np.ndarray, np.ndarray]:
    """Solve OLS for many pixels sharing the same independents.

    Args:
        X: Independents, shape (n_times, n_coefficients).
        Y: Dependents, shape (n_times, n_pixels); NaN marks missing values.

    Returns:
        Tuple of:
        - coefficients: (n_pixels, n_coefficients), NaN where underdetermined
        - solved: (n_pixels,) boolean, True where a fit was possible
    """
    n_coef = X.shape[1]
    valid = np.isfinite(Y)
    weights = valid.astype("float64")
    Y0 = np.where(valid, Y, 0.0)

    # Per-pixel normal equations restricted to that pixel's valid rows
    XtX = np.einsum("tp,ti,tj->pij", weights, X, X, optimize=True)
    XtY = np.einsum("ti,tp->pi", X, Y0, optimize=True)

    solved = valid.sum(axis=0) >= n_coef
    if solved.any():
        candidates = np.flatnonzero(solved)
        ranks = np.linalg.matrix_rank(XtX[candidates], hermitian=True)
        solved[candidates[ranks < n_coef]] = False

    coefficients = np.full((Y.shape[1], n_coef), np.nan)
    if solved.any():
        coefficients[solved] = np.linalg.solve(XtX[solved], XtY[solved][..., None])[..., 0]
    return coefficients, solved


@dataclass(frozen=True)
class HarmonicModel:
    """Fitted per-pixel harmonic regression.

    Attributes:
        order: Number of harmonic pairs H.
        coefficients: DataArray (coefficient, y, x) labelled by
            ``coefficient_names(order)``.
        epoch: Time origin of the ``t`` independent.
    """
    order: int
    coefficients: xr.DataArray
    epoch: datetime = HARMONIC_EPOCH

    def independents(self, times) -> np.ndarray:
        return design_matrix(fractional_years(times, self.epoch), self.order)

    def fitted(self, times) -> xr.DataArray:
        """Evaluate the model at ``times``; returns (time, y, x)."""
        X = xr.DataArray(
            self.independents(times),
            dims=["time", "coefficient"],
            coords={
                "time": pd.DatetimeIndex(np.atleast_1d(np.asarray(times))),
                "coefficient": coefficient_names(self.order),
            },
        )
        fitted = (X * self.coefficients).sum(dim="coefficient", skipna=False)
        return fitted.transpose("time", ...)

    def detrend(self, series: xr.DataArray) -> xr.DataArray:
        """Observed minus fitted for a (time, y, x) series."""
        fitted = self.fitted(series.coords["time"].values)
        return series - fitted.assign_coords(time=series.coords["time"])


class HarmonicDetrender:
    """Fit constant + trend + H harmonic pairs per pixel by OLS.

    Args:
        order: Number of harmonic pairs (0 = linear detrending).
        epoch: Time origin for the ``t`` independent.

    Example:
        >>> detrender = HarmonicDetrender(order=2)
        >>> model = detrender.fit(stack.sel(band="NDVI"))
        >>> residuals = model.detrend(stack.sel(band="NDVI"))
    """

    def __init__(self, order: int, epoch: datetime = HARMONIC_EPOCH) -> None:
        if order < 0:
            raise ValueError(f"Harmonic order must be non-negative, got {order}")
        self.order = order
        self.epoch = epoch

    def fit(self, series: xr.DataArray) -> HarmonicModel:
        """Fit the model independently at every pixel.

        Args:
            series: Dependent values with dimensions (time, y, x). Must hold
                only composites with data (``images > 0``).

        Returns:
            HarmonicModel with one coefficient vector per pixel.

        Raises:
            ValueError: If the series has no time steps or still contains
                empty composites.
        """
        if "time" not in series.dims or series.sizes["time"] == 0:
            raise ValueError("Cannot fit a harmonic model to an empty series.")
        if "images" in series.coords and bool((series.coords["images"] <= 0).any()):
            raise ValueError("Empty composites (images == 0) must be filtered before fitting.")

        series = series.transpose("time", ...)
        spatial_dims = list(series.dims[1:])
        spatial_shape = tuple(series.sizes[d] for d in spatial_dims)

        X = self.design(series.coords["time"].values)
        Y = np.asarray(series.values, dtype="float64").reshape(series.sizes["time"], -1)
        coefficients, solved = fit_ols(X, Y)

        n_failed = int((~solved).sum())
        if n_failed:
            LOGGER.warning(
                "Harmonic fit (order %d) underdetermined at %d of %d pixels",
                self.order,
                n_failed,
                solved.size,
            )
        LOGGER.info(
            "Fitted order-%d harmonic model on %d time steps x %d pixels",
            self.order,
            X.shape[0],
            solved.size,
        )

        # Spatial and scalar coordinates (e.g. the CRS) carry over
        coords = {
            name: coord
            for name, coord in series.coords.items()
            if set(coord.dims) <= set(spatial_dims)
        }
        coords["coefficient"] = coefficient_names(self.order)
        data = xr.DataArray(
            coefficients.T.reshape((X.shape[1],) + spatial_shape),
            dims=["coefficient"] + spatial_dims,
            coords=coords,
        )
        return HarmonicModel(order=self.order, coefficients=data, epoch=self.epoch)

    def design(self, times) -> np.ndarray:
        return design_matrix(fractional_years(times, self.epoch), self.order)

    def fit_transform(self, series: xr.DataArray) -> Tuple[HarmonicModel, xr.DataArray]:
        """Fit and return the model with the detrended (residual) series."""
        model = self.fit(series)
        return model, model.detrend(series)


def linear_slope(series: xr.DataArray) -> xr.DataArray:
    """Per-pixel linear trend (units per year) of a (time, y, x) series."""
    model = HarmonicDetrender(order=0).fit(series)
    return model.coefficients.sel(coefficient="t", drop=True)


__all__ = [
    "HARMONIC_EPOCH",
    "DAYS_PER_YEAR",
    "fractional_years",
    "coefficient_names",
    "design_matrix",
    "fit_ols",
    "HarmonicModel",
    "HarmonicDetrender",
    "linear_slope",
]
