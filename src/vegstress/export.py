"""Writing products and exposing series for display.

Rasters are written as float32 GeoTIFFs with one band per time step (or
coefficient / month), labelled through band descriptions. NaN ("no value")
becomes ``FLOAT_NODATA`` on disk.

Series for charting are reduced over space to (timestamp, value) pairs.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Dict, List, Sequence, Tuple

import numpy as np
import pandas as pd
import rasterio
import rioxarray  # noqa: F401  (registers the .rio accessor)
import xarray as xr

from .pipeline import AnomalyResult, HarmonicFitResult, PipelineResult
from .timeseries.monthly import dense_stack

LOGGER = logging.getLogger(__name__)

FLOAT_NODATA = -9999.0

REGION_STATISTICS = ("mean", "median", "min", "max", "std")


def write_dataarray(
    array: xr.DataArray,
    path: Path,
    band_labels: Sequence[str],
    nodata: float = FLOAT_NODATA,
) -> None:
    """Write a 3D DataArray (layer, y, x) to a GeoTIFF file.

    Args:
        array: DataArray whose first dimension becomes the raster bands.
        path: Output file path. Parent directories are created if needed.
        band_labels: Band description strings, one per layer.
        nodata: Value written in place of NaN.

    Raises:
        ValueError: If the number of band labels doesn't match the layers.
    """
    path.parent.mkdir(parents=True, exist_ok=True)
    layer_dim = array.dims[0]
    if array.sizes[layer_dim] != len(band_labels):
        raise ValueError("Band label count does not match array bands")

    LOGGER.info("Writing raster to %s", path.name)
    keep = (layer_dim, "y", "x", "spatial_ref")
    array = array.drop_vars([c for c in array.coords if c not in keep])
    if layer_dim != "band":
        array = array.rename({layer_dim: "band"})
    array = array.transpose("band", "y", "x")
    array = array.assign_coords({"band": np.arange(1, array.sizes["band"] + 1)})
    array = array.fillna(nodata).astype("float32")
    array.rio.write_nodata(nodata, inplace=True)
    array.rio.to_raster(
        path,
        dtype="float32",
        compress="deflate",
        tiled=True,
        BIGTIFF="IF_SAFER",
    )

    with rasterio.open(path, "r+") as dst:
        for idx, label in enumerate(band_labels, start=1):
            dst.set_band_description(idx, label)


def region_series(
    series: xr.DataArray,
    statistic: str = "mean",
    scale: int = 1,
) -> pd.Series:
    """Reduce a (time, y, x) series over space to one value per time step.

    Args:
        series: Series to reduce.
        statistic: Region reduction, one of REGION_STATISTICS.
        scale: Sampling factor; pixels are block-averaged by this factor
            before the reduction (1 keeps native resolution).

    Returns:
        pandas Series indexed by timestamp. Time steps with no valid pixel
        are dropped.
    """
    if statistic not in REGION_STATISTICS:
        raise ValueError(f"statistic must be one of {REGION_STATISTICS}, got '{statistic}'")
    if scale < 1:
        raise ValueError(f"scale must be at least 1, got {scale}")

    if scale > 1:
        series = series.coarsen(y=scale, x=scale, boundary="trim").mean()
    spatial = [d for d in series.dims if d != "time"]
    reduced = getattr(series, statistic)(dim=spatial, skipna=True)
    values = pd.Series(
        np.asarray(reduced.values, dtype="float64"),
        index=pd.DatetimeIndex(series.coords["time"].values, name="time"),
        name=series.name,
    )
    return values.dropna()


def series_pairs(series: xr.DataArray, statistic: str = "mean", scale: int = 1) -> List[Tuple]:
    """(timestamp, value) pairs of a region-reduced series."""
    reduced = region_series(series, statistic=statistic, scale=scale)
    return [(ts.to_pydatetime(), float(value)) for ts, value in reduced.items()]


def write_series_csv(
    dataset: xr.Dataset,
    path: Path,
    statistic: str = "mean",
) -> Path:
    """Write region-reduced series of every (time, y, x) variable to CSV."""
    path.parent.mkdir(parents=True, exist_ok=True)
    columns: Dict[str, pd.Series] = {}
    for name, variable in dataset.data_vars.items():
        if "time" in variable.dims:
            columns[str(name)] = region_series(variable, statistic=statistic)
    frame = pd.DataFrame(columns)
    frame.index.name = "time"
    frame.to_csv(path, float_format="%.6f")
    LOGGER.info("Wrote %d series (%d rows) to %s", len(columns), len(frame), path.name)
    return path


def _time_labels(series: xr.DataArray) -> List[str]:
    if "date" in series.coords:
        return [str(v) for v in series.coords["date"].values]
    return [pd.Timestamp(t).strftime("%Y-%m") for t in series.coords["time"].values]


def write_result(result: PipelineResult, output_dir: Path, band: str) -> List[Path]:
    """Write every raster and series of a pipeline result to ``output_dir``.

    Args:
        result: Output of run_zscore / run_harmonic_fit.
        output_dir: Destination directory.
        band: Dependent band name, used in file names and composite export.

    Returns:
        Paths of the written files.
    """
    output_dir.mkdir(parents=True, exist_ok=True)
    written: List[Path] = []
    label = band.lower()

    grid = dense_stack(result.composites).sel(band=band)
    path = output_dir / f"{label}_monthly_composites.tif"
    write_dataarray(grid, path, [str(d) for d in grid.coords["date"].values])
    written.append(path)

    trend = result.trend.coefficients
    path = output_dir / f"{label}_trend_coefficients.tif"
    write_dataarray(trend, path, [str(c) for c in trend.coords["coefficient"].values])
    written.append(path)

    if isinstance(result, AnomalyResult):
        zscore = result.series["zscore"]
        path = output_dir / f"{label}_zscore.tif"
        write_dataarray(zscore, path, _time_labels(zscore))
        written.append(path)
        for stat in ("median", "std"):
            clim = result.climatology[stat]
            path = output_dir / f"{label}_climatology_{stat}.tif"
            write_dataarray(clim, path, [f"month_{int(m):02d}" for m in clim.coords["month"].values])
            written.append(path)
    elif isinstance(result, HarmonicFitResult):
        coefficients = result.model.coefficients
        path = output_dir / f"{label}_harmonic_coefficients.tif"
        write_dataarray(coefficients, path, [str(c) for c in coefficients.coords["coefficient"].values])
        written.append(path)
        for name in ("fitted", "difference"):
            layer = result.series[name]
            path = output_dir / f"{label}_{name}.tif"
            write_dataarray(layer, path, _time_labels(layer))
            written.append(path)
    else:
        raise TypeError(f"Unexpected result type: {type(result).__name__}")

    written.append(write_series_csv(result.series, output_dir / f"{label}_series.csv"))
    return written


__all__ = [
    "FLOAT_NODATA",
    "REGION_STATISTICS",
    "write_dataarray",
    "region_series",
    "series_pairs",
    "write_series_csv",
    "write_result",
]
