"""Integration tests for the end-to-end pipeline on synthetic scenes."""

import dataclasses
from pathlib import Path

import numpy as np
import pytest
import rasterio
import xarray as xr

from vegstress.config import ConfigurationError
from vegstress.export import write_result
from vegstress.pipeline import (
    AnomalyResult,
    HarmonicFitResult,
    composite_scenes,
    run_harmonic_fit,
    run_pipeline,
    run_zscore,
)
from vegstress.timeseries.monthly import EmptyComposite, RealComposite


class FakeSource:
    """Scene source returning a fixed stack and recording the request."""

    def __init__(self, stack: xr.DataArray):
        self.stack = stack
        self.requests = []

    def fetch(self, start, end):
        self.requests.append((start, end))
        return self.stack


@pytest.fixture
def cloudy_july_stack(seasonal_stack: xr.DataArray) -> xr.DataArray:
    """The seasonal stack with every July 2016 pixel flagged as cloud."""
    stack = seasonal_stack.copy()
    july = (stack.time.dt.year == 2016) & (stack.time.dt.month == 7)
    qa = stack.sel(band="qa_pixel").values
    qa[july.values] = 1 << 3
    stack.loc[dict(band="qa_pixel")] = qa
    return stack


class TestCompositeScenes:
    """Tests for the masking and compositing front end."""

    def test_full_grid(self, seasonal_stack, pipeline_config):
        composites = composite_scenes(seasonal_stack, pipeline_config)
        assert len(composites) == 12 * 5
        assert all(isinstance(c, RealComposite) for c in composites)

    def test_cloudy_month_has_no_values(self, cloudy_july_stack, pipeline_config):
        composites = composite_scenes(cloudy_july_stack, pipeline_config)
        july = composites[12 + 6]
        assert july.info.date == "2016-07"
        # The scene still counts; every pixel of it is masked
        assert july.images == 1
        assert july.bands.sel(band="NDVI").isnull().all()

    def test_end_year_extends_grid(self, seasonal_stack, pipeline_config):
        config = dataclasses.replace(pipeline_config, end_year=2020)
        composites = composite_scenes(seasonal_stack, config)
        assert len(composites) == 12 * 6
        assert all(isinstance(c, EmptyComposite) for c in composites[-12:])


class TestRunZscore:
    """Tests for run_zscore()."""

    def test_outputs(self, seasonal_stack, pipeline_config):
        result = run_zscore(seasonal_stack, pipeline_config)
        assert isinstance(result, AnomalyResult)
        assert result.series["zscore"].dims == ("time", "y", "x")
        assert result.series.sizes["time"] == 60
        assert {"observed", "detrended", "climatology_median", "climatology_std", "zscore"} <= set(
            result.series.data_vars
        )
        assert list(result.trend.coefficients.coefficient.values) == ["constant", "t"]
        assert result.climatology.sizes["month"] == 12

    def test_zscores_standardized_per_month(self, seasonal_stack, pipeline_config):
        result = run_zscore(seasonal_stack, pipeline_config)
        z = result.series["zscore"]
        grouped = z.groupby(z["time"].dt.month.rename("calendar_month"))
        np.testing.assert_allclose(grouped.var(dim="time").values, 1.0, rtol=1e-6)
        assert np.abs(grouped.mean(dim="time").values).max() < 1.0

    def test_detrended_has_no_slope(self, seasonal_stack, pipeline_config):
        from vegstress.timeseries.harmonic import linear_slope

        result = run_zscore(seasonal_stack, pipeline_config)
        slope = linear_slope(result.series["detrended"])
        np.testing.assert_allclose(slope.values, 0.0, atol=1e-8)

    def test_masked_month_scores_missing(self, cloudy_july_stack, pipeline_config):
        result = run_zscore(cloudy_july_stack, pipeline_config)
        # A masked-out July composite is kept but carries no values
        z = result.series["zscore"]
        july = z.isel(time=np.flatnonzero(z["date"].values == "2016-07"))
        assert july.sizes["time"] == 1
        assert july.isnull().all()

    def test_chunked_stack_with_dilation(self, cloudy_july_stack, pipeline_config):
        quality = dataclasses.replace(pipeline_config.quality, dilation=1)
        config = dataclasses.replace(pipeline_config, quality=quality)
        chunked = cloudy_july_stack.chunk({"time": 1, "y": 2, "x": 2})

        eager = run_zscore(cloudy_july_stack, config)
        lazy = run_zscore(chunked, config)

        np.testing.assert_allclose(
            lazy.series["zscore"].values,
            eager.series["zscore"].values,
            equal_nan=True,
        )

    def test_invalid_config_rejected(self, seasonal_stack, pipeline_config):
        harmonic = dataclasses.replace(pipeline_config.harmonic, detrend_order=-1)
        config = dataclasses.replace(pipeline_config, harmonic=harmonic)
        with pytest.raises(ConfigurationError):
            run_zscore(seasonal_stack, config)


class TestRunHarmonicFit:
    """Tests for run_harmonic_fit()."""

    def test_outputs(self, seasonal_stack, pipeline_config):
        result = run_harmonic_fit(seasonal_stack, pipeline_config)
        assert isinstance(result, HarmonicFitResult)
        assert set(result.series.data_vars) == {"observed", "detrended", "fitted", "difference"}
        assert list(result.model.coefficients.coefficient.values) == [
            "constant", "t", "cos_1", "cos_2", "sin_1", "sin_2",
        ]

    def test_recovers_annual_cycle(self, seasonal_stack, pipeline_config):
        result = run_harmonic_fit(seasonal_stack, pipeline_config)
        cos_1 = result.model.coefficients.sel(coefficient="cos_1")
        np.testing.assert_allclose(cos_1.values, 0.15, atol=0.03)

    def test_difference_is_fitted_minus_detrended(self, seasonal_stack, pipeline_config):
        result = run_harmonic_fit(seasonal_stack, pipeline_config)
        series = result.series
        np.testing.assert_allclose(
            series["difference"].values,
            (series["fitted"] - series["detrended"]).values,
        )

    def test_raw_fit_series(self, seasonal_stack, pipeline_config):
        harmonic = dataclasses.replace(pipeline_config.harmonic, fit_series="raw")
        config = dataclasses.replace(pipeline_config, harmonic=harmonic)
        result = run_harmonic_fit(seasonal_stack, config)
        series = result.series
        np.testing.assert_allclose(
            series["difference"].values,
            (series["fitted"] - series["observed"]).values,
        )
        # Raw fit recovers the synthetic trend
        assert float(result.model.coefficients.sel(coefficient="t").mean()) == pytest.approx(0.005, abs=0.01)


class TestRunPipeline:
    """Tests for run_pipeline() with an injected scene source."""

    def test_dispatches_product(self, seasonal_stack, pipeline_config):
        source = FakeSource(seasonal_stack)
        result = run_pipeline(pipeline_config, "harmonic", source=source)
        assert isinstance(result, HarmonicFitResult)
        assert source.requests == [(pipeline_config.start_date, pipeline_config.end_date)]

    def test_clips_to_aoi(self, seasonal_stack, pipeline_config):
        config = dataclasses.replace(pipeline_config, aoi="-87.5,40.0,-86.5,41.5")
        result = run_pipeline(config, "zscore", source=FakeSource(seasonal_stack))
        assert result.series.sizes["y"] == 4
        assert result.series.sizes["x"] == 4

    def test_unknown_product(self, seasonal_stack, pipeline_config):
        with pytest.raises(ValueError, match="Unknown product"):
            run_pipeline(pipeline_config, "ndwi", source=FakeSource(seasonal_stack))

    def test_default_source_requires_aoi(self, pipeline_config):
        with pytest.raises(ValueError, match="AOI is required"):
            run_pipeline(pipeline_config, "zscore")


class TestWriteResult:
    """Tests for write_result() on real pipeline outputs."""

    def test_zscore_files(self, tmp_path: Path, seasonal_stack, pipeline_config):
        result = run_zscore(seasonal_stack, pipeline_config)
        written = write_result(result, tmp_path, "NDVI")
        names = sorted(p.name for p in written)
        assert names == [
            "ndvi_climatology_median.tif",
            "ndvi_climatology_std.tif",
            "ndvi_monthly_composites.tif",
            "ndvi_series.csv",
            "ndvi_trend_coefficients.tif",
            "ndvi_zscore.tif",
        ]
        with rasterio.open(tmp_path / "ndvi_monthly_composites.tif") as src:
            assert src.count == 60
            assert src.descriptions[0] == "2015-01"
        with rasterio.open(tmp_path / "ndvi_climatology_std.tif") as src:
            assert src.descriptions[-1] == "month_12"

    def test_harmonic_files(self, tmp_path: Path, seasonal_stack, pipeline_config):
        result = run_harmonic_fit(seasonal_stack, pipeline_config)
        written = write_result(result, tmp_path, "NDVI")
        assert (tmp_path / "ndvi_harmonic_coefficients.tif") in written
        assert (tmp_path / "ndvi_difference.tif").exists()
        with rasterio.open(tmp_path / "ndvi_harmonic_coefficients.tif") as src:
            assert src.descriptions == ("constant", "t", "cos_1", "cos_2", "sin_1", "sin_2")
