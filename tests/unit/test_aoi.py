"""Unit tests for AOI parsing and clipping."""

import json
from pathlib import Path

import geopandas as gpd
import numpy as np
import pytest
import xarray as xr
from shapely.geometry import Polygon, box

from vegstress.scenes.aoi import clip_stack, parse_aoi


class TestParseAoi:
    """Tests for parse_aoi() function."""

    def test_parse_bbox_string(self):
        """Should parse comma-separated bounding box string."""
        geom = parse_aoi("-85.5,41.5,-85.0,42.0")

        assert geom.is_valid
        assert geom.bounds == pytest.approx((-85.5, 41.5, -85.0, 42.0))

    def test_parse_json_array_bbox(self):
        """Should parse JSON array bounding box."""
        geom = parse_aoi("[-85.5, 41.5, -85.0, 42.0]")
        assert geom.bounds[0] == pytest.approx(-85.5)
        assert geom.bounds[3] == pytest.approx(42.0)

    def test_parse_wkt_polygon(self):
        """Should parse WKT polygon string."""
        geom = parse_aoi("POLYGON ((-85.5 41.5, -85.0 41.5, -85.0 42.0, -85.5 42.0, -85.5 41.5))")
        assert isinstance(geom, Polygon)

    def test_parse_geojson_feature(self):
        """Should parse GeoJSON feature with geometry property."""
        aoi = json.dumps({
            "type": "Feature",
            "geometry": {
                "type": "Polygon",
                "coordinates": [[[-85.5, 41.5], [-85.0, 41.5], [-85.0, 42.0], [-85.5, 42.0], [-85.5, 41.5]]],
            },
            "properties": {},
        })
        geom = parse_aoi(aoi)
        assert isinstance(geom, Polygon)

    def test_parse_text_file(self, tmp_path: Path):
        """Should read a text file holding an inline AOI."""
        path = tmp_path / "aoi.txt"
        path.write_text("-85.5,41.5,-85.0,42.0\n", encoding="utf-8")
        geom = parse_aoi(str(path))
        assert geom.bounds == pytest.approx((-85.5, 41.5, -85.0, 42.0))

    def test_parse_geopackage_with_reprojection(self, tmp_path: Path):
        """Should reproject GeoPackage geometries to EPSG:4326."""
        gpkg_path = tmp_path / "aoi_utm.gpkg"
        gdf = gpd.GeoDataFrame(
            {"name": ["test"]},
            geometry=[box(500000, 4600000, 550000, 4650000)],
            crs="EPSG:32616",
        )
        gdf.to_file(gpkg_path, driver="GPKG")

        bounds = parse_aoi(str(gpkg_path)).bounds
        assert -90 <= bounds[0] <= -84
        assert 40 <= bounds[1] <= 43

    def test_parse_empty_geometry_raises_error(self):
        with pytest.raises(ValueError, match="empty"):
            parse_aoi("POLYGON EMPTY")

    def test_parse_garbage_raises_error(self):
        with pytest.raises(ValueError, match="Could not parse AOI"):
            parse_aoi("somewhere near the lake")

    def test_parse_rejects_inverted_bbox(self):
        with pytest.raises(ValueError, match="must be ordered"):
            parse_aoi("-85.0,42.0,-85.5,41.5")

    def test_parse_rejects_non_numeric_bbox(self):
        with pytest.raises(ValueError, match="Could not parse AOI bounding box"):
            parse_aoi("west,south,east,north")

    def test_parse_geojson_file(self, tmp_path: Path):
        """Should read .geojson files as vector AOIs."""
        path = tmp_path / "aoi.geojson"
        gpd.GeoDataFrame(geometry=[box(-85.5, 41.5, -85.0, 42.0)], crs="EPSG:4326").to_file(
            path, driver="GeoJSON"
        )
        assert parse_aoi(str(path)).bounds == pytest.approx((-85.5, 41.5, -85.0, 42.0))

    def test_parse_fixes_invalid_geometry(self):
        """Should fix invalid geometries with buffer(0)."""
        geom = parse_aoi("POLYGON ((0 0, 2 2, 2 0, 0 2, 0 0))")
        assert geom.is_valid


class TestClipStack:
    """Tests for clip_stack()."""

    @pytest.fixture
    def stack(self) -> xr.DataArray:
        """2 time steps of a 10x10 grid in EPSG:4326 covering (0, 0)-(10, 10)."""
        data = np.ones((2, 1, 10, 10))
        arr = xr.DataArray(
            data,
            dims=["time", "band", "y", "x"],
            coords={
                "time": [0, 1],
                "band": ["NDVI"],
                "y": np.arange(9.5, 0, -1.0),
                "x": np.arange(0.5, 10, 1.0),
            },
        )
        return arr.rio.write_crs("EPSG:4326")

    def test_crops_to_geometry_bounds(self, stack: xr.DataArray):
        clipped = clip_stack(stack, box(2.2, 2.2, 4.8, 4.8))
        assert clipped.sizes["x"] == 3
        assert clipped.sizes["y"] == 3
        assert clipped.sizes["time"] == 2

    def test_requires_crs(self, stack: xr.DataArray):
        bare = xr.DataArray(stack.values, dims=stack.dims)
        with pytest.raises(ValueError, match="without a CRS"):
            clip_stack(bare, box(2, 2, 5, 5))
