"""AOI (Area of Interest) parsing and clipping.

Supported AOI Formats
---------------------
1. **Bounding box string**: Comma-separated "minx,miny,maxx,maxy"
   Example: "-120.1,38.9,-119.9,39.1"

2. **WKT (Well-Known Text)**: Standard geometry representation
   Example: "POLYGON ((-120.1 38.9, -119.9 38.9, -119.9 39.1, -120.1 39.1, -120.1 38.9))"

3. **GeoJSON**: JSON object with geometry (or a Feature wrapping one)

4. **File path**: Path to GeoPackage (.gpkg), Shapefile (.shp), GeoJSON file or a text
   file holding any of the formats above
   - Vector files are reprojected to EPSG:4326 and unioned

5. **JSON array**: Bounding box as JSON array [minx, miny, maxx, maxy]
"""

from __future__ import annotations

import json
import logging
from pathlib import Path

import geopandas as gpd
import rioxarray  # noqa: F401  (registers the .rio accessor)
import xarray as xr
from shapely import wkt
from shapely.geometry import box, mapping, shape
from shapely.geometry.base import BaseGeometry

LOGGER = logging.getLogger(__name__)

AOI_CRS = "EPSG:4326"
VECTOR_SUFFIXES = {".gpkg", ".shp", ".geojson"}


def _bbox(values) -> BaseGeometry:
    try:
        minx, miny, maxx, maxy = (float(v) for v in values)
    except (TypeError, ValueError):
        raise ValueError(f"Could not parse AOI bounding box {list(values)}.") from None
    if minx >= maxx or miny >= maxy:
        raise ValueError(
            f"AOI bounding box {[minx, miny, maxx, maxy]} must be ordered minx,miny,maxx,maxy."
        )
    return box(minx, miny, maxx, maxy)


def _read_vector_aoi(path: Path) -> BaseGeometry:
    """Union every feature of a vector file, reprojected to lat/lon."""
    frame = gpd.read_file(path)
    if frame.crs is None:
        LOGGER.warning("AOI file %s declares no CRS; treating coordinates as lat/lon", path)
    else:
        frame = frame.to_crs(AOI_CRS)
    geometries = frame.geometry.dropna()
    if geometries.empty:
        raise ValueError(f"AOI file '{path}' holds no geometries to clip scenes with.")
    return geometries.union_all()


def _parse_inline_aoi(text: str) -> BaseGeometry:
    """Parse a GeoJSON, JSON-array bbox, comma bbox or WKT string."""
    try:
        payload = json.loads(text)
    except json.JSONDecodeError:
        payload = None

    if isinstance(payload, list) and len(payload) == 4:
        return _bbox(payload)
    if payload is None and text.count(",") == 3:
        return _bbox(text.split(","))
    try:
        if isinstance(payload, dict):
            return shape(payload.get("geometry", payload))
        return wkt.loads(text)
    except Exception as exc:
        raise ValueError(f"Could not parse AOI '{text[:60]}': {exc}") from exc


def parse_aoi(aoi: str) -> BaseGeometry:
    """Resolve an AOI argument to a lat/lon geometry.

    Args:
        aoi: Inline AOI (see module docstring) or a path to a vector file or
            to a text file holding an inline AOI.

    Returns:
        Valid, non-empty geometry in EPSG:4326.

    Raises:
        ValueError: If the AOI is empty, malformed or cannot be parsed.
    """
    text = aoi.strip()
    path = None if text.startswith(("{", "[")) else Path(text)
    if path is not None and path.is_file() and path.suffix.lower() in VECTOR_SUFFIXES:
        geom = _read_vector_aoi(path)
    else:
        if path is not None and path.is_file():
            text = path.read_text(encoding="utf-8").strip()
        geom = _parse_inline_aoi(text)

    if geom.is_empty:
        raise ValueError("AOI geometry is empty; nothing to clip scenes to.")
    return geom if geom.is_valid else geom.buffer(0)


def clip_stack(
    stack: xr.DataArray,
    geometry: BaseGeometry,
    geometry_crs: str = AOI_CRS,
) -> xr.DataArray:
    """Clip a georeferenced stack to a geometry.

    Pixels outside the geometry become NaN; the grid is cropped to the
    geometry's bounds.

    Raises:
        ValueError: If the stack has no CRS.
    """
    if stack.rio.crs is None:
        raise ValueError("Cannot clip a stack without a CRS.")
    LOGGER.debug("Clipping stack %s to AOI bounds %s", dict(stack.sizes), geometry.bounds)
    return stack.rio.clip([mapping(geometry)], crs=geometry_crs, drop=True, all_touched=True)


__all__ = [
    "AOI_CRS",
    "parse_aoi",
    "clip_stack",
]
