"""Scene access: in-memory scene records and a STAC-backed scene source.

This module provides the boundary between the imagery archive and the
numeric pipeline. Whatever the origin, scenes reach the pipeline as one
``xarray.DataArray`` stack with dimensions (time, band, y, x), ``time``
holding acquisition timestamps and ``band`` holding source band names
(including the quality bitmask band).

STAC Query Workflow
-------------------
1. Define search parameters (geometry, date range, cloud cover)
2. Query the STAC catalog using ``fetch_items()``
3. Optionally keep the clearest N scenes with ``filter_best_scenes()``
4. Stack the requested assets into a DataArray using ``stack_items()``
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date, datetime
from typing import List, Optional, Sequence

import numpy as np
import pandas as pd
import rioxarray  # noqa: F401  (registers the .rio accessor)
import stackstac
import xarray as xr
from pystac import Item
from pystac.extensions.projection import ProjectionExtension
from pystac_client import Client
from shapely.geometry import mapping
from shapely.geometry.base import BaseGeometry

from ..config.models import ConfigurationError, PipelineConfig, SceneSourceConfig

LOGGER = logging.getLogger(__name__)


# =============================================================================
# Data Classes
# =============================================================================

@dataclass(frozen=True)
class Scene:
    """A single acquisition with named bands.

    Attributes:
        scene_id: Archive identifier of the scene.
        acquired: Acquisition timestamp.
        data: DataArray with dimensions (band, y, x).
    """
    scene_id: str
    acquired: datetime
    data: xr.DataArray


def stack_scenes(scenes: Sequence[Scene]) -> xr.DataArray:
    """Stack scenes into a time-sorted (time, band, y, x) DataArray.

    Raises:
        ValueError: If no scenes are given.
    """
    if not scenes:
        raise ValueError("No scenes available for stacking.")
    ordered = sorted(scenes, key=lambda scene: scene.acquired)
    stack = xr.concat([scene.data for scene in ordered], dim="time")
    stack = stack.assign_coords(
        time=pd.DatetimeIndex([scene.acquired for scene in ordered]),
        id=("time", [scene.scene_id for scene in ordered]),
    )
    return stack.transpose("time", "band", "y", "x")


def iter_scenes(stack: xr.DataArray):
    """Yield Scene records from a (time, band, y, x) stack."""
    ids = stack.coords["id"].values if "id" in stack.coords else None
    for index in range(stack.sizes["time"]):
        layer = stack.isel(time=index)
        acquired = pd.Timestamp(layer.coords["time"].values).to_pydatetime()
        scene_id = str(ids[index]) if ids is not None else acquired.isoformat()
        yield Scene(scene_id=scene_id, acquired=acquired, data=layer.drop_vars("time"))


# =============================================================================
# STAC Functions
# =============================================================================

def fetch_items(
    client: Client,
    geometry: BaseGeometry,
    start: date,
    end: date,
    collection: str,
    cloud_cover: float,
) -> List[Item]:
    """Query a STAC catalog for scenes matching criteria.

    Args:
        client: PySTAC client connected to a STAC API.
        geometry: Area of interest as a Shapely geometry.
        start: First acquisition date (inclusive).
        end: Last acquisition date (inclusive).
        collection: STAC collection identifier.
        cloud_cover: Maximum cloud cover percentage (0-100).

    Returns:
        List of STAC Items matching the search criteria, deduplicated by ID.
    """
    search = client.search(
        collections=[collection],
        intersects=mapping(geometry),
        datetime=f"{start.isoformat()}/{end.isoformat()}",
        query={"eo:cloud_cover": {"lt": cloud_cover}},
    )
    items = {}
    for item in search.items():
        items[item.id] = item
    return list(items.values())


def filter_best_scenes(
    items: List[Item],
    max_scenes: Optional[int] = None,
) -> List[Item]:
    """Keep only the N scenes with the lowest cloud cover.

    The selection is returned in acquisition order so the downstream stack
    stays time-sorted.
    """
    if not items or max_scenes is None or max_scenes >= len(items):
        return items

    ranked = sorted(items, key=lambda item: item.properties.get("eo:cloud_cover", 100.0))
    selected = ranked[:max_scenes]
    LOGGER.info(
        "Filtered %d scenes to %d clearest (cloud cover: %.1f%% - %.1f%%)",
        len(items),
        len(selected),
        selected[0].properties.get("eo:cloud_cover", 0),
        selected[-1].properties.get("eo:cloud_cover", 0),
    )
    return sorted(selected, key=lambda item: item.datetime or datetime.min)


def stack_items(
    items: Sequence[Item],
    assets: Sequence[str],
    bounds: Optional[tuple] = None,
    resolution: float = 30.0,
    epsg: Optional[int] = None,
    chunks: Optional[int] = 1024,
) -> xr.DataArray:
    """Create a (time, band, y, x) DataArray from STAC items.

    Values are left unscaled: index formulas are ratios and the quality band
    must keep its integer bit pattern.

    Args:
        items: STAC items to stack.
        assets: Asset identifiers to load (spectral bands plus quality band).
        bounds: Optional bounding box in lat/lon (minx, miny, maxx, maxy).
        resolution: Output pixel size in CRS units.
        epsg: Output EPSG code. If None, uses the first item's projection.
        chunks: Dask chunk size for x and y. None disables chunking.

    Raises:
        ValueError: If items are empty or lack projection metadata.
        ConfigurationError: If a requested asset is absent from the items.
    """
    if not items:
        raise ValueError("No STAC items available for stacking.")

    if epsg is None:
        try:
            epsg = ProjectionExtension.ext(items[0]).epsg
        except Exception:
            epsg = items[0].properties.get("proj:epsg")
        if epsg is None:
            raise ValueError("STAC item missing projection metadata (proj:epsg).")

    for asset_id in assets:
        if asset_id not in items[0].assets:
            raise ConfigurationError(
                f"Unknown source band '{asset_id}': not an asset of item {items[0].id}"
            )

    data = stackstac.stack(
        items,
        assets=list(assets),
        resolution=resolution,
        epsg=int(epsg),
        bounds_latlon=bounds,
        chunksize={"x": chunks, "y": chunks} if chunks else None,
        dtype="float64",
        fill_value=np.nan,
        rescale=False,
        properties=False,
    )
    data = data.reset_coords(drop=True)
    data = data.assign_coords(band=list(assets))
    data.rio.write_crs(int(epsg), inplace=True)
    return data.sortby("time")


class StacSceneSource:
    """Scene source backed by a STAC API.

    Args:
        source: Scene source configuration.
        assets: Asset identifiers to load for every scene.
        geometry: Optional AOI used for the spatial query and stack bounds.
    """

    def __init__(
        self,
        source: SceneSourceConfig,
        assets: Sequence[str],
        geometry: Optional[BaseGeometry] = None,
        client: Optional[Client] = None,
    ) -> None:
        self.source = source
        self.assets = list(assets)
        self.geometry = geometry
        self._client = client

    @classmethod
    def from_config(
        cls,
        config: PipelineConfig,
        geometry: Optional[BaseGeometry] = None,
    ) -> "StacSceneSource":
        assets = list(config.band_renames) + [config.quality.band]
        return cls(config.source, assets, geometry=geometry)

    @property
    def client(self) -> Client:
        if self._client is None:
            self._client = Client.open(self.source.stac_url)
        return self._client

    def fetch(self, start: date, end: date) -> xr.DataArray:
        """Fetch every scene acquired in [start, end] as a scene stack.

        Raises:
            ValueError: If no geometry is set or no scenes match.
        """
        if self.geometry is None:
            raise ValueError("A geometry is required to query the STAC catalog.")

        LOGGER.info(
            "Searching %s for %s scenes %s/%s",
            self.source.stac_url,
            self.source.collection,
            start.isoformat(),
            end.isoformat(),
        )
        items = fetch_items(
            self.client,
            self.geometry,
            start,
            end,
            self.source.collection,
            self.source.cloud_cover,
        )
        LOGGER.info("Found %d scenes", len(items))
        if not items:
            raise ValueError(
                f"No {self.source.collection} scenes between {start} and {end}."
            )
        items = filter_best_scenes(items, self.source.max_scenes)
        return stack_items(
            items,
            self.assets,
            bounds=self.geometry.bounds,
            resolution=self.source.resolution,
            epsg=self.source.epsg,
            chunks=self.source.chunk_size,
        )


__all__ = [
    "Scene",
    "stack_scenes",
    "iter_scenes",
    "fetch_items",
    "filter_best_scenes",
    "stack_items",
    "StacSceneSource",
]
