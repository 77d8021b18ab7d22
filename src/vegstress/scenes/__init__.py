"""Scene access and preprocessing subpackage."""

from .aoi import AOI_CRS, clip_stack, parse_aoi
from .preprocessing import ScenePreprocessor, add_indices, normalized_difference, select_bands
from .quality import bits_to_bitmask, build_quality_mask
from .stac_client import (
    Scene,
    StacSceneSource,
    fetch_items,
    filter_best_scenes,
    iter_scenes,
    stack_items,
    stack_scenes,
)

__all__ = [
    # AOI
    "AOI_CRS",
    "parse_aoi",
    "clip_stack",
    # Quality masking
    "bits_to_bitmask",
    "build_quality_mask",
    # Preprocessing
    "ScenePreprocessor",
    "normalized_difference",
    "select_bands",
    "add_indices",
    # Scene source
    "Scene",
    "stack_scenes",
    "iter_scenes",
    "fetch_items",
    "filter_best_scenes",
    "stack_items",
    "StacSceneSource",
]
