# src/orimap/lidar/__init__.py
#
# Copyright (c) The orimap project contributors
# This software is distributed under the Apache-2.0 license.
# See the NOTICE file for more information

"""
The lidar subpackage provides point cloud ingestion, point aggregation onto the tile grid,
the ground and canopy surface models and the vegetation density classifier.
"""

# Data structure
from .layer import (
    PointClass,
    PointCloud,
    read_tile
)

# Rasterization and surface models
from .rasterize import (
    points_to_grid,
    point_cells
)
from .generate_model import (
    TerrainType,
    infer_ground_points,
    fill_gaps,
    generate_ground,
    generate_canopy,
    generate_masks
)

# Vegetation
from .vegetation import (
    HitCounts,
    VegetationResult,
    point_weights,
    accumulate_hits,
    volume_correction,
    select_threshold,
    shade_index,
    classify_vegetation
)

__all__ = [
    # Data structure
    "PointClass",
    "PointCloud",
    "read_tile",

    # Rasterization and surface models
    "points_to_grid",
    "point_cells",

    "TerrainType",
    "infer_ground_points",
    "fill_gaps",
    "generate_ground",
    "generate_canopy",
    "generate_masks",

    # Vegetation
    "HitCounts",
    "VegetationResult",
    "point_weights",
    "accumulate_hits",
    "volume_correction",
    "select_threshold",
    "shade_index",
    "classify_vegetation",
]
