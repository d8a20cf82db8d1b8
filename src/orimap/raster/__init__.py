# src/orimap/raster/__init__.py
#
# Copyright (c) The orimap project contributors
# This software is distributed under the Apache-2.0 license.
# See the NOTICE file for more information

"""
The raster subpackage provides the grid envelope shared by all tile rasters and the
window filters used to clean them.
"""

from .layer import (
    Grid,
    define_grid,
    create_affine_transform
)

from .filters import (
    block_average,
    median_filter,
    smooth_shades,
    smooth_yellow
)

__all__ = [
    # Data structure
    "Grid",
    "define_grid",
    "create_affine_transform",

    # Filters
    "block_average",
    "median_filter",
    "smooth_shades",
    "smooth_yellow",
]
