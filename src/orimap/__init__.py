# src/orimap/__init__.py
#
# Copyright (c) The orimap project contributors
# This software is distributed under the Apache-2.0 license.
# See the NOTICE file for more information

"""
orimap derives orienteering map terrain layers from classified airborne LiDAR tiles:
green/yellow vegetation rasters, smoothed contours with form-lines and knolls, and cliffs.
"""

from .config import (
    Zone,
    ThresholdBand,
    PipelineConfig
)

from .exceptions import (
    OrimapError,
    PointFormatError,
    EmptyTileError,
    ConfigurationError,
    GridInvariantError
)

from .pipeline import (
    TileProducts,
    process_tile,
    validate_products
)

__version__ = "0.1.0"

__all__ = [
    # Configuration
    "Zone",
    "ThresholdBand",
    "PipelineConfig",

    # Errors
    "OrimapError",
    "PointFormatError",
    "EmptyTileError",
    "ConfigurationError",
    "GridInvariantError",

    # Pipeline
    "TileProducts",
    "process_tile",
    "validate_products",
]
