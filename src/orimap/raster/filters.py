# src/orimap/raster/filters.py

"""
This module implements the window filters used to clean categorical and continuous rasters.
"""

import logging
from typing import Union

import numpy as np
import scipy.ndimage as ndimage

from .layer import Grid

log = logging.getLogger(__name__)

__all__ = [
    "block_average",
    "median_filter",
    "smooth_shades",
    "smooth_yellow"
]

ArrayLike = Union[np.ndarray, Grid]

def _unwrap(source: ArrayLike) -> np.ndarray:
    return source.data if isinstance(source, Grid) else np.asarray(source)

def _rewrap(source: ArrayLike, data: np.ndarray) -> ArrayLike:
    return source.with_data(data) if isinstance(source, Grid) else data

def median_filter(source: ArrayLike, size: int) -> ArrayLike:
    """
    Replaces each cell with the median of a square window.

    Even sizes round up to the next odd width, so size 2 filters like size 3. The grid edges
    are extended with their nearest values.

    Args:
        source (Union[np.ndarray, Grid]): Raster to filter. Integer, float and boolean values are supported.
        size (int): Window width in cells. 0 and 1 return an unchanged copy.

    Returns:
        Union[np.ndarray, Grid]: Filtered raster of the same type and dtype as the input.
    """
    data = _unwrap(source)
    if size <= 1:
        return _rewrap(source, data.copy())

    out = ndimage.median_filter(data.astype(np.float64), size=2 * (size // 2) + 1, mode="nearest")
    return _rewrap(source, out.astype(data.dtype))

def block_average(source: ArrayLike, size: int) -> ArrayLike:
    """
    Box mean over a size x size window with nearest-edge extension.

    Args:
        source (Union[np.ndarray, Grid]): Raster to average.
        size (int): Window width in cells. Values of 1 or less return an unchanged copy.

    Returns:
        Union[np.ndarray, Grid]: Averaged float64 raster.
    """
    data = _unwrap(source).astype(np.float64)
    if size <= 1:
        return _rewrap(source, data.copy())
    return _rewrap(source, ndimage.uniform_filter(data, size=size, mode="nearest"))

def smooth_shades(shade: ArrayLike, config) -> ArrayLike:
    """Applies the two configured median passes to the green shade raster."""
    out = median_filter(shade, config.medianboxsize)
    return median_filter(out, config.medianboxsize2)

def smooth_yellow(yellow: ArrayLike, config) -> ArrayLike:
    """
    Median filters the yellow flag raster.

    With yellow_smoothing set, the shade raster's two passes are reused. Otherwise
    yellowmedianboxsize applies.
    """
    if config.yellow_smoothing:
        return smooth_shades(yellow, config)
    return median_filter(yellow, config.yellowmedianboxsize)
