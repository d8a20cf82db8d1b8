# src/orimap/terrain/knolls.py

"""
This module implements the analysis of closed contour loops, which tells summits from depressions
and small distinct knolls from noise, and the clearance test of the resulting dots.
"""

from dataclasses import dataclass
from typing import Sequence
import logging
import math

import numpy as np
import scipy.ndimage as ndimage
from skimage.draw import line, polygon

from orimap.raster.layer import Grid

log = logging.getLogger(__name__)

__all__ = [
    "LoopInfo",
    "steepness_grid",
    "analyze_loop",
    "ring_steepness",
    "is_distinct",
    "dot_position",
    "clear_dots",
    "DOT_VERTICES",
    "KNOLL_CHECK_VERTICES",
    "DOT_CLEARANCE"
]

# Loops with fewer vertices than this are drawn as dots
DOT_VERTICES = 15
# Loops with fewer vertices than this are checked for distinctiveness
KNOLL_CHECK_VERTICES = 41
# Half width, in canvas pixels, of the window around a dot that must stay free of contour ink
DOT_CLEARANCE = 3

@dataclass(frozen=True)
class LoopInfo:
    """
    Summary of the terrain enclosed by a closed contour.

    Attributes:
        depression (bool): True when the loop encloses lower ground.
        extreme (float): Highest (summit) or lowest (depression) enclosed elevation.
        interior_cells (int): Number of cell centres inside the loop.
    """
    depression: bool
    extreme: float
    interior_cells: int

def steepness_grid(ground: np.ndarray) -> np.ndarray:
    """
    Local relief: elevation range over each cell's 3x3 neighbourhood.

    Args:
        ground (np.ndarray): Ground elevations.

    Returns:
        np.ndarray: Range (max - min) per cell.
    """
    upper = ndimage.maximum_filter(ground, size=3, mode="nearest")
    lower = ndimage.minimum_filter(ground, size=3, mode="nearest")
    return upper - lower

def analyze_loop(vertices: np.ndarray, level: float, ground: Grid) -> LoopInfo:
    """
    Determines whether a closed loop encloses a summit or a depression.

    The interior cells touching the ring are compared to the loop level. A loop around a
    single sub-cell feature falls back to the cell nearest its centre.

    Args:
        vertices (np.ndarray): Closed loop in world coordinates.
        level (float): Loop elevation.
        ground (Grid): Ground elevation grid.

    Returns:
        LoopInfo: Enclosure summary.
    """
    rows, cols = ground.to_cell_space(vertices)
    rr, cc = polygon(rows, cols, shape=ground.shape)
    inside = np.zeros(ground.shape, dtype=bool)
    inside[rr, cc] = True

    if not np.any(inside):
        r, c = ground.nearest_cell(dot_position(vertices)[None, :])
        inside[r[0], c[0]] = True

    edge = inside & ~ndimage.binary_erosion(inside)
    values = ground.data[inside]
    depression = bool(ground.data[edge].mean() < level)
    extreme = float(values.min() if depression else values.max())
    return LoopInfo(depression=depression, extreme=extreme, interior_cells=int(inside.sum()))

def ring_steepness(vertices: np.ndarray, ground: Grid, steepness: np.ndarray) -> np.ndarray:
    """Local relief at the cell nearest to each distinct vertex of a closed loop."""
    rows, cols = ground.nearest_cell(vertices[:-1])
    return steepness[rows, cols]

def is_distinct(
    ring: np.ndarray,
    level: float,
    extreme: float,
    knolls: float,
    scalefactor: float = 1.0
    ) -> bool:
    """
    Decides whether a closed loop is distinct enough to be kept.

    Small, gentle loops whose enclosed top or bottom barely departs from the loop level are
    dropped. A higher knolls value drops more loops.

    Args:
        ring (np.ndarray): Local relief at each distinct vertex of the loop.
        level (float): Loop elevation.
        extreme (float): Highest (summit) or lowest (depression) enclosed elevation.
        knolls (float): Distinctiveness gate in [0, 1].
        scalefactor (float): Map scale factor.

    Returns:
        bool: True when the loop is kept.
    """
    vertex_count = len(ring) + 1
    distinct = vertex_count - 1
    if distinct <= 0:
        return False

    relief = float(np.max(ring))
    steep_count = int(np.sum(ring > 1.0))
    prominence = abs(extreme - level)
    gate = scalefactor * knolls

    if steep_count < 0.4 * distinct and vertex_count < KNOLL_CHECK_VERTICES and prominence < 1.9 - 0.5 * relief:
        if relief < 0.45 * gate:
            return False
        if vertex_count < 33 and relief < 0.75 * gate:
            return False
        if vertex_count < 19 and relief < 0.9 * gate:
            return False

    if steep_count < knolls * distinct and vertex_count < DOT_VERTICES:
        return False
    return True

def dot_position(vertices: np.ndarray) -> np.ndarray:
    """Mean of the distinct vertices of a closed loop."""
    return np.asarray(vertices[:-1], dtype=np.float64).mean(axis=0)

def clear_dots(
    dots: np.ndarray,
    lines: Sequence[np.ndarray],
    grid: Grid,
    pixel: float = 1.0,
    reach: int = DOT_CLEARANCE
    ) -> np.ndarray:
    """
    Tests whether dots keep clear of contour lines.

    The lines are drawn on a canvas of pixel sized cells covering the grid bounds. A dot is clear
    when the square of reach pixels around its pixel lies on the canvas and holds no ink.

    Args:
        dots (np.ndarray): Nx2 world coordinates of the dots.
        lines (Sequence[np.ndarray]): Polylines in world coordinates.
        grid (Grid): Grid whose bounds define the canvas.
        pixel (float): Canvas pixel size in distance units.
        reach (int): Half width of the checked window in pixels.

    Returns:
        np.ndarray: Boolean array, True for each clear dot.
    """
    left, bottom, right, top = grid.bounds
    shape = (max(1, math.ceil((top - bottom) / pixel)), max(1, math.ceil((right - left) / pixel)))
    canvas = np.zeros(shape, dtype=bool)
    for xy in lines:
        rows = np.floor((top - xy[:, 1]) / pixel).astype(np.int64)
        cols = np.floor((xy[:, 0] - left) / pixel).astype(np.int64)
        for r0, c0, r1, c1 in zip(rows[:-1], cols[:-1], rows[1:], cols[1:]):
            rr, cc = line(r0, c0, r1, c1)
            inside = (rr >= 0) & (rr < shape[0]) & (cc >= 0) & (cc < shape[1])
            canvas[rr[inside], cc[inside]] = True

    dots = np.asarray(dots, dtype=np.float64).reshape(-1, 2)
    rows = np.floor((top - dots[:, 1]) / pixel).astype(np.int64)
    cols = np.floor((dots[:, 0] - left) / pixel).astype(np.int64)
    clear = np.zeros(len(dots), dtype=bool)
    for i, (r, c) in enumerate(zip(rows, cols)):
        if r < reach or c < reach or r + reach >= shape[0] or c + reach >= shape[1]:
            continue
        clear[i] = not canvas[r - reach:r + reach + 1, c - reach:c + reach + 1].any()
    return clear
