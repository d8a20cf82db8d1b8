# src/orimap/lidar/rasterize.py

"""
This module implements the per-cell aggregation of lidar points onto the tile grid.
"""

import logging
from typing import Optional, Tuple

import numpy as np
from numba import jit

from orimap.exceptions import GridInvariantError
from orimap.raster.layer import Grid

from .layer import PointCloud

log = logging.getLogger(__name__)

__all__ = [
    "points_to_grid",
    "point_cells",
    "METHODS"
]

METHODS = {"count": 0, "max": 1, "min": 2, "sum": 3, "mean": 4}

@jit(nopython=True, cache=True)
def _rasterize_chunk(
    grid: np.ndarray,
    counts: np.ndarray,
    rows: np.ndarray,
    cols: np.ndarray,
    values: np.ndarray,
    method_flag: int
    ):
    """
    Helper function to rasterize points into the grid using explicit loops for numba optimization.

    Args:
        grid: 2D array representing the raster grid to update.
        counts: 2D array of points seen per cell.
        rows: Row indices for each point.
        cols: Column indices for each point.
        values: Value carried by each point.
        method_flag: Aggregation method (0=count, 1=max, 2=min, 3=sum, 4=mean).

    Returns:
        None (the grids are modified in place).
    """
    for i in range(len(rows)):
        r = rows[i]
        c = cols[i]
        counts[r, c] += 1
        if method_flag == 1:  # max
            if counts[r, c] == 1 or values[i] > grid[r, c]:
                grid[r, c] = values[i]
        elif method_flag == 2:  # min
            if counts[r, c] == 1 or values[i] < grid[r, c]:
                grid[r, c] = values[i]
        elif method_flag == 3 or method_flag == 4:  # sum, mean
            grid[r, c] += values[i]

def point_cells(pc: PointCloud, grid: Grid) -> Tuple[np.ndarray, np.ndarray]:
    """
    Computes the cell of every point.

    Raises:
        GridInvariantError: If a point falls outside the grid.
    """
    rows, cols = grid.cell_index(pc.x, pc.y)
    valid = (rows >= 0) & (rows < grid.rows) & (cols >= 0) & (cols < grid.cols)
    if not np.all(valid):
        raise GridInvariantError(f"{int(np.sum(~valid))} points fall outside the tile grid")
    return rows, cols

def points_to_grid(
    values: Optional[np.ndarray],
    rows: np.ndarray,
    cols: np.ndarray,
    shape: Tuple[int, int],
    method: str = 'max'
    ) -> np.ndarray:
    """
    Aggregates point values into a dense cell array.

    Cells without points are NaN for max, min and mean, and 0 for count and sum.

    Args:
        values (Optional[np.ndarray]): Value per point, may be None for count.
        rows (np.ndarray): Row index per point.
        cols (np.ndarray): Column index per point.
        shape (Tuple[int, int]): Grid shape.
        method (str): Statistical aggregator ('count', 'max', 'min', 'sum', 'mean').

    Returns:
        np.ndarray: float64 cell array.
    """
    if method not in METHODS:
        raise ValueError(f"Unknown rasterization method: {method}")

    grid = np.zeros(shape, dtype=np.float64)
    counts = np.zeros(shape, dtype=np.int64)
    if values is None:
        values = np.zeros(len(rows), dtype=np.float64)
    values = np.asarray(values, dtype=np.float64)

    _rasterize_chunk(
        grid, counts,
        np.asarray(rows, dtype=np.int64), np.asarray(cols, dtype=np.int64),
        values, METHODS[method]
    )

    if method == 'count':
        return counts.astype(np.float64)
    if method == 'sum':
        return grid
    if method == 'mean':
        with np.errstate(invalid="ignore", divide="ignore"):
            grid = grid / counts
    grid[counts == 0] = np.nan
    return grid
