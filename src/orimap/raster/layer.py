# src/orimap/raster/layer.py

"""
This module defines the in-memory grid envelope shared by every raster product of a tile.
"""

import logging
from typing import Optional, Tuple, Union

import numpy as np
from rasterio.crs import CRS
from rasterio.transform import Affine

from orimap.exceptions import GridInvariantError

log = logging.getLogger(__name__)

__all__ = [
    "Grid",
    "define_grid",
    "create_affine_transform",
    "EDGE_TOLERANCE"
]

# Fraction of a cell within which a position snaps onto the nearest cell edge
EDGE_TOLERANCE = 1e-6

def _cell_floor(position):
    """Floor of positions in cell units, treating values within EDGE_TOLERANCE of an integer as that integer."""
    position = np.asarray(position, dtype=np.float64)
    nearest = np.round(position)
    snapped = np.where(np.abs(position - nearest) < EDGE_TOLERANCE, nearest, np.floor(position))
    return snapped.astype(np.int64)

def create_affine_transform(min_x: float, max_y: float, resolution: float) -> Affine:
    """
    Generates the north-up affine transform of a grid.

    Args:
        min_x (float): X coordinate of the left edge of the grid.
        max_y (float): Y coordinate of the top edge of the grid.
        resolution (float): Distance units per cell.

    Returns:
        Affine: Transform mapping (col, row) to world coordinates of cell corners.
    """
    return Affine.translation(min_x, max_y) * Affine.scale(resolution, -resolution)

class Grid:
    """
    A single band raster held in memory together with its georeferencing.

    Row 0 is the northernmost row and column 0 the westernmost column. Every raster produced
    for one tile shares the transform and shape of the tile's ground grid.

    Attributes:
        data (np.ndarray): 2D array of cell values in (rows, cols) order.
        transform (Affine): North-up affine transform of the top-left cell corner.
        crs (Optional[CRS]): Coordinate reference system, carried through untouched.
    """

    def __init__(
        self,
        data: np.ndarray,
        transform: Affine,
        crs: Optional[Union[str, CRS]] = None
    ):
        if not isinstance(data, np.ndarray):
            raise TypeError(f"Data must be numpy.ndarray, got {type(data)}")
        if data.ndim != 2:
            raise GridInvariantError(f"Grid data must be 2D, got shape {data.shape}")
        if not isinstance(transform, Affine):
            raise TypeError(f"Transform must be rasterio.Affine, got {type(transform)}")

        self.data = data
        self.transform = transform
        self.crs = crs

    @property
    def shape(self) -> Tuple[int, int]:
        return self.data.shape

    @property
    def rows(self) -> int:
        return self.data.shape[0]

    @property
    def cols(self) -> int:
        return self.data.shape[1]

    @property
    def cell_size(self) -> float:
        return float(self.transform.a)

    @property
    def min_x(self) -> float:
        return float(self.transform.c)

    @property
    def max_y(self) -> float:
        return float(self.transform.f)

    @property
    def bounds(self) -> Tuple[float, float, float, float]:
        """(left, bottom, right, top) of the grid in world coordinates."""
        left = self.min_x
        top = self.max_y
        return (left, top - self.rows * self.cell_size, left + self.cols * self.cell_size, top)

    def cell_centers(self) -> Tuple[np.ndarray, np.ndarray]:
        """
        Returns the world coordinates of cell centres.

        Returns:
            Tuple[np.ndarray, np.ndarray]: X of each column and Y of each row.
        """
        xs = self.min_x + (np.arange(self.cols) + 0.5) * self.cell_size
        ys = self.max_y - (np.arange(self.rows) + 0.5) * self.cell_size
        return xs, ys

    def cell_index(self, x: np.ndarray, y: np.ndarray) -> Tuple[np.ndarray, np.ndarray]:
        """
        Maps world coordinates to (row, col) cell indices.

        A coordinate lying on a cell edge belongs to the cell to its east and north, so points
        on the southern tile edge still land in the last row. Positions within EDGE_TOLERANCE
        of a cell edge count as on it.
        """
        res = self.cell_size
        bottom = self.bounds[1]
        cols = _cell_floor((np.asarray(x, dtype=np.float64) - self.min_x) / res)
        rows = self.rows - 1 - _cell_floor((np.asarray(y, dtype=np.float64) - bottom) / res)
        return rows, cols

    def to_world(self, rows: np.ndarray, cols: np.ndarray) -> np.ndarray:
        """Converts fractional (row, col) positions of cell centres to an Nx2 array of world coordinates."""
        x = self.min_x + (np.asarray(cols, dtype=np.float64) + 0.5) * self.cell_size
        y = self.max_y - (np.asarray(rows, dtype=np.float64) + 0.5) * self.cell_size
        return np.column_stack((x, y))

    def to_cell_space(self, xy: np.ndarray) -> Tuple[np.ndarray, np.ndarray]:
        """Inverse of to_world: fractional (row, col) positions of world coordinates."""
        xy = np.asarray(xy, dtype=np.float64).reshape(-1, 2)
        cols = (xy[:, 0] - self.min_x) / self.cell_size - 0.5
        rows = (self.max_y - xy[:, 1]) / self.cell_size - 0.5
        return rows, cols

    def nearest_cell(self, xy: np.ndarray) -> Tuple[np.ndarray, np.ndarray]:
        """Index of the cell whose centre is nearest to each coordinate, clipped to the grid."""
        rows, cols = self.to_cell_space(xy)
        rows = np.clip(np.floor(rows + 0.5).astype(np.int64), 0, self.rows - 1)
        cols = np.clip(np.floor(cols + 0.5).astype(np.int64), 0, self.cols - 1)
        return rows, cols

    def with_data(self, data: np.ndarray) -> "Grid":
        """Creates a grid with new values on the same extent."""
        if data.shape != self.shape:
            raise GridInvariantError(f"Shape mismatch: {data.shape} != {self.shape}")
        return Grid(data, self.transform, self.crs)

    def same_grid(self, other: "Grid") -> bool:
        """Strictly checks that two grids share shape and transform."""
        return (
            self.shape == other.shape
            and np.allclose(np.array(self.transform), np.array(other.transform), atol=1e-9)
        )

    def copy(self) -> "Grid":
        return Grid(self.data.copy(), self.transform, self.crs)

    def __repr__(self):
        return f"<Grid shape={self.shape} cell_size={self.cell_size} bounds={self.bounds}>"

def define_grid(
    min_x: float,
    max_x: float,
    min_y: float,
    max_y: float,
    cell_size: float,
    crs: Optional[Union[str, CRS]] = None,
    fill: float = np.nan
) -> Grid:
    """
    Derives the tile grid from the point extent.

    The origin is snapped to a multiple of the cell size and the grid is sized so that
    every point of the extent falls in exactly one cell.

    Args:
        min_x, max_x, min_y, max_y (float): Point extent.
        cell_size (float): Distance units per cell.
        crs (Optional[Union[str, CRS]]): Coordinate reference system of the points.
        fill (float): Initial cell value.

    Returns:
        Grid: Empty grid covering the extent.
    """
    if cell_size <= 0:
        raise GridInvariantError(f"Cell size must be positive, got {cell_size}")

    left = int(_cell_floor(min_x / cell_size)) * cell_size
    bottom = int(_cell_floor(min_y / cell_size)) * cell_size
    cols = int(_cell_floor((max_x - left) / cell_size)) + 1
    rows = int(_cell_floor((max_y - bottom) / cell_size)) + 1
    top = bottom + rows * cell_size

    log.debug(f"Defined grid {rows}x{cols} at ({left}, {top}) with cell size {cell_size}")
    data = np.full((rows, cols), fill, dtype=np.float64)
    return Grid(data, create_affine_transform(left, top, cell_size), crs)
