# src/orimap/lidar/generate_model.py

"""
This module implements the ground and canopy surface models derived from a tile's points.
"""

from enum import Enum
import logging

import numpy as np
import CSF
import scipy.ndimage as ndimage
from numba import jit

from orimap.config import PipelineConfig
from orimap.exceptions import GridInvariantError
from orimap.raster.layer import Grid

from .layer import PointCloud, PointClass
from .rasterize import points_to_grid, point_cells

log = logging.getLogger(__name__)

__all__ = [
    "TerrainType",
    "infer_ground_points",
    "fill_gaps",
    "generate_ground",
    "generate_canopy",
    "generate_masks"
]

class TerrainType(Enum):
    """
    Defines terrain types used in topographical filtering parameterization.

    Options:
    FLAT: Represents areas with minimal elevation variation, such as plains or agricultural fields.
    RELIEF: Represents areas with moderate elevation variation, such as rolling hills or mixed terrain.
    HIGH_RELIEF: Represents areas with significant elevation variation, such as mountainous regions or deep valleys
    """
    FLAT = 1
    RELIEF = 2
    HIGH_RELIEF = 3

def _get_csf_params(
    terrain: TerrainType
    ) -> dict:
    """
    Extracts configuration parameters for the Cloth Simulation Filter framework.

    Args:
        terrain (TerrainType): Macro level topographical structure. See TerrainType enum for options.

    Returns:
        dict: Dictionary of parameters to configure the CSF algorithm based on terrain type.
    """
    if terrain == TerrainType.FLAT:
        return {"rigidness": 3, "slope_smoothing": False}
    elif terrain == TerrainType.HIGH_RELIEF:
        return {"rigidness": 1, "slope_smoothing": True}
    return {"rigidness": 2, "slope_smoothing": True}

def infer_ground_points(
    pc: PointCloud,
    cell_size: float,
    terrain: TerrainType = TerrainType.RELIEF
    ) -> np.ndarray:
    """
    Classifies ground points with a Cloth Simulation Filter for tiles shipped without classification.

    Args:
        pc (PointCloud): Tile points.
        cell_size (float): Output cell size, used as the lower bound of the cloth resolution.
        terrain (TerrainType): Macro level topographical structure.

    Returns:
        np.ndarray: Indices of the points identified as ground.
    """
    params = _get_csf_params(terrain)

    csf = CSF.CSF()
    csf.params.cloth_resolution = max(1.0, cell_size)
    csf.params.bSloopSmooth = params["slope_smoothing"]
    csf.params.time_step = 0.65
    csf.params.rigidness = params["rigidness"]

    # Shift to a local origin to avoid precision loss on projected coordinates
    points = np.vstack((pc.x - pc.min_x, pc.y - pc.min_y, pc.z)).transpose()
    csf.setPointCloud(points)

    ground_idx = CSF.VecInt()
    off_ground_idx = CSF.VecInt()
    csf.do_filtering(ground_idx, off_ground_idx, False)

    return np.array(ground_idx, dtype=np.int64)

@jit(nopython=True, cache=True)
def _interpolate_lines(grid: np.ndarray):
    """
    First fill pass: linear interpolation between the nearest populated cells of the row and
    of the column, both estimates averaged when both exist. Columns are scanned west to east,
    each from south to north, and filled cells feed the cells scanned after them.
    """
    rows, cols = grid.shape
    for c in range(cols):
        for r in range(rows - 1, -1, -1):
            if not np.isnan(grid[r, c]):
                continue
            total = 0.0
            n = 0

            left = c - 1
            while left >= 0 and np.isnan(grid[r, left]):
                left -= 1
            right = c + 1
            while right < cols and np.isnan(grid[r, right]):
                right += 1
            if left >= 0 and right < cols:
                t = (c - left) / (right - left)
                total += grid[r, left] + t * (grid[r, right] - grid[r, left])
                n += 1

            up = r - 1
            while up >= 0 and np.isnan(grid[up, c]):
                up -= 1
            down = r + 1
            while down < rows and np.isnan(grid[down, c]):
                down += 1
            if up >= 0 and down < rows:
                t = (r - up) / (down - up)
                total += grid[up, c] + t * (grid[down, c] - grid[up, c])
                n += 1

            if n > 0:
                grid[r, c] = total / n

@jit(nopython=True, cache=True)
def _neighbour_mean(grid: np.ndarray):
    """Second fill pass: mean of the populated 3x3 neighbours, in the same scan order."""
    rows, cols = grid.shape
    for c in range(cols):
        for r in range(rows - 1, -1, -1):
            if not np.isnan(grid[r, c]):
                continue
            total = 0.0
            n = 0
            for i in range(max(0, r - 1), min(rows, r + 2)):
                for j in range(max(0, c - 1), min(cols, c + 2)):
                    if not np.isnan(grid[i, j]):
                        total += grid[i, j]
                        n += 1
            if n > 0:
                grid[r, c] = total / n

@jit(nopython=True, cache=True)
def _extend_columns(grid: np.ndarray):
    """Third fill pass: carries values north along each column, then south."""
    rows, cols = grid.shape
    for c in range(cols):
        for r in range(rows - 2, -1, -1):
            if np.isnan(grid[r, c]):
                grid[r, c] = grid[r + 1, c]
        for r in range(1, rows):
            if np.isnan(grid[r, c]):
                grid[r, c] = grid[r - 1, c]

def fill_gaps(data: np.ndarray) -> np.ndarray:
    """
    Fills empty (NaN) ground cells deterministically.

    The passes run in a fixed order and update the grid in place, so a cell filled earlier in
    a pass takes part in filling the cells after it: row/column interpolation, 3x3 neighbour
    mean, then column extension. Columns left entirely empty are finally copied from their
    neighbours, first eastward then westward.

    Args:
        data (np.ndarray): Ground elevations with NaN where a cell has no ground points.

    Returns:
        np.ndarray: Fully populated elevations.

    Raises:
        GridInvariantError: If a cell is still empty, which only happens without any ground point.
    """
    filled = np.array(data, dtype=np.float64)
    missing = int(np.isnan(filled).sum())
    if missing == 0:
        return filled

    _interpolate_lines(filled)
    _neighbour_mean(filled)
    _extend_columns(filled)
    if np.isnan(filled).any():
        # rows are the columns of the transpose, reversed so the first carry runs eastward
        transposed = np.ascontiguousarray(filled.T[::-1])
        _extend_columns(transposed)
        filled = np.ascontiguousarray(transposed[::-1].T)

    if np.isnan(filled).any():
        raise GridInvariantError(f"{int(np.isnan(filled).sum())} ground cells left empty after interpolation")

    log.debug(f"Filled {missing} empty ground cells")
    return filled

def generate_ground(
    pc: PointCloud,
    grid: Grid,
    config: PipelineConfig
    ) -> Grid:
    """
    Builds the gap-free ground elevation grid.

    Each cell holds the mean elevation of its ground and water points. Tiles without any such
    points fall back to Cloth Simulation Filter ground when infer_ground is set.

    Args:
        pc (PointCloud): Tile points.
        grid (Grid): Tile grid.
        config (PipelineConfig): Pipeline configuration.

    Returns:
        Grid: Ground elevation at every cell.
    """
    categories = pc.categories(config.groundclass, config.waterclass, config.buildingsclass)
    is_ground = (categories == PointClass.GROUND) | (categories == PointClass.WATER)

    if not np.any(is_ground) and config.infer_ground:
        log.warning("Tile has no ground classified points, inferring ground with a cloth simulation")
        is_ground = np.zeros(len(pc), dtype=bool)
        is_ground[infer_ground_points(pc, config.cell_size, TerrainType[config.terrain.upper()])] = True

    rows, cols = point_cells(pc, grid)
    mean = points_to_grid(pc.z[is_ground], rows[is_ground], cols[is_ground], grid.shape, method='mean')
    return grid.with_data(fill_gaps(mean))

def generate_canopy(
    pc: PointCloud,
    ground: Grid,
    config: PipelineConfig
    ) -> Grid:
    """
    Builds the canopy height grid.

    Per cell, the highest return above ground (after vegezoffset) is taken, spread with a
    maximum filter of radius greendetectsize cells and clipped at zero.

    Args:
        pc (PointCloud): Tile points.
        ground (Grid): Ground elevation grid.
        config (PipelineConfig): Pipeline configuration.

    Returns:
        Grid: Canopy height (non-negative) at every cell.
    """
    rows, cols = point_cells(pc, ground)
    heights = pc.z - config.vegezoffset - ground.data[rows, cols]
    top = points_to_grid(heights, rows, cols, ground.shape, method='max')
    top = np.where(np.isnan(top), 0.0, top)

    size = 2 * config.greendetectsize + 1
    if size > 1:
        top = ndimage.maximum_filter(top, size=size, mode="nearest")

    return ground.with_data(np.clip(top, 0.0, None))

def generate_masks(
    pc: PointCloud,
    ground: Grid,
    config: PipelineConfig
    ):
    """
    Builds the water and building masks.

    Returns:
        Tuple[Grid, Grid]: Boolean water and building grids.
    """
    categories = pc.categories(config.groundclass, config.waterclass, config.buildingsclass)
    rows, cols = point_cells(pc, ground)

    water_pts = categories == PointClass.WATER
    water = points_to_grid(None, rows[water_pts], cols[water_pts], ground.shape, method='count') > 0
    if config.waterelevation is not None:
        water |= ground.data < config.waterelevation

    building_pts = categories == PointClass.BUILDING
    buildings = points_to_grid(None, rows[building_pts], cols[building_pts], ground.shape, method='count') > 0

    log.debug(f"Masks: {int(water.sum())} water cells, {int(buildings.sum())} building cells")
    return ground.with_data(water), ground.with_data(buildings)
