# src/orimap/terrain/cliffs.py

"""
This module implements the cliff detector.

Slope is estimated on the ground grid, cells steep enough to be cliffs are split into
erasable (type 1) and impassable (type 2) masks, the masks are thinned to one cell wide
skeletons and traced into polylines, and small or indistinct erasable cliffs are suppressed.
"""

from dataclasses import dataclass
from enum import IntEnum
from typing import Dict, List, Tuple
import logging

import numpy as np
import scipy.ndimage as ndimage
from skimage.morphology import disk, skeletonize

from orimap.config import PipelineConfig
from orimap.raster.layer import Grid

from .knolls import steepness_grid

log = logging.getLogger(__name__)

__all__ = [
    "CliffKind",
    "Cliff",
    "CliffResult",
    "slope_grid",
    "cliff_masks",
    "trace_skeleton",
    "detect_cliffs"
]

Pixel = Tuple[int, int]

# 4-neighbours come first so straight steps are preferred over diagonals
_ORTHOGONAL = ((-1, 0), (0, -1), (0, 1), (1, 0))
_DIAGONAL = ((-1, -1), (-1, 1), (1, -1), (1, 1))

class CliffKind(IntEnum):
    """
    Cliff categories.

    Options:
    ERASABLE: Small cliff, subject to suppression.
    IMPASSABLE: Impassable cliff, always kept.
    """
    ERASABLE = 1
    IMPASSABLE = 2

@dataclass(frozen=True, eq=False)
class Cliff:
    """
    A traced cliff polyline.

    Attributes:
        vertices (np.ndarray): Nx2 world coordinates through cell centres.
        kind (CliffKind): Cliff category.
    """
    vertices: np.ndarray
    kind: CliffKind

    @property
    def length(self) -> float:
        if len(self.vertices) < 2:
            return 0.0
        return float(np.hypot(*np.diff(self.vertices, axis=0).T).sum())

    def __len__(self) -> int:
        return len(self.vertices)

@dataclass
class CliffResult:
    """
    Output of the cliff detector.

    Attributes:
        type1 (List[Cliff]): Erasable cliffs that survived suppression.
        type2 (List[Cliff]): Impassable cliffs.
        type1_mask (Grid): Cells claimed by erasable cliffs (after thinning).
        type2_mask (Grid): Cells claimed by impassable cliffs (after thinning).
        slope (Grid): Slope magnitude (drop per unit distance).
        direction (Grid): Direction of steepest ascent in radians, counter-clockwise from east.
    """
    type1: List[Cliff]
    type2: List[Cliff]
    type1_mask: Grid
    type2_mask: Grid
    slope: Grid
    direction: Grid

def slope_grid(ground: Grid, radius: int = 1) -> Tuple[np.ndarray, np.ndarray]:
    """
    Central difference slope over radius cells, replicating edge cells.

    Args:
        ground (Grid): Ground elevation grid.
        radius (int): Half width of the difference stencil in cells.

    Returns:
        Tuple[np.ndarray, np.ndarray]: Slope magnitude and direction of steepest ascent.
    """
    data = ground.data
    rows, cols = data.shape
    r = radius
    padded = np.pad(data, r, mode="edge")
    east = padded[r:r + rows, 2 * r:2 * r + cols]
    west = padded[r:r + rows, 0:cols]
    north = padded[0:rows, r:r + cols]
    south = padded[2 * r:2 * r + rows, r:r + cols]

    span = 2.0 * r * ground.cell_size
    dzdx = (east - west) / span
    dzdy = (north - south) / span
    return np.hypot(dzdx, dzdy), np.arctan2(dzdy, dzdx)

def cliff_masks(slope: np.ndarray, config: PipelineConfig) -> Tuple[np.ndarray, np.ndarray]:
    """
    Splits steep cells into erasable and impassable cliff masks.

    A cell meeting cliff2 is impassable only. With cliffthin set, each mask is closed with a
    disk of radius cliffthin cells so closely parallel bands merge into one, and impassable
    cells are removed from the erasable mask again afterwards.

    Returns:
        Tuple[np.ndarray, np.ndarray]: Disjoint type 1 and type 2 boolean masks.
    """
    type2 = slope >= config.cliff2
    type1 = (slope >= config.cliff1) & ~type2

    radius = int(round(config.cliffthin))
    if radius > 0:
        structure = disk(radius).astype(bool)
        # closing is not extensive at the grid border, keep the unclosed cells too
        type2 = ndimage.binary_closing(type2, structure=structure) | type2
        type1 = (ndimage.binary_closing(type1, structure=structure) | type1) & ~type2
    return type1, type2

def _neighbours(skeleton: np.ndarray) -> Dict[Pixel, List[Pixel]]:
    """
    Adjacency of skeleton pixels.

    A diagonal link is skipped when one of the two pixels bridging it orthogonally is set,
    so staircases are walked through their corner pixels instead of forming triangles.
    """
    rows, cols = skeleton.shape

    def is_set(r, c):
        return 0 <= r < rows and 0 <= c < cols and bool(skeleton[r, c])

    graph: Dict[Pixel, List[Pixel]] = {}
    for r, c in map(tuple, np.argwhere(skeleton)):
        links = [(r + dr, c + dc) for dr, dc in _ORTHOGONAL if is_set(r + dr, c + dc)]
        for dr, dc in _DIAGONAL:
            if is_set(r + dr, c + dc) and not is_set(r + dr, c) and not is_set(r, c + dc):
                links.append((r + dr, c + dc))
        graph[(int(r), int(c))] = [(int(a), int(b)) for a, b in links]
    return graph

def trace_skeleton(skeleton: np.ndarray) -> List[List[Pixel]]:
    """
    Walks a one cell wide skeleton into pixel paths.

    Paths start from end points in row-major order, then from junctions, and finally from
    the first pixel of every remaining loop. Each link is walked exactly once, so the result
    is deterministic. Loops are closed by repeating their first pixel.

    Args:
        skeleton (np.ndarray): Boolean skeleton.

    Returns:
        List[List[Tuple[int, int]]]: Pixel paths with at least two pixels.
    """
    graph = _neighbours(skeleton)
    used = set()

    def edge(a, b):
        return (a, b) if a < b else (b, a)

    def walk(start, step):
        path = [start, step]
        used.add(edge(start, step))
        prev, cur = start, step
        while len(graph[cur]) == 2:
            nxt = [p for p in graph[cur] if p != prev and edge(cur, p) not in used]
            if not nxt:
                break
            used.add(edge(cur, nxt[0]))
            prev, cur = cur, nxt[0]
            path.append(cur)
            if cur == start:
                break
        return path

    pixels = sorted(graph)
    endpoints = [p for p in pixels if len(graph[p]) == 1]
    junctions = [p for p in pixels if len(graph[p]) > 2]

    paths = []
    for start in endpoints + junctions:
        for step in graph[start]:
            if edge(start, step) not in used:
                paths.append(walk(start, step))

    for start in pixels:
        for step in graph[start]:
            if edge(start, step) not in used:
                paths.append(walk(start, step))
    return paths

def _background_slope(
    slope: np.ndarray,
    cliff_cells: np.ndarray,
    config: PipelineConfig,
    cell_size: float
    ) -> np.ndarray:
    """Mean slope of the non-cliff cells in a window of cliffbackground distance around each cell."""
    size = max(3, int(round(config.cliffbackground / cell_size)))
    if size % 2 == 0:
        size += 1
    outside = (~cliff_cells).astype(np.float64)
    total = ndimage.uniform_filter(slope * outside, size=size, mode="nearest")
    share = ndimage.uniform_filter(outside, size=size, mode="nearest")
    with np.errstate(invalid="ignore", divide="ignore"):
        return np.where(share > 1e-12, total / share, 0.0)

def detect_cliffs(ground: Grid, config: PipelineConfig) -> CliffResult:
    """
    Detects and traces cliffs on the ground grid.

    Erasable cliffs are dropped when the surrounding terrain is itself steep (mean slope of the
    nearby non-cliff cells at least cliffsteepfactor times the cliff's own slope), when their
    relief is below cliffflatplace, or when they are shorter than cliffnosmallciffs. Impassable
    cliffs only need two vertices.

    Args:
        ground (Grid): Ground elevation grid.
        config (PipelineConfig): Pipeline configuration.

    Returns:
        CliffResult: Cliff polylines and masks.
    """
    slope, direction = slope_grid(ground, config.slope_radius)
    type1_mask, type2_mask = cliff_masks(slope, config)

    background = _background_slope(slope, type1_mask | type2_mask, config, ground.cell_size)
    relief = steepness_grid(ground.data)

    type2 = []
    for path in trace_skeleton(skeletonize(type2_mask)):
        if len(path) >= 2:
            rr, cc = np.array(path).T
            type2.append(Cliff(ground.to_world(rr, cc), CliffKind.IMPASSABLE))

    type1 = []
    dropped = {"steep": 0, "flat": 0, "short": 0}
    for path in trace_skeleton(skeletonize(type1_mask)):
        rr, cc = np.array(path).T
        cliff = Cliff(ground.to_world(rr, cc), CliffKind.ERASABLE)
        if background[rr, cc].mean() >= config.cliffsteepfactor * slope[rr, cc].mean():
            dropped["steep"] += 1
        elif relief[rr, cc].max() < config.cliffflatplace:
            dropped["flat"] += 1
        elif cliff.length < config.cliffnosmallciffs:
            dropped["short"] += 1
        else:
            type1.append(cliff)

    log.debug(
        f"Cliffs: {len(type1)} type 1 kept ({dropped}), {len(type2)} type 2"
    )

    return CliffResult(
        type1=type1,
        type2=type2,
        type1_mask=ground.with_data(type1_mask),
        type2_mask=ground.with_data(type2_mask),
        slope=ground.with_data(slope),
        direction=ground.with_data(direction)
    )
