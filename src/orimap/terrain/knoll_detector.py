# src/orimap/terrain/knoll_detector.py

"""
This module finds knolls lower than the contour interval and lifts the ground under them so
the contour generator draws them.

Knolls are found on isolines traced every FINE_INTERVAL (scaled by scalefactor). A knoll is the
best placed loop below an innermost summit loop. Lifting first evens out gentle terrain, then
raises the cells inside each knoll loop and tapers a smaller rise around it.
"""

from dataclasses import dataclass
from typing import List
import logging
import math

import numpy as np
import scipy.ndimage as ndimage
import shapely
from shapely.geometry import Polygon
from skimage.draw import polygon

from orimap.config import PipelineConfig
from orimap.raster.layer import Grid

from .contours import trace_isolines
from .knolls import analyze_loop, dot_position

log = logging.getLogger(__name__)

__all__ = [
    "KnollPin",
    "detect_knolls",
    "flatten_gentle",
    "raise_knolls",
    "FINE_INTERVAL"
]

FINE_INTERVAL = 0.3
MAX_LOOP_VERTICES = 121
# Loops with fewer vertices are kept only when at least SHORT_LOOP_LENGTH long
SHORT_LOOP_VERTICES = 9
SHORT_LOOP_LENGTH = 5.0
# A loop is a candidate base when it lies this far below a summit loop it encloses
MIN_DROP = 0.1
MAX_DROP = 4.6
FLATTEN_WINDOW = 5
FLATTEN_STEEPNESS = 1.25
MAX_SPREAD = 12.0

@dataclass(frozen=True, eq=False)
class KnollPin:
    """
    A knoll found on the fine isolines.

    Attributes:
        level (float): Elevation of the chosen base loop.
        top (float): Elevation of the summit loop the base encloses.
        center (np.ndarray): Mean of the distinct base loop vertices.
        vertices (np.ndarray): Closed base loop in world coordinates.
    """
    level: float
    top: float
    center: np.ndarray
    vertices: np.ndarray

def _summit_loops(ground: Grid, interval: float) -> list:
    loops = []
    for c in trace_isolines(ground, interval):
        n = len(c)
        if not c.closed or n > MAX_LOOP_VERTICES:
            continue
        if n < SHORT_LOOP_VERTICES and c.length < SHORT_LOOP_LENGTH:
            continue
        if analyze_loop(c.vertices, c.level, ground).depression:
            continue
        loops.append(c)
    return loops

def detect_knolls(ground: Grid, config: PipelineConfig) -> List[KnollPin]:
    """
    Finds knolls that the contour interval alone would miss.

    Summit loops that enclose no higher loop are tops. Each loop lying between MIN_DROP and
    MAX_DROP below a top it encloses is a candidate base for that top, and the candidate closest
    below the next half interval level wins. Bases of small or low knolls sitting near a half
    interval level are dropped, as are bases enclosing another kept base.

    Args:
        ground (Grid): Ground elevation grid.
        config (PipelineConfig): Pipeline configuration.

    Returns:
        List[KnollPin]: Knolls in tracing order.
    """
    loops = _summit_loops(ground, FINE_INTERVAL * config.scalefactor)
    if not loops:
        return []

    levels = np.array([c.level for c in loops])
    heads = np.vstack([c.vertices[0] for c in loops])
    # encloses[i, j]: loop i contains the first vertex of loop j
    encloses = np.vstack([
        shapely.contains_xy(Polygon(c.vertices), heads[:, 0], heads[:, 1]) for c in loops
    ])
    np.fill_diagonal(encloses, False)

    tops = [i for i in range(len(loops)) if not np.any(encloses[i] & (levels > levels[i]))]

    candidates = []
    for i in range(len(loops)):
        for t in tops:
            if levels[t] - MAX_DROP < levels[i] < levels[t] - MIN_DROP and encloses[i, t]:
                candidates.append((i, t))
                break

    half = config.contour_interval / 2.0 * config.scalefactor
    best = {}
    rise = {}
    for i, t in candidates:
        gap = math.floor(levels[i] / half + 1.0) * half - levels[i]
        if t not in best:
            best[t] = i
            rise[i] = gap
            continue
        b = best[t]
        if rise[b] < 1.75 and abs(levels[t] - levels[b] - 0.6) < 0.2:
            continue
        if rise[b] > gap:
            best[t] = i
            rise[i] = gap

    kept = []
    for i, t in candidates:
        if best[t] != i:
            continue
        above_half = levels[i] - half * math.floor(levels[i] / half)
        if len(loops[i]) < 13 or levels[t] > levels[i] + 0.45 or above_half > 0.45:
            kept.append((i, t))

    kept_ids = [i for i, _ in kept]
    pins = []
    for i, t in kept:
        if any(encloses[i, j] for j in kept_ids if j != i):
            continue
        loop = loops[i].vertices
        pins.append(KnollPin(float(levels[i]), float(levels[t]), dot_position(loop), loop))

    log.debug(f"Detected {len(pins)} knolls on {len(loops)} fine summit loops")
    return pins

def flatten_gentle(data: np.ndarray) -> np.ndarray:
    """
    Evens out gentle terrain.

    Where the 5x5 elevation range is below FLATTEN_STEEPNESS, a cell moves toward the mean of its
    window without the window's extremes, the more so the gentler the window. Cells closer than
    two cells to the grid edge keep their value.
    """
    data = np.asarray(data, dtype=np.float64)
    size = FLATTEN_WINDOW
    high = ndimage.maximum_filter(data, size=size, mode="nearest")
    low = ndimage.minimum_filter(data, size=size, mode="nearest")
    total = ndimage.uniform_filter(data, size=size, mode="nearest") * size * size
    steep = high - low

    trimmed = (total - low - high) / (size * size - 2)
    blended = ((FLATTEN_STEEPNESS - steep) * trimmed + steep * data) / FLATTEN_STEEPNESS

    gentle = steep < FLATTEN_STEEPNESS
    margin = size // 2
    gentle[:margin, :] = False
    gentle[-margin:, :] = False
    gentle[:, :margin] = False
    gentle[:, -margin:] = False
    return np.where(gentle, blended, data)

def _spread_ranges(pins: List[KnollPin], ground: Grid) -> List[float]:
    """Tapered rise half widths: 0.8 times the cell distance to the nearest other knoll, less one."""
    centers = np.vstack([p.center for p in pins])
    rows, cols = ground.cell_index(centers[:, 0], centers[:, 1])
    ranges = []
    for k in range(len(pins)):
        # Chebyshev distance in cells
        distance = np.maximum(np.abs(rows - rows[k]), np.abs(cols - cols[k])).astype(np.float64)
        distance[k] = math.inf
        ranges.append(min(max(float(distance.min()) * 0.8 - 1.0, 1.0), MAX_SPREAD))
    return ranges

def raise_knolls(ground: Grid, pins: List[KnollPin], config: PipelineConfig) -> Grid:
    """
    Builds the elevation grid the contours are traced on.

    Gentle terrain is evened out first. Each knoll then lifts the cells inside its base loop
    so that the next half interval level closes around it, and adds a rise tapering to zero
    over its spread range to the untouched cells around it.

    Args:
        ground (Grid): Ground elevation grid.
        pins (List[KnollPin]): Knolls from detect_knolls.
        config (PipelineConfig): Pipeline configuration.

    Returns:
        Grid: Adjusted elevations on the ground grid.
    """
    out = flatten_gentle(ground.data)
    interval = config.contour_interval / 2.0 * config.scalefactor
    ranges = _spread_ranges(pins, ground) if pins else []

    for pin, spread_range in zip(pins, ranges):
        base = math.floor((pin.level - 0.09) / interval + 1.0) * interval
        lift = base - pin.level + 0.15
        spread = lift * (0.6 if lift > 0.66 * interval else 0.4)
        if lift < 0.25 * interval:
            spread = 0.0
            lift += 0.3
        lift += 0.5
        if pin.top + lift > math.floor((pin.level - 0.09) / interval + 2.0) * interval:
            lift -= 0.4

        loop = pin.vertices
        if base - pin.level > 1.5 * config.scalefactor and len(loop) > 21:
            loop = pin.center + (loop - pin.center) * 0.8

        rows, cols = ground.to_cell_space(loop)
        rr, cc = polygon(rows, cols, shape=ground.shape)
        touched = np.zeros(ground.shape, dtype=bool)
        touched[rr, cc] = True
        out[touched] += lift

        if spread == 0.0:
            continue
        r0, c0 = ground.cell_index(pin.center[0:1], pin.center[1:2])
        steps = np.arange(int(2.0 * spread_range + 1.0)) - spread_range
        dr, dc = np.meshgrid(steps, steps, indexing="ij")
        rr = np.floor(r0[0] + dr).astype(np.int64).ravel()
        cc = np.floor(c0[0] + dc).astype(np.int64).ravel()
        weight = ((spread_range - np.abs(dr)) * (spread_range - np.abs(dc)) / spread_range ** 2 * spread).ravel()

        inside = (rr >= 0) & (rr < ground.rows) & (cc >= 0) & (cc < ground.cols)
        rr, cc, weight = rr[inside], cc[inside], weight[inside]
        free = ~touched[rr, cc]
        np.add.at(out, (rr[free], cc[free]), weight[free])

    log.debug(f"Raised {len(pins)} knolls")
    return ground.with_data(out)
