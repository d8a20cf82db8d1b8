# src/orimap/terrain/contours.py

"""
This module implements the contour generator: isoline tracing on the ground grid,
curvature-aware smoothing, knoll and depression tagging, form-line derivation,
index contours and the optional removal of touching contours.
"""

from dataclasses import dataclass, replace
from enum import Enum
from typing import Dict, List, Optional
import logging
import math

import numpy as np
import shapely
from shapely.geometry import LineString, MultiLineString
from skimage import measure

from orimap.config import PipelineConfig
from orimap.raster.layer import Grid

from .formlines import formline_pieces
from .knolls import (
    DOT_VERTICES,
    clear_dots,
    analyze_loop,
    dot_position,
    is_distinct,
    ring_steepness,
    steepness_grid
)

log = logging.getLogger(__name__)

__all__ = [
    "ContourKind",
    "Contour",
    "nudge_levels",
    "trace_isolines",
    "smooth_polyline",
    "remove_touching",
    "mark_crowded_dots",
    "generate_contours",
    "LEVEL_EPSILON",
    "MIN_TRACE_VERTICES"
]

# Elevations closer than this to a contour level are moved off it
LEVEL_EPSILON = 0.02
MIN_TRACE_VERTICES = 5
# Adaptive generalization of long lines
GENERALIZE_VERTICES = 101
FLAT_STEEPNESS = 0.5

class ContourKind(Enum):
    """
    Rendering category of a contour feature.

    Options:
    CONTOUR: Ordinary contour line.
    INDEX: Index contour, drawn heavier.
    FORMLINE: Form-line (dashed or solid thin line).
    KNOLL: Knoll dot or small summit loop.
    DEPRESSION: Closed loop or dot around a local minimum.
    """
    CONTOUR = "contour"
    INDEX = "index"
    FORMLINE = "formline"
    KNOLL = "knoll"
    DEPRESSION = "depression"

@dataclass(frozen=True, eq=False)
class Contour:
    """
    A tagged polyline at constant elevation.

    Attributes:
        level (float): Elevation of the line.
        vertices (np.ndarray): Nx2 array of world coordinates. Dots hold a single vertex.
        kind (ContourKind): Rendering category.
        dashed (bool): Form-line dash.
        dot (bool): Knoll or depression drawn as a symbol at its single vertex.
        crowded (bool): Dot whose surroundings touch contour ink, drawn with the crowded symbol.
    """
    level: float
    vertices: np.ndarray
    kind: ContourKind = ContourKind.CONTOUR
    dashed: bool = False
    dot: bool = False
    crowded: bool = False

    @property
    def closed(self) -> bool:
        v = self.vertices
        return len(v) > 2 and bool(np.array_equal(v[0], v[-1]))

    @property
    def length(self) -> float:
        if len(self.vertices) < 2:
            return 0.0
        return float(np.hypot(*np.diff(self.vertices, axis=0).T).sum())

    @property
    def center(self) -> np.ndarray:
        if self.closed:
            return dot_position(self.vertices)
        return self.vertices.mean(axis=0)

    def __len__(self) -> int:
        return len(self.vertices)

    def __repr__(self):
        return f"<Contour level={self.level} kind={self.kind.value} vertices={len(self.vertices)}>"

def nudge_levels(data: np.ndarray, interval: float, epsilon: float = LEVEL_EPSILON) -> np.ndarray:
    """
    Moves elevations lying within epsilon of a multiple of interval to epsilon away from it.

    This keeps isolines off grid nodes so every crossing is interpolated on a cell edge.
    """
    nearest = np.round(data / interval) * interval
    offset = data - nearest
    close = np.abs(offset) < epsilon
    out = data.astype(np.float64, copy=True)
    out[close] = nearest[close] + np.where(offset[close] >= 0, epsilon, -epsilon)
    return out

def _levels(low: float, high: float, interval: float) -> List[float]:
    first = math.floor(low / interval) + 1
    levels = []
    k = first
    while k * interval < high:
        if k * interval > low:
            levels.append(k * interval)
        k += 1
    return levels

def trace_isolines(ground: Grid, interval: float) -> List[Contour]:
    """
    Traces every isoline of the ground grid at multiples of interval.

    Marching squares runs on the lattice of cell centres with linear interpolation along cell
    edges. Closed lines repeat their first vertex exactly. Open lines end on the outermost
    ring of cell centres. Lines with fewer than MIN_TRACE_VERTICES vertices are dropped.

    Args:
        ground (Grid): Ground elevation grid.
        interval (float): Vertical interval.

    Returns:
        List[Contour]: Raw isolines ordered by level, then by tracer order.
    """
    data = nudge_levels(ground.data, interval)
    low, high = float(np.min(data)), float(np.max(data))
    levels = _levels(low, high, interval)
    if not levels:
        log.warning(f"Ground elevation {low:.2f}..{high:.2f} crosses no {interval} m contour level")
        return []

    lines = []
    for level in levels:
        for path in measure.find_contours(data, level):
            if len(path) < MIN_TRACE_VERTICES:
                continue
            xy = ground.to_world(path[:, 0], path[:, 1])
            if np.allclose(path[0], path[-1], atol=1e-9):
                xy[-1] = xy[0]
            lines.append(Contour(level=level, vertices=xy))

    log.debug(f"Traced {len(lines)} isolines over {len(levels)} levels")
    return lines

def _relax(p: np.ndarray, w: float, closed: bool) -> np.ndarray:
    out = p.copy()
    out[1:-1] = (p[:-2] + w * p[1:-1] + p[2:]) / (2.0 + w)
    if closed:
        seam = (p[1] + w * p[0] + p[-2]) / (2.0 + w)
        out[0] = seam
        out[-1] = seam
    return out

def _window_means(p: np.ndarray) -> np.ndarray:
    """Mean of vertices k-2 .. k+3 for every k where the window fits, NaN elsewhere."""
    n = len(p)
    means = np.full(p.shape, np.nan)
    if n < 6:
        return means
    csum = np.vstack([np.zeros((1, 2)), np.cumsum(p, axis=0)])
    k = np.arange(2, n - 3)
    means[k] = (csum[k + 4] - csum[k - 2]) / 6.0
    return means

def _generalize(p: np.ndarray, flat: np.ndarray, spacing: float) -> np.ndarray:
    keep = [0]
    last = p[0]
    for k in range(1, len(p) - 1):
        if not flat[k] or np.hypot(*(p[k] - last)) >= spacing:
            keep.append(k)
            last = p[k]
    keep.append(len(p) - 1)
    return p[keep]

def smooth_polyline(
    vertices: np.ndarray,
    smoothing: float,
    curviness: float,
    flat: Optional[np.ndarray] = None,
    spacing: float = 4.0
    ) -> np.ndarray:
    """
    Smooths a traced polyline while restoring its curvature.

    Three relaxation passes move every vertex toward its neighbours, the more so the higher
    smoothing is. Closed loops relax their seam jointly. Open lines keep their end points.
    The curvature flattened by relaxation is then added back, scaled by curviness, as the
    difference of six-vertex moving means taken before and after relaxation.

    Lines longer than GENERALIZE_VERTICES vertices first drop vertices in flat terrain that are
    closer than spacing to the previous kept vertex.

    Args:
        vertices (np.ndarray): Nx2 polyline, closed when its first and last vertex are equal.
        smoothing (float): Relaxation strength.
        curviness (float): Curvature restoration factor.
        flat (Optional[np.ndarray]): Per-vertex flag of gentle terrain for generalization.
        spacing (float): Minimum vertex spacing in flat terrain.

    Returns:
        np.ndarray: Smoothed polyline. The input is returned unchanged when smoothing would make
        the line self-intersect.
    """
    p = np.asarray(vertices, dtype=np.float64)
    if len(p) < 3:
        return p.copy()
    closed = bool(np.array_equal(p[0], p[-1]))

    if flat is not None and len(p) > GENERALIZE_VERTICES:
        p = _generalize(p, flat, spacing)
        if len(p) < 3:
            return np.asarray(vertices, dtype=np.float64).copy()

    w = 1.0 / (0.01 + smoothing)
    before = _window_means(p)
    out = p
    for _ in range(3):
        out = _relax(out, w, closed)
    after = _window_means(out)

    n = len(out)
    if n > 6:
        k = np.arange(3, n - 3)
        out[k] += (before[k] - after[k]) * curviness

    if closed:
        out[-1] = out[0]

    if not LineString(out).is_simple:
        log.debug("Smoothing produced a self-intersection, keeping the traced line")
        return np.asarray(vertices, dtype=np.float64).copy()
    return out

def _multiple(level: float, interval: float) -> int:
    return int(round(level / interval))

def _is_multiple(level: float, step: float) -> bool:
    ratio = level / step
    return abs(ratio - round(ratio)) < 1e-9

def _priority(contour: Contour, interval: float) -> int:
    if contour.kind == ContourKind.INDEX:
        return 2
    return 1 if _multiple(contour.level, interval) % 2 == 0 else 0

def _split_kept(vertices: np.ndarray, keep: np.ndarray) -> List[np.ndarray]:
    pieces = []
    start = None
    for i, flag in enumerate(keep):
        if flag and start is None:
            start = i
        elif not flag and start is not None:
            pieces.append(vertices[start:i])
            start = None
    if start is not None:
        pieces.append(vertices[start:])
    return [p for p in pieces if len(p) >= 2]

def remove_touching(contours: List[Contour], interval: float, distance: float) -> List[Contour]:
    """
    Thins contours that touch a more important neighbour.

    Vertices of a contour closer than distance to a higher priority contour one interval above
    or below are removed, splitting the line where needed. Index contours outrank contours at
    even multiples of the interval, which outrank contours at odd multiples. Dots are kept as is.

    Args:
        contours (List[Contour]): Contour lines.
        interval (float): Tracing interval.
        distance (float): Touching tolerance.

    Returns:
        List[Contour]: Thinned contours in the input order.
    """
    by_level: Dict[int, List[Contour]] = {}
    for c in contours:
        if not c.dot:
            by_level.setdefault(_multiple(c.level, interval), []).append(c)

    result = []
    for c in contours:
        if c.dot:
            result.append(c)
            continue
        k = _multiple(c.level, interval)
        rank = _priority(c, interval)
        stronger = [
            n.vertices for n in by_level.get(k - 1, []) + by_level.get(k + 1, [])
            if _priority(n, interval) > rank
        ]
        if not stronger:
            result.append(c)
            continue

        barrier = MultiLineString(stronger)
        gaps = shapely.distance(shapely.points(c.vertices), barrier)
        keep = gaps >= distance
        if np.all(keep):
            result.append(c)
            continue
        for piece in _split_kept(c.vertices, keep):
            result.append(replace(c, vertices=piece))
    return result

def mark_crowded_dots(contours: List[Contour], ground: Grid, scalefactor: float = 1.0) -> List[Contour]:
    """
    Flags the knoll and depression dots that sit too close to contour ink.

    Every line is drawn on a canvas of scalefactor sized pixels covering the grid. A dot is
    crowded when any pixel within DOT_CLEARANCE pixels of it is inked or off the canvas.

    Args:
        contours (List[Contour]): Contour features.
        ground (Grid): Grid defining the canvas extent.
        scalefactor (float): Map scale factor, the canvas pixel size.

    Returns:
        List[Contour]: The features in the same order, dots carrying their crowded flag.
    """
    dots = [c for c in contours if c.dot]
    if not dots:
        return contours

    lines = [c.vertices for c in contours if not c.dot]
    clear = clear_dots(np.vstack([c.vertices[0] for c in dots]), lines, ground, scalefactor)
    flags = iter(~clear)
    marked = [replace(c, crowded=bool(next(flags))) if c.dot else c for c in contours]
    log.debug(f"{int(np.sum(~clear))} of {len(dots)} dots are crowded by contour lines")
    return marked

def _base_kind(level: float, config: PipelineConfig) -> ContourKind:
    if config.formline == 0:
        if _is_multiple(level, config.indexcontours):
            return ContourKind.INDEX
        return ContourKind.CONTOUR
    if config.formline == 1 and _multiple(level, config.contour_interval) % 2 == 1:
        return ContourKind.FORMLINE
    return ContourKind.CONTOUR

def generate_contours(ground: Grid, config: PipelineConfig) -> List[Contour]:
    """
    Produces the tagged contour features of a tile.

    Form-line mode 0 traces every contour_interval and tags index contours. Mode 1 traces every
    contour_interval, drawing every second contour as a solid form-line. Mode 2 traces every half
    interval and turns the intermediate levels into dashed form-lines on steep ground only.

    Args:
        ground (Grid): Ground elevation grid.
        config (PipelineConfig): Pipeline configuration.

    Returns:
        List[Contour]: Features ordered by level. Within a level lines keep the tracer order
        and dots follow the lines.
    """
    interval = config.contour_interval / 2.0 if config.formline == 2 else config.contour_interval
    steepness = steepness_grid(ground.data)
    traced = trace_isolines(ground, interval)

    lines: Dict[float, List[Contour]] = {}
    dots: Dict[float, List[Contour]] = {}
    for raw in traced:
        level = raw.level
        xy = raw.vertices
        closed = raw.closed
        depression = False

        if closed:
            info = analyze_loop(xy, level, ground)
            depression = info.depression
            ring = ring_steepness(xy, ground, steepness)
            if not is_distinct(ring, level, info.extreme, config.knolls, config.scalefactor):
                continue
            if len(xy) < DOT_VERTICES:
                # a pit whose loop is longer than depression_length keeps the knoll symbol
                if depression and raw.length <= config.depression_length:
                    kind = ContourKind.DEPRESSION
                else:
                    kind = ContourKind.KNOLL
                dots.setdefault(level, []).append(
                    Contour(level, dot_position(xy)[None, :], kind, dot=True)
                )
                continue

        rows, cols = ground.nearest_cell(xy)
        flat = steepness[rows, cols] < FLAT_STEEPNESS
        smoothed = smooth_polyline(
            xy, config.smoothing, config.curviness, flat=flat, spacing=2.0 * ground.cell_size
        )

        if config.formline == 2 and _multiple(level, interval) % 2 == 1:
            for piece in formline_pieces(smoothed, closed, ground, steepness, config):
                lines.setdefault(level, []).append(
                    Contour(level, piece, ContourKind.FORMLINE, dashed=True)
                )
            continue

        kind = _base_kind(level, config)
        if closed and depression and kind != ContourKind.FORMLINE:
            perimeter = float(np.hypot(*np.diff(smoothed, axis=0).T).sum())
            if perimeter <= config.depression_length:
                kind = ContourKind.DEPRESSION
        lines.setdefault(level, []).append(Contour(level, smoothed, kind))

    ordered = []
    for level in sorted(set(lines) | set(dots)):
        ordered.extend(lines.get(level, []))
        ordered.extend(dots.get(level, []))

    if config.remove_touching_contours:
        ordered = remove_touching(ordered, interval, config.touching_distance)

    ordered = mark_crowded_dots(ordered, ground, config.scalefactor)

    log.info(f"Generated {len(ordered)} contour features")
    return ordered
