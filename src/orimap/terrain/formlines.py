# src/orimap/terrain/formlines.py

"""
This module derives dashed form-lines from intermediate contours.

Only the steep parts of an intermediate contour are kept. The kept runs are extended at
both ends, short gaps between runs are bridged, and every run is cut into dashes.
"""

from typing import List
import logging

import numpy as np
import scipy.ndimage as ndimage

from orimap.raster.layer import Grid

log = logging.getLogger(__name__)

__all__ = [
    "steep_vertices",
    "extend_marks",
    "bridge_gaps",
    "split_runs",
    "dash_pattern",
    "formline_pieces"
]

def steep_vertices(
    vertices: np.ndarray,
    ground: Grid,
    steepness: np.ndarray,
    threshold: float
    ) -> np.ndarray:
    """
    Marks vertices where the local slope exceeds the threshold.

    The slope is the 3x3 relief of the nearest cell over the two-cell window width.

    Returns:
        np.ndarray: Boolean mark per vertex.
    """
    rows, cols = ground.nearest_cell(vertices)
    slope = steepness[rows, cols] / (2.0 * ground.cell_size)
    return slope > threshold

def extend_marks(marks: np.ndarray, addition: int, closed: bool) -> np.ndarray:
    """Extends every marked run by addition vertices on both sides."""
    if addition <= 0 or not np.any(marks):
        return marks.copy()
    structure = np.ones(2 * addition + 1, dtype=bool)
    if closed:
        # work on the distinct vertices so the seam wraps
        core = marks[:-1]
        grown = ndimage.binary_dilation(np.concatenate([core, core, core]), structure=structure)
        grown = grown[len(core):2 * len(core)]
        return np.append(grown, grown[0])
    return ndimage.binary_dilation(marks, structure=structure)

def bridge_gaps(marks: np.ndarray, minimum_gap: int, closed: bool) -> np.ndarray:
    """
    Fills unmarked runs shorter than minimum_gap vertices that lie between two marked runs.

    Unmarked runs touching the ends of an open line are left alone.
    """
    out = marks.copy()
    if minimum_gap <= 0 or not np.any(marks) or np.all(marks):
        return out

    core = out[:-1] if closed else out
    n = len(core)
    marked = np.flatnonzero(core)
    if closed:
        # gaps between consecutive marked vertices, including the one across the seam
        starts = marked
        ends = np.append(marked[1:], marked[0] + n)
    else:
        starts = marked[:-1]
        ends = marked[1:]

    for start, end in zip(starts, ends):
        gap = end - start - 1
        if 0 < gap < minimum_gap:
            idx = np.arange(start + 1, end) % n
            core[idx] = True

    if closed:
        out[:-1] = core
        out[-1] = core[0]
    return out

def split_runs(vertices: np.ndarray, marks: np.ndarray, closed: bool) -> List[np.ndarray]:
    """
    Cuts a polyline into the runs of consecutive marked vertices.

    On a closed loop a run crossing the seam is returned as one piece. Runs with a single
    vertex are dropped.
    """
    if np.all(marks):
        return [vertices.copy()]
    if not np.any(marks):
        return []

    if closed:
        core = marks[:-1]
        n = len(core)
        # rotate so the sequence starts at an unmarked vertex
        shift = int(np.flatnonzero(~core)[0])
        order = (np.arange(n) + shift) % n
        verts = vertices[:-1][order]
        flags = core[order]
    else:
        verts = vertices
        flags = marks

    runs = []
    labels, count = ndimage.label(flags)
    for i in range(1, count + 1):
        idx = np.flatnonzero(labels == i)
        if len(idx) >= 2:
            runs.append(verts[idx])
    return runs

def _arc_length(vertices: np.ndarray) -> np.ndarray:
    steps = np.hypot(*np.diff(vertices, axis=0).T)
    return np.concatenate([[0.0], np.cumsum(steps)])

def _cut(vertices: np.ndarray, s: np.ndarray, start: float, end: float) -> np.ndarray:
    """Sub-polyline between two arc length positions."""
    inner = (s > start) & (s < end)
    head = [np.interp(start, s, vertices[:, 0]), np.interp(start, s, vertices[:, 1])]
    tail = [np.interp(end, s, vertices[:, 0]), np.interp(end, s, vertices[:, 1])]
    return np.vstack([head, vertices[inner], tail])

def dash_pattern(vertices: np.ndarray, dash: float, gap: float) -> List[np.ndarray]:
    """
    Cuts a polyline into dashes of length dash separated by gaps of length gap.

    A polyline shorter than one dash and gap is returned whole as a single dash.
    """
    s = _arc_length(vertices)
    total = s[-1]
    if total < dash + gap or gap <= 0:
        return [vertices.copy()]

    dashes = []
    start = 0.0
    while start < total:
        end = min(start + dash, total)
        if end > start:
            dashes.append(_cut(vertices, s, start, end))
        start += dash + gap
    return dashes

def formline_pieces(
    vertices: np.ndarray,
    closed: bool,
    ground: Grid,
    steepness: np.ndarray,
    config
    ) -> List[np.ndarray]:
    """
    Derives the dashes of the form-line drawn along an intermediate contour.

    Args:
        vertices (np.ndarray): Smoothed intermediate contour in world coordinates.
        closed (bool): Whether the contour is a closed loop.
        ground (Grid): Ground elevation grid.
        steepness (np.ndarray): 3x3 relief grid.
        config (PipelineConfig): Pipeline configuration.

    Returns:
        List[np.ndarray]: Dash polylines, possibly empty on gentle terrain.
    """
    marks = steep_vertices(vertices, ground, steepness, config.formlinesteepness)
    if closed:
        marks[-1] = marks[0]
    marks = extend_marks(marks, config.formlineaddition, closed)
    marks = bridge_gaps(marks, config.minimumgap, closed)

    pieces = []
    for run in split_runs(vertices, marks, closed):
        pieces.extend(dash_pattern(run, config.dash_distance, config.gap_distance))
    return pieces
