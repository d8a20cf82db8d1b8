# src/orimap/lidar/vegetation.py

"""
This module implements the vegetation density classifier.

Each return is located in its cell and measured against the ground surface. Returns near the ground
count as ground hits. Returns inside the configured height zones count as green hits, weighted by
return type and zone factor. The ratio of green to ground hits is corrected for canopy layering and
for flight-line overlap, normalized by the threshold band of the cell's canopy height, and finally
discretized into shade levels.
"""

from dataclasses import dataclass
from typing import Optional, Sequence
import logging

import numpy as np
import scipy.ndimage as ndimage

from orimap.config import PipelineConfig, ThresholdBand
from orimap.exceptions import ConfigurationError
from orimap.raster.filters import block_average
from orimap.raster.layer import Grid

from .layer import PointCloud, PointClass
from .rasterize import point_cells

log = logging.getLogger(__name__)

__all__ = [
    "HitCounts",
    "VegetationResult",
    "point_weights",
    "accumulate_hits",
    "volume_correction",
    "select_threshold",
    "shade_index",
    "classify_vegetation"
]

# Height range of undergrowth returns above ground
UNDERGROWTH_LOW = 0.25
UNDERGROWTH_HIGH = 1.2
UNDERGROWTH_CANOPY_WEIGHT = 0.05

@dataclass
class HitCounts:
    """
    Per-cell accumulated hits.

    Attributes:
        green (np.ndarray): Weighted returns inside the vegetation zones.
        ground (np.ndarray): Ground hits, including the single return ground bias.
        high (np.ndarray): Returns above greenhigh.
        points (np.ndarray): Raw number of returns per cell.
        yellow_hits (np.ndarray): Non-ground returns below yellowheight.
        yellow_misses (np.ndarray): Weighted non-ground returns at or above yellowheight.
        undergrowth (np.ndarray): Non-ground returns in the undergrowth height range.
        undergrowth_clear (np.ndarray): Weighted returns outside the undergrowth height range.
    """
    green: np.ndarray
    ground: np.ndarray
    high: np.ndarray
    points: np.ndarray
    yellow_hits: np.ndarray
    yellow_misses: np.ndarray
    undergrowth: np.ndarray
    undergrowth_clear: np.ndarray

@dataclass
class VegetationResult:
    """
    Vegetation layers of a tile. All grids share the ground grid's extent.

    Attributes:
        raw_density (Grid): Green to ground hit ratio.
        density (Grid): Ratio after layering and overlap correction.
        green_factor (Grid): Density normalized by the cell's threshold band.
        shade (Grid): Discrete shade index (uint8).
        yellow (Grid): Open land flag (bool).
        undergrowth (Grid): Undergrowth level (0 none, 1 slow, 2 walk), uint8.
        hits (HitCounts): Accumulated per-cell hits.
    """
    raw_density: Grid
    density: Grid
    green_factor: Grid
    shade: Grid
    yellow: Grid
    undergrowth: Grid
    hits: HitCounts

def point_weights(pc: PointCloud, config: PipelineConfig) -> np.ndarray:
    """
    Return type weight of each point.

    Single returns use firstandlastreturnfactor, the last of several returns uses
    lastreturnfactor and every other return weighs 1.
    """
    weights = np.ones(len(pc), dtype=np.float64)
    weights[pc.is_last_of_many()] = config.lastreturnfactor
    weights[pc.is_single_return()] = config.firstandlastreturnfactor
    return weights

def _cell_sum(flat_index: np.ndarray, weights: np.ndarray, shape) -> np.ndarray:
    size = shape[0] * shape[1]
    return np.bincount(flat_index, weights=weights, minlength=size).reshape(shape)

def accumulate_hits(
    pc: PointCloud,
    ground: Grid,
    canopy: Grid,
    config: PipelineConfig
    ) -> HitCounts:
    """
    Accumulates ground, green, high, yellow and undergrowth hits per cell.

    Every non-ground return is tested against every zone independently, so overlapping zones
    each add their weighted contribution.

    Args:
        pc (PointCloud): Tile points.
        ground (Grid): Ground elevation grid.
        canopy (Grid): Canopy height grid.
        config (PipelineConfig): Pipeline configuration.

    Returns:
        HitCounts: Per-cell accumulators.
    """
    rows, cols = point_cells(pc, ground)
    flat = rows * ground.cols + cols
    shape = ground.shape

    categories = pc.categories(config.groundclass, config.waterclass, config.buildingsclass)
    is_ground = categories == PointClass.GROUND
    is_ground_class = is_ground | (categories == PointClass.WATER)
    is_vegetation = categories == PointClass.NON_GROUND
    single = pc.is_single_return()

    h = pc.z - config.vegezoffset - ground.data[rows, cols]
    roof = canopy.data[rows, cols]
    weights = point_weights(pc, config)

    # water returns clear undergrowth but are not ground hits
    ground_hit = is_ground | ((h < config.greenground) & is_vegetation)
    ground_weight = np.where(single, config.firstandlastreturnasground, 1.0) * ground_hit

    green_candidate = is_vegetation & ~ground_hit
    green_weight = np.zeros(len(pc), dtype=np.float64)
    for zone in config.zones:
        in_zone = green_candidate & (h >= zone.low) & (h < zone.high) & (roof < zone.roof)
        green_weight += in_zone * weights * zone.factor

    high_hit = (green_candidate & (h > config.greenhigh)).astype(np.float64)

    # Open land is judged on vegetation returns only
    yellow_hits = (is_vegetation & (h < config.yellowheight)).astype(np.float64)
    yellow_misses = np.where(single, config.yellowfirstlast, 1.0) * (is_vegetation & (h >= config.yellowheight))

    undergrowth = (is_vegetation & (h > UNDERGROWTH_LOW) & (h <= UNDERGROWTH_HIGH)).astype(np.float64)
    clear = np.where(
        is_ground_class | (is_vegetation & (h <= UNDERGROWTH_LOW)), 1.0,
        np.where(is_vegetation & (h > UNDERGROWTH_HIGH), UNDERGROWTH_CANOPY_WEIGHT, 0.0)
    )

    return HitCounts(
        green=_cell_sum(flat, green_weight, shape),
        ground=_cell_sum(flat, ground_weight, shape),
        high=_cell_sum(flat, high_hit, shape),
        points=_cell_sum(flat, None, shape).astype(np.float64),
        yellow_hits=_cell_sum(flat, yellow_hits, shape),
        yellow_misses=_cell_sum(flat, yellow_misses, shape),
        undergrowth=_cell_sum(flat, undergrowth, shape),
        undergrowth_clear=_cell_sum(flat, clear, shape)
    )

def volume_correction(
    points: np.ndarray,
    factor: float,
    exponent: float
    ) -> np.ndarray:
    """
    Scan-overlap correction of each cell.

    Cells sampled more densely than the tile average (flight-line overlap) are damped:
    (max(0, 1 - factor * local / average)) ** exponent, where average is the mean point count
    of occupied cells.

    Args:
        points (np.ndarray): Raw point count per cell.
        factor (float): pointvolumefactor.
        exponent (float): pointvolumeexponent.

    Returns:
        np.ndarray: Multiplicative correction per cell, 1 everywhere when the tile has no points.
    """
    points = np.asarray(points, dtype=np.float64)
    occupied = points > 0
    if not np.any(occupied):
        return np.ones(points.shape, dtype=np.float64)
    average = float(points[occupied].mean())
    base = np.clip(1.0 - factor * points / average, 0.0, None)
    return base ** exponent

def select_threshold(
    canopy_height: float,
    thresholds: Sequence[ThresholdBand]
    ) -> Optional[ThresholdBand]:
    """Returns the first band whose canopy range contains the height, or None."""
    for band in thresholds:
        if band.contains(canopy_height):
            return band
    return None

def _threshold_ratios(canopy: np.ndarray, thresholds: Sequence[ThresholdBand]) -> np.ndarray:
    """Vectorized select_threshold: ratio of the first matching band per cell, NaN where none."""
    ratios = np.full(canopy.shape, np.nan, dtype=np.float64)
    assigned = np.zeros(canopy.shape, dtype=bool)
    for band in thresholds:
        match = ~assigned & (canopy >= band.roof_low) & (canopy < band.roof_high)
        ratios[match] = band.ratio
        assigned |= match
    return ratios

def shade_index(values: np.ndarray, cut_points: Sequence[float]) -> np.ndarray:
    """
    Discrete shade level: number of cut points each value meets or exceeds.

    Non-positive values always map to 0.

    Args:
        values (np.ndarray): Normalized green factor per cell.
        cut_points (Sequence[float]): Ascending cut points.

    Returns:
        np.ndarray: uint8 shade indices in [0, len(cut_points)].
    """
    values = np.asarray(values, dtype=np.float64)
    levels = np.searchsorted(np.asarray(cut_points, dtype=np.float64), values, side="right")
    levels[~(values > 0)] = 0
    return levels.astype(np.uint8)

def _box_sum(data: np.ndarray, size: int) -> np.ndarray:
    if size <= 1:
        return data
    return ndimage.uniform_filter(data, size=size, mode="constant") * (size * size)

def classify_vegetation(
    pc: PointCloud,
    ground: Grid,
    canopy: Grid,
    config: PipelineConfig
    ) -> VegetationResult:
    """
    Computes the green density, shade, yellow and undergrowth layers of a tile.

    Args:
        pc (PointCloud): Tile points.
        ground (Grid): Ground elevation grid.
        canopy (Grid): Canopy height grid.
        config (PipelineConfig): Pipeline configuration.

    Returns:
        VegetationResult: Unsmoothed shade and yellow rasters together with the continuous layers.

    Raises:
        ConfigurationError: If a vegetated cell's canopy height is not covered by any threshold band.
    """
    hits = accumulate_hits(pc, ground, canopy, config)

    ground_hits = block_average(hits.ground, config.groundboxsize)
    with np.errstate(invalid="ignore", divide="ignore"):
        raw = np.where(ground_hits > 0, hits.green / ground_hits, 0.0)

        # Layering weight favours cells whose returns come from the canopy top
        total = ground_hits + hits.green + hits.high
        top_share = np.where(total > 0, hits.high / total, 0.0)
    layering = 1.0 - config.topweight + config.topweight * top_share

    volume = volume_correction(hits.points, config.pointvolumefactor, config.pointvolumeexponent)
    density = raw * layering * volume

    ratios = _threshold_ratios(canopy.data, config.thresholds)
    uncovered = (density > 0) & np.isnan(ratios)
    if np.any(uncovered):
        r, c = np.argwhere(uncovered)[0]
        raise ConfigurationError(
            f"No threshold band covers canopy height {canopy.data[r, c]:.2f} at cell ({r}, {c})"
        )
    with np.errstate(invalid="ignore"):
        green_factor = np.where(density > 0, density / ratios, 0.0)

    shade = shade_index(green_factor, config.greenshades)

    yellow_total = hits.yellow_hits + hits.yellow_misses
    with np.errstate(invalid="ignore", divide="ignore"):
        yellow_share = np.where(yellow_total > 0, hits.yellow_hits / yellow_total, 0.0)
    yellow = (yellow_total > 0) & (yellow_share >= config.yellowthreshold)

    ug = _box_sum(hits.undergrowth, config.undergrowthboxsize)
    ug_total = ug + _box_sum(hits.undergrowth_clear, config.undergrowthboxsize)
    with np.errstate(invalid="ignore", divide="ignore"):
        ug_share = np.where(ug_total > 0, ug / ug_total, 0.0)
    undergrowth = np.zeros(ground.shape, dtype=np.uint8)
    undergrowth[ug_share > config.undergrowth] = 1
    undergrowth[ug_share > config.undergrowth2] = 2

    log.debug(
        f"Vegetation: {int((shade > 0).sum())} green cells, {int(yellow.sum())} yellow cells, "
        f"{int((undergrowth > 0).sum())} undergrowth cells"
    )

    return VegetationResult(
        raw_density=ground.with_data(raw),
        density=ground.with_data(density),
        green_factor=ground.with_data(green_factor),
        shade=ground.with_data(shade),
        yellow=ground.with_data(yellow),
        undergrowth=ground.with_data(undergrowth),
        hits=hits
    )
