# src/orimap/pipeline.py

"""
This module runs the terrain pipeline on a single tile.

Points are read and decimated, the ground and canopy surfaces are built, then vegetation,
contours and cliffs are derived from them. Every raster product shares the ground grid.
"""

from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, List, Optional, Union
import logging

from rasterio.crs import CRS

from orimap.config import PipelineConfig
from orimap.exceptions import GridInvariantError, OrimapError
from orimap.lidar.generate_model import generate_canopy, generate_ground, generate_masks
from orimap.lidar.layer import PointCloud, read_tile
from orimap.lidar.vegetation import classify_vegetation
from orimap.raster.filters import smooth_shades, smooth_yellow
from orimap.raster.layer import Grid, define_grid
from orimap.terrain.cliffs import Cliff, detect_cliffs
from orimap.terrain.contours import Contour, generate_contours
from orimap.terrain.knoll_detector import detect_knolls, raise_knolls

log = logging.getLogger(__name__)

__all__ = [
    "TileProducts",
    "process_tile",
    "validate_products"
]

@dataclass
class TileProducts:
    """
    Every layer produced for one tile.

    Grids share the extent of the ground grid. Contours are ordered by level and cliffs in
    tracing order.
    """
    tile: Optional[str]
    ground: Grid
    canopy: Grid
    density: Grid
    green_factor: Grid
    shade: Grid
    yellow: Grid
    undergrowth: Grid
    water: Grid
    buildings: Grid
    contours: List[Contour] = field(default_factory=list)
    cliffs1: List[Cliff] = field(default_factory=list)
    cliffs2: List[Cliff] = field(default_factory=list)

    @property
    def knolls(self) -> List[Contour]:
        """Knoll and depression dots."""
        return [c for c in self.contours if c.dot]

    def grids(self) -> Dict[str, Grid]:
        return {
            "ground": self.ground,
            "canopy": self.canopy,
            "density": self.density,
            "green_factor": self.green_factor,
            "shade": self.shade,
            "yellow": self.yellow,
            "undergrowth": self.undergrowth,
            "water": self.water,
            "buildings": self.buildings,
        }

def validate_products(products: TileProducts):
    """
    Checks that every raster product shares the ground grid.

    Raises:
        GridInvariantError: On the first mismatching grid.
    """
    for name, grid in products.grids().items():
        if not grid.same_grid(products.ground):
            raise GridInvariantError(
                f"{name} grid {grid.shape} does not match ground grid {products.ground.shape}",
                tile=products.tile
            )

def process_tile(
    source: Union[str, Path, PointCloud],
    config: Optional[PipelineConfig] = None,
    tile_id: Optional[str] = None,
    crs: Optional[Union[str, CRS]] = None
    ) -> TileProducts:
    """
    Runs the full terrain pipeline on one tile.

    Args:
        source (Union[str, Path, PointCloud]): LAS/LAZ path or an in-memory cloud.
        config (Optional[PipelineConfig]): Pipeline configuration, defaults when omitted.
        tile_id (Optional[str]): Tile identity used in logs and errors, the file stem by default.
        crs (Optional[Union[str, CRS]]): Coordinate reference system carried by the grids.

    Returns:
        TileProducts: All layers of the tile.

    Raises:
        PointFormatError, EmptyTileError: If the tile cannot be read.
        ConfigurationError: If the configuration cannot classify the tile.
        GridInvariantError: On an internal inconsistency.
    """
    config = config or PipelineConfig()
    if tile_id is None and isinstance(source, (str, Path)):
        tile_id = Path(source).stem
    label = tile_id or "<memory>"

    try:
        log.info(f"Reading points of {label}...")
        pc = read_tile(source, config)

        grid = define_grid(pc.min_x, pc.max_x, pc.min_y, pc.max_y, config.cell_size, crs=crs)
        log.info(f"Generating ground and canopy models on a {grid.rows}x{grid.cols} grid...")
        ground = generate_ground(pc, grid, config)
        canopy = generate_canopy(pc, ground, config)
        water, buildings = generate_masks(pc, ground, config)

        log.info("Generating vegetation...")
        vegetation = classify_vegetation(pc, ground, canopy, config)
        shade = smooth_shades(vegetation.shade, config)
        yellow = smooth_yellow(vegetation.yellow, config)

        log.info("Generating contours...")
        contour_ground = ground
        if config.detect_knolls:
            pins = detect_knolls(ground, config)
            log.info(f"Raising {len(pins)} knolls below the contour interval...")
            contour_ground = raise_knolls(ground, pins, config)
        contours = generate_contours(contour_ground, config)

        log.info("Detecting cliffs...")
        cliffs = detect_cliffs(ground, config)

        products = TileProducts(
            tile=tile_id,
            ground=ground,
            canopy=canopy,
            density=vegetation.density,
            green_factor=vegetation.green_factor,
            shade=shade,
            yellow=yellow,
            undergrowth=vegetation.undergrowth,
            water=water,
            buildings=buildings,
            contours=contours,
            cliffs1=cliffs.type1,
            cliffs2=cliffs.type2
        )
        validate_products(products)
    except OrimapError as e:
        log.error(f"Tile {label} failed: {e.message}")
        raise e.with_tile(tile_id)

    log.info(
        f"Tile {label} done: {len(contours)} contour features, "
        f"{len(cliffs.type1)} + {len(cliffs.type2)} cliffs"
    )
    return products
