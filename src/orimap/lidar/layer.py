# src/orimap/lidar/layer.py

"""
This module defines the core data structure for lidar point clouds, along with methods for loading,
coordinate scaling and reproducible decimation.
"""

from enum import IntEnum
from pathlib import Path
from dataclasses import dataclass
from typing import Generator, Iterable, Optional, Union
import logging

import laspy
import numpy as np

from orimap.config import PipelineConfig
from orimap.exceptions import EmptyTileError, PointFormatError

log = logging.getLogger(__name__)

__all__ = [
    "PointClass",
    "PointCloud",
    "read_tile"
]

# Errors laspy surfaces for corrupt or truncated LAS/LAZ content
_PARSE_ERRORS = (laspy.errors.LaspyException, ValueError, EOFError)

class PointClass(IntEnum):
    """
    Point categories used by the terrain pipeline.

    Options:
    GROUND: Bare earth returns.
    NON_GROUND: Vegetation and unclassified returns (LAS codes 1, 3, 4 and 5).
    WATER: Water surface returns.
    BUILDING: Building returns.
    OTHER: Any other code (noise, wires, ...).
    """
    GROUND = 0
    NON_GROUND = 1
    WATER = 2
    BUILDING = 3
    OTHER = 4

_NON_GROUND_CODES = (1, 3, 4, 5)

def _splitmix64(values: np.ndarray) -> np.ndarray:
    """Vectorized splitmix64 finalizer over uint64 values (wrapping arithmetic)."""
    with np.errstate(over="ignore"):
        z = values + np.uint64(0x9E3779B97F4A7C15)
        z = (z ^ (z >> np.uint64(30))) * np.uint64(0xBF58476D1CE4E5B9)
        z = (z ^ (z >> np.uint64(27))) * np.uint64(0x94D049BB133111EB)
        return z ^ (z >> np.uint64(31))

@dataclass
class PointCloud:
    """
    Core data structure for holding LiDAR point cloud data and bounding properties.

    Primary point cloud attributes:
        x (np.ndarray): X coordinates of points.
        y (np.ndarray): Y coordinates of points.
        z (np.ndarray): Z coordinates (elevation) of points.
        classification (np.ndarray): Raw LAS classification codes.
        return_number (np.ndarray): Return number for each point (1 for first return, etc.).
        number_of_returns (np.ndarray): Total returns of the pulse each point belongs to.

    Secondary attributes for global bounding properties, used to define the tile grid:
        min_x (float): Minimum X coordinate in the point cloud.
        max_x (float): Maximum X coordinate in the point cloud.
        min_y (float): Minimum Y coordinate in the point cloud.
        max_y (float): Maximum Y coordinate in the point cloud.
        max_z (float): Maximum Z coordinate in the point cloud.
    """
    x: np.ndarray
    y: np.ndarray
    z: np.ndarray
    classification: np.ndarray
    return_number: np.ndarray
    number_of_returns: np.ndarray

    min_x: float
    max_x: float
    min_y: float
    max_y: float
    max_z: float

    def __len__(self) -> int:
        return len(self.x)

    @classmethod
    def from_arrays(
        cls,
        x: Iterable[float],
        y: Iterable[float],
        z: Iterable[float],
        classification: Optional[Iterable[int]] = None,
        return_number: Optional[Iterable[int]] = None,
        number_of_returns: Optional[Iterable[int]] = None
        ) -> 'PointCloud':
        """
        Builds a point cloud from in-memory arrays and computes its bounds.

        Missing classification defaults to ground (2) and missing return information to
        single returns (1 of 1).

        Args:
            x, y, z (Iterable[float]): Coordinates.
            classification (Optional[Iterable[int]]): LAS classification codes.
            return_number (Optional[Iterable[int]]): Return numbers.
            number_of_returns (Optional[Iterable[int]]): Returns per pulse.

        Returns:
            PointCloud: Populated object.

        Raises:
            PointFormatError: If the arrays have different lengths.
        """
        x = np.asarray(x, dtype=np.float64)
        y = np.asarray(y, dtype=np.float64)
        z = np.asarray(z, dtype=np.float64)
        n = len(x)

        def _column(values, default):
            if values is None:
                return np.full(n, default, dtype=np.uint8)
            return np.asarray(values).astype(np.uint8)

        classification = _column(classification, 2)
        return_number = _column(return_number, 1)
        number_of_returns = _column(number_of_returns, 1)

        lengths = {len(a) for a in (x, y, z, classification, return_number, number_of_returns)}
        if len(lengths) != 1:
            raise PointFormatError(f"Point attribute arrays differ in length: {sorted(lengths)}")

        if n == 0:
            bounds = (np.nan, np.nan, np.nan, np.nan, np.nan)
        else:
            bounds = (float(x.min()), float(x.max()), float(y.min()), float(y.max()), float(z.max()))

        return cls(
            x=x, y=y, z=z,
            classification=classification,
            return_number=return_number,
            number_of_returns=number_of_returns,
            min_x=bounds[0], max_x=bounds[1], min_y=bounds[2], max_y=bounds[3], max_z=bounds[4]
        )

    @staticmethod
    def _from_points(points) -> 'PointCloud':
        # map laspy point attributes to our PointCloud structure
        return PointCloud.from_arrays(
            x=np.array(points.x),
            y=np.array(points.y),
            z=np.array(points.z),
            classification=np.array(points.classification),
            return_number=np.array(points.return_number),
            number_of_returns=np.array(points.number_of_returns)
        )

    @classmethod
    def from_file(
        cls,
        path: Union[str, Path]
        ) -> 'PointCloud':
        """
        Loads the entirety of a LiDAR point cloud into memory.

        Args:
            path (Union[str, Path]): Target .las or .laz file.

        Returns:
            PointCloud: Fully populated object.

        Raises:
            FileNotFoundError: If the file does not exist.
            PointFormatError: If the file is not a readable LAS/LAZ file.
        """
        path = Path(path)
        if not path.exists():
            raise FileNotFoundError(f"Lidar file not found: {path}")

        try:
            with laspy.open(path) as fh:
                las = fh.read()
        except _PARSE_ERRORS as e:
            raise PointFormatError(f"Cannot parse point file {path.name}: {e}", tile=path.stem) from e
        return cls._from_points(las)

    @classmethod
    def iter_chunks(
        cls,
        path: Union[str, Path],
        chunk_size: int = 1_000_000
        ) -> Generator['PointCloud', None, None]:
        """
        Iterates over a LiDAR file in chunks to bound memory use.

        Args:
            path (Union[str, Path]): Target .las or .laz file.
            chunk_size (int): Number of points to stream per chunk.

        Yields:
            Generator[PointCloud, None, None]: Sequential point cloud fragments with their own bounds.
        """
        path = Path(path)
        if not path.exists():
            raise FileNotFoundError(f"Lidar file not found: {path}")

        try:
            with laspy.open(path) as fh:
                for chunk in fh.chunk_iterator(chunk_size):
                    yield cls._from_points(chunk)
        except _PARSE_ERRORS as e:
            raise PointFormatError(f"Cannot parse point file {path.name}: {e}", tile=path.stem) from e

    def subset(self, mask: np.ndarray) -> 'PointCloud':
        """Returns the points selected by a boolean mask or index array."""
        return PointCloud.from_arrays(
            self.x[mask], self.y[mask], self.z[mask],
            self.classification[mask], self.return_number[mask], self.number_of_returns[mask]
        )

    def transformed(
        self,
        xfactor: float = 1.0,
        yfactor: float = 1.0,
        zfactor: float = 1.0,
        xoffset: float = 0.0,
        yoffset: float = 0.0,
        zoffset: float = 0.0
        ) -> 'PointCloud':
        """Applies per-axis scaling and offset (v * factor + offset)."""
        if (xfactor, yfactor, zfactor, xoffset, yoffset, zoffset) == (1.0, 1.0, 1.0, 0.0, 0.0, 0.0):
            return self
        return PointCloud.from_arrays(
            self.x * xfactor + xoffset,
            self.y * yfactor + yoffset,
            self.z * zfactor + zoffset,
            self.classification, self.return_number, self.number_of_returns
        )

    def thinned(self, fraction: float, seed: int = 0, start_index: int = 0) -> 'PointCloud':
        """
        Keeps a reproducible fraction of the points.

        Each decision hashes the point's global index with the seed, so the kept subset does not
        depend on how the file was chunked.

        Args:
            fraction (float): Share of points to keep, in (0, 1].
            seed (int): Seed mixed into the hash.
            start_index (int): Global index of the first point of this cloud.

        Returns:
            PointCloud: The kept points.
        """
        if fraction >= 1.0:
            return self
        index = np.arange(start_index, start_index + len(self), dtype=np.uint64)
        with np.errstate(over="ignore"):
            keys = index + _splitmix64(np.array([seed], dtype=np.uint64))[0]
        # top 53 bits as a uniform value in [0, 1)
        u = (_splitmix64(keys) >> np.uint64(11)).astype(np.float64) * (2.0 ** -53)
        return self.subset(u < fraction)

    def categories(
        self,
        groundclass: int = 2,
        waterclass: int = 9,
        buildingsclass: int = 6
        ) -> np.ndarray:
        """
        Maps raw classification codes to PointClass values.

        Returns:
            np.ndarray: uint8 array of PointClass values, one per point.
        """
        cls_codes = self.classification
        out = np.full(len(self), PointClass.OTHER, dtype=np.uint8)
        out[np.isin(cls_codes, _NON_GROUND_CODES)] = PointClass.NON_GROUND
        out[cls_codes == buildingsclass] = PointClass.BUILDING
        out[cls_codes == waterclass] = PointClass.WATER
        out[cls_codes == groundclass] = PointClass.GROUND
        return out

    def is_single_return(self) -> np.ndarray:
        return (self.return_number == 1) & (self.number_of_returns <= 1)

    def is_last_of_many(self) -> np.ndarray:
        return (self.number_of_returns > 1) & (self.return_number == self.number_of_returns)

def _prepare(pc: PointCloud, config: PipelineConfig, start_index: int) -> PointCloud:
    pc = pc.transformed(
        config.coordxfactor, config.coordyfactor, config.coordzfactor,
        config.coordxoffset, config.coordyoffset, config.zoffset
    )
    return pc.thinned(config.thinfactor, config.thinseed, start_index)

def read_tile(
    source: Union[str, Path, PointCloud],
    config: PipelineConfig,
    chunk_size: int = 2_000_000
    ) -> PointCloud:
    """
    Loads a tile, applies coordinate scaling and offsets, then decimates it.

    Files are streamed chunk by chunk so that only the kept points are held in memory.

    Args:
        source (Union[str, Path, PointCloud]): LAS/LAZ path or an in-memory cloud.
        config (PipelineConfig): Pipeline configuration.
        chunk_size (int): Points read per chunk from files.

    Returns:
        PointCloud: Points ready for rasterization.

    Raises:
        PointFormatError: If the file cannot be parsed.
        EmptyTileError: If no points remain.
    """
    if isinstance(source, PointCloud):
        tile_id = None
        pc = _prepare(source, config, 0)
        total = len(source)
    else:
        tile_id = Path(source).stem
        parts = []
        total = 0
        for chunk in PointCloud.iter_chunks(source, chunk_size=chunk_size):
            parts.append(_prepare(chunk, config, total))
            total += len(chunk)
        if parts:
            pc = PointCloud.from_arrays(
                np.concatenate([p.x for p in parts]),
                np.concatenate([p.y for p in parts]),
                np.concatenate([p.z for p in parts]),
                np.concatenate([p.classification for p in parts]),
                np.concatenate([p.return_number for p in parts]),
                np.concatenate([p.number_of_returns for p in parts])
            )
        else:
            pc = PointCloud.from_arrays([], [], [])

    if total == 0:
        raise EmptyTileError("Tile contains no points", tile=tile_id)
    if len(pc) == 0:
        raise EmptyTileError(f"No points left after thinning {total} points by {config.thinfactor}", tile=tile_id)

    log.debug(f"Read {len(pc)} of {total} points")
    return pc
